"""Dataclasses representing source documents handed to the preview pipeline."""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from ..utils import file_io

__all__ = ["SourceDocument", "DocumentMetadata", "DocumentState", "FileDocument"]

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


class SourceDocument(Protocol):
    """Read-only view of an open document consumed by the tracking registry."""

    @property
    def document_id(self) -> str:  # pragma: no cover - protocol stub
        ...

    @property
    def file_name(self) -> str:  # pragma: no cover - protocol stub
        ...

    def get_text(self) -> str:  # pragma: no cover - protocol stub
        ...


@dataclass(slots=True)
class DocumentMetadata:
    """Metadata describing the currently loaded document."""

    path: Optional[Path] = None
    language: str = "d2"
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class DocumentState:
    """In-memory document snapshot, e.g. an editor buffer."""

    text: str = ""
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    dirty: bool = False
    document_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    version_id: int = 1
    content_hash: str = field(default_factory=str)

    def __post_init__(self) -> None:
        if not self.content_hash:
            self.content_hash = _hash_text(self.text)

    @property
    def file_name(self) -> str:
        path = self.metadata.path
        return str(path) if path is not None else ""

    def get_text(self) -> str:
        return self.text

    def update_text(self, new_text: str) -> None:
        """Update the document text and mark it dirty."""

        self.text = new_text
        self.dirty = True
        self.metadata.updated_at = _utcnow()
        self.version_id += 1
        self.content_hash = _hash_text(new_text)

    def version_signature(self) -> str:
        return f"{self.document_id}:{self.version_id}:{self.content_hash}"


class FileDocument:
    """Document backed by a file on disk, re-read whenever the file changes.

    The text is cached alongside a :class:`~d2preview.utils.file_io.FileSignature`
    so polling by the refresh timer only stats the file while its size and mtime
    are unchanged, and a touch that leaves the bytes alone keeps the
    version. A missing file reads as empty text, which the registry treats
    as "nothing to render"; an unreadable one keeps the last text.
    """

    def __init__(self, path: Path | str, *, document_id: str | None = None) -> None:
        self._path = Path(path).expanduser().resolve()
        self._document_id = document_id or uuid.uuid4().hex
        self._signature: file_io.FileSignature | None = None
        self._text = ""
        self._version_id = 0

    @property
    def document_id(self) -> str:
        return self._document_id

    @property
    def path(self) -> Path:
        return self._path

    @property
    def file_name(self) -> str:
        return str(self._path)

    @property
    def version_id(self) -> int:
        return self._version_id

    def get_text(self) -> str:
        if self._signature is not None and file_io.signature_is_current(self._path, self._signature):
            return self._text
        try:
            snapshot = file_io.load_source(self._path)
        except FileNotFoundError:
            LOGGER.debug("Document %s is missing on disk", self._path)
            self._signature = None
            self._text = ""
            return ""
        except OSError as exc:
            LOGGER.warning("Unable to read %s: %s", self._path, exc)
            return self._text
        previous = self._signature
        self._signature = snapshot.signature
        if previous is not None and previous.digest == snapshot.signature.digest:
            return self._text
        if snapshot.text != self._text:
            self._text = snapshot.text
            self._version_id += 1
        return self._text

    def __repr__(self) -> str:
        return f"FileDocument(path={str(self._path)!r}, document_id={self._document_id!r})"
