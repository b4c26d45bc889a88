"""Reading D2 sources from disk for the polling document model."""

from __future__ import annotations

import codecs
import hashlib
import os
from dataclasses import dataclass
from pathlib import Path

__all__ = ["FileSignature", "SourceSnapshot", "load_source", "signature_is_current"]

# UTF-32 must be checked before UTF-16: BOM_UTF32_LE starts with BOM_UTF16_LE.
_BOMS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF32_LE, "utf-32"),
    (codecs.BOM_UTF32_BE, "utf-32"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


@dataclass(slots=True, frozen=True)
class FileSignature:
    """Size, mtime and content digest of a source file at the time it was read."""

    size: int
    modified_at: float
    digest: str


@dataclass(slots=True, frozen=True)
class SourceSnapshot:
    text: str
    signature: FileSignature


def load_source(path: Path | str) -> SourceSnapshot:
    """Read ``path`` once, returning its decoded text and the matching signature.

    The text has its BOM removed and CRLF/CR line endings folded to ``\\n``.
    Bytes that are not valid UTF-8 (and carry no BOM) are decoded as latin-1
    rather than rejected, so a stray byte never blanks the preview.
    """

    target = Path(path)
    stat = target.stat()
    raw = target.read_bytes()
    signature = FileSignature(
        size=len(raw),
        modified_at=stat.st_mtime,
        digest=hashlib.sha256(raw).hexdigest(),
    )
    return SourceSnapshot(text=_decode(raw), signature=signature)


def signature_is_current(path: Path | str, signature: FileSignature) -> bool:
    """Return ``True`` when a stat of ``path`` still matches ``signature``.

    Only metadata is compared; callers re-read the file on ``False`` and
    compare digests to tell a touch from an edit.
    """

    try:
        stat = os.stat(path)
    except FileNotFoundError:
        return False
    return stat.st_size == signature.size and stat.st_mtime == signature.modified_at


def _decode(raw: bytes) -> str:
    for bom, encoding in _BOMS:
        if raw.startswith(bom):
            text = raw.decode(encoding)
            break
    else:
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("latin-1")
    if "\r" in text:
        text = text.replace("\r\n", "\n").replace("\r", "\n")
    return text
