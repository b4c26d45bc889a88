"""Editor package containing the document models fed to the preview pipeline."""

from .document_model import DocumentMetadata, DocumentState, FileDocument, SourceDocument

__all__ = ["DocumentMetadata", "DocumentState", "FileDocument", "SourceDocument"]
