"""File attachment models."""

from dataclasses import dataclass
from datetime import datetime


DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class FileMetadata:
    """Descriptive fields of an attachment."""

    filename: str
    content_type: str = DEFAULT_CONTENT_TYPE
    size: int = 0
    uploaded_at: datetime | None = None


@dataclass
class StoredFile:
    """Attachment content together with its metadata."""

    file_id: str
    metadata: FileMetadata
    content: bytes
