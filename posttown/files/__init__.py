"""Post attachment storage."""

from posttown.files.firebase import FirebaseFileStore
from posttown.files.models import FileMetadata, StoredFile
from posttown.files.store import FileStore, InMemoryFileStore


__all__ = [
    "FileMetadata",
    "FileStore",
    "FirebaseFileStore",
    "InMemoryFileStore",
    "StoredFile",
]
