"""File store contract and the in-memory implementation."""

import asyncio
from dataclasses import replace
from datetime import UTC, datetime
from typing import Protocol
from uuid import uuid4

import structlog

from posttown.posts.errors import NotFoundError

from .models import FileMetadata, StoredFile


logger = structlog.get_logger(__name__)


class FileStore(Protocol):
    """Binary store for post attachments."""

    async def store(self, content: bytes, metadata: FileMetadata) -> str: ...

    async def fetch(self, file_id: str) -> StoredFile: ...

    async def delete(self, file_id: str) -> bool: ...


class InMemoryFileStore:
    """Dict-backed file store for development and tests."""

    def __init__(self) -> None:
        self._files: dict[str, StoredFile] = {}

    def __contains__(self, file_id: str) -> bool:
        return file_id in self._files

    async def store(self, content: bytes, metadata: FileMetadata) -> str:
        await asyncio.sleep(0)
        file_id = uuid4().hex
        self._files[file_id] = StoredFile(
            file_id=file_id,
            metadata=replace(
                metadata, size=len(content), uploaded_at=datetime.now(UTC)
            ),
            content=bytes(content),
        )
        logger.debug("file_stored", file_id=file_id, size=len(content))
        return file_id

    async def fetch(self, file_id: str) -> StoredFile:
        await asyncio.sleep(0)
        stored = self._files.get(file_id)
        if stored is None:
            raise NotFoundError(f"File {file_id} not found")
        return stored

    async def delete(self, file_id: str) -> bool:
        await asyncio.sleep(0)
        return self._files.pop(file_id, None) is not None
