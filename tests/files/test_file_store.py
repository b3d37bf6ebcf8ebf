"""Tests for attachment file stores."""

from datetime import UTC, datetime
from unittest.mock import Mock

import pytest

from posttown.config import Settings
from posttown.files import FileMetadata, FirebaseFileStore, InMemoryFileStore
from posttown.posts.errors import NotFoundError, StoreFailureError


@pytest.fixture
def metadata() -> FileMetadata:
    return FileMetadata(filename="flyer.pdf", content_type="application/pdf")


class TestInMemoryFileStore:
    @pytest.mark.asyncio
    async def test_store_and_fetch(self, metadata: FileMetadata) -> None:
        files = InMemoryFileStore()

        file_id = await files.store(b"%PDF-1.7", metadata)
        stored = await files.fetch(file_id)

        assert file_id in files
        assert stored.content == b"%PDF-1.7"
        assert stored.metadata.filename == "flyer.pdf"
        assert stored.metadata.size == 8
        assert stored.metadata.uploaded_at is not None
        # caller's metadata is left alone
        assert metadata.size == 0

    @pytest.mark.asyncio
    async def test_fetch_missing(self) -> None:
        with pytest.raises(NotFoundError):
            await InMemoryFileStore().fetch("nope")

    @pytest.mark.asyncio
    async def test_delete(self, metadata: FileMetadata) -> None:
        files = InMemoryFileStore()
        file_id = await files.store(b"data", metadata)

        assert await files.delete(file_id) is True
        assert await files.delete(file_id) is False
        assert file_id not in files


@pytest.fixture
def blob() -> Mock:
    blob = Mock()
    blob.metadata = None
    blob.content_type = "application/pdf"
    blob.size = 8
    blob.time_created = datetime(2026, 1, 1, tzinfo=UTC)
    blob.download_as_bytes.return_value = b"%PDF-1.7"
    return blob


@pytest.fixture
def bucket(blob: Mock) -> Mock:
    bucket = Mock()
    bucket.blob.return_value = blob
    bucket.get_blob.return_value = blob
    return bucket


@pytest.fixture
def firebase_store(bucket: Mock) -> FirebaseFileStore:
    return FirebaseFileStore(Settings(_env_file=None), bucket=bucket)


class TestFirebaseFileStore:
    @pytest.mark.asyncio
    async def test_store_uploads_blob(
        self, firebase_store, bucket, blob, metadata
    ) -> None:
        file_id = await firebase_store.store(b"%PDF-1.7", metadata)

        bucket.blob.assert_called_once_with(f"posttown/files/{file_id}")
        blob.upload_from_string.assert_called_once_with(
            b"%PDF-1.7", content_type="application/pdf"
        )
        assert blob.metadata["filename"] == "flyer.pdf"
        assert "uploaded_at" in blob.metadata

    @pytest.mark.asyncio
    async def test_store_failure(self, firebase_store, blob, metadata) -> None:
        blob.upload_from_string.side_effect = RuntimeError("quota exceeded")

        with pytest.raises(StoreFailureError):
            await firebase_store.store(b"data", metadata)

    @pytest.mark.asyncio
    async def test_fetch(self, firebase_store, blob) -> None:
        blob.metadata = {
            "filename": "flyer.pdf",
            "uploaded_at": "2026-02-03T04:05:06+00:00",
        }

        stored = await firebase_store.fetch("abc")

        assert stored.file_id == "abc"
        assert stored.content == b"%PDF-1.7"
        assert stored.metadata.filename == "flyer.pdf"
        assert stored.metadata.content_type == "application/pdf"
        assert stored.metadata.uploaded_at == datetime(2026, 2, 3, 4, 5, 6, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_fetch_without_custom_metadata(self, firebase_store, blob) -> None:
        stored = await firebase_store.fetch("abc")

        assert stored.metadata.filename == "abc"
        assert stored.metadata.uploaded_at == blob.time_created

    @pytest.mark.asyncio
    async def test_fetch_missing(self, firebase_store, bucket) -> None:
        bucket.get_blob.return_value = None

        with pytest.raises(NotFoundError):
            await firebase_store.fetch("abc")

    @pytest.mark.asyncio
    async def test_delete(self, firebase_store, blob) -> None:
        blob.exists.return_value = True
        assert await firebase_store.delete("abc") is True
        blob.delete.assert_called_once()

    @pytest.mark.asyncio
    async def test_delete_missing(self, firebase_store, blob) -> None:
        blob.exists.return_value = False
        assert await firebase_store.delete("abc") is False
        blob.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_unconfigured_firebase(self, metadata) -> None:
        store = FirebaseFileStore(Settings(_env_file=None))

        with pytest.raises(StoreFailureError):
            await store.store(b"data", metadata)
