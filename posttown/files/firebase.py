"""Firebase Storage file store.

Attachments live under ``posttown/files/{file_id}``. The original filename
and upload time travel as custom blob metadata; the content type is the
blob's own.
"""

from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog

from posttown.config.settings import Settings
from posttown.posts.errors import NotFoundError, StoreFailureError

from .models import DEFAULT_CONTENT_TYPE, FileMetadata, StoredFile


if TYPE_CHECKING:
    from google.cloud.storage import Blob, Bucket


logger = structlog.get_logger(__name__)


# Firebase app singleton
_firebase_app = None


def _init_firebase(settings: Settings) -> "Bucket":
    """Initialize Firebase Admin SDK and return the storage bucket.

    Raises:
        StoreFailureError: If Firebase is not configured or fails to start.
    """
    global _firebase_app  # noqa: PLW0603

    if not settings.firebase_configured:
        raise StoreFailureError("Firebase Storage is not configured")

    # Lazy import to avoid loading Firebase SDK unless needed
    import firebase_admin  # noqa: PLC0415
    from firebase_admin import credentials, storage  # noqa: PLC0415

    creds_path = settings.firebase_credentials_path
    if not creds_path or not Path(creds_path).exists():
        raise StoreFailureError(f"Firebase credentials file not found: {creds_path}")

    try:
        if _firebase_app is None:
            cred = credentials.Certificate(creds_path)
            _firebase_app = firebase_admin.initialize_app(
                cred,
                {
                    "storageBucket": settings.firebase_storage_bucket,
                    "projectId": settings.firebase_project_id,
                },
            )
            logger.info(
                "firebase_initialized",
                project_id=settings.firebase_project_id,
                bucket=settings.firebase_storage_bucket,
            )

        return storage.bucket()

    except Exception as e:
        logger.exception("firebase_init_failed", error=str(e))
        raise StoreFailureError(f"Failed to initialize Firebase: {e}", cause=e) from e


class FirebaseFileStore:
    """Post attachments in a Firebase Storage bucket."""

    PATH_PREFIX = "posttown/files"

    def __init__(self, settings: Settings, bucket: "Bucket | None" = None) -> None:
        self.settings = settings
        self._bucket = bucket

    def _get_bucket(self) -> "Bucket":
        """Get the bucket, initializing Firebase on first use."""
        if self._bucket is None:
            self._bucket = _init_firebase(self.settings)
        return self._bucket

    def _path(self, file_id: str) -> str:
        return f"{self.PATH_PREFIX}/{file_id}"

    async def store(self, content: bytes, metadata: FileMetadata) -> str:
        """Upload an attachment and return its id."""
        file_id = uuid4().hex
        storage_path = self._path(file_id)
        uploaded_at = datetime.now(UTC)

        try:
            blob: Blob = self._get_bucket().blob(storage_path)
            blob.metadata = {
                "filename": metadata.filename,
                "uploaded_at": uploaded_at.isoformat(),
            }
            blob.upload_from_string(content, content_type=metadata.content_type)
        except StoreFailureError:
            raise
        except Exception as e:
            logger.exception("upload_failed", storage_path=storage_path, error=str(e))
            raise StoreFailureError(f"Failed to upload file: {e}", cause=e) from e

        logger.info(
            "file_uploaded",
            file_id=file_id,
            content_type=metadata.content_type,
            file_size=len(content),
        )
        return file_id

    async def fetch(self, file_id: str) -> StoredFile:
        """Download an attachment.

        Raises:
            NotFoundError: No blob stored under the id.
        """
        storage_path = self._path(file_id)
        try:
            blob = self._get_bucket().get_blob(storage_path)
            if blob is None:
                raise NotFoundError(f"File {file_id} not found")
            content = blob.download_as_bytes()
        except (NotFoundError, StoreFailureError):
            raise
        except Exception as e:
            logger.exception("download_failed", storage_path=storage_path, error=str(e))
            raise StoreFailureError(f"Failed to download file: {e}", cause=e) from e

        custom = blob.metadata or {}
        uploaded_at = custom.get("uploaded_at")
        return StoredFile(
            file_id=file_id,
            metadata=FileMetadata(
                filename=custom.get("filename") or file_id,
                content_type=blob.content_type or DEFAULT_CONTENT_TYPE,
                size=blob.size if blob.size is not None else len(content),
                uploaded_at=datetime.fromisoformat(uploaded_at)
                if uploaded_at
                else blob.time_created,
            ),
            content=content,
        )

    async def delete(self, file_id: str) -> bool:
        """Delete an attachment.

        Returns:
            True if deleted, False if not found.
        """
        storage_path = self._path(file_id)
        try:
            blob = self._get_bucket().blob(storage_path)
            if not blob.exists():
                logger.warning("delete_file_not_found", storage_path=storage_path)
                return False
            blob.delete()
        except StoreFailureError:
            raise
        except Exception as e:
            logger.exception("delete_failed", storage_path=storage_path, error=str(e))
            raise StoreFailureError(f"Failed to delete file: {e}", cause=e) from e

        logger.info("file_deleted", storage_path=storage_path)
        return True
