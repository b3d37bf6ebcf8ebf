"""Typed errors for the post/comment layer.

Every failure carries a stable ``code`` so the HTTP boundary can tell a
missing resource from a denied actor or a failing backend.
"""


class PostTownError(Exception):
    """Base post/comment error."""

    def __init__(self, message: str, code: str = "posttown_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(PostTownError):
    """Resource or town not found (or tombstoned)."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, "not_found")


class PermissionDeniedError(PostTownError):
    """Session does not resolve to the resource owner."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message, "permission_denied")


class InvalidReferenceError(PostTownError):
    """A post/comment id used for linking is missing or would form a cycle."""

    def __init__(self, message: str = "Invalid reference"):
        super().__init__(message, "invalid_reference")


class StoreFailureError(PostTownError):
    """Underlying persistence failed.

    ``cause`` keeps the backend exception. ``step`` names the cascade step
    that failed, and ``orphan_comment_id`` is set when a comment was
    persisted but could not be linked to its parent.
    """

    def __init__(
        self,
        message: str = "Store operation failed",
        cause: BaseException | None = None,
        step: str | None = None,
        orphan_comment_id: str | None = None,
    ):
        super().__init__(message, "store_failure")
        self.cause = cause
        self.step = step
        self.orphan_comment_id = orphan_comment_id


class FileTooLargeError(PostTownError):
    """Attachment exceeds the configured size limit."""

    def __init__(self, size: int, max_size: int):
        message = (
            f"File size ({size / 1024 / 1024:.2f} MB) exceeds "
            f"maximum allowed ({max_size / 1024 / 1024:.2f} MB)"
        )
        super().__init__(message, "file_too_large")
