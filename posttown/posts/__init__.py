"""Town posts and threaded comments.

Provides:
- Spatially-anchored posts with ownership-gated edits
- Reference-linked comment threads assembled into trees on read
- Cascading deletes and post attachments

Note: Router and controller are not exported here to avoid circular imports.
Import directly from posttown.posts.router / posttown.posts.controller.
"""

from .errors import (
    FileTooLargeError,
    InvalidReferenceError,
    NotFoundError,
    PermissionDeniedError,
    PostTownError,
    StoreFailureError,
)
from .models import (
    POSTS_TABLES_CQL,
    TOP_LEVEL_PARENT,
    ChildOwner,
    Comment,
    CommentChanges,
    CommentTree,
    Coordinates,
    Post,
    PostChanges,
)
from .store import InMemoryPostCommentStore, PostCommentStore


__all__ = [
    "POSTS_TABLES_CQL",
    "TOP_LEVEL_PARENT",
    "ChildOwner",
    "Comment",
    "CommentChanges",
    "CommentTree",
    "Coordinates",
    "FileTooLargeError",
    "InMemoryPostCommentStore",
    "InvalidReferenceError",
    "NotFoundError",
    "PermissionDeniedError",
    "Post",
    "PostChanges",
    "PostCommentStore",
    "PostTownError",
    "StoreFailureError",
]
