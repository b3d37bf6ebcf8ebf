"""Database models for town posts and threaded comments.

Cassandra table definitions for:
- Posts: one partition per town, clustered by post id
- Comments: one partition per town, clustered by comment id
- Comments by post: lookup used to cascade-delete a post's whole thread

Threads are reference-linked: a post holds the ordered ids of its top-level
comments and each comment holds the ordered ids of its replies. Both lists
are CQL ``LIST<TEXT>`` columns so appends are single-cell, atomic updates.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


# parent_comment_id value for comments attached directly to the post
TOP_LEVEL_PARENT = ""


class ChildOwner(str, Enum):
    """Kind of document whose child-id list receives a new comment."""

    POST = "post"
    COMMENT = "comment"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

POST_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.posts (
    town_id TEXT,
    post_id TEXT,
    title TEXT,
    content TEXT,
    owner_id TEXT,
    is_visible BOOLEAN,
    x DOUBLE,
    y DOUBLE,
    comment_ids LIST<TEXT>,
    file_id TEXT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY ((town_id), post_id)
)
"""

COMMENT_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.comments (
    town_id TEXT,
    comment_id TEXT,
    root_post_id TEXT,
    parent_comment_id TEXT,
    owner_id TEXT,
    content TEXT,
    is_deleted BOOLEAN,
    deleted_at TIMESTAMP,
    comment_ids LIST<TEXT>,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY ((town_id), comment_id)
)
"""

# Every comment of a thread, regardless of depth, for cascading deletes
COMMENTS_BY_POST_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.comments_by_post (
    town_id TEXT,
    root_post_id TEXT,
    comment_id TEXT,
    PRIMARY KEY ((town_id, root_post_id), comment_id)
)
"""

POSTS_TABLES_CQL = [
    POST_TABLE_CQL,
    COMMENT_TABLE_CQL,
    COMMENTS_BY_POST_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass(frozen=True)
class Coordinates:
    """Position of a post in the town map."""

    x: float
    y: float


@dataclass
class Post:
    """Spatially-anchored post."""

    title: str
    content: str
    owner_id: str
    coordinates: Coordinates
    is_visible: bool = True
    post_id: str = ""
    town_id: str = ""
    comment_ids: list[str] = field(default_factory=list)
    file_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "Post":
        """Create Post from Cassandra row."""
        return cls(
            post_id=row.post_id,
            town_id=row.town_id,
            title=row.title or "",
            content=row.content or "",
            owner_id=row.owner_id,
            is_visible=row.is_visible if row.is_visible is not None else True,
            coordinates=Coordinates(x=row.x or 0.0, y=row.y or 0.0),
            comment_ids=list(row.comment_ids or []),
            file_id=row.file_id,
            created_at=row.created_at,
            updated_at=row.updated_at or row.created_at,
        )

    def copy(self) -> "Post":
        """Detached copy; the child-id list is not shared."""
        return replace(self, comment_ids=list(self.comment_ids))


@dataclass
class Comment:
    """Comment attached to a post or to another comment."""

    root_post_id: str
    owner_id: str
    content: str
    parent_comment_id: str = TOP_LEVEL_PARENT
    comment_id: str = ""
    town_id: str = ""
    is_deleted: bool = False
    deleted_at: datetime | None = None
    comment_ids: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_top_level(self) -> bool:
        """True when the comment hangs directly off the post."""
        return self.parent_comment_id == TOP_LEVEL_PARENT

    @property
    def owner_kind(self) -> ChildOwner:
        """Kind of document that lists this comment as a child."""
        return ChildOwner.POST if self.is_top_level else ChildOwner.COMMENT

    @property
    def link_owner_id(self) -> str:
        """Id of the document that lists this comment as a child."""
        return self.root_post_id if self.is_top_level else self.parent_comment_id

    @classmethod
    def from_row(cls, row: Any) -> "Comment":
        """Create Comment from Cassandra row."""
        return cls(
            comment_id=row.comment_id,
            town_id=row.town_id,
            root_post_id=row.root_post_id,
            parent_comment_id=row.parent_comment_id or TOP_LEVEL_PARENT,
            owner_id=row.owner_id,
            content=row.content or "",
            is_deleted=row.is_deleted or False,
            deleted_at=row.deleted_at,
            comment_ids=list(row.comment_ids or []),
            created_at=row.created_at,
            updated_at=row.updated_at or row.created_at,
        )

    def copy(self) -> "Comment":
        """Detached copy; the child-id list is not shared."""
        return replace(self, comment_ids=list(self.comment_ids))


@dataclass
class CommentTree:
    """Materialized view of a comment and its replies. Never persisted."""

    comment: Comment
    children: list["CommentTree"] = field(default_factory=list)

    @property
    def comment_id(self) -> str:
        return self.comment.comment_id


@dataclass
class PostChanges:
    """Mutable post fields; None leaves the field untouched."""

    title: str | None = None
    content: str | None = None
    is_visible: bool | None = None


@dataclass
class CommentChanges:
    """Mutable comment fields."""

    content: str | None = None
