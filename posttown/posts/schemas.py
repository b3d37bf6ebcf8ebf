"""Pydantic schemas for the post/comment API.

Wire names are camelCase (``ownerID``, ``isVisible``, ``rootPostID``...).
Every response is wrapped in ``ResponseEnvelope``: ``{isOK, response,
message}``.
"""

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .models import (
    TOP_LEVEL_PARENT,
    Comment,
    CommentChanges,
    CommentTree,
    Coordinates,
    Post,
    PostChanges,
)


T = TypeVar("T")


class WireModel(BaseModel):
    """Base for camelCase wire models; accepts field names or aliases."""

    model_config = ConfigDict(populate_by_name=True)


# ==============================================================================
# Envelope
# ==============================================================================


class ResponseEnvelope(WireModel, Generic[T]):
    """Uniform response wrapper."""

    is_ok: bool = Field(alias="isOK")
    response: T | None = None
    message: str | None = None

    @classmethod
    def ok(cls, response: T | None = None) -> "ResponseEnvelope[T]":
        return cls(is_ok=True, response=response)


def error_envelope(message: str) -> dict[str, object]:
    """Envelope body for error responses."""
    return {"isOK": False, "message": message}


# ==============================================================================
# Request Schemas
# ==============================================================================


class CoordinatesSchema(WireModel):
    x: float
    y: float


class PostCreateBody(WireModel):
    """Post fields accepted on creation."""

    title: str = ""
    content: str = ""
    owner_id: str = Field(default="", alias="ownerID")
    is_visible: bool = Field(default=True, alias="isVisible")
    coordinates: CoordinatesSchema

    def to_entity(self) -> Post:
        return Post(
            title=self.title,
            content=self.content,
            owner_id=self.owner_id,
            is_visible=self.is_visible,
            coordinates=Coordinates(x=self.coordinates.x, y=self.coordinates.y),
        )


class CreatePostRequest(WireModel):
    post: PostCreateBody


class PostUpdateBody(WireModel):
    """Editable post fields; omitted fields stay unchanged."""

    title: str | None = None
    content: str | None = None
    is_visible: bool | None = Field(default=None, alias="isVisible")

    def to_changes(self) -> PostChanges:
        return PostChanges(
            title=self.title, content=self.content, is_visible=self.is_visible
        )


class UpdatePostRequest(WireModel):
    post: PostUpdateBody


class CommentCreateBody(WireModel):
    """Comment fields accepted on creation."""

    root_post_id: str = Field(alias="rootPostID")
    parent_comment_id: str = Field(default=TOP_LEVEL_PARENT, alias="parentCommentID")
    owner_id: str = Field(default="", alias="ownerID")
    content: str = ""

    def to_entity(self) -> Comment:
        return Comment(
            root_post_id=self.root_post_id,
            parent_comment_id=self.parent_comment_id or TOP_LEVEL_PARENT,
            owner_id=self.owner_id,
            content=self.content,
        )


class CreateCommentRequest(WireModel):
    comment: CommentCreateBody


class CommentUpdateBody(WireModel):
    content: str | None = None

    def to_changes(self) -> CommentChanges:
        return CommentChanges(content=self.content)


class UpdateCommentRequest(WireModel):
    comment: CommentUpdateBody


# ==============================================================================
# Response Schemas
# ==============================================================================


class PostResponse(WireModel):
    """Post as returned by the API."""

    post_id: str = Field(alias="postID")
    title: str
    content: str
    owner_id: str = Field(alias="ownerID")
    is_visible: bool = Field(alias="isVisible")
    coordinates: CoordinatesSchema
    comment_ids: list[str] = Field(default_factory=list, alias="commentIDs")
    file_id: str | None = Field(default=None, alias="fileID")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    @classmethod
    def from_entity(cls, post: Post) -> "PostResponse":
        return cls(
            post_id=post.post_id,
            title=post.title,
            content=post.content,
            owner_id=post.owner_id,
            is_visible=post.is_visible,
            coordinates=CoordinatesSchema(
                x=post.coordinates.x, y=post.coordinates.y
            ),
            comment_ids=list(post.comment_ids),
            file_id=post.file_id,
            created_at=post.created_at,
            updated_at=post.updated_at,
        )


class CommentResponse(WireModel):
    """Comment as returned by the API."""

    comment_id: str = Field(alias="commentID")
    root_post_id: str = Field(alias="rootPostID")
    parent_comment_id: str = Field(alias="parentCommentID")
    owner_id: str = Field(alias="ownerID")
    content: str
    is_deleted: bool = Field(default=False, alias="isDeleted")
    deleted_at: datetime | None = Field(default=None, alias="deletedAt")
    comment_ids: list[str] = Field(default_factory=list, alias="commentIDs")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    @classmethod
    def from_entity(cls, comment: Comment) -> "CommentResponse":
        return cls(**cls._fields_of(comment))

    @staticmethod
    def _fields_of(comment: Comment) -> dict[str, object]:
        return {
            "comment_id": comment.comment_id,
            "root_post_id": comment.root_post_id,
            "parent_comment_id": comment.parent_comment_id,
            "owner_id": comment.owner_id,
            "content": comment.content,
            "is_deleted": comment.is_deleted,
            "deleted_at": comment.deleted_at,
            "comment_ids": list(comment.comment_ids),
            "created_at": comment.created_at,
            "updated_at": comment.updated_at,
        }


class CommentTreeResponse(CommentResponse):
    """Comment with its replies nested under ``children``."""

    children: list["CommentTreeResponse"] = Field(default_factory=list)

    @classmethod
    def from_forest(cls, forest: list[CommentTree]) -> list["CommentTreeResponse"]:
        """Convert a forest without recursing over its depth."""
        roots: list[CommentTreeResponse] = []
        stack: list[tuple[CommentTree, list[CommentTreeResponse]]] = [
            (tree, roots) for tree in reversed(forest)
        ]
        while stack:
            tree, target = stack.pop()
            node = cls(**cls._fields_of(tree.comment))
            target.append(node)
            stack.extend((child, node.children) for child in reversed(tree.children))
        return roots


class FileDeletedResponse(WireModel):
    file_id: str = Field(alias="fileID")
    deleted: bool
