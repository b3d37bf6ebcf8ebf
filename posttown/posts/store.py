"""Post/comment persistence contract and the in-memory store.

Every operation is scoped to one town. Lookups never cross towns: an id
that exists in another town resolves as absent.
"""

import asyncio
from datetime import UTC, datetime
from typing import Protocol
from uuid import uuid4

import structlog

from .errors import InvalidReferenceError, StoreFailureError
from .models import ChildOwner, Comment, Post, PostChanges


logger = structlog.get_logger(__name__)


def new_id() -> str:
    """Store-assigned identifier for posts and comments."""
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(UTC)


class PostCommentStore(Protocol):
    """Persistence operations the controller relies on.

    ``supports_atomic_link`` tells whether ``create_comment_linked`` writes
    the comment and the parent link in one atomic step.

    Post writes never round-trip a whole record: ``update_post`` touches only
    the fields set in ``PostChanges`` and ``set_post_file`` is a
    compare-and-set on the attachment reference alone, applied only while
    the post exists with the given owner.
    """

    supports_atomic_link: bool

    async def create_post(self, town_id: str, post: Post) -> Post: ...

    async def get_post(self, town_id: str, post_id: str) -> Post | None: ...

    async def update_post(
        self, town_id: str, post_id: str, changes: PostChanges
    ) -> Post | None: ...

    async def set_post_file(
        self,
        town_id: str,
        post_id: str,
        owner_id: str,
        file_id: str | None,
        expected_file_id: str | None,
    ) -> bool: ...

    async def delete_post(self, town_id: str, post_id: str) -> bool: ...

    async def get_all_posts(self, town_id: str) -> list[Post]: ...

    async def create_comment(self, town_id: str, comment: Comment) -> Comment: ...

    async def get_comment(self, town_id: str, comment_id: str) -> Comment | None: ...

    async def get_comments(self, town_id: str, ids: list[str]) -> list[Comment]: ...

    async def update_comment(
        self, town_id: str, comment: Comment
    ) -> Comment | None: ...

    async def delete_comment(self, town_id: str, comment_id: str) -> bool: ...

    async def append_child_id(
        self, town_id: str, owner_id: str, child_id: str, kind: ChildOwner
    ) -> None: ...

    async def delete_comments_under(self, town_id: str, post_id: str) -> int: ...

    async def tombstone_comments(
        self, town_id: str, ids: list[str], deleted_at: datetime
    ) -> int: ...

    async def create_comment_linked(
        self, town_id: str, comment: Comment
    ) -> Comment: ...


class InMemoryPostCommentStore:
    """Dict-backed store for development and tests.

    Each public coroutine yields to the event loop once before touching
    state, so concurrent callers interleave the way they would against a
    remote database. The read and the write of ``append_child_id`` happen
    without an await in between, which makes the append atomic.

    Args:
        atomic_link: When False, ``create_comment_linked`` raises
            StoreFailureError and callers fall back to a separate create
            and append.
    """

    def __init__(self, atomic_link: bool = True) -> None:
        self.supports_atomic_link = atomic_link
        self._posts: dict[str, dict[str, Post]] = {}
        self._comments: dict[str, dict[str, Comment]] = {}

    def _town_posts(self, town_id: str) -> dict[str, Post]:
        return self._posts.setdefault(town_id, {})

    def _town_comments(self, town_id: str) -> dict[str, Comment]:
        return self._comments.setdefault(town_id, {})

    # ==========================================================================
    # Posts
    # ==========================================================================

    async def create_post(self, town_id: str, post: Post) -> Post:
        await asyncio.sleep(0)
        now = utc_now()
        stored = post.copy()
        stored.post_id = new_id()
        stored.town_id = town_id
        stored.comment_ids = []
        stored.created_at = now
        stored.updated_at = now
        self._town_posts(town_id)[stored.post_id] = stored
        return stored.copy()

    async def get_post(self, town_id: str, post_id: str) -> Post | None:
        await asyncio.sleep(0)
        post = self._town_posts(town_id).get(post_id)
        return post.copy() if post else None

    async def update_post(
        self, town_id: str, post_id: str, changes: PostChanges
    ) -> Post | None:
        """Write only the fields set in ``changes``."""
        await asyncio.sleep(0)
        stored = self._town_posts(town_id).get(post_id)
        if stored is None:
            return None
        if changes.title is not None:
            stored.title = changes.title
        if changes.content is not None:
            stored.content = changes.content
        if changes.is_visible is not None:
            stored.is_visible = changes.is_visible
        stored.updated_at = utc_now()
        return stored.copy()

    async def set_post_file(
        self,
        town_id: str,
        post_id: str,
        owner_id: str,
        file_id: str | None,
        expected_file_id: str | None,
    ) -> bool:
        """Swap the attachment reference if it still is ``expected_file_id``."""
        await asyncio.sleep(0)
        stored = self._town_posts(town_id).get(post_id)
        if (
            stored is None
            or stored.owner_id != owner_id
            or stored.file_id != expected_file_id
        ):
            return False
        stored.file_id = file_id
        stored.updated_at = utc_now()
        return True

    async def delete_post(self, town_id: str, post_id: str) -> bool:
        await asyncio.sleep(0)
        return self._town_posts(town_id).pop(post_id, None) is not None

    async def get_all_posts(self, town_id: str) -> list[Post]:
        await asyncio.sleep(0)
        return [post.copy() for post in self._town_posts(town_id).values()]

    # ==========================================================================
    # Comments
    # ==========================================================================

    def _insert_comment(self, town_id: str, comment: Comment) -> Comment:
        now = utc_now()
        stored = comment.copy()
        stored.comment_id = new_id()
        stored.town_id = town_id
        stored.comment_ids = []
        stored.is_deleted = False
        stored.deleted_at = None
        stored.created_at = now
        stored.updated_at = now
        self._town_comments(town_id)[stored.comment_id] = stored
        return stored

    def _child_list(
        self, town_id: str, owner_id: str, kind: ChildOwner
    ) -> list[str] | None:
        if kind is ChildOwner.POST:
            owner = self._town_posts(town_id).get(owner_id)
        else:
            owner = self._town_comments(town_id).get(owner_id)
        return owner.comment_ids if owner is not None else None

    async def create_comment(self, town_id: str, comment: Comment) -> Comment:
        await asyncio.sleep(0)
        return self._insert_comment(town_id, comment).copy()

    async def get_comment(self, town_id: str, comment_id: str) -> Comment | None:
        await asyncio.sleep(0)
        comment = self._town_comments(town_id).get(comment_id)
        return comment.copy() if comment else None

    async def get_comments(self, town_id: str, ids: list[str]) -> list[Comment]:
        """Batch fetch in input order, omitting ids that do not exist."""
        await asyncio.sleep(0)
        comments = self._town_comments(town_id)
        return [comments[cid].copy() for cid in ids if cid in comments]

    async def update_comment(self, town_id: str, comment: Comment) -> Comment | None:
        await asyncio.sleep(0)
        stored = self._town_comments(town_id).get(comment.comment_id)
        if stored is None:
            return None
        stored.content = comment.content
        stored.updated_at = utc_now()
        return stored.copy()

    async def delete_comment(self, town_id: str, comment_id: str) -> bool:
        await asyncio.sleep(0)
        return self._town_comments(town_id).pop(comment_id, None) is not None

    async def append_child_id(
        self, town_id: str, owner_id: str, child_id: str, kind: ChildOwner
    ) -> None:
        await asyncio.sleep(0)
        children = self._child_list(town_id, owner_id, kind)
        if children is None:
            raise InvalidReferenceError(f"{kind.value} {owner_id} does not exist")
        children.append(child_id)

    async def delete_comments_under(self, town_id: str, post_id: str) -> int:
        await asyncio.sleep(0)
        comments = self._town_comments(town_id)
        doomed = [cid for cid, c in comments.items() if c.root_post_id == post_id]
        for cid in doomed:
            del comments[cid]
        return len(doomed)

    async def tombstone_comments(
        self, town_id: str, ids: list[str], deleted_at: datetime
    ) -> int:
        await asyncio.sleep(0)
        comments = self._town_comments(town_id)
        count = 0
        for cid in ids:
            comment = comments.get(cid)
            if comment is None or comment.is_deleted:
                continue
            comment.is_deleted = True
            comment.deleted_at = deleted_at
            comment.updated_at = deleted_at
            count += 1
        return count

    async def create_comment_linked(self, town_id: str, comment: Comment) -> Comment:
        """Insert the comment and link it to its owner in one step."""
        if not self.supports_atomic_link:
            raise StoreFailureError(
                "Store is configured without atomic linking (atomic_link=False)"
            )

        await asyncio.sleep(0)
        children = self._child_list(town_id, comment.link_owner_id, comment.owner_kind)
        if children is None:
            raise InvalidReferenceError(
                f"{comment.owner_kind.value} {comment.link_owner_id} does not exist"
            )
        stored = self._insert_comment(town_id, comment)
        children.append(stored.comment_id)
        return stored.copy()
