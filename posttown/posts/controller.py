"""Post/comment orchestration.

Composes the store, the authorization guard, the moderation filter, the
tree builder and the file store into the use cases served by the API.

Mutations follow one order: fetch the target, check ownership, sanitize
text, persist. Reads go straight to the store.
"""

from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import TypeVar

import structlog

from posttown.files import FileMetadata, FileStore, StoredFile
from posttown.moderation import ModerationFilter
from posttown.sessions import SessionResolver

from .authorization import AuthorizationGuard
from .errors import (
    FileTooLargeError,
    InvalidReferenceError,
    NotFoundError,
    PermissionDeniedError,
    StoreFailureError,
)
from .models import Comment, CommentChanges, CommentTree, Post, PostChanges
from .store import PostCommentStore, utc_now
from .tree import CommentTreeBuilder


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class PostTownController:
    """Entry point for every post, comment and attachment operation of a town.

    Built per request from shared collaborators; holds no cache and takes
    no locks. Sibling comments created concurrently rely on the store's
    atomic child-id append.
    """

    # Compare-and-set rounds before an attach gives up on a busy post
    FILE_SWAP_ATTEMPTS = 3

    def __init__(
        self,
        town_id: str,
        store: PostCommentStore,
        sessions: SessionResolver,
        files: FileStore,
        moderation: ModerationFilter,
        max_file_size: int | None = None,
    ) -> None:
        self.town_id = town_id
        self.store = store
        self.files = files
        self.moderation = moderation
        self.max_file_size = max_file_size
        self.guard = AuthorizationGuard(sessions)
        self.tree_builder = CommentTreeBuilder(store, town_id)

    async def _claim_owner(self, owner_id: str, token: str | None) -> str:
        """Owner for a new post or comment.

        Without a token the submitted owner id is taken as is. With one, the
        token must resolve and may not contradict the submitted owner.
        """
        if token is None:
            return owner_id

        identity = await self.guard.resolve(token)
        if owner_id and owner_id != identity:
            raise PermissionDeniedError("Owner does not match the session")
        return identity

    def _clean(self, text: str | None) -> str | None:
        return None if text is None else self.moderation.clean(text)

    async def _require_post(self, post_id: str) -> Post:
        post = await self.store.get_post(self.town_id, post_id)
        if post is None:
            raise NotFoundError(f"Post {post_id} not found")
        return post

    async def _require_comment(self, comment_id: str) -> Comment:
        comment = await self.store.get_comment(self.town_id, comment_id)
        if comment is None or comment.is_deleted:
            raise NotFoundError(f"Comment {comment_id} not found")
        return comment

    # ==========================================================================
    # Posts
    # ==========================================================================

    async def create_post(self, post: Post, token: str | None = None) -> Post:
        """Sanitize and persist a new post.

        No collision or duplicate check is made against other posts.
        """
        owner_id = await self._claim_owner(post.owner_id, token)
        draft = replace(
            post.copy(),
            owner_id=owner_id,
            title=self.moderation.clean(post.title),
            content=self.moderation.clean(post.content),
        )

        created = await self.store.create_post(self.town_id, draft)
        logger.info(
            "post_created",
            town_id=self.town_id,
            post_id=created.post_id,
            owner_id=created.owner_id,
        )
        return created

    async def get_post(self, post_id: str) -> Post:
        return await self._require_post(post_id)

    async def get_all_posts(self) -> list[Post]:
        return await self.store.get_all_posts(self.town_id)

    async def update_post(
        self, post_id: str, changes: PostChanges, token: str | None
    ) -> Post:
        """Apply owner edits to title, content and visibility.

        Identity, owner, coordinates, comment list and attachment are kept.
        """
        post = await self._require_post(post_id)
        await self.guard.authorize(token, post.owner_id)

        sanitized = PostChanges(
            title=self._clean(changes.title),
            content=self._clean(changes.content),
            is_visible=changes.is_visible,
        )

        updated = await self.store.update_post(self.town_id, post_id, sanitized)
        if updated is None:
            raise NotFoundError(f"Post {post_id} not found")

        logger.info("post_updated", town_id=self.town_id, post_id=post_id)
        return updated

    async def _cascade_step(self, step: str, action: Callable[[], Awaitable[T]]) -> T:
        try:
            return await action()
        except StoreFailureError as e:
            logger.error(
                "post_delete_step_failed",
                town_id=self.town_id,
                step=step,
                error=e.message,
            )
            raise StoreFailureError(
                f"Deleting post failed while removing {step}",
                cause=e.cause or e,
                step=step,
            ) from e

    async def delete_post(self, post_id: str, token: str | None) -> Post | None:
        """Delete a post with its whole thread and its attachment.

        Order: comments, then the file, then the post record. Each step is
        idempotent, so a failed delete can be retried as is. Deleting a post
        that is already gone returns None.
        """
        post = await self.store.get_post(self.town_id, post_id)
        if post is None:
            logger.debug("post_already_deleted", town_id=self.town_id, post_id=post_id)
            return None

        await self.guard.authorize(token, post.owner_id)

        removed = await self._cascade_step(
            "comments",
            lambda: self.store.delete_comments_under(self.town_id, post_id),
        )
        if post.file_id:
            file_id = post.file_id
            await self._cascade_step("file", lambda: self.files.delete(file_id))
        await self._cascade_step(
            "post", lambda: self.store.delete_post(self.town_id, post_id)
        )

        logger.info(
            "post_deleted",
            town_id=self.town_id,
            post_id=post_id,
            comments_removed=removed,
            had_file=bool(post.file_id),
        )
        return post

    # ==========================================================================
    # Comments
    # ==========================================================================

    async def _validate_links(self, comment: Comment) -> None:
        root = await self.store.get_post(self.town_id, comment.root_post_id)
        if root is None:
            raise InvalidReferenceError(f"Post {comment.root_post_id} does not exist")

        if comment.is_top_level:
            return

        parent = await self.store.get_comment(self.town_id, comment.parent_comment_id)
        if parent is None or parent.is_deleted:
            raise InvalidReferenceError(
                f"Comment {comment.parent_comment_id} does not exist"
            )
        if parent.root_post_id != comment.root_post_id:
            raise InvalidReferenceError(
                f"Comment {comment.parent_comment_id} belongs to another post"
            )

    async def create_comment(
        self, comment: Comment, token: str | None = None
    ) -> Comment:
        """Persist a comment and link it under its post or parent comment.

        Raises:
            InvalidReferenceError: root post or parent comment unusable.
            StoreFailureError: the link write failed after the comment was
                stored; ``orphan_comment_id`` names it for ``relink_comment``.
        """
        owner_id = await self._claim_owner(comment.owner_id, token)
        await self._validate_links(comment)

        draft = replace(
            comment.copy(),
            owner_id=owner_id,
            content=self.moderation.clean(comment.content),
        )

        if self.store.supports_atomic_link:
            created = await self.store.create_comment_linked(self.town_id, draft)
        else:
            created = await self.store.create_comment(self.town_id, draft)
            try:
                await self.store.append_child_id(
                    self.town_id,
                    created.link_owner_id,
                    created.comment_id,
                    created.owner_kind,
                )
            except (StoreFailureError, InvalidReferenceError) as e:
                logger.error(
                    "comment_link_failed",
                    town_id=self.town_id,
                    comment_id=created.comment_id,
                    owner_id=created.link_owner_id,
                    error=e.message,
                )
                raise StoreFailureError(
                    "Comment was stored but could not be linked",
                    cause=getattr(e, "cause", None) or e,
                    step="link",
                    orphan_comment_id=created.comment_id,
                ) from e

        logger.info(
            "comment_created",
            town_id=self.town_id,
            comment_id=created.comment_id,
            root_post_id=created.root_post_id,
            parent_comment_id=created.parent_comment_id or None,
        )
        return created

    async def relink_comment(self, comment_id: str) -> Comment:
        """Link a stored comment into its owner's child list if it is missing.

        Safe to call any number of times.
        """
        comment = await self._require_comment(comment_id)

        if comment.is_top_level:
            owner = await self.store.get_post(self.town_id, comment.root_post_id)
        else:
            owner = await self.store.get_comment(
                self.town_id, comment.parent_comment_id
            )
        if owner is None:
            raise InvalidReferenceError(
                f"{comment.owner_kind.value} {comment.link_owner_id} does not exist"
            )

        if comment_id not in owner.comment_ids:
            await self.store.append_child_id(
                self.town_id, comment.link_owner_id, comment_id, comment.owner_kind
            )
            logger.info(
                "comment_relinked",
                town_id=self.town_id,
                comment_id=comment_id,
                owner_id=comment.link_owner_id,
            )
        return comment

    async def get_comment(self, comment_id: str) -> Comment:
        return await self._require_comment(comment_id)

    async def get_comment_tree(self, post_id: str) -> list[CommentTree]:
        post = await self._require_post(post_id)
        return await self.tree_builder.build_forest(
            post.comment_ids, root_post_id=post.post_id
        )

    async def update_comment(
        self, comment_id: str, changes: CommentChanges, token: str | None
    ) -> Comment:
        comment = await self._require_comment(comment_id)
        await self.guard.authorize(token, comment.owner_id)

        if changes.content is not None:
            comment.content = self.moderation.clean(changes.content)

        updated = await self.store.update_comment(self.town_id, comment)
        if updated is None:
            raise NotFoundError(f"Comment {comment_id} not found")

        logger.info("comment_updated", town_id=self.town_id, comment_id=comment_id)
        return updated

    async def _subtree_ids(self, comment: Comment) -> list[str]:
        """Ids of a comment and every reply below it, breadth first."""
        ids = [comment.comment_id]
        visited = {comment.comment_id}
        frontier = list(comment.comment_ids)

        while frontier:
            batch = [cid for cid in dict.fromkeys(frontier) if cid not in visited]
            frontier = []
            if not batch:
                break
            for child in await self.store.get_comments(self.town_id, batch):
                if child.root_post_id != comment.root_post_id:
                    continue
                visited.add(child.comment_id)
                ids.append(child.comment_id)
                frontier.extend(child.comment_ids)

        return ids

    async def delete_comment(
        self, comment_id: str, token: str | None
    ) -> Comment | None:
        """Tombstone a comment together with all of its replies.

        Deleting a comment that is already gone returns None.
        """
        comment = await self.store.get_comment(self.town_id, comment_id)
        if comment is None or comment.is_deleted:
            logger.debug(
                "comment_already_deleted", town_id=self.town_id, comment_id=comment_id
            )
            return None

        await self.guard.authorize(token, comment.owner_id)

        ids = await self._subtree_ids(comment)
        deleted_at = utc_now()
        await self.store.tombstone_comments(self.town_id, ids, deleted_at)

        logger.info(
            "comment_deleted",
            town_id=self.town_id,
            comment_id=comment_id,
            subtree_size=len(ids),
        )
        return replace(
            comment, is_deleted=True, deleted_at=deleted_at, updated_at=deleted_at
        )

    # ==========================================================================
    # Attachments
    # ==========================================================================

    async def attach_file(
        self,
        post_id: str,
        content: bytes,
        metadata: FileMetadata,
        token: str | None,
    ) -> Post:
        """Store an attachment for a post, replacing any previous one."""
        post = await self._require_post(post_id)
        await self.guard.authorize(token, post.owner_id)

        if self.max_file_size is not None and len(content) > self.max_file_size:
            raise FileTooLargeError(len(content), self.max_file_size)

        file_id = await self.files.store(content, metadata)

        # Compare-and-set on the reference; retry when a concurrent attach won
        previous = post.file_id
        for _ in range(self.FILE_SWAP_ATTEMPTS):
            if await self.store.set_post_file(
                self.town_id, post_id, post.owner_id, file_id, previous
            ):
                break
            current = await self.store.get_post(self.town_id, post_id)
            if current is None:
                await self.files.delete(file_id)
                raise NotFoundError(f"Post {post_id} not found")
            previous = current.file_id
        else:
            await self.files.delete(file_id)
            raise StoreFailureError(
                f"Attachment of post {post_id} kept changing", step="file"
            )

        if previous and previous != file_id:
            try:
                await self.files.delete(previous)
            except StoreFailureError as e:
                logger.warning(
                    "previous_file_delete_failed",
                    town_id=self.town_id,
                    post_id=post_id,
                    file_id=previous,
                    error=e.message,
                )

        logger.info(
            "file_attached",
            town_id=self.town_id,
            post_id=post_id,
            file_id=file_id,
            size=len(content),
        )
        return await self._require_post(post_id)

    async def get_file(self, post_id: str) -> StoredFile:
        post = await self._require_post(post_id)
        if not post.file_id:
            raise NotFoundError(f"Post {post_id} has no file")
        return await self.files.fetch(post.file_id)

    async def delete_file(self, post_id: str, token: str | None) -> tuple[str, bool]:
        """Remove a post's attachment and clear its reference.

        Returns:
            The file id and whether the file store still held it.
        """
        post = await self._require_post(post_id)
        await self.guard.authorize(token, post.owner_id)

        file_id = post.file_id
        if not file_id:
            raise NotFoundError(f"Post {post_id} has no file")

        # Clear the reference first so no post points at a removed blob
        if not await self.store.set_post_file(
            self.town_id, post_id, post.owner_id, None, file_id
        ):
            raise NotFoundError(
                f"File {file_id} is no longer attached to post {post_id}"
            )
        deleted = await self.files.delete(file_id)

        logger.info(
            "file_deleted",
            town_id=self.town_id,
            post_id=post_id,
            file_id=file_id,
            existed=deleted,
        )
        return file_id, deleted
