"""Cassandra-backed post/comment store.

Uses prepared statements executed through ``session.aexecute()``. Child-id
lists are CQL lists, so linking a comment is a single-cell append
(``comment_ids = comment_ids + ?``) and never a read-modify-write.

Every single-row update is a lightweight transaction, since a plain CQL
UPDATE on a missing row creates it. The one exception is the append inside
the create-and-link batch, which cannot carry a condition across tables: if
its owner was deleted meanwhile, the append leaves a row with keys and
``comment_ids`` only. Reads treat such rows (``owner_id`` null) as absent and
sweep them.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog
from cassandra.query import BatchStatement, BatchType

from .errors import InvalidReferenceError, StoreFailureError
from .models import ChildOwner, Comment, Post, PostChanges
from .store import new_id, utc_now


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = structlog.get_logger(__name__)


class CassandraPostCommentStore:
    """Post/comment persistence on Cassandra.

    Writing a comment and linking it to its parent goes through a logged
    batch, so ``supports_atomic_link`` is always True here.
    """

    supports_atomic_link = True

    # Rows per batch when cascading deletes over a whole thread
    DELETE_BATCH_SIZE = 100

    def __init__(self, session: "Session", keyspace: str) -> None:
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._update_post_statements: dict[tuple[str, ...], Any] = {}
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        # Posts
        self._insert_post = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.posts
            (town_id, post_id, title, content, owner_id, is_visible, x, y,
             comment_ids, file_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        self._get_post = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.posts
            WHERE town_id = ? AND post_id = ?
        """)

        self._get_all_posts = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.posts
            WHERE town_id = ?
        """)

        # Conditioned on the owner so a row that is gone is never recreated
        self._set_post_file = self.session.prepare(f"""
            UPDATE {self.keyspace}.posts
            SET file_id = ?, updated_at = ?
            WHERE town_id = ? AND post_id = ?
            IF owner_id = ? AND file_id = ?
        """)

        # Rows left holding only keys and a child list (see _sweep_orphan_post)
        self._delete_orphan_post = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.posts
            WHERE town_id = ? AND post_id = ?
            IF owner_id = null
        """)

        self._delete_post = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.posts
            WHERE town_id = ? AND post_id = ?
            IF EXISTS
        """)

        self._append_post_child = self.session.prepare(f"""
            UPDATE {self.keyspace}.posts
            SET comment_ids = comment_ids + ?
            WHERE town_id = ? AND post_id = ?
            IF EXISTS
        """)

        # Batched variant without the condition (LWT is not allowed in
        # multi-table batches)
        self._append_post_child_unconditional = self.session.prepare(f"""
            UPDATE {self.keyspace}.posts
            SET comment_ids = comment_ids + ?
            WHERE town_id = ? AND post_id = ?
        """)

        # Comments
        self._insert_comment = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.comments
            (town_id, comment_id, root_post_id, parent_comment_id, owner_id,
             content, is_deleted, deleted_at, comment_ids, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        self._insert_comment_by_post = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.comments_by_post
            (town_id, root_post_id, comment_id)
            VALUES (?, ?, ?)
        """)

        self._get_comment = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.comments
            WHERE town_id = ? AND comment_id = ?
        """)

        self._get_comments = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.comments
            WHERE town_id = ? AND comment_id IN ?
        """)

        self._update_comment = self.session.prepare(f"""
            UPDATE {self.keyspace}.comments
            SET content = ?, updated_at = ?
            WHERE town_id = ? AND comment_id = ?
            IF EXISTS
        """)

        self._tombstone_comment = self.session.prepare(f"""
            UPDATE {self.keyspace}.comments
            SET is_deleted = true, deleted_at = ?, updated_at = ?
            WHERE town_id = ? AND comment_id = ?
            IF is_deleted = false
        """)

        self._delete_orphan_comment = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.comments
            WHERE town_id = ? AND comment_id = ?
            IF owner_id = null
        """)

        self._delete_comment = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.comments
            WHERE town_id = ? AND comment_id = ?
        """)

        self._delete_comment_by_post = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.comments_by_post
            WHERE town_id = ? AND root_post_id = ? AND comment_id = ?
        """)

        self._get_comment_ids_by_post = self.session.prepare(f"""
            SELECT comment_id FROM {self.keyspace}.comments_by_post
            WHERE town_id = ? AND root_post_id = ?
        """)

        self._delete_comments_by_post = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.comments_by_post
            WHERE town_id = ? AND root_post_id = ?
        """)

        self._append_comment_child = self.session.prepare(f"""
            UPDATE {self.keyspace}.comments
            SET comment_ids = comment_ids + ?
            WHERE town_id = ? AND comment_id = ?
            IF EXISTS
        """)

        self._append_comment_child_unconditional = self.session.prepare(f"""
            UPDATE {self.keyspace}.comments
            SET comment_ids = comment_ids + ?
            WHERE town_id = ? AND comment_id = ?
        """)

    async def _execute(
        self, operation: str, statement: Any, params: Sequence | None = None
    ):
        """Run a statement, wrapping driver errors in StoreFailureError."""
        try:
            return await self.session.aexecute(statement, params)
        except Exception as e:
            logger.exception(
                "cassandra_operation_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StoreFailureError(
                f"Store operation '{operation}' failed", cause=e
            ) from e

    @staticmethod
    def _first(result: Any) -> Any:
        return result.one() if result is not None else None

    # ==========================================================================
    # Posts
    # ==========================================================================

    async def create_post(self, town_id: str, post: Post) -> Post:
        now = utc_now()
        stored = post.copy()
        stored.post_id = new_id()
        stored.town_id = town_id
        stored.comment_ids = []
        stored.created_at = now
        stored.updated_at = now

        await self._execute(
            "create_post",
            self._insert_post,
            [
                town_id,
                stored.post_id,
                stored.title,
                stored.content,
                stored.owner_id,
                stored.is_visible,
                stored.coordinates.x,
                stored.coordinates.y,
                [],
                stored.file_id,
                stored.created_at,
                stored.updated_at,
            ],
        )
        return stored

    async def _sweep_orphan_post(self, town_id: str, post_id: str) -> None:
        """Remove a post row that has keys but no owner, with its thread.

        Unconditional appends inside a link batch recreate a post that was
        deleted concurrently as such a row. It is never a live post.
        """
        logger.warning("orphan_post_row_swept", town_id=town_id, post_id=post_id)
        await self.delete_comments_under(town_id, post_id)
        await self._execute(
            "sweep_orphan_post", self._delete_orphan_post, [town_id, post_id]
        )

    async def get_post(self, town_id: str, post_id: str) -> Post | None:
        result = await self._execute("get_post", self._get_post, [town_id, post_id])
        row = self._first(result)
        if row is None:
            return None
        if row.owner_id is None:
            await self._sweep_orphan_post(town_id, post_id)
            return None
        return Post.from_row(row)

    async def get_all_posts(self, town_id: str) -> list[Post]:
        """All posts of a town in clustering (post id) order."""
        result = await self._execute("get_all_posts", self._get_all_posts, [town_id])
        rows = list(result)
        for row in rows:
            if row.owner_id is None:
                await self._sweep_orphan_post(town_id, row.post_id)
        return [Post.from_row(row) for row in rows if row.owner_id is not None]

    def _update_post_statement(self, columns: tuple[str, ...]) -> Any:
        """Prepared update writing ``columns`` plus ``updated_at``."""
        statement = self._update_post_statements.get(columns)
        if statement is None:
            assignments = ", ".join(f"{c} = ?" for c in (*columns, "updated_at"))
            statement = self.session.prepare(f"""
                UPDATE {self.keyspace}.posts
                SET {assignments}
                WHERE town_id = ? AND post_id = ?
                IF EXISTS
            """)
            self._update_post_statements[columns] = statement
        return statement

    async def update_post(
        self, town_id: str, post_id: str, changes: PostChanges
    ) -> Post | None:
        """Write only the fields set in ``changes``."""
        values = {
            "title": changes.title,
            "content": changes.content,
            "is_visible": changes.is_visible,
        }
        columns = tuple(name for name, value in values.items() if value is not None)

        result = await self._execute(
            "update_post",
            self._update_post_statement(columns),
            [*(values[c] for c in columns), utc_now(), town_id, post_id],
        )
        if not result.was_applied:
            return None
        return await self.get_post(town_id, post_id)

    async def set_post_file(
        self,
        town_id: str,
        post_id: str,
        owner_id: str,
        file_id: str | None,
        expected_file_id: str | None,
    ) -> bool:
        result = await self._execute(
            "set_post_file",
            self._set_post_file,
            [file_id, utc_now(), town_id, post_id, owner_id, expected_file_id],
        )
        return bool(result.was_applied)

    async def delete_post(self, town_id: str, post_id: str) -> bool:
        result = await self._execute(
            "delete_post", self._delete_post, [town_id, post_id]
        )
        return bool(result.was_applied)

    # ==========================================================================
    # Comments
    # ==========================================================================

    def _new_comment(self, town_id: str, comment: Comment) -> Comment:
        now = utc_now()
        stored = comment.copy()
        stored.comment_id = new_id()
        stored.town_id = town_id
        stored.comment_ids = []
        stored.is_deleted = False
        stored.deleted_at = None
        stored.created_at = now
        stored.updated_at = now
        return stored

    def _comment_params(self, comment: Comment) -> list[Any]:
        return [
            comment.town_id,
            comment.comment_id,
            comment.root_post_id,
            comment.parent_comment_id,
            comment.owner_id,
            comment.content,
            comment.is_deleted,
            comment.deleted_at,
            [],
            comment.created_at,
            comment.updated_at,
        ]

    async def create_comment(self, town_id: str, comment: Comment) -> Comment:
        stored = self._new_comment(town_id, comment)

        batch = BatchStatement(batch_type=BatchType.LOGGED)
        batch.add(self._insert_comment, self._comment_params(stored))
        batch.add(
            self._insert_comment_by_post,
            [town_id, stored.root_post_id, stored.comment_id],
        )
        await self._execute("create_comment", batch)
        return stored

    async def create_comment_linked(self, town_id: str, comment: Comment) -> Comment:
        """Insert the comment, its thread index row and the parent link.

        The caller validates that the owner exists; the batch itself cannot
        carry a condition across tables.
        """
        stored = self._new_comment(town_id, comment)

        if stored.owner_kind is ChildOwner.POST:
            append = self._append_post_child_unconditional
        else:
            append = self._append_comment_child_unconditional

        batch = BatchStatement(batch_type=BatchType.LOGGED)
        batch.add(self._insert_comment, self._comment_params(stored))
        batch.add(
            self._insert_comment_by_post,
            [town_id, stored.root_post_id, stored.comment_id],
        )
        batch.add(append, [[stored.comment_id], town_id, stored.link_owner_id])
        await self._execute("create_comment_linked", batch)
        return stored

    async def _sweep_orphan_comment(self, town_id: str, comment_id: str) -> None:
        """Remove a comment row recreated by an append after its delete."""
        logger.warning(
            "orphan_comment_row_swept", town_id=town_id, comment_id=comment_id
        )
        await self._execute(
            "sweep_orphan_comment",
            self._delete_orphan_comment,
            [town_id, comment_id],
        )

    async def get_comment(self, town_id: str, comment_id: str) -> Comment | None:
        result = await self._execute(
            "get_comment", self._get_comment, [town_id, comment_id]
        )
        row = self._first(result)
        if row is None:
            return None
        if row.owner_id is None:
            await self._sweep_orphan_comment(town_id, comment_id)
            return None
        return Comment.from_row(row)

    async def get_comments(self, town_id: str, ids: list[str]) -> list[Comment]:
        """Batch fetch in input order, omitting ids that do not exist."""
        if not ids:
            return []

        result = await self._execute(
            "get_comments", self._get_comments, [town_id, list(dict.fromkeys(ids))]
        )
        by_id: dict[str, Comment] = {}
        for row in result:
            if row.owner_id is None:
                await self._sweep_orphan_comment(town_id, row.comment_id)
                continue
            by_id[row.comment_id] = Comment.from_row(row)
        return [by_id[cid].copy() for cid in ids if cid in by_id]

    async def update_comment(self, town_id: str, comment: Comment) -> Comment | None:
        result = await self._execute(
            "update_comment",
            self._update_comment,
            [comment.content, utc_now(), town_id, comment.comment_id],
        )
        if not result.was_applied:
            return None
        return await self.get_comment(town_id, comment.comment_id)

    async def delete_comment(self, town_id: str, comment_id: str) -> bool:
        existing = await self.get_comment(town_id, comment_id)
        if existing is None:
            return False

        batch = BatchStatement(batch_type=BatchType.LOGGED)
        batch.add(self._delete_comment, [town_id, comment_id])
        batch.add(
            self._delete_comment_by_post,
            [town_id, existing.root_post_id, comment_id],
        )
        await self._execute("delete_comment", batch)
        return True

    async def append_child_id(
        self, town_id: str, owner_id: str, child_id: str, kind: ChildOwner
    ) -> None:
        statement = (
            self._append_post_child
            if kind is ChildOwner.POST
            else self._append_comment_child
        )
        result = await self._execute(
            "append_child_id", statement, [[child_id], town_id, owner_id]
        )
        if not result.was_applied:
            raise InvalidReferenceError(f"{kind.value} {owner_id} does not exist")

    async def delete_comments_under(self, town_id: str, post_id: str) -> int:
        """Remove every comment of a thread, at any depth."""
        result = await self._execute(
            "delete_comments_under",
            self._get_comment_ids_by_post,
            [town_id, post_id],
        )
        ids = [row.comment_id for row in result]

        for start in range(0, len(ids), self.DELETE_BATCH_SIZE):
            batch = BatchStatement(batch_type=BatchType.UNLOGGED)
            for comment_id in ids[start : start + self.DELETE_BATCH_SIZE]:
                batch.add(self._delete_comment, [town_id, comment_id])
            await self._execute("delete_comments_under", batch)

        # Index partition last so a retry still finds unfinished work
        await self._execute(
            "delete_comments_under",
            self._delete_comments_by_post,
            [town_id, post_id],
        )

        logger.debug("thread_comments_deleted", post_id=post_id, count=len(ids))
        return len(ids)

    async def tombstone_comments(
        self, town_id: str, ids: list[str], deleted_at: datetime
    ) -> int:
        """Flag live comments as deleted; ids that are gone are skipped.

        One conditional write per row, so a comment removed meanwhile is not
        recreated and an already tombstoned one keeps its ``deleted_at``.
        """
        count = 0
        for comment_id in ids:
            result = await self._execute(
                "tombstone_comments",
                self._tombstone_comment,
                [deleted_at, deleted_at, town_id, comment_id],
            )
            if result.was_applied:
                count += 1
        return count
