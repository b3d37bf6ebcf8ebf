"""Comment tree assembly.

Comments are stored flat and linked by id: a post lists its top-level
comment ids and each comment lists the ids of its replies. The builder walks
those references with an explicit stack, so thread depth is bounded by
memory rather than by the interpreter's recursion limit.
"""

import structlog

from .models import CommentTree
from .store import PostCommentStore


logger = structlog.get_logger(__name__)


class CommentTreeBuilder:
    """Materializes comment forests for one town.

    Policy for damaged references:
    - ids that no longer resolve, or resolve to a tombstoned comment, are
      skipped together with their replies
    - an id met twice in one traversal is not expanded again, which cuts
      cycles and duplicate links; each comment appears once per forest
    - when built for a post, comments from another thread are skipped
    """

    def __init__(self, store: PostCommentStore, town_id: str) -> None:
        self.store = store
        self.town_id = town_id

    async def build_forest(
        self, ids: list[str], root_post_id: str | None = None
    ) -> list[CommentTree]:
        """Build the trees rooted at ``ids``, preserving stored order."""
        forest: list[CommentTree] = []
        visited: set[str] = set()

        # Each entry pairs a list of child ids with the list receiving them
        stack: list[tuple[list[str], list[CommentTree]]] = [(list(ids), forest)]

        while stack:
            child_ids, target = stack.pop()

            fresh: list[str] = []
            for cid in child_ids:
                if cid in visited:
                    logger.warning(
                        "comment_tree_cycle_detected",
                        town_id=self.town_id,
                        comment_id=cid,
                        root_post_id=root_post_id,
                    )
                    continue
                visited.add(cid)
                fresh.append(cid)

            if not fresh:
                continue

            comments = await self.store.get_comments(self.town_id, fresh)
            found = {c.comment_id for c in comments}
            missing = [cid for cid in fresh if cid not in found]
            if missing:
                logger.warning(
                    "comment_tree_broken_reference",
                    town_id=self.town_id,
                    missing_ids=missing,
                )

            for comment in comments:
                if comment.is_deleted:
                    continue
                if root_post_id is not None and comment.root_post_id != root_post_id:
                    logger.warning(
                        "comment_tree_foreign_comment",
                        town_id=self.town_id,
                        comment_id=comment.comment_id,
                        expected_root=root_post_id,
                        actual_root=comment.root_post_id,
                    )
                    continue

                node = CommentTree(comment=comment)
                target.append(node)
                if comment.comment_ids:
                    stack.append((list(comment.comment_ids), node.children))

        return forest
