"""Tests for comment tree assembly."""

from datetime import UTC, datetime

import pytest

from posttown.posts.models import ChildOwner, Comment, CommentTree, Coordinates, Post
from posttown.posts.store import InMemoryPostCommentStore
from posttown.posts.tree import CommentTreeBuilder


TOWN = "town-1"


class Thread:
    """Builds a thread directly in the store, bypassing the controller."""

    def __init__(self, store: InMemoryPostCommentStore) -> None:
        self.store = store
        self.post: Post | None = None

    async def start(self) -> "Thread":
        self.post = await self.store.create_post(
            TOWN, Post("t", "c", "alice", Coordinates(0, 0))
        )
        return self

    async def reply(self, content: str, parent: Comment | None = None) -> Comment:
        comment = Comment(
            root_post_id=self.post.post_id,
            owner_id="bob",
            content=content,
            parent_comment_id=parent.comment_id if parent else "",
        )
        return await self.store.create_comment_linked(TOWN, comment)

    async def top_level_ids(self) -> list[str]:
        post = await self.store.get_post(TOWN, self.post.post_id)
        return post.comment_ids


def contents(forest: list[CommentTree]) -> list:
    """Nested (content, children) view of a forest."""
    return [(node.comment.content, contents(node.children)) for node in forest]


@pytest.fixture
def store() -> InMemoryPostCommentStore:
    return InMemoryPostCommentStore()


@pytest.fixture
def builder(store: InMemoryPostCommentStore) -> CommentTreeBuilder:
    return CommentTreeBuilder(store, TOWN)


class TestBuildForest:
    @pytest.mark.asyncio
    async def test_preserves_stored_order(
        self, store: InMemoryPostCommentStore, builder: CommentTreeBuilder
    ) -> None:
        """Children follow their parent's child-id order at every level."""
        thread = await Thread(store).start()
        c1 = await thread.reply("c1")
        c2 = await thread.reply("c2")
        await thread.reply("c1a", c1)
        c1b = await thread.reply("c1b", c1)
        await thread.reply("c1b-i", c1b)
        await thread.reply("c2a", c2)

        forest = await builder.build_forest(await thread.top_level_ids())

        assert contents(forest) == [
            ("c1", [("c1a", []), ("c1b", [("c1b-i", [])])]),
            ("c2", [("c2a", [])]),
        ]

    @pytest.mark.asyncio
    async def test_empty_ids(self, builder: CommentTreeBuilder) -> None:
        assert await builder.build_forest([]) == []

    @pytest.mark.asyncio
    async def test_broken_reference_is_skipped(
        self, store: InMemoryPostCommentStore, builder: CommentTreeBuilder
    ) -> None:
        thread = await Thread(store).start()
        first = await thread.reply("first")
        await store.append_child_id(
            TOWN, thread.post.post_id, "deleted-id", ChildOwner.POST
        )
        await store.append_child_id(TOWN, first.comment_id, "gone", ChildOwner.COMMENT)
        await thread.reply("last")

        forest = await builder.build_forest(await thread.top_level_ids())

        assert contents(forest) == [("first", []), ("last", [])]

    @pytest.mark.asyncio
    async def test_cycle_is_cut(
        self, store: InMemoryPostCommentStore, builder: CommentTreeBuilder
    ) -> None:
        """A comment listed as its own descendant is not expanded again."""
        thread = await Thread(store).start()
        parent = await thread.reply("parent")
        child = await thread.reply("child", parent)
        await store.append_child_id(
            TOWN, child.comment_id, parent.comment_id, ChildOwner.COMMENT
        )

        forest = await builder.build_forest(await thread.top_level_ids())

        assert contents(forest) == [("parent", [("child", [])])]

    @pytest.mark.asyncio
    async def test_self_reference(
        self, store: InMemoryPostCommentStore, builder: CommentTreeBuilder
    ) -> None:
        thread = await Thread(store).start()
        loner = await thread.reply("loner")
        await store.append_child_id(
            TOWN, loner.comment_id, loner.comment_id, ChildOwner.COMMENT
        )

        forest = await builder.build_forest(await thread.top_level_ids())

        assert contents(forest) == [("loner", [])]

    @pytest.mark.asyncio
    async def test_duplicate_id_appears_once(
        self, store: InMemoryPostCommentStore, builder: CommentTreeBuilder
    ) -> None:
        thread = await Thread(store).start()
        only = await thread.reply("only")
        await store.append_child_id(
            TOWN, thread.post.post_id, only.comment_id, ChildOwner.POST
        )

        forest = await builder.build_forest(await thread.top_level_ids())

        assert contents(forest) == [("only", [])]

    @pytest.mark.asyncio
    async def test_tombstoned_subtree_is_skipped(
        self, store: InMemoryPostCommentStore, builder: CommentTreeBuilder
    ) -> None:
        thread = await Thread(store).start()
        gone = await thread.reply("gone")
        await thread.reply("gone-child", gone)
        await thread.reply("kept")
        await store.tombstone_comments(TOWN, [gone.comment_id], datetime.now(UTC))

        forest = await builder.build_forest(await thread.top_level_ids())

        assert contents(forest) == [("kept", [])]

    @pytest.mark.asyncio
    async def test_foreign_comment_skipped_for_post(
        self, store: InMemoryPostCommentStore, builder: CommentTreeBuilder
    ) -> None:
        ours = await Thread(store).start()
        theirs = await Thread(store).start()
        await ours.reply("ours")
        stray = await theirs.reply("theirs")
        await store.append_child_id(
            TOWN, ours.post.post_id, stray.comment_id, ChildOwner.POST
        )

        forest = await builder.build_forest(
            await ours.top_level_ids(), root_post_id=ours.post.post_id
        )

        assert contents(forest) == [("ours", [])]

    @pytest.mark.asyncio
    async def test_other_town_ids_resolve_as_absent(
        self, store: InMemoryPostCommentStore
    ) -> None:
        thread = await Thread(store).start()
        await thread.reply("local")

        forest = await CommentTreeBuilder(store, "town-2").build_forest(
            await thread.top_level_ids()
        )

        assert forest == []

    @pytest.mark.asyncio
    async def test_deep_thread_does_not_exhaust_stack(
        self, store: InMemoryPostCommentStore, builder: CommentTreeBuilder
    ) -> None:
        depth = 3000
        thread = await Thread(store).start()
        parent = None
        for i in range(depth):
            parent = await thread.reply(f"level-{i}", parent)

        forest = await builder.build_forest(await thread.top_level_ids())

        levels = 0
        node = forest[0] if forest else None
        while node is not None:
            levels += 1
            node = node.children[0] if node.children else None
        assert levels == depth
