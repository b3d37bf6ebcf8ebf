"""Tests for post attachments through PostTownController."""

import asyncio

import pytest
from conftest import ALICE, ALICE_TOKEN, BOB_TOKEN, MAX_FILE_SIZE, TOWN_ID

from posttown.files import FileMetadata, InMemoryFileStore
from posttown.moderation import ModerationFilter
from posttown.posts.controller import PostTownController
from posttown.posts.errors import (
    FileTooLargeError,
    NotFoundError,
    PermissionDeniedError,
)
from posttown.posts.models import Coordinates, Post, PostChanges
from posttown.posts.store import InMemoryPostCommentStore


@pytest.fixture
def metadata() -> FileMetadata:
    return FileMetadata(filename="map.png", content_type="image/png")


async def new_post(controller: PostTownController) -> Post:
    return await controller.create_post(
        Post("Treasure", "X marks the spot", ALICE, Coordinates(5, 5))
    )


class TestAttachFile:
    @pytest.mark.asyncio
    async def test_owner_attaches(
        self, controller: PostTownController, metadata: FileMetadata
    ) -> None:
        post = await new_post(controller)

        updated = await controller.attach_file(
            post.post_id, b"\x89PNG data", metadata, ALICE_TOKEN
        )

        assert updated.file_id
        stored = await controller.get_file(post.post_id)
        assert stored.content == b"\x89PNG data"
        assert stored.metadata.filename == "map.png"
        assert stored.metadata.content_type == "image/png"
        assert stored.metadata.size == len(b"\x89PNG data")

    @pytest.mark.asyncio
    async def test_replacing_deletes_previous(
        self,
        controller: PostTownController,
        files: InMemoryFileStore,
        metadata: FileMetadata,
    ) -> None:
        post = await new_post(controller)
        first = await controller.attach_file(post.post_id, b"v1", metadata, ALICE_TOKEN)

        second = await controller.attach_file(
            post.post_id, b"v2", metadata, ALICE_TOKEN
        )

        assert second.file_id != first.file_id
        assert first.file_id not in files
        assert (await controller.get_file(post.post_id)).content == b"v2"

    @pytest.mark.asyncio
    async def test_too_large(
        self,
        controller: PostTownController,
        files: InMemoryFileStore,
        metadata: FileMetadata,
    ) -> None:
        post = await new_post(controller)

        with pytest.raises(FileTooLargeError):
            await controller.attach_file(
                post.post_id, b"x" * (MAX_FILE_SIZE + 1), metadata, ALICE_TOKEN
            )

        assert (await controller.get_post(post.post_id)).file_id is None

    @pytest.mark.asyncio
    async def test_non_owner_denied(
        self, controller: PostTownController, metadata: FileMetadata
    ) -> None:
        post = await new_post(controller)

        with pytest.raises(PermissionDeniedError):
            await controller.attach_file(post.post_id, b"x", metadata, BOB_TOKEN)

        assert (await controller.get_post(post.post_id)).file_id is None


class TestGetFile:
    @pytest.mark.asyncio
    async def test_post_without_file(self, controller: PostTownController) -> None:
        post = await new_post(controller)

        with pytest.raises(NotFoundError):
            await controller.get_file(post.post_id)

    @pytest.mark.asyncio
    async def test_missing_post(self, controller: PostTownController) -> None:
        with pytest.raises(NotFoundError):
            await controller.get_file("ghost")


class TestDeleteFile:
    @pytest.mark.asyncio
    async def test_owner_deletes(
        self,
        controller: PostTownController,
        files: InMemoryFileStore,
        metadata: FileMetadata,
    ) -> None:
        post = await new_post(controller)
        post = await controller.attach_file(post.post_id, b"x", metadata, ALICE_TOKEN)

        file_id, deleted = await controller.delete_file(post.post_id, ALICE_TOKEN)

        assert file_id == post.file_id
        assert deleted is True
        assert file_id not in files
        assert (await controller.get_post(post.post_id)).file_id is None

        with pytest.raises(NotFoundError):
            await controller.delete_file(post.post_id, ALICE_TOKEN)

    @pytest.mark.asyncio
    async def test_non_owner_denied(
        self,
        controller: PostTownController,
        files: InMemoryFileStore,
        metadata: FileMetadata,
    ) -> None:
        post = await new_post(controller)
        post = await controller.attach_file(post.post_id, b"x", metadata, ALICE_TOKEN)

        with pytest.raises(PermissionDeniedError):
            await controller.delete_file(post.post_id, BOB_TOKEN)

        assert post.file_id in files


class GatedResolver:
    """Session resolver that parks one token until the test releases it."""

    def __init__(self, sessions: dict[str, str], gated_token: str) -> None:
        self.sessions = sessions
        self.gated_token = gated_token
        self.reached = asyncio.Event()
        self.release = asyncio.Event()

    async def resolve(self, token: str) -> str | None:
        if token == self.gated_token:
            self.reached.set()
            await self.release.wait()
        return self.sessions.get(token)


class TestConcurrentWrites:
    """A write parked after its read must not undo a write that landed meanwhile."""

    @pytest.fixture
    def gate(self) -> GatedResolver:
        return GatedResolver({ALICE_TOKEN: ALICE, "slow": ALICE}, "slow")

    @pytest.fixture
    def gated_controller(
        self,
        store: InMemoryPostCommentStore,
        files: InMemoryFileStore,
        moderation: ModerationFilter,
        gate: GatedResolver,
    ) -> PostTownController:
        return PostTownController(
            town_id=TOWN_ID,
            store=store,
            sessions=gate,
            files=files,
            moderation=moderation,
            max_file_size=MAX_FILE_SIZE,
        )

    @pytest.mark.asyncio
    async def test_edit_keeps_file_attached_meanwhile(
        self,
        gated_controller: PostTownController,
        gate: GatedResolver,
        files: InMemoryFileStore,
        metadata: FileMetadata,
    ) -> None:
        post = await new_post(gated_controller)

        edit = asyncio.create_task(
            gated_controller.update_post(
                post.post_id, PostChanges(title="Buried treasure"), "slow"
            )
        )
        await gate.reached.wait()
        attached = await gated_controller.attach_file(
            post.post_id, b"map", metadata, ALICE_TOKEN
        )
        gate.release.set()
        await edit

        final = await gated_controller.get_post(post.post_id)
        assert final.title == "Buried treasure"
        assert final.file_id == attached.file_id
        assert attached.file_id in files

    @pytest.mark.asyncio
    async def test_racing_attaches_leave_one_file(
        self,
        gated_controller: PostTownController,
        gate: GatedResolver,
        files: InMemoryFileStore,
        metadata: FileMetadata,
    ) -> None:
        post = await new_post(gated_controller)

        slow = asyncio.create_task(
            gated_controller.attach_file(post.post_id, b"slow", metadata, "slow")
        )
        await gate.reached.wait()
        fast = await gated_controller.attach_file(
            post.post_id, b"fast", metadata, ALICE_TOKEN
        )
        gate.release.set()
        winner = await slow

        final = await gated_controller.get_post(post.post_id)
        assert final.file_id == winner.file_id
        assert winner.file_id in files
        assert fast.file_id not in files

    @pytest.mark.asyncio
    async def test_delete_does_not_clear_replacement(
        self,
        gated_controller: PostTownController,
        gate: GatedResolver,
        files: InMemoryFileStore,
        metadata: FileMetadata,
    ) -> None:
        post = await new_post(gated_controller)
        first = await gated_controller.attach_file(
            post.post_id, b"first", metadata, ALICE_TOKEN
        )

        removal = asyncio.create_task(
            gated_controller.delete_file(post.post_id, "slow")
        )
        await gate.reached.wait()
        second = await gated_controller.attach_file(
            post.post_id, b"second", metadata, ALICE_TOKEN
        )
        gate.release.set()

        with pytest.raises(NotFoundError, match="no longer attached"):
            await removal

        final = await gated_controller.get_post(post.post_id)
        assert final.file_id == second.file_id
        assert second.file_id in files
        assert first.file_id not in files
