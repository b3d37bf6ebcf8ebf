"""Shared fixtures: in-memory backends, a seeded town and an API client."""

import asyncio
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from posttown.config import Settings
from posttown.files import InMemoryFileStore
from posttown.main import create_app
from posttown.moderation import ModerationFilter
from posttown.posts.controller import PostTownController
from posttown.posts.store import InMemoryPostCommentStore
from posttown.sessions import InMemorySessionRegistry, InMemorySessionResolver


TOWN_ID = "town-1"
ALICE = "alice"
BOB = "bob"
ALICE_TOKEN = "alice-token"
BOB_TOKEN = "bob-token"
MAX_FILE_SIZE = 1024


@pytest.fixture
def settings() -> Settings:
    """Settings wired to the in-memory backends."""
    return Settings(
        _env_file=None,
        environment="testing",
        store_backend="memory",
        session_backend="memory",
        file_backend="memory",
        log_requests=False,
    )


@pytest.fixture
def store() -> InMemoryPostCommentStore:
    return InMemoryPostCommentStore()


@pytest.fixture
def files() -> InMemoryFileStore:
    return InMemoryFileStore()


@pytest.fixture
def moderation() -> ModerationFilter:
    return ModerationFilter()


@pytest.fixture
def resolver() -> InMemorySessionResolver:
    """Resolver knowing one session each for alice and bob."""
    return InMemorySessionResolver({ALICE_TOKEN: ALICE, BOB_TOKEN: BOB})


@pytest.fixture
def controller(
    store: InMemoryPostCommentStore,
    resolver: InMemorySessionResolver,
    files: InMemoryFileStore,
    moderation: ModerationFilter,
) -> PostTownController:
    return PostTownController(
        town_id=TOWN_ID,
        store=store,
        sessions=resolver,
        files=files,
        moderation=moderation,
        max_file_size=MAX_FILE_SIZE,
    )


@pytest.fixture
def registry() -> InMemorySessionRegistry:
    """Registry with TOWN_ID registered and a session for alice and bob."""
    registry = InMemorySessionRegistry()

    async def seed() -> None:
        await registry.register_town(TOWN_ID)
        await registry.open_session(TOWN_ID, ALICE, token=ALICE_TOKEN)
        await registry.open_session(TOWN_ID, BOB, token=BOB_TOKEN)

    asyncio.run(seed())
    return registry


@pytest.fixture
def client(
    settings: Settings,
    store: InMemoryPostCommentStore,
    files: InMemoryFileStore,
    registry: InMemorySessionRegistry,
) -> Iterator[TestClient]:
    """API client over the shared in-memory backends."""
    app = create_app(settings)
    app.state.post_store = store
    app.state.file_store = files
    app.state.session_registry = registry
    app.state.max_file_size = MAX_FILE_SIZE

    with TestClient(app) as test_client:
        yield test_client


def auth(token: str) -> dict[str, str]:
    """Authorization header for a session token."""
    return {"Authorization": f"Bearer {token}"}
