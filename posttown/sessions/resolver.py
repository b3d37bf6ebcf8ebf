"""Session resolution contracts and the in-memory registry.

A town keeps its own table of session tokens. The registry hands out a
resolver per town; the post/comment layer only ever asks that resolver
"which identity owns this token?".
"""

import secrets
from typing import Protocol

import structlog

from posttown.posts.errors import NotFoundError


logger = structlog.get_logger(__name__)


def generate_session_token() -> str:
    """Generate an opaque session token."""
    return secrets.token_urlsafe(32)


class SessionResolver(Protocol):
    """Maps a session token to the identity it belongs to."""

    async def resolve(self, token: str) -> str | None: ...


class SessionRegistry(Protocol):
    """Town/session registry supplying a resolver per town."""

    async def resolver_for(self, town_id: str) -> SessionResolver: ...

    async def register_town(self, town_id: str) -> None: ...

    async def remove_town(self, town_id: str) -> bool: ...

    async def open_session(
        self, town_id: str, identity: str, token: str | None = None
    ) -> str: ...

    async def close_session(self, town_id: str, token: str) -> bool: ...


class InMemorySessionResolver:
    """Resolver over a dict shared with its registry."""

    def __init__(self, sessions: dict[str, str]) -> None:
        self._sessions = sessions

    async def resolve(self, token: str) -> str | None:
        if not token:
            return None
        return self._sessions.get(token)


class InMemorySessionRegistry:
    """Process-local registry for development and tests."""

    def __init__(self) -> None:
        self._towns: dict[str, dict[str, str]] = {}

    def _sessions(self, town_id: str) -> dict[str, str]:
        sessions = self._towns.get(town_id)
        if sessions is None:
            raise NotFoundError(f"Town {town_id} not found")
        return sessions

    async def resolver_for(self, town_id: str) -> InMemorySessionResolver:
        return InMemorySessionResolver(self._sessions(town_id))

    async def register_town(self, town_id: str) -> None:
        self._towns.setdefault(town_id, {})
        logger.info("town_registered", town_id=town_id)

    async def remove_town(self, town_id: str) -> bool:
        removed = self._towns.pop(town_id, None) is not None
        if removed:
            logger.info("town_removed", town_id=town_id)
        return removed

    async def open_session(
        self, town_id: str, identity: str, token: str | None = None
    ) -> str:
        token = token or generate_session_token()
        self._sessions(town_id)[token] = identity
        logger.debug("session_opened", town_id=town_id, identity=identity)
        return token

    async def close_session(self, town_id: str, token: str) -> bool:
        return self._sessions(town_id).pop(token, None) is not None
