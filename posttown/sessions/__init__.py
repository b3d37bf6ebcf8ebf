"""Town/session registry."""

from posttown.sessions.redis_registry import RedisSessionRegistry, RedisSessionResolver
from posttown.sessions.resolver import (
    InMemorySessionRegistry,
    InMemorySessionResolver,
    SessionRegistry,
    SessionResolver,
    generate_session_token,
)


__all__ = [
    "InMemorySessionRegistry",
    "InMemorySessionResolver",
    "RedisSessionRegistry",
    "RedisSessionResolver",
    "SessionRegistry",
    "SessionResolver",
    "generate_session_token",
]
