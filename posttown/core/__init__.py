# Core infrastructure
from posttown.core.context import (
    RequestContext,
    clear_context,
    get_actor,
    get_context,
    get_request_id,
    get_town_id,
    set_actor,
    set_request_id,
    set_town_id,
)
from posttown.core.logging import configure_structlog, get_logger
from posttown.core.middleware import RequestContextMiddleware


__all__ = [
    "RequestContext",
    "RequestContextMiddleware",
    "clear_context",
    "configure_structlog",
    "get_actor",
    "get_context",
    "get_logger",
    "get_request_id",
    "get_town_id",
    "set_actor",
    "set_request_id",
    "set_town_id",
]
