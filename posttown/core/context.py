"""Request context management using contextvars.

Each request gets a unique ID plus the town it targets and, once the session
token has been resolved, the acting identity. Log processors read these
values so every event emitted while serving a request carries them.
"""

from contextvars import ContextVar, Token
from typing import Any
from uuid import uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
town_id_var: ContextVar[str | None] = ContextVar("town_id", default=None)
actor_var: ContextVar[str | None] = ContextVar("actor", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID for the current context.

    Args:
        request_id: Optional request ID. If not provided, generates a new one.

    Returns:
        The request ID that was set.
    """
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_town_id() -> str | None:
    """Get the town targeted by the current request."""
    return town_id_var.get()


def set_town_id(town_id: str | None) -> None:
    """Set the town targeted by the current request."""
    town_id_var.set(town_id)


def get_actor() -> str | None:
    """Get the identity resolved from the session token, if any."""
    return actor_var.get()


def set_actor(identity: str | None) -> None:
    """Record the identity resolved from the session token."""
    actor_var.set(identity)


def get_trace_id() -> str | None:
    """Get the current trace ID."""
    return trace_id_var.get()


def set_trace_id(trace_id: str | None) -> None:
    """Set the trace ID from distributed tracing headers."""
    trace_id_var.set(trace_id)


def get_context() -> dict[str, Any]:
    """Get the populated context variables as a dictionary."""
    context: dict[str, Any] = {}

    request_id = get_request_id()
    if request_id:
        context["request_id"] = request_id

    town_id = get_town_id()
    if town_id:
        context["town_id"] = town_id

    actor = get_actor()
    if actor:
        context["actor"] = actor

    trace_id = get_trace_id()
    if trace_id:
        context["trace_id"] = trace_id

    return context


def clear_context() -> None:
    """Clear all context variables.

    Called at the end of each request to prevent leakage between requests.
    """
    request_id_var.set("")
    town_id_var.set(None)
    actor_var.set(None)
    trace_id_var.set(None)


class RequestContext:
    """Context manager for a unit of work outside the HTTP middleware.

    Usage:
        with RequestContext(town_id="town-1"):
            await controller.delete_post(post_id, token)
    """

    def __init__(
        self,
        request_id: str | None = None,
        town_id: str | None = None,
        actor: str | None = None,
    ) -> None:
        self.request_id = request_id
        self.town_id = town_id
        self.actor = actor
        self._tokens: list[tuple[ContextVar[Any], Token[Any]]] = []

    def __enter__(self) -> "RequestContext":
        request_id = self.request_id or generate_request_id()
        self._tokens.append((request_id_var, request_id_var.set(request_id)))
        if self.town_id is not None:
            self._tokens.append((town_id_var, town_id_var.set(self.town_id)))
        if self.actor is not None:
            self._tokens.append((actor_var, actor_var.set(self.actor)))
        return self

    def __exit__(self, *_: object) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
