"""FastAPI dependencies for the post/comment API.

Provides dependency injection for:
- Per-request PostTownController built from app state collaborators
- Session token extraction
- Error conversion
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Path, Request, status

from .controller import PostTownController
from .errors import PostTownError, StoreFailureError


BEARER_PREFIX = "bearer "
ORPHAN_COMMENT_HEADER = "X-Orphan-Comment-ID"


def handle_posttown_error(error: PostTownError) -> HTTPException:
    """Convert post/comment errors to HTTP exceptions.

    Args:
        error: Post/comment error

    Returns:
        HTTPException with appropriate status code
    """
    status_map = {
        "not_found": status.HTTP_404_NOT_FOUND,
        "permission_denied": status.HTTP_403_FORBIDDEN,
        "invalid_reference": status.HTTP_400_BAD_REQUEST,
        "store_failure": status.HTTP_503_SERVICE_UNAVAILABLE,
        "file_too_large": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    headers = None
    if isinstance(error, StoreFailureError) and error.orphan_comment_id:
        headers = {ORPHAN_COMMENT_HEADER: error.orphan_comment_id}

    return HTTPException(
        status_code=status_code,
        detail=error.message,
        headers=headers,
    )


async def get_session_token(
    authorization: Annotated[str | None, Header()] = None,
    x_session_token: Annotated[str | None, Header()] = None,
) -> str | None:
    """Session token from ``Authorization: Bearer`` or ``X-Session-Token``."""
    if authorization and authorization.lower().startswith(BEARER_PREFIX):
        token = authorization[len(BEARER_PREFIX) :].strip()
        if token:
            return token
    return x_session_token or None


async def get_controller(
    request: Request,
    town_id: Annotated[str, Path()],
) -> PostTownController:
    """Build the controller for the town named in the path.

    Raises:
        HTTPException: 503 when a backend is not initialized, 404 for an
            unknown town.
    """
    app_state = request.app.state
    store = getattr(app_state, "post_store", None)
    registry = getattr(app_state, "session_registry", None)
    files = getattr(app_state, "file_store", None)
    moderation = getattr(app_state, "moderation", None)

    if store is None or registry is None or files is None or moderation is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Post service not available",
        )

    try:
        resolver = await registry.resolver_for(town_id)
    except PostTownError as e:
        raise handle_posttown_error(e) from e

    return PostTownController(
        town_id=town_id,
        store=store,
        sessions=resolver,
        files=files,
        moderation=moderation,
        max_file_size=getattr(app_state, "max_file_size", None),
    )


# Type aliases for dependency injection
ControllerDep = Annotated[PostTownController, Depends(get_controller)]
SessionToken = Annotated[str | None, Depends(get_session_token)]
