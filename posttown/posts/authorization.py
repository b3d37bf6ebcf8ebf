"""Ownership checks for post and comment mutations."""

import structlog

from posttown.core.context import set_actor
from posttown.sessions import SessionResolver

from .errors import PermissionDeniedError


logger = structlog.get_logger(__name__)


class AuthorizationGuard:
    """Resolves session tokens and checks them against resource owners.

    A token that does not resolve (missing, expired, empty) is a permission
    failure, never a lookup failure. There is no administrator override.
    """

    def __init__(self, resolver: SessionResolver) -> None:
        self.resolver = resolver

    async def resolve(self, token: str | None) -> str:
        """Return the identity behind the token or raise PermissionDeniedError."""
        if not token:
            raise PermissionDeniedError("Missing session token")

        identity = await self.resolver.resolve(token)
        if not identity:
            logger.info("session_token_unresolved")
            raise PermissionDeniedError("Invalid or expired session token")

        set_actor(identity)
        return identity

    async def authorize(self, token: str | None, resource_owner_id: str) -> str:
        """Check that the token belongs to the resource owner.

        Returns:
            The acting identity.

        Raises:
            PermissionDeniedError: token unresolved or identity mismatch.
        """
        identity = await self.resolve(token)
        if identity != resource_owner_id:
            logger.warning(
                "ownership_check_failed",
                identity=identity,
                owner_id=resource_owner_id,
            )
            raise PermissionDeniedError("Only the owner can modify this resource")
        return identity
