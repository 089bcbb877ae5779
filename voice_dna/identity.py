"""
Identity verification collaborator.

A bearer token is exchanged for a user id.  Every ``VoiceDNAService``
operation acts on behalf of that user id; an invalid token fails with
``UnauthenticatedError`` before any data is touched.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

import httpx
from supabase import AsyncClient, AuthError, create_async_client

from voice_dna.database import SupabaseConfig
from voice_dna.exceptions import UnauthenticatedError, UpstreamUnavailableError

logger = logging.getLogger(__name__)


@runtime_checkable
class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> str:
        """Return the user id the token belongs to."""
        ...


class SupabaseIdentityVerifier:
    """Verifies Supabase Auth access tokens.

    Use :meth:`create_verifier` to build one from ``SupabaseConfig``.
    """

    def __init__(self, client: AsyncClient) -> None:
        self.client = client

    @classmethod
    async def create_verifier(
        cls, config: Optional[SupabaseConfig] = None
    ) -> "SupabaseIdentityVerifier":
        config = config or SupabaseConfig.from_env()
        return cls(await create_async_client(config.url, config.key))

    async def verify(self, token: str) -> str:
        """Resolve *token* to a user id.

        Raises:
            UnauthenticatedError: Missing, expired or forged token.
            UpstreamUnavailableError: Supabase Auth could not be reached.
        """
        token = (token or "").removeprefix("Bearer ").strip()
        if not token:
            raise UnauthenticatedError("Missing bearer token")

        try:
            response = await self.client.auth.get_user(token)
        except AuthError as exc:
            logger.info("[AUTH] Token rejected: %s", exc)
            raise UnauthenticatedError("Invalid or expired token") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(f"Identity service unreachable: {exc}") from exc

        if response is None or response.user is None:
            raise UnauthenticatedError("Invalid or expired token")
        return response.user.id


__all__ = [
    "IdentityVerifier",
    "SupabaseIdentityVerifier",
]
