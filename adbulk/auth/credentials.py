"""
Credential providers.

The submission client asks a ``CredentialProvider`` for a bearer token before
every remote call. How the token is obtained (OAuth grant, refresh, vault) is
up to the provider; failures must be raised as ``BulkError`` with kind
AUTHORIZATION so the caller can report them and stop the phase.
"""

from abc import ABC, abstractmethod
from typing import Optional
import logging

from adbulk.bulk.errors import BulkError, BulkErrorKind

logger = logging.getLogger(__name__)

class CredentialProvider(ABC):
    """Supplies bearer tokens."""

    @abstractmethod
    async def get_token(self) -> str:
        """
        Return a valid access token.

        Raises:
            BulkError: AUTHORIZATION if no token can be obtained
        """

class StaticTokenProvider(CredentialProvider):
    """Hands out a token obtained elsewhere, e.g. from configuration."""

    def __init__(self, access_token: Optional[str]):
        self._access_token = access_token

    async def get_token(self) -> str:
        if not self._access_token:
            raise BulkError(
                "Couldn't get OAuth tokens. Error: invalid_grant. Description: no access token configured",
                kind=BulkErrorKind.AUTHORIZATION,
                operation="get_token",
                details={"error": "invalid_grant"}
            )
        return self._access_token
