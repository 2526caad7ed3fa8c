# blackgift_chat/services/identity.py
"""
Bearer token verification against the identity provider.

The provider is called with the ID token issued to the browser
(`POST {verify_url}?key={api_key}` with `{"idToken": ...}`) and answers with
the account it belongs to. Any failure demotes the request to anonymous; it
is logged, never surfaced.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from blackgift_chat.core.errors import IdentityVerificationFailure
from blackgift_chat.models.identity import Anonymous, Authenticated, Identity, VerificationFailed

logger = logging.getLogger(__name__)


@dataclass
class VerifiedAccount:
    user_id: str
    email: Optional[str] = None


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


class IdentityProvider:
    def __init__(
        self,
        verify_url: str,
        api_key: Optional[str],
        timeout: float = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.verify_url = verify_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def init(self):
        if not self.configured:
            logger.warning("IDENTITY_API_KEY is not set; bearer tokens cannot be verified")
            return
        self._get_client()

    async def health_check(self) -> bool:
        return self.configured

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def verify(self, token: str) -> VerifiedAccount:
        """
        Returns the account `token` was issued to.

        Raises:
            IdentityVerificationFailure: provider unavailable or token rejected
        """
        if not self.configured:
            raise IdentityVerificationFailure("identity provider unavailable")

        try:
            response = await self._get_client().post(
                self.verify_url,
                params={"key": self.api_key},
                json={"idToken": token},
            )
        except httpx.RequestError as e:
            raise IdentityVerificationFailure(f"identity provider unreachable: {e}") from e

        if response.status_code != 200:
            raise IdentityVerificationFailure(f"token rejected ({response.status_code})")

        try:
            users = response.json().get("users") or []
            account = users[0]
            user_id = account["localId"]
        except (ValueError, AttributeError, IndexError, KeyError) as e:
            raise IdentityVerificationFailure(f"unexpected identity response: {e}") from e

        return VerifiedAccount(user_id=user_id, email=account.get("email"))


async def resolve_identity(
    provider: IdentityProvider,
    authorization: Optional[str],
    session_id: str,
) -> Identity:
    token = parse_bearer(authorization)
    if token is None:
        return Anonymous(session_id=session_id)
    try:
        account = await provider.verify(token)
    except IdentityVerificationFailure as e:
        logger.warning(f"Failed to verify ID token: {e}")
        return VerificationFailed(session_id=session_id, reason=str(e))
    return Authenticated(session_id=session_id, user_id=account.user_id, email=account.email)
