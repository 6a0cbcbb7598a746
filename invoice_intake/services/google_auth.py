"""
Google credential handling.

The consent flow that first produces a refresh token lives outside this
service; here we only load the stored credential, refresh it when it has
expired, and write the refreshed token back before anything uses it.
"""

from datetime import datetime, timedelta, UTC

import httpx
from loguru import logger
from pydantic import BaseModel

from ..core.errors import AuthError
from .google_http import error_message
from .storage import TokenStoreBase

TOKEN_URL = "https://oauth2.googleapis.com/token"
PROVIDER = "google"
EXPIRY_SKEW = timedelta(seconds=60)


class GoogleCredential(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scopes: list[str] = []
    token_type: str = "Bearer"

    def expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return now >= expires_at - EXPIRY_SKEW


class GoogleAuthProvider:
    """
    Hands out a valid credential, refreshing and persisting it when needed.

    Args:
        store: Where the credential lives
        client_id / client_secret: OAuth client used for refresh
        timeout: Seconds allowed for the token endpoint call
    """

    def __init__(self, store: TokenStoreBase, client_id: str | None, client_secret: str | None,
                 timeout: float = 30.0, token_url: str = TOKEN_URL):
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.token_url = token_url

    def is_connected(self) -> bool:
        return self.store.get(PROVIDER) is not None

    async def get_valid_credential(self) -> GoogleCredential:
        stored = self.store.get(PROVIDER)
        if stored is None:
            raise AuthError("Google account not connected")

        credential = GoogleCredential.model_validate(stored)
        if not credential.expired():
            return credential

        logger.info("Google access token expired, refreshing")
        refreshed = await self._refresh(credential)
        self.store.save(PROVIDER, refreshed.model_dump(mode="json"))
        return refreshed

    async def _refresh(self, credential: GoogleCredential) -> GoogleCredential:
        if not credential.refresh_token:
            raise AuthError("Stored Google credential has no refresh token; reconnect the account")
        if not (self.client_id and self.client_secret):
            raise AuthError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET are required to refresh tokens")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.token_url, data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": credential.refresh_token,
                    "grant_type": "refresh_token",
                })
        except httpx.HTTPError as e:
            raise AuthError(f"Token refresh failed: {e}")

        if response.is_error:
            raise AuthError(f"Token refresh failed: {error_message(response)}")

        data = response.json()
        if "access_token" not in data:
            raise AuthError("Token refresh failed: no access_token in response")

        expires_in = int(data.get("expires_in", 3600))
        logger.info("Google access token refreshed", expires_in=expires_in)
        return credential.model_copy(update={
            "access_token": data["access_token"],
            "expires_at": datetime.now(UTC) + timedelta(seconds=expires_in),
            # Google only sometimes rotates the refresh token
            "refresh_token": data.get("refresh_token") or credential.refresh_token,
        })
