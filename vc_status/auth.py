"""
OAuth token management for vc-status.

The host application hands us a one-time authorization code after the user
approves the app (AUTHORIZE over IPC). This module trades that code for tokens
at the OAuth token endpoint, refreshes them on later runs, and is the only
place that reads or writes the stored refresh token.

Storage: see credential_store (keyring by default)
"""

import asyncio
import logging
import random
from dataclasses import dataclass

import httpx

from vc_status import config
from vc_status.credential_store import CredentialStore, get_credential_store
from vc_status.errors import AuthError, ErrorType

logger = logging.getLogger("vcstatus")

RETRY_BASE_DELAY = 0.5
RETRY_MAX_DELAY = 8.0


@dataclass
class TokenPair:
    """Tokens returned by the OAuth token endpoint."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = 0
    scope: str = ""

    @classmethod
    def from_response(cls, data: dict) -> "TokenPair":
        """Create from a token endpoint JSON body.

        Raises:
            ValueError: If the body does not match the token schema
        """
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("Token response is missing access_token")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise ValueError("Token response is missing refresh_token")
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type=data.get("token_type", "Bearer"),
            expires_in=int(data.get("expires_in", 0) or 0),
            scope=data.get("scope", ""),
        )


class TokenManager:
    """Exchanges, refreshes and persists OAuth tokens.

    Every refresh token handed out by exchange_code() or refresh() replaces the
    previous one; callers persist it with save_refresh_token() before using the
    access token.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str = config.TOKEN_URL,
        redirect_uri: str = config.REDIRECT_URI,
        store: CredentialStore | None = None,
        timeout: float = config.HTTP_TIMEOUT,
        retry_attempts: int = config.TOKEN_RETRY_ATTEMPTS,
    ):
        self.client_id = client_id
        self._client_secret = client_secret
        self.token_url = token_url
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self._store = store

    @property
    def store(self) -> CredentialStore:
        if self._store is None:
            self._store = get_credential_store()
        return self._store

    async def exchange_code(self, code: str) -> TokenPair:
        """Exchange an authorization code for tokens.

        Raises:
            AuthError: TokenFetch on network, status or schema failure
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        return await self._request_tokens(data, ErrorType.TOKEN_FETCH, "fetch token")

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Trade a refresh token for a fresh token pair.

        Raises:
            AuthError: RefreshToken on network, status or schema failure
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return await self._request_tokens(data, ErrorType.REFRESH_TOKEN, "refresh token")

    async def _request_tokens(
        self, data: dict, error_type: ErrorType, action: str
    ) -> TokenPair:
        response = await self._post_with_retry(data, error_type, action)

        if not 200 <= response.status_code < 300:
            try:
                error_data = response.json()
                error = error_data.get("error", "unknown")
                desc = error_data.get("error_description", f"Failed to {action}")
            except Exception:
                error = "http_error"
                desc = f"HTTP {response.status_code}: {response.text}"
            raise AuthError(
                error_type,
                f"Failed to {action}: {error}: {desc}",
                {"status": response.status_code, "grant_type": data["grant_type"]},
            )

        try:
            return TokenPair.from_response(response.json())
        except ValueError as e:
            raise AuthError(
                error_type,
                f"Failed to decode token response: {e}",
                {"status": response.status_code, "grant_type": data["grant_type"]},
            ) from e

    async def _post_with_retry(
        self, data: dict, error_type: ErrorType, action: str
    ) -> httpx.Response:
        """POST to the token endpoint, retrying network failures only."""
        last_error: Exception | None = None
        for attempt in range(self.retry_attempts):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    return await client.post(
                        self.token_url,
                        data=data,
                        auth=(self.client_id, self._client_secret),
                        headers={"Content-Type": "application/x-www-form-urlencoded"},
                    )
            except httpx.TransportError as e:
                last_error = e
                if attempt + 1 >= self.retry_attempts:
                    break
                delay = min(RETRY_BASE_DELAY * (2 ** attempt), RETRY_MAX_DELAY)
                delay += random.uniform(0, delay)
                logger.debug(
                    f"Token endpoint unreachable ({e}), retrying in {delay:.2f}s "
                    f"(attempt {attempt + 1}/{self.retry_attempts})"
                )
                await asyncio.sleep(delay)

        raise AuthError(
            error_type,
            f"Failed to {action}: {last_error}",
            {"grant_type": data["grant_type"]},
        ) from last_error

    # Persistence

    async def load_refresh_token(self) -> str | None:
        """Read the stored refresh token, or None if there is none.

        Raises:
            AuthError: ConfigRead if the store cannot be read
        """
        try:
            token = await asyncio.to_thread(self.store.load)
        except Exception as e:
            raise AuthError(
                ErrorType.CONFIG_READ, f"Could not read stored credentials: {e}"
            ) from e
        return token or None

    async def save_refresh_token(self, refresh_token: str) -> None:
        """Persist a refresh token, replacing the previous one.

        Raises:
            AuthError: ConfigSave if the store cannot be written
        """
        try:
            await asyncio.to_thread(self.store.save, refresh_token)
        except Exception as e:
            raise AuthError(
                ErrorType.CONFIG_SAVE, f"Could not save refresh token: {e}"
            ) from e
        logger.debug(f"Refresh token saved ({self.store.name})")


def get_token_manager() -> TokenManager:
    """Build a TokenManager from configuration.

    Raises:
        ConfigError: If the OAuth client id/secret are not configured
    """
    client_id, client_secret = config.require_client_credentials()
    return TokenManager(client_id, client_secret)
