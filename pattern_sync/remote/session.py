"""
Bearer-token session for the remote pattern store.

This module keeps the signed-in user's tokens in a JSON file and hands out
valid Authorization headers to the remote client.

Token file format:
    {
        "access_token": "...",
        "refresh_token": "...",
        "expires_at": 1767225600,
        "token_type": "Bearer",
        "user": {"id": "...", "email": "..."},
        "saved_at": "2026-01-01T12:00:00"
    }

The file is written with mode 600 since it holds credentials.

Refresh Policy:
    ensure_valid_session() refreshes the access token against POST
    /auth/refresh when it expires within refresh_margin seconds (default
    10 minutes), or unconditionally when force_refresh is set (the server
    just answered 401). Concurrent callers share one refresh through an
    asyncio.Lock.
"""

import asyncio
import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import aiohttp

from pattern_sync.core.exceptions import AuthenticationError
from pattern_sync.core.logger import get_logger


logger = get_logger(__name__)

REQUIRED_TOKEN_FIELDS = ("access_token", "refresh_token", "expires_at")

# Default access token lifetime when the server omits expires_in
DEFAULT_EXPIRES_IN = 3600


class SessionProvider(Protocol):
    """What the remote client, scheduler and orchestrator need from a session."""

    @property
    def is_authenticated(self) -> bool: ...

    @property
    def current_user(self) -> dict[str, Any] | None: ...

    async def ensure_valid_session(self, force_refresh: bool = False) -> bool: ...

    def auth_headers(self) -> dict[str, str]: ...


class TokenSession:
    """
    Session backed by a token file and the store's refresh endpoint.

    Attributes:
        token_file: Path of the JSON token file.
        refresh_url: Absolute URL of the refresh endpoint.
        refresh_margin: Seconds before expiry at which the token is refreshed.

    Example:
        session = TokenSession(Path("~/.pattern-sync/session.json").expanduser(),
                               "https://patterns.example.com/api/auth/refresh")
        if await session.ensure_valid_session():
            headers = session.auth_headers()
    """

    def __init__(
        self,
        token_file: Path,
        refresh_url: str,
        refresh_margin: int = 600,
        timeout: float = 15.0,
        http_session: aiohttp.ClientSession | None = None
    ) -> None:
        self.token_file = token_file
        self.refresh_url = refresh_url
        self.refresh_margin = refresh_margin
        self._timeout = timeout
        self._http = http_session
        self._token_info: dict[str, Any] | None = None
        self._loaded = False
        self._refresh_lock = asyncio.Lock()

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def is_authenticated(self) -> bool:
        """True if a token is held (it may still need a refresh)."""
        return self._tokens() is not None

    @property
    def current_user(self) -> dict[str, Any] | None:
        tokens = self._tokens()
        if tokens is None:
            return None
        return tokens.get("user") or {}

    def auth_headers(self) -> dict[str, str]:
        """Authorization header for the current access token, empty when signed out."""
        tokens = self._tokens()
        if tokens is None:
            return {}
        token_type = str(tokens.get("token_type") or "Bearer")
        if token_type.lower() == "bearer":
            token_type = "Bearer"
        return {"Authorization": f"{token_type} {tokens['access_token']}"}

    def expires_in(self) -> float | None:
        """Seconds until the access token expires, None when signed out."""
        tokens = self._tokens()
        if tokens is None:
            return None
        return float(tokens["expires_at"]) - time.time()

    # =========================================================================
    # VALIDATION AND REFRESH
    # =========================================================================

    async def ensure_valid_session(self, force_refresh: bool = False) -> bool:
        """
        Make sure a usable access token is held.

        Args:
            force_refresh: Refresh even if the token does not look expired.
                           Used after the server rejected it with 401.

        Returns:
            True if a valid token is available after the call, False if the
            user has to sign in again.
        """
        tokens = self._tokens()
        if tokens is None:
            logger.debug("No session token stored")
            return False

        if not force_refresh and not self._is_expiring(tokens):
            return True

        async with self._refresh_lock:
            current = self._tokens()
            if current is None:
                return False
            # Another caller refreshed while we waited
            if current is not tokens and not self._is_expiring(current):
                return True

            logger.info("Refreshing session token")
            try:
                refreshed = await self._post_refresh(current["refresh_token"])
            except AuthenticationError as e:
                logger.warning(f"Session refresh rejected: {e.message}")
                self._token_info = None
                return False
            except aiohttp.ClientError as e:
                logger.warning(f"Session refresh failed: {e}")
                return False
            except asyncio.TimeoutError:
                logger.warning("Session refresh timed out")
                return False

            self._token_info = self._merge_refresh(current, refreshed)
            self._save_token(self._token_info)
            return True

    def _is_expiring(self, tokens: dict[str, Any]) -> bool:
        try:
            expires_at = float(tokens["expires_at"])
        except (KeyError, TypeError, ValueError):
            return True
        return time.time() >= expires_at - self.refresh_margin

    def _merge_refresh(self, current: dict[str, Any], refreshed: dict[str, Any]) -> dict[str, Any]:
        if "expires_at" in refreshed:
            expires_at = int(refreshed["expires_at"])
        else:
            expires_at = int(time.time()) + int(refreshed.get("expires_in", DEFAULT_EXPIRES_IN))

        return {
            **current,
            "access_token": refreshed["access_token"],
            # Refresh tokens may be rotated; keep the old one otherwise
            "refresh_token": refreshed.get("refresh_token") or current["refresh_token"],
            "token_type": refreshed.get("token_type", current.get("token_type", "Bearer")),
            "expires_at": expires_at,
            "user": refreshed.get("user") or current.get("user"),
        }

    async def _post_refresh(self, refresh_token: str) -> dict[str, Any]:
        """
        Exchange the refresh token for a new access token.

        Returns:
            The server's JSON response.

        Raises:
            AuthenticationError: If the server rejects the refresh token (4xx).
            aiohttp.ClientError: On network or 5xx failures.
        """
        http = self._http or aiohttp.ClientSession()
        try:
            async with http.post(
                self.refresh_url,
                json={"refresh_token": refresh_token},
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                if 400 <= response.status < 500:
                    body = await response.json(content_type=None)
                    message = (body or {}).get("error") or f"HTTP {response.status}"
                    raise AuthenticationError(message, details={"status": response.status})
                response.raise_for_status()
                data = await response.json(content_type=None)
        finally:
            if self._http is None:
                await http.close()

        if not isinstance(data, dict) or "access_token" not in data:
            raise AuthenticationError("Refresh response did not contain an access token")
        return data

    # =========================================================================
    # SIGN IN / SIGN OUT
    # =========================================================================

    def sign_in(
        self,
        access_token: str,
        refresh_token: str,
        expires_in: int | None = None,
        expires_at: int | None = None,
        user: dict[str, Any] | None = None,
        token_type: str = "Bearer"
    ) -> None:
        """
        Store tokens obtained from the sign-in flow.

        Either expires_at (epoch seconds) or expires_in (seconds from now)
        should be given; one hour is assumed otherwise.
        """
        if expires_at is None:
            expires_at = int(time.time()) + (expires_in or DEFAULT_EXPIRES_IN)

        self._token_info = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": int(expires_at),
            "token_type": token_type,
            "user": user or {},
        }
        self._loaded = True
        self._save_token(self._token_info)
        logger.info("Signed in")

    def sign_out(self) -> None:
        """Forget the tokens and delete the token file."""
        if self.token_file.exists():
            try:
                self.token_file.unlink()
            except OSError as e:
                logger.warning(f"Failed to delete token file: {e}")
        self._token_info = None
        self._loaded = True
        logger.info("Signed out")

    async def close(self) -> None:
        if self._http is not None and not self._http.closed:
            await self._http.close()

    # =========================================================================
    # TOKEN FILE
    # =========================================================================

    def _tokens(self) -> dict[str, Any] | None:
        if not self._loaded:
            self._token_info = self._load_token()
            self._loaded = True
        return self._token_info

    def _load_token(self) -> dict[str, Any] | None:
        """
        Load and validate the stored token file.

        Returns:
            Token dictionary if the file exists and has every required
            field, None otherwise. Expiry is not checked here.
        """
        if not self.token_file.exists():
            return None

        try:
            with open(self.token_file, "r", encoding="utf-8") as f:
                token_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load stored token: {e}")
            return None

        if not isinstance(token_data, dict) or not all(
            field in token_data for field in REQUIRED_TOKEN_FIELDS
        ):
            logger.warning("Invalid token structure, sign in again")
            return None

        return token_data

    def _save_token(self, token_info: dict[str, Any]) -> None:
        """Write the token file with owner-only permissions."""
        try:
            self.token_file.parent.mkdir(parents=True, exist_ok=True)
            token_data = {**token_info, "saved_at": datetime.now().isoformat()}
            with open(self.token_file, "w", encoding="utf-8") as f:
                json.dump(token_data, f, indent=2)
        except OSError as e:
            logger.warning(f"Failed to save token: {e}")
            return

        try:
            self.token_file.chmod(0o600)
        except OSError:
            # chmod is a no-op on some filesystems
            pass
