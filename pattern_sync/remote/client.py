"""
HTTP client for the remote pattern store.

This module wraps the store's JSON endpoints and turns their responses into
library models. Every call goes through the same request path:

    1. ensure_valid_session() on the session; False -> AuthenticationError
       before any network I/O
    2. Send the request with the session's Authorization header
    3. 401 -> force one session refresh and retry exactly once
    4. 404 -> NotFoundError; other 4xx/5xx -> RemoteError(status);
       network failure or timeout -> RemoteError(status=0)

The client never deduplicates or retries beyond the single auth retry;
callers decide how to react to failures.

Usage:
    async with RemoteStoreClient(config.remote.base_url, session) as remote:
        tracks, folders = await remote.list_tracks()
        saved = await remote.update_track(track.id, {"code": code, "modified": now_iso()})
"""

import asyncio
import json
from typing import Any

import aiohttp

from pattern_sync.core.exceptions import AuthenticationError, NotFoundError, RemoteError
from pattern_sync.core.logger import get_logger
from pattern_sync.library.models import Folder, Step, Track
from pattern_sync.library.tree import tree_to_flat
from pattern_sync.library.wire import to_wire
from pattern_sync.remote.session import SessionProvider


logger = get_logger(__name__)


class RemoteStoreClient:
    """
    Async client for the track/folder persistence API.

    Attributes:
        base_url: Origin of the API, e.g. "https://patterns.example.com".
        api_prefix: Path prefix of every endpoint, "/api" by default.
        timeout: Per-request timeout in seconds.

    Example:
        remote = RemoteStoreClient("https://patterns.example.com", session)
        try:
            track = await remote.create_track("Drum Loop", code="s('bd*4')")
        finally:
            await remote.close()
    """

    def __init__(
        self,
        base_url: str,
        session: SessionProvider,
        api_prefix: str = "/api",
        timeout: float = 15.0,
        http_session: aiohttp.ClientSession | None = None
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_prefix = api_prefix.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._http = http_session
        self._owns_http = http_session is None

    async def __aenter__(self) -> "RemoteStoreClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP session if this client created it."""
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    def url_for(self, endpoint: str) -> str:
        return f"{self.base_url}{self.api_prefix}{endpoint}"

    # =========================================================================
    # Track Operations
    # =========================================================================

    async def list_tracks(self) -> tuple[list[Track], list[Folder]]:
        """
        Fetch the whole library.

        Accepts both the hierarchical payload ({"id": "root", "children": [...]}
        or {"root": {...}}) and the flat {"tracks": [...], "folders": [...]}.

        Returns:
            (tracks, folders)

        Raises:
            AuthenticationError: If no valid session can be obtained.
            RemoteError: On any other failure.
        """
        body = await self._request("GET", "/tracks/list")
        return parse_library_payload(body)

    async def create_track(
        self,
        name: str,
        code: str = "",
        folder: str | None = None,
        is_multitrack: bool = False,
        steps: list[Step] | tuple[Step, ...] | None = None,
        active_step: int = 0
    ) -> Track:
        """
        Create a track on the server.

        Returns:
            The created Track with its server-assigned id.

        Raises:
            AuthenticationError: If no valid session can be obtained.
            RemoteError: If the server rejects the track.
        """
        payload = to_wire({
            "name": name,
            "code": code,
            "folder": folder,
            "is_multitrack": is_multitrack,
            "steps": list(steps or ()),
            "active_step": active_step,
        })
        body = await self._request("POST", "/tracks/create", payload)
        return Track.from_api(_expect(body, "track", "/tracks/create"))

    async def update_track(self, track_id: str, updates: dict[str, Any]) -> Track:
        """
        Apply a partial update to a track.

        Args:
            track_id: Id of the track to update.
            updates: Model attribute names -> new values, e.g.
                     {"code": "...", "modified": "2026-01-01T00:00:00+00:00"}.

        Returns:
            The updated Track as stored by the server.

        Raises:
            NotFoundError: If the track no longer exists.
        """
        payload = {"trackId": track_id, "updates": to_wire(updates)}
        body = await self._request("PUT", "/tracks/update", payload)
        return Track.from_api(_expect(body, "track", "/tracks/update"))

    async def delete_track(self, track_id: str) -> None:
        await self._request("DELETE", "/tracks/delete", {"trackId": track_id})

    async def delete_all_tracks(self) -> None:
        await self._request("DELETE", "/tracks/delete-all")

    # =========================================================================
    # Folder Operations
    # =========================================================================

    async def list_folders(self) -> list[Folder]:
        body = await self._request("GET", "/folders/list")
        return [Folder.from_api(item) for item in body.get("folders") or ()]

    async def create_folder(
        self,
        folder_id: str,
        name: str,
        path: str,
        parent: str | None = None
    ) -> Folder:
        """
        Create a folder. Folder ids are generated by the client.

        Returns:
            The created Folder (the server's copy when it sends one back).
        """
        payload = {"id": folder_id, "name": name, "path": path, "parent": parent}
        body = await self._request("POST", "/folders/create", payload)
        return Folder.from_api(body.get("folder") or payload)

    async def update_folder(self, folder_id: str, updates: dict[str, Any]) -> Folder | None:
        """
        Apply a partial update to a folder.

        Returns:
            The updated Folder, or None if the server did not echo it back.

        Raises:
            NotFoundError: If the folder no longer exists or is not owned
                           by the signed-in user.
        """
        payload = {"folderId": folder_id, "updates": to_wire(updates)}
        body = await self._request("PUT", "/folders/update", payload)
        folder = body.get("folder")
        return Folder.from_api(folder) if folder else None

    async def delete_folder(self, folder_id: str) -> None:
        await self._request("DELETE", "/folders/delete", {"folderId": folder_id})

    async def delete_all_folders(self) -> None:
        await self._request("DELETE", "/folders/delete-all")

    # =========================================================================
    # Request Path
    # =========================================================================

    async def _request(
        self,
        method: str,
        endpoint: str,
        payload: dict[str, Any] | None = None,
        retries: int = 1
    ) -> dict[str, Any]:
        """
        Send an authenticated request and translate the outcome.

        Args:
            method: HTTP method.
            endpoint: Path relative to base_url + api_prefix.
            payload: JSON body, if any.
            retries: Auth retries left. A 401 consumes one after a forced
                     session refresh; with none left the 401 is final.

        Returns:
            The decoded JSON body ({} when empty).

        Raises:
            AuthenticationError: No valid session, or 401 after the retry.
            NotFoundError: Server answered 404.
            RemoteError: Any other failure.
        """
        if not await self._session.ensure_valid_session():
            raise AuthenticationError(
                "Not signed in or session expired, please sign in again",
                details={"endpoint": endpoint}
            )

        try:
            status, body = await self._send(method, endpoint, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"{method} {endpoint} failed: {e or type(e).__name__}")
            raise RemoteError(
                f"Network error: {e or 'request timed out'}",
                status=0,
                details={"endpoint": endpoint, "original_error": str(e)}
            ) from e

        if status == 401:
            if retries > 0:
                logger.info(f"{method} {endpoint} returned 401, refreshing session and retrying")
                if await self._session.ensure_valid_session(force_refresh=True):
                    return await self._request(method, endpoint, payload, retries=retries - 1)
            raise AuthenticationError(
                _error_message(body, "Session expired, please sign in again"),
                details={"endpoint": endpoint, "http_status": 401}
            )

        if status == 404:
            raise NotFoundError(
                _error_message(body, "Not found"),
                details={"endpoint": endpoint, "http_status": 404}
            )

        if status >= 400:
            raise RemoteError(
                _error_message(body, f"Request failed with status {status}"),
                status=status,
                details={"endpoint": endpoint, "http_status": status}
            )

        return body

    async def _send(
        self,
        method: str,
        endpoint: str,
        payload: dict[str, Any] | None
    ) -> tuple[int, dict[str, Any]]:
        """
        Perform one HTTP round-trip.

        Returns:
            (status, decoded JSON body). Non-JSON bodies are wrapped as
            {"error": text} so error messages survive.
        """
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
            self._owns_http = True

        headers = {"Content-Type": "application/json", **self._session.auth_headers()}
        logger.debug(f"{method} {endpoint}")

        async with self._http.request(
            method,
            self.url_for(endpoint),
            json=payload,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        ) as response:
            text = await response.text()
            return response.status, _decode_body(text)


def parse_library_payload(body: dict[str, Any]) -> tuple[list[Track], list[Folder]]:
    """Turn a list response (hierarchical or flat) into (tracks, folders)."""
    if "root" in body and isinstance(body["root"], dict):
        return tree_to_flat(body["root"])
    if "children" in body or body.get("id") == "root":
        return tree_to_flat(body)
    tracks = [Track.from_api(item) for item in body.get("tracks") or ()]
    folders = [Folder.from_api(item) for item in body.get("folders") or ()]
    return tracks, folders


def _decode_body(text: str) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except ValueError:
        return {"error": text.strip()}
    return data if isinstance(data, dict) else {"data": data}


def _error_message(body: dict[str, Any], default: str) -> str:
    message = body.get("error") or body.get("message")
    return str(message) if message else default


def _expect(body: dict[str, Any], key: str, endpoint: str) -> dict[str, Any]:
    value = body.get(key)
    if not isinstance(value, dict):
        raise RemoteError(
            f"Malformed response from {endpoint}: missing '{key}'",
            status=200,
            details={"endpoint": endpoint}
        )
    return value
