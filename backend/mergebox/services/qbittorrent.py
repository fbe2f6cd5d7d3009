"""qBittorrent Web API client.

Only the three read endpoints Mergebox needs, plus cookie login. When a
user is configured the client logs in lazily and, if a request is rejected
with 403 (expired session), logs in again and retries that request once.
"""

import logging
from enum import Enum
from typing import Any

import httpx

from mergebox.config import settings
from mergebox.core.errors import QbittorrentError, QbittorrentResponseError, handle_errors

logger = logging.getLogger(__name__)

TorrentWithFiles = tuple[dict[str, Any], list[dict[str, Any]]]


class ScanError(str, Enum):
    """Why a category could not be listed."""

    UNAVAILABLE = "unavailable"
    UNKNOWN_CATEGORY = "unknown-category"
    BAD_RESPONSE = "bad-response"


class QbittorrentClient:
    """Async client for the qBittorrent Web API v2."""

    def __init__(
        self,
        base_url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.qbit_base_url).rstrip("/")
        self._username = settings.qbit_user if username is None else username
        self._password = settings.qbit_password if password is None else password
        self._timeout = settings.qbit_timeout if timeout is None else timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._authenticated = False
        logger.info(f"qBittorrent settings: base_url={self.base_url} auth={bool(self._username)}")

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=False,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._authenticated = False

    @handle_errors(
        error_types=(httpx.HTTPError,),
        default_message="qBittorrent login failed",
        wrap_as=QbittorrentError,
    )
    async def login(self) -> None:
        """Open a session; the SID cookie is kept on the underlying client."""
        if not self._username:
            return
        logger.info("Attempting qBittorrent login")
        client = self._http()
        client.cookies.clear()
        response = await client.post(
            "/api/v2/auth/login",
            data={"username": self._username, "password": self._password},
        )
        # qBittorrent answers 200 "Fails." without a cookie on bad credentials
        if response.status_code != 200 or not response.headers.get("set-cookie"):
            raise QbittorrentError(
                f"qBittorrent login failed with status {response.status_code}"
            )
        self._authenticated = True
        logger.info("qBittorrent login succeeded")

    async def _ensure_session(self) -> None:
        if self._username and not self._authenticated:
            await self.login()

    @handle_errors(
        error_types=(httpx.HTTPError,),
        default_message="qBittorrent request failed",
        log_level="warning",
        wrap_as=QbittorrentError,
    )
    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        await self._ensure_session()
        client = self._http()
        response = await client.get(path, params=params)
        if response.status_code == 403 and self._username:
            logger.warning(f"qBittorrent session rejected, re-authenticating ({path})")
            self._authenticated = False
            await self.login()
            response = await client.get(path, params=params)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise QbittorrentResponseError(f"qBittorrent returned invalid JSON for {path}") from e

    async def list_categories(self) -> dict[str, dict[str, Any]]:
        """Category name -> details (``savePath``)."""
        categories = await self._get_json("/api/v2/torrents/categories")
        if not isinstance(categories, dict):
            raise QbittorrentResponseError("Unexpected qBittorrent response shape for categories")
        return categories

    async def list_completed_torrents(self, category_id: str) -> list[dict[str, Any]]:
        torrents = await self._get_json(
            "/api/v2/torrents/info",
            params={"category": category_id, "filter": "completed"},
        )
        if not isinstance(torrents, list):
            raise QbittorrentResponseError("Unexpected qBittorrent response shape for torrents")
        return torrents

    async def list_files(self, torrent_hash: str) -> list[dict[str, Any]]:
        files = await self._get_json("/api/v2/torrents/files", params={"hash": torrent_hash})
        return files if isinstance(files, list) else []

    async def get_categories(self) -> list[dict[str, str]] | None:
        """Categories for display, or None when qBittorrent is unavailable."""
        try:
            categories = await self.list_categories()
        except QbittorrentError as e:
            logger.error(f"qBittorrent categories fetch failed: {e}")
            return None
        return [
            {
                "id": name,
                "name": name,
                "path": (details or {}).get("savePath", "") if isinstance(details, dict) else "",
            }
            for name, details in categories.items()
        ]

    async def fetch_completed_torrents_with_files(
        self, category_id: str
    ) -> tuple[list[TorrentWithFiles] | None, ScanError | None]:
        """Every completed torrent in a category with its file listing.

        Returns:
            (torrents, None) on success, (None, error) otherwise. A torrent
            whose file listing fails is kept with an empty listing.
        """
        try:
            categories = await self.list_categories()
        except QbittorrentError as e:
            logger.error(f"qBittorrent categories fetch failed: {e}")
            return None, ScanError.UNAVAILABLE
        if category_id not in categories:
            return None, ScanError.UNKNOWN_CATEGORY

        try:
            logger.info(f"Fetching completed torrents for category '{category_id}'")
            torrents = await self.list_completed_torrents(category_id)
        except QbittorrentResponseError as e:
            logger.warning(f"qBittorrent returned an invalid torrent list: {e}")
            return None, ScanError.BAD_RESPONSE
        except QbittorrentError as e:
            logger.error(f"qBittorrent scan failed: {e}")
            return None, ScanError.UNAVAILABLE

        enriched: list[TorrentWithFiles] = []
        for torrent in torrents:
            if not isinstance(torrent, dict) or not torrent.get("hash"):
                continue
            try:
                files = await self.list_files(torrent["hash"])
            except QbittorrentError as e:
                logger.warning(f"qBittorrent file list fetch failed for {torrent['hash']}: {e}")
                files = []
            enriched.append((torrent, files))

        logger.info(
            f"qBittorrent completed torrent files collected: "
            f"torrents={len(torrents)} entries={len(enriched)}"
        )
        return enriched, None
