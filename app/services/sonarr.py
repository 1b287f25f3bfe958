import httpx
from datetime import datetime, timezone
from typing import Optional
import logging

from app.exceptions import NotFoundError

logger = logging.getLogger(__name__)


def parse_air_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a Sonarr ISO timestamp into a naive UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def episodes_have_valid_air_dates(episodes: list[dict], season_number: int) -> bool:
    """True when the season has at least one real, dated episode."""
    for ep in episodes:
        if ep.get("seasonNumber") != season_number:
            continue
        if (ep.get("episodeNumber") or 0) <= 0:
            continue
        if parse_air_date(ep.get("airDateUtc")):
            return True
    return False


class SonarrClient:
    """Client for interacting with Sonarr API."""

    def __init__(self, url: str, api_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = url.rstrip("/")
        self.api_key = api_key
        self.transport = transport
        self.headers = {
            "X-Api-Key": api_key,
            "Content-Type": "application/json"
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    async def test_connection(self) -> dict:
        """Test the connection to Sonarr and return system status."""
        async with self._client() as client:
            response = await client.get(
                f"{self.base_url}/api/v3/system/status",
                headers=self.headers,
                timeout=10.0
            )
            response.raise_for_status()
            return response.json()

    async def get_all_series(self) -> list[dict]:
        """Get all series from Sonarr."""
        async with self._client() as client:
            response = await client.get(
                f"{self.base_url}/api/v3/series",
                headers=self.headers,
                timeout=30.0
            )
            response.raise_for_status()
            return response.json()

    async def get_series_by_id(self, series_id: int) -> dict:
        """Get a single series, raising NotFoundError if Sonarr does not know it."""
        async with self._client() as client:
            response = await client.get(
                f"{self.base_url}/api/v3/series/{series_id}",
                headers=self.headers,
                timeout=30.0
            )
            if response.status_code == 404:
                raise NotFoundError(f"Series {series_id} not found in Sonarr")
            response.raise_for_status()
            return response.json()

    async def get_series_episodes(self, series_id: int) -> list[dict]:
        """Get all episodes for a series."""
        async with self._client() as client:
            response = await client.get(
                f"{self.base_url}/api/v3/episode",
                params={"seriesId": series_id},
                headers=self.headers,
                timeout=30.0
            )
            response.raise_for_status()
            return response.json()

    async def season_has_valid_episodes(self, series_id: int, season_number: int) -> bool:
        """Check if a season has at least one episode with an air date."""
        episodes = await self.get_series_episodes(series_id)
        return episodes_have_valid_air_dates(episodes, season_number)
