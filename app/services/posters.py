import httpx
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
import logging

from app.exceptions import ExternalFetchError

logger = logging.getLogger(__name__)


class PosterCache:
    """Downloads series posters into a local directory, at most once per max_age."""

    def __init__(
        self,
        poster_dir: str,
        max_age_hours: int = 48,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.poster_dir = Path(poster_dir)
        self.max_age = timedelta(hours=max_age_hours)
        self.transport = transport

    def is_fresh(self, last_downloaded_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
        if not last_downloaded_at:
            return False
        now = now or datetime.now()
        return now - last_downloaded_at < self.max_age

    def filename_for(self, sonarr_id: int, remote_url: str) -> str:
        ext = Path(urlparse(remote_url).path).suffix or ".jpg"
        return f"series_{sonarr_id}{ext}"

    def full_path(self, relative_path: str) -> Path:
        return self.poster_dir / relative_path

    async def ensure_poster(
        self,
        sonarr_id: int,
        remote_url: Optional[str],
        last_downloaded_at: Optional[datetime],
        current_path: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> tuple[Optional[str], Optional[datetime]]:
        """
        Return (poster_path, downloaded_at) for a series.

        A poster downloaded less than max_age ago is kept as is. Otherwise the
        remote image is fetched and written to series_<sonarr_id>.<ext>. Any
        failure keeps the previous path and timestamp; this never raises.
        """
        now = now or datetime.now()

        if current_path and self.is_fresh(last_downloaded_at, now):
            return current_path, last_downloaded_at

        if not remote_url:
            return current_path, last_downloaded_at

        try:
            filename = await self._download(sonarr_id, remote_url)
        except ExternalFetchError as e:
            logger.error(f"Error downloading poster for series {sonarr_id}: {e}")
            return current_path, last_downloaded_at

        logger.debug(f"Downloaded poster for series {sonarr_id}")
        return filename, now

    async def _download(self, sonarr_id: int, remote_url: str) -> str:
        try:
            async with httpx.AsyncClient(transport=self.transport, follow_redirects=True) as client:
                response = await client.get(remote_url, timeout=30.0)
                response.raise_for_status()
                content = response.content

            self.poster_dir.mkdir(parents=True, exist_ok=True)
            filename = self.filename_for(sonarr_id, remote_url)
            self.full_path(filename).write_bytes(content)
        except (httpx.HTTPError, httpx.InvalidURL, OSError, ValueError) as e:
            raise ExternalFetchError(str(e)) from e

        return filename
