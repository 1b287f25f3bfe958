import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings, get_default_language
from app.database import async_session
from app.exceptions import NotFoundError
from app.models import Connection, Episode, Season, Series, TaskRun
from app.progress import progress as global_progress, SyncProgress
from app.services.animeworld import AnimeworldClient
from app.services.identifiers import resolve_identifiers
from app.services.notifier import Notifier, SYNC_SUCCESS, SYNC_FAILURE
from app.services.posters import PosterCache
from app.services.reconcile import (
    episode_stats, episodes_for_season, find_anchor_season, find_poster_url,
    monitored_candidates, reconcile_episode, reconcile_season, reconcile_series,
    target_seasons
)
from app.services.sonarr import SonarrClient

logger = logging.getLogger(__name__)

# One in-flight sync per Sonarr series id; entries live only while in use
_series_locks: dict[int, asyncio.Lock] = {}
_lock_users: dict[int, int] = {}


@asynccontextmanager
async def _series_lock(sonarr_id: int):
    lock = _series_locks.setdefault(sonarr_id, asyncio.Lock())
    _lock_users[sonarr_id] = _lock_users.get(sonarr_id, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _lock_users[sonarr_id] -= 1
        if not _lock_users[sonarr_id]:
            del _lock_users[sonarr_id]
            del _series_locks[sonarr_id]


class MetadataSyncService:
    """Keeps local series, seasons and episodes in line with Sonarr."""

    def __init__(
        self,
        session_factory,
        sonarr: SonarrClient,
        catalog: AnimeworldClient,
        posters: PosterCache,
        notifier: Optional[Notifier] = None,
        progress: Optional[SyncProgress] = None
    ):
        self.session_factory = session_factory
        self.sonarr = sonarr
        self.catalog = catalog
        self.posters = posters
        self.notifier = notifier
        self.progress = progress or global_progress

    async def sync_series(self, sonarr_id: int, refresh_urls: bool = False) -> Series:
        """
        Sync one series end to end. Identifiers are only searched for seasons
        without any, unless refresh_urls is set.
        Raises NotFoundError or AnchorMissingError on fatal failures.
        """
        async with _series_lock(sonarr_id):
            async with self.session_factory() as session:
                show = await self.sonarr.get_series_by_id(sonarr_id)
                logger.info(f"Syncing series: {show['title']}")

                series = await self.sync_series_record(session, show)
                await self.sync_seasons(session, series, show, refresh_urls)

                logger.info(f"Successfully synced series: {show['title']}")
                return series

    async def sync_local_series(self, series_id: int, refresh_urls: bool = False) -> Series:
        """Sync a series by its local id."""
        async with self.session_factory() as session:
            series = await session.get(Series, series_id)
            if series is None:
                raise NotFoundError(f"Series {series_id} not found")
            sonarr_id = series.sonarr_id
        return await self.sync_series(sonarr_id, refresh_urls)

    async def sync_series_record(self, session: AsyncSession, show: dict) -> Series:
        """Create or update the Series row, refreshing the poster if stale."""
        result = await session.execute(
            select(Series).where(Series.sonarr_id == show["id"])
        )
        existing = result.scalar_one_or_none()

        poster_path, poster_downloaded_at = await self.posters.ensure_poster(
            show["id"],
            find_poster_url(show.get("images")),
            existing.poster_downloaded_at if existing else None,
            existing.poster_path if existing else None
        )

        default_language = await get_default_language(session)
        series = reconcile_series(existing, show, default_language, poster_path, poster_downloaded_at)

        if existing is None:
            session.add(series)
            logger.info(f"Created series: {show['title']}")
        else:
            logger.info(f"Updated series: {show['title']}")

        await session.commit()
        return series

    async def sync_seasons(
        self,
        session: AsyncSession,
        series: Series,
        show: dict,
        force_refresh: bool = False
    ) -> list[Season]:
        monitored = []
        for candidate in monitored_candidates(show):
            if await self.sonarr.season_has_valid_episodes(show["id"], candidate["seasonNumber"]):
                monitored.append(candidate)

        anchor = find_anchor_season(show)
        targets = target_seasons(series.absolute, anchor, monitored)
        season_numbers = [s["seasonNumber"] for s in targets]

        # Soft-delete seasons no longer monitored or gone from Sonarr
        stale = update(Season).where(Season.series_id == series.id)
        if season_numbers:
            stale = stale.where(Season.season_number.not_in(season_numbers))
        await session.execute(stale.values(deleted=True))

        episodes = await self.sonarr.get_series_episodes(show["id"])

        synced = []
        for upstream_season in targets:
            season_number = upstream_season["seasonNumber"]
            result = await session.execute(
                select(Season).where(
                    Season.series_id == series.id,
                    Season.season_number == season_number
                )
            )
            existing = result.scalar_one_or_none()

            # Absolute numbering treats the whole series as one sequence
            statistics = show.get("statistics") if series.absolute else upstream_season.get("statistics")
            season = reconcile_season(existing, series, season_number, episode_stats(statistics))
            if existing is None:
                session.add(season)
            await session.flush()

            await self.sync_episodes(session, series, season, episodes)
            await session.commit()

            if not season.download_urls or force_refresh:
                await resolve_identifiers(session, self.catalog, series, season, season_number)

            synced.append(season)

        logger.info(f"Synced {len(synced)} seasons for {series.title}")
        return synced

    async def sync_episodes(self, session: AsyncSession, series: Series, season: Season, episodes: list[dict]):
        result = await session.execute(
            select(Episode).where(Episode.season_id == season.id)
        )
        existing = {e.episode_number: e for e in result.scalars().all()}

        now = datetime.now(timezone.utc).replace(tzinfo=None)
        seen = set()
        for number, payload in episodes_for_season(episodes, season.season_number, series.absolute):
            seen.add(number)
            current = existing.get(number)
            episode = reconcile_episode(current, season, payload, number, now)
            if current is None:
                session.add(episode)

        # Episodes gone from Sonarr, or renumbered by an absolute-mode toggle
        removed = [e for number, e in existing.items() if number not in seen]
        for episode in removed:
            await session.delete(episode)
        if removed:
            logger.info(f"Removed {len(removed)} stale episodes from {series.title} season {season.season_number}")

    async def _start_run(self, **fields) -> int:
        async with self.session_factory() as session:
            run = TaskRun(status="running", **fields)
            session.add(run)
            await session.commit()
            return run.id

    async def _finish_run(self, run_id: int, status: str, synced: int, failed: int, error: Optional[str]) -> TaskRun:
        async with self.session_factory() as session:
            run = await session.get(TaskRun, run_id)
            run.completed_at = datetime.now()
            run.status = status
            run.series_synced = synced
            run.series_failed = failed
            run.error_message = error
            await session.commit()
            return run

    async def sync_all(self, trigger: str = "manual") -> TaskRun:
        """
        Sync every Sonarr series, recording the run in the task history.
        Callers that start this in the background claim progress first; it is
        released here however the run ends.
        """
        self.progress.is_running = True
        try:
            return await self._sync_all(trigger)
        finally:
            self.progress.finish()

    async def _sync_all(self, trigger: str) -> TaskRun:
        run_id = await self._start_run(task="sync_all", trigger=trigger)

        try:
            shows = await self.sonarr.get_all_series()
        except Exception as e:
            logger.error(f"Failed to list Sonarr series: {e}")
            run = await self._finish_run(run_id, "failed", 0, 0, str(e))
            await self._notify(SYNC_FAILURE, "Metadata sync failed", str(e))
            return run

        self.progress.start(run_id, len(shows))
        synced = 0
        errors = []
        for show in shows:
            title = show.get("title") or str(show["id"])
            try:
                await self.sync_series(show["id"])
            except Exception as e:
                errors.append(f"{title}: {e}")
                logger.error(f"Sync failed for {title}: {e}")
                self.progress.update(title, False)
            else:
                synced += 1
                self.progress.update(title, True)

        # Series gone from Sonarr are kept but flagged
        async with self.session_factory() as session:
            await session.execute(
                update(Series)
                .where(Series.sonarr_id.not_in([s["id"] for s in shows]))
                .values(deleted=True)
            )
            await session.commit()

        run = await self._finish_run(run_id, "completed", synced, len(errors), "\n".join(errors) or None)
        logger.info(f"Sync complete: {synced} synced, {len(errors)} failed")

        await self._notify(
            SYNC_FAILURE if errors else SYNC_SUCCESS,
            "Metadata sync",
            f"{synced} series synced, {len(errors)} failed"
        )
        return run

    async def run_series_task(self, sonarr_id: int, refresh_urls: bool = False, trigger: str = "manual") -> TaskRun:
        """Sync one series and record the outcome in the task history."""
        run_id = await self._start_run(task="sync_series", trigger=trigger, sonarr_id=sonarr_id)

        try:
            series = await self.sync_series(sonarr_id, refresh_urls)
        except Exception as e:
            logger.error(f"Sync failed for series {sonarr_id}: {e}")
            run = await self._finish_run(run_id, "failed", 0, 1, str(e))
            await self._notify(SYNC_FAILURE, "Sync failed", f"Series {sonarr_id}: {e}")
            return run

        run = await self._finish_run(run_id, "completed", 1, 0, None)
        await self._notify(SYNC_SUCCESS, "Sync completed", series.title)
        return run

    async def _notify(self, event: str, title: str, body: str):
        if self.notifier:
            await self.notifier.notify(event, title, body)


async def get_sonarr_client() -> Optional[SonarrClient]:
    """Get the configured Sonarr client, if its connection was verified."""
    async with async_session() as session:
        result = await session.execute(
            select(Connection).where(Connection.service == "sonarr")
        )
        conn = result.scalar_one_or_none()

    if conn and conn.verified:
        return SonarrClient(conn.url, conn.api_key)
    return None


async def build_sync_service() -> Optional[MetadataSyncService]:
    """Wire the sync service from stored connections and settings."""
    sonarr = await get_sonarr_client()
    if not sonarr:
        return None

    return MetadataSyncService(
        async_session,
        sonarr=sonarr,
        catalog=AnimeworldClient(settings.animeworld_url, settings.request_timeout),
        posters=PosterCache(settings.poster_dir, settings.poster_max_age_hours),
        notifier=Notifier(async_session)
    )
