import asyncio
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings, LANGUAGES
from app.database import get_session
from app.models import Episode, Season, Series, TaskRun
from app.progress import progress
from app.services.metadata_sync import MetadataSyncService, build_sync_service
from app.services.posters import PosterCache
from app.services.reconcile import load_json_list, series_rollup
from app.exceptions import ParseError

router = APIRouter()


async def get_sync_service() -> MetadataSyncService:
    service = await build_sync_service()
    if not service:
        raise HTTPException(status_code=400, detail="Sonarr not configured")
    return service


def _safe_list(raw: str) -> list:
    try:
        return load_json_list(raw)
    except ParseError:
        return []


def season_to_dict(season: Season) -> dict:
    return {
        "id": season.id,
        "season_number": season.season_number,
        "title": season.title,
        "total_episodes": season.total_episodes,
        "missing_episodes": season.missing_episodes,
        "aired_episodes": season.aired_episodes,
        "status": season.status,
        "download_urls": season.download_urls or [],
        "deleted": season.deleted
    }


def series_to_dict(series: Series, seasons: list[Season]) -> dict:
    return {
        "id": series.id,
        "sonarr_id": series.sonarr_id,
        "title": series.title,
        "description": series.description,
        "status": series.status,
        "year": series.year,
        "network": series.network,
        "genres": _safe_list(series.genres),
        "alternate_titles": _safe_list(series.alternate_titles),
        "preferred_language": series.preferred_language,
        "absolute": series.absolute,
        "deleted": series.deleted,
        "has_poster": bool(series.poster_path),
        **series_rollup(series, seasons)
    }


def run_to_dict(run: TaskRun) -> dict:
    return {
        "id": run.id,
        "task": run.task,
        "trigger": run.trigger,
        "sonarr_id": run.sonarr_id,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
        "status": run.status,
        "series_synced": run.series_synced,
        "series_failed": run.series_failed,
        "error_message": run.error_message
    }


async def _get_series(session: AsyncSession, series_id: int) -> Series:
    series = await session.get(Series, series_id)
    if not series:
        raise HTTPException(status_code=404, detail="Series not found")
    return series


async def _get_seasons(session: AsyncSession, series_id: int) -> list[Season]:
    result = await session.execute(
        select(Season).where(Season.series_id == series_id).order_by(Season.season_number)
    )
    return list(result.scalars().all())


@router.get("/series")
async def list_series(
    include_deleted: bool = Query(False),
    session: AsyncSession = Depends(get_session)
):
    """List synced series with their episode rollups."""
    query = select(Series).order_by(Series.title)
    if not include_deleted:
        query = query.where(Series.deleted == False)

    result = await session.execute(query)
    series_list = result.scalars().all()

    seasons_result = await session.execute(select(Season))
    by_series = {}
    for season in seasons_result.scalars().all():
        by_series.setdefault(season.series_id, []).append(season)

    return {
        "series": [series_to_dict(s, by_series.get(s.id, [])) for s in series_list],
        "total_count": len(series_list)
    }


@router.get("/series/{series_id}")
async def get_series(series_id: int, session: AsyncSession = Depends(get_session)):
    """Get a series with its seasons."""
    series = await _get_series(session, series_id)
    seasons = await _get_seasons(session, series_id)

    data = series_to_dict(series, seasons)
    data["seasons"] = [season_to_dict(s) for s in seasons]
    return data


@router.get("/series/{series_id}/episodes")
async def get_series_episodes(series_id: int, session: AsyncSession = Depends(get_session)):
    await _get_series(session, series_id)
    result = await session.execute(
        select(Episode)
        .where(Episode.series_id == series_id)
        .order_by(Episode.season_number, Episode.episode_number)
    )
    return {
        "episodes": [
            {
                "id": e.id,
                "season_id": e.season_id,
                "season_number": e.season_number,
                "episode_number": e.episode_number,
                "title": e.title,
                "air_date": e.air_date.isoformat() if e.air_date else None,
                "aired_status": e.aired_status,
                "disk_status": e.disk_status,
                "monitored": e.monitored
            }
            for e in result.scalars().all()
        ]
    }


@router.get("/series/{series_id}/poster")
async def get_series_poster(series_id: int, session: AsyncSession = Depends(get_session)):
    series = await _get_series(session, series_id)
    if not series.poster_path:
        raise HTTPException(status_code=404, detail="No poster")

    path = PosterCache(settings.poster_dir).full_path(series.poster_path)
    if not path.exists():
        raise HTTPException(status_code=404, detail="No poster")
    return FileResponse(path)


@router.patch("/series/{series_id}")
async def update_series_preferences(
    series_id: int,
    request: Request,
    session: AsyncSession = Depends(get_session)
):
    """Update locally curated fields (language preference, absolute numbering)."""
    series = await _get_series(session, series_id)
    data = await request.json()

    if "preferred_language" in data:
        if data["preferred_language"] not in LANGUAGES:
            return JSONResponse({"success": False, "error": "Invalid language"}, status_code=400)
        series.preferred_language = data["preferred_language"]

    if "absolute" in data:
        series.absolute = bool(data["absolute"])

    await session.commit()
    return {"success": True, "preferred_language": series.preferred_language, "absolute": series.absolute}


@router.put("/seasons/{season_id}/download-urls")
async def update_season_download_urls(
    season_id: int,
    request: Request,
    session: AsyncSession = Depends(get_session)
):
    """Manually set a season's AnimeWorld identifiers."""
    season = await session.get(Season, season_id)
    if not season:
        raise HTTPException(status_code=404, detail="Season not found")

    data = await request.json()
    urls = data.get("download_urls")
    if not isinstance(urls, list) or not all(isinstance(u, str) for u in urls):
        return JSONResponse({"success": False, "error": "download_urls must be a list of strings"}, status_code=400)

    season.download_urls = [u.strip() for u in urls if u.strip()]
    await session.commit()
    return {"success": True, "download_urls": season.download_urls}


@router.post("/series/{sonarr_id}/sync")
async def sync_series(
    sonarr_id: int,
    refresh_urls: bool = Query(False),
    service: MetadataSyncService = Depends(get_sync_service)
):
    """Sync one series now and report the outcome."""
    run = await service.run_series_task(sonarr_id, refresh_urls=refresh_urls)
    if run.status == "failed":
        return JSONResponse(run_to_dict(run), status_code=422)
    return run_to_dict(run)


@router.post("/sync")
async def trigger_sync(service: MetadataSyncService = Depends(get_sync_service)):
    """Start a full sync in the background."""
    # Claimed before the task is created so a second request sees it
    if not service.progress.claim():
        return JSONResponse({"status": "already_running"}, status_code=409)

    asyncio.create_task(service.sync_all(trigger="manual"))
    return {"status": "started"}


@router.get("/progress")
async def get_progress():
    """Get current sync progress."""
    return JSONResponse(progress.to_dict())


@router.get("/runs")
async def get_runs(
    limit: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_session)
):
    """Recent sync runs, newest first."""
    result = await session.execute(
        select(TaskRun).order_by(desc(TaskRun.started_at), desc(TaskRun.id)).limit(limit)
    )
    return {"runs": [run_to_dict(r) for r in result.scalars().all()]}


@router.get("/schedule-info")
async def get_schedule_info():
    from app.scheduler import get_next_run_time

    next_run = get_next_run_time()
    return {
        "enabled": settings.sync_interval_hours > 0,
        "interval_hours": settings.sync_interval_hours,
        "next_run": next_run.strftime('%Y-%m-%d %H:%M') if next_run else None
    }
