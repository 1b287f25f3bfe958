"""
Pure merge functions from Sonarr payloads into local records.

Each reconcile_* takes the existing record (or None) and the upstream data
and returns the record to persist. Only upstream-owned fields are written;
locally curated fields (download_urls, preferred_language, absolute) are left
as they are.
"""
import json
from datetime import datetime, timezone
from typing import Optional

from app.exceptions import AnchorMissingError, ParseError
from app.models import Episode, Season, Series
from app.services.sonarr import parse_air_date

STATUS_MAP = {
    "continuing": "ongoing",
    "ended": "completed",
}

SEASON_TITLE = "Season {number}"


def map_status(sonarr_status: Optional[str]) -> str:
    """Unknown statuses (upcoming, deleted, ...) are treated as cancelled."""
    return STATUS_MAP.get((sonarr_status or "").lower(), "cancelled")


def load_json_list(raw: Optional[str]) -> list:
    """Decode a serialized list column, raising ParseError if it is not one."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise ParseError(f"Invalid JSON list: {e}") from e
    if not isinstance(value, list):
        raise ParseError(f"Expected a JSON list, got {type(value).__name__}")
    return value


def find_poster_url(images: list[dict]) -> Optional[str]:
    for image in images or []:
        if image.get("coverType") == "poster":
            return image.get("remoteUrl") or None
    return None


def _apply(record, fields: dict):
    for key, value in fields.items():
        setattr(record, key, value)
    return record


def reconcile_series(
    existing: Optional[Series],
    show: dict,
    default_language: str,
    poster_path: Optional[str] = None,
    poster_downloaded_at: Optional[datetime] = None
) -> Series:
    """Merge a Sonarr series payload into the local Series."""
    fields = {
        "sonarr_id": show["id"],
        "title": show["title"],
        "description": show.get("overview") or None,
        "status": map_status(show.get("status")),
        "total_seasons": len(show.get("seasons") or []),
        "poster_path": poster_path,
        "poster_downloaded_at": poster_downloaded_at,
        "alternate_titles": json.dumps(show.get("alternateTitles") or []),
        "genres": json.dumps(show.get("genres") or []),
        "year": show.get("year") or None,
        "network": show.get("network") or None,
        # Present in Sonarr, so no longer deleted
        "deleted": False,
    }

    if existing is None:
        return Series(preferred_language=default_language, absolute=False, **fields)
    return _apply(existing, fields)


def monitored_candidates(show: dict) -> list[dict]:
    """Seasons with episodes, excluding specials (season 0)."""
    return [
        season for season in show.get("seasons") or []
        if season.get("seasonNumber", 0) > 0
        and (season.get("statistics") or {}).get("episodeCount", 0) > 0
    ]


def find_anchor_season(show: dict) -> dict:
    for season in show.get("seasons") or []:
        if season.get("seasonNumber") == 1:
            return season
    raise AnchorMissingError(f"No season 1 found for {show.get('title')}")


def target_seasons(absolute: bool, anchor: dict, monitored: list[dict]) -> list[dict]:
    """Absolute numbering collapses everything onto season 1."""
    if absolute:
        return [anchor]
    return monitored


def episode_stats(statistics: Optional[dict]) -> dict:
    statistics = statistics or {}
    aired = statistics.get("episodeCount") or 0
    downloaded = statistics.get("episodeFileCount") or 0
    total = statistics.get("totalEpisodeCount") or aired
    return {
        "total_episodes": total,
        "aired_episodes": aired,
        "missing_episodes": max(0, aired - downloaded),
    }


def reconcile_season(
    existing: Optional[Season],
    series: Series,
    season_number: int,
    stats: dict
) -> Season:
    """Merge episode statistics into the local Season, reviving it if deleted."""
    missing = stats["missing_episodes"]
    aired = stats["aired_episodes"]
    fields = {
        "series_id": series.id,
        "season_number": season_number,
        "title": SEASON_TITLE.format(number=season_number),
        "total_episodes": stats["total_episodes"],
        "missing_episodes": missing,
        "aired_episodes": aired,
        "status": "completed" if missing == 0 and aired > 0 else "not_started",
        "deleted": False,
    }

    if existing is None:
        return Season(download_urls=[], **fields)
    return _apply(existing, fields)


def episodes_for_season(episodes: list[dict], season_number: int, absolute: bool) -> list[tuple[int, dict]]:
    """
    Upstream episodes belonging to a local season, as (episode_number, payload).

    In absolute mode every regular episode belongs to the anchor season and
    is numbered by its absolute number, or by position when Sonarr has none.
    """
    if not absolute:
        return [
            (ep["episodeNumber"], ep) for ep in episodes
            if ep.get("seasonNumber") == season_number and (ep.get("episodeNumber") or 0) > 0
        ]

    regular = sorted(
        (ep for ep in episodes if (ep.get("seasonNumber") or 0) > 0 and (ep.get("episodeNumber") or 0) > 0),
        key=lambda ep: (ep["seasonNumber"], ep["episodeNumber"])
    )
    numbered = {}
    for position, ep in enumerate(regular, start=1):
        number = ep.get("absoluteEpisodeNumber") or position
        numbered.setdefault(number, ep)
    return sorted(numbered.items())


def reconcile_episode(
    existing: Optional[Episode],
    season: Season,
    episode: dict,
    episode_number: int,
    now: Optional[datetime] = None
) -> Episode:
    """Merge a Sonarr episode; aired/disk status are always recomputed."""
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    air_date = parse_air_date(episode.get("airDateUtc"))
    has_file = bool(episode.get("hasFile"))

    fields = {
        "series_id": season.series_id,
        "season_id": season.id,
        "sonarr_id": episode["id"],
        "season_number": episode.get("seasonNumber", season.season_number),
        "episode_number": episode_number,
        "title": episode.get("title") or None,
        "overview": episode.get("overview") or None,
        "air_date": air_date,
        "has_file": has_file,
        "monitored": bool(episode.get("monitored", True)),
        "aired_status": "aired" if air_date and air_date <= now else "not_aired",
        "disk_status": "downloaded" if has_file else "missing",
    }

    if existing is None:
        return Episode(**fields)
    return _apply(existing, fields)


def active_seasons(series: Series, seasons: list[Season]) -> list[Season]:
    """Seasons shown to consumers: not deleted, and only season 1 when absolute."""
    return [
        s for s in seasons
        if not s.deleted and (not series.absolute or s.season_number == 1)
    ]


def series_rollup(series: Series, seasons: list[Season]) -> dict:
    active = active_seasons(series, seasons)
    return {
        "seasons": len(active),
        "total_episodes": sum(s.total_episodes for s in active),
        "missing_episodes": sum(s.missing_episodes for s in active),
        "aired_episodes": sum(s.aired_episodes for s in active),
    }
