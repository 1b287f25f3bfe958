"""
AnimeWorld identifier resolution for a season.

Sonarr's canonical title often does not match AnimeWorld's naming, so every
candidate title (primary, then season-specific alternates, then alternates
for all seasons) is searched in turn and the first one that yields a match
wins.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ExternalFetchError, ParseError
from app.models import Season, Series
from app.services.reconcile import load_json_list

logger = logging.getLogger(__name__)

# Sonarr uses a negative sceneSeasonNumber for titles valid for every season
ALL_SEASONS = -1


@dataclass
class TitleCandidate:
    title: str
    priority: int
    season_specific: bool = False


def build_candidate_titles(title: str, alternate_titles: list[dict], season_number: int) -> list[TitleCandidate]:
    """Primary title first, then alternates for this season, then alternates for all seasons."""
    candidates = [TitleCandidate(title=title, priority=0)]

    for alt in alternate_titles:
        if not isinstance(alt, dict):
            continue
        alt_title = alt.get("title")
        scene_season = alt.get("sceneSeasonNumber")
        if not alt_title or scene_season is None:
            continue
        if scene_season == season_number:
            candidates.append(TitleCandidate(title=alt_title, priority=1, season_specific=True))
        elif scene_season < 0:
            candidates.append(TitleCandidate(title=alt_title, priority=2))

    # sorted() is stable, ties keep their original order
    return sorted(candidates, key=lambda c: c.priority)


def build_search_keyword(candidate: TitleCandidate, season_number: int) -> str:
    """Append the season number, unless the title already names the season."""
    if season_number > 1 and not candidate.season_specific:
        return f"{candidate.title} {season_number}"
    return candidate.title


def filter_by_language(results: list[dict], language: str) -> list[dict]:
    dubbed = [r for r in results if int(r.get("dub") or 0) == 1]
    subbed = [r for r in results if int(r.get("dub") or 0) == 0]

    if language == "dub":
        return dubbed
    if language == "sub":
        return subbed
    if language == "dub_fallback_sub":
        return dubbed or subbed
    return results


async def find_identifiers(
    candidates: list[TitleCandidate],
    season_number: int,
    language: str,
    search: Callable[[str], Awaitable[list[dict]]],
    match: Callable[[list[dict], str], list[dict]],
    identify: Callable[[dict], str]
) -> Optional[list[str]]:
    """
    Run the fallback chain: search, filter by language, match.
    Returns the identifiers of the first candidate that matches, or None.
    """
    for candidate in candidates:
        keyword = build_search_keyword(candidate, season_number)
        logger.debug(f"Searching AnimeWorld for: {keyword}")

        try:
            results = await search(keyword)
        except ExternalFetchError as e:
            logger.error(f"Error searching AnimeWorld for '{keyword}': {e}")
            continue

        if not results:
            continue

        filtered = filter_by_language(results, language)
        if not filtered:
            logger.debug(f"No results for '{keyword}' matching language preference: {language}")
            continue

        matches = match(filtered, keyword)
        if not matches:
            continue

        return [identify(m) for m in matches]

    return None


async def resolve_identifiers(session: AsyncSession, catalog, series: Series, season: Season, season_number: int):
    """Search AnimeWorld for a season and store the identifiers on it."""
    if series.absolute and season_number != 1:
        logger.debug(f"Series is absolute, skipping AnimeWorld search for season {season_number}")
        return

    try:
        alternates = load_json_list(series.alternate_titles)
    except ParseError as e:
        logger.debug(f"Ignoring alternate titles for {series.title}: {e}")
        alternates = []

    candidates = build_candidate_titles(series.title, alternates, season_number)

    try:
        identifiers = await find_identifiers(
            candidates,
            season_number,
            series.preferred_language,
            search=catalog.search_anime,
            match=catalog.find_best_match_with_parts,
            identify=lambda m: catalog.get_anime_identifier(m["link"], m["identifier"])
        )
    except Exception as e:
        logger.error(f"Error resolving AnimeWorld URL for {series.title} season {season_number}: {e}")
        return

    if not identifiers:
        logger.warning(
            f"Could not find AnimeWorld URL for {series.title} season {season_number} "
            f"after trying {len(candidates)} titles"
        )
        return

    season.download_urls = identifiers
    await session.commit()
    logger.info(f"Set {len(identifiers)} AnimeWorld identifier(s) for {series.title} season {season_number}")
