import re
import httpx
from typing import Optional
import logging

from rapidfuzz import fuzz

from app.exceptions import ExternalFetchError

logger = logging.getLogger(__name__)

# Minimum token_sort_ratio for a result to count as a match
MATCH_THRESHOLD = 70

_PART_RE = re.compile(r"[\s:\-]*\(?\b(?:part|parte)\s*(\d+)\)?\s*$", re.IGNORECASE)
_DUB_TAG_RE = re.compile(r"\(\s*ita\s*\)", re.IGNORECASE)
_NON_WORD_RE = re.compile(r"[^\w\s]")


def normalize_title(title: str) -> str:
    """Lowercase, drop the (ITA) tag and punctuation, collapse whitespace."""
    title = _DUB_TAG_RE.sub(" ", title or "")
    title = _NON_WORD_RE.sub(" ", title.lower())
    return " ".join(title.split())


def split_part(title: str) -> tuple[str, int]:
    """Split "Name Part 2" into ("Name", 2); titles without a part are part 1."""
    title = _DUB_TAG_RE.sub(" ", title or "").strip()
    match = _PART_RE.search(title)
    if not match:
        return title, 1
    return title[:match.start()].strip(), int(match.group(1))


def _titles(result: dict) -> list[str]:
    return [t for t in (result.get("name"), result.get("jtitle")) if t]


def _score(result: dict, keyword: str) -> float:
    target = normalize_title(keyword)
    scores = [0.0]
    for title in _titles(result):
        scores.append(fuzz.token_sort_ratio(target, normalize_title(title)))
        scores.append(fuzz.token_sort_ratio(target, normalize_title(split_part(title)[0])))
    return max(scores)


class AnimeworldClient:
    """Client for the AnimeWorld catalog search."""

    def __init__(self, url: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def search_anime(self, keyword: str) -> list[dict]:
        """Search the catalog, returning the raw result entries."""
        try:
            async with httpx.AsyncClient(transport=self.transport, follow_redirects=True) as client:
                response = await client.post(
                    f"{self.base_url}/api/search/v2",
                    params={"keyword": keyword},
                    timeout=self.timeout
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalFetchError(f"AnimeWorld search failed for '{keyword}': {e}") from e

        if not isinstance(data, dict):
            raise ExternalFetchError(f"Unexpected AnimeWorld response for '{keyword}': {type(data).__name__}")

        animes = data.get("animes") or []
        if not isinstance(animes, list):
            raise ExternalFetchError(f"Unexpected AnimeWorld results for '{keyword}': {type(animes).__name__}")
        return [a for a in animes if isinstance(a, dict)]

    def find_best_match_with_parts(self, results: list[dict], keyword: str) -> list[dict]:
        """
        Pick the result closest to the keyword plus its multi-part continuations.
        Returns entries ordered by part number, or an empty list when nothing
        scores above MATCH_THRESHOLD.
        """
        if not results:
            return []

        scored = [(_score(r, keyword), index, r) for index, r in enumerate(results)]
        best_score, _, best = max(scored, key=lambda s: (s[0], -s[1]))
        if best_score < MATCH_THRESHOLD:
            logger.debug(f"Best AnimeWorld match for '{keyword}' scored {best_score:.0f}, below threshold")
            return []

        base = normalize_title(split_part(best.get("name") or best.get("jtitle") or "")[0])

        parts = []
        seen = set()
        for result in results:
            key = (result.get("link"), result.get("identifier"))
            if key in seen:
                continue
            for title in _titles(result):
                result_base, part = split_part(title)
                if normalize_title(result_base) == base:
                    parts.append((part, result))
                    seen.add(key)
                    break

        parts.sort(key=lambda p: p[0])
        return [result for _, result in parts]

    def get_anime_identifier(self, link: str, identifier: str) -> str:
        """Identifier stored on seasons; the watch page is /play/{link}.{identifier}."""
        return f"{link}.{identifier}"
