import copy

from app.exceptions import ExternalFetchError, NotFoundError
from app.services.animeworld import AnimeworldClient
from app.services.sonarr import episodes_have_valid_air_dates


def make_episodes(season_number, count, aired, with_files, start_id=1):
    episodes = []
    for number in range(1, count + 1):
        air_date = "2020-01-01T12:00:00Z" if number <= aired else "2099-01-01T12:00:00Z"
        episodes.append({
            "id": start_id + number,
            "seasonNumber": season_number,
            "episodeNumber": number,
            "title": f"Episode {number}",
            "overview": None,
            "airDateUtc": air_date,
            "hasFile": number <= with_files,
            "monitored": True
        })
    return episodes


def make_show(**overrides):
    show = {
        "id": 10,
        "title": "Example Show",
        "overview": "A show used in tests.",
        "status": "Continuing",
        "year": 2020,
        "network": "Tokyo TV",
        "seasons": [
            {"seasonNumber": 0, "statistics": {"episodeCount": 1, "episodeFileCount": 0, "totalEpisodeCount": 1}},
            {"seasonNumber": 1, "statistics": {"episodeCount": 12, "episodeFileCount": 10, "totalEpisodeCount": 12}},
            {"seasonNumber": 2, "statistics": {"episodeCount": 6, "episodeFileCount": 6, "totalEpisodeCount": 12}},
        ],
        "statistics": {"episodeCount": 18, "episodeFileCount": 16, "totalEpisodeCount": 24},
        "images": [{"coverType": "poster", "remoteUrl": "http://images.test/example.jpg"}],
        "alternateTitles": [{"title": "Example S2 Alt", "sceneSeasonNumber": 2}],
        "genres": ["Action", "Anime"],
    }
    show.update(overrides)
    return show


class FakeSonarr:
    """In-memory stand-in for SonarrClient."""

    def __init__(self, shows=None, episodes=None):
        self.shows = {s["id"]: copy.deepcopy(s) for s in (shows or [])}
        self.episodes = episodes or {}
        self.valid_checks = []

    async def get_all_series(self):
        return [copy.deepcopy(s) for s in self.shows.values()]

    async def get_series_by_id(self, series_id):
        if series_id not in self.shows:
            raise NotFoundError(f"Series {series_id} not found in Sonarr")
        return copy.deepcopy(self.shows[series_id])

    async def get_series_episodes(self, series_id):
        return copy.deepcopy(self.episodes.get(series_id, []))

    async def season_has_valid_episodes(self, series_id, season_number):
        self.valid_checks.append((series_id, season_number))
        return episodes_have_valid_air_dates(self.episodes.get(series_id, []), season_number)


class FakeCatalog(AnimeworldClient):
    """AnimeworldClient with canned search results keyed by keyword."""

    def __init__(self, results=None, failing=()):
        super().__init__("http://animeworld.test")
        self.results = results or {}
        self.failing = set(failing)
        self.searches = []

    async def search_anime(self, keyword):
        self.searches.append(keyword)
        if keyword in self.failing:
            raise ExternalFetchError(f"search failed for {keyword}")
        return copy.deepcopy(self.results.get(keyword, []))


def anime(name, link, identifier, dub=0):
    return {"name": name, "jtitle": name, "link": link, "identifier": identifier, "dub": dub}

