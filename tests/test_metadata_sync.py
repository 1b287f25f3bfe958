import asyncio

import pytest
from sqlalchemy import select

from app.config import set_config
from app.exceptions import AnchorMissingError, NotFoundError
from app.models import Episode, Season, Series, TaskRun
from app.services.metadata_sync import _series_locks
from app.services.notifier import Notifier
from tests.factories import FakeCatalog, anime, make_show


async def load_all(session_factory):
    async with session_factory() as session:
        series = (await session.execute(select(Series).order_by(Series.id))).scalars().all()
        seasons = (await session.execute(
            select(Season).order_by(Season.series_id, Season.season_number)
        )).scalars().all()
        episodes = (await session.execute(
            select(Episode).order_by(Episode.season_id, Episode.episode_number)
        )).scalars().all()
    return series, seasons, episodes


def snapshot(records):
    return [
        {c.name: getattr(r, c.name) for c in r.__table__.columns}
        for r in records
    ]


async def test_sync_creates_series_seasons_and_episodes(service, session_factory):
    await service.sync_series(10)

    series, seasons, episodes = await load_all(session_factory)

    assert len(series) == 1
    assert series[0].title == "Example Show"
    assert series[0].status == "ongoing"
    assert series[0].total_seasons == 3
    assert series[0].preferred_language == "sub"
    assert series[0].poster_path == "series_10.jpg"
    assert series[0].poster_downloaded_at is not None
    assert series[0].deleted is False

    # Specials are never materialized
    assert [s.season_number for s in seasons] == [1, 2]

    first, second = seasons
    assert first.title == "Season 1"
    assert (first.total_episodes, first.aired_episodes, first.missing_episodes) == (12, 12, 2)
    assert first.status == "not_started"
    assert first.download_urls == ["example-show.Ab1"]

    assert (second.total_episodes, second.aired_episodes, second.missing_episodes) == (12, 6, 0)
    assert second.status == "completed"
    assert second.download_urls == ["example-show-2.Cd2"]

    assert len(episodes) == 24
    s2_episodes = [e for e in episodes if e.season_id == second.id]
    assert [e.aired_status for e in s2_episodes].count("aired") == 6
    assert [e.disk_status for e in s2_episodes].count("downloaded") == 6


async def test_sync_is_idempotent(service, session_factory, catalog, poster_requests):
    await service.sync_series(10)
    before = [snapshot(records) for records in await load_all(session_factory)]
    searches = len(catalog.searches)

    await service.sync_series(10)
    after = [snapshot(records) for records in await load_all(session_factory)]

    assert before == after
    # Identifiers already set and poster still fresh
    assert len(catalog.searches) == searches
    assert len(poster_requests) == 1


async def test_preferred_language_only_set_on_creation(service, session_factory):
    async with session_factory() as session:
        await set_config(session, "preferred_language", "dub_fallback_sub")

    await service.sync_series(10)

    async with session_factory() as session:
        await set_config(session, "preferred_language", "dub")

    await service.sync_series(10)

    series, _, _ = await load_all(session_factory)
    assert series[0].preferred_language == "dub_fallback_sub"


async def test_vanished_season_is_soft_deleted_and_revived(service, session_factory, sonarr, show):
    await service.sync_series(10)

    sonarr.shows[10]["seasons"] = [s for s in show["seasons"] if s["seasonNumber"] != 2]
    await service.sync_series(10)

    _, seasons, _ = await load_all(session_factory)
    by_number = {s.season_number: s for s in seasons}
    assert by_number[1].deleted is False
    assert by_number[2].deleted is True
    assert by_number[2].download_urls == ["example-show-2.Cd2"]

    sonarr.shows[10]["seasons"] = show["seasons"]
    await service.sync_series(10)

    _, seasons, _ = await load_all(session_factory)
    assert [s.deleted for s in seasons] == [False, False]
    assert seasons[1].download_urls == ["example-show-2.Cd2"]


async def test_season_without_dated_episodes_is_not_materialized(service, session_factory, sonarr):
    for ep in sonarr.episodes[10]:
        if ep["seasonNumber"] == 2:
            ep["airDateUtc"] = None

    await service.sync_series(10)

    _, seasons, _ = await load_all(session_factory)
    assert [s.season_number for s in seasons] == [1]


async def test_absolute_series_uses_series_statistics(service, session_factory, catalog):
    await service.sync_series(10)

    async with session_factory() as session:
        series = (await session.execute(select(Series))).scalar_one()
        series.absolute = True
        await session.commit()

    await service.sync_series(10, refresh_urls=True)

    _, seasons, episodes = await load_all(session_factory)
    by_number = {s.season_number: s for s in seasons}

    assert by_number[1].deleted is False
    assert by_number[2].deleted is True
    # Totals come from the whole series, not season 1
    assert by_number[1].total_episodes == 24
    assert by_number[1].aired_episodes == 18
    assert by_number[1].missing_episodes == 2

    anchor_episodes = [e for e in episodes if e.season_id == by_number[1].id]
    assert [e.episode_number for e in anchor_episodes] == list(range(1, 25))

    # Only season 1 is searched again on refresh
    assert catalog.searches[-1] == "Example Show"


async def test_missing_anchor_season_fails_without_touching_seasons(service, session_factory, sonarr, show):
    await service.sync_series(10)
    _, before, _ = await load_all(session_factory)

    sonarr.shows[10]["seasons"] = [s for s in show["seasons"] if s["seasonNumber"] != 1]

    with pytest.raises(AnchorMissingError):
        await service.sync_series(10)

    _, after, _ = await load_all(session_factory)
    assert snapshot(after) == snapshot(before)


async def test_missing_anchor_on_first_sync_creates_no_seasons(service, session_factory, sonarr, show):
    sonarr.shows[10]["seasons"] = [s for s in show["seasons"] if s["seasonNumber"] != 1]

    run = await service.run_series_task(10)

    assert run.status == "failed"
    assert "No season 1" in run.error_message
    _, seasons, _ = await load_all(session_factory)
    assert seasons == []


async def test_unknown_series_raises_not_found(service):
    with pytest.raises(NotFoundError):
        await service.sync_series(999)


async def test_sync_local_series_unknown_id(service):
    with pytest.raises(NotFoundError):
        await service.sync_local_series(42)


async def test_refresh_urls_forces_new_search(service, session_factory, catalog):
    await service.sync_series(10)

    catalog.results["Example Show"] = [anime("Example Show", "example-show-new", "Zz9")]
    await service.sync_series(10)
    _, seasons, _ = await load_all(session_factory)
    assert seasons[0].download_urls == ["example-show.Ab1"]

    await service.sync_series(10, refresh_urls=True)
    _, seasons, _ = await load_all(session_factory)
    assert seasons[0].download_urls == ["example-show-new.Zz9"]


async def test_manual_identifiers_survive_sync(service, session_factory):
    await service.sync_series(10)

    async with session_factory() as session:
        season = (await session.execute(select(Season).where(Season.season_number == 1))).scalar_one()
        season.download_urls = ["manual.Id1", "manual-part-2.Id2"]
        await session.commit()

    await service.sync_series(10)

    _, seasons, _ = await load_all(session_factory)
    assert seasons[0].download_urls == ["manual.Id1", "manual-part-2.Id2"]


async def test_unresolved_identifiers_do_not_fail_sync(service, session_factory, catalog):
    catalog.results.clear()

    await service.sync_series(10)

    _, seasons, _ = await load_all(session_factory)
    assert [s.download_urls for s in seasons] == [[], []]
    # Season 2: primary title, then the season-specific alternate
    assert catalog.searches == ["Example Show", "Example Show 2", "Example S2 Alt"]


async def test_sync_all_records_run_and_flags_removed_series(service, session_factory, sonarr, episodes):
    broken = make_show(id=20, title="Broken Show", seasons=[
        {"seasonNumber": 2, "statistics": {"episodeCount": 3, "episodeFileCount": 0}}
    ])
    sonarr.shows[20] = broken

    async with session_factory() as session:
        session.add(Series(sonarr_id=99, title="Gone Show"))
        await session.commit()

    run = await service.sync_all(trigger="scheduled")

    assert run.task == "sync_all"
    assert run.trigger == "scheduled"
    assert run.status == "completed"
    assert run.series_synced == 1
    assert run.series_failed == 1
    assert "Broken Show" in run.error_message
    assert service.progress.is_running is False
    assert service.progress.synced_count == 1

    series, _, _ = await load_all(session_factory)
    by_sonarr = {s.sonarr_id: s for s in series}
    assert by_sonarr[99].deleted is True
    assert by_sonarr[10].deleted is False

    async with session_factory() as session:
        runs = (await session.execute(select(TaskRun))).scalars().all()
    assert len(runs) == 1


async def test_deleted_series_is_revived_on_sync(service, session_factory):
    await service.sync_series(10)
    async with session_factory() as session:
        series = (await session.execute(select(Series))).scalar_one()
        series.deleted = True
        await session.commit()

    await service.sync_series(10)

    series, _, _ = await load_all(session_factory)
    assert series[0].deleted is False


async def test_sync_notifies_on_success_and_failure(service, session_factory):
    sent = []

    class RecordingNotifier(Notifier):
        async def notify(self, event, title, body):
            sent.append((event, body))
            return 1

    service.notifier = RecordingNotifier(session_factory)

    await service.run_series_task(10)
    await service.run_series_task(404)

    assert sent[0] == ("sync_success", "Example Show")
    assert sent[1][0] == "sync_failure"
    assert "404" in sent[1][1]


async def test_identifier_failure_does_not_skip_later_seasons(service, session_factory, catalog):
    class BrokenFirstSeason(FakeCatalog):
        async def search_anime(self, keyword):
            if keyword == "Example Show":
                self.searches.append(keyword)
                raise RuntimeError("unexpected catalog failure")
            return await super().search_anime(keyword)

    service.catalog = BrokenFirstSeason(catalog.results)

    await service.sync_series(10)

    _, seasons, _ = await load_all(session_factory)
    assert [s.download_urls for s in seasons] == [[], ["example-show-2.Cd2"]]


async def test_malformed_poster_url_does_not_abort_sync(service, session_factory, sonarr):
    sonarr.shows[10]["images"] = [{"coverType": "poster", "remoteUrl": "http://[bad-host/poster.jpg"}]

    await service.sync_series(10)

    series, seasons, _ = await load_all(session_factory)
    assert series[0].poster_path is None
    assert [s.season_number for s in seasons] == [1, 2]


async def test_series_locks_are_released(service):
    await asyncio.gather(service.sync_series(10), service.sync_series(10))

    assert _series_locks == {}


async def test_episodes_gone_from_sonarr_are_removed(service, session_factory, sonarr):
    await service.sync_series(10)

    sonarr.episodes[10] = [
        ep for ep in sonarr.episodes[10]
        if not (ep["seasonNumber"] == 1 and ep["episodeNumber"] > 10)
    ]
    await service.sync_series(10)

    _, seasons, episodes = await load_all(session_factory)
    first = [e.episode_number for e in episodes if e.season_id == seasons[0].id]
    assert first == list(range(1, 11))


async def test_leaving_absolute_mode_drops_renumbered_episodes(service, session_factory):
    await service.sync_series(10)

    async with session_factory() as session:
        series = (await session.execute(select(Series))).scalar_one()
        series.absolute = True
        await session.commit()

    await service.sync_series(10)

    async with session_factory() as session:
        series = (await session.execute(select(Series))).scalar_one()
        series.absolute = False
        await session.commit()

    await service.sync_series(10)

    _, seasons, episodes = await load_all(session_factory)
    by_number = {s.season_number: s for s in seasons}
    assert [e.episode_number for e in episodes if e.season_id == by_number[1].id] == list(range(1, 13))
    assert [e.episode_number for e in episodes if e.season_id == by_number[2].id] == list(range(1, 13))


async def test_sync_all_releases_progress_when_listing_fails(service, sonarr):
    async def broken_listing():
        raise RuntimeError("Sonarr unavailable")

    sonarr.get_all_series = broken_listing
    assert service.progress.claim() is True

    run = await service.sync_all()

    assert run.status == "failed"
    assert service.progress.is_running is False
    assert service.progress.claim() is True
