import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
from app import models  # noqa: F401
from app.progress import SyncProgress
from app.services.metadata_sync import MetadataSyncService
from app.services.posters import PosterCache
from tests.factories import FakeCatalog, FakeSonarr, anime, make_episodes, make_show


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def show():
    return make_show()


@pytest.fixture
def episodes():
    return make_episodes(1, 12, aired=12, with_files=10, start_id=100) + \
        make_episodes(2, 12, aired=6, with_files=6, start_id=200)


@pytest.fixture
def sonarr(show, episodes):
    return FakeSonarr([show], {show["id"]: episodes})


@pytest.fixture
def catalog():
    return FakeCatalog({
        "Example Show": [anime("Example Show", "example-show", "Ab1")],
        "Example Show 2": [anime("Example Show 2", "example-show-2", "Cd2")],
    })


@pytest.fixture
def poster_requests():
    return []


@pytest.fixture
def posters(tmp_path, poster_requests):
    def handler(request):
        poster_requests.append(str(request.url))
        return httpx.Response(200, content=b"poster-bytes")

    return PosterCache(str(tmp_path / "posters"), 48, transport=httpx.MockTransport(handler))


@pytest.fixture
def service(session_factory, sonarr, catalog, posters):
    return MetadataSyncService(session_factory, sonarr, catalog, posters, progress=SyncProgress())
