import json
from typing import Any, Optional

from pydantic_settings import BaseSettings
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///data/awsync.db"
    poster_dir: str = "data/posters"
    poster_max_age_hours: int = 48
    animeworld_url: str = "https://www.animeworld.ac"
    request_timeout: float = 30.0
    sync_interval_hours: int = 6
    log_level: str = "INFO"

    class Config:
        env_prefix = "AWSYNC_"


settings = Settings()

DEFAULT_LANGUAGE = "sub"
LANGUAGES = ("dub", "sub", "dub_fallback_sub")


async def get_config(session: AsyncSession, key: str) -> Optional[Any]:
    """
    Get a config value by key.
    Values are stored JSON-encoded; anything that is not valid JSON is
    returned as the raw string.
    """
    from app.models import ConfigEntry

    result = await session.execute(
        select(ConfigEntry).where(ConfigEntry.key == key)
    )
    entry = result.scalar_one_or_none()

    if not entry or not entry.value:
        return None

    try:
        return json.loads(entry.value)
    except ValueError:
        return entry.value


async def set_config(session: AsyncSession, key: str, value: Any):
    """Save a config value, creating the entry if needed."""
    from app.models import ConfigEntry

    encoded = value if isinstance(value, str) else json.dumps(value)

    result = await session.execute(
        select(ConfigEntry).where(ConfigEntry.key == key)
    )
    entry = result.scalar_one_or_none()

    if entry:
        entry.value = encoded
    else:
        entry = ConfigEntry(key=key, value=encoded)
        session.add(entry)

    await session.commit()
    return entry


async def get_default_language(session: AsyncSession) -> str:
    """Global language preference applied to newly created series."""
    value = await get_config(session, "preferred_language")
    if value in LANGUAGES:
        return value
    return DEFAULT_LANGUAGE
