from app.services.animeworld import AnimeworldClient
from app.services.metadata_sync import MetadataSyncService, build_sync_service
from app.services.notifier import Notifier
from app.services.posters import PosterCache
from app.services.sonarr import SonarrClient

__all__ = [
    "AnimeworldClient",
    "MetadataSyncService",
    "Notifier",
    "PosterCache",
    "SonarrClient",
    "build_sync_service"
]
