from app.models.connection import Connection
from app.models.episode import Episode
from app.models.notification import Notification
from app.models.season import Season
from app.models.series import Series
from app.models.settings import ConfigEntry
from app.models.task_run import TaskRun

__all__ = [
    "Connection",
    "Episode",
    "Notification",
    "Season",
    "Series",
    "ConfigEntry",
    "TaskRun"
]
