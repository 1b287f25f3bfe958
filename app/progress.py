from dataclasses import dataclass, field
from typing import Optional
from datetime import datetime


@dataclass
class SyncProgress:
    """State of the bulk sync currently running (or the last one that ran)."""
    is_running: bool = False
    run_id: Optional[int] = None
    current_series: str = ""
    synced_count: int = 0
    total_count: int = 0
    failed_series: list[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def failed_count(self) -> int:
        return len(self.failed_series)

    @property
    def percent(self) -> int:
        if not self.total_count:
            return 0
        return int((self.synced_count + self.failed_count) * 100 / self.total_count)

    def claim(self) -> bool:
        """Mark a bulk sync as running before it starts; False if one already is."""
        if self.is_running:
            return False
        self.is_running = True
        return True

    def start(self, run_id: int, total: int):
        self.is_running = True
        self.run_id = run_id
        self.current_series = ""
        self.synced_count = 0
        self.total_count = total
        self.failed_series = []
        self.started_at = datetime.now()
        self.finished_at = None

    def update(self, series: str, success: bool):
        self.current_series = series
        if success:
            self.synced_count += 1
        else:
            self.failed_series.append(series)

    def finish(self):
        self.is_running = False
        self.current_series = ""
        self.finished_at = datetime.now()

    def to_dict(self) -> dict:
        return {
            "is_running": self.is_running,
            "run_id": self.run_id,
            "current_series": self.current_series,
            "synced_count": self.synced_count,
            "failed_count": self.failed_count,
            "failed_series": list(self.failed_series),
            "total_count": self.total_count,
            "percent": self.percent,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None
        }


# Shared by the scheduler and the API
progress = SyncProgress()
