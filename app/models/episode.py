from sqlalchemy import String, Integer, DateTime, Text, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from typing import Optional
from app.database import Base


class Episode(Base):
    """An episode mirrored from Sonarr."""

    __tablename__ = "episodes"
    __table_args__ = (
        UniqueConstraint("season_id", "episode_number", name="uq_episode_season_number"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    series_id: Mapped[int] = mapped_column(ForeignKey("series.id"), index=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id"), index=True)
    sonarr_id: Mapped[int] = mapped_column(Integer, index=True)

    season_number: Mapped[int] = mapped_column(Integer)
    episode_number: Mapped[int] = mapped_column(Integer)
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    overview: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    air_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    has_file: Mapped[bool] = mapped_column(Boolean, default=False)
    monitored: Mapped[bool] = mapped_column(Boolean, default=True)

    # Derived on every sync
    aired_status: Mapped[str] = mapped_column(String(20), default="not_aired")  # aired, not_aired
    disk_status: Mapped[str] = mapped_column(String(20), default="missing")  # downloaded, missing

    season: Mapped["Season"] = relationship(back_populates="episodes")
