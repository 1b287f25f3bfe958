from sqlalchemy import String, Integer, DateTime, Text, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from typing import Optional
from app.database import Base


class Series(Base):
    """A series mirrored from Sonarr."""

    __tablename__ = "series"

    id: Mapped[int] = mapped_column(primary_key=True)
    sonarr_id: Mapped[int] = mapped_column(Integer, unique=True, index=True)

    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="ongoing")  # ongoing, completed, cancelled
    total_seasons: Mapped[int] = mapped_column(Integer, default=0)
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    network: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    poster_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    poster_downloaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Serialized JSON lists, kept as received from Sonarr
    alternate_titles: Mapped[str] = mapped_column(Text, default="[]")
    genres: Mapped[str] = mapped_column(Text, default="[]")

    # Locally curated, never overwritten by a sync
    preferred_language: Mapped[str] = mapped_column(String(20), default="sub")  # dub, sub, dub_fallback_sub
    absolute: Mapped[bool] = mapped_column(Boolean, default=False)

    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    seasons: Mapped[list["Season"]] = relationship(
        back_populates="series",
        order_by="Season.season_number",
        cascade="all, delete-orphan"
    )
