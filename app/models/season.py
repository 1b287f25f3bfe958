from sqlalchemy import String, Integer, Boolean, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base


class Season(Base):
    """A season of a series, with the resolved AnimeWorld identifiers."""

    __tablename__ = "seasons"
    __table_args__ = (
        UniqueConstraint("series_id", "season_number", name="uq_season_series_number"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    series_id: Mapped[int] = mapped_column(ForeignKey("series.id"), index=True)
    season_number: Mapped[int] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(String(200))

    total_episodes: Mapped[int] = mapped_column(Integer, default=0)
    missing_episodes: Mapped[int] = mapped_column(Integer, default=0)
    aired_episodes: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20), default="not_started")  # completed, not_started

    # Ordered AnimeWorld identifiers ("link.identifier"), primary match first
    download_urls: Mapped[list] = mapped_column(JSON, default=list)

    deleted: Mapped[bool] = mapped_column(Boolean, default=False)

    series: Mapped["Series"] = relationship(back_populates="seasons")
    episodes: Mapped[list["Episode"]] = relationship(
        back_populates="season",
        order_by="Episode.episode_number",
        cascade="all, delete-orphan"
    )
