from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional
from app.database import Base


class ConfigEntry(Base):
    """Key/value application settings, values JSON-encoded."""

    __tablename__ = "config_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    key: Mapped[str] = mapped_column(String(100), unique=True)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
