from datetime import datetime, date
from sqlalchemy import String, Text, Date, Float, Boolean, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from esports_ingest.database import Base
from esports_ingest.utils.timestamps import utcnow


class Player(Base):
    __tablename__ = "players"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    player_id: Mapped[str] = mapped_column(String(200), unique=True, index=True)  # canonical id

    # Alias columns: a player first seen through another source is matched on these
    wiki_url: Mapped[str | None] = mapped_column(Text, unique=True)
    platform_account_id: Mapped[str | None] = mapped_column(String(64), unique=True, index=True)

    current_ign: Mapped[str | None] = mapped_column(String(100))
    platform_display_name: Mapped[str | None] = mapped_column(String(100))
    real_name: Mapped[str | None] = mapped_column(String(255))
    country: Mapped[str | None] = mapped_column(String(100))
    role: Mapped[str | None] = mapped_column(String(100))
    org_slug: Mapped[str | None] = mapped_column(String(200), index=True)
    birth_date: Mapped[date | None] = mapped_column(Date)
    image_url: Mapped[str | None] = mapped_column(Text)
    total_earnings: Mapped[float | None] = mapped_column(Float)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    source_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
