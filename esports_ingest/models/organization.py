from datetime import datetime, date
from sqlalchemy import String, Text, Date, Float, Boolean, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from esports_ingest.database import Base
from esports_ingest.utils.timestamps import utcnow


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(200), unique=True, index=True)  # canonical id
    name: Mapped[str | None] = mapped_column(String(255))
    region: Mapped[str | None] = mapped_column(String(100))
    location: Mapped[str | None] = mapped_column(String(100))
    logo_url: Mapped[str | None] = mapped_column(Text)
    wiki_url: Mapped[str | None] = mapped_column(Text, unique=True)
    website: Mapped[str | None] = mapped_column(Text)
    founded: Mapped[date | None] = mapped_column(Date)

    # Rollup recomputed after the earnings job
    total_earnings: Mapped[float | None] = mapped_column(Float)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    source_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
