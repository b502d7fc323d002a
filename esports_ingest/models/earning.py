from datetime import datetime, date
from sqlalchemy import String, Date, Float, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from esports_ingest.database import Base
from esports_ingest.utils.timestamps import utcnow


class Earning(Base):
    """One prize-money placement of a player, scraped from the player's results page."""

    __tablename__ = "earnings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # "<player_id>:<tournament slug>:<YYYY-MM-DD>"
    earning_id: Mapped[str] = mapped_column(String(400), unique=True, index=True)
    player_id: Mapped[str] = mapped_column(String(200), index=True)
    tournament_name: Mapped[str | None] = mapped_column(String(255))
    tournament_date: Mapped[date | None] = mapped_column(Date)
    tier: Mapped[str | None] = mapped_column(String(50))
    placement: Mapped[int | None] = mapped_column(Integer)
    prize_usd: Mapped[float | None] = mapped_column(Float)

    source_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
