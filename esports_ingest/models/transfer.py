from datetime import datetime, date
from sqlalchemy import String, Text, Date, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from esports_ingest.database import Base
from esports_ingest.utils.timestamps import utcnow


class Transfer(Base):
    __tablename__ = "transfers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Content hash of (date, player, from, to); transfers have no remote id
    transfer_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    player_name: Mapped[str | None] = mapped_column(String(100))
    player_id: Mapped[str | None] = mapped_column(String(200), index=True)
    player_wiki_url: Mapped[str | None] = mapped_column(Text)
    from_org: Mapped[str | None] = mapped_column(String(255))
    to_org: Mapped[str | None] = mapped_column(String(255))
    # join | leave | transfer | retire | release
    transfer_type: Mapped[str | None] = mapped_column(String(20))
    details: Mapped[str | None] = mapped_column(Text)
    transfer_date: Mapped[date | None] = mapped_column(Date, index=True)
    reference_url: Mapped[str | None] = mapped_column(Text)

    source_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
