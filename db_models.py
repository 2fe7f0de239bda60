from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

import settings

Base = declarative_base()

SLOT_FIELDS = ("stream_url", "stream_url_2", "stream_url_3")
PENDING_FIELDS = ("pending_url", "pending_url_2", "pending_url_3")
PROVIDER_FIELDS = ("source_admin", "source_delta", "source_echo", "source_golf")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(64), unique=True, nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    event_date = Column(DateTime(timezone=True), nullable=False)
    sport = Column(String(64))
    league = Column(String(128))
    team_home = Column(String(128))
    team_away = Column(String(128))
    thumbnail = Column(Text)
    stream_url = Column(Text)
    stream_url_2 = Column(Text)
    stream_url_3 = Column(Text)
    pending_url = Column(Text)
    pending_url_2 = Column(Text)
    pending_url_3 = Column(Text)
    # Slot set the assigner last wrote, newline-joined.
    assigned_urls = Column(Text)
    status = Column(String(16), nullable=False, default="upcoming")
    is_live = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def slots(self) -> list[str | None]:
        return [getattr(self, f) for f in SLOT_FIELDS]

    @property
    def assigned_set(self) -> set[str]:
        return {u for u in (self.assigned_urls or "").split("\n") if u}

    def __repr__(self) -> str:
        return f"<Event {self.id} {self.external_id!r} {self.name!r}>"


class LiveScrapedLink(Base):
    """Snapshot of the latest scan; rows from older generations are pruned."""

    __tablename__ = "live_scraped_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(String(255), unique=True, nullable=False)
    match_title = Column(String(255), nullable=False)
    category = Column(String(64))
    team_home = Column(String(128))
    team_away = Column(String(128))
    source_admin = Column(Text)
    source_delta = Column(Text)
    source_echo = Column(Text)
    source_golf = Column(Text)
    watch_url = Column(Text)
    origin = Column(String(128))
    scan_generation = Column(Integer, nullable=False, default=0, index=True)
    scanned_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


def _make_engine(url: str):
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, connect_args={"check_same_thread": False}, future=True)
    return create_engine(url, pool_pre_ping=True, future=True)


engine = _make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind=None) -> None:
    Base.metadata.create_all(bind=bind or engine)
