"""Keyed reads and writes against the ``events`` and ``live_scraped_links`` tables.

Every write here is either a conflict-key upsert or an update/delete by primary
key, and commits on its own, so the assigner and the health checker can run
side by side without stepping on each other beyond last-writer-wins per field.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from db_models import (
    PENDING_FIELDS,
    PROVIDER_FIELDS,
    SLOT_FIELDS,
    Event,
    LiveScrapedLink,
    utcnow,
)

# Columns an assignment run may touch on an existing row.
ASSIGN_UPDATE_FIELDS = SLOT_FIELDS + ("assigned_urls", "sport", "league", "thumbnail", "is_live", "status")


def _dialect_insert(db: Session):
    if db.get_bind().dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


# ---------------- EVENTS ----------------

def join_urls(urls: Iterable[Optional[str]]) -> Optional[str]:
    joined = "\n".join(u for u in urls if u)
    return joined or None


def get_by_external_id(db: Session, external_id: str) -> Optional[Event]:
    # Upserts bypass the identity map, so reload instead of trusting a cached row.
    stmt = select(Event).where(Event.external_id == external_id).execution_options(populate_existing=True)
    return db.execute(stmt).scalars().first()


def get_event(db: Session, event_id: int) -> Optional[Event]:
    return db.get(Event, event_id)


def upsert_event(db: Session, row: dict[str, Any], update_fields: Sequence[str] = ASSIGN_UPDATE_FIELDS) -> None:
    """INSERT ... ON CONFLICT(external_id) DO UPDATE on ``update_fields`` only."""
    if not row.get("external_id"):
        raise ValueError("upsert_event requires an external_id")

    now = utcnow()
    values = dict(row)
    values.setdefault("created_at", now)
    values["updated_at"] = now
    values.setdefault("is_active", True)
    values.setdefault("is_live", False)
    values.setdefault("status", "upcoming")

    insert = _dialect_insert(db)
    stmt = insert(Event).values(**values)
    set_ = {f: stmt.excluded[f] for f in update_fields if f in values}
    set_["updated_at"] = stmt.excluded.updated_at
    stmt = stmt.on_conflict_do_update(index_elements=["external_id"], set_=set_)

    db.execute(stmt)
    _commit(db)


def set_slots(
    db: Session,
    event_id: int,
    slots: Sequence[Optional[str]],
    *,
    pending: bool = False,
    record: bool = False,
) -> None:
    """Write slots 1-3 (or their pending mirrors). ``record`` marks them as the assigner's own."""
    fields = PENDING_FIELDS if pending else SLOT_FIELDS
    padded = (list(slots) + [None, None, None])[:3]
    values = dict(zip(fields, padded))
    if record and not pending:
        values["assigned_urls"] = join_urls(padded)
    values["updated_at"] = utcnow()
    db.execute(update(Event).where(Event.id == event_id).values(**values))
    _commit(db)


def update_event(db: Session, event_id: int, **values: Any) -> None:
    values["updated_at"] = utcnow()
    db.execute(update(Event).where(Event.id == event_id).values(**values))
    _commit(db)


def delete_event(db: Session, event_id: int) -> bool:
    result = db.execute(delete(Event).where(Event.id == event_id))
    _commit(db)
    return bool(result.rowcount)


def active_events_with_links(db: Session, limit: Optional[int] = None) -> list[Event]:
    stmt = (
        select(Event)
        .where(Event.is_active.is_(True), Event.stream_url.is_not(None), Event.stream_url != "")
        .order_by(Event.event_date.asc())
    )
    if limit:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars().all())


def active_events_between(db: Session, start: datetime, end: datetime) -> list[Event]:
    """Active rows kicking off in [start, end], plus anything flagged live."""
    stmt = select(Event).where(
        Event.is_active.is_(True),
        or_(
            Event.is_live.is_(True),
            (Event.event_date >= start) & (Event.event_date <= end),
        ),
    )
    return list(db.execute(stmt).scalars().all())


def active_events(db: Session) -> list[Event]:
    return list(db.execute(select(Event).where(Event.is_active.is_(True))).scalars().all())


def count_events(db: Session) -> int:
    return int(db.execute(select(func.count()).select_from(Event)).scalar_one())


# ---------------- SNAPSHOT ----------------

def _next_generation(db: Session) -> int:
    current = db.execute(select(func.max(LiveScrapedLink.scan_generation))).scalar()
    return int(current or 0) + 1


def replace_snapshot(db: Session, records: Iterable[dict[str, Any]]) -> int:
    """Write a new scan generation, then prune older generations.

    Rows are upserted first and old ones deleted after, so a concurrent reader
    sees either the previous snapshot or the new one, never an empty table.
    """
    generation = _next_generation(db)
    now = utcnow()
    insert = _dialect_insert(db)

    try:
        for rec in records:
            values = {
                "match_id": rec["match_id"],
                "match_title": rec.get("match_title") or "Match",
                "category": rec.get("category"),
                "team_home": rec.get("team_home"),
                "team_away": rec.get("team_away"),
                "origin": rec.get("origin"),
                "watch_url": rec.get("watch_url"),
                "scanned_at": rec.get("scanned_at") or now,
                "created_at": now,
                "scan_generation": generation,
            }
            for f in PROVIDER_FIELDS:
                values[f] = rec.get(f)
            stmt = insert(LiveScrapedLink).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["match_id"],
                set_={k: stmt.excluded[k] for k in values if k not in ("match_id", "created_at")},
            )
            db.execute(stmt)

        db.execute(delete(LiveScrapedLink).where(LiveScrapedLink.scan_generation < generation))
        db.commit()
    except Exception:
        db.rollback()
        raise
    return generation


def load_snapshot(db: Session) -> list[LiveScrapedLink]:
    latest = db.execute(select(func.max(LiveScrapedLink.scan_generation))).scalar()
    if latest is None:
        return []
    stmt = (
        select(LiveScrapedLink)
        .where(LiveScrapedLink.scan_generation == latest)
        .order_by(LiveScrapedLink.id.asc())
    )
    return list(db.execute(stmt).scalars().all())
