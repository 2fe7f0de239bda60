from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

import event_store
from db_models import SLOT_FIELDS, SessionLocal, as_utc, init_db, utcnow
from settings import DEACTIVATE_HOURS, LIVE_HOURS


def event_phase(kickoff: datetime, now: datetime) -> str:
    """upcoming before kickoff, live for LIVE_HOURS, then finished; stale past DEACTIVATE_HOURS."""
    elapsed = now - as_utc(kickoff)
    if elapsed < timedelta(0):
        return "upcoming"
    if elapsed <= timedelta(hours=LIVE_HOURS):
        return "live"
    if elapsed <= timedelta(hours=DEACTIVATE_HOURS):
        return "finished"
    return "stale"


def sync_event_status(db=None, now: Optional[datetime] = None) -> dict[str, Any]:
    """Flip is_live/status by kickoff time; deactivate events long past kickoff."""
    own_session = db is None
    if own_session:
        init_db()
        db = SessionLocal()

    now = now or utcnow()
    updated = deactivated = 0
    errors = []
    try:
        for ev in event_store.active_events(db):
            phase = event_phase(ev.event_date, now)
            try:
                if phase == "stale":
                    values = {f: None for f in SLOT_FIELDS}
                    event_store.update_event(db, ev.id, is_active=False, is_live=False, status="finished", **values)
                    deactivated += 1
                    continue
                is_live = phase == "live"
                if ev.is_live != is_live or ev.status != phase:
                    event_store.update_event(db, ev.id, is_live=is_live, status=phase)
                    updated += 1
            except Exception as exc:
                errors.append(f"event {ev.id}: {exc}")
                print(f"[status][ERROR] event {ev.id}: {exc}")
    finally:
        if own_session:
            db.close()

    summary = {"success": True, "updated": updated, "deactivated": deactivated}
    if errors:
        summary["errors"] = errors
    return summary


if __name__ == "__main__":
    result = sync_event_status()
    print(f"Events updated: {result['updated']}")
    print(f"Events deactivated: {result['deactivated']}")
