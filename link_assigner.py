"""
link_assigner.py

Fill up to three playback slots for every scheduled event near kickoff.

  - real candidate (MatchResolver hit): its URL first, then its other provider
    URLs, then sibling providers rendered with the same slug
  - no candidate: guessed "ppv-<away>-vs-<home>" slug on the fixed providers

Events whose current links were typed in by an operator (anything outside
the provider templates that this module did not write itself) keep them;
our proposal lands in pending_url*.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Sequence

import event_store
import schedule_feed
import settings
from db_models import SLOT_FIELDS, Event, SessionLocal, as_utc, init_db, utcnow
from match_resolver import resolve
from normalizer import (
    ScrapedCandidate,
    build_provider_url,
    candidate_from_snapshot,
    derive_slug,
    is_pipeline_url,
    slugify,
)

# Fields refreshed on events that are only tracked (outside the window).
TRACK_UPDATE_FIELDS = ("sport", "league", "thumbnail", "is_live", "status")


def in_window(
    kickoff: Optional[datetime],
    is_live: bool,
    now: datetime,
    window_minutes: int = settings.ASSIGN_WINDOW_MINUTES,
    grace_minutes: int = settings.ASSIGN_GRACE_MINUTES,
) -> bool:
    if is_live:
        return True
    kickoff = as_utc(kickoff)
    if kickoff is None:
        return False
    return now - timedelta(minutes=grace_minutes) <= kickoff <= now + timedelta(minutes=window_minutes)


def guessed_slug(home: Optional[str], away: Optional[str]) -> str:
    home_slug, away_slug = slugify(home or ""), slugify(away or "")
    if not home_slug or not away_slug:
        return ""
    return f"ppv-{away_slug}-vs-{home_slug}"


def guessed_slots(home: Optional[str], away: Optional[str]) -> list[str]:
    slug = guessed_slug(home, away)
    if not slug:
        return []
    return [u for u in (build_provider_url(p, slug) for p in settings.GUESS_PROVIDER_ORDER) if u][:3]


def candidate_slots(candidate: ScrapedCandidate) -> list[str]:
    slots = [candidate.url]
    for provider in settings.EMBED_PROVIDERS:
        url = candidate.provider_urls.get(provider)
        if url and url not in slots:
            slots.append(url)

    slug = derive_slug(candidate.url)
    for provider in settings.EMBED_PROVIDERS:
        if len(slots) >= 3:
            break
        if provider in candidate.provider_urls:
            continue
        url = build_provider_url(provider, slug)
        if url and url not in slots:
            slots.append(url)
    return slots[:3]


def is_operator_owned(existing: Optional[Event]) -> bool:
    if existing is None:
        return False
    ours = existing.assigned_set
    return any(u and u not in ours and not is_pipeline_url(u) for u in existing.slots)


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _event_row(event: Any) -> dict[str, Any]:
    if isinstance(event, dict):
        return dict(event)
    return {
        "id": event.id,
        "external_id": event.external_id,
        "name": event.name,
        "event_date": event.event_date,
        "sport": event.sport,
        "league": event.league,
        "team_home": event.team_home,
        "team_away": event.team_away,
        "thumbnail": event.thumbnail,
        "is_live": event.is_live,
        "status": event.status,
    }


def assign_event(db, event: Any, candidate: Optional[ScrapedCandidate]) -> Optional[str]:
    """Write one event's slots. Returns created / assigned / pending / None."""
    row = _event_row(event)
    ext = row.get("external_id")
    existing = event_store.get_by_external_id(db, ext) if ext else event_store.get_event(db, row.get("id"))

    if candidate is not None:
        slots = candidate_slots(candidate)
    elif existing is not None and existing.stream_url:
        # Links already guessed earlier; the health checker owns them now.
        return None
    else:
        slots = guessed_slots(row.get("team_home"), row.get("team_away"))
    if not slots:
        return None

    if is_operator_owned(existing):
        event_store.set_slots(db, existing.id, slots, pending=True)
        return "pending"

    padded = (list(slots) + [None, None, None])[:3]
    if ext:
        row.pop("id", None)
        row.update(dict(zip(SLOT_FIELDS, padded)))
        row["assigned_urls"] = event_store.join_urls(padded)
        event_store.upsert_event(db, row)
    else:
        event_store.set_slots(db, existing.id, padded, record=True)
    return "assigned" if existing is not None else "created"


def track_event(db, row: dict[str, Any]) -> bool:
    """Store an out-of-window event without links. True when it was new."""
    existing = event_store.get_by_external_id(db, row["external_id"])
    event_store.upsert_event(db, row, update_fields=TRACK_UPDATE_FIELDS)
    return existing is None


def _batches(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    size = max(1, size)
    for i in range(0, len(items), size):
        yield items[i:i + size]


def fetch_leagues(
    leagues: Sequence[str],
    fetch_events: Callable[[str], list[dict[str, Any]]],
    *,
    batch_size: int = settings.LEAGUE_BATCH_SIZE,
    pause: float = settings.LEAGUE_BATCH_PAUSE_SECONDS,
) -> tuple[list[dict[str, Any]], list[str], int]:
    """``(events, errors, leagues_ok)``; a failing league never blocks the others."""
    events: list[dict[str, Any]] = []
    errors: list[str] = []
    ok = 0

    for i, batch in enumerate(_batches(list(leagues), batch_size)):
        if i and pause:
            time.sleep(pause)
        with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="league") as pool:
            futures = [(league, pool.submit(fetch_events, league)) for league in batch]
            for league, fut in futures:
                try:
                    found = fut.result()
                except Exception as exc:
                    errors.append(f"{league}: {exc}")
                    print(f"[assign][WARN] league {league} failed: {exc}")
                    continue
                ok += 1
                events.extend(found or [])
    return events, errors, ok


def load_pool(db) -> list[ScrapedCandidate]:
    return [c for c in (candidate_from_snapshot(r) for r in event_store.load_snapshot(db)) if c]


def assign_links(
    db=None,
    *,
    leagues: Optional[Sequence[str]] = None,
    fetch_events: Callable[[str], list[dict[str, Any]]] = schedule_feed.fetch_league_events,
    pool: Optional[Sequence[ScrapedCandidate]] = None,
    now: Optional[datetime] = None,
    batch_size: int = settings.LEAGUE_BATCH_SIZE,
    pause: float = settings.LEAGUE_BATCH_PAUSE_SECONDS,
) -> dict[str, Any]:
    own_session = db is None
    if own_session:
        init_db()
        db = SessionLocal()

    try:
        now = now or utcnow()
        leagues = list(settings.ASSIGN_LEAGUES if leagues is None else leagues)
        feed_events, errors, leagues_ok = fetch_leagues(
            leagues, fetch_events, batch_size=batch_size, pause=pause,
        )
        pool = load_pool(db) if pool is None else list(pool)

        created = assigned = pending = 0
        assigned_events: list[dict[str, Any]] = []
        seen: set[str] = set()

        def _record(row: dict[str, Any], cand: Optional[ScrapedCandidate], outcome: Optional[str]) -> None:
            nonlocal created, assigned, pending
            if outcome is None:
                return
            if outcome == "created":
                created += 1
            if outcome == "pending":
                pending += 1
            else:
                assigned += 1
            assigned_events.append({
                "externalId": row.get("external_id"),
                "name": row.get("name"),
                "strategy": "scraped" if cand else "guessed",
                "outcome": outcome,
            })

        for row in feed_events:
            ext = row.get("external_id")
            if not ext or ext in seen:
                continue
            seen.add(ext)
            try:
                if not in_window(row.get("event_date"), bool(row.get("is_live")), now):
                    if track_event(db, row):
                        created += 1
                    continue
                cand = resolve(row, pool)
                _record(row, cand, assign_event(db, row, cand))
            except Exception as exc:
                errors.append(f"{ext}: {exc}")
                print(f"[assign][ERROR] write failed for {row.get('name')}: {exc}")

        start = now - timedelta(minutes=settings.ASSIGN_GRACE_MINUTES)
        end = now + timedelta(minutes=settings.ASSIGN_WINDOW_MINUTES)
        for ev in event_store.active_events_between(db, start, end):
            if ev.external_id and ev.external_id in seen:
                continue
            row = _event_row(ev)
            try:
                cand = resolve(row, pool)
                _record(row, cand, assign_event(db, ev, cand))
            except Exception as exc:
                errors.append(f"event {ev.id}: {exc}")
                print(f"[assign][ERROR] write failed for {ev.name}: {exc}")

        print(
            f"[assign] {assigned} assigned ({created} new, {pending} pending review) "
            f"from {leagues_ok}/{len(leagues)} leagues, pool={len(pool)}"
        )
        summary = {
            "success": True,
            "totalAssigned": assigned,
            "totalCreated": created,
            "pendingReview": pending,
            "assignedEvents": assigned_events,
            "leaguesScanned": leagues_ok,
        }
        if errors:
            summary["errors"] = errors
        return summary
    finally:
        if own_session:
            db.close()
