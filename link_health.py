"""
link_health.py

Probe every active event's primary link and keep its slots honest:

  - slot 1 ok          -> drop failing fallbacks
  - slot 1 not ok      -> promote the first passing fallback, shift the rest up
  - every slot expired -> delete the event (the provider session is gone)
  - nothing passes     -> leave it alone; most failures are transient
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import requests

import event_store
import settings
from db_models import SessionLocal, init_db
from normalizer import origin_of
from settings import HeaderProfile

OK = "ok"
FAIL = "fail"
EXPIRED = "expired"

EXPIRED_MARKER = "expired"


@dataclass
class LinkHealthResult:
    url: str
    verdict: str
    status: Optional[int] = None
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.verdict == OK


def _is_manifest(url: str, content_type: str) -> bool:
    return "mpegurl" in (content_type or "").lower() or urlparse(url).path.lower().endswith(".m3u8")


def probe(
    url: str,
    session=None,
    profile: Optional[HeaderProfile] = None,
    timeout: float = settings.HEALTH_TIMEOUT_SECONDS,
) -> LinkHealthResult:
    session = session or requests
    profile = profile or settings.DEFAULT_HEADER_PROFILE
    headers = profile.browser_headers(origin_of(url))
    try:
        resp = session.get(url, timeout=timeout, headers=headers, allow_redirects=True, stream=True)
    except requests.RequestException as exc:
        return LinkHealthResult(url, FAIL, error=str(exc))

    try:
        if not 200 <= resp.status_code < 400:
            return LinkHealthResult(url, FAIL, status=resp.status_code)
        if _is_manifest(url, resp.headers.get("Content-Type", "")):
            if EXPIRED_MARKER in (resp.text or "").lower():
                return LinkHealthResult(url, EXPIRED, status=resp.status_code)
        return LinkHealthResult(url, OK, status=resp.status_code)
    finally:
        resp.close()


@dataclass
class SlotDecision:
    action: str  # ok | cleaned | promoted | expired | untouched
    slots: Optional[list[Optional[str]]] = None


def decide(slots: list[Optional[str]], check: Callable[[str], LinkHealthResult]) -> SlotDecision:
    """Apply the promotion rules to one event's three slots."""
    primary, fallbacks = slots[0], list(slots[1:])
    first = check(primary)

    if first.passed:
        kept = [u if (u and check(u).passed) else None for u in fallbacks]
        if kept == fallbacks:
            return SlotDecision("ok")
        return SlotDecision("cleaned", [primary] + kept)

    results = [check(u) for u in fallbacks if u]
    passing = [r.url for r in results if r.passed]
    if passing:
        return SlotDecision("promoted", (passing + [None, None, None])[:3])
    if first.verdict == EXPIRED and all(r.verdict == EXPIRED for r in results):
        return SlotDecision("expired")
    return SlotDecision("untouched")


def check_links(
    db=None,
    *,
    session=None,
    profile: Optional[HeaderProfile] = None,
    timeout: float = settings.HEALTH_TIMEOUT_SECONDS,
    batch_size: int = settings.HEALTH_BATCH_SIZE,
    max_events: int = settings.HEALTH_MAX_EVENTS,
) -> dict[str, Any]:
    own_session = db is None
    if own_session:
        init_db()
        db = SessionLocal()

    session = session or requests.Session()

    def check(url: str) -> LinkHealthResult:
        return probe(url, session, profile, timeout)

    tested = removed = cleaned = expired_removed = working = 0
    details: list[dict[str, Any]] = []
    errors: list[str] = []
    try:
        events = event_store.active_events_with_links(db, limit=max_events)
        size = max(1, batch_size)
        for i in range(0, len(events), size):
            batch = events[i:i + size]
            with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="health") as pool:
                decisions = list(pool.map(lambda ev: decide(list(ev.slots), check), batch))

            for ev, decision in zip(batch, decisions):
                tested += 1
                try:
                    if decision.action == "expired":
                        event_store.delete_event(db, ev.id)
                        removed += 1
                        expired_removed += 1
                        print(f"[health] removed expired event {ev.id} {ev.name!r}")
                    elif decision.action in ("cleaned", "promoted"):
                        event_store.set_slots(db, ev.id, decision.slots)
                        cleaned += 1
                    elif decision.action == "ok":
                        working += 1
                except Exception as exc:
                    errors.append(f"event {ev.id}: {exc}")
                    print(f"[health][ERROR] write failed for event {ev.id}: {exc}")
                    continue
                details.append({"id": ev.id, "name": ev.name, "status": decision.action})
    finally:
        if own_session:
            db.close()

    print(f"[health] tested={tested} removed={removed} cleaned={cleaned} working={working}")
    summary = {
        "success": True,
        "tested": tested,
        "removed": removed,
        "cleaned": cleaned,
        "expiredRemoved": expired_removed,
        "working": working,
        "details": details,
    }
    if errors:
        summary["errors"] = errors
    return summary

