"""Tests for keyed upserts and the generation-swapped snapshot table."""
from datetime import timedelta

import pytest

import event_store
from db_models import LiveScrapedLink


def _record(match_id, title="Lakers vs Celtics", admin=None):
    return {"match_id": match_id, "match_title": title, "origin": "sportsbite", "source_admin": admin,
            "watch_url": admin or f"https://streamed.pk/watch/{match_id}"}


class TestUpsertEvent:
    """Same external id, same row."""

    def test_conflict_updates_only_listed_fields(self, db_session, now):
        row = {"external_id": "401", "name": "Lakers vs Celtics", "event_date": now,
               "league": "NBA", "stream_url": "https://embedsports.top/embed/admin/a/1?autoplay=1"}
        event_store.upsert_event(db_session, row)
        event_store.upsert_event(db_session, dict(row, name="Renamed", league="National Basketball Association"))
        db_session.expire_all()

        ev = event_store.get_by_external_id(db_session, "401")
        assert event_store.count_events(db_session) == 1
        assert ev.name == "Lakers vs Celtics"
        assert ev.league == "National Basketball Association"

    def test_requires_external_id(self, db_session, now):
        with pytest.raises(ValueError):
            event_store.upsert_event(db_session, {"name": "x", "event_date": now})

    def test_set_slots_pads(self, db_session, now):
        event_store.upsert_event(db_session, {"external_id": "9", "name": "A vs B", "event_date": now})
        ev = event_store.get_by_external_id(db_session, "9")
        event_store.set_slots(db_session, ev.id, ["https://a.example/1"], pending=True)
        db_session.expire_all()

        ev = event_store.get_event(db_session, ev.id)
        assert [ev.pending_url, ev.pending_url_2, ev.pending_url_3] == ["https://a.example/1", None, None]
        assert ev.stream_url is None


class TestSnapshot:
    """A new generation replaces the old one without an empty window."""

    def test_replace_prunes_older_generation(self, db_session):
        first = event_store.replace_snapshot(db_session, [_record("a"), _record("b")])
        second = event_store.replace_snapshot(db_session, [_record("b", title="B updated"), _record("c")])

        assert second == first + 1
        rows = event_store.load_snapshot(db_session)
        assert sorted(r.match_id for r in rows) == ["b", "c"]
        assert next(r for r in rows if r.match_id == "b").match_title == "B updated"
        assert db_session.query(LiveScrapedLink).count() == 2

    def test_empty_scan_clears_snapshot(self, db_session):
        event_store.replace_snapshot(db_session, [_record("a")])
        event_store.replace_snapshot(db_session, [])
        assert event_store.load_snapshot(db_session) == []

    def test_active_events_between_includes_live(self, db_session, now):
        event_store.upsert_event(db_session, {"external_id": "1", "name": "Soon", "event_date": now + timedelta(minutes=5)})
        event_store.upsert_event(db_session, {"external_id": "2", "name": "Later", "event_date": now + timedelta(hours=5)})
        event_store.upsert_event(db_session, {"external_id": "3", "name": "Live", "event_date": now - timedelta(hours=1),
                                              "is_live": True})

        found = event_store.active_events_between(db_session, now - timedelta(minutes=10), now + timedelta(minutes=30))
        assert sorted(e.name for e in found) == ["Live", "Soon"]
