"""Tests for link probing, slot promotion and expiry cleanup."""
from datetime import timedelta

import requests

import event_store
from conftest import FIXED_UA, FakeResponse, FakeSession
from db_models import Event
from link_health import EXPIRED, FAIL, OK, check_links, decide, probe

U1 = "https://cdn-a.example/live/one.m3u8"
U2 = "https://cdn-b.example/live/two.m3u8"
U3 = "https://cdn-c.example/live/three.m3u8"

PLAYLIST = "#EXTM3U\n#EXT-X-VERSION:3\nseg1.ts\n"
EXPIRED_BODY = "#EXTM3U\n# token expired\n"


def _m3u8(text=PLAYLIST, status=200):
    return FakeResponse(status, text=text, headers={"Content-Type": "application/vnd.apple.mpegurl"})


def _add_event(db, now, slots):
    ev = Event(name="Lakers vs Celtics", event_date=now, team_home="Lakers", team_away="Celtics",
               stream_url=slots[0], stream_url_2=slots[1], stream_url_3=slots[2])
    db.add(ev)
    db.commit()
    return ev.id


class TestProbe:
    """Verdicts from status codes and manifest bodies."""

    def test_ok_with_origin_referer(self, header_profile):
        session = FakeSession({U1: _m3u8()})
        result = probe(U1, session, header_profile, timeout=5)

        assert result.verdict == OK
        headers = session.calls[0][2]["headers"]
        assert headers["Referer"] == "https://cdn-a.example/"
        assert headers["User-Agent"] == FIXED_UA
        assert session.calls[0][2]["timeout"] == 5

    def test_expired_marker(self, header_profile):
        assert probe(U1, FakeSession({U1: _m3u8(EXPIRED_BODY)}), header_profile).verdict == EXPIRED

    def test_http_and_transport_failures(self, header_profile):
        assert probe(U1, FakeSession({U1: FakeResponse(403)}), header_profile).verdict == FAIL
        session = FakeSession({U1: requests.ConnectTimeout("timed out")})
        assert probe(U1, session, header_profile).verdict == FAIL

    def test_expired_word_on_html_page_is_ignored(self, header_profile):
        page = FakeResponse(200, text="<p>Offer expired</p>", headers={"Content-Type": "text/html"})
        url = "https://embed.example/embed/admin/x/1"
        assert probe(url, FakeSession({url: page}), header_profile).verdict == OK


class TestDecide:
    """Promotion rules on one event's slots."""

    @staticmethod
    def _checker(verdicts):
        from link_health import LinkHealthResult
        return lambda url: LinkHealthResult(url, verdicts[url])

    def test_fallback_promotion_without_duplication(self):
        decision = decide([U1, U2, None], self._checker({U1: FAIL, U2: OK}))
        assert decision.action == "promoted"
        assert decision.slots == [U2, None, None]

    def test_both_fallbacks_shift_up(self):
        decision = decide([U1, U2, U3], self._checker({U1: FAIL, U2: OK, U3: OK}))
        assert decision.slots == [U2, U3, None]

    def test_slot3_promoted_when_slot2_fails(self):
        decision = decide([U1, U2, U3], self._checker({U1: EXPIRED, U2: FAIL, U3: OK}))
        assert decision.slots == [U3, None, None]

    def test_all_expired(self):
        decision = decide([U1, U2, U3], self._checker({U1: EXPIRED, U2: EXPIRED, U3: EXPIRED}))
        assert decision.action == "expired"

    def test_mixed_failures_leave_event_alone(self):
        decision = decide([U1, U2, None], self._checker({U1: EXPIRED, U2: FAIL}))
        assert decision.action == "untouched"

    def test_primary_ok_cleans_bad_secondaries(self):
        decision = decide([U1, U2, U3], self._checker({U1: OK, U2: FAIL, U3: OK}))
        assert decision.action == "cleaned"
        assert decision.slots == [U1, None, U3]


class TestCheckLinks:
    """Full cycle against the store."""

    def test_cycle(self, db_session, now, header_profile):
        promoted = _add_event(db_session, now, [U1, U2, None])
        doomed = _add_event(db_session, now + timedelta(minutes=1), [U3, None, None])
        session = FakeSession({
            U1: FakeResponse(404),
            U2: _m3u8(),
            U3: _m3u8(EXPIRED_BODY),
        })

        summary = check_links(db_session, session=session, profile=header_profile)
        db_session.expire_all()

        assert summary["tested"] == 2
        assert summary["removed"] == 1
        assert summary["expiredRemoved"] == 1
        assert summary["cleaned"] == 1
        assert event_store.get_event(db_session, doomed) is None
        assert event_store.get_event(db_session, promoted).slots == [U2, None, None]

    def test_transient_failures_untouched(self, db_session, now, header_profile):
        event_id = _add_event(db_session, now, [U1, U2, None])
        session = FakeSession({U1: requests.ConnectionError("reset"), U2: FakeResponse(502)})

        summary = check_links(db_session, session=session, profile=header_profile)
        db_session.expire_all()

        assert summary["removed"] == 0
        assert summary["details"][0]["status"] == "untouched"
        assert event_store.get_event(db_session, event_id).slots == [U1, U2, None]
