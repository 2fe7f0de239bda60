"""Tests for ESPN scoreboard parsing."""
from datetime import datetime, timezone

import pytest

import schedule_feed
from conftest import FakeResponse, FakeSession

SCOREBOARD = {
    "leagues": [{"name": "National Basketball Association", "abbreviation": "NBA"}],
    "events": [
        {
            "id": "401585001",
            "date": "2026-03-14T23:30Z",
            "competitions": [{
                "status": {"type": {"state": "in"}},
                "competitors": [
                    {"homeAway": "home", "team": {"displayName": "Los Angeles Lakers", "logo": "https://a.espncdn.com/lal.png"}},
                    {"homeAway": "away", "team": {"displayName": "Boston Celtics", "logo": "https://a.espncdn.com/bos.png"}},
                ],
            }],
        },
        {"id": "401585002", "date": "not a date", "competitions": [{"competitors": []}]},
        {"id": "401585003", "competitions": []},
    ],
}


class TestSportPath:
    """League keys map onto ESPN sport paths."""

    @pytest.mark.parametrize("key,path", [
        ("nba", "basketball/nba"),
        ("ncaa football", "football/college-football"),
        ("nhl", "hockey/nhl"),
        ("ufc", "mma/ufc"),
        ("formula 1", "racing/formula-1"),
        ("eng.1", "soccer/eng.1"),
    ])
    def test_paths(self, key, path):
        assert schedule_feed.sport_path(key) == path

    def test_sport_names(self):
        assert schedule_feed.sport_for_league("nba") == "Basketball"
        assert schedule_feed.sport_for_league("uefa.champions") == "Soccer"


class TestParseScoreboard:
    """Events become canonical rows; unusable ones are skipped."""

    def test_parse(self):
        rows = schedule_feed.parse_scoreboard(SCOREBOARD, "nba")

        assert len(rows) == 1
        row = rows[0]
        assert row["external_id"] == "401585001"
        assert row["name"] == "Los Angeles Lakers vs Boston Celtics"
        assert row["event_date"] == datetime(2026, 3, 14, 23, 30, tzinfo=timezone.utc)
        assert row["league"] == "National Basketball Association"
        assert row["sport"] == "Basketball"
        assert row["thumbnail"] == "https://a.espncdn.com/lal.png"
        assert row["is_live"] is True
        assert row["status"] == "live"


class TestFetchScoreboard:
    """Dates are US/Eastern; HTTP failures raise."""

    def test_url_uses_eastern_date(self):
        # 02:00 UTC on the 15th is still the 14th in New York
        when = datetime(2026, 3, 15, 2, 0, tzinfo=timezone.utc)
        assert schedule_feed.scoreboard_url("nba", when).endswith("basketball/nba/scoreboard?dates=20260314")

    def test_http_error(self):
        when = datetime(2026, 3, 14, 18, 0, tzinfo=timezone.utc)
        session = FakeSession({schedule_feed.scoreboard_url("nba", when): FakeResponse(500)})
        with pytest.raises(schedule_feed.ScheduleError):
            schedule_feed.fetch_scoreboard("nba", session, when)
