"""ESPN scoreboard -> canonical event dicts (the schedule the assigner fills in)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import pandas as pd
import pytz
import requests

import settings

ESPN_BASE = "https://site.api.espn.com/apis/site/v2/sports"
EST = pytz.timezone("US/Eastern")

_BASKETBALL = {"nba": "nba", "wnba": "wnba", "ncaa basketball": "mens-college-basketball"}
_FOOTBALL = {"nfl": "nfl", "ncaa football": "college-football"}
_HOCKEY = {"nhl", "khl", "shl", "ahl"}
_MMA = {"ufc", "bellator mma", "pfl", "boxing"}
_TENNIS = {"atp tour", "wta tour", "grand slam"}
_RACING = {"formula 1", "motogp", "nascar", "indycar"}


class ScheduleError(Exception):
    pass


def sport_path(league_key: str) -> str:
    key = (league_key or "").strip().lower()
    if key in _BASKETBALL:
        return f"basketball/{_BASKETBALL[key]}"
    if key in _FOOTBALL:
        return f"football/{_FOOTBALL[key]}"
    if key == "mlb":
        return "baseball/mlb"
    if key in _HOCKEY:
        return f"hockey/{key}"
    if key in _MMA:
        return "mma/ufc"
    if key in _TENNIS:
        return "tennis/atp"
    if key in _RACING:
        return "racing/" + key.replace(" ", "-")
    return f"soccer/{key}"


_SPORT_BY_PATH = {
    "basketball": "Basketball",
    "football": "American Football",
    "baseball": "Baseball",
    "hockey": "Ice Hockey",
    "mma": "MMA",
    "tennis": "Tennis",
    "racing": "Motorsport",
    "soccer": "Soccer",
}


def sport_for_league(league_key: str) -> str:
    key = (league_key or "").strip().lower()
    if key == "boxing":
        return "Boxing"
    if key == "ncaa football":
        return "College Football"
    return _SPORT_BY_PATH[sport_path(key).split("/", 1)[0]]


def scoreboard_url(league_key: str, date: Optional[datetime] = None) -> str:
    day = date or datetime.now(EST)
    if day.tzinfo is not None:
        day = day.astimezone(EST)
    return f"{ESPN_BASE}/{sport_path(league_key)}/scoreboard?dates={day.strftime('%Y%m%d')}"


def fetch_scoreboard(
    league_key: str,
    session=None,
    date: Optional[datetime] = None,
    timeout: float = settings.SCHEDULE_TIMEOUT_SECONDS,
) -> dict[str, Any]:
    session = session or requests.Session()
    url = scoreboard_url(league_key, date)
    resp = session.get(url, timeout=timeout, headers=settings.DEFAULT_HEADER_PROFILE.browser_headers())
    if resp.status_code != 200:
        raise ScheduleError(f"{league_key}: scoreboard HTTP {resp.status_code}")
    try:
        return resp.json() or {}
    except ValueError as exc:
        raise ScheduleError(f"{league_key}: invalid scoreboard JSON") from exc


def _kickoff(raw: Any) -> Optional[datetime]:
    ts = pd.to_datetime(raw, utc=True, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.to_pydatetime()


def parse_scoreboard(payload: dict[str, Any], league_key: str) -> list[dict[str, Any]]:
    leagues = payload.get("leagues") or [{}]
    league_name = leagues[0].get("name") or leagues[0].get("abbreviation") or league_key
    sport = sport_for_league(league_key)

    out = []
    for ev in payload.get("events") or []:
        comps = ev.get("competitions") or []
        if not ev.get("id") or not comps:
            continue
        comp = comps[0]
        competitors = comp.get("competitors") or []
        home = next((c for c in competitors if c.get("homeAway") == "home"), {})
        away = next((c for c in competitors if c.get("homeAway") == "away"), {})
        home_team = home.get("team") or home.get("athlete") or {}
        away_team = away.get("team") or away.get("athlete") or {}
        home_name = home_team.get("displayName") or "TBD"
        away_name = away_team.get("displayName") or "TBD"

        kickoff = _kickoff(ev.get("date") or comp.get("date"))
        if kickoff is None:
            continue

        state = (((comp.get("status") or {}).get("type") or {}).get("state") or "").lower()
        out.append({
            "external_id": str(ev["id"]),
            "name": f"{home_name} vs {away_name}",
            "event_date": kickoff,
            "sport": sport,
            "league": league_name,
            "team_home": home_name,
            "team_away": away_name,
            "thumbnail": home_team.get("logo") or away_team.get("logo"),
            "is_live": state == "in",
            "status": {"in": "live", "post": "finished"}.get(state, "upcoming"),
        })
    return out


def fetch_league_events(league_key: str, session=None, date: Optional[datetime] = None) -> list[dict[str, Any]]:
    return parse_scoreboard(fetch_scoreboard(league_key, session, date), league_key)
