"""Pick the scraped candidate (if any) that is the same game as a scheduled event.

Two gates, each tried over the whole pool in pool order; a strict hit anywhere
beats a loose one:

  strict  both teams show up in the candidate name (full key, the team's last
          significant word, e.g. "lakers", or that word's 5-char prefix)
  loose   adjacent-character-pair overlap between the event name and the
          candidate title above 60% and above a small floor

A candidate whose guessed sport is known and differs from the event's never
matches, so a city shared by two franchises cannot cross sports.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Iterable, Optional, Sequence

from normalizer import DEFAULT_CATEGORY, ScrapedCandidate, key_tokens, split_teams

MIN_TEAM_KEY = 4
PREFIX_LEN = 5
LOOSE_RATIO = 0.6
LOOSE_FLOOR = 5

# Separator words carry no identity.
_SEPARATOR_TOKENS = {"vs", "v", "at"}

# Scoreboards and page keywords name these the same game.
_SPORT_ALIASES = {"college football": "american football"}


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _key(text: Optional[str]) -> str:
    return "".join(t for t in key_tokens(text or "") if t not in _SEPARATOR_TOKENS)


def _pairs(key: str) -> Counter:
    return Counter(key[i:i + 2] for i in range(len(key) - 1))


def event_teams(event: Any) -> tuple[Optional[str], Optional[str]]:
    home, away = _field(event, "team_home"), _field(event, "team_away")
    if home and away:
        return home, away
    return split_teams(_field(event, "name") or "")


def candidate_key(candidate: ScrapedCandidate) -> str:
    parts = [candidate.title, candidate.team_home or "", candidate.team_away or ""]
    return _key(" ".join(parts))


def team_evidence(team: str, haystack: str) -> bool:
    """True when ``team`` (or a meaningful piece of it) appears in ``haystack``."""
    tokens = [t for t in key_tokens(team) if t not in _SEPARATOR_TOKENS]
    key = "".join(tokens)
    if len(key) < MIN_TEAM_KEY:
        return False
    if key in haystack:
        return True
    # The nickname identifies the franchise; the city alone does not.
    last = tokens[-1]
    if len(last) < MIN_TEAM_KEY:
        return False
    return last in haystack or (len(last) >= PREFIX_LEN and last[:PREFIX_LEN] in haystack)


def _sport(value: Optional[str]) -> str:
    low = (value or "").strip().lower()
    if low == DEFAULT_CATEGORY.lower():
        return ""
    return _SPORT_ALIASES.get(low, low)


def sport_conflict(event: Any, candidate: ScrapedCandidate) -> bool:
    event_sport, cand_sport = _sport(_field(event, "sport")), _sport(candidate.category)
    return bool(event_sport and cand_sport) and event_sport != cand_sport


def strict_match(event: Any, candidate: ScrapedCandidate) -> bool:
    home, away = event_teams(event)
    if not home or not away:
        return False
    haystack = candidate_key(candidate)
    return team_evidence(home, haystack) and team_evidence(away, haystack)


def loose_match(event: Any, candidate: ScrapedCandidate) -> bool:
    home, away = event_teams(event)
    name_key = _key(f"{home} {away}") if home and away else _key(_field(event, "name"))
    wanted = _pairs(name_key)
    total = sum(wanted.values())
    if not total:
        return False
    overlap = sum((wanted & _pairs(_key(candidate.title))).values())
    return overlap > LOOSE_RATIO * total and overlap > LOOSE_FLOOR


def resolve(event: Any, pool: Sequence[ScrapedCandidate]) -> Optional[ScrapedCandidate]:
    pool = [c for c in pool if not sport_conflict(event, c)]
    for candidate in pool:
        if strict_match(event, candidate):
            return candidate
    for candidate in pool:
        if loose_match(event, candidate):
            return candidate
    return None


def resolve_all(events: Iterable[Any], pool: Sequence[ScrapedCandidate]) -> dict[str, ScrapedCandidate]:
    """``external_id -> candidate`` for every event that found one."""
    found = {}
    for event in events:
        cand = resolve(event, pool)
        ext = _field(event, "external_id")
        if cand and ext:
            found[ext] = cand
    return found
