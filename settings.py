"""Environment-driven settings shared by the scraper, assigner, checker and proxy."""

from __future__ import annotations

import os
import random
from dataclasses import dataclass, field
from pathlib import Path


def _env_bool(key: str, default: bool = False) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.environ.get(key, default))
    except (TypeError, ValueError):
        return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.environ.get(key, default))
    except (TypeError, ValueError):
        return default


def _env_list(key: str, default: list[str], sep: str = ",") -> list[str]:
    raw = os.environ.get(key)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(sep) if item.strip()]


# ---------------- STORE ----------------

DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    f"sqlite:///{Path(__file__).parent / 'data' / 'events.db'}",
)
ADMIN_API_KEY = os.environ.get("ADMIN_API_KEY", "").strip()

# ---------------- SCRAPING ----------------

SCRAPE_TIMEOUT_SECONDS = _env_int("SCRAPE_TIMEOUT_SECONDS", 10)
SCAN_DEADLINE_SECONDS = _env_int("SCAN_DEADLINE_SECONDS", 30)
SCAN_WORKERS = _env_int("SCAN_WORKERS", 4)
FIRECRAWL_API_KEY = os.environ.get("FIRECRAWL_API_KEY", "").strip()
FIRECRAWL_API_URL = os.environ.get("FIRECRAWL_API_URL", "https://api.firecrawl.dev/v1/scrape")

# ---------------- ASSIGNMENT ----------------

ASSIGN_WINDOW_MINUTES = _env_int("ASSIGN_WINDOW_MINUTES", 30)
ASSIGN_GRACE_MINUTES = _env_int("ASSIGN_GRACE_MINUTES", 10)
LEAGUE_BATCH_SIZE = _env_int("LEAGUE_BATCH_SIZE", 5)
LEAGUE_BATCH_PAUSE_SECONDS = _env_float("LEAGUE_BATCH_PAUSE_SECONDS", 0.5)
SCHEDULE_TIMEOUT_SECONDS = _env_int("SCHEDULE_TIMEOUT_SECONDS", 10)

# Priority leagues are processed first.
ASSIGN_LEAGUES = _env_list(
    "ASSIGN_LEAGUES",
    [
        "nba", "nfl", "mlb", "nhl", "usa.1",
        "eng.1", "esp.1", "ger.1", "ita.1", "fra.1",
        "uefa.champions", "uefa.europa",
        "mex.1", "arg.1", "bra.1",
        "conmebol.libertadores",
        "ufc", "eng.2",
    ],
)

# ---------------- HEALTH CHECK ----------------

HEALTH_TIMEOUT_SECONDS = _env_int("HEALTH_TIMEOUT_SECONDS", 5)
HEALTH_BATCH_SIZE = _env_int("HEALTH_BATCH_SIZE", 5)
HEALTH_MAX_EVENTS = _env_int("HEALTH_MAX_EVENTS", 50)

# ---------------- STATUS SYNC ----------------

LIVE_HOURS = _env_float("LIVE_HOURS", 3)
DEACTIVATE_HOURS = _env_float("DEACTIVATE_HOURS", 4)

# ---------------- PROXY ----------------

PROXY_TIMEOUT_SECONDS = _env_int("PROXY_TIMEOUT_SECONDS", 12)
PROXY_PLAYLIST_CACHE_SECONDS = _env_int("PROXY_PLAYLIST_CACHE_SECONDS", 3)
PROXY_SEGMENT_CACHE_SECONDS = _env_int("PROXY_SEGMENT_CACHE_SECONDS", 3600)

# ---------------- SCHEDULER ----------------

ENABLE_SCHEDULER = _env_bool("ENABLE_SCHEDULER", default=False)
SCAN_INTERVAL_MINUTES = _env_int("SCAN_INTERVAL_MINUTES", 10)
HEALTH_INTERVAL_MINUTES = _env_int("HEALTH_INTERVAL_MINUTES", 15)
STATUS_INTERVAL_MINUTES = _env_int("STATUS_INTERVAL_MINUTES", 5)

# ---------------- EMBED PROVIDERS ----------------

EMBED_BASE = os.environ.get("EMBED_BASE", "https://embedsports.top/embed")

DEFAULT_EMBED_PROVIDERS = {
    "admin": EMBED_BASE + "/admin/{slug}/1?autoplay=1",
    "delta": EMBED_BASE + "/delta/{slug}/1?autoplay=1",
    "echo": EMBED_BASE + "/echo/{slug}/1?autoplay=1",
    "golf": EMBED_BASE + "/golf/{slug}/1?autoplay=1",
}


def _load_embed_providers() -> dict[str, str]:
    """Parse ``EMBED_PROVIDERS="admin=https://.../{slug}/1;delta=..."``.

    Insertion order is provider priority.
    """
    raw = os.environ.get("EMBED_PROVIDERS")
    if not raw:
        return dict(DEFAULT_EMBED_PROVIDERS)
    providers: dict[str, str] = {}
    for pair in raw.split(";"):
        name, sep, template = pair.partition("=")
        name, template = name.strip().lower(), template.strip()
        if sep and name and "{slug}" in template:
            providers[name] = template
    return providers or dict(DEFAULT_EMBED_PROVIDERS)


EMBED_PROVIDERS = _load_embed_providers()

# Slots 1-3 for a guessed link, in this order.
GUESS_PROVIDER_ORDER = _env_list("GUESS_PROVIDER_ORDER", ["admin", "delta", "echo"])

# ---------------- HEADER SPOOFING ----------------

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
]


@dataclass
class HeaderProfile:
    """Browser-like request headers for upstreams that block bare clients.

    Held in the Flask config (``HEADER_PROFILE``) and passed to the checker so
    tests can swap in a single fixed user agent.
    """

    user_agents: list[str] = field(default_factory=lambda: list(DEFAULT_USER_AGENTS))
    accept: str = "*/*"
    accept_html: str = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
    accept_language: str = "en-US,en;q=0.9"
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def pick_user_agent(self) -> str:
        if not self.user_agents:
            return DEFAULT_USER_AGENTS[0]
        return self.rng.choice(self.user_agents)

    def browser_headers(self, origin: str = "", *, html: bool = False) -> dict[str, str]:
        headers = {
            "User-Agent": self.pick_user_agent(),
            "Accept": self.accept_html if html else self.accept,
            "Accept-Language": self.accept_language,
        }
        if origin:
            headers["Referer"] = origin + "/"
            headers["Origin"] = origin
        return headers

    def minimal_headers(self) -> dict[str, str]:
        return {"User-Agent": self.pick_user_agent()}


DEFAULT_HEADER_PROFILE = HeaderProfile(
    user_agents=_env_list("PROXY_USER_AGENTS", DEFAULT_USER_AGENTS, sep="||"),
)
