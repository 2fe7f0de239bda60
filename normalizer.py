"""
normalizer.py

Turns whatever an adapter found (an anchor, a JSON record, a markdown line) into a
ScrapedCandidate, and owns the string helpers every later stage compares with:
link blacklist, slug -> readable name, team splitting, sport guessing, provider
URL templates and the comparison keys used by the matcher.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

import settings
from db_models import PROVIDER_FIELDS, utcnow

DEFAULT_CATEGORY = "Other"

TEAM_SEP_REGEX = re.compile(r"\s+(?:vs\.?|v\.?|@)\s+|\s+[-–—]\s+", re.IGNORECASE)
SEPARATOR_HINT_REGEX = re.compile(r"\s(?:vs\.?|v\.?|@)\s", re.IGNORECASE)
SLUG_CLEAN_QUOTES = re.compile(r"['\"`’]")
SLUG_NON_ALNUM = re.compile(r"[^a-z0-9]+")
SLUG_MULTI_DASH = re.compile(r"-{2,}")
TRAILING_ID_RE = re.compile(r"[-_]\d+$")
LEADING_ID_RE = re.compile(r"^\d+[-_]")
MATCH_PATH_RE = re.compile(r"/(?:watch|live|stream|match|event|play|embed|channel)", re.I)

# Slug prefixes that name the provider or page type, not the match.
PROVIDER_PREFIXES = ("ppv-", "watch-", "live-", "stream-", "match-", "event-")

BLOCKED_EXTENSIONS = (
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico", ".bmp",
    ".css", ".js", ".mjs", ".map", ".woff", ".woff2", ".ttf", ".eot",
    ".xml", ".json", ".txt", ".pdf",
)
# Compared against the whole host or a dot-bounded suffix of it.
BLOCKED_DOMAINS = (
    "cloudflare.com", "googleapis.com", "gstatic.com", "jsdelivr.net", "unpkg.com",
    "googletagmanager.com", "google-analytics.com", "doubleclick.net",
    "facebook.com", "twitter.com", "x.com", "t.me", "discord.gg",
    "instagram.com", "reddit.com",
)
# Leading host labels of asset servers.
BLOCKED_HOST_PREFIXES = ("cdn.", "cdnjs.", "fonts.", "static.")
GENERIC_PATHS = {
    "", "/", "/live", "/channels", "/channel", "/schedule", "/home", "/index",
    "/watch", "/login", "/signup", "/register", "/about", "/contact", "/faq",
    "/dmca", "/privacy", "/terms", "/donate", "/sports", "/streams",
}
CHAT_SEGMENT_RE = re.compile(r"^(?:text[-_]?)?chat(?:[-_]?rooms?)?s?$")

# Word-level noise removed before comparing team names.
NOISE_WORDS = {
    "fc", "afc", "sc", "cf", "fk", "bk", "sk", "ac", "cd", "sd",
    "united", "city", "athletic", "club", "sports", "the",
    "live", "hd", "stream", "streams",
}

_SPORT_KEYWORDS = [
    ("nba", "Basketball"),
    ("wnba", "Basketball"),
    ("ncaab", "Basketball"),
    ("basketball", "Basketball"),
    ("euroleague", "Basketball"),
    ("nfl", "American Football"),
    ("american football", "American Football"),
    ("ncaaf", "College Football"),
    ("ncaa football", "College Football"),
    ("college football", "College Football"),
    ("mlb", "Baseball"),
    ("baseball", "Baseball"),
    ("nhl", "Ice Hockey"),
    ("ice hockey", "Ice Hockey"),
    ("hockey", "Ice Hockey"),
    ("soccer", "Soccer"),
    ("football", "Soccer"),
    ("mls", "Soccer"),
    ("premier league", "Soccer"),
    ("premier", "Soccer"),
    ("la liga", "Soccer"),
    ("laliga", "Soccer"),
    ("serie a", "Soccer"),
    ("bundesliga", "Soccer"),
    ("ligue 1", "Soccer"),
    ("eredivisie", "Soccer"),
    ("champions league", "Soccer"),
    ("uefa", "Soccer"),
    ("copa", "Soccer"),
    ("ufc", "MMA"),
    ("mma", "MMA"),
    ("bellator", "MMA"),
    ("pfl", "MMA"),
    ("boxing", "Boxing"),
    ("fight", "Boxing"),
    ("formula 1", "Motorsport"),
    ("f1", "Motorsport"),
    ("nascar", "Motorsport"),
    ("motogp", "Motorsport"),
    ("tennis", "Tennis"),
    ("atp", "Tennis"),
    ("wta", "Tennis"),
    ("golf", "Golf"),
    ("pga", "Golf"),
    ("cricket", "Cricket"),
    ("t20", "Cricket"),
    ("rugby", "Rugby"),
    ("darts", "Darts"),
    ("handball", "Handball"),
    ("volleyball", "Volleyball"),
]

_SPORT_PATTERNS = [
    (re.compile(rf"\b{re.escape(keyword)}\b"), sport) for keyword, sport in _SPORT_KEYWORDS
]


@dataclass
class ScrapedCandidate:
    title: str
    url: str
    provider: str
    origin: str
    team_home: Optional[str] = None
    team_away: Optional[str] = None
    category: str = DEFAULT_CATEGORY
    match_id: str = ""
    is_live: bool = False
    provider_urls: dict[str, str] = field(default_factory=dict)
    scanned_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not self.match_id:
            self.match_id = f"{self.origin}:{derive_slug(self.url) or self.url}"

    def to_snapshot_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "match_id": self.match_id,
            "match_title": self.title,
            "category": self.category,
            "team_home": self.team_home,
            "team_away": self.team_away,
            "origin": self.origin,
            "watch_url": self.url,
            "scanned_at": self.scanned_at,
        }
        for f in PROVIDER_FIELDS:
            record[f] = self.provider_urls.get(f.replace("source_", ""))
        return record

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "provider": self.provider,
            "source": self.origin,
            "teamHome": self.team_home,
            "teamAway": self.team_away,
            "category": self.category,
            "matchId": self.match_id,
            "isLive": self.is_live,
        }


# ---------------- URL HELPERS ----------------

def force_https(url: str) -> str:
    if not isinstance(url, str):
        return url
    if url.startswith("http://"):
        return "https://" + url[len("http://"):]
    return url


def normalize_http_url(value: str) -> str:
    if not value:
        return ""
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return ""
    return value


def origin_of(url: str) -> str:
    parsed = urlparse(url or "")
    if not parsed.scheme or not parsed.netloc:
        return ""
    return f"{parsed.scheme}://{parsed.netloc}"


def looks_like_chat(url: str) -> bool:
    """Chat pages by host label or path segment; "chattanooga-..." is a match slug."""
    if not url:
        return False
    parsed = urlparse(url.lower())
    parts = parsed.netloc.split(".") + [s for s in parsed.path.split("/") if s]
    return any(CHAT_SEGMENT_RE.match(part) for part in parts)


def is_blocked_host(host: str) -> bool:
    host = host.lower().split(":", 1)[0]
    if host.startswith(BLOCKED_HOST_PREFIXES):
        return True
    return any(host == d or host.endswith("." + d) for d in BLOCKED_DOMAINS)


def is_candidate_link(url: str) -> bool:
    """False for assets, CDNs, social links and generic site pages."""
    if not normalize_http_url(url):
        return False
    parsed = urlparse(url)
    host = parsed.netloc.lower()
    path = parsed.path.lower()

    if path.endswith(BLOCKED_EXTENSIONS):
        return False
    if is_blocked_host(host):
        return False
    if path.rstrip("/") in GENERIC_PATHS or path in GENERIC_PATHS:
        return False
    if looks_like_chat(url):
        return False
    return True


def looks_like_match_path(url: str) -> bool:
    return bool(MATCH_PATH_RE.search(urlparse(url or "").path))


def absolutize(base_url: str, href: str) -> str:
    return force_https(urljoin(base_url, (href or "").strip()))


# ---------------- PROVIDERS ----------------

def _template_regex(template: str) -> re.Pattern:
    head, _, tail = template.partition("{slug}")
    tail = tail.split("?", 1)[0]
    return re.compile("^" + re.escape(head) + r"(?P<slug>[\w-]+)" + re.escape(tail) + r"(?:[?#].*)?$", re.I)


_PROVIDER_PATTERNS: dict[str, re.Pattern] = {}


def _provider_patterns() -> dict[str, re.Pattern]:
    if set(_PROVIDER_PATTERNS) != set(settings.EMBED_PROVIDERS):
        _PROVIDER_PATTERNS.clear()
        for name, template in settings.EMBED_PROVIDERS.items():
            _PROVIDER_PATTERNS[name] = _template_regex(template)
    return _PROVIDER_PATTERNS


def build_provider_url(provider: str, slug: str) -> Optional[str]:
    template = settings.EMBED_PROVIDERS.get(provider)
    if not template or not slug:
        return None
    return template.replace("{slug}", slug)


def parse_provider_url(url: str) -> Optional[tuple[str, str]]:
    """``(provider, slug)`` when ``url`` was rendered from a provider template."""
    if not url:
        return None
    for name, pattern in _provider_patterns().items():
        m = pattern.match(url.strip())
        if m:
            return name, m.group("slug")
    return None


def is_pipeline_url(url: Optional[str]) -> bool:
    return bool(url) and parse_provider_url(url) is not None


# ---------------- SLUGS + NAMES ----------------

def slugify(text: str) -> str:
    if not isinstance(text, str):
        return ""
    s = strip_accents(text).strip().lower()
    s = SLUG_CLEAN_QUOTES.sub("", s)
    s = SLUG_NON_ALNUM.sub("-", s)
    s = SLUG_MULTI_DASH.sub("-", s).strip("-")
    return s


def derive_slug(url: str) -> str:
    """The slug a URL identifies its match by: the embed slug, else the last path segment."""
    parsed_provider = parse_provider_url(url)
    if parsed_provider:
        return parsed_provider[1]
    segments = [s for s in urlparse(url or "").path.split("/") if s]
    return segments[-1] if segments else ""


def name_from_slug(slug: str) -> str:
    """``ppv-brooklyn-nets-vs-washington-wizards-2358110`` -> ``Brooklyn Nets vs Washington Wizards``."""
    s = (slug or "").strip("/").lower()
    for prefix in PROVIDER_PREFIXES:
        if s.startswith(prefix):
            s = s[len(prefix):]
            break
    s = LEADING_ID_RE.sub("", s)
    s = TRAILING_ID_RE.sub("", s)
    words = []
    for token in re.split(r"[-_]+", s):
        if not token:
            continue
        words.append("vs" if token in ("vs", "v") else token.capitalize())
    return " ".join(words)


def split_teams(name: str) -> tuple[Optional[str], Optional[str]]:
    """``(home, away)`` from a title, or ``(None, None)`` when there is no separator.

    ``A @ B`` reads away-at-home; every other separator reads home-first.
    """
    if not name:
        return None, None
    at_form = re.search(r"\s@\s", name) is not None
    parts = TEAM_SEP_REGEX.split(name.strip(), maxsplit=1)
    if len(parts) != 2:
        return None, None
    left, right = (p.strip(" -|:") for p in parts)
    if not left or not right:
        return None, None
    if at_form:
        return right, left
    return left, right


def has_team_separator(text: str) -> bool:
    return bool(SEPARATOR_HINT_REGEX.search(f" {text or ''} "))


def clean_title(text: str) -> str:
    text = re.sub(r"[#*\[\]_>`]", " ", text or "")
    text = re.sub(r"\(https?://[^)]*\)", " ", text)
    return " ".join(text.split())


# ---------------- CATEGORY ----------------

def guess_sport(*texts: str) -> str:
    haystack = " ".join(t for t in texts if t).lower()
    haystack = re.sub(r"[-_/]+", " ", haystack)
    for pattern, sport in _SPORT_PATTERNS:
        if pattern.search(haystack):
            return sport
    return DEFAULT_CATEGORY


def normalize_category(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        return DEFAULT_CATEGORY
    guessed = guess_sport(value)
    if guessed != DEFAULT_CATEGORY:
        return guessed
    return value.strip().replace("-", " ").title()


# ---------------- COMPARISON KEYS ----------------

def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text or "")
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def key_tokens(text: str) -> list[str]:
    cleaned = SLUG_NON_ALNUM.sub(" ", strip_accents(text or "").lower())
    return [t for t in cleaned.split() if t not in NOISE_WORDS]


def normalize_key(text: str) -> str:
    """Comparison key: lowercase, accent/punctuation/space free, noise words dropped."""
    return "".join(key_tokens(text))


# ---------------- BUILDERS ----------------

def candidate_from_link(
    url: str,
    origin: str,
    *,
    title: str = "",
    context: str = "",
    is_live: bool = False,
) -> Optional[ScrapedCandidate]:
    """Normalize one link (plus optional visible text) into a candidate, or None."""
    url = force_https((url or "").strip())
    if not is_candidate_link(url):
        return None

    slug = derive_slug(url)
    name = clean_title(title)
    if not has_team_separator(name):
        name = name_from_slug(slug) or name
    if len(name) < 5:
        return None

    home, away = split_teams(name)
    parsed = parse_provider_url(url)
    provider = parsed[0] if parsed else origin
    provider_urls = {provider: url} if parsed else {}

    return ScrapedCandidate(
        title=name,
        url=url,
        provider=provider,
        origin=origin,
        team_home=home,
        team_away=away,
        category=guess_sport(slug, name, context),
        is_live=is_live,
        provider_urls=provider_urls,
    )


def candidate_from_snapshot(row: Any) -> Optional[ScrapedCandidate]:
    provider_urls = {}
    for f in PROVIDER_FIELDS:
        value = getattr(row, f, None)
        if value:
            provider_urls[f.replace("source_", "")] = value

    ordered = [p for p in settings.EMBED_PROVIDERS if p in provider_urls]
    if ordered:
        provider, url = ordered[0], provider_urls[ordered[0]]
    elif getattr(row, "watch_url", None):
        provider, url = row.origin or "scraped", row.watch_url
    else:
        return None

    return ScrapedCandidate(
        title=row.match_title,
        url=url,
        provider=provider,
        origin=row.origin or "snapshot",
        team_home=row.team_home,
        team_away=row.team_away,
        category=row.category or DEFAULT_CATEGORY,
        match_id=row.match_id,
        provider_urls=provider_urls,
        scanned_at=row.scanned_at or utcnow(),
    )
