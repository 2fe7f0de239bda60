#!/usr/bin/env python3
"""
scrape_sources.py

Live-match link discovery across unreliable listing sites:
  - JSON match APIs (sportsbite / streamed style: match + provider ids)
  - Plain HTML listings (anchors on a provider watch-path + "A vs B" lines)
  - Rendered pages through a render API (markdown + link list), when keyed

Guarantees:
  - One failing or slow source never aborts the scan
  - Results from fast sources survive the batch deadline
  - Snapshot table is swapped by generation, never emptied mid-cycle
"""

from __future__ import annotations

import json
import os
import re
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional
from urllib.parse import urlparse

import pandas as pd
import requests
from bs4 import BeautifulSoup

import event_store
import settings
from db_models import SessionLocal, init_db, utcnow
from normalizer import (
    ScrapedCandidate,
    absolutize,
    build_provider_url,
    candidate_from_link,
    clean_title,
    has_team_separator,
    is_candidate_link,
    looks_like_match_path,
    normalize_category,
    split_teams,
)

# ---------------- CONFIG ----------------

STREAMED_API_BASE = os.environ.get("STREAMED_API_BASE", "https://streamed.pk")
SPORTSBITE_API_URL = os.environ.get("SPORTSBITE_API_URL", "https://sportsbite.top/api/matches/all")
SPORTSURGE_BASE = os.environ.get("SPORTSURGE_BASE", "https://v2.sportsurge.net/")
RENDERED_PAGES = [
    "https://app.moviebite.cc/live",
    "https://app.moviebite.cc/schedule",
    "https://app.moviebite.cc/football",
    "https://app.moviebite.cc/nba",
    "https://app.moviebite.cc/nfl",
]

# Source-side provider names -> our provider names.
PROVIDER_ALIASES = {
    "admin": "admin", "vola": "admin", "main": "admin", "stream1": "admin",
    "delta": "delta", "stream2": "delta",
    "echo": "echo", "stream3": "echo",
    "golf": "golf", "mv": "golf", "stream4": "golf",
}

BLOCK_TAGS = ["li", "tr", "td", "p", "h1", "h2", "h3", "h4", "h5", "h6", "div", "article", "section"]
MD_LINK_RE = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")
MD_URL_RE = re.compile(r"\((https?://[^)\s]+)\)")
LINE_WINDOW = 2
MAX_LINE_TITLE = 120


class SourceError(Exception):
    """A source could not be fetched or returned something unusable."""


# ---------------- ADAPTERS ----------------

class SourceAdapter(ABC):
    """One listing site. Subclasses hold that site's fragile parsing."""

    kind = "base"

    def __init__(self, name: str, url: str):
        self.name = name
        self.url = url

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self.url}>"

    @abstractmethod
    def fetch(self, session, timeout: float) -> list[ScrapedCandidate]:
        """Return candidates; raise SourceError (or a requests error) when unreachable."""

    def _get(self, session, url: str, timeout: float, *, html: bool = True):
        headers = settings.DEFAULT_HEADER_PROFILE.browser_headers(html=html)
        headers["Cache-Control"] = "no-cache"
        resp = session.get(url, timeout=timeout, headers=headers)
        if resp.status_code != 200:
            raise SourceError(f"HTTP {resp.status_code}")
        return resp


class JsonApiAdapter(SourceAdapter):
    kind = "json"

    def fetch(self, session, timeout: float) -> list[ScrapedCandidate]:
        resp = self._get(session, self.url, timeout, html=False)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise SourceError(f"invalid JSON: {exc}") from exc
        return self.parse(payload)

    def parse(self, payload: Any) -> list[ScrapedCandidate]:
        if isinstance(payload, dict):
            payload = payload.get("events") or payload.get("data") or []
        if not isinstance(payload, list):
            return []

        now = utcnow()
        out = []
        for match in payload:
            if not isinstance(match, dict):
                continue
            cand = self._candidate(match, now)
            if cand:
                out.append(cand)
        return out

    def _provider_ids(self, match: dict) -> dict[str, str]:
        ids: dict[str, str] = {}
        for key in ("admin", "vola", "main", "delta", "echo", "golf", "mv"):
            value = match.get(key)
            if value and PROVIDER_ALIASES[key] not in ids:
                ids[PROVIDER_ALIASES[key]] = str(value)

        for src in match.get("sources") or []:
            if not isinstance(src, dict):
                continue
            name = str(src.get("name") or src.get("source") or "").strip().lower()
            provider = PROVIDER_ALIASES.get(name)
            value = src.get("id") or src.get("value")
            if provider and value:
                ids[provider] = str(value)
        return ids

    def _candidate(self, match: dict, now: datetime) -> Optional[ScrapedCandidate]:
        provider_urls = {}
        for provider, slug in self._provider_ids(match).items():
            url = build_provider_url(provider, slug)
            if url:
                provider_urls[provider] = url
        if not provider_urls:
            return None

        teams = match.get("teams") or {}
        home = ((teams.get("home") or {}).get("name") or None) if isinstance(teams, dict) else None
        away = ((teams.get("away") or {}).get("name") or None) if isinstance(teams, dict) else None
        title = match.get("title") or match.get("name")
        if not title:
            title = f"{home} vs {away}" if home and away else "Match"
        if not (home and away):
            home, away = split_teams(title)

        ordered = [p for p in settings.EMBED_PROVIDERS if p in provider_urls]
        provider = ordered[0] if ordered else next(iter(provider_urls))

        match_id = match.get("id") or match.get("_id")
        return ScrapedCandidate(
            title=title,
            url=provider_urls[provider],
            provider=provider,
            origin=self.name,
            team_home=home,
            team_away=away,
            category=normalize_category(match.get("category") or match.get("sport") or title),
            match_id=f"{self.name}:{match_id}" if match_id else "",
            is_live=_is_live_window(match.get("date"), now),
            provider_urls=provider_urls,
        )


class HtmlListingAdapter(SourceAdapter):
    """Anchors whose path matches ``link_pattern``, then "A vs B" lines near a link."""

    kind = "html"

    def __init__(self, name: str, url: str, link_pattern: str | re.Pattern):
        super().__init__(name, url)
        self.link_pattern = re.compile(link_pattern) if isinstance(link_pattern, str) else link_pattern

    def fetch(self, session, timeout: float) -> list[ScrapedCandidate]:
        resp = self._get(session, self.url, timeout)
        return self.parse(resp.text)

    def parse(self, html: str) -> list[ScrapedCandidate]:
        soup = BeautifulSoup(html or "", "html.parser")
        page_text = soup.get_text(" ", strip=True).lower()
        out: list[ScrapedCandidate] = []

        for a in soup.find_all("a", href=True):
            full = absolutize(self.url, a["href"])
            if not self.link_pattern.search(urlparse(full).path):
                continue
            cand = candidate_from_link(
                full,
                self.name,
                title=a.get_text(" ", strip=True),
                is_live=_slug_marked_live(page_text, full),
            )
            if cand:
                out.append(cand)

        out.extend(candidates_from_lines(_html_lines(soup, self.url), self.name))
        return dedup_candidates(out)


class RenderedPageAdapter(SourceAdapter):
    """Pages that only list matches after client-side rendering.

    The render API returns markdown plus every link on the page.
    """

    kind = "rendered"

    def __init__(self, name: str, url: str, api_key: str = "", api_url: str = ""):
        super().__init__(name, url)
        self.api_key = api_key or settings.FIRECRAWL_API_KEY
        self.api_url = api_url or settings.FIRECRAWL_API_URL

    def fetch(self, session, timeout: float) -> list[ScrapedCandidate]:
        if not self.api_key:
            raise SourceError("render API key not configured")
        resp = session.post(
            self.api_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json={"url": self.url, "formats": ["markdown", "links"], "waitFor": 5000, "onlyMainContent": True},
        )
        if resp.status_code != 200:
            raise SourceError(f"render API HTTP {resp.status_code}")
        try:
            data = resp.json() or {}
        except ValueError as exc:
            raise SourceError(f"invalid render response: {exc}") from exc
        body = data.get("data") or data
        return self.parse(body.get("markdown") or "", body.get("links") or [])

    def parse(self, markdown: str, links: Iterable[str] = ()) -> list[ScrapedCandidate]:
        out: list[ScrapedCandidate] = []
        lines = []
        for raw in (markdown or "").splitlines():
            line = raw.strip()
            for text, url in MD_LINK_RE.findall(line):
                if looks_like_match_path(url):
                    cand = candidate_from_link(url, self.name, title=text, context=self.url)
                    if cand:
                        out.append(cand)
            lines.append((line, MD_URL_RE.findall(line)))

        out.extend(candidates_from_lines(lines, self.name, context=self.url))

        for link in links:
            if isinstance(link, str) and looks_like_match_path(link):
                cand = candidate_from_link(link, self.name, context=self.url)
                if cand:
                    out.append(cand)
        return dedup_candidates(out)


ADAPTER_KINDS = {
    JsonApiAdapter.kind: JsonApiAdapter,
    HtmlListingAdapter.kind: HtmlListingAdapter,
    RenderedPageAdapter.kind: RenderedPageAdapter,
}


def build_adapter(source: dict[str, Any]) -> SourceAdapter:
    """``{"name", "url", "kind", ["pattern"]}`` -> adapter."""
    kind = (source.get("kind") or "html").lower()
    cls = ADAPTER_KINDS.get(kind)
    if cls is None:
        raise ValueError(f"unknown source kind: {kind}")
    name = source.get("name") or urlparse(source["url"]).netloc
    if cls is HtmlListingAdapter:
        return cls(name, source["url"], source.get("pattern") or r"/watch")
    return cls(name, source["url"])


def default_adapters() -> list[SourceAdapter]:
    raw = os.environ.get("SCRAPE_SOURCES_JSON")
    if raw:
        return [build_adapter(source) for source in json.loads(raw)]

    adapters: list[SourceAdapter] = [
        JsonApiAdapter("sportsbite", SPORTSBITE_API_URL),
        JsonApiAdapter("streamed-api", f"{STREAMED_API_BASE.rstrip('/')}/api/matches/all-today"),
        HtmlListingAdapter("streamed", f"{STREAMED_API_BASE.rstrip('/')}/", r"^/watch/[\w-]+"),
        HtmlListingAdapter("sportsurge", SPORTSURGE_BASE, r"^/watch-\d+-[\w-]+"),
    ]
    if settings.FIRECRAWL_API_KEY:
        for page in RENDERED_PAGES:
            adapters.append(RenderedPageAdapter(f"moviebite:{page.rsplit('/', 1)[-1]}", page))
    return adapters


# ---------------- LINE HEURISTICS ----------------

def _html_lines(soup: BeautifulSoup, base_url: str) -> list[tuple[str, list[str]]]:
    """Leaf block elements in document order as ``(text, hrefs)``."""
    lines = []
    for el in soup.find_all(BLOCK_TAGS):
        if el.find(BLOCK_TAGS):
            continue
        text = el.get_text(" ", strip=True)
        if not text:
            continue
        hrefs = [absolutize(base_url, a["href"]) for a in el.find_all("a", href=True)]
        parent_a = el.find_parent("a", href=True)
        if parent_a:
            hrefs.insert(0, absolutize(base_url, parent_a["href"]))
        lines.append((text, hrefs))
    return lines


def candidates_from_lines(
    lines: list[tuple[str, list[str]]],
    origin: str,
    *,
    context: str = "",
) -> list[ScrapedCandidate]:
    """A line naming two sides ("A vs B") adopts its own link or the nearest one."""
    out = []
    for i, (text, _) in enumerate(lines):
        title = clean_title(text)
        if not title or len(title) > MAX_LINE_TITLE or not has_team_separator(title):
            continue

        # Own line, then the lines below, then above; other matchup lines are skipped.
        below = range(i + 1, min(len(lines), i + LINE_WINDOW + 1))
        above = range(i - 1, max(-1, i - LINE_WINDOW - 1), -1)
        window = [i] + [j for j in (*below, *above) if not has_team_separator(lines[j][0])]
        url = next(
            (u for j in window for u in lines[j][1] if is_candidate_link(u)),
            None,
        )
        if not url:
            continue
        cand = candidate_from_link(url, origin, title=title, context=context)
        if cand:
            out.append(cand)
    return out


def dedup_candidates(candidates: Iterable[ScrapedCandidate]) -> list[ScrapedCandidate]:
    seen = set()
    out = []
    for c in candidates:
        if c.url in seen:
            continue
        seen.add(c.url)
        out.append(c)
    return out


def _slug_marked_live(page_text: str, url: str) -> bool:
    return "live" in page_text and urlparse(url).path.rsplit("/", 1)[-1].lower() in page_text


def _is_live_window(raw_ts: Any, now: datetime) -> bool:
    if raw_ts in (None, ""):
        return False
    try:
        ts = float(raw_ts)
        if ts > 1e11:  # ms
            ts = ts / 1000.0
        kickoff = datetime.fromtimestamp(ts, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        parsed = pd.to_datetime(raw_ts, utc=True, errors="coerce")
        if pd.isna(parsed):
            return False
        kickoff = parsed.to_pydatetime()
    return (kickoff - timedelta(minutes=15)) <= now <= (kickoff + timedelta(hours=5))


# ---------------- SCAN ----------------

@dataclass
class ScanResult:
    candidates: list[ScrapedCandidate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    source_counts: dict[str, int] = field(default_factory=dict)


def _new_session() -> requests.Session:
    return requests.Session()


def _fetch_with_session(adapter: SourceAdapter, session_factory: Callable[[], Any], timeout: float):
    session = session_factory()
    try:
        return adapter.fetch(session, timeout)
    finally:
        # Stragglers past the deadline still close theirs when they finish.
        close = getattr(session, "close", None)
        if close is not None:
            close()


def scan_sources(
    adapters: Optional[list[SourceAdapter]] = None,
    *,
    session_factory: Callable[[], Any] = _new_session,
    timeout: float = settings.SCRAPE_TIMEOUT_SECONDS,
    deadline: float = settings.SCAN_DEADLINE_SECONDS,
    workers: int = settings.SCAN_WORKERS,
) -> ScanResult:
    """Run every adapter concurrently; keep whatever finished before ``deadline``."""
    adapters = default_adapters() if adapters is None else adapters
    result = ScanResult()
    if not adapters:
        return result

    executor = ThreadPoolExecutor(max_workers=max(1, min(workers, len(adapters))), thread_name_prefix="scan")
    futures = {
        executor.submit(_fetch_with_session, adapter, session_factory, timeout): adapter for adapter in adapters
    }
    done, not_done = wait(futures, timeout=deadline)

    gathered: list[ScrapedCandidate] = []
    for adapter in adapters:
        fut = next(f for f, a in futures.items() if a is adapter)
        if fut in not_done:
            fut.cancel()
            result.errors.append(f"{adapter.name}: timed out after {deadline}s")
            result.source_counts[adapter.name] = 0
            print(f"[scan][WARN] {adapter.name} still running at deadline; skipped")
            continue
        try:
            found = fut.result()
        except Exception as exc:
            result.errors.append(f"{adapter.name}: {exc}")
            result.source_counts[adapter.name] = 0
            print(f"[scan][WARN] {adapter.name} ({adapter.url}) failed: {exc}")
            continue
        result.source_counts[adapter.name] = len(found)
        gathered.extend(found)

    executor.shutdown(wait=False, cancel_futures=True)
    result.candidates = dedup_candidates(gathered)
    return result


def run_scan(db=None, adapters: Optional[list[SourceAdapter]] = None, **scan_kwargs) -> dict[str, Any]:
    """Scan, write the snapshot table, and return the endpoint payload."""
    started = time.time()
    result = scan_sources(adapters, **scan_kwargs)

    own_session = db is None
    if own_session:
        init_db()
        db = SessionLocal()
    try:
        if result.candidates or not result.errors:
            event_store.replace_snapshot(db, (c.to_snapshot_record() for c in result.candidates))
        else:
            print("[scan][WARN] Every source failed; keeping the previous snapshot")
    finally:
        if own_session:
            db.close()

    counts = ", ".join(f"{k}={v}" for k, v in result.source_counts.items())
    print(f"[scan] Stored {len(result.candidates)} candidates in {time.time() - started:.1f}s ({counts})")
    return {
        "success": True,
        "count": len(result.candidates),
        "matches": [c.to_dict() for c in result.candidates],
        "errors": result.errors,
        "sources": result.source_counts,
        "candidates": result.candidates,
    }


def main():
    summary = run_scan()
    if summary["errors"]:
        for err in summary["errors"]:
            print(f"[scan][WARN] {err}")
    if not summary["count"]:
        print("[scan] No candidates found.")


if __name__ == "__main__":
    main()
