"""Tests for the source adapters and scan orchestration."""
import time

import pytest
import requests

import event_store
import scrape_sources
from conftest import FakeResponse, FakeSession
from normalizer import build_provider_url
from scrape_sources import (
    HtmlListingAdapter,
    JsonApiAdapter,
    RenderedPageAdapter,
    SourceAdapter,
    SourceError,
    build_adapter,
    scan_sources,
)

LISTING_HTML = """
<html><body>
  <nav><a href="/">Home</a><a href="/live">Live</a><a href="/static/logo.png">logo</a></nav>
  <ul>
    <li><a href="/watch/los-angeles-lakers-vs-boston-celtics-2358110">Watch</a></li>
    <li><a href="/watch/arsenal-vs-chelsea-2358111">Arsenal vs Chelsea</a></li>
  </ul>
  <div class="card">
    <h3>Real Madrid vs Barcelona</h3>
    <p>Kick-off 20:00</p>
    <p><a href="https://other.example/stream/el-clasico-99">Open</a></p>
  </div>
</body></html>
"""


class StaticAdapter(SourceAdapter):
    def __init__(self, name, candidates=(), error=None, delay=0.0):
        super().__init__(name, f"https://{name}.example/")
        self.candidates = list(candidates)
        self.error = error
        self.delay = delay

    def fetch(self, session, timeout):
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.candidates


class TestJsonApiAdapter:
    """Structured match APIs."""

    def test_provider_aliases_and_teams(self):
        payload = [{
            "id": "m1",
            "title": "Knicks vs Heat",
            "category": "basketball",
            "teams": {"home": {"name": "New York Knicks"}, "away": {"name": "Miami Heat"}},
            "sources": [{"source": "stream2", "id": "ppv-knicks-vs-heat"}],
            "vola": "ppv-knicks-vs-heat",
        }]
        cands = JsonApiAdapter("sportsbite", "https://sportsbite.example/api").parse(payload)

        assert len(cands) == 1
        cand = cands[0]
        assert cand.provider == "admin"
        assert cand.url == build_provider_url("admin", "ppv-knicks-vs-heat")
        assert set(cand.provider_urls) == {"admin", "delta"}
        assert (cand.team_home, cand.team_away) == ("New York Knicks", "Miami Heat")
        assert cand.category == "Basketball"
        assert cand.match_id == "sportsbite:m1"

    def test_wrapped_payload_and_records_without_providers(self):
        payload = {"events": [{"id": "x", "title": "No Links vs Here"}, "junk"]}
        assert JsonApiAdapter("s", "https://s.example/").parse(payload) == []

    def test_http_error_raises(self):
        session = FakeSession({"https://s.example/api": FakeResponse(503)})
        with pytest.raises(SourceError):
            JsonApiAdapter("s", "https://s.example/api").fetch(session, 5)


class TestHtmlListingAdapter:
    """Anchors on the watch path, plus matchup lines near a link."""

    def test_anchor_and_line_heuristics(self):
        adapter = HtmlListingAdapter("streamed", "https://streamed.pk/", r"^/watch/[\w-]+")
        cands = adapter.parse(LISTING_HTML)
        titles = [c.title for c in cands]

        assert "Los Angeles Lakers vs Boston Celtics" in titles
        assert "Arsenal vs Chelsea" in titles
        assert "Real Madrid vs Barcelona" in titles
        clasico = next(c for c in cands if c.title == "Real Madrid vs Barcelona")
        assert clasico.url == "https://other.example/stream/el-clasico-99"
        assert all("logo" not in c.url for c in cands)
        assert len({c.url for c in cands}) == len(cands)

    def test_empty_page_is_a_parse_miss(self):
        adapter = HtmlListingAdapter("streamed", "https://streamed.pk/", r"^/watch/")
        assert adapter.parse("<html><body><p>No games today</p></body></html>") == []


class TestRenderedPageAdapter:
    """Markdown links, matchup lines and the raw link list."""

    def test_markdown_and_links(self):
        markdown = (
            "# Live now\n"
            "[Lakers vs Celtics](https://app.moviebite.cc/watch/lakers-celtics)\n"
            "Inter v Milan\n"
            "(https://app.moviebite.cc/live/inter-milan-77)\n"
        )
        links = ["https://app.moviebite.cc/stream/ppv-real-madrid-vs-barcelona-123", "https://app.moviebite.cc/about"]
        adapter = RenderedPageAdapter("moviebite", "https://app.moviebite.cc/live", api_key="k")
        titles = {c.title for c in adapter.parse(markdown, links)}

        assert {"Lakers vs Celtics", "Inter v Milan", "Real Madrid vs Barcelona"} <= titles

    def test_missing_key_is_a_source_error(self):
        adapter = RenderedPageAdapter("moviebite", "https://app.moviebite.cc/live", api_key="")
        adapter.api_key = ""
        with pytest.raises(SourceError):
            adapter.fetch(FakeSession(), 5)


class TestScanSources:
    """Fan-out keeps partial results and lists failures."""

    def test_partial_failure(self):
        good = [
            StaticAdapter(f"good{i}", [scrape_sources.candidate_from_link(
                f"https://good{i}.example/watch/team-a{i}-vs-team-b{i}", f"good{i}")])
            for i in range(4)
        ]
        bad = [
            StaticAdapter("bad1", error=requests.ConnectionError("refused")),
            StaticAdapter("bad2", error=SourceError("HTTP 500")),
        ]
        result = scan_sources(good + bad, session_factory=FakeSession, deadline=5)

        assert len(result.candidates) == 4
        assert len(result.errors) == 2
        assert {e.split(":")[0] for e in result.errors} == {"bad1", "bad2"}

    def test_deadline_keeps_fast_results(self):
        fast = StaticAdapter("fast", [scrape_sources.candidate_from_link(
            "https://fast.example/watch/a-team-vs-b-team", "fast")])
        slow = StaticAdapter("slow", delay=2.0)
        result = scan_sources([fast, slow], session_factory=FakeSession, deadline=0.5)

        assert [c.origin for c in result.candidates] == ["fast"]
        assert result.errors == ["slow: timed out after 0.5s"]

    def test_sessions_are_closed(self):
        opened = []

        def factory():
            opened.append(FakeSession())
            return opened[-1]

        adapters = [StaticAdapter("ok", []), StaticAdapter("bad", error=SourceError("HTTP 500"))]
        scan_sources(adapters, session_factory=factory, deadline=5)

        assert len(opened) == 2
        assert all(s.closed for s in opened)

    def test_run_scan_writes_snapshot(self, db_session):
        fast = StaticAdapter("fast", [scrape_sources.candidate_from_link(
            "https://fast.example/watch/a-team-vs-b-team", "fast")])
        summary = scrape_sources.run_scan(db_session, adapters=[fast], session_factory=FakeSession)

        assert summary["success"] is True
        assert summary["count"] == 1
        rows = event_store.load_snapshot(db_session)
        assert [r.watch_url for r in rows] == ["https://fast.example/watch/a-team-vs-b-team"]


def test_build_adapter_from_description():
    adapter = build_adapter({"name": "surge", "url": "https://surge.example/", "kind": "html", "pattern": r"^/watch-"})
    assert isinstance(adapter, HtmlListingAdapter)
    with pytest.raises(ValueError):
        build_adapter({"url": "https://x.example/", "kind": "ftp"})
