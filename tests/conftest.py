"""Shared pytest fixtures: in-memory store, Flask client, canned HTTP sessions."""
import os
import random
from datetime import datetime, timezone

# Keep the module-level engine off disk; fixtures build their own.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.pop("ADMIN_API_KEY", None)

import pytest
import requests
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db_models import init_db
from settings import HeaderProfile

FIXED_UA = "Mozilla/5.0 (pytest) TestBrowser/1.0"
NOW = datetime(2026, 3, 14, 19, 0, tzinfo=timezone.utc)


class FakeResponse:
    """Just enough of ``requests.Response`` for the code under test."""

    def __init__(self, status_code=200, text="", headers=None, url="", json_data=None, chunks=None, encoding="utf-8"):
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}
        self.url = url
        self.encoding = encoding
        self._json = json_data
        self._chunks = chunks
        self.closed = False

    def json(self):
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json

    def iter_content(self, chunk_size=1):
        if self._chunks is not None:
            return iter(self._chunks)
        return iter([self.text.encode(self.encoding)])

    def close(self):
        self.closed = True


class FakeSession:
    """Routes ``get``/``post`` by exact URL.

    A route value may be a FakeResponse, an exception instance (raised), or a
    list of either (consumed one per call, last one repeats).
    """

    def __init__(self, routes=None, default=None):
        self.routes = dict(routes or {})
        self.default = default
        self.calls = []
        self.closed = False

    def _answer(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        route = self.routes.get(url, self.default)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            raise requests.ConnectionError(f"no route for {url}")
        if isinstance(route, Exception):
            raise route
        if not route.url:
            route.url = url
        return route

    def get(self, url, **kwargs):
        return self._answer("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._answer("POST", url, kwargs)

    def close(self):
        self.closed = True


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    """Fresh isolated in-memory database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def header_profile():
    return HeaderProfile(user_agents=[FIXED_UA], rng=random.Random(0))


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def app(session_factory, header_profile, fake_session):
    from app import create_app

    return create_app({
        "TESTING": True,
        "SESSION_FACTORY": session_factory,
        "HEADER_PROFILE": header_profile,
        "PROXY_HTTP_CLIENT": fake_session,
    })


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def now():
    return NOW
