"""Shared fixtures: in-memory database and fake upstream feeds."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCRAPER_ENABLED", "false")
os.environ.setdefault("LOG_DIR", "")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from roverfeed.ingestion.http_client import CircuitBreaker, ResilientFetchClient, reset_breakers
from roverfeed.models import Base


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _fresh_breakers():
    reset_breakers()
    yield
    reset_breakers()


@pytest.fixture
def client_factory():
    """Build a ``client_factory`` for the scheduler backed by an httpx.MockTransport handler."""

    def build(handler, max_retries: int = 0, breaker: CircuitBreaker | None = None):
        def factory(name: str) -> ResilientFetchClient:
            transport = httpx.MockTransport(handler)
            return ResilientFetchClient(
                name,
                client=httpx.AsyncClient(transport=transport),
                breaker=breaker or CircuitBreaker(name),
                max_retries=max_retries,
                sleep=no_sleep,
            )

        return factory

    return build


@pytest.fixture
def perseverance_image():
    """One item of the Perseverance raw image feed."""

    def build(imageid: str, sol: int, instrument: str = "NAVCAM_LEFT", sample_type: str = "Full", **extra):
        item = {
            "imageid": imageid,
            "sol": sol,
            "sample_type": sample_type,
            "camera": {"instrument": instrument, "filter_name": "UNK"},
            "image_files": {
                "full_res": f"https://mars.nasa.gov/mars2020-raw-images/{imageid}.png",
                "small": f"https://mars.nasa.gov/mars2020-raw-images/{imageid}_320.jpg",
            },
            "extended": {"mastAz": "156.12", "mastEl": "-10.5", "sclk": "667129493.53", "dimension": "(1280,960)"},
            "date_taken_utc": "2021-03-01T12:30:00.000",
            "date_taken_mars": f"Sol-{sol:05d}M11:22:33.000",
            "site": 3,
            "drive": 84,
            "title": f"Mars Perseverance Sol {sol}",
            "credit": "NASA/JPL-Caltech",
        }
        item.update(extra)
        return item

    return build


@pytest.fixture
def perseverance_feed(perseverance_image):
    """MockTransport handler serving ``images_by_sol`` with ``latest_sol``.

    Sols listed in ``failing_sols`` answer 503. Every request is recorded in
    ``handler.requests``.
    """

    def build(latest_sol: int, images_by_sol: dict | None = None, failing_sols: set | None = None):
        images_by_sol = images_by_sol or {}
        failing_sols = failing_sols or set()
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            params = request.url.params
            if params.get("latest") == "true":
                return httpx.Response(200, json={"latest_sol": latest_sol, "images": []})
            sol = int(params["sol"])
            if sol in failing_sols:
                return httpx.Response(503, json={"error": "unavailable"})
            return httpx.Response(200, json={"latest_sol": latest_sol, "images": images_by_sol.get(sol, [])})

        handler.requests = requests
        return handler

    return build


@pytest.fixture
def curiosity_feed():
    """MockTransport handler for the Curiosity raw image items API.

    The latest-sol query (no sol condition) answers with a single item at
    ``latest_sol``, or no items when it is None. Sols in ``missing_sols``
    answer 404.
    """

    def item(item_id: str, sol: int) -> dict:
        return {
            "id": item_id,
            "sol": sol,
            "instrument": "NAV_LEFT_B",
            "https_url": f"https://mars.nasa.gov/msl-raw-images/{item_id}.JPG",
            "extended": {"sample_type": "full"},
        }

    def build(latest_sol: int | None, ids_by_sol: dict | None = None, missing_sols: set | None = None):
        ids_by_sol = ids_by_sol or {}
        missing_sols = missing_sols or set()
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            condition = request.url.params.get("condition_2")
            if condition is None:
                items = [item("latest", latest_sol)] if latest_sol is not None else []
                return httpx.Response(200, json={"items": items, "total": len(items)})
            sol = int(condition.split(":")[0])
            if sol in missing_sols:
                return httpx.Response(404, json={"error": "Not Found"})
            items = [item(item_id, sol) for item_id in ids_by_sol.get(sol, [])]
            return httpx.Response(200, json={"items": items, "total": len(items)})

        handler.requests = requests
        return handler

    return build
