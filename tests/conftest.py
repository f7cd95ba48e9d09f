"""
Shared fixtures: a controllable clock, a scripted requests-like session,
and pre-wired cache / client / aggregator instances.
"""
import threading
import time
from collections import deque
from typing import Any, Callable, Dict, List, Optional

import pytest
import requests

from jobfeed.aggregator import Aggregator
from jobfeed.cache import CacheManager, InMemoryCacheStore
from jobfeed.upstream import UpstreamClient

BASE_URL = "https://upstream.test/v1"

NOT_JSON = object()


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_760_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, reason: str = ""):
        self.status_code = status_code
        self._body = body
        self.reason = reason or {200: "OK", 404: "Not Found", 429: "Too Many Requests",
                                 500: "Internal Server Error", 503: "Service Unavailable"}.get(status_code, "")

    def json(self):
        if self._body is NOT_JSON:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._body


def ok(data: Any) -> FakeResponse:
    return FakeResponse(200, {"code": 200, "data": data})


def status(code: int) -> FakeResponse:
    return FakeResponse(code, {"code": code, "message": "error"})


class FakeSession:
    """
    Stand-in for requests.Session.

    Routes are keyed by path relative to BASE_URL. A route is either a list
    of responses/exceptions served in order (the last one repeats) or a
    callable taking (path, params).
    """

    def __init__(self, call_delay: float = 0.0):
        self.routes: Dict[str, Any] = {}
        self.calls: List[Dict[str, Any]] = []
        self.call_delay = call_delay
        self._queues: Dict[str, deque] = {}
        self._lock = threading.Lock()
        self._active = 0
        self.max_concurrent = 0

    def add(self, path: str, *responses) -> None:
        self._queues[path] = deque(responses)

    def route(self, path: str, handler: Callable[[str, Optional[dict]], Any]) -> None:
        self.routes[path] = handler

    def calls_to(self, path: str) -> int:
        return sum(1 for call in self.calls if call["path"] == path)

    def get(self, url, params=None, headers=None, timeout=None):
        path = url[len(BASE_URL) + 1:] if url.startswith(BASE_URL) else url
        with self._lock:
            self.calls.append({"path": path, "params": params, "timeout": timeout})
            self._active += 1
            self.max_concurrent = max(self.max_concurrent, self._active)

        try:
            if self.call_delay:
                time.sleep(self.call_delay)

            with self._lock:
                queue = self._queues.get(path)
                if queue is not None:
                    outcome = queue.popleft() if len(queue) > 1 else queue[0]
                else:
                    outcome = None

            if outcome is None:
                handler = self.routes.get(path)
                if handler is None:
                    return status(404)
                outcome = handler(path, params)

            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            with self._lock:
                self._active -= 1


class SleepRecorder:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def cache(store, clock):
    manager = CacheManager(store, environment="test", clock=clock)
    yield manager
    manager.close()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def client(session, sleeps):
    return UpstreamClient(BASE_URL, session=session, sleep=sleeps)


@pytest.fixture
def aggregator(cache, client, sleeps):
    return Aggregator(cache, client, sleep=sleeps)


def listing(listing_id, created_at, title="Engineer", employer="Acme", **extra) -> Dict[str, Any]:
    """Upstream-shaped listing summary."""
    item = {
        "id": listing_id,
        "job_title": title,
        "company_name": employer,
        "city_name": "Bandung",
        "province_name": "Jawa Barat",
        "industry_name": "Manufacturing",
        "created_at": created_at,
    }
    item.update(extra)
    return item


def detail(salary_min=5_000_000, salary_max=8_000_000, **extra) -> Dict[str, Any]:
    """Upstream-shaped listing detail."""
    item = {
        "salary": {"min": salary_min, "max": salary_max, "benefits": ["BPJS", "Overtime pay"]},
        "requirements": {
            "education_min": "S1",
            "experience": "2 years",
            "requirements": ["Willing to relocate"],
            "skills": ["Python"],
        },
        "description": "Build and run things.",
        "application_deadline": "2030-01-31T00:00:00Z",
    }
    item.update(extra)
    return item


def connection_error() -> requests.ConnectionError:
    return requests.ConnectionError("connection refused")
