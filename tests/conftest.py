"""Shared fixtures: a fake browser engine standing in for Playwright.

FakeHandle implements the BrowserHandle surface the core uses. Its
``evaluate`` mimics the two in-page scripts: with no argument it returns the
body text, with the extraction argument it returns the first ``limit``
element records (tagged with generation markers) plus the total count.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from aiohttp.test_utils import TestClient, TestServer

from agent_browser.browser_factory import BrowserFactory
from agent_browser.registry import SessionRegistry
from agent_browser.server import create_app
from agent_browser.service import BrowserService
from agent_browser.snapshot import SnapshotEngine

API_KEY = "test-key"


class FakeHandle:
    def __init__(self, title: str = "Blank", url: str = "about:blank") -> None:
        self.page = object()
        self.url = url
        self._title = title
        self.text = ""
        self.records: list[dict] = []
        self.calls: list[tuple] = []
        self.close_calls = 0
        self.close_error: Exception | None = None
        self.errors: dict[str, Exception] = {}

    def _maybe_fail(self, op: str) -> None:
        if op in self.errors:
            raise self.errors[op]

    async def title(self) -> str:
        return self._title

    async def navigate(self, url: str) -> None:
        self.calls.append(("navigate", url))
        self._maybe_fail("navigate")
        self.url = url
        self._title = f"Title of {url}"

    async def click(self, selector: str) -> None:
        self.calls.append(("click", selector))
        self._maybe_fail("click")

    async def fill(self, selector: str, text: str) -> None:
        self.calls.append(("fill", selector, text))
        self._maybe_fail("fill")

    async def press(self, key: str) -> None:
        self.calls.append(("press", key))
        self._maybe_fail("press")

    async def wait(self, ms: int) -> None:
        self.calls.append(("wait", ms))
        self._maybe_fail("wait")

    async def evaluate(self, script: str, arg=None):
        self._maybe_fail("evaluate")
        if arg is None:
            return self.text
        generation, limit = arg["generation"], arg["limit"]
        records = [
            dict(record, marker=f"{generation}-{i}")
            for i, record in enumerate(self.records[:limit])
        ]
        return {"records": records, "total": len(self.records)}

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


class FakeFactory(BrowserFactory):
    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []
        self.launched: list[Path] = []
        self.error: Exception | None = None
        self.delay = 0.0

    async def launch(self, profile_dir: Path) -> FakeHandle:
        self.launched.append(profile_dir)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        profile_dir.mkdir(parents=True, exist_ok=True)
        handle = FakeHandle()
        self.handles.append(handle)
        return handle


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def element(tag: str, text: str = "", *, role: str = "", type: str = "", **attrs: str) -> dict:
    """Build a raw element record as returned by the in-page extraction."""
    base = {"href": "", "value": "", "placeholder": "", "name": "", "aria-label": ""}
    base.update({k.replace("_", "-"): v for k, v in attrs.items()})
    return {"tag": tag, "role": role, "type": type, "text": text, "attrs": base}


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(factory, clock, tmp_path) -> SessionRegistry:
    return SessionRegistry(
        factory,
        max_sessions=2,
        ttl_sec=60,
        sweep_interval_sec=0.01,
        data_dir=tmp_path,
        clock=clock,
    )


@pytest.fixture
def engine() -> SnapshotEngine:
    return SnapshotEngine(text_max_chars=1200, actions_max=60)


@pytest.fixture
def service(registry, engine) -> BrowserService:
    return BrowserService(registry, engine)


@pytest.fixture
async def client(service):
    app = create_app(service, api_key=API_KEY)
    async with TestClient(TestServer(app)) as test_client:
        yield test_client


@pytest.fixture
def auth() -> dict:
    return {"Authorization": f"Bearer {API_KEY}"}
