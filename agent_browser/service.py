"""Operation set shared by the REST and JSON-RPC front-ends."""

from __future__ import annotations

from typing import Any

from agent_browser import actions
from agent_browser.browser_factory import BrowserFactory, PlaywrightFactory
from agent_browser.config import Config
from agent_browser.models import SnapshotMode
from agent_browser.registry import SessionRegistry
from agent_browser.snapshot import SnapshotEngine


class BrowserService:
    """Explicitly constructed owner of the registry and snapshot engine.

    Created at process start, handed to the front-ends, torn down with
    ``shutdown()``.
    """

    def __init__(self, registry: SessionRegistry, engine: SnapshotEngine | None = None) -> None:
        self.registry = registry
        self.engine = engine or SnapshotEngine()

    @classmethod
    def from_config(cls, factory: BrowserFactory | None = None) -> BrowserService:
        registry = SessionRegistry(
            factory or PlaywrightFactory(),
            max_sessions=Config.MAX_SESSIONS,
            ttl_sec=Config.SESSION_TTL_SEC,
            sweep_interval_sec=Config.SESSION_SWEEP_INTERVAL_SEC,
            data_dir=Config.DATA_DIR,
        )
        engine = SnapshotEngine(
            text_max_chars=Config.SNAPSHOT_TEXT_MAX_CHARS,
            actions_max=Config.SNAPSHOT_ACTIONS_MAX,
        )
        return cls(registry, engine)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def start(self) -> None:
        self.registry.start_reaper()

    async def shutdown(self) -> None:
        await self.registry.close_all()

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    async def create_session(self) -> str:
        return await self.registry.create_session()

    async def close_session(self, session_id: str) -> bool:
        return await self.registry.close_session(session_id)

    def list_sessions(self) -> list[dict]:
        return self.registry.list_sessions()

    # -----------------------------------------------------------------------
    # Page operations
    # -----------------------------------------------------------------------

    async def open_page(self, session_id: str, url: str) -> dict[str, Any]:
        async with self.registry.use(session_id) as session:
            return await actions.open_page(session, url)

    async def snapshot(self, session_id: str, mode: SnapshotMode | str | None = None) -> dict[str, Any]:
        mode = SnapshotMode.parse(mode)
        async with self.registry.use(session_id) as session:
            snap = await actions.take_snapshot(session, self.engine, mode)
        return snap.to_wire()

    async def click_ref(self, session_id: str, ref: str) -> None:
        async with self.registry.use(session_id) as session:
            await actions.click_ref(session, ref)

    async def fill_ref(self, session_id: str, ref: str, text: str) -> None:
        async with self.registry.use(session_id) as session:
            await actions.fill_ref(session, ref, text)

    async def press_key(self, session_id: str, key: str) -> None:
        async with self.registry.use(session_id) as session:
            await actions.press_key(session, key)

    async def wait(self, session_id: str, ms: int = Config.DEFAULT_WAIT_MS) -> None:
        async with self.registry.use(session_id) as session:
            await actions.wait(session, ms)
