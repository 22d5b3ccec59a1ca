"""
Session registry: owns every live browser session.

Bookkeeping (capacity check, slot reservation, insertion, removal) runs in
synchronous sections on the event loop, so no other coroutine can observe a
half-updated map. Browser launch and close happen outside those sections.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Callable

from agent_browser.browser_factory import BrowserFactory, BrowserHandle
from agent_browser.config import Config
from agent_browser.errors import CapacityExceeded, LaunchFailure, SessionNotFound
from agent_browser.refs import EMPTY_REF_MAP, RefMap

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class Session:
    id: str
    profile_dir: Path
    handle: BrowserHandle
    created_at: float
    last_active_at: float
    ref_map: RefMap = EMPTY_REF_MAP
    active_ops: int = 0
    closed: bool = False
    _generation_seq: int = field(default=0, repr=False)

    def touch(self, now: float) -> None:
        if now > self.last_active_at:
            self.last_active_at = now

    def next_generation(self) -> int:
        """Reserve the generation number for the next snapshot."""
        self._generation_seq += 1
        return self._generation_seq

    def swap_ref_map(self, ref_map: RefMap) -> None:
        # A slower, older capture must not replace a newer generation.
        if ref_map.generation >= self.ref_map.generation:
            self.ref_map = ref_map


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class SessionRegistry:
    """Creates, looks up, closes and reaps sessions under a capacity ceiling."""

    def __init__(
        self,
        factory: BrowserFactory,
        *,
        max_sessions: int | None = None,
        ttl_sec: float | None = None,
        sweep_interval_sec: float | None = None,
        data_dir: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self.max_sessions = max_sessions or Config.MAX_SESSIONS
        self.ttl_sec = ttl_sec or Config.SESSION_TTL_SEC
        self.sweep_interval_sec = sweep_interval_sec or Config.SESSION_SWEEP_INTERVAL_SEC
        self.data_dir = Path(data_dir) if data_dir is not None else Config.DATA_DIR
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._reserved = 0
        self._reaper_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    @property
    def sessions_root(self) -> Path:
        return self.data_dir / "sessions"

    def session_dir(self, session_id: str) -> Path:
        return self.sessions_root / session_id

    # -----------------------------------------------------------------------
    # Create
    # -----------------------------------------------------------------------

    def _new_session_id(self) -> str:
        while True:
            session_id = f"s_{uuid.uuid4().hex[:8]}"
            # Profile directories are never shared, including leftovers on disk.
            if session_id not in self._sessions and not self.session_dir(session_id).exists():
                return session_id

    def _reserve_slot(self) -> str:
        """Atomic capacity check + reservation. No await inside."""
        if len(self._sessions) + self._reserved >= self.max_sessions:
            log.warning("Session limit reached (%d), rejecting create", self.max_sessions)
            raise CapacityExceeded(self.max_sessions)
        self._reserved += 1
        return self._new_session_id()

    def _release_slot(self) -> None:
        self._reserved -= 1

    async def create_session(self) -> str:
        """Launch a browser context for a new session and return its id.

        Raises CapacityExceeded when at the ceiling, LaunchFailure when the
        browser cannot be started. A failed create does not consume a slot.
        """
        session_id = self._reserve_slot()
        profile_dir = self.session_dir(session_id) / "profile"
        log.info("Creating session %s (profile=%s)", session_id, profile_dir)

        reserved = True
        try:
            try:
                handle = await self._factory.launch(profile_dir)
            except LaunchFailure:
                raise
            except Exception as exc:
                raise LaunchFailure(f"Browser launch failed: {exc}", cause=exc) from exc

            try:
                now = self._clock()
                session = Session(
                    id=session_id,
                    profile_dir=profile_dir,
                    handle=handle,
                    created_at=now,
                    last_active_at=now,
                )
                self._write_meta(session)
                # Slot reservation becomes the entry; capacity unchanged.
                self._sessions[session_id] = session
                self._release_slot()
                reserved = False
            except BaseException:
                await self._release_handle(session_id, handle)
                raise
        except LaunchFailure as exc:
            log.error("Session %s launch failed: %s", session_id, exc)
            raise
        finally:
            if reserved:
                self._release_slot()

        log.info("Session %s created (%d/%d)", session_id, len(self._sessions), self.max_sessions)
        return session_id

    def _write_meta(self, session: Session) -> None:
        meta_path = self.session_dir(session.id) / "meta.json"
        meta = {
            "id": session.id,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "profile_dir": str(session.profile_dir),
        }
        try:
            meta_path.parent.mkdir(parents=True, exist_ok=True)
            meta_path.write_text(json.dumps(meta, indent=2))
        except OSError as exc:
            log.error("Writing meta for session %s failed: %s", session.id, exc)

    # -----------------------------------------------------------------------
    # Lookup
    # -----------------------------------------------------------------------

    def get_session(self, session_id: str) -> Session:
        """Look up a session and refresh its idle timer.

        Never awaits the engine. Raises SessionNotFound.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        session.touch(self._clock())
        return session

    @asynccontextmanager
    async def use(self, session_id: str) -> AsyncIterator[Session]:
        """Look up a session and mark it busy for the duration of the block.

        The reaper never closes a session with an operation in flight, and
        the idle timer restarts when the operation finishes.
        """
        session = self.get_session(session_id)
        session.active_ops += 1
        try:
            yield session
        finally:
            session.active_ops -= 1
            session.touch(self._clock())

    def list_sessions(self) -> list[dict]:
        now = self._clock()
        result = []
        for sid, session in list(self._sessions.items()):
            result.append({
                "session_id": sid,
                "url": session.handle.url if session.handle.page is not None else "",
                "idle_seconds": round(now - session.last_active_at, 1),
                "age_seconds": round(now - session.created_at, 1),
                "generation": session.ref_map.generation,
            })
        return result

    # -----------------------------------------------------------------------
    # Close
    # -----------------------------------------------------------------------

    async def _release_handle(self, session_id: str, handle: BrowserHandle) -> None:
        try:
            await handle.close()
        except Exception as exc:
            log.error("Closing browser context for session %s failed: %s", session_id, exc)

    async def close_session(self, session_id: str) -> bool:
        """Remove a session and release its browser context.

        Returns False if the id is unknown. The entry is removed before the
        context is closed, so a concurrent close or reap of the same id sees
        it as absent; context-close errors are logged, not raised.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            log.debug("close_session: %s not found", session_id)
            return False
        session.closed = True
        log.info("Closing session %s", session_id)
        await self._release_handle(session_id, session.handle)
        return True

    async def close_all(self) -> None:
        """Stop the reaper, then close every remaining session (shutdown only)."""
        await self.stop_reaper()
        ids = list(self._sessions)
        if ids:
            log.info("Closing %d session(s) on shutdown", len(ids))
        for sid in ids:
            await self.close_session(sid)

    # -----------------------------------------------------------------------
    # Reaper
    # -----------------------------------------------------------------------

    async def sweep_idle_sessions(self) -> list[str]:
        """Close sessions idle longer than the TTL. Returns reaped ids."""
        now = self._clock()
        reaped: list[str] = []
        for sid in list(self._sessions):
            session = self._sessions.get(sid)
            if session is None or session.active_ops:
                continue
            if now - session.last_active_at > self.ttl_sec:
                log.info("Session %s idle for %.0fs, reaping", sid, now - session.last_active_at)
                if await self.close_session(sid):
                    reaped.append(sid)
        return reaped

    async def _reaper_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_sec)
            try:
                reaped = await self.sweep_idle_sessions()
                if reaped:
                    log.info("Reaped %d idle session(s): %s", len(reaped), reaped)
            except Exception:
                log.exception("Idle session sweep failed")

    def start_reaper(self) -> None:
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.create_task(self._reaper_loop())

    async def stop_reaper(self) -> None:
        task, self._reaper_task = self._reaper_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def reaper_running(self) -> bool:
        return self._reaper_task is not None and not self._reaper_task.done()
