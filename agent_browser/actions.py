"""
Page operations on a looked-up session.

Ref-taking actions resolve the ref against the session's current ref map
generation before touching the page. Engine exceptions are turned into
EngineFailure carrying the engine message; nothing is retried.
"""

from __future__ import annotations

import logging
from typing import Any

from agent_browser.config import Config
from agent_browser.errors import EngineFailure, classify_error
from agent_browser.models import Snapshot, SnapshotMode
from agent_browser.registry import Session
from agent_browser.snapshot import SnapshotEngine

log = logging.getLogger(__name__)


def _engine_failure(session: Session, operation: str, exc: Exception) -> EngineFailure:
    err = classify_error(exc, operation)
    log.error("%s failed on session %s: %s", operation, session.id, exc)
    return err


# ---------------------------------------------------------------------------
# Navigation + snapshot
# ---------------------------------------------------------------------------

async def open_page(session: Session, url: str, settle_ms: int = Config.OPEN_SETTLE_MS) -> dict[str, Any]:
    """Navigate and report the landing url + title."""
    log.info("Opening %s on session %s", url, session.id)
    handle = session.handle
    try:
        await handle.navigate(url)
        if settle_ms:
            await handle.wait(settle_ms)
        return {"url": handle.url, "title": await handle.title()}
    except Exception as e:
        raise _engine_failure(session, "open", e) from e


async def take_snapshot(session: Session, engine: SnapshotEngine, mode: SnapshotMode) -> Snapshot:
    """Capture a snapshot and install its ref map as the session's current one."""
    generation = session.next_generation()
    try:
        snapshot, ref_map = await engine.capture(session.handle, session.id, mode, generation)
    except Exception as e:
        raise _engine_failure(session, "snapshot", e) from e
    session.swap_ref_map(ref_map)
    return snapshot


# ---------------------------------------------------------------------------
# Ref actions
# ---------------------------------------------------------------------------

async def click_ref(session: Session, ref: str) -> None:
    selector = session.ref_map.resolve(ref)
    log.info("Click %s on session %s", ref, session.id)
    try:
        await session.handle.click(selector)
    except Exception as e:
        raise _engine_failure(session, "click", e) from e


async def fill_ref(session: Session, ref: str, text: str) -> None:
    selector = session.ref_map.resolve(ref)
    # Text may be a credential; log its length only.
    log.info("Fill %s (%d chars) on session %s", ref, len(text), session.id)
    try:
        await session.handle.fill(selector, text)
    except Exception as e:
        raise _engine_failure(session, "fill", e) from e


# ---------------------------------------------------------------------------
# Page-level actions (no ref)
# ---------------------------------------------------------------------------

async def press_key(session: Session, key: str) -> None:
    log.info("Press %s on session %s", key, session.id)
    try:
        await session.handle.press(key)
    except Exception as e:
        raise _engine_failure(session, "press", e) from e


async def wait(session: Session, ms: int = Config.DEFAULT_WAIT_MS) -> None:
    log.debug("Wait %dms on session %s", ms, session.id)
    try:
        await session.handle.wait(ms)
    except Exception as e:
        raise _engine_failure(session, "wait", e) from e
