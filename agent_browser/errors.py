"""Error types and engine-error classification for the agent browser service.

Every failure a caller can observe is a ``BrowserServiceError`` subclass with
a stable code, a recoverability level and an HTTP status, so both protocol
surfaces can map errors without inspecting message text.
"""

from __future__ import annotations

import re
from http import HTTPStatus
from typing import Any

from agent_browser.models import Recoverability


# ---------------------------------------------------------------------------
# Error catalog: stable codes with default recoverability + guidance
# ---------------------------------------------------------------------------

_CATALOG: dict[str, dict[str, Any]] = {
    "CAPACITY_EXCEEDED": {
        "recoverability": Recoverability.RECOVERABLE,
        "agent_action": "All session slots are in use. Close a session or retry later.",
    },
    "SESSION_NOT_FOUND": {
        "recoverability": Recoverability.ESCALATABLE,
        "agent_action": "Session was closed or expired. Create a new session.",
    },
    "REF_NOT_FOUND": {
        "recoverability": Recoverability.RECOVERABLE,
        "agent_action": "Take a new snapshot. Ref may be stale.",
    },
    "INVALID_REQUEST": {
        "recoverability": Recoverability.NON_RECOVERABLE,
        "agent_action": "Fix the request parameters.",
    },
    "LAUNCH_FAILED": {
        "recoverability": Recoverability.ESCALATABLE,
        "agent_action": "Browser could not be started. Retry session creation.",
    },
    # Engine failures
    "TIMEOUT_ACTION": {
        "recoverability": Recoverability.RECOVERABLE,
        "agent_action": "Take a new snapshot to verify element exists, then retry.",
    },
    "TIMEOUT_NAVIGATION": {
        "recoverability": Recoverability.RECOVERABLE,
        "agent_action": "Check URL, wait for load, retry navigation.",
    },
    "ELEMENT_NOT_VISIBLE": {
        "recoverability": Recoverability.RECOVERABLE,
        "agent_action": "Scroll element into view or dismiss overlays, then retry.",
    },
    "ELEMENT_DETACHED": {
        "recoverability": Recoverability.RECOVERABLE,
        "agent_action": "Take a new snapshot. Page content changed.",
    },
    "CONTEXT_DESTROYED": {
        "recoverability": Recoverability.RECOVERABLE,
        "agent_action": "Page navigated during action. Snapshot the new page.",
    },
    "TARGET_CLOSED": {
        "recoverability": Recoverability.ESCALATABLE,
        "agent_action": "Browser context closed. Create a new session.",
    },
    "NETWORK_ERROR": {
        "recoverability": Recoverability.ESCALATABLE,
        "agent_action": "Check URL and network reachability.",
    },
    "UNKNOWN": {
        "recoverability": Recoverability.NON_RECOVERABLE,
        "agent_action": "Take a snapshot to assess state.",
    },
}


# ---------------------------------------------------------------------------
# Typed errors
# ---------------------------------------------------------------------------

class BrowserServiceError(Exception):
    """Base for all caller-visible failures."""

    code = "UNKNOWN"
    http_status = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        cause: BaseException | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.cause = cause
        self.details = details or {}
        defaults = _CATALOG.get(self.code, _CATALOG["UNKNOWN"])
        self.recoverability: Recoverability = defaults["recoverability"]
        self.agent_action: str = defaults.get("agent_action", "")

    def to_agent_message(self) -> str:
        parts = [self.message]
        if self.agent_action:
            parts.append(f"Suggested: {self.agent_action}")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "recoverability": self.recoverability.value,
            "agent_action": self.agent_action,
        }
        if self.details:
            out["details"] = self.details
        return out


class CapacityExceeded(BrowserServiceError):
    code = "CAPACITY_EXCEEDED"
    http_status = HTTPStatus.TOO_MANY_REQUESTS

    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Maximum number of sessions reached ({limit}). Try again later.",
            details={"max_sessions": limit},
        )
        self.limit = limit


class SessionNotFound(BrowserServiceError):
    code = "SESSION_NOT_FOUND"
    http_status = HTTPStatus.NOT_FOUND

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found or expired")
        self.session_id = session_id


class RefNotFound(BrowserServiceError):
    code = "REF_NOT_FOUND"
    http_status = HTTPStatus.NOT_FOUND

    def __init__(self, ref: str, reason: str = "not found") -> None:
        super().__init__(f"Ref '{ref}' {reason} (expired or invalid)")
        self.ref = ref


class InvalidRequest(BrowserServiceError):
    code = "INVALID_REQUEST"
    http_status = HTTPStatus.BAD_REQUEST


class LaunchFailure(BrowserServiceError):
    code = "LAUNCH_FAILED"


class EngineFailure(BrowserServiceError):
    """The browser engine call failed; the engine message is kept in details."""


# ---------------------------------------------------------------------------
# Engine exception classification
# ---------------------------------------------------------------------------

def _extract_timeout(msg: str) -> str:
    m = re.search(r"(\d+)ms", msg)
    return m.group(1) if m else "30000"


def _extract_net_error(msg: str) -> str:
    m = re.search(r"net::(ERR_\w+)", msg)
    return m.group(1) if m else "unknown network error"


_PATTERN_MAP: list[tuple[str, str, Any]] = [
    (
        "page.goto: Timeout",
        "TIMEOUT_NAVIGATION",
        lambda e: f"Navigation timed out after {_extract_timeout(str(e))}ms.",
    ),
    (
        "Timeout",
        "TIMEOUT_ACTION",
        lambda e: f"Action timed out after {_extract_timeout(str(e))}ms.",
    ),
    (
        "not visible",
        "ELEMENT_NOT_VISIBLE",
        lambda e: "Element is present but not visible.",
    ),
    (
        "detached",
        "ELEMENT_DETACHED",
        lambda e: "Element was removed from the DOM.",
    ),
    (
        "has been closed",
        "TARGET_CLOSED",
        lambda e: "Browser page or context was closed.",
    ),
    (
        "Target closed",
        "TARGET_CLOSED",
        lambda e: "Browser page or context was closed.",
    ),
    (
        "net::ERR_",
        "NETWORK_ERROR",
        lambda e: f"Network error: {_extract_net_error(str(e))}.",
    ),
    (
        "Execution context was destroyed",
        "CONTEXT_DESTROYED",
        lambda e: "Page navigated during the action.",
    ),
]


def classify_error(error: BaseException, operation: str = "") -> EngineFailure:
    """Classify a Playwright/browser exception into an EngineFailure.

    The raw engine message is kept in ``details["engine_message"]``.
    """
    msg = str(error)
    prefix = f"{operation} failed: " if operation else ""
    details = {"engine_message": msg}
    for pattern, code, msg_fn in _PATTERN_MAP:
        if pattern.lower() in msg.lower():
            return EngineFailure(f"{prefix}{msg_fn(error)}", code=code, cause=error, details=details)
    return EngineFailure(f"{prefix}{msg}", code="UNKNOWN", cause=error, details=details)
