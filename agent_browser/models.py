"""Data models for the agent browser service.

Enums, snapshot payloads and the request bodies accepted by the REST
surface. Snapshots serialize with ``exclude_none`` so fields a mode did not
request are omitted rather than sent empty.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, HttpUrl, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Recoverability(str, Enum):
    """3-level error recoverability."""
    RECOVERABLE = "recoverable"          # retry same call
    ESCALATABLE = "escalatable"          # re-snapshot / new session
    NON_RECOVERABLE = "non_recoverable"  # abort


class SnapshotMode(str, Enum):
    """Which extraction passes a snapshot runs."""
    FULL = "full"
    TEXT_ONLY = "text_only"
    ACTIONS_ONLY = "actions_only"

    @classmethod
    def parse(cls, value: str | SnapshotMode | None) -> SnapshotMode:
        if value is None:
            return cls.FULL
        if isinstance(value, SnapshotMode):
            return value
        # "compact" is the older name for full
        if value == "compact":
            return cls.FULL
        return cls(value)

    @property
    def wants_text(self) -> bool:
        return self in (SnapshotMode.FULL, SnapshotMode.TEXT_ONLY)

    @property
    def wants_actions(self) -> bool:
        return self in (SnapshotMode.FULL, SnapshotMode.ACTIONS_ONLY)


class ActionType(str, Enum):
    LINK = "link"
    BUTTON = "button"
    INPUT = "input"
    TEXTAREA = "textarea"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Snapshot payload
# ---------------------------------------------------------------------------

class Action(BaseModel):
    ref: str
    type: ActionType
    label: str = ""
    hint: str = ""


class SnapshotMeta(BaseModel):
    truncated: bool = False
    actions_truncated: bool = False


class Snapshot(BaseModel):
    session_id: str
    title: str = ""
    url: str = ""
    main_text: str | None = None
    actions: list[Action] | None = None
    meta: SnapshotMeta = Field(default_factory=SnapshotMeta)

    model_config = {"json_schema_extra": {"examples": [
        {
            "session_id": "s_1a2b3c4d",
            "title": "Example Domain",
            "url": "https://example.com/",
            "main_text": "Example Domain This domain is for use in examples.",
            "actions": [{"ref": "a1@1", "type": "link", "label": "More information...", "hint": ""}],
            "meta": {"truncated": False, "actions_truncated": False},
        }
    ]}}

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class SessionRequest(BaseModel):
    session_id: str = Field(min_length=1)


class OpenPageRequest(SessionRequest):
    url: HttpUrl


class SnapshotRequest(SessionRequest):
    mode: SnapshotMode = SnapshotMode.FULL

    @field_validator("mode", mode="before")
    @classmethod
    def _legacy_mode(cls, value: Any) -> Any:
        if value == "compact":
            return SnapshotMode.FULL
        return value


class RefRequest(SessionRequest):
    ref: str = Field(min_length=1)


class FillRequest(RefRequest):
    text: str


class PressRequest(SessionRequest):
    key: str = Field(min_length=1)


class WaitRequest(SessionRequest):
    ms: int = Field(default=1_000, ge=0, le=60_000)

    @field_validator("ms", mode="before")
    @classmethod
    def _whole_ms(cls, value: Any) -> Any:
        # Tool callers may send any JSON number
        if isinstance(value, float) and math.isfinite(value):
            return round(value)
        return value
