"""Ref tokens and per-session ref map generations.

A snapshot binds each retained element to a ref such as ``b3@2``: element
prefix ``b``, per-capture counter ``3``, generation ``2``. The generation
suffix makes a token from an earlier snapshot detectable even when the
current snapshot reuses the same ``b3``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from agent_browser.errors import RefNotFound

MARKER_ATTR = "data-agent-ref"

_REF_PATTERN = re.compile(r"^@?([a-z])(\d+)@(\d+)$")


def format_ref(prefix: str, counter: int, generation: int) -> str:
    return f"{prefix}{counter}@{generation}"


def marker_selector(marker: str) -> str:
    """CSS selector for an element tagged with ``marker`` at capture time."""
    escaped = marker.replace("\\", "\\\\").replace('"', '\\"')
    return f'[{MARKER_ATTR}="{escaped}"]'


def parse_ref(token: str) -> tuple[str, int] | None:
    """Split a ref token into (local ref, generation). Accepts a leading '@'."""
    m = _REF_PATTERN.match(token.strip())
    if not m:
        return None
    return f"{m.group(1)}{m.group(2)}", int(m.group(3))


@dataclass(frozen=True)
class RefMap:
    """One generation of ref -> selector bindings.

    Never mutated after construction; a new snapshot produces a new RefMap
    and the session swaps its reference in a single assignment.
    """

    generation: int = 0
    _entries: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_entries", MappingProxyType(dict(self._entries)))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, token: object) -> bool:
        return isinstance(token, str) and token in self._entries

    def refs(self) -> list[str]:
        return list(self._entries)

    def as_dict(self) -> dict[str, str]:
        return dict(self._entries)

    def resolve(self, token: str) -> str:
        """Return the selector bound to ``token`` in this generation.

        Raises RefNotFound for malformed tokens, tokens issued by another
        generation, and tokens this generation never produced.
        """
        parsed = parse_ref(token)
        if parsed is None:
            raise RefNotFound(token, "is not a valid ref")
        _, generation = parsed
        if generation != self.generation:
            raise RefNotFound(token, "belongs to another snapshot")
        canonical = token.strip().lstrip("@")
        selector = self._entries.get(canonical)
        if selector is None:
            raise RefNotFound(token)
        return selector


EMPTY_REF_MAP = RefMap()
