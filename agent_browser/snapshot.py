"""
Compact page snapshot + ref system.

One in-page pass collects visible interactive elements and tags each
retained element with a ``data-agent-ref`` marker; everything after that
(classification, labels, truncation, ref assignment) is pure Python over the
returned records.

Record shape returned by EXTRACT_ACTIONS_JS:
  {"tag": "input", "role": "", "type": "text", "text": "",
   "attrs": {"href": "", "value": "", "placeholder": "", "name": "", "aria-label": ""},
   "marker": "3-0"}
"""

from __future__ import annotations

import logging
import re
from typing import Any

from agent_browser.browser_factory import BrowserHandle
from agent_browser.config import Config
from agent_browser.models import Action, ActionType, Snapshot, SnapshotMeta, SnapshotMode
from agent_browser.refs import MARKER_ATTR, RefMap, format_ref, marker_selector

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Classification tables
# ---------------------------------------------------------------------------

INTERACTIVE_ROLES = frozenset({
    "button", "link", "textbox", "searchbox", "checkbox", "radio", "combobox",
    "menuitem", "option", "switch", "tab", "treeitem",
})

BUTTON_INPUT_TYPES = frozenset({"submit", "button", "reset"})

_ROLE_TYPES: dict[str, ActionType] = {
    "button": ActionType.BUTTON,
    "link": ActionType.LINK,
    "textbox": ActionType.INPUT,
    "searchbox": ActionType.INPUT,
}

_WS = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# In-page extraction scripts
# ---------------------------------------------------------------------------

EXTRACT_TEXT_JS = """
() => (document.body && document.body.innerText) || ''
"""

EXTRACT_ACTIONS_JS = """
({ attr, generation, limit, roles }) => {
    const roleSelector = roles.map(r => '[role="' + r + '"]').join(', ');
    const query = 'a, button, input, textarea' + (roleSelector ? ', ' + roleSelector : '');

    const isVisible = (el) => {
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden') return false;
        if (parseFloat(style.opacity) === 0) return false;
        if (el.getClientRects().length === 0) return false;
        return el.getBoundingClientRect().width > 0;
    };

    const records = [];
    const kept = [];
    let total = 0;
    for (const el of document.querySelectorAll(query)) {
        if (!isVisible(el)) continue;
        total += 1;
        if (records.length >= limit) continue;

        const tag = el.tagName.toLowerCase();
        const isField = tag === 'input' || tag === 'textarea';
        const marker = generation + '-' + records.length;
        kept.push(el);

        records.push({
            tag: tag,
            role: (el.getAttribute('role') || '').toLowerCase(),
            type: tag === 'input' ? (el.type || 'text').toLowerCase() : '',
            text: isField ? '' : (el.innerText || el.textContent || '').trim(),
            attrs: {
                href: tag === 'a' ? (el.href || '') : '',
                value: typeof el.value === 'string' ? el.value : '',
                placeholder: el.getAttribute('placeholder') || '',
                name: el.getAttribute('name') || '',
                'aria-label': el.getAttribute('aria-label') || '',
            },
            marker: marker,
        });
    }
    // Earlier markers are dropped only once collection has finished, so a
    // failed pass leaves the previous generation addressable.
    for (const el of document.querySelectorAll('[' + attr + ']')) {
        el.removeAttribute(attr);
    }
    kept.forEach((el, i) => el.setAttribute(attr, records[i].marker));
    return { records: records, total: total };
}
"""


# ---------------------------------------------------------------------------
# Pure transformation
# ---------------------------------------------------------------------------

def normalize_text(raw: str | None) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return _WS.sub(" ", raw or "").strip()


def truncate_text(text: str, max_chars: int, marker: str = Config.TRUNCATION_MARKER) -> tuple[str, bool]:
    """Hard-truncate to ``max_chars`` and append ``marker``. Returns (text, truncated)."""
    if len(text) <= max_chars:
        return text, False
    return text[:max_chars] + marker, True


def classify(record: dict[str, Any]) -> ActionType:
    tag = (record.get("tag") or "").lower()
    role = (record.get("role") or "").lower()
    input_type = (record.get("type") or "").lower()

    if tag == "a":
        return ActionType.LINK
    if tag == "button":
        return ActionType.BUTTON
    if tag == "input":
        if input_type in BUTTON_INPUT_TYPES:
            return ActionType.BUTTON
        return ActionType.INPUT
    if tag == "textarea":
        return ActionType.TEXTAREA
    return _ROLE_TYPES.get(role, ActionType.OTHER)


def derive_label(record: dict[str, Any], action_type: ActionType) -> str:
    """Visible text first, then the attribute that fits the element type."""
    attrs = record.get("attrs") or {}
    text = normalize_text(record.get("text"))
    if text:
        return text

    if action_type is ActionType.LINK:
        fallback = attrs.get("href")
    elif action_type is ActionType.BUTTON:
        fallback = attrs.get("value") or record.get("type")
    elif action_type in (ActionType.INPUT, ActionType.TEXTAREA):
        fallback = attrs.get("placeholder") or attrs.get("name")
    else:
        fallback = None
    return normalize_text(fallback or attrs.get("aria-label"))


def derive_hint(record: dict[str, Any], action_type: ActionType) -> str:
    if action_type in (ActionType.INPUT, ActionType.TEXTAREA):
        return (record.get("attrs") or {}).get("value") or ""
    return ""


def ref_prefix(record: dict[str, Any]) -> str:
    tag = (record.get("tag") or "").lower()
    return tag[:1] if tag[:1].isalpha() else "x"


def build_actions(
    records: list[dict[str, Any]],
    generation: int,
    *,
    total: int | None = None,
    max_actions: int = Config.SNAPSHOT_ACTIONS_MAX,
    label_max_chars: int = Config.LABEL_MAX_CHARS,
) -> tuple[list[Action], RefMap, bool]:
    """Turn raw element records (document order) into actions + a ref map.

    Keeps the first ``max_actions`` records. ``total`` is the number of
    qualifying elements on the page when the in-page pass stopped early.
    Returns (actions, ref_map, actions_truncated).
    """
    qualifying = max(total or 0, len(records))
    kept = records[:max_actions]

    actions: list[Action] = []
    entries: dict[str, str] = {}
    for counter, record in enumerate(kept, start=1):
        action_type = classify(record)
        ref = format_ref(ref_prefix(record), counter, generation)
        entries[ref] = marker_selector(record["marker"])
        actions.append(Action(
            ref=ref,
            type=action_type,
            label=derive_label(record, action_type)[:label_max_chars],
            hint=derive_hint(record, action_type)[:label_max_chars],
        ))

    return actions, RefMap(generation=generation, _entries=entries), qualifying > max_actions


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class SnapshotEngine:
    """Captures size-bounded snapshots of a live page."""

    def __init__(
        self,
        text_max_chars: int | None = None,
        actions_max: int | None = None,
        label_max_chars: int | None = None,
    ) -> None:
        self.text_max_chars = text_max_chars or Config.SNAPSHOT_TEXT_MAX_CHARS
        self.actions_max = actions_max or Config.SNAPSHOT_ACTIONS_MAX
        self.label_max_chars = label_max_chars or Config.LABEL_MAX_CHARS

    async def capture(
        self,
        handle: BrowserHandle,
        session_id: str,
        mode: SnapshotMode,
        generation: int,
    ) -> tuple[Snapshot, RefMap]:
        """Run the passes ``mode`` asks for. Engine errors propagate unchanged.

        The returned RefMap is a complete replacement for the session's
        current one; it is empty when actions were not requested.
        """
        title = await handle.title()
        url = handle.url
        snapshot = Snapshot(session_id=session_id, title=title, url=url, meta=SnapshotMeta())
        ref_map = RefMap(generation=generation)

        if mode.wants_text:
            raw = await handle.evaluate(EXTRACT_TEXT_JS)
            text, truncated = truncate_text(normalize_text(raw), self.text_max_chars)
            snapshot.main_text = text
            snapshot.meta.truncated = truncated

        if mode.wants_actions:
            result = await handle.evaluate(EXTRACT_ACTIONS_JS, {
                "attr": MARKER_ATTR,
                "generation": generation,
                "limit": self.actions_max,
                "roles": sorted(INTERACTIVE_ROLES),
            }) or {}
            actions, ref_map, actions_truncated = build_actions(
                result.get("records") or [],
                generation,
                total=result.get("total"),
                max_actions=self.actions_max,
                label_max_chars=self.label_max_chars,
            )
            snapshot.actions = actions
            snapshot.meta.actions_truncated = actions_truncated

        log.debug(
            "Snapshot %s gen=%d mode=%s actions=%d",
            session_id, generation, mode.value, len(ref_map),
        )
        return snapshot, ref_map
