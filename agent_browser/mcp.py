"""
JSON-RPC 2.0 tool surface (MCP over HTTP POST /mcp).

Methods: initialize, notifications/*, ping, tools/list, tools/call.
Tool results are returned as MCP content blocks with the same payload in
``structuredContent``. Service failures become JSON-RPC error -32000 with
the service error code in ``data.code`` so callers can tell capacity
rejections from engine failures.
"""

from __future__ import annotations

import json
import logging
from http import HTTPStatus
from typing import Any, Awaitable, Callable

from aiohttp import web
from pydantic import BaseModel, ValidationError

from agent_browser import __version__
from agent_browser.api import SERVICE_KEY
from agent_browser.errors import BrowserServiceError
from agent_browser.models import (
    FillRequest,
    OpenPageRequest,
    PressRequest,
    RefRequest,
    SessionRequest,
    SnapshotRequest,
    WaitRequest,
)
from agent_browser.service import BrowserService

log = logging.getLogger(__name__)

MCP_PATH = "/mcp"
PROTOCOL_VERSION = "2024-11-05"

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SERVER_ERROR = -32000


class RpcError(Exception):
    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

_SESSION_ID = {"type": "string", "description": "Session id returned by session_create"}

TOOLS: list[dict[str, Any]] = [
    {
        "name": "session_create",
        "description": "Create a new isolated browser session. Returns session_id for later calls.",
        "inputSchema": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": "session_close",
        "description": "Close a browser session and release its resources.",
        "inputSchema": {
            "type": "object",
            "properties": {"session_id": _SESSION_ID},
            "required": ["session_id"],
        },
    },
    {
        "name": "page_open",
        "description": "Open a URL in the session's page.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": _SESSION_ID,
                "url": {"type": "string", "description": "Absolute http(s) URL"},
            },
            "required": ["session_id", "url"],
        },
    },
    {
        "name": "page_snapshot",
        "description": (
            "Compact snapshot of the current page: title, url, main text and the "
            "interactive elements with refs. Refs from earlier snapshots stop working."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": _SESSION_ID,
                "mode": {
                    "type": "string",
                    "enum": ["full", "text_only", "actions_only"],
                    "description": "full (text + actions), text_only, actions_only",
                    "default": "full",
                },
            },
            "required": ["session_id"],
        },
    },
    {
        "name": "page_click",
        "description": "Click an element by ref (from the latest page_snapshot actions).",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": _SESSION_ID,
                "ref": {"type": "string", "description": "Element ref from the latest snapshot"},
            },
            "required": ["session_id", "ref"],
        },
    },
    {
        "name": "page_fill",
        "description": "Fill an input or textarea by ref.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": _SESSION_ID,
                "ref": {"type": "string", "description": "Element ref from the latest snapshot"},
                "text": {"type": "string", "description": "Text to fill"},
            },
            "required": ["session_id", "ref", "text"],
        },
    },
    {
        "name": "page_press",
        "description": "Press a key on the page (e.g. Enter, Escape, ArrowDown).",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": _SESSION_ID,
                "key": {"type": "string", "description": "Key name"},
            },
            "required": ["session_id", "key"],
        },
    },
    {
        "name": "page_wait",
        "description": "Wait a number of milliseconds (page loads, animations).",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": _SESSION_ID,
                "ms": {"type": "number", "description": "Duration in milliseconds", "default": 1000},
            },
            "required": ["session_id"],
        },
    },
]


# ---------------------------------------------------------------------------
# Tool implementations
# ---------------------------------------------------------------------------

def _validate(model: type[BaseModel], args: dict) -> Any:
    try:
        return model.model_validate(args)
    except ValidationError as e:
        raise RpcError(INVALID_PARAMS, "Invalid tool arguments",
                       json.loads(e.json(include_url=False))) from e


async def _session_create(service: BrowserService, args: dict) -> dict:
    return {"session_id": await service.create_session()}


async def _session_close(service: BrowserService, args: dict) -> dict:
    req = _validate(SessionRequest, args)
    if not await service.close_session(req.session_id):
        raise RpcError(INVALID_PARAMS, f"Session {req.session_id} not found",
                       {"code": "SESSION_NOT_FOUND"})
    return {"ok": True}


async def _page_open(service: BrowserService, args: dict) -> dict:
    req = _validate(OpenPageRequest, args)
    return {"ok": True, **await service.open_page(req.session_id, str(req.url))}


async def _page_snapshot(service: BrowserService, args: dict) -> dict:
    req = _validate(SnapshotRequest, args)
    return await service.snapshot(req.session_id, req.mode)


async def _page_click(service: BrowserService, args: dict) -> dict:
    req = _validate(RefRequest, args)
    await service.click_ref(req.session_id, req.ref)
    return {"ok": True}


async def _page_fill(service: BrowserService, args: dict) -> dict:
    req = _validate(FillRequest, args)
    await service.fill_ref(req.session_id, req.ref, req.text)
    return {"ok": True}


async def _page_press(service: BrowserService, args: dict) -> dict:
    req = _validate(PressRequest, args)
    await service.press_key(req.session_id, req.key)
    return {"ok": True}


async def _page_wait(service: BrowserService, args: dict) -> dict:
    req = _validate(WaitRequest, args)
    await service.wait(req.session_id, req.ms)
    return {"ok": True}


ToolFn = Callable[[BrowserService, dict], Awaitable[dict]]

TOOL_HANDLERS: dict[str, ToolFn] = {
    "session_create": _session_create,
    "session_close": _session_close,
    "page_open": _page_open,
    "page_snapshot": _page_snapshot,
    "page_click": _page_click,
    "page_fill": _page_fill,
    "page_press": _page_press,
    "page_wait": _page_wait,
}


async def call_tool(service: BrowserService, params: Any) -> dict:
    if not isinstance(params, dict):
        raise RpcError(INVALID_PARAMS, "tools/call params must be an object")
    name = params.get("name")
    args = params.get("arguments") or {}
    fn = TOOL_HANDLERS.get(name)
    if fn is None:
        raise RpcError(INVALID_PARAMS, f"Unknown tool: {name}")
    if not isinstance(args, dict):
        raise RpcError(INVALID_PARAMS, "Tool arguments must be an object")

    log.info("Tool call %s (session=%s)", name, args.get("session_id"))
    payload = await fn(service, args)
    return {
        "content": [{"type": "text", "text": json.dumps(payload, ensure_ascii=False)}],
        "structuredContent": payload,
        "isError": False,
    }


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

def _rpc_result(req_id: Any, result: Any) -> web.Response:
    return web.json_response({"jsonrpc": "2.0", "id": req_id, "result": result})


def _rpc_error(req_id: Any, code: int, message: str, data: Any = None,
               status: int = HTTPStatus.OK) -> web.Response:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return web.json_response({"jsonrpc": "2.0", "id": req_id, "error": error}, status=status)


async def dispatch(service: BrowserService, method: str, params: Any) -> Any:
    if method == "initialize":
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": "agent-browser-service", "version": __version__},
        }
    if method == "ping":
        return {}
    if method == "tools/list":
        return {"tools": TOOLS}
    if method == "tools/call":
        return await call_tool(service, params)
    raise RpcError(METHOD_NOT_FOUND, f"Unknown method: {method}")


async def handle_mcp(request: web.Request) -> web.Response:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return _rpc_error(None, PARSE_ERROR, f"Parse error: {e}", status=HTTPStatus.BAD_REQUEST)

    if not isinstance(payload, dict) or payload.get("jsonrpc") != "2.0" \
            or not isinstance(payload.get("method"), str):
        req_id = payload.get("id") if isinstance(payload, dict) else None
        return _rpc_error(req_id, INVALID_REQUEST, "Invalid Request", status=HTTPStatus.BAD_REQUEST)

    method = payload["method"]
    req_id = payload.get("id")

    # Notifications carry no id and get no response body
    if method.startswith("notifications/"):
        return web.Response(status=HTTPStatus.NO_CONTENT)

    log.debug("RPC %s (id=%s)", method, req_id)
    try:
        result = await dispatch(request.app[SERVICE_KEY], method, payload.get("params"))
    except RpcError as e:
        return _rpc_error(req_id, e.code, e.message, e.data)
    except BrowserServiceError as err:
        log.warning("RPC %s failed: %s", method, err.message)
        return _rpc_error(req_id, SERVER_ERROR, err.message, err.to_dict())
    except Exception as e:
        log.exception("RPC %s crashed", method)
        return _rpc_error(req_id, INTERNAL_ERROR, f"Internal error: {e}")
    return _rpc_result(req_id, result)


def setup_routes(app: web.Application) -> None:
    app.router.add_post(MCP_PATH, handle_mcp)
