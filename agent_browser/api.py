"""
REST surface under /api/v1.

Every response is JSON: ``{"ok": true, ...}`` on success, otherwise
``{"ok": false, "error": ..., "code": ...}`` with the status carried by the
error type (429 capacity, 404 session/ref, 400 validation, 500 engine).
"""

from __future__ import annotations

import functools
import json
import logging
from http import HTTPStatus
from typing import Awaitable, Callable, TypeVar

from aiohttp import web
from pydantic import BaseModel, ValidationError

from agent_browser.errors import BrowserServiceError, InvalidRequest
from agent_browser.models import (
    FillRequest,
    OpenPageRequest,
    PressRequest,
    RefRequest,
    SnapshotRequest,
    WaitRequest,
)
from agent_browser.service import BrowserService

log = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
HEALTH_PATH = f"{API_PREFIX}/health"

SERVICE_KEY = web.AppKey("service", BrowserService)

M = TypeVar("M", bound=BaseModel)
Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def error_response(err: BrowserServiceError) -> web.Response:
    body = {"ok": False, "error": err.message, **err.to_dict()}
    body.pop("message")
    return web.json_response(body, status=err.http_status)


def json_endpoint(handler: Handler) -> Handler:
    """Map service errors to JSON error responses."""

    @functools.wraps(handler)
    async def wrapper(request: web.Request) -> web.StreamResponse:
        try:
            return await handler(request)
        except BrowserServiceError as err:
            return error_response(err)
        except Exception as e:
            log.exception("Unhandled error in %s %s", request.method, request.path)
            return web.json_response(
                {"ok": False, "error": f"Unhandled error: {e}", "code": "UNKNOWN"},
                status=HTTPStatus.INTERNAL_SERVER_ERROR,
            )

    return wrapper


async def parse_body(request: web.Request, model: type[M]) -> M:
    """Validate the JSON body against ``model``. Raises InvalidRequest."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidRequest(f"Invalid JSON: {e}") from e
    if not isinstance(body, dict):
        raise InvalidRequest("Request body must be a JSON object")
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise InvalidRequest(
            "Invalid parameters",
            details={"errors": json.loads(e.json(include_url=False))},
        ) from e


def _service(request: web.Request) -> BrowserService:
    return request.app[SERVICE_KEY]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({
        "ok": True,
        "active_sessions": len(_service(request).registry),
    })


@json_endpoint
async def handle_create_session(request: web.Request) -> web.Response:
    session_id = await _service(request).create_session()
    return web.json_response({"ok": True, "session_id": session_id})


@json_endpoint
async def handle_close_session(request: web.Request) -> web.Response:
    session_id = request.match_info["session_id"]
    if not await _service(request).close_session(session_id):
        return web.json_response(
            {"ok": False, "error": "Session not found or already closed", "code": "SESSION_NOT_FOUND"},
            status=HTTPStatus.NOT_FOUND,
        )
    return web.json_response({"ok": True})


@json_endpoint
async def handle_list_sessions(request: web.Request) -> web.Response:
    return web.json_response({"ok": True, "sessions": _service(request).list_sessions()})


@json_endpoint
async def handle_open(request: web.Request) -> web.Response:
    body = await parse_body(request, OpenPageRequest)
    result = await _service(request).open_page(body.session_id, str(body.url))
    return web.json_response({"ok": True, **result})


@json_endpoint
async def handle_snapshot(request: web.Request) -> web.Response:
    body = await parse_body(request, SnapshotRequest)
    snapshot = await _service(request).snapshot(body.session_id, body.mode)
    return web.json_response({"ok": True, **snapshot})


@json_endpoint
async def handle_click(request: web.Request) -> web.Response:
    body = await parse_body(request, RefRequest)
    await _service(request).click_ref(body.session_id, body.ref)
    return web.json_response({"ok": True})


@json_endpoint
async def handle_fill(request: web.Request) -> web.Response:
    body = await parse_body(request, FillRequest)
    await _service(request).fill_ref(body.session_id, body.ref, body.text)
    return web.json_response({"ok": True})


@json_endpoint
async def handle_press(request: web.Request) -> web.Response:
    body = await parse_body(request, PressRequest)
    await _service(request).press_key(body.session_id, body.key)
    return web.json_response({"ok": True})


@json_endpoint
async def handle_wait(request: web.Request) -> web.Response:
    body = await parse_body(request, WaitRequest)
    await _service(request).wait(body.session_id, body.ms)
    return web.json_response({"ok": True})


def setup_routes(app: web.Application) -> None:
    app.router.add_get(HEALTH_PATH, handle_health)
    app.router.add_post(f"{API_PREFIX}/sessions", handle_create_session)
    app.router.add_get(f"{API_PREFIX}/sessions", handle_list_sessions)
    app.router.add_delete(f"{API_PREFIX}/sessions/{{session_id}}", handle_close_session)
    app.router.add_post(f"{API_PREFIX}/page/open", handle_open)
    app.router.add_post(f"{API_PREFIX}/page/snapshot", handle_snapshot)
    app.router.add_post(f"{API_PREFIX}/page/click", handle_click)
    app.router.add_post(f"{API_PREFIX}/page/fill", handle_fill)
    app.router.add_post(f"{API_PREFIX}/page/press", handle_press)
    app.router.add_post(f"{API_PREFIX}/page/wait", handle_wait)
