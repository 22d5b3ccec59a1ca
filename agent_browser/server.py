#!/usr/bin/env python3
"""
HTTP server for the agent browser service.

Keeps browser sessions alive between requests and exposes them over two
surfaces backed by the same BrowserService:

  REST      /api/v1/...   (see agent_browser.api)
  JSON-RPC  POST /mcp     (see agent_browser.mcp)

Usage:
    agent-browser-service [--host 0.0.0.0] [--port 8000]
"""

from __future__ import annotations

import argparse
import logging
import secrets
from http import HTTPStatus

from aiohttp import web

from agent_browser import api, mcp
from agent_browser.api import HEALTH_PATH, SERVICE_KEY
from agent_browser.config import Config
from agent_browser.service import BrowserService

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Auth middleware
# ---------------------------------------------------------------------------

def _unauthorized(request: web.Request, message: str) -> web.Response:
    if request.path == mcp.MCP_PATH:
        body = {"jsonrpc": "2.0", "id": None, "error": {"code": mcp.SERVER_ERROR, "message": message}}
    else:
        body = {"ok": False, "error": message, "code": "UNAUTHORIZED"}
    return web.json_response(body, status=HTTPStatus.UNAUTHORIZED)


def make_auth_middleware(token: str):
    """Bearer token auth middleware.

    Skips auth for the health endpoint and when no token is configured.
    """

    @web.middleware
    async def auth_middleware(request: web.Request, handler) -> web.StreamResponse:
        if request.path == HEALTH_PATH or not token:
            return await handler(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return _unauthorized(request, "Missing or malformed Authorization header")

        provided = auth_header[7:]  # strip "Bearer "
        if not secrets.compare_digest(provided.encode(), token.encode()):
            return _unauthorized(request, "Invalid API key")

        return await handler(request)

    return auth_middleware


# ---------------------------------------------------------------------------
# App lifecycle
# ---------------------------------------------------------------------------

async def on_startup(app: web.Application) -> None:
    """Start the idle-session reaper."""
    app[SERVICE_KEY].start()


async def on_cleanup(app: web.Application) -> None:
    """Stop the reaper, then close every browser session."""
    await app[SERVICE_KEY].shutdown()


def create_app(service: BrowserService, api_key: str | None = None) -> web.Application:
    token = Config.API_KEY if api_key is None else api_key
    app = web.Application(middlewares=[make_auth_middleware(token)])
    app[SERVICE_KEY] = service
    api.setup_routes(app)
    mcp.setup_routes(app)
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def configure_logging(level: str = Config.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="agent browser HTTP server")
    parser.add_argument("--port", type=int, default=Config.PORT,
                        help=f"Port (default: {Config.PORT})")
    parser.add_argument("--host", default=Config.HOST,
                        help=f"Host (default: {Config.HOST})")
    args = parser.parse_args()

    configure_logging()
    Config.ensure_dirs()

    service = BrowserService.from_config()
    app = create_app(service)

    auth_status = "enabled" if Config.API_KEY else "disabled (no API_KEY)"
    log.info(
        "Starting on %s:%d [auth: %s] max_sessions=%d ttl=%ds data_dir=%s",
        args.host, args.port, auth_status,
        Config.MAX_SESSIONS, Config.SESSION_TTL_SEC, Config.DATA_DIR,
    )
    # run_app handles SIGINT/SIGTERM and runs on_cleanup before exiting
    web.run_app(app, host=args.host, port=args.port, print=None)


if __name__ == "__main__":
    main()
