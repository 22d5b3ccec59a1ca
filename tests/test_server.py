"""REST and JSON-RPC surfaces over aiohttp's test client."""

import json

import pytest

from conftest import element

API = "/api/v1"


def rpc(method, params=None, req_id=1):
    body = {"jsonrpc": "2.0", "id": req_id, "method": method}
    if params is not None:
        body["params"] = params
    return body


async def create(client, auth):
    resp = await client.post(f"{API}/sessions", headers=auth)
    assert resp.status == 200
    return (await resp.json())["session_id"]


# ---------------------------------------------------------------------------
# Auth + health
# ---------------------------------------------------------------------------

async def test_health_needs_no_auth(client):
    resp = await client.get(f"{API}/health")
    assert resp.status == 200
    assert await resp.json() == {"ok": True, "active_sessions": 0}


async def test_missing_token_rejected(client):
    resp = await client.post(f"{API}/sessions")
    assert resp.status == 401
    assert (await resp.json())["ok"] is False


async def test_wrong_token_rejected(client):
    resp = await client.post(f"{API}/sessions", headers={"Authorization": "Bearer nope"})
    assert resp.status == 401


async def test_mcp_unauthorized_is_rpc_shaped(client):
    resp = await client.post("/mcp", json=rpc("ping"))
    assert resp.status == 401
    body = await resp.json()
    assert body["jsonrpc"] == "2.0"
    assert "error" in body


# ---------------------------------------------------------------------------
# REST
# ---------------------------------------------------------------------------

async def test_session_lifecycle(client, auth):
    sid = await create(client, auth)

    resp = await client.get(f"{API}/sessions", headers=auth)
    sessions = (await resp.json())["sessions"]
    assert [s["session_id"] for s in sessions] == [sid]

    resp = await client.get(f"{API}/health")
    assert (await resp.json())["active_sessions"] == 1

    resp = await client.delete(f"{API}/sessions/{sid}", headers=auth)
    assert resp.status == 200
    assert await resp.json() == {"ok": True}

    resp = await client.delete(f"{API}/sessions/{sid}", headers=auth)
    assert resp.status == 404
    assert (await resp.json())["code"] == "SESSION_NOT_FOUND"


async def test_capacity_exceeded_is_429(client, auth):
    await create(client, auth)
    await create(client, auth)
    resp = await client.post(f"{API}/sessions", headers=auth)
    assert resp.status == 429
    body = await resp.json()
    assert body["ok"] is False
    assert body["code"] == "CAPACITY_EXCEEDED"
    assert "Maximum number of sessions" in body["error"]


async def test_open_snapshot_click(client, auth, factory):
    sid = await create(client, auth)
    handle = factory.handles[-1]
    handle.text = "Hello world"
    handle.records = [element("a", "Docs", href="/docs"), element("button", "Go")]

    resp = await client.post(f"{API}/page/open", headers=auth,
                             json={"session_id": sid, "url": "https://example.com/"})
    assert resp.status == 200
    body = await resp.json()
    assert body["ok"] is True
    assert body["url"] == "https://example.com/"

    resp = await client.post(f"{API}/page/snapshot", headers=auth, json={"session_id": sid})
    snap = await resp.json()
    assert snap["ok"] is True
    assert snap["session_id"] == sid
    assert snap["main_text"] == "Hello world"
    assert [a["type"] for a in snap["actions"]] == ["link", "button"]

    ref = snap["actions"][1]["ref"]
    resp = await client.post(f"{API}/page/click", headers=auth, json={"session_id": sid, "ref": ref})
    assert resp.status == 200
    assert handle.calls[-1] == ("click", '[data-agent-ref="1-1"]')


async def test_stale_ref_is_404(client, auth, factory):
    sid = await create(client, auth)
    factory.handles[-1].records = [element("button", "Go")]

    first = await (await client.post(f"{API}/page/snapshot", headers=auth,
                                     json={"session_id": sid, "mode": "actions_only"})).json()
    await client.post(f"{API}/page/snapshot", headers=auth,
                      json={"session_id": sid, "mode": "actions_only"})

    resp = await client.post(f"{API}/page/click", headers=auth,
                             json={"session_id": sid, "ref": first["actions"][0]["ref"]})
    assert resp.status == 404
    body = await resp.json()
    assert body["code"] == "REF_NOT_FOUND"
    assert body["agent_action"]


async def test_unknown_session_is_404(client, auth):
    resp = await client.post(f"{API}/page/press", headers=auth,
                             json={"session_id": "s_00000000", "key": "Enter"})
    assert resp.status == 404
    assert (await resp.json())["code"] == "SESSION_NOT_FOUND"


@pytest.mark.parametrize("path,body", [
    ("page/open", {"session_id": "s_1", "url": "not a url"}),
    ("page/open", {"url": "https://example.com/"}),
    ("page/snapshot", {"session_id": "s_1", "mode": "everything"}),
    ("page/fill", {"session_id": "s_1", "ref": "i1@1"}),
    ("page/wait", {"session_id": "s_1", "ms": -1}),
])
async def test_invalid_body_is_400(client, auth, path, body):
    resp = await client.post(f"{API}/{path}", headers=auth, json=body)
    assert resp.status == 400
    data = await resp.json()
    assert data["code"] == "INVALID_REQUEST"
    assert data["details"]["errors"]


async def test_malformed_json_is_400(client, auth):
    resp = await client.post(f"{API}/page/press", headers=auth, data=b"{not json")
    assert resp.status == 400


async def test_engine_failure_is_500(client, auth, factory):
    sid = await create(client, auth)
    factory.handles[-1].errors["press"] = RuntimeError("Target closed")
    resp = await client.post(f"{API}/page/press", headers=auth,
                             json={"session_id": sid, "key": "Enter"})
    assert resp.status == 500
    body = await resp.json()
    assert body["code"] == "TARGET_CLOSED"
    assert body["details"]["engine_message"] == "Target closed"


# ---------------------------------------------------------------------------
# JSON-RPC
# ---------------------------------------------------------------------------

async def call_tool(client, auth, name, arguments=None, req_id=1):
    resp = await client.post("/mcp", headers=auth,
                             json=rpc("tools/call", {"name": name, "arguments": arguments or {}}, req_id))
    return resp.status, await resp.json()


async def test_initialize(client, auth):
    resp = await client.post("/mcp", headers=auth, json=rpc("initialize", {}))
    body = await resp.json()
    assert body["id"] == 1
    assert body["result"]["capabilities"] == {"tools": {}}
    assert body["result"]["serverInfo"]["name"] == "agent-browser-service"


async def test_tools_list(client, auth):
    resp = await client.post("/mcp", headers=auth, json=rpc("tools/list"))
    names = [t["name"] for t in (await resp.json())["result"]["tools"]]
    assert names == [
        "session_create", "session_close", "page_open", "page_snapshot",
        "page_click", "page_fill", "page_press", "page_wait",
    ]


async def test_tool_flow(client, auth, factory):
    status, body = await call_tool(client, auth, "session_create")
    assert status == 200
    sid = body["result"]["structuredContent"]["session_id"]
    assert json.loads(body["result"]["content"][0]["text"]) == {"session_id": sid}

    factory.handles[-1].records = [element("textarea", name="msg")]
    _, body = await call_tool(client, auth, "page_snapshot", {"session_id": sid})
    snap = body["result"]["structuredContent"]
    ref = snap["actions"][0]["ref"]

    _, body = await call_tool(client, auth, "page_fill", {"session_id": sid, "ref": ref, "text": "hi"})
    assert body["result"]["structuredContent"] == {"ok": True}
    assert factory.handles[-1].calls[-1] == ("fill", '[data-agent-ref="1-0"]', "hi")

    _, body = await call_tool(client, auth, "session_close", {"session_id": sid})
    assert body["result"]["structuredContent"] == {"ok": True}


async def test_tool_capacity_error_code(client, auth):
    await call_tool(client, auth, "session_create")
    await call_tool(client, auth, "session_create")
    status, body = await call_tool(client, auth, "session_create")
    assert status == 200
    assert body["error"]["code"] == -32000
    assert body["error"]["data"]["code"] == "CAPACITY_EXCEEDED"


async def test_tool_unknown_session(client, auth):
    _, body = await call_tool(client, auth, "page_press", {"session_id": "s_00000000", "key": "Enter"})
    assert body["error"]["code"] == -32000
    assert body["error"]["data"]["code"] == "SESSION_NOT_FOUND"


async def test_tool_invalid_arguments(client, auth):
    _, body = await call_tool(client, auth, "page_open", {"session_id": "s_1"})
    assert body["error"]["code"] == -32602


async def test_unknown_tool(client, auth):
    _, body = await call_tool(client, auth, "page_scroll", {})
    assert body["error"]["code"] == -32602


async def test_unknown_method(client, auth):
    resp = await client.post("/mcp", headers=auth, json=rpc("resources/list"))
    body = await resp.json()
    assert body["error"]["code"] == -32601


async def test_notification_has_no_body(client, auth):
    resp = await client.post("/mcp", headers=auth,
                             json={"jsonrpc": "2.0", "method": "notifications/initialized"})
    assert resp.status == 204


async def test_parse_error(client, auth):
    resp = await client.post("/mcp", headers=auth, data=b"{oops")
    assert resp.status == 400
    assert (await resp.json())["error"]["code"] == -32700


async def test_invalid_envelope(client, auth):
    resp = await client.post("/mcp", headers=auth, json={"id": 3, "method": "ping"})
    assert resp.status == 400
    body = await resp.json()
    assert body["id"] == 3
    assert body["error"]["code"] == -32600


async def test_tool_wait_accepts_fractional_ms(client, auth, factory):
    _, body = await call_tool(client, auth, "session_create")
    sid = body["result"]["structuredContent"]["session_id"]
    _, body = await call_tool(client, auth, "page_wait", {"session_id": sid, "ms": 250.6})
    assert body["result"]["structuredContent"] == {"ok": True}
    assert factory.handles[-1].calls[-1] == ("wait", 251)
