"""HTTP surface: intake aliases, status codes, CORS, diagnostics."""

from __future__ import annotations

import tempfile
from pathlib import Path
from unittest.mock import patch

from aiohttp.test_utils import AioHTTPTestCase

from hooktrail.engine.config import EngineConfig
from hooktrail.server.server import EVENT_PATHS, HookTrailServer


class TestHookTrailServer(AioHTTPTestCase):
    async def get_application(self):
        self.tmpdir = tempfile.mkdtemp()
        config = EngineConfig(
            port=3999,
            activity_log_path=str(Path(self.tmpdir) / "subagents.json"),
        )
        self.hooktrail_server = HookTrailServer(config)
        self.hooktrail_server.engine.load()
        return self.hooktrail_server.app

    async def _post_event(self, payload, path="/webhook"):
        resp = await self.client.post(path, json=payload)
        return resp.status, await resp.json()

    async def test_malformed_body_is_400(self):
        resp = await self.client.post("/webhook", data=b"{not json",
                                      headers={"Content-Type": "application/json"})
        assert resp.status == 400
        assert await resp.json() == {"error": "Invalid event data"}
        assert self.hooktrail_server.engine.registry.records() == []

    async def test_non_object_body_is_400(self):
        resp = await self.client.post("/tool-event", json=[1, 2, 3])
        assert resp.status == 400

    async def test_all_intake_aliases_accept_events(self):
        for i, path in enumerate(EVENT_PATHS):
            status, data = await self._post_event(
                {"session_id": f"s{i}", "hook_event_name": "Notification"}, path=path,
            )
            assert status == 200
            assert data["success"] is True
            assert data["message"] == "Event processed"
            assert data["kind"] == "Notification"

    async def test_unmatched_completion_still_200(self):
        status, data = await self._post_event({
            "session_id": "s1",
            "hook_event_name": "PostToolUse",
            "tool_name": "Task",
            "tool_input": {"description": "Never began"},
        })
        assert status == 200
        assert data["dropped"] is True

    async def test_begin_end_flow_and_listing(self):
        await self._post_event({"session_id": "s1", "hook_event_name": "UserPromptSubmit",
                                "prompt": "Ship it"})
        await self._post_event({"session_id": "s1", "hook_event_name": "PreToolUse",
                                "tool_name": "Task", "tool_input": {"description": "Write docs"}})
        status, data = await self._post_event({
            "session_id": "s1", "hook_event_name": "PostToolUse", "tool_name": "Task",
            "tool_input": {"description": "Write docs"},
            "tool_response": {"totalTokens": 12},
        })
        assert status == 200
        assert data["persisted"] is True
        assert data["subagent"] is True

        resp = await self.client.get("/subagents", params={"session_id": "s1"})
        listing = await resp.json()
        task = [r for r in listing["subagents"] if r["description"] == "Write docs"]
        assert len(task) == 1
        assert task[0]["status"] == "completed"
        assert task[0]["metrics"] == {"tokens": 12}

        resp = await self.client.get("/prompts")
        prompts = await resp.json()
        assert [p["text"] for p in prompts["prompts"]] == ["Ship it"]
        assert "s1" in prompts["activePromptIds"]

        resp = await self.client.get("/prompts/hierarchy")
        hierarchy = (await resp.json())["hierarchy"]
        assert hierarchy[0]["prompt"]["text"] == "Ship it"
        assert hierarchy[0]["completedCount"] == 2

    async def test_health(self):
        resp = await self.client.get("/health")
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "healthy"
        assert data["port"] == 3999
        assert data["timestamp"]

    async def test_test_endpoint_changes_nothing(self):
        resp = await self.client.post("/test", json={"anything": True})
        data = await resp.json()
        assert data["success"] is True
        assert data["message"] == "Test webhook received"
        assert self.hooktrail_server.engine.registry.records() == []

    async def test_options_preflight(self):
        resp = await self.client.options("/webhook")
        assert resp.status == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        resp = await self.client.options("/no/such/path")
        assert resp.status == 200

    async def test_cors_headers_on_regular_responses(self):
        resp = await self.client.get("/health")
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    async def test_dag_endpoints(self):
        await self._post_event({"session_id": "s1", "hook_event_name": "UserPromptSubmit",
                                "prompt": "hi"})
        resp = await self.client.get("/dag")
        snapshot = await resp.json()
        assert snapshot["totalNodes"] == 2
        [session] = snapshot["sessions"]
        assert session["sessionId"] == "s1"

        resp = await self.client.get("/dag/sessions/s1")
        nodes = (await resp.json())["nodes"]
        assert [n["kind"] for n in nodes] == ["SessionStart", "PromptSubmit"]

        resp = await self.client.get(f"/dag/nodes/{nodes[1]['id']}")
        assert (await resp.json())["parentId"] == session["rootId"]

        assert (await self.client.get("/dag/sessions/nope")).status == 404
        assert (await self.client.get("/dag/nodes/nope")).status == 404

    async def test_clear_and_reap(self):
        await self._post_event({"session_id": "s1", "hook_event_name": "PreToolUse",
                                "tool_name": "Task", "tool_input": {"description": "x"}})
        resp = await self.client.post("/subagents/reap")
        assert (await resp.json())["reaped"] == []

        resp = await self.client.delete("/subagents")
        assert (await resp.json())["cleared"] == 1
        resp = await self.client.get("/subagents")
        assert (await resp.json())["count"] == 0

    async def test_clear_prompts(self):
        await self._post_event({"session_id": "s1", "hook_event_name": "UserPromptSubmit",
                                "prompt": "hi"})
        resp = await self.client.delete("/prompts")
        assert (await resp.json())["cleared"] == 1

    async def test_unexpected_error_is_500_and_server_keeps_serving(self):
        with patch.object(self.hooktrail_server.engine, "ingest", side_effect=RuntimeError("bug")):
            resp = await self.client.post("/webhook", json={"session_id": "s1"})
        assert resp.status == 500
        assert await resp.json() == {"error": "Internal server error"}
        resp = await self.client.get("/health")
        assert resp.status == 200
