"""HTTP + SSE server for the hook correlation engine.

Receives upstream hook events on loopback, hands them to the HookEngine
and exposes the resulting activity log, prompt hierarchy and event graph
for display clients and diagnostics.

Usage:
    hooktrail [--port PORT]
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
import uuid
from typing import Any

from aiohttp import web

from hooktrail.adapters.events import event_to_dict
from hooktrail.adapters.intake import parse_body
from hooktrail.engine.config import EngineConfig
from hooktrail.engine.engine import HookEngine
from hooktrail.engine.errors import EventParseError
from hooktrail.engine.models import _utcnow, format_timestamp

logger = logging.getLogger(__name__)

# Every path is accepted for event intake under its historical name.
EVENT_PATHS = (
    "/webhook",
    "/subagent-event",
    "/tool-event",
    "/stop-event",
    "/prompt-event",
)

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, X-Request-Id",
}


class HookTrailServer:
    """aiohttp front end for a HookEngine.

    Thin adapter: all correlation state lives in the engine. This class
    only handles HTTP routing, SSE fan-out and response shaping.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        engine: HookEngine | None = None,
    ) -> None:
        self._config = config or (engine.config if engine else EngineConfig.from_env())
        self._engine = engine or HookEngine(self._config)
        self._host = self._config.host
        self._port = self._config.port
        self._started_at = time.time()
        self._app = web.Application(middlewares=[
            self._cors_middleware,
            self._request_logging_middleware,
            self._error_middleware,
        ])
        self._app.on_cleanup.append(self._on_cleanup)
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def engine(self) -> HookEngine:
        return self._engine

    # ── Middleware ──

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        if request.method == "OPTIONS":
            return web.Response(status=200, headers=_CORS_HEADERS)
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            exc.headers.update(_CORS_HEADERS)
            raise
        if not response.prepared:
            response.headers.update(_CORS_HEADERS)
        return response

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.debug("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except web.HTTPException as exc:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id, exc.status, elapsed_ms,
            )
            raise

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception:
            logger.exception(
                "Unhandled error in %s %s req=%s",
                request.method, request.path_qs, request.get("req_id", "unknown"),
            )
            return web.json_response({"error": "Internal server error"}, status=500)

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        for path in EVENT_PATHS:
            r.add_post(path, self._handle_event)
        r.add_get("/health", self._handle_health)
        r.add_post("/test", self._handle_test)
        r.add_get("/events", self._handle_sse)
        r.add_get("/subagents", self._handle_list_subagents)
        r.add_delete("/subagents", self._handle_clear_subagents)
        r.add_post("/subagents/reap", self._handle_reap)
        r.add_get("/prompts", self._handle_list_prompts)
        r.add_delete("/prompts", self._handle_clear_prompts)
        r.add_get("/prompts/hierarchy", self._handle_prompt_hierarchy)
        r.add_get("/dag", self._handle_dag)
        r.add_get("/dag/sessions/{session_id}", self._handle_dag_session)
        r.add_get("/dag/nodes/{node_id}", self._handle_dag_node)

    # ── Lifecycle ──

    async def start(self) -> None:
        """Start the engine and the HTTP server, then serve until cancelled."""
        await self._engine.start()
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()

        actual_port = self._resolve_port(site, runner)
        if actual_port is not None:
            self._port = actual_port

        sys.stdout.write(json.dumps({"port": self._port}) + "\n")
        sys.stdout.flush()
        logger.info("HookTrail server listening on %s:%d", self._host, self._port)

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            await runner.cleanup()

    async def _on_cleanup(self, app: web.Application) -> None:
        await self._engine.aclose()

    @staticmethod
    def _resolve_port(site, runner) -> int | None:
        sockets = getattr(getattr(site, "_server", None), "sockets", None) or ()
        if sockets:
            return sockets[0].getsockname()[1]
        addresses = getattr(runner, "addresses", None) or ()
        if addresses:
            first = addresses[0]
            if isinstance(first, tuple) and len(first) >= 2:
                return int(first[1])
        return None

    # ── HTTP handlers ──

    async def _handle_event(self, request: web.Request) -> web.Response:
        body = await request.read()
        try:
            payload = parse_body(body)
        except EventParseError as exc:
            logger.warning(
                "Rejected event on %s req=%s: %s",
                request.path, request.get("req_id", "unknown"), exc.reason,
            )
            return web.json_response({"error": "Invalid event data"}, status=400)

        result = await self._engine.ingest(payload)
        return web.json_response({
            "success": True,
            "message": "Event processed",
            **result.to_dict(),
        })

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "healthy",
            "timestamp": format_timestamp(_utcnow()),
            "port": self._port,
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
        })

    async def _handle_test(self, request: web.Request) -> web.Response:
        return web.json_response({
            "success": True,
            "message": "Test webhook received",
            "timestamp": format_timestamp(_utcnow()),
        })

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                **_CORS_HEADERS,
            },
        )
        await response.prepare(request)

        hub = self._engine.hub
        queue = hub.subscribe()
        logger.info(
            "SSE client connected req=%s active_clients=%d",
            request.get("req_id", "unknown"), hub.subscriber_count,
        )
        try:
            snapshot = {"sessions": self._engine.graph.sessions()}
            await response.write(f"event: connected\ndata: {json.dumps(snapshot)}\n\n".encode())
            async for event in hub.consume(queue):
                if event is None:
                    await response.write(b": keepalive\n\n")
                    continue
                data = json.dumps(event_to_dict(event))
                await response.write(f"event: {event.event_type}\ndata: {data}\n\n".encode())
        except (ConnectionResetError, asyncio.CancelledError):
            pass
        finally:
            hub.unsubscribe(queue)
            logger.info(
                "SSE client disconnected req=%s active_clients=%d",
                request.get("req_id", "unknown"), hub.subscriber_count,
            )
        return response

    async def _handle_list_subagents(self, request: web.Request) -> web.Response:
        session_id = request.query.get("session_id") or None
        records = self._engine.registry.records(session_id)
        return web.json_response({
            "subagents": [r.to_dict() for r in records],
            "count": len(records),
        })

    async def _handle_clear_subagents(self, request: web.Request) -> web.Response:
        cleared = await self._engine.clear_activity()
        return web.json_response({"success": True, "cleared": cleared})

    async def _handle_reap(self, request: web.Request) -> web.Response:
        reaped = await self._engine.reap_stale()
        return web.json_response({"reaped": [r.id for r in reaped]})

    async def _handle_list_prompts(self, request: web.Request) -> web.Response:
        session_id = request.query.get("session_id") or None
        tracker = self._engine.prompts
        sessions = [session_id] if session_id else tracker.sessions()
        active: dict[str, Any] = {
            sid: tracker.active_prompt_id(sid)
            for sid in sessions
            if tracker.active_prompt_id(sid)
        }
        return web.json_response({
            "prompts": [p.to_dict() for p in tracker.prompts(session_id)],
            "activePromptIds": active,
        })

    async def _handle_clear_prompts(self, request: web.Request) -> web.Response:
        session_id = request.query.get("session_id") or None
        cleared = self._engine.clear_prompts(session_id)
        return web.json_response({"success": True, "cleared": cleared})

    async def _handle_prompt_hierarchy(self, request: web.Request) -> web.Response:
        session_id = request.query.get("session_id") or None
        return web.json_response({"hierarchy": self._engine.prompt_hierarchy(session_id)})

    async def _handle_dag(self, request: web.Request) -> web.Response:
        return web.json_response(self._engine.dag_snapshot())

    async def _handle_dag_session(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        graph = self._engine.graph
        root = graph.session_root(session_id)
        if root is None:
            return web.json_response({"error": f"Unknown session: {session_id}"}, status=404)
        return web.json_response({
            "sessionId": session_id,
            "rootId": root.id,
            "nodes": [n.to_dict() for n in graph.session_nodes(session_id)],
        })

    async def _handle_dag_node(self, request: web.Request) -> web.Response:
        node_id = request.match_info["node_id"]
        node = self._engine.graph.get_node(node_id)
        if node is None:
            return web.json_response({"error": f"Unknown node: {node_id}"}, status=404)
        return web.json_response(node.to_dict())
