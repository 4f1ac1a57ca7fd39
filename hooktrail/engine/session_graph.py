"""Per-session event graph for diagnostics.

Every normalized event becomes a node. A session's first node is a
synthetic root. Parent choice for a new node:

    1. the active prompt's node (unless the event is itself a prompt)
    2. the most recently added prompt-submission node of the session
    3. the session root

Nodes are append-only and never reparented. Nothing here feeds the
matching decisions.
"""
from __future__ import annotations

import logging
from typing import Any

from .errors import GraphError
from .models import (
    SESSION_ROOT_KIND,
    EventKind,
    GraphNode,
    NormalizedEvent,
    _make_id,
    _utcnow,
)

logger = logging.getLogger(__name__)


class SessionEventGraph:
    """Directed graph of events, one rooted tree per session."""

    def __init__(self) -> None:
        self._nodes: dict[str, GraphNode] = {}
        self._roots: dict[str, str] = {}
        self._session_nodes: dict[str, list[str]] = {}
        self._prompt_nodes: dict[str, str] = {}
        self._last_prompt_node: dict[str, str] = {}

    # ── Construction ──

    def ensure_session(self, session_id: str, payload: dict[str, Any] | None = None) -> GraphNode:
        """Return the session's root node, creating it on first sight."""
        root_id = self._roots.get(session_id)
        if root_id is not None:
            return self._nodes[root_id]

        root = GraphNode(
            id=_make_id(),
            session_id=session_id,
            kind=SESSION_ROOT_KIND,
            received_at=_utcnow(),
            payload=dict(payload or {}),
        )
        self._nodes[root.id] = root
        self._roots[session_id] = root.id
        self._session_nodes[session_id] = [root.id]
        logger.debug("Created graph root %s for session %s", root.id, session_id)
        return root

    def add_event(
        self,
        event: NormalizedEvent,
        *,
        active_prompt_id: str | None = None,
        prompt_id: str | None = None,
    ) -> GraphNode:
        """Record *event* as a node.

        Args:
            active_prompt_id: The session's active prompt when the event
                arrived, used to pick the parent.
            prompt_id: For prompt submissions, the id of the prompt the
                event created, so later events can hang off its node.
        """
        self.ensure_session(event.session_id)
        parent_id = self._choose_parent(event, active_prompt_id)
        node = GraphNode(
            id=_make_id(),
            session_id=event.session_id,
            kind=event.kind.value,
            received_at=_utcnow(),
            payload=dict(event.raw_payload),
        )
        self.add_child(parent_id, node)

        if event.kind == EventKind.PROMPT_SUBMIT:
            self._last_prompt_node[event.session_id] = node.id
            if prompt_id:
                self._prompt_nodes[prompt_id] = node.id
        return node

    def add_child(self, parent_id: str, child: GraphNode) -> None:
        """Link *child* under *parent_id*. Children are never reparented."""
        parent = self._nodes.get(parent_id)
        if parent is None:
            raise GraphError(f"Parent node {parent_id} not found")
        if child.parent_id is not None:
            raise GraphError(f"Node {child.id} already has parent {child.parent_id}")
        if child.id in self._nodes:
            raise GraphError(f"Node {child.id} is already in the graph")
        if child.session_id != parent.session_id:
            raise GraphError(
                f"Node {child.id} of session {child.session_id} cannot attach "
                f"to session {parent.session_id}"
            )

        child.parent_id = parent.id
        parent.child_ids.append(child.id)
        self._nodes[child.id] = child
        self._session_nodes[child.session_id].append(child.id)

    def _choose_parent(self, event: NormalizedEvent, active_prompt_id: str | None) -> str:
        session_id = event.session_id
        if event.kind != EventKind.PROMPT_SUBMIT and active_prompt_id:
            node_id = self._prompt_nodes.get(active_prompt_id)
            if node_id is not None and self._nodes[node_id].session_id == session_id:
                return node_id
        last_prompt = self._last_prompt_node.get(session_id)
        if last_prompt is not None:
            return last_prompt
        return self._roots[session_id]

    # ── Queries ──

    def sessions(self) -> list[str]:
        return list(self._roots)

    def session_root(self, session_id: str) -> GraphNode | None:
        root_id = self._roots.get(session_id)
        return self._nodes.get(root_id) if root_id else None

    def session_nodes(self, session_id: str) -> list[GraphNode]:
        return [self._nodes[n] for n in self._session_nodes.get(session_id, [])]

    def get_node(self, node_id: str) -> GraphNode | None:
        return self._nodes.get(node_id)

    def node_for_prompt(self, prompt_id: str) -> GraphNode | None:
        node_id = self._prompt_nodes.get(prompt_id)
        return self._nodes.get(node_id) if node_id else None

    def snapshot(self) -> dict[str, Any]:
        """Per-session root and node counts."""
        sessions = [
            {
                "sessionId": session_id,
                "rootId": root_id,
                "nodeCount": len(self._session_nodes[session_id]),
            }
            for session_id, root_id in self._roots.items()
        ]
        return {"sessions": sessions, "totalNodes": len(self._nodes)}
