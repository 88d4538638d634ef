"""Shared fixtures for baton tests.

Provides a scripted fake ``TaskExecutor`` and builders for wire-format
workflow schemas. Engine tests run against the real LangGraph runtime.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from baton.agents.base import ExecuteOptions, TaskExecutor
from baton.config import BatonConfig
from baton.errors import TaskExecutionError


class ScriptedExecutor(TaskExecutor):
    """Fake executor that replays a script of outcomes.

    Strings are returned as output; exceptions are raised. The last outcome
    repeats once the script is exhausted. Every instruction is recorded.
    """

    task_type = "claude"

    def __init__(
        self,
        outcomes: Optional[List[Any]] = None,
        node_id: Optional[str] = None,
        gate: Optional[asyncio.Event] = None,
        started: Optional[asyncio.Event] = None,
    ):
        super().__init__(node_id=node_id, internal_retries=0)
        self.outcomes = list(outcomes or ["ok"])
        self.calls: List[str] = []
        self.gate = gate
        self.started = started
        self.initialized = False

    async def init_session(self) -> None:
        self.initialized = True
        self.session_id = f"session-{self.node_id}"

    async def _execute(self, instruction: str, options: Optional[ExecuteOptions] = None) -> str:
        self.calls.append(instruction)
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()

        index = min(len(self.calls), len(self.outcomes)) - 1
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def make_node(node_id: str, task_type: str = "claude", **fields: Any) -> Dict[str, Any]:
    node = {
        "id": node_id,
        "name": node_id,
        "description": f"Node {node_id}",
        "taskType": task_type,
        "instruction": f"Do {node_id}",
    }
    node.update(fields)
    return node


def make_edge(source: str, target: str, condition: Optional[str] = None) -> Dict[str, Any]:
    edge = {"from": source, "to": target}
    if condition is not None:
        edge["condition"] = condition
    return edge


def make_schema(
    nodes: List[Dict[str, Any]],
    edges: List[Dict[str, Any]],
    start: str,
    end: str,
    **fields: Any,
) -> Dict[str, Any]:
    schema = {
        "plan": "test plan",
        "diagram": "",
        "nodes": nodes,
        "edges": edges,
        "startNodeId": start,
        "endNodeId": end,
    }
    schema.update(fields)
    return schema


@pytest.fixture
def scripted_executor():
    """Factory for ScriptedExecutor instances."""
    return ScriptedExecutor


@pytest.fixture
def node():
    return make_node


@pytest.fixture
def edge():
    return make_edge


@pytest.fixture
def schema_factory():
    return make_schema


@pytest.fixture
def config(tmp_path):
    """Config isolated from the environment."""
    return BatonConfig(
        verbose=False,
        agents=["claude", "codex", "gemini"],
        claude_cli_path="claude",
        codex_cli_path="codex",
        gemini_cli_path="gemini",
        cli_timeout=5.0,
        internal_retries=0,
        max_concurrency=None,
        recursion_limit=None,
        runs_dir=str(tmp_path / "runs"),
    )


@pytest.fixture
def fan_out_schema():
    """A -> [B, C] -> D."""
    return make_schema(
        nodes=[make_node("A"), make_node("B"), make_node("C"), make_node("D")],
        edges=[
            make_edge("A", "B"),
            make_edge("A", "C"),
            make_edge("B", "D"),
            make_edge("C", "D"),
        ],
        start="A",
        end="D",
    )


@pytest.fixture
def task_error():
    return TaskExecutionError
