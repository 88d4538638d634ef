"""Codex CLI task executor."""
from __future__ import annotations

import json
import logging
import re
from typing import List, Optional

from ..errors import TaskExecutionError
from .base import ExecuteOptions, TaskExecutor, run_cli
from .registry import register_executor_type

logger = logging.getLogger(__name__)

_SESSION_ID_PATTERN = re.compile(r"session id:\s*([a-f0-9-]+)", re.IGNORECASE)


def extract_agent_messages(jsonl_output: str) -> str:
    """Join the text of every completed ``agent_message`` item in codex JSONL output.

    Raises:
        TaskExecutionError: If the output holds no agent message
    """
    messages = []
    for line in jsonl_output.splitlines():
        if not line.strip():
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(event, dict) or event.get("type") != "item.completed":
            continue
        item = event.get("item") or {}
        if item.get("type") == "agent_message" and item.get("text"):
            messages.append(item["text"])

    if not messages:
        raise TaskExecutionError("No agent_message found in codex output")
    return "\n\n".join(messages)


@register_executor_type("codex")
class CodexExecutor(TaskExecutor):
    """Runs instructions through ``codex exec``, resuming one session per node."""

    def __init__(
        self,
        node_id: Optional[str] = None,
        internal_retries: int = 1,
        cli_path: str = "codex",
        timeout: float = 600.0,
        cwd: Optional[str] = None,
    ):
        super().__init__(node_id=node_id, internal_retries=internal_retries)
        self.cli_path = cli_path
        self.timeout = timeout
        self.cwd = cwd

    @classmethod
    def from_config(cls, node_id, config):
        return cls(
            node_id=node_id,
            internal_retries=config.internal_retries,
            cli_path=config.codex_cli_path,
            timeout=config.cli_timeout,
        )

    async def init_session(self) -> None:
        output = await run_cli(
            self.cli_path, ["exec", "--skip-git-repo-check", "/status"], self.timeout, self.cwd
        )
        match = _SESSION_ID_PATTERN.search(output)
        if not match:
            raise TaskExecutionError("Failed to extract session ID from codex /status output")
        self.session_id = match.group(1)
        logger.debug(f"[{self.label}] Session initialized: {self.session_id}")

    def build_args(self, instruction: str) -> List[str]:
        return ["exec", "--skip-git-repo-check", "--json", "resume", self.session_id, instruction]

    async def _execute(self, instruction: str, options: Optional[ExecuteOptions] = None) -> str:
        if not self.session_id:
            await self.init_session()

        output = await run_cli(self.cli_path, self.build_args(instruction), self.timeout, self.cwd)
        return extract_agent_messages(output)
