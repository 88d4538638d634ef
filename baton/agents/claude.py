"""Claude CLI task executor."""
from __future__ import annotations

import json
import logging
import uuid
from typing import List, Optional

from ..errors import TaskExecutionError
from .base import ExecuteOptions, TaskExecutor, run_cli
from .registry import register_executor_type

logger = logging.getLogger(__name__)


@register_executor_type("claude")
class ClaudeExecutor(TaskExecutor):
    """Runs instructions through ``claude -p``.

    The session id is generated locally. The first call creates the
    conversation with ``--session-id``; later calls resume it with ``-r``.
    """

    def __init__(
        self,
        node_id: Optional[str] = None,
        internal_retries: int = 1,
        cli_path: str = "claude",
        timeout: float = 600.0,
        cwd: Optional[str] = None,
    ):
        super().__init__(node_id=node_id, internal_retries=internal_retries)
        self.cli_path = cli_path
        self.timeout = timeout
        self.cwd = cwd
        self.session_started = False

    @classmethod
    def from_config(cls, node_id, config):
        return cls(
            node_id=node_id,
            internal_retries=config.internal_retries,
            cli_path=config.claude_cli_path,
            timeout=config.cli_timeout,
        )

    async def init_session(self) -> None:
        self.session_id = str(uuid.uuid4())
        self.session_started = False
        logger.debug(f"[{self.label}] Session initialized: {self.session_id}")

    def build_args(self, instruction: str, options: Optional[ExecuteOptions] = None) -> List[str]:
        json_schema = options.json_schema if options else None
        args: List[str] = []

        if self.session_id:
            if self.session_started:
                args += ["-r", self.session_id]
            else:
                args += ["--session-id", self.session_id]

        args.append("-p")
        args += ["--output-format", "json" if json_schema else "text"]
        if json_schema:
            args += ["--json-schema", json_schema]
        args.append(instruction)
        return args

    async def _execute(self, instruction: str, options: Optional[ExecuteOptions] = None) -> str:
        if not self.session_id:
            await self.init_session()

        output = await run_cli(self.cli_path, self.build_args(instruction, options), self.timeout, self.cwd)
        self.session_started = True

        if options and options.json_schema:
            return self._parse_json_output(output)
        return output

    @staticmethod
    def _parse_json_output(output: str) -> str:
        try:
            parsed = json.loads(output)
        except json.JSONDecodeError as e:
            raise TaskExecutionError(f"Failed to parse Claude JSON output: {e}") from e
        if not isinstance(parsed, dict):
            raise TaskExecutionError(
                f"Claude JSON output is not an object (got {type(parsed).__name__})"
            )

        # With --json-schema the structured result lives in structured_output
        if parsed.get("structured_output") is not None:
            return json.dumps(parsed["structured_output"], ensure_ascii=False)
        return parsed.get("result", "")
