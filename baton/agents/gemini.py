"""Gemini CLI task executor."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from ..errors import TaskExecutionError
from .base import ExecuteOptions, TaskExecutor, run_cli
from .registry import register_executor_type

logger = logging.getLogger(__name__)


@register_executor_type("gemini")
class GeminiExecutor(TaskExecutor):
    """Runs instructions through ``gemini -o=json``.

    The session id comes from the CLI's JSON response; ``init_session`` sends
    a short greeting to obtain one.
    """

    GREETING = "Hello"

    def __init__(
        self,
        node_id: Optional[str] = None,
        internal_retries: int = 1,
        cli_path: str = "gemini",
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
            cli_path=config.gemini_cli_path,
            timeout=config.cli_timeout,
        )

    async def _run(self, prompt: str) -> Dict[str, Any]:
        args = ["-o=json"]
        if self.session_id:
            args += ["-r", self.session_id]
        args.append(prompt)

        output = await run_cli(self.cli_path, args, self.timeout, self.cwd)
        try:
            parsed = json.loads(output)
        except json.JSONDecodeError as e:
            raise TaskExecutionError(f"Failed to parse Gemini JSON output: {e}") from e
        if not isinstance(parsed, dict):
            raise TaskExecutionError("Gemini JSON output is not an object")
        return parsed

    async def init_session(self) -> None:
        result = await self._run(self.GREETING)
        self.session_id = result.get("session_id")
        logger.debug(f"[{self.label}] Session initialized: {self.session_id}")

    async def _execute(self, instruction: str, options: Optional[ExecuteOptions] = None) -> str:
        result = await self._run(instruction)
        if not self.session_id:
            self.session_id = result.get("session_id")
        return result.get("response", "")
