"""Task Executor Interface

A task executor takes an instruction and produces text output. Workflow
nodes delegate to one executor each; the executor owns any conversational
session with its backend so consecutive attempts of the same node continue
the same conversation.

Concrete executors subclass ``TaskExecutor`` and implement ``init_session``
and ``_execute``. ``execute`` adds a small, bounded transient retry around
``_execute`` that is invisible to the workflow's own retry accounting.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from ..errors import TaskExecutionError

if TYPE_CHECKING:
    from ..config import BatonConfig

logger = logging.getLogger(__name__)


@dataclass
class ExecuteOptions:
    """Per-call options.

    Attributes:
        json_schema: JSON schema text the output must conform to, if any
    """

    json_schema: Optional[str] = None


class TaskExecutor(ABC):
    """Base class for task executors.

    Attributes:
        task_type: Registered task-type tag (set by the registry decorator)
        node_id: Node this executor serves, used in log lines
        internal_retries: Extra transparent attempts inside ``execute``
        session_id: Backend conversation id, once a session exists
    """

    task_type: str = ""

    def __init__(self, node_id: Optional[str] = None, internal_retries: int = 1):
        self.node_id = node_id
        self.internal_retries = internal_retries
        self.session_id: Optional[str] = None

    @classmethod
    def from_config(cls, node_id: str, config: "BatonConfig") -> "TaskExecutor":
        return cls(node_id=node_id, internal_retries=config.internal_retries)

    @property
    def label(self) -> str:
        return self.node_id or self.task_type or "executor"

    @abstractmethod
    async def init_session(self) -> None:
        """Establish a backend session. Must be implemented by subclasses."""
        pass

    @abstractmethod
    async def _execute(self, instruction: str, options: Optional[ExecuteOptions] = None) -> str:
        """Run one call against the backend. Must be implemented by subclasses."""
        pass

    async def execute(self, instruction: str, options: Optional[ExecuteOptions] = None) -> str:
        """Execute an instruction, retrying transient failures.

        Args:
            instruction: Full instruction text
            options: Optional per-call options

        Returns:
            The executor's text output

        Raises:
            TaskExecutionError: If every attempt failed
        """
        last_error: Optional[TaskExecutionError] = None

        for attempt in range(self.internal_retries + 1):
            try:
                return await self._execute(instruction, options)
            except TaskExecutionError as e:
                last_error = e
            except Exception as e:
                last_error = TaskExecutionError(str(e) or type(e).__name__)
                last_error.__cause__ = e

            if attempt < self.internal_retries:
                logger.warning(
                    f"[{self.label}] Attempt {attempt + 1} failed: {last_error.message}. Retrying..."
                )

        raise last_error


async def run_cli(
    command: str,
    args: List[str],
    timeout: float,
    cwd: Optional[str] = None,
) -> str:
    """Run a CLI to completion and return its stripped stdout.

    Args:
        command: Executable name or path
        args: Command-line arguments
        timeout: Maximum execution time in seconds
        cwd: Working directory for the command

    Returns:
        Decoded stdout with trailing whitespace removed

    Raises:
        TaskExecutionError: If the CLI is missing, times out or exits non-zero
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise TaskExecutionError(f"CLI not found at '{command}'") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        proc.kill()
        await proc.wait()
        raise TaskExecutionError(f"{command} timed out after {timeout}s") from e

    output = stdout.decode("utf-8", errors="replace").strip()

    if proc.returncode != 0:
        err_msg = stderr.decode("utf-8", errors="replace").strip()
        raise TaskExecutionError(
            f"{command} exited with code {proc.returncode}" + (f": {err_msg}" if err_msg else ""),
            exit_code=proc.returncode,
            stderr=err_msg,
        )

    return output
