"""Node Executor

Wraps one workflow node as a LangGraph node function. Each invocation is one
attempt: it builds the instruction from the node's base text plus the outputs
collected so far, delegates to the node's task executor, and returns a state
patch. Retry decisions are left to the node's router, which reads the
``retry_count`` and ``error`` fields this patch writes.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from ..agents.base import TaskExecutor
from .safe_eval import evaluate_hook, make_hook_context
from .schema import NodeDefinition

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "\n\nContext from previous steps:\n"

HookEvaluator = Callable[[str, Mapping[str, Any]], Dict[str, Any]]


class NodeExecutor:
    """Runs a single attempt of a workflow node.

    Attributes:
        node: The node definition
        task_executor: Delegate producing the node's output, or None if unavailable
        evaluator: Evaluates ``onSuccess``/``onError`` hooks into metadata updates
        verbose: Log start/end banners and the full output
    """

    def __init__(
        self,
        node: NodeDefinition,
        task_executor: Optional[TaskExecutor],
        evaluator: HookEvaluator = evaluate_hook,
        verbose: bool = False,
    ):
        self.node = node
        self.task_executor = task_executor
        self.evaluator = evaluator
        self.verbose = verbose

    @property
    def total_attempts(self) -> int:
        return self.node.max_retries + 1

    def build_instruction(self, node_outputs: Mapping[str, str]) -> str:
        """Append the outputs collected so far to the node's base instruction."""
        context = json.dumps(dict(node_outputs), indent=2, ensure_ascii=False)
        return f"{self.node.instruction}{CONTEXT_HEADER}{context}"

    def _run_hook(self, expression: Optional[str], context: Mapping[str, Any]) -> Dict[str, Any]:
        if not expression:
            return {}
        return self.evaluator(expression, context)

    async def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        """Execute one attempt and return the state patch.

        Args:
            state: Current execution state

        Returns:
            Patch with node_outputs (on success), metadata, error,
            current_node and retry_count
        """
        node_id = self.node.id
        retry_count = state.get("retry_count") or {}
        metadata = state.get("metadata") or {}
        attempt = retry_count.get(node_id, 0) + 1

        if self.task_executor is None:
            message = f"No task executor available for node: {node_id}"
            logger.error(message)
            # Mark every attempt as used so the router does not loop on it
            return {
                "error": message,
                "current_node": node_id,
                "retry_count": {node_id: self.total_attempts},
            }

        instruction = self.build_instruction(state.get("node_outputs") or {})

        if self.verbose:
            logger.info(f"[NODE START] {node_id} ({self.node.task_type}) attempt {attempt}/{self.total_attempts}")
        else:
            logger.info(f"Executing node: {node_id} (attempt {attempt}/{self.total_attempts})")

        started = time.monotonic()
        try:
            output = await self.task_executor.execute(instruction)
        except Exception as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            raw_message = str(e) or type(e).__name__

            if attempt < self.total_attempts:
                error = raw_message
                logger.warning(f"Node {node_id} attempt {attempt} failed: {raw_message}")
            else:
                error = f"Node {node_id} failed after {attempt} attempts: {raw_message}"
                logger.error(error)

            hook_context = make_hook_context(
                node_id, metadata, elapsed_ms, attempt - 1, error=raw_message
            )
            return {
                "metadata": self._run_hook(self.node.on_error, hook_context),
                "error": error,
                "current_node": node_id,
                "retry_count": {node_id: attempt},
            }

        elapsed_ms = int((time.monotonic() - started) * 1000)
        output = output if isinstance(output, str) else str(output)

        if self.verbose:
            logger.info(f"[NODE END] {node_id} ({elapsed_ms}ms)\n{output}")
        else:
            logger.info(f"Node {node_id} completed ({elapsed_ms}ms)")

        hook_context = make_hook_context(
            node_id, metadata, elapsed_ms, attempt - 1, output=output
        )
        return {
            "node_outputs": {node_id: output},
            "metadata": self._run_hook(self.node.on_success, hook_context),
            "error": None,
            "current_node": node_id,
            "retry_count": {node_id: attempt},
        }
