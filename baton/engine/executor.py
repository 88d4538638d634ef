"""Workflow Execution Engine

Drives a compiled workflow to completion. LangGraph's Pregel loop provides
the superstep model: every active node of a step runs concurrently, their
patches are folded through the state reducers at the step barrier, and the
union of their routers' destinations becomes the next active set.

The engine streams ``updates`` and ``values`` to record which nodes completed
in each step and to capture the final merged state. ``run`` never raises:
every failure is returned as an ``ExecutionResult`` with ``error`` set.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..agents.base import TaskExecutor
from ..agents.registry import build_executor_pool, initialize_pool
from ..config import BatonConfig
from ..errors import EngineInternalError, SchemaValidationError
from .graph_builder import CompiledWorkflow, compile_workflow
from .schema import SchemaInput, WorkflowSchema, ensure_valid_schema
from .state import FAILURE_PREFIX, ExecutionResult, compute_final_answer, initial_state

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Compiles and runs workflow schemas.

    Attributes:
        config: Runtime configuration
    """

    def __init__(self, config: Optional[BatonConfig] = None):
        self.config = config or BatonConfig()

    def _allowed_task_types(self) -> Optional[List[str]]:
        return self.config.agents or None

    async def prepare(self, schema: SchemaInput) -> Tuple[WorkflowSchema, Dict[str, TaskExecutor]]:
        """Validate a schema and build an initialised executor pool for it.

        Raises:
            SchemaValidationError: If the schema is invalid
            TaskExecutionError: If any executor fails to initialise
        """
        schema = ensure_valid_schema(schema, self._allowed_task_types())
        pool = build_executor_pool(schema, self.config)
        await initialize_pool(pool)
        return schema, pool

    async def run(
        self,
        schema: SchemaInput,
        prompt: str = "",
        initial_metadata: Optional[Mapping[str, Any]] = None,
        executors: Optional[Mapping[str, TaskExecutor]] = None,
        run_id: Optional[str] = None,
    ) -> ExecutionResult:
        """Run a workflow to completion.

        Args:
            schema: Workflow schema (model, mapping or JSON text)
            prompt: Original user input, stored in the state
            initial_metadata: Overlaid on the schema's ``initialMetadata``
            executors: Node id -> task executor; built from the registry when omitted
            run_id: Identifier for this run (generated when omitted)

        Returns:
            ExecutionResult; failures are reported through its ``error`` field
        """
        run_id = run_id or str(uuid.uuid4())
        started = time.monotonic()
        seed_metadata = dict(initial_metadata or {})

        try:
            if executors is None:
                schema, executors = await self.prepare(schema)
            compiled = compile_workflow(schema, executors, self.config)
            seed_metadata = {**compiled.initial_metadata, **seed_metadata}

            logger.info(f"Starting run {run_id} at node {compiled.schema.start_node_id}")
            final_state, steps = await self._stream(compiled, prompt, seed_metadata, run_id)

        except SchemaValidationError as e:
            error = f"Invalid workflow schema: {e.message}"
            logger.error(f"Run {run_id}: {error}")
            return self._failure(error, seed_metadata, run_id, started)

        except Exception as e:
            internal = EngineInternalError(str(e) or type(e).__name__, cause=e)
            logger.exception(f"Run {run_id} failed: {internal.message}")
            return self._failure(internal.message, seed_metadata, run_id, started)

        result = ExecutionResult(
            final_answer=compute_final_answer(final_state),
            node_outputs=dict(final_state.get("node_outputs") or {}),
            metadata=dict(final_state.get("metadata") or {}),
            error=final_state.get("error"),
            run_id=run_id,
            steps=steps,
            elapsed_ms=_elapsed_ms(started),
        )

        if result.error:
            logger.warning(f"Run {run_id} finished with error after {len(steps)} step(s): {result.error}")
        else:
            logger.info(
                f"Run {run_id} completed: {len(steps)} step(s), "
                f"{len(result.node_outputs)} output(s), {result.elapsed_ms}ms"
            )
        return result

    async def _stream(
        self,
        compiled: CompiledWorkflow,
        prompt: str,
        metadata: Mapping[str, Any],
        run_id: str,
    ) -> Tuple[Dict[str, Any], List[List[str]]]:
        """Stream the graph, grouping node completions by superstep.

        Within a step LangGraph emits every ``updates`` chunk before the
        step's ``values`` chunk, so each ``values`` chunk closes a step.
        """
        node_ids = set(compiled.schema.node_ids)
        run_config: Dict[str, Any] = {
            "recursion_limit": compiled.recursion_limit,
            "tags": [f"baton-run:{run_id}"],
        }
        if self.config.max_concurrency:
            run_config["max_concurrency"] = self.config.max_concurrency

        final_state: Dict[str, Any] = dict(initial_state(prompt, metadata))
        steps: List[List[str]] = []
        pending: List[str] = []

        async for mode, chunk in compiled.graph.astream(
            initial_state(prompt, metadata),
            run_config,
            stream_mode=["updates", "values"],
        ):
            if mode == "updates":
                completed = [name for name in chunk if name in node_ids]
                pending.extend(completed)
                for name in completed:
                    logger.debug(f"Run {run_id}: node {name} completed")
            elif mode == "values":
                final_state = dict(chunk)
                if pending:
                    steps.append(pending)
                    pending = []

        if pending:
            steps.append(pending)

        return final_state, steps

    @staticmethod
    def _failure(
        error: str,
        metadata: Mapping[str, Any],
        run_id: str,
        started: float,
    ) -> ExecutionResult:
        return ExecutionResult(
            final_answer=f"{FAILURE_PREFIX}{error}",
            node_outputs={},
            metadata=dict(metadata),
            error=error,
            run_id=run_id,
            elapsed_ms=_elapsed_ms(started),
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def execute_workflow(
    schema: SchemaInput,
    prompt: str = "",
    initial_metadata: Optional[Mapping[str, Any]] = None,
    executors: Optional[Mapping[str, TaskExecutor]] = None,
    config: Optional[BatonConfig] = None,
    run_id: Optional[str] = None,
) -> ExecutionResult:
    """Run a workflow with a one-off ``WorkflowEngine``.

    See ``WorkflowEngine.run``.
    """
    engine = WorkflowEngine(config)
    return await engine.run(
        schema,
        prompt=prompt,
        initial_metadata=initial_metadata,
        executors=executors,
        run_id=run_id,
    )
