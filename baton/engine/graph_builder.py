"""Workflow Graph Compiler

Compiles a validated ``WorkflowSchema`` into a LangGraph ``StateGraph``:

- every schema node becomes a graph node running a ``NodeExecutor``
- every node with outgoing edges or retries gets a router installed with
  ``add_conditional_edges``; a router returns the list of next node ids and
  an empty list terminates that branch
- nodes with neither are wired straight to ``END``

Router priority, evaluated once per completion of the node:

1. Retry: the completion recorded an error, the node has no output yet and
   attempts so far < maxRetries + 1 -> route back to the node itself.
2. Exhausted retries with an error -> the first conditional edge, in
   declaration order, whose condition holds. No match terminates.
3. Otherwise -> every unconditional target plus every conditional edge
   whose condition holds, deduplicated, in declaration order.

Routers read the state as of the start of the superstep with the node's own
patch applied, so sibling completions in the same step are not visible to
them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from langgraph.graph import END, START, StateGraph

from ..agents.base import TaskExecutor
from ..config import BatonConfig
from .node_executor import NodeExecutor
from .safe_eval import evaluate_condition, make_condition_context
from .schema import SchemaInput, WorkflowSchema, ensure_valid_schema
from .state import ExecutionState

logger = logging.getLogger(__name__)

Router = Callable[[Mapping[str, Any]], List[str]]
ConditionEvaluator = Callable[[str, Mapping[str, Any]], bool]

# Supersteps allowed beyond the retry budget of every node
RECURSION_HEADROOM = 25


@dataclass
class CompiledWorkflow:
    """A schema compiled into a runnable LangGraph graph.

    Attributes:
        schema: The validated schema
        graph: Compiled LangGraph graph
        routers: Node id -> router, for every node that routes at runtime
        initial_metadata: Metadata seed declared by the schema
        recursion_limit: Superstep limit to run the graph with
    """

    schema: WorkflowSchema
    graph: Any
    routers: Dict[str, Router] = field(default_factory=dict)
    initial_metadata: Dict[str, Any] = field(default_factory=dict)
    recursion_limit: int = RECURSION_HEADROOM


def build_router(
    schema: WorkflowSchema,
    node_id: str,
    evaluator: ConditionEvaluator = evaluate_condition,
) -> Router:
    """Build the routing function for ``node_id``.

    Args:
        schema: Validated workflow schema
        node_id: Node whose completions the router decides on
        evaluator: Evaluates edge conditions against a condition context

    Returns:
        ``router(state) -> list of next node ids``
    """
    node = schema.get_node(node_id)
    if node is None:
        raise ValueError(f"Unknown node: {node_id}")

    total_attempts = node.max_retries + 1
    edges = schema.outgoing_edges(node_id)
    conditional = [edge for edge in edges if edge.condition]
    unconditional = [edge for edge in edges if not edge.condition]

    if len(edges) == 1 and not conditional and node.max_retries == 0:
        target = edges[0].target

        def transition(state: Mapping[str, Any]) -> List[str]:
            return [] if state.get("error") else [target]

        return transition

    def router(state: Mapping[str, Any]) -> List[str]:
        error = state.get("error")
        node_outputs = state.get("node_outputs") or {}
        attempts = (state.get("retry_count") or {}).get(node_id, 0)

        if error and node_id not in node_outputs and attempts < total_attempts:
            logger.info(f"Retrying node {node_id} (attempt {attempts + 1}/{total_attempts})")
            return [node_id]

        context = make_condition_context(
            node_outputs,
            state.get("metadata") or {},
            error,
            state.get("current_node"),
        )

        if error and attempts >= total_attempts:
            for edge in conditional:
                if evaluator(edge.condition, context):
                    logger.info(f"Error route: {node_id} -> {edge.target} (condition '{edge.condition}')")
                    return [edge.target]
            logger.info(f"Node {node_id} exhausted retries with no error route, terminating branch")
            return []

        targets = []
        for edge in edges:
            if not edge.condition:
                targets.append(edge.target)
            elif evaluator(edge.condition, context):
                logger.debug(f"Conditional route: {node_id} -> {edge.target} (condition '{edge.condition}')")
                targets.append(edge.target)
        return list(dict.fromkeys(targets))

    return router


def _as_branch(router: Router) -> Callable[[Mapping[str, Any]], Any]:
    """Adapt a router to LangGraph: an empty destination list becomes END."""

    def branch(state: Mapping[str, Any]) -> Any:
        destinations = router(state)
        return destinations if destinations else END

    return branch


def default_recursion_limit(schema: WorkflowSchema) -> int:
    """Superstep budget large enough for every node to use all of its attempts."""
    return sum(node.max_retries + 1 for node in schema.nodes) * 2 + RECURSION_HEADROOM


def compile_workflow(
    schema: SchemaInput,
    executors: Mapping[str, TaskExecutor],
    config: Optional[BatonConfig] = None,
) -> CompiledWorkflow:
    """Validate a schema and compile it into a runnable graph.

    Args:
        schema: Workflow schema (model, mapping or JSON text)
        executors: Node id -> task executor
        config: Runtime configuration

    Returns:
        CompiledWorkflow

    Raises:
        SchemaValidationError: If the schema is invalid
    """
    config = config or BatonConfig()
    schema = ensure_valid_schema(schema, config.agents or None)

    graph = StateGraph(ExecutionState)

    for node in schema.nodes:
        task_executor = executors.get(node.id)
        if task_executor is None:
            logger.warning(f"No task executor supplied for node {node.id}")
        node_executor = NodeExecutor(node, task_executor, verbose=config.verbose)
        graph.add_node(node.id, node_executor.run)

    graph.add_edge(START, schema.start_node_id)

    routers: Dict[str, Router] = {}
    for node in schema.nodes:
        edges = schema.outgoing_edges(node.id)
        if not edges and node.max_retries == 0:
            graph.add_edge(node.id, END)
            continue

        router = build_router(schema, node.id)
        routers[node.id] = router

        path_map = list(dict.fromkeys(edge.target for edge in edges))
        if node.max_retries > 0 and node.id not in path_map:
            path_map.append(node.id)
        path_map.append(END)
        graph.add_conditional_edges(node.id, _as_branch(router), path_map)

    recursion_limit = config.recursion_limit or default_recursion_limit(schema)

    logger.info(
        f"Compiled workflow: {len(schema.nodes)} node(s), {len(schema.edges)} edge(s), "
        f"start={schema.start_node_id}, end={schema.end_node_id}, "
        f"recursion_limit={recursion_limit}"
    )

    return CompiledWorkflow(
        schema=schema,
        graph=graph.compile(),
        routers=routers,
        initial_metadata=dict(schema.initial_metadata),
        recursion_limit=recursion_limit,
    )
