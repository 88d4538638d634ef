"""Execution state and reducers for a workflow run.

Every field of ``ExecutionState`` is a LangGraph channel with a named reducer.
Node executors never mutate the state; they return a patch, and the runtime
folds all patches of a superstep through these reducers at the step barrier.

Mapping fields merge shallowly, so completions that write disjoint keys
commute. Scalar fields (``error``, ``current_node``) are last-write-wins: when
several nodes complete in the same superstep the surviving value depends on
the order their patches are applied. The final answer inherits this, since it
is the most recently inserted output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Mapping, Optional, TypedDict

ERROR_PREFIX = "Error during execution: "
FAILURE_PREFIX = "Execution failed: "
NO_OUTPUT_PLACEHOLDER = "No output generated"


def overwrite(current: Any, update: Any) -> Any:
    """Reducer for scalar fields: the later write wins."""
    return update


def merge_mapping(
    current: Optional[Mapping[str, Any]], update: Optional[Mapping[str, Any]]
) -> Dict[str, Any]:
    """Reducer for mapping fields: shallow merge where keys in ``update`` win.

    A key that is already present keeps its insertion position.
    """
    merged = dict(current or {})
    if update:
        merged.update(update)
    return merged


class ExecutionState(TypedDict, total=False):
    """Shared state of one workflow run.

    Attributes:
        prompt: Original run input, written once at start
        node_outputs: Node id -> output, in insertion order
        final_answer: Derived at termination only
        error: Last error message, or None
        metadata: User metadata, shallow-merged on every completion
        current_node: Last node to complete
        retry_count: Node id -> attempts used so far
    """

    prompt: Annotated[str, overwrite]
    node_outputs: Annotated[Dict[str, str], merge_mapping]
    final_answer: Annotated[str, overwrite]
    error: Annotated[Optional[str], overwrite]
    metadata: Annotated[Dict[str, Any], merge_mapping]
    current_node: Annotated[Optional[str], overwrite]
    retry_count: Annotated[Dict[str, int], merge_mapping]


REDUCERS = {
    "prompt": overwrite,
    "node_outputs": merge_mapping,
    "final_answer": overwrite,
    "error": overwrite,
    "metadata": merge_mapping,
    "current_node": overwrite,
    "retry_count": merge_mapping,
}

STATE_KEYS = frozenset(REDUCERS)


def initial_state(prompt: str = "", metadata: Optional[Mapping[str, Any]] = None) -> ExecutionState:
    """Create the state a run starts from."""
    return ExecutionState(
        prompt=prompt,
        node_outputs={},
        final_answer="",
        error=None,
        metadata=dict(metadata or {}),
        current_node=None,
        retry_count={},
    )


def apply_patch(state: Mapping[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Fold one node's patch into a state snapshot through the field reducers.

    Returns a new mapping; ``state`` is left untouched.

    Raises:
        ValueError: If the patch names a field that is not part of the state
    """
    merged = dict(state)
    for key, value in patch.items():
        reducer = REDUCERS.get(key)
        if reducer is None:
            raise ValueError(f"Unknown state field: '{key}'")
        merged[key] = reducer(merged.get(key), value)
    return merged


def compute_final_answer(state: Mapping[str, Any]) -> str:
    """Derive the user-facing answer from a terminal state.

    Non-empty ``error`` wins; otherwise the most recently inserted node output.
    """
    error = state.get("error")
    if error:
        return f"{ERROR_PREFIX}{error}"

    outputs = state.get("node_outputs") or {}
    if not outputs:
        return NO_OUTPUT_PLACEHOLDER
    return list(outputs.values())[-1] or NO_OUTPUT_PLACEHOLDER


@dataclass
class ExecutionResult:
    """Outcome of a workflow run.

    Attributes:
        final_answer: Last output, or an error string prefixed with a fixed marker
        node_outputs: Outputs of every node that succeeded
        metadata: Final metadata
        error: Error message at termination, if any
        run_id: Identifier of the run
        steps: Node ids completed in each superstep, in completion order
        elapsed_ms: Wall-clock duration of the run
    """

    final_answer: str
    node_outputs: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    run_id: str = ""
    steps: List[List[str]] = field(default_factory=list)
    elapsed_ms: int = 0

    @property
    def success(self) -> bool:
        return not self.error

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire format."""
        return {
            "finalAnswer": self.final_answer,
            "nodeOutputs": dict(self.node_outputs),
            "metadata": dict(self.metadata),
            "error": self.error,
            "runId": self.run_id,
            "steps": [list(step) for step in self.steps],
            "elapsedMs": self.elapsed_ms,
        }
