"""Workflow engine: schema validation, graph compilation and execution."""

from .executor import WorkflowEngine, execute_workflow
from .graph_builder import CompiledWorkflow, build_router, compile_workflow
from .node_executor import NodeExecutor
from .safe_eval import (
    evaluate_condition,
    evaluate_hook,
    make_condition_context,
    make_hook_context,
    safe_eval,
    validate_expression,
)
from .schema import (
    EdgeDefinition,
    NodeDefinition,
    SchemaViolation,
    ValidationResult,
    WorkflowSchema,
    ensure_valid_schema,
    parse_schema,
    validate_schema,
)
from .state import ExecutionResult, ExecutionState, apply_patch, compute_final_answer, initial_state

__all__ = [
    "WorkflowEngine",
    "execute_workflow",
    "CompiledWorkflow",
    "build_router",
    "compile_workflow",
    "NodeExecutor",
    "evaluate_condition",
    "evaluate_hook",
    "make_condition_context",
    "make_hook_context",
    "safe_eval",
    "validate_expression",
    "EdgeDefinition",
    "NodeDefinition",
    "SchemaViolation",
    "ValidationResult",
    "WorkflowSchema",
    "ensure_valid_schema",
    "parse_schema",
    "validate_schema",
    "ExecutionResult",
    "ExecutionState",
    "apply_patch",
    "compute_final_answer",
    "initial_state",
]
