"""Workflow Schema Models and Validator

The schema is the document produced by a planner: an ordered list of task
nodes, the edges between them and the start/end node ids. It is parsed into
frozen pydantic models and then checked as a whole by ``validate_schema``,
which reports every violation it finds instead of stopping at the first.

Wire field names are camelCase (``startNodeId``, ``maxRetries``, ``from``,
``to``); the models expose snake_case attributes and accept either spelling.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from langgraph.graph import END, START
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import SchemaValidationError
from .safe_eval import validate_expression
from .state import STATE_KEYS

logger = logging.getLogger(__name__)

# Characters the graph runtime uses to namespace node names
RESERVED_ID_CHARACTERS = ("|", ":")

RESERVED_NODE_IDS = frozenset(STATE_KEYS | {START, END})


class NodeDefinition(BaseModel):
    """A task node.

    Attributes:
        id: Unique node identifier
        name: Human-readable name
        description: What the node does
        task_type: Selects the task executor implementation (e.g. "claude")
        instruction: Base instruction text sent to the executor
        max_retries: Extra attempts after the first failure (0 means one attempt)
        on_success: Hook expression returning a metadata update on success
        on_error: Hook expression returning a metadata update on failure
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str = ""
    description: str = ""
    task_type: str = Field(
        alias="taskType",
        validation_alias=AliasChoices("taskType", "agentType", "task_type"),
    )
    instruction: str = Field(
        default="",
        validation_alias=AliasChoices("instruction", "basePrompt", "base_prompt"),
    )
    max_retries: int = Field(
        default=0,
        alias="maxRetries",
        validation_alias=AliasChoices("maxRetries", "max_retries"),
    )
    on_success: Optional[str] = Field(
        default=None,
        alias="onSuccess",
        validation_alias=AliasChoices("onSuccess", "on_success"),
    )
    on_error: Optional[str] = Field(
        default=None,
        alias="onError",
        validation_alias=AliasChoices("onError", "on_error"),
    )

    @field_validator("max_retries", mode="before")
    @classmethod
    def _default_max_retries(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("on_success", "on_error", mode="before")
    @classmethod
    def _blank_hook_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class EdgeDefinition(BaseModel):
    """A transition between two nodes, optionally guarded by a condition.

    Attributes:
        source: Source node id (wire name ``from``)
        target: Target node id (wire name ``to``)
        condition: Optional condition expression
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: str = Field(alias="from", validation_alias=AliasChoices("from", "source"))
    target: str = Field(alias="to", validation_alias=AliasChoices("to", "target"))
    condition: Optional[str] = None

    @field_validator("condition", mode="before")
    @classmethod
    def _unwrap_condition(cls, value: Any) -> Any:
        # Planners may emit {"code": "...", "description": "..."}
        if isinstance(value, Mapping):
            value = value.get("code")
        if isinstance(value, str) and not value.strip():
            return None
        return value


class WorkflowSchema(BaseModel):
    """A complete workflow definition. Immutable once produced."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    plan: str = ""
    diagram: str = ""
    nodes: Tuple[NodeDefinition, ...]
    edges: Tuple[EdgeDefinition, ...] = ()
    start_node_id: str = Field(
        default="",
        alias="startNodeId",
        validation_alias=AliasChoices("startNodeId", "start_node_id"),
    )
    end_node_id: str = Field(
        default="",
        alias="endNodeId",
        validation_alias=AliasChoices("endNodeId", "end_node_id"),
    )
    initial_metadata: Dict[str, Any] = Field(
        default_factory=dict,
        alias="initialMetadata",
        validation_alias=AliasChoices("initialMetadata", "initial_metadata"),
    )

    @field_validator("initial_metadata", mode="before")
    @classmethod
    def _default_metadata(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def get_node(self, node_id: str) -> Optional[NodeDefinition]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing_edges(self, node_id: str) -> List[EdgeDefinition]:
        """Edges leaving ``node_id``, in declaration order."""
        return [edge for edge in self.edges if edge.source == node_id]

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with camelCase wire field names."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class SchemaViolation:
    """A single problem found in a workflow schema.

    Attributes:
        code: Stable violation code (e.g. DUPLICATE_NODE_ID)
        message: Human-readable description
        severity: "error" or "warning"
        node_ids: Affected node ids
        context: Additional details
    """

    code: str
    message: str
    severity: str = "error"
    node_ids: List[str] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "node_ids": self.node_ids,
            "context": self.context,
        }


@dataclass
class ValidationResult:
    """Outcome of ``validate_schema``.

    Attributes:
        errors: Violations that make the schema unusable
        warnings: Findings that are reported but do not block execution
    """

    errors: List[SchemaViolation] = field(default_factory=list)
    warnings: List[SchemaViolation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


SchemaInput = Union[WorkflowSchema, Mapping[str, Any], str, bytes]


def parse_schema(data: SchemaInput) -> WorkflowSchema:
    """Parse a schema from a model, a mapping or JSON text.

    Raises:
        SchemaValidationError: If the document does not have the schema's shape
    """
    if isinstance(data, WorkflowSchema):
        return data

    try:
        if isinstance(data, (str, bytes)):
            return WorkflowSchema.model_validate_json(data)
        return WorkflowSchema.model_validate(data)
    except PydanticValidationError as e:
        violations = []
        for err in e.errors():
            location = ".".join(str(part) for part in err["loc"]) or "schema"
            violations.append(
                SchemaViolation(
                    code="MALFORMED_SCHEMA",
                    message=f"{location}: {err['msg']}",
                    context={"loc": [str(part) for part in err["loc"]]},
                )
            )
        raise SchemaValidationError(violations) from e


def validate_schema(
    schema: WorkflowSchema,
    allowed_task_types: Optional[Iterable[str]] = None,
) -> ValidationResult:
    """Validate a workflow schema, collecting every violation.

    Errors:
    - EMPTY_NODE_ID / RESERVED_NODE_ID / DUPLICATE_NODE_ID
    - NEGATIVE_MAX_RETRIES
    - UNKNOWN_TASK_TYPE (only when ``allowed_task_types`` is given)
    - UNKNOWN_EDGE_SOURCE / UNKNOWN_EDGE_TARGET
    - MISSING_START_NODE / UNKNOWN_START_NODE / MISSING_END_NODE / UNKNOWN_END_NODE

    Warnings:
    - INVALID_EXPRESSION (conditions and hooks still fail safe at runtime)
    - UNREACHABLE_NODE
    - NO_OUTGOING_EDGE (for nodes other than the end node)

    Args:
        schema: Parsed workflow schema
        allowed_task_types: Optional roster of task types the schema may use

    Returns:
        ValidationResult with errors and warnings
    """
    errors: List[SchemaViolation] = []
    warnings: List[SchemaViolation] = []

    node_ids = schema.node_ids
    known_ids = set(node_ids)

    # 1. Node ids
    for index, node_id in enumerate(node_ids):
        if not node_id:
            errors.append(
                SchemaViolation(
                    code="EMPTY_NODE_ID",
                    message=f"Node at position {index} has an empty id",
                    context={"index": index},
                )
            )
        elif node_id in RESERVED_NODE_IDS or any(c in node_id for c in RESERVED_ID_CHARACTERS):
            errors.append(
                SchemaViolation(
                    code="RESERVED_NODE_ID",
                    message=(
                        f"Node id '{node_id}' is reserved or contains one of "
                        f"{' '.join(RESERVED_ID_CHARACTERS)}"
                    ),
                    node_ids=[node_id],
                )
            )

    for node_id, count in Counter(node_ids).items():
        if node_id and count > 1:
            errors.append(
                SchemaViolation(
                    code="DUPLICATE_NODE_ID",
                    message=f"Node id '{node_id}' is used by {count} nodes",
                    node_ids=[node_id],
                    context={"count": count},
                )
            )

    # 2. Node fields
    allowed = set(allowed_task_types) if allowed_task_types else None
    for node in schema.nodes:
        if node.max_retries < 0:
            errors.append(
                SchemaViolation(
                    code="NEGATIVE_MAX_RETRIES",
                    message=f"Node '{node.id}' has negative maxRetries ({node.max_retries})",
                    node_ids=[node.id],
                    context={"max_retries": node.max_retries},
                )
            )
        if allowed is not None and node.task_type not in allowed:
            errors.append(
                SchemaViolation(
                    code="UNKNOWN_TASK_TYPE",
                    message=(
                        f"Node '{node.id}' uses task type '{node.task_type}', "
                        f"expected one of {sorted(allowed)}"
                    ),
                    node_ids=[node.id],
                    context={"task_type": node.task_type},
                )
            )

    # 3. Edge endpoints
    for index, edge in enumerate(schema.edges):
        if edge.source not in known_ids:
            errors.append(
                SchemaViolation(
                    code="UNKNOWN_EDGE_SOURCE",
                    message=f"Edge {index} ({edge.source} -> {edge.target}): source node '{edge.source}' not found",
                    node_ids=[edge.source],
                    context={"edge_index": index},
                )
            )
        if edge.target not in known_ids:
            errors.append(
                SchemaViolation(
                    code="UNKNOWN_EDGE_TARGET",
                    message=f"Edge {index} ({edge.source} -> {edge.target}): target node '{edge.target}' not found",
                    node_ids=[edge.target],
                    context={"edge_index": index},
                )
            )

    # 4. Start and end nodes
    for label, code_prefix, node_id in (
        ("startNodeId", "START", schema.start_node_id),
        ("endNodeId", "END", schema.end_node_id),
    ):
        if not node_id:
            errors.append(
                SchemaViolation(
                    code=f"MISSING_{code_prefix}_NODE",
                    message=f"{label} is missing",
                )
            )
        elif node_id not in known_ids:
            errors.append(
                SchemaViolation(
                    code=f"UNKNOWN_{code_prefix}_NODE",
                    message=f"{label} '{node_id}' does not reference an existing node",
                    node_ids=[node_id],
                )
            )

    # 5. Expressions
    for index, edge in enumerate(schema.edges):
        if edge.condition:
            for err in validate_expression(edge.condition):
                warnings.append(
                    SchemaViolation(
                        code="INVALID_EXPRESSION",
                        message=f"Edge {index} ({edge.source} -> {edge.target}) condition: {err}",
                        severity="warning",
                        node_ids=[edge.source, edge.target],
                        context={"edge_index": index, "expression": edge.condition},
                    )
                )
    for node in schema.nodes:
        for hook_name, expression in (("onSuccess", node.on_success), ("onError", node.on_error)):
            if expression:
                for err in validate_expression(expression):
                    warnings.append(
                        SchemaViolation(
                            code="INVALID_EXPRESSION",
                            message=f"Node '{node.id}' {hook_name} hook: {err}",
                            severity="warning",
                            node_ids=[node.id],
                            context={"hook": hook_name, "expression": expression},
                        )
                    )

    # 6. Reachability and dead ends
    if schema.start_node_id in known_ids:
        reachable = _reachable_from(schema, schema.start_node_id)
        for node_id in node_ids:
            if node_id and node_id not in reachable:
                warnings.append(
                    SchemaViolation(
                        code="UNREACHABLE_NODE",
                        message=f"Node '{node_id}' cannot be reached from '{schema.start_node_id}'",
                        severity="warning",
                        node_ids=[node_id],
                    )
                )

    sources = {edge.source for edge in schema.edges}
    for node_id in dict.fromkeys(node_ids):
        if node_id and node_id != schema.end_node_id and node_id not in sources:
            warnings.append(
                SchemaViolation(
                    code="NO_OUTGOING_EDGE",
                    message=f"Node '{node_id}' has no outgoing edges and is not the end node",
                    severity="warning",
                    node_ids=[node_id],
                )
            )

    return ValidationResult(errors=errors, warnings=warnings)


def _reachable_from(schema: WorkflowSchema, start: str) -> set:
    adjacency: Dict[str, List[str]] = {}
    for edge in schema.edges:
        adjacency.setdefault(edge.source, []).append(edge.target)

    seen = {start}
    queue = deque([start])
    while queue:
        node_id = queue.popleft()
        for neighbor in adjacency.get(node_id, []):
            if neighbor not in seen:
                seen.add(neighbor)
                queue.append(neighbor)
    return seen


def ensure_valid_schema(
    schema: SchemaInput,
    allowed_task_types: Optional[Iterable[str]] = None,
) -> WorkflowSchema:
    """Parse and validate a schema, returning it or raising with every violation.

    Warnings are logged and do not fail validation.

    Raises:
        SchemaValidationError: If the schema is malformed or has any error-level violation
    """
    parsed = parse_schema(schema)
    result = validate_schema(parsed, allowed_task_types)

    for warning in result.warnings:
        logger.warning(f"Workflow schema warning {warning}")

    if not result.valid:
        raise SchemaValidationError(result.errors)
    return parsed
