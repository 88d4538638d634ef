"""Task Executor Registry

Maps task-type tags used in workflow schemas ("claude", "codex", ...) to
``TaskExecutor`` classes, and builds the per-node executor pool for a run.

Usage:
    @register_executor_type("claude")
    class ClaudeExecutor(TaskExecutor):
        ...

    pool = build_executor_pool(schema, config)
    await initialize_pool(pool)
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Dict, List, Type, TypeVar

from ..errors import TaskExecutionError
from .base import TaskExecutor

if TYPE_CHECKING:
    from ..config import BatonConfig
    from ..engine.schema import WorkflowSchema

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=TaskExecutor)

EXECUTOR_CLASSES: Dict[str, Type[TaskExecutor]] = {}


def register_executor_type(task_type: str) -> Callable[[Type[T]], Type[T]]:
    """Decorator to register a task executor class under a task-type tag."""

    def decorator(cls: Type[T]) -> Type[T]:
        if not task_type:
            raise ValueError("task_type cannot be empty")
        cls.task_type = task_type
        EXECUTOR_CLASSES[task_type] = cls
        logger.debug(f"Registered executor type: {task_type} ({cls.__name__})")
        return cls

    return decorator


def is_executor_type_registered(task_type: str) -> bool:
    return task_type in EXECUTOR_CLASSES


def list_executor_types() -> List[str]:
    return sorted(EXECUTOR_CLASSES)


def create_executor(task_type: str, node_id: str, config: "BatonConfig") -> TaskExecutor:
    """Instantiate the executor registered for ``task_type``.

    Raises:
        ValueError: If ``task_type`` is not registered
    """
    cls = EXECUTOR_CLASSES.get(task_type)
    if cls is None:
        raise ValueError(
            f"Unknown task type: {task_type}. Available types: {list_executor_types()}"
        )
    return cls.from_config(node_id, config)


def build_executor_pool(schema: "WorkflowSchema", config: "BatonConfig") -> Dict[str, TaskExecutor]:
    """Create one executor per node, keyed by node id.

    Each node gets its own instance so each keeps its own session.
    """
    pool: Dict[str, TaskExecutor] = {}
    for node in schema.nodes:
        pool[node.id] = create_executor(node.task_type, node.id, config)
    logger.info(f"Created {len(pool)} executor(s) for {len(schema.nodes)} node(s)")
    return pool


async def initialize_pool(pool: Dict[str, TaskExecutor]) -> None:
    """Initialise every executor's session concurrently.

    Raises:
        TaskExecutionError: If any executor fails to initialise
    """
    node_ids = list(pool)
    results = await asyncio.gather(
        *(pool[node_id].init_session() for node_id in node_ids),
        return_exceptions=True,
    )

    failures = []
    for node_id, result in zip(node_ids, results):
        if isinstance(result, BaseException):
            logger.error(f"Failed to initialise executor for node {node_id}: {result}")
            failures.append(f"{node_id}: {result}")

    if failures:
        raise TaskExecutionError(f"Executor initialisation failed for {'; '.join(failures)}")

    logger.info(f"Initialised {len(node_ids)} executor session(s)")
