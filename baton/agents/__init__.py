"""Task executors.

Importing this package registers the built-in CLI executors.
"""

from .base import ExecuteOptions, TaskExecutor, run_cli
from .registry import (
    build_executor_pool,
    create_executor,
    initialize_pool,
    is_executor_type_registered,
    list_executor_types,
    register_executor_type,
)

# Import concrete executors to trigger registration
from . import claude  # noqa: F401
from . import codex  # noqa: F401
from . import gemini  # noqa: F401

__all__ = [
    "ExecuteOptions",
    "TaskExecutor",
    "run_cli",
    "build_executor_pool",
    "create_executor",
    "initialize_pool",
    "is_executor_type_registered",
    "list_executor_types",
    "register_executor_type",
]
