"""Baton exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .engine.schema import SchemaViolation


class BatonError(Exception):
    """Base exception for baton errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SchemaValidationError(BatonError):
    """Workflow schema is malformed. Carries every violation found."""

    def __init__(self, violations: List["SchemaViolation"]):
        self.violations = list(violations)
        details = "; ".join(v.message for v in self.violations)
        super().__init__(
            f"Workflow schema has {len(self.violations)} violation(s): {details}"
        )


class ExpressionEvaluationError(BatonError):
    """Raised when a condition or hook expression cannot be evaluated."""

    pass


class TaskExecutionError(BatonError):
    """A task executor failed to produce output."""

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        stderr: Optional[str] = None,
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class EngineInternalError(BatonError):
    """Unexpected failure while driving a workflow run."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
