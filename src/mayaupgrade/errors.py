"""
Error types raised by the upgrade engine.

Every failure the engine can surface maps onto one of these classes so that
callers (the executor, the CLI, tests) can react to a category rather than
to a message string.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, List, Optional


class ErrorCategory(str, Enum):
    """Categories used to decide whether a failed task may fall back."""

    VERSION_MISMATCH = "version-mismatch"
    NOT_FOUND = "not-found"
    VERIFY = "verify"
    TIMEOUT = "timeout"
    GENERIC = "generic"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ErrorCategory":
        if not value:
            return cls.GENERIC
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            raise ValueError(
                f"Unknown error category '{value}'. "
                f"Expected one of: {', '.join(c.value for c in cls)}."
            ) from exc


class UpgradeError(Exception):
    """Base class for all upgrade engine errors."""


class ErrorList(UpgradeError):
    """An error that carries every problem found during a validation pass."""

    def __init__(self, message: str, errors: Iterable[object]) -> None:
        self.errors: List[str] = [str(e) for e in errors]
        self.message = message
        super().__init__(self._render())

    def _render(self) -> str:
        if not self.errors:
            return self.message
        details = "; ".join(self.errors)
        return f"{self.message}: {details}"


class ConfigInvalidError(ErrorList):
    """The upgrade config failed one or more validation predicates."""


class BuilderError(ErrorList):
    """A builder was asked to build with missing or invalid inputs."""


class TemplateNotFoundError(UpgradeError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"CAS template '{name}' not found")


class RunTaskNotFoundError(UpgradeError):
    def __init__(self, name: str, namespace: str) -> None:
        self.name = name
        self.namespace = namespace
        super().__init__(f"Run task '{name}' not found in namespace '{namespace}'")


class InvalidResourceError(UpgradeError):
    """A run task was found but its spec could not be read."""

    def __init__(self, kind: str, name: str, reason: str) -> None:
        self.kind = kind
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid {kind} '{name}': {reason}")


class AmbiguousUpgradeResultError(UpgradeError):
    """More than one UpgradeResult matched a (job, item) label key."""

    def __init__(self, selector: str, candidates: List[str]) -> None:
        self.selector = selector
        self.candidates = list(candidates)
        super().__init__(
            f"More than one upgrade result matched selector '{selector}': "
            f"{', '.join(self.candidates)}"
        )


class RenderError(UpgradeError):
    """A task body could not be rendered against the value tree."""

    def __init__(self, task_name: str, reason: str) -> None:
        self.task_name = task_name
        self.reason = reason
        super().__init__(f"Failed to render task '{task_name}': {reason}")


class TaskExecutionError(UpgradeError):
    """A task failed while executing."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.GENERIC,
        task_name: Optional[str] = None,
        attempts: int = 1,
    ) -> None:
        self.category = category
        self.task_name = task_name
        self.attempts = attempts
        super().__init__(message)


class TaskSignalError(TaskExecutionError):
    """
    Raised on purpose by a template function (e.g. ``versionMismatchErr``)
    to signal a categorized failure from inside a task body.
    """


class VersionMismatchError(TaskSignalError):
    def __init__(self, message: str = "version mismatch") -> None:
        super().__init__(message, category=ErrorCategory.VERSION_MISMATCH)


class NotFoundSignalError(TaskSignalError):
    def __init__(self, message: str = "item is not found") -> None:
        super().__init__(message, category=ErrorCategory.NOT_FOUND)


class VerifyError(TaskSignalError):
    def __init__(self, message: str = "verification failed") -> None:
        super().__init__(message, category=ErrorCategory.VERIFY)


class UpdatePersistError(UpgradeError):
    """Writing task progress into an UpgradeResult failed."""

    def __init__(self, result_name: str, reason: str) -> None:
        self.result_name = result_name
        self.reason = reason
        super().__init__(f"Failed to update upgrade result '{result_name}': {reason}")


class ExecutorError(UpgradeError):
    """The executor cannot start, e.g. its pod identity is unknown."""


class UpgradeFailedError(UpgradeError):
    """One or more resources failed to upgrade."""

    def __init__(self, failures: List[Any], outcomes: Optional[List[Any]] = None) -> None:
        self.failures = list(failures)
        # Every resource attempted so far, failed or not.
        self.outcomes = list(outcomes) if outcomes is not None else list(self.failures)
        summary = ", ".join(f"{f.kind}/{f.namespace}/{f.name}: {f.error}" for f in self.failures)
        super().__init__(f"{len(self.failures)} resource(s) failed to upgrade: {summary}")
