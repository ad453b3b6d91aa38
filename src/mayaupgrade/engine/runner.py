"""
Runs the tasks of one CAS template, in order, against one value tree.

Each task moves through these states:

    Pending -> Rendered -> Running -> Succeeded
                             |
                             +-> Retrying -> Failed -> SucceededWithFallback
    Pending -> Failed (render error)

The group stops at the first failed task unless that task is non-fatal.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import yaml
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from ..crds.runtask import RunTask
from ..crds.upgraderesult import STATUS_FAILED
from ..errors import (
    ErrorCategory,
    RenderError,
    TaskExecutionError,
    TaskSignalError,
    UpdatePersistError,
)
from ..tasks.executor import TaskExecutor, TaskOutput
from ..utils.time import utc_now
from . import values as v
from .template import TaskRenderer

if TYPE_CHECKING:
    from ..upgrade.result import UpgradeResultRegistry


class TaskState(str, Enum):
    PENDING = "Pending"
    RENDERED = "Rendered"
    RUNNING = "Running"
    RETRYING = "Retrying"
    SUCCEEDED = "Succeeded"
    SUCCEEDED_WITH_FALLBACK = "SucceededWithFallback"
    FAILED = "Failed"


DEFAULT_FALLBACK_TRIGGER = ErrorCategory.VERSION_MISMATCH

TaskFailure = (RenderError, TaskExecutionError, UpdatePersistError)


@dataclass
class TaskRun:
    """Book-keeping for one task of the group."""

    task: RunTask
    state: TaskState = TaskState.PENDING
    attempts: int = 0
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    message: str = ""
    error: Optional[Exception] = None

    @property
    def name(self) -> str:
        return self.task.name

    @property
    def retries(self) -> int:
        return max(self.attempts - 1, 0)


class TaskGroupRunner:
    def __init__(
        self,
        values: Dict[str, Any],
        renderer: TaskRenderer,
        executor: TaskExecutor,
        registry: Optional["UpgradeResultRegistry"] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.values = values
        self.renderer = renderer
        self.executor = executor
        self.registry = registry
        self.logger = logger or logging.getLogger(__name__)
        self.runs: List[TaskRun] = []
        self.output_task: Optional[RunTask] = None
        self.fallback_task: Optional[RunTask] = None

    def add_task(self, task: RunTask) -> None:
        self.runs.append(TaskRun(task=task))

    def set_output(self, task: RunTask) -> None:
        self.output_task = task

    def set_fallback(self, task: RunTask) -> None:
        self.fallback_task = task

    @property
    def fallback_trigger(self) -> Optional[ErrorCategory]:
        if self.fallback_task is None:
            return None
        return self.fallback_task.fallback_on or DEFAULT_FALLBACK_TRIGGER

    def states(self) -> Dict[str, TaskState]:
        return {run.name: run.state for run in self.runs}

    async def run(self) -> str:
        """
        Runs every task and renders the output task.

        Returns:
            The rendered output task, or "" when there is none.

        Raises:
            RenderError, TaskExecutionError, UpdatePersistError: For the
                first fatal task failure.
        """
        for run in self.runs:
            await self._run_task(run)
            if run.state == TaskState.FAILED:
                if not run.task.non_fatal:
                    raise run.error
                self.logger.warning(
                    f"Non-fatal task '{run.name}' failed, continuing: {run.error}"
                )

        if self.output_task is None:
            return ""
        return await asyncio.to_thread(
            self.renderer.render, self.output_task.name, self.output_task.task, self.values
        )

    async def _run_task(self, run: TaskRun) -> None:
        run.start_time = utc_now()
        try:
            output = await self._attempt(run.task, run)
            self._merge(run.task, output)
        except TaskFailure as e:
            run.error = e
            await self._handle_failure(run)
        else:
            run.state = TaskState.SUCCEEDED
            run.message = "task completed"
            if run.retries:
                run.message += f" after {run.retries} retr{'y' if run.retries == 1 else 'ies'}"
            self.logger.info(f"Task '{run.name}' succeeded")

        run.end_time = utc_now()
        await self._record(run)

    async def _attempt(self, task: RunTask, run: Optional[TaskRun] = None) -> TaskOutput:
        """Renders a task, then executes it under its retry policy."""
        body = await asyncio.to_thread(self.renderer.render, task.name, task.task, self.values)
        if run is not None:
            run.state = TaskState.RENDERED

        retrying = AsyncRetrying(
            stop=stop_after_attempt(task.retries + 1),
            wait=wait_fixed(task.retry_interval.total_seconds()),
            retry=retry_if_exception_type(TaskExecutionError),
            before_sleep=self._before_retry(task, run),
            reraise=True,
        )
        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    if run is not None:
                        run.attempts = attempts
                        run.state = TaskState.RUNNING
                    output = await self._execute_once(task, body)
        except TaskExecutionError as e:
            e.attempts = attempts
            e.task_name = e.task_name or task.name
            raise
        return output

    def _before_retry(self, task: RunTask, run: Optional[TaskRun]):
        def before_sleep(state: RetryCallState) -> None:
            if run is not None:
                run.state = TaskState.RETRYING
            error = state.outcome.exception() if state.outcome else None
            self.logger.warning(
                f"Task '{task.name}' attempt {state.attempt_number}/{task.retries + 1} "
                f"failed, retrying: {error}"
            )

        return before_sleep

    async def _execute_once(self, task: RunTask, body: str) -> TaskOutput:
        call = self.executor.execute(task.name, body)
        if task.timeout is None:
            return await call
        seconds = task.timeout.total_seconds()
        try:
            return await asyncio.wait_for(call, timeout=seconds)
        except asyncio.TimeoutError as e:
            raise TaskExecutionError(
                f"task timed out after {seconds:g}s",
                category=ErrorCategory.TIMEOUT,
                task_name=task.name,
            ) from e

    def _fallback_eligible(self, error: Exception) -> bool:
        trigger = self.fallback_trigger
        if trigger is None or not isinstance(error, TaskExecutionError):
            return False
        return error.category == trigger

    async def _handle_failure(self, run: TaskRun) -> None:
        error = run.error
        if isinstance(error, TaskSignalError):
            run.attempts = max(run.attempts, 1)

        if not self._fallback_eligible(error):
            run.state = TaskState.FAILED
            run.message = str(error)
            self.logger.error(f"Task '{run.name}' failed: {error}")
            return

        fallback = self.fallback_task
        self.logger.warning(
            f"Task '{run.name}' failed with '{error.category.value}', "
            f"running fallback task '{fallback.name}'"
        )
        try:
            output = await self._attempt(fallback)
            self._merge(fallback, output)
        except TaskFailure as e:
            run.state = TaskState.FAILED
            run.error = e
            run.message = f"fallback task '{fallback.name}' failed: {e}"
            self.logger.error(f"Task '{run.name}' failed, fallback did not recover it: {e}")
            return

        run.state = TaskState.SUCCEEDED_WITH_FALLBACK
        run.message = f"recovered by fallback task '{fallback.name}': {error}"
        self.logger.info(f"Task '{run.name}' recovered by fallback task '{fallback.name}'")

    def _merge(self, task: RunTask, output: TaskOutput) -> None:
        """Stores a task's result and applies its post extractions."""
        result = output.result
        document = result
        if isinstance(result, (str, bytes)):
            try:
                document = yaml.safe_load(result)
            except yaml.YAMLError:
                document = None

        self.values.setdefault(v.KEY_TASK_RESULT, {})[task.name] = result
        if isinstance(document, list):
            self.values.setdefault(v.KEY_LIST_ITEMS, {})[task.name] = document

        for extraction in [*task.post, *output.extractions]:
            try:
                value = v.read_path(document, extraction.source) if document is not None else ""
                v.set_nested(self.values, extraction.destination, value)
            except ValueError as e:
                raise TaskExecutionError(
                    f"post extraction '{extraction.source}' -> '{extraction.destination}' failed: {e}",
                    task_name=task.name,
                ) from e

    async def _record(self, run: TaskRun) -> None:
        """Writes the terminal state of a task into the UpgradeResult."""
        if self.registry is None:
            return
        if run.state != TaskState.FAILED and not run.task.update_result:
            return

        item = self.values.get(v.KEY_UPGRADE_ITEM) or {}
        name = item.get("upgradeResultName")
        namespace = item.get("upgradeResultNamespace")
        if not name or not namespace:
            return

        changes = {
            "status": STATUS_FAILED if run.state == TaskState.FAILED else run.state.value,
            "message": run.message,
            "last_error": str(run.error) if run.error is not None else "",
            "start_time": run.start_time,
            "end_time": run.end_time,
            "last_transition_time": run.end_time,
            "retries": run.retries,
        }
        try:
            await asyncio.to_thread(self.registry.update_task, name, namespace, run.name, **changes)
        except UpdatePersistError as e:
            if run.state == TaskState.FAILED:
                self.logger.error(f"Could not record failure of task '{run.name}': {e}")
                return
            run.state = TaskState.FAILED
            run.error = e
            run.message = str(e)
            self.logger.error(f"Task '{run.name}' failed to record its progress: {e}")
