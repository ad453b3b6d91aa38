import logging
from typing import Any, Callable, Dict

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from ..errors import RenderError, TaskSignalError, UpdatePersistError

logger = logging.getLogger(__name__)

# Failures raised from inside template functions that mean "bad template",
# as opposed to the categorized signals templates raise on purpose.
_RENDER_FAILURES = (
    TemplateError,
    TypeError,
    ValueError,
    KeyError,
    IndexError,
    AttributeError,
    ZeroDivisionError,
    RuntimeError,
)


class TaskRenderer:
    """
    Renders run task bodies in a sandbox.

    Only the value tree and the registered functions are visible to a body.
    Undefined names are errors rather than empty strings.
    """

    def __init__(self, functions: Dict[str, Callable[..., Any]]) -> None:
        self.env = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self.env.filters.update(functions)
        self.env.globals.update(functions)

    def render(self, task_name: str, body: str, values: Dict[str, Any]) -> str:
        """
        Raises:
            RenderError: If the body is not a valid template or fails to evaluate.
            TaskSignalError: If the body raised a categorized error on purpose.
            UpdatePersistError: If the body failed to write the UpgradeResult.
        """
        try:
            rendered = self.env.from_string(body).render(values)
        except (TaskSignalError, UpdatePersistError) as e:
            if isinstance(e, TaskSignalError):
                e.task_name = task_name
            raise
        except _RENDER_FAILURES as e:
            raise RenderError(task_name, str(e) or type(e).__name__) from e
        logger.debug(f"Rendered task '{task_name}':\n{rendered}")
        return rendered
