from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from kubernetes import client

from ..errors import ErrorCategory
from ..utils.time import optional_duration, parse_duration
from .base import BaseCustomResource, ObjectMeta
from .const import CRD_GROUP, CRD_PLURAL_RUNTASK, CRD_VERSION


@dataclass(frozen=True)
class PostExtraction:
    """Copies a value out of a task's result into the engine's value tree."""

    source: str
    destination: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PostExtraction":
        source = str(data.get("from", "")).strip()
        destination = str(data.get("to", "")).strip()
        if not destination:
            raise ValueError(f"Post extraction {data} is missing 'to'")
        return cls(source=source, destination=destination)

    def to_dict(self) -> Dict[str, str]:
        return {"from": self.source, "to": self.destination}


class RunTask(BaseCustomResource):
    """
    A single addressable unit of work referenced by a CAS template.

    ``task`` is a template body; everything else tells the engine how to
    run it (retries, timeout, post extractions, fallback trigger).
    """

    group = CRD_GROUP
    version = CRD_VERSION
    plural = CRD_PLURAL_RUNTASK
    kind = "RunTask"
    namespaced = True

    def __init__(
        self,
        metadata: ObjectMeta,
        task: str = "",
        retries: int = 0,
        retry_interval: Optional[timedelta] = None,
        timeout: Optional[timedelta] = None,
        post: Optional[List[PostExtraction]] = None,
        fallback_on: Optional[ErrorCategory] = None,
        non_fatal: bool = False,
        update_result: bool = True,
        api: Optional[client.CustomObjectsApi] = None,
    ) -> None:
        super().__init__(metadata, api)
        if retries < 0:
            raise ValueError(f"Run task '{metadata.name}' has negative retries: {retries}")
        self.task = task
        self.retries = retries
        self.retry_interval = retry_interval or timedelta(0)
        self.timeout = timeout
        self.post = list(post or [])
        self.fallback_on = fallback_on
        self.non_fatal = non_fatal
        self.update_result = update_result

    @property
    def name(self) -> str:
        return self.metadata.name or ""

    def load_body(self, data: Dict[str, Any]) -> None:
        spec = data.get("spec") or {}
        retries = int(spec.get("retries") or 0)
        if retries < 0:
            raise ValueError(f"Run task '{self.metadata.name}' has negative retries: {retries}")
        self.task = spec.get("task") or ""
        self.retries = retries
        self.retry_interval = parse_duration(spec.get("retryInterval"))
        self.timeout = optional_duration(spec.get("timeout"))
        self.post = [PostExtraction.from_dict(p) for p in spec.get("post") or []]
        fallback_on = spec.get("fallbackOn")
        self.fallback_on = ErrorCategory.parse(fallback_on) if fallback_on else None
        self.non_fatal = bool(spec.get("nonFatal", False))
        self.update_result = bool(spec.get("updateResult", True))

    def body_to_dict(self) -> Dict[str, Any]:
        spec: Dict[str, Any] = {
            "task": self.task,
            "retries": self.retries,
            "nonFatal": self.non_fatal,
            "updateResult": self.update_result,
        }
        if self.retry_interval:
            spec["retryInterval"] = f"{self.retry_interval.total_seconds():g}s"
        if self.timeout is not None:
            spec["timeout"] = f"{self.timeout.total_seconds():g}s"
        if self.post:
            spec["post"] = [p.to_dict() for p in self.post]
        if self.fallback_on is not None:
            spec["fallbackOn"] = self.fallback_on.value
        return {"spec": spec}
