from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from kubernetes import client

from .base import BaseCustomResource, ObjectMeta
from .const import CRD_GROUP, CRD_PLURAL_CASTEMPLATE, CRD_VERSION


@dataclass
class Config:
    """A named configuration item, as found in a CAS template's defaults."""

    name: str
    value: str = ""
    enabled: str = ""
    data: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        return cls(
            name=str(data.get("name", "")),
            value=_as_text(data.get("value")),
            enabled=_as_text(data.get("enabled")),
            data={str(k): _as_text(v) for k, v in (data.get("data") or {}).items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "value": self.value}
        if self.enabled:
            result["enabled"] = self.enabled
        if self.data:
            result["data"] = dict(self.data)
        return result


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class CASTemplate(BaseCustomResource):
    """
    A cluster-scoped upgrade recipe: an ordered list of run task names,
    default config, and optional output and fallback tasks.
    """

    group = CRD_GROUP
    version = CRD_VERSION
    plural = CRD_PLURAL_CASTEMPLATE
    kind = "CASTemplate"
    namespaced = False

    def __init__(
        self,
        metadata: ObjectMeta,
        task_namespace: str = "",
        defaults: Optional[List[Config]] = None,
        tasks: Optional[List[str]] = None,
        output_task: str = "",
        fallback: str = "",
        api: Optional[client.CustomObjectsApi] = None,
    ) -> None:
        super().__init__(metadata, api)
        self.task_namespace = task_namespace
        self.defaults = list(defaults or [])
        self.tasks = list(tasks or [])
        self.output_task = output_task
        self.fallback = fallback

    @property
    def labels(self) -> Dict[str, str]:
        return dict(self.metadata.labels)

    def load_body(self, data: Dict[str, Any]) -> None:
        spec = data.get("spec") or {}
        self.task_namespace = spec.get("taskNamespace", "") or ""
        self.defaults = [Config.from_dict(c) for c in spec.get("defaultConfig") or []]
        self.tasks = [str(t).strip() for t in (spec.get("run") or {}).get("tasks") or []]
        self.output_task = (spec.get("output") or "").strip()
        self.fallback = (spec.get("fallback") or "").strip()

    def body_to_dict(self) -> Dict[str, Any]:
        spec: Dict[str, Any] = {
            "taskNamespace": self.task_namespace,
            "defaultConfig": [c.to_dict() for c in self.defaults],
            "run": {"tasks": list(self.tasks)},
        }
        if self.output_task:
            spec["output"] = self.output_task
        if self.fallback:
            spec["fallback"] = self.fallback
        return {"spec": spec}
