from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from kubernetes import client

from ..upgrade.config import DataItem, ResourceRef
from .base import BaseCustomResource, ObjectMeta
from .const import CRD_GROUP, CRD_PLURAL_UPGRADERESULT, CRD_VERSION

STATUS_SUCCEEDED = "Succeeded"
STATUS_SUCCEEDED_WITH_FALLBACK = "SucceededWithFallback"
STATUS_FAILED = "Failed"

SUCCEEDED_STATUSES = (STATUS_SUCCEEDED, STATUS_SUCCEEDED_WITH_FALLBACK)

_TASK_KEYS = {
    "name": "name",
    "status": "status",
    "message": "message",
    "last_error": "lastError",
    "last_transition_time": "lastTransitionTime",
    "start_time": "startTime",
    "end_time": "endTime",
    "retries": "retries",
}


@dataclass
class TaskProgress:
    """Progress of one run task, as persisted in an UpgradeResult."""

    name: str
    status: str = ""
    message: str = ""
    last_error: str = ""
    last_transition_time: str = ""
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    retries: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskProgress":
        kwargs = {attr: data[key] for attr, key in _TASK_KEYS.items() if data.get(key) is not None}
        kwargs["retries"] = int(kwargs.get("retries", 0))
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "status": self.status, "retries": self.retries}
        for attr, key in _TASK_KEYS.items():
            value = getattr(self, attr)
            if key not in result and value:
                result[key] = value
        return result

    def apply(self, changes: Dict[str, Any]) -> None:
        """Overwrites the given fields; the task name can not change."""
        for attr, value in changes.items():
            if attr == "name":
                continue
            if attr not in _TASK_KEYS:
                raise ValueError(f"Unknown task progress field '{attr}'")
            setattr(self, attr, int(value) if attr == "retries" else value)


@dataclass
class ResourceState:
    status: str = ""
    message: str = ""
    last_transition_time: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ResourceState":
        data = data or {}
        return cls(
            status=data.get("status", ""),
            message=data.get("message", ""),
            last_transition_time=data.get("lastTransitionTime", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "lastTransitionTime": self.last_transition_time,
        }


@dataclass
class UpgradeResultStatus:
    desired_count: int = 0
    actual_count: int = 0
    failed_count: int = 0
    pre_state: ResourceState = field(default_factory=ResourceState)
    post_state: ResourceState = field(default_factory=ResourceState)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UpgradeResultStatus":
        data = data or {}
        resource = data.get("resource") or {}
        return cls(
            desired_count=int(data.get("desiredCount", 0)),
            actual_count=int(data.get("actualCount", 0)),
            failed_count=int(data.get("failedCount", 0)),
            pre_state=ResourceState.from_dict(resource.get("preState")),
            post_state=ResourceState.from_dict(resource.get("postState")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "desiredCount": self.desired_count,
            "actualCount": self.actual_count,
            "failedCount": self.failed_count,
            "resource": {
                "preState": self.pre_state.to_dict(),
                "postState": self.post_state.to_dict(),
            },
        }


class UpgradeResult(BaseCustomResource):
    """
    Per (job, item) record of upgrade progress.

    Unlike most custom resources this one has no ``spec``: ``config``,
    ``tasks`` and ``status`` sit at the top level of the object.
    """

    group = CRD_GROUP
    version = CRD_VERSION
    plural = CRD_PLURAL_UPGRADERESULT
    kind = "UpgradeResult"
    namespaced = True

    def __init__(
        self,
        metadata: ObjectMeta,
        resource: Optional[ResourceRef] = None,
        data: Optional[List[DataItem]] = None,
        tasks: Optional[List[TaskProgress]] = None,
        status: Optional[UpgradeResultStatus] = None,
        api: Optional[client.CustomObjectsApi] = None,
    ) -> None:
        super().__init__(metadata, api)
        self.resource = resource
        self.data = list(data or [])
        self.tasks = list(tasks or [])
        self.status = status or UpgradeResultStatus(desired_count=len(self.tasks))

    @property
    def name(self) -> str:
        return self.metadata.name or ""

    @property
    def namespace(self) -> str:
        return self.metadata.namespace or ""

    def task_names(self) -> List[str]:
        return [t.name for t in self.tasks]

    def find_task(self, name: str) -> Optional[TaskProgress]:
        for task in self.tasks:
            if task.name == name:
                return task
        return None

    def recount(self) -> None:
        """Recomputes the aggregate counters from the task list."""
        self.status.desired_count = len(self.tasks)
        self.status.actual_count = sum(1 for t in self.tasks if t.status in SUCCEEDED_STATUSES)
        self.status.failed_count = sum(1 for t in self.tasks if t.status == STATUS_FAILED)

    def load_body(self, data: Dict[str, Any]) -> None:
        config = data.get("config") or {}
        details = config.get("resourceDetails")
        self.resource = ResourceRef.from_dict(details) if details else None
        self.data = [DataItem.from_dict(d) for d in config.get("data") or []]
        self.tasks = [TaskProgress.from_dict(t) for t in data.get("tasks") or []]
        self.status = UpgradeResultStatus.from_dict(data.get("status"))

    def body_to_dict(self) -> Dict[str, Any]:
        config: Dict[str, Any] = {"data": [d.to_dict() for d in self.data]}
        if self.resource is not None:
            config["resourceDetails"] = self.resource.to_dict()
        return {
            "config": config,
            "tasks": [t.to_dict() for t in self.tasks],
            "status": self.status.to_dict(),
        }
