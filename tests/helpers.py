import copy
import itertools
from typing import Any, Dict, List, Optional, Tuple, Union

from kubernetes import client

from mayaupgrade.crds.const import (
    CRD_GROUP,
    CRD_PLURAL_CASTEMPLATE,
    CRD_PLURAL_RUNTASK,
    CRD_PLURAL_UPGRADERESULT,
    CRD_VERSION,
)
from mayaupgrade.tasks.executor import TaskOutput

TASK_NAMESPACE = "openebs"
JOB_NAMESPACE = "upgrade"
JOB_NAME = "upgrade-job"
POD_NAME = "upgrade-job-x7k2p"

Key = Tuple[str, str, str]


def _not_found(name: str) -> client.ApiException:
    return client.ApiException(status=404, reason=f"Not Found: {name}")


def _matches(labels: Dict[str, str], selector: Optional[str]) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key.strip()) != value.strip():
            return False
    return True


class FakeCustomObjectsApi:
    """
    In-memory stand-in for client.CustomObjectsApi.

    Supports equality label selectors, generateName, and resourceVersion
    conflicts on replace. Every call is recorded in ``calls``.
    """

    def __init__(self) -> None:
        self.objects: Dict[Key, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str]] = []
        self._versions = itertools.count(1)
        self._suffixes = itertools.count(1)
        self.fail_next_replace: Optional[client.ApiException] = None

    # -- helpers for tests -------------------------------------------------

    def add(self, plural: str, body: Dict[str, Any]) -> Dict[str, Any]:
        body = copy.deepcopy(body)
        meta = body.setdefault("metadata", {})
        meta.setdefault("resourceVersion", str(next(self._versions)))
        key = (plural, meta.get("namespace", ""), meta["name"])
        self.objects[key] = body
        return copy.deepcopy(body)

    def items(self, plural: str, namespace: str = "") -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(obj)
            for (p, ns, _), obj in sorted(self.objects.items())
            if p == plural and (not namespace or ns == namespace)
        ]

    def writes(self) -> List[Tuple[str, str]]:
        return [c for c in self.calls if c[0].startswith(("create", "replace"))]

    # -- CustomObjectsApi surface ------------------------------------------

    def _get(self, plural: str, namespace: str, name: str) -> Dict[str, Any]:
        try:
            return copy.deepcopy(self.objects[(plural, namespace, name)])
        except KeyError:
            raise _not_found(name)

    def get_namespaced_custom_object(self, group, version, namespace, plural, name, **kwargs):
        self.calls.append(("get_namespaced_custom_object", plural))
        return self._get(plural, namespace, name)

    def get_cluster_custom_object(self, group, version, plural, name, **kwargs):
        self.calls.append(("get_cluster_custom_object", plural))
        return self._get(plural, "", name)

    def list_namespaced_custom_object(self, group, version, namespace, plural, label_selector=None, **kwargs):
        self.calls.append(("list_namespaced_custom_object", plural))
        items = [
            obj
            for obj in self.items(plural, namespace)
            if _matches(obj["metadata"].get("labels") or {}, label_selector)
        ]
        return {"items": items}

    def list_cluster_custom_object(self, group, version, plural, label_selector=None, **kwargs):
        self.calls.append(("list_cluster_custom_object", plural))
        items = [
            obj
            for obj in self.items(plural)
            if _matches(obj["metadata"].get("labels") or {}, label_selector)
        ]
        return {"items": items}

    def _create(self, plural: str, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        body = copy.deepcopy(body)
        meta = body.setdefault("metadata", {})
        if not meta.get("name"):
            meta["name"] = f"{meta.pop('generateName', '')}{next(self._suffixes):05d}"
        if namespace:
            meta["namespace"] = namespace
        if (plural, namespace, meta["name"]) in self.objects:
            raise client.ApiException(status=409, reason="AlreadyExists")
        meta["uid"] = f"uid-{meta['name']}"
        meta["resourceVersion"] = str(next(self._versions))
        self.objects[(plural, namespace, meta["name"])] = body
        return copy.deepcopy(body)

    def create_namespaced_custom_object(self, group, version, namespace, plural, body, **kwargs):
        self.calls.append(("create_namespaced_custom_object", plural))
        return self._create(plural, namespace, body)

    def create_cluster_custom_object(self, group, version, plural, body, **kwargs):
        self.calls.append(("create_cluster_custom_object", plural))
        return self._create(plural, "", body)

    def _replace(self, plural: str, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_next_replace is not None:
            error, self.fail_next_replace = self.fail_next_replace, None
            raise error
        current = self._get(plural, namespace, name)
        sent = body.get("metadata", {}).get("resourceVersion")
        if sent and sent != current["metadata"]["resourceVersion"]:
            raise client.ApiException(status=409, reason="Conflict")
        body = copy.deepcopy(body)
        body["metadata"]["resourceVersion"] = str(next(self._versions))
        self.objects[(plural, namespace, name)] = body
        return copy.deepcopy(body)

    def replace_namespaced_custom_object(self, group, version, namespace, plural, name, body, **kwargs):
        self.calls.append(("replace_namespaced_custom_object", plural))
        return self._replace(plural, namespace, name, body)

    def replace_cluster_custom_object(self, group, version, plural, name, body, **kwargs):
        self.calls.append(("replace_cluster_custom_object", plural))
        return self._replace(plural, "", name, body)


def add_cas_template(
    api: FakeCustomObjectsApi,
    name: str,
    tasks: List[str],
    output: str = "",
    fallback: str = "",
    defaults: Optional[List[Dict[str, Any]]] = None,
    labels: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    spec: Dict[str, Any] = {
        "taskNamespace": TASK_NAMESPACE,
        "defaultConfig": defaults or [],
        "run": {"tasks": tasks},
    }
    if output:
        spec["output"] = output
    if fallback:
        spec["fallback"] = fallback
    return api.add(
        CRD_PLURAL_CASTEMPLATE,
        {
            "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
            "kind": "CASTemplate",
            "metadata": {"name": name, "labels": labels or {}},
            "spec": spec,
        },
    )


def add_run_task(api: FakeCustomObjectsApi, name: str, task: str = "", **spec: Any) -> Dict[str, Any]:
    return api.add(
        CRD_PLURAL_RUNTASK,
        {
            "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
            "kind": "RunTask",
            "metadata": {"name": name, "namespace": TASK_NAMESPACE},
            "spec": {"task": task or f"action: noop\nobject:\n  task: {name}\n", **spec},
        },
    )


def upgrade_results(api: FakeCustomObjectsApi) -> List[Dict[str, Any]]:
    return api.items(CRD_PLURAL_UPGRADERESULT, JOB_NAMESPACE)


Outcome = Union[Exception, Any]


class ScriptedExecutor:
    """
    Task executor that replays scripted outcomes per task name. An outcome
    that is an exception is raised; anything else is returned as the result.
    Tasks without a script succeed with their rendered body as the result.
    """

    def __init__(self, script: Optional[Dict[str, List[Outcome]]] = None) -> None:
        self.script = {name: list(outcomes) for name, outcomes in (script or {}).items()}
        self.calls: List[Tuple[str, str]] = []

    def executed(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def execute(self, task_name: str, body: str) -> TaskOutput:
        self.calls.append((task_name, body))
        outcomes = self.script.get(task_name)
        if not outcomes:
            return TaskOutput(result=body)
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, TaskOutput):
            return outcome
        return TaskOutput(result=outcome)


def owner_pod(owner_count: int = 1) -> client.V1Pod:
    owners = [
        client.V1OwnerReference(
            api_version="batch/v1",
            kind="Job",
            name=JOB_NAME if i == 0 else f"{JOB_NAME}-{i}",
            uid=f"job-uid-{i}",
        )
        for i in range(owner_count)
    ]
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=POD_NAME, namespace=JOB_NAMESPACE, owner_references=owners)
    )
