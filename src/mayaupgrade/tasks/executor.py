"""
Task executors run rendered task bodies.

The engine only depends on the ``TaskExecutor`` protocol. The default
``KubernetesTaskExecutor`` reads a rendered body as a YAML action document:

    action: patch
    apiVersion: openebs.io/v1alpha1
    kind: StoragePoolClaim
    name: sparse-claim
    object:
      metadata:
        labels:
          openebs.io/version: 1.0.0

Supported actions are get, list, create, patch, replace, delete, exec and
noop. ``exec`` runs ``command`` in ``pod`` (optionally ``container``).
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import yaml
from kubernetes import client
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from urllib3.exceptions import HTTPError
from websocket import WebSocketException

from ..crds.runtask import PostExtraction
from ..errors import ErrorCategory, TaskExecutionError
from .exec import exec_in_pod

logger = logging.getLogger(__name__)

ACTIONS = ("get", "list", "create", "patch", "replace", "delete", "exec", "noop")


@dataclass
class TaskOutput:
    """
    What a task executor hands back: the result document, plus extractions
    the executor wants applied on top of the run task's own ``post`` list.
    """

    result: Any = None
    extractions: List[PostExtraction] = field(default_factory=list)


class TaskExecutor(Protocol):
    async def execute(self, task_name: str, body: str) -> TaskOutput:
        """
        Raises:
            TaskExecutionError: If the task failed.
        """
        ...


class KubernetesTaskExecutor:
    """Executes action documents against the cluster."""

    def __init__(self, api_client: Optional[client.ApiClient] = None) -> None:
        self._api_client = api_client
        self._dynamic: Optional[DynamicClient] = None
        self._core_v1: Optional[client.CoreV1Api] = None

    @property
    def api_client(self) -> client.ApiClient:
        if self._api_client is None:
            self._api_client = client.ApiClient()
        return self._api_client

    @property
    def dynamic(self) -> DynamicClient:
        # Building the dynamic client runs API discovery, so delay it until needed.
        if self._dynamic is None:
            self._dynamic = DynamicClient(self.api_client)
        return self._dynamic

    @property
    def core_v1(self) -> client.CoreV1Api:
        if self._core_v1 is None:
            self._core_v1 = client.CoreV1Api(self.api_client)
        return self._core_v1

    async def execute(self, task_name: str, body: str) -> TaskOutput:
        return await asyncio.to_thread(self.execute_sync, task_name, body)

    def execute_sync(self, task_name: str, body: str) -> TaskOutput:
        document = parse_action(task_name, body)
        action = document.get("action", "noop")
        try:
            result = getattr(self, f"_do_{action}")(document)
        except ResourceNotFoundError as e:
            raise TaskExecutionError(
                f"unknown resource {document.get('apiVersion')}/{document.get('kind')}: {e}",
                category=ErrorCategory.NOT_FOUND,
                task_name=task_name,
            ) from e
        except TaskExecutionError as e:
            e.task_name = task_name
            raise
        except client.ApiException as e:
            category = ErrorCategory.NOT_FOUND if e.status == 404 else ErrorCategory.GENERIC
            raise TaskExecutionError(
                f"{action} failed: {e.status} {e.reason}",
                category=category,
                task_name=task_name,
            ) from e
        except (HTTPError, WebSocketException, OSError, ValueError) as e:
            raise TaskExecutionError(
                f"{action} failed: {type(e).__name__}: {e}",
                task_name=task_name,
            ) from e
        logger.debug(f"Task '{task_name}' action '{action}' completed")
        return TaskOutput(result=result)

    def _resource(self, document: Dict[str, Any]) -> Any:
        return self.dynamic.resources.get(
            api_version=document["apiVersion"], kind=document["kind"]
        )

    @staticmethod
    def _target(document: Dict[str, Any]) -> Dict[str, Any]:
        target: Dict[str, Any] = {}
        if document.get("name"):
            target["name"] = document["name"]
        if document.get("namespace"):
            target["namespace"] = document["namespace"]
        return target

    def _do_noop(self, document: Dict[str, Any]) -> Any:
        return document.get("object")

    def _do_get(self, document: Dict[str, Any]) -> Any:
        return self._resource(document).get(**self._target(document)).to_dict()

    def _do_list(self, document: Dict[str, Any]) -> Any:
        kwargs: Dict[str, Any] = {}
        if document.get("namespace"):
            kwargs["namespace"] = document["namespace"]
        if document.get("labelSelector"):
            kwargs["label_selector"] = document["labelSelector"]
        return self._resource(document).get(**kwargs).to_dict()

    def _do_create(self, document: Dict[str, Any]) -> Any:
        kwargs = {"body": document.get("object") or {}}
        if document.get("namespace"):
            kwargs["namespace"] = document["namespace"]
        return self._resource(document).create(**kwargs).to_dict()

    def _do_patch(self, document: Dict[str, Any]) -> Any:
        return (
            self._resource(document)
            .patch(
                body=document.get("object") or {},
                content_type="application/merge-patch+json",
                **self._target(document),
            )
            .to_dict()
        )

    def _do_replace(self, document: Dict[str, Any]) -> Any:
        return (
            self._resource(document)
            .replace(body=document.get("object") or {}, **self._target(document))
            .to_dict()
        )

    def _do_delete(self, document: Dict[str, Any]) -> Any:
        response = self._resource(document).delete(**self._target(document))
        return response.to_dict() if hasattr(response, "to_dict") else response

    def _do_exec(self, document: Dict[str, Any]) -> Any:
        result = exec_in_pod(
            self.core_v1,
            document["pod"],
            document["namespace"],
            document["command"],
            container=document.get("container"),
        )
        if result.returncode != 0:
            raise TaskExecutionError(
                f"command exited with {result.returncode}: {result.stderr.strip()}"
            )
        return result.to_dict()


def parse_action(task_name: str, body: str) -> Dict[str, Any]:
    """Parses and checks a rendered action document. A blank body is a noop."""
    try:
        document = yaml.safe_load(body) if body.strip() else {"action": "noop"}
    except yaml.YAMLError as e:
        raise TaskExecutionError(f"invalid task body: {e}", task_name=task_name) from e
    if not isinstance(document, dict):
        raise TaskExecutionError("task body must be a mapping", task_name=task_name)

    action = document.setdefault("action", "noop")
    if action not in ACTIONS:
        raise TaskExecutionError(
            f"unknown action '{action}', expected one of: {', '.join(ACTIONS)}",
            task_name=task_name,
        )

    required = {
        "get": ("apiVersion", "kind", "name"),
        "list": ("apiVersion", "kind"),
        "create": ("apiVersion", "kind", "object"),
        "patch": ("apiVersion", "kind", "name", "object"),
        "replace": ("apiVersion", "kind", "name", "object"),
        "delete": ("apiVersion", "kind", "name"),
        "exec": ("pod", "namespace", "command"),
        "noop": (),
    }[action]
    missing = [key for key in required if not document.get(key)]
    if missing:
        raise TaskExecutionError(
            f"action '{action}' is missing: {', '.join(missing)}", task_name=task_name
        )
    return document
