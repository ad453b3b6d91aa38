"""
Get-or-create and progress updates for UpgradeResult records.

One record exists per (upgrade job, target resource). It is found through
four labels, and it is owned by the job so that it is garbage collected
together with it.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from kubernetes import client

from ..crds.base import ObjectMeta, _get_k8s_api
from ..crds.const import (
    LABEL_ITEM_KIND,
    LABEL_ITEM_NAME,
    LABEL_ITEM_NAMESPACE,
    LABEL_JOB_NAME,
)
from ..crds.upgraderesult import ResourceState, TaskProgress, UpgradeResult
from ..errors import AmbiguousUpgradeResultError, BuilderError, UpdatePersistError
from ..utils.kube import build_label_selector
from ..utils.time import utc_now
from .config import ResourceRef, UpgradeConfig

logger = logging.getLogger(__name__)


def result_labels(job_name: str, resource: ResourceRef) -> Dict[str, str]:
    """The four labels that identify the record for (job, resource)."""
    return {
        LABEL_JOB_NAME: job_name,
        LABEL_ITEM_NAME: resource.name,
        LABEL_ITEM_NAMESPACE: resource.namespace,
        LABEL_ITEM_KIND: resource.kind,
    }


def owner_reference_to_dict(owner: client.V1OwnerReference) -> Dict[str, Any]:
    return {
        "apiVersion": owner.api_version,
        "kind": owner.kind,
        "name": owner.name,
        "uid": owner.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


@dataclass
class GetOrCreateRequest:
    """
    Collects the inputs of a get-or-create call. ``build`` reports every
    missing input at once.
    """

    self_namespace: str = ""
    owner: Optional[client.V1OwnerReference] = None
    config: Optional[UpgradeConfig] = None
    resource: Optional[ResourceRef] = None
    tasks: Optional[List[TaskProgress]] = None

    def validate(self) -> List[str]:
        errors = []
        if not self.self_namespace:
            errors.append("missing self namespace")
        if self.owner is None:
            errors.append("missing owner reference")
        elif not self.owner.name:
            errors.append("owner reference has no name")
        if self.config is None:
            errors.append("missing upgrade config")
        if self.resource is None:
            errors.append("missing resource")
        if self.tasks is None:
            errors.append("missing tasks")
        return errors

    def build(self) -> "GetOrCreateRequest":
        errors = self.validate()
        if errors:
            raise BuilderError("failed to build upgrade result", errors)
        return self


class UpgradeResultRegistry:
    """Reads and writes UpgradeResult records."""

    def __init__(self, api: Optional[client.CustomObjectsApi] = None) -> None:
        self._api = api

    @property
    def api(self) -> client.CustomObjectsApi:
        if self._api is None:
            self._api = _get_k8s_api()
        return self._api

    def get(self, name: str, namespace: str) -> UpgradeResult:
        return UpgradeResult.get(name, namespace=namespace, api=self.api)

    def list(self, namespace: str, job_name: Optional[str] = None) -> List[UpgradeResult]:
        selector = f"{LABEL_JOB_NAME}={job_name}" if job_name else None
        return UpgradeResult.list(namespace, label_selector=selector, api=self.api)

    def get_or_create(
        self,
        self_namespace: str,
        owner: Optional[client.V1OwnerReference],
        config: Optional[UpgradeConfig],
        resource: Optional[ResourceRef],
        tasks: Optional[List[TaskProgress]],
    ) -> UpgradeResult:
        """
        Returns the record for (owner, resource), creating it when none exists.

        Raises:
            BuilderError: If any input is missing.
            AmbiguousUpgradeResultError: If more than one record matches.
            client.ApiException: If listing or creating fails.
        """
        request = GetOrCreateRequest(
            self_namespace=self_namespace,
            owner=owner,
            config=config,
            resource=resource,
            tasks=None if tasks is None else list(tasks),
        ).build()

        labels = result_labels(request.owner.name, request.resource)
        selector = build_label_selector(labels)
        existing = UpgradeResult.list(
            request.self_namespace, label_selector=selector, api=self.api
        )

        if len(existing) > 1:
            raise AmbiguousUpgradeResultError(selector, [r.name for r in existing])
        if len(existing) == 1:
            record = existing[0]
            logger.info(f"Resuming with upgrade result '{record.name}' for {request.resource}")
            return record

        record = UpgradeResult(
            metadata=ObjectMeta(
                namespace=request.self_namespace,
                generate_name=f"{request.owner.name}-",
                labels=labels,
                owner_references=[owner_reference_to_dict(request.owner)],
            ),
            resource=request.resource,
            data=list(request.config.data),
            tasks=[TaskProgress(name=t.name) for t in request.tasks],
            api=self.api,
        )
        record.create()
        logger.info(f"Created upgrade result '{record.name}' for {request.resource}")
        return record

    def update_task(self, name: str, namespace: str, task_name: str, **changes: Any) -> UpgradeResult:
        """
        Overwrites fields of one task entry and persists the record.

        The entry must already exist; entries are never appended. A write
        conflict is not retried.

        Raises:
            UpdatePersistError: If the record can not be read, has no such
                task, or the write is rejected.
        """
        try:
            record = self.get(name, namespace)
        except client.ApiException as e:
            raise UpdatePersistError(name, f"read failed: {e.reason}") from e

        task = record.find_task(task_name)
        if task is None:
            raise UpdatePersistError(name, f"task '{task_name}' is not part of the record")

        try:
            task.apply(changes)
        except ValueError as e:
            raise UpdatePersistError(name, str(e)) from e
        if "status" in changes and "last_transition_time" not in changes:
            task.last_transition_time = utc_now()
        record.recount()

        try:
            record.update()
        except client.ApiException as e:
            raise UpdatePersistError(name, f"write failed: {e.status} {e.reason}") from e

        logger.debug(f"Upgrade result '{name}': task '{task_name}' updated with {sorted(changes)}")
        return record

    def update_resource_state(
        self,
        name: str,
        namespace: str,
        *,
        pre_state: Optional[Dict[str, str]] = None,
        post_state: Optional[Dict[str, str]] = None,
    ) -> UpgradeResult:
        """Records the observed state of the target before and/or after the upgrade."""
        try:
            record = self.get(name, namespace)
        except client.ApiException as e:
            raise UpdatePersistError(name, f"read failed: {e.reason}") from e

        for state, target in ((pre_state, "pre_state"), (post_state, "post_state")):
            if state is None:
                continue
            setattr(
                record.status,
                target,
                ResourceState(
                    status=str(state.get("status", "")),
                    message=str(state.get("message", "")),
                    last_transition_time=str(state.get("lastTransitionTime") or utc_now()),
                ),
            )

        try:
            record.update()
        except client.ApiException as e:
            raise UpdatePersistError(name, f"write failed: {e.status} {e.reason}") from e
        return record
