"""
Top-level upgrade loop: runs the CAS template once per configured resource.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

from kubernetes import client

from ..crds.base import _get_k8s_api
from ..crds.castemplate import CASTemplate
from ..crds.upgraderesult import TaskProgress
from ..engine.engine import EngineBuilder
from ..errors import ExecutorError, UpgradeError, UpgradeFailedError
from ..tasks.executor import TaskExecutor
from ..utils.kube import get_pod_owner_references
from .castemplate import CASTemplateClient
from .config import ResourceRef, UpgradeConfig, validate_config
from .result import UpgradeResultRegistry

ENV_POD_NAME = "POD_NAME"
ENV_POD_NAMESPACE = "POD_NAMESPACE"


@dataclass
class ResourceOutcome:
    """How the upgrade of one resource ended."""

    resource: ResourceRef
    upgrade_result: str = ""
    output: str = ""
    error: Optional[Exception] = None

    @property
    def kind(self) -> str:
        return self.resource.kind

    @property
    def namespace(self) -> str:
        return self.resource.namespace

    @property
    def name(self) -> str:
        return self.resource.name

    @property
    def succeeded(self) -> bool:
        return self.error is None


class UpgradeExecutor:
    """
    Upgrades every resource of a validated config, in order.

    The pod identity is read from ``POD_NAME`` and ``POD_NAMESPACE`` when the
    executor is created. The owning job (the pod's single owner) and the CAS
    template are looked up once per run.
    """

    def __init__(
        self,
        config: UpgradeConfig,
        *,
        continue_on_error: bool = False,
        api: Optional[client.CustomObjectsApi] = None,
        core_v1: Optional[client.CoreV1Api] = None,
        task_executor: Optional[TaskExecutor] = None,
        environ: Optional[Mapping[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = validate_config(config)
        self.continue_on_error = continue_on_error
        self.logger = logger or logging.getLogger(__name__)

        env = os.environ if environ is None else environ
        self.pod_name = (env.get(ENV_POD_NAME) or "").strip()
        self.pod_namespace = (env.get(ENV_POD_NAMESPACE) or "").strip()
        missing = [
            key
            for key, value in ((ENV_POD_NAME, self.pod_name), (ENV_POD_NAMESPACE, self.pod_namespace))
            if not value
        ]
        if missing:
            raise ExecutorError(f"Missing required environment: {', '.join(missing)}")

        self._api = api
        self._core_v1 = core_v1
        self.task_executor = task_executor
        self._templates: Optional[CASTemplateClient] = None
        self._registry: Optional[UpgradeResultRegistry] = None
        self._owner: Optional[client.V1OwnerReference] = None
        self._template: Optional[CASTemplate] = None

    @property
    def api(self) -> client.CustomObjectsApi:
        if self._api is None:
            self._api = _get_k8s_api()
        return self._api

    @property
    def templates(self) -> CASTemplateClient:
        if self._templates is None:
            self._templates = CASTemplateClient(self.api)
        return self._templates

    @property
    def registry(self) -> UpgradeResultRegistry:
        if self._registry is None:
            self._registry = UpgradeResultRegistry(self.api)
        return self._registry

    @property
    def core_v1(self) -> client.CoreV1Api:
        if self._core_v1 is None:
            self._core_v1 = client.CoreV1Api()
        return self._core_v1

    async def owner(self) -> client.V1OwnerReference:
        """The job that owns this pod. Exactly one owner reference is required."""
        if self._owner is None:
            refs = await asyncio.to_thread(
                get_pod_owner_references, self.core_v1, self.pod_name, self.pod_namespace
            )
            if len(refs) != 1:
                raise ExecutorError(
                    f"Pod '{self.pod_namespace}/{self.pod_name}' must have exactly one "
                    f"owner reference, found {len(refs)}"
                )
            self._owner = refs[0]
        return self._owner

    async def cas_template(self) -> CASTemplate:
        if self._template is None:
            self._template = await asyncio.to_thread(self.templates.get, self.config.cas_template)
        return self._template

    async def execute(self) -> List[ResourceOutcome]:
        """
        Upgrades the configured resources.

        Raises:
            ExecutorError: If the owning job can not be resolved.
            UpgradeFailedError: If any resource failed. When stopping on
                error, ``failures`` holds only the first failure and
                ``outcomes`` the resources attempted up to it.
        """
        try:
            owner = await self.owner()
        except client.ApiException as e:
            raise ExecutorError(
                f"Could not read pod '{self.pod_namespace}/{self.pod_name}': {e.reason}"
            ) from e

        outcomes: List[ResourceOutcome] = []
        for resource in self.config.resources:
            outcome = ResourceOutcome(resource=resource)
            outcomes.append(outcome)
            self.logger.info(f"Upgrading {resource}...")
            try:
                await self._upgrade(owner, outcome)
            except (UpgradeError, client.ApiException) as e:
                outcome.error = e
                self.logger.error(f"Upgrade of {resource} failed: {e}")
                if not self.continue_on_error:
                    raise UpgradeFailedError([outcome], outcomes) from e
                continue
            self.logger.info(f"Upgrade of {resource} completed.")

        failures = [o for o in outcomes if not o.succeeded]
        if failures:
            raise UpgradeFailedError(failures, outcomes)
        return outcomes

    async def _upgrade(self, owner: client.V1OwnerReference, outcome: ResourceOutcome) -> None:
        template = await self.cas_template()
        record = await asyncio.to_thread(
            self.registry.get_or_create,
            self.pod_namespace,
            owner,
            self.config,
            outcome.resource,
            [TaskProgress(name=name) for name in template.tasks],
        )
        outcome.upgrade_result = record.name

        builder = (
            EngineBuilder()
            .with_cas_template(template)
            .with_unit_of_upgrade(outcome.resource)
            .with_runtime_config(list(self.config.data))
            .with_upgrade_result(record)
            .with_registry(self.registry)
            .with_api(self.api)
            .with_logger(self.logger)
        )
        if self.task_executor is not None:
            builder.with_task_executor(self.task_executor)

        engine = builder.build()
        outcome.output = await engine.run()
