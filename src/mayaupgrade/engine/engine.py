"""
The CAS template engine: binds one template to one unit of upgrade and runs
the template's tasks against a value tree.
"""
import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from kubernetes import client

from ..crds.castemplate import CASTemplate
from ..crds.upgraderesult import UpgradeResult
from ..errors import BuilderError
from ..tasks.executor import KubernetesTaskExecutor, TaskExecutor
from ..upgrade.config import DataItem, ResourceRef
from . import values as v
from .fetch import RunTaskFetcher
from .runner import TaskGroupRunner
from .template import TaskRenderer
from .templatefuncs import TemplateFunctions

if TYPE_CHECKING:
    from ..upgrade.result import UpgradeResultRegistry


class CASTEngine:
    """
    Runs a CAS template for one unit of upgrade.

    ``run`` works in three phases: fetch every run task (failing on the
    first missing one), fetch the output and fallback tasks, then run the
    tasks in order and render the output task.
    """

    def __init__(
        self,
        cas_template: CASTemplate,
        values: Dict[str, Any],
        executor: TaskExecutor,
        fetcher: RunTaskFetcher,
        registry: Optional["UpgradeResultRegistry"] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.cas_template = cas_template
        self.values = values
        self.executor = executor
        self.fetcher = fetcher
        self.registry = registry
        self.logger = logger or logging.getLogger(__name__)
        self.functions = TemplateFunctions(self.values, registry)
        self.renderer = TaskRenderer(self.functions.as_dict())
        self.runner: Optional[TaskGroupRunner] = None

    async def run(self) -> str:
        runner = TaskGroupRunner(
            self.values, self.renderer, self.executor, self.registry, logger=self.logger
        )
        self.runner = runner

        for name in self.cas_template.tasks:
            runner.add_task(await asyncio.to_thread(self.fetcher.fetch, name))

        if self.cas_template.output_task:
            runner.set_output(
                await asyncio.to_thread(self.fetcher.fetch, self.cas_template.output_task)
            )
        if self.cas_template.fallback:
            runner.set_fallback(
                await asyncio.to_thread(self.fetcher.fetch, self.cas_template.fallback)
            )

        return await runner.run()


class EngineBuilder:
    """
    Collects the inputs of a CASTEngine. ``build`` reports every missing or
    invalid input in one BuilderError.
    """

    def __init__(self) -> None:
        self.cas_template: Optional[CASTemplate] = None
        self.unit_of_upgrade: Optional[ResourceRef] = None
        self.runtime_data: Optional[List[DataItem]] = None
        self.upgrade_result: Optional[UpgradeResult] = None
        self.executor: Optional[TaskExecutor] = None
        self.registry: Optional["UpgradeResultRegistry"] = None
        self.api: Optional[client.CustomObjectsApi] = None
        self.logger: Optional[logging.Logger] = None
        self.errors: List[str] = []

    def with_cas_template(self, cas_template: CASTemplate) -> "EngineBuilder":
        self.cas_template = cas_template
        return self

    def with_unit_of_upgrade(self, resource: ResourceRef) -> "EngineBuilder":
        self.unit_of_upgrade = resource
        return self

    def with_runtime_config(self, data: List[DataItem]) -> "EngineBuilder":
        self.runtime_data = list(data) if data is not None else None
        return self

    def with_upgrade_result(self, upgrade_result: UpgradeResult) -> "EngineBuilder":
        self.upgrade_result = upgrade_result
        return self

    def with_task_executor(self, executor: TaskExecutor) -> "EngineBuilder":
        self.executor = executor
        return self

    def with_registry(self, registry: "UpgradeResultRegistry") -> "EngineBuilder":
        self.registry = registry
        return self

    def with_api(self, api: client.CustomObjectsApi) -> "EngineBuilder":
        self.api = api
        return self

    def with_logger(self, logger: logging.Logger) -> "EngineBuilder":
        self.logger = logger
        return self

    def _validate(self) -> None:
        if self.cas_template is None:
            self.errors.append("missing cas template")
        if self.unit_of_upgrade is None:
            self.errors.append("missing unit of upgrade")
        if self.runtime_data is None:
            self.errors.append("missing runtime config")
        if self.upgrade_result is None:
            self.errors.append("missing upgrade result")
        if self.cas_template is None or self.upgrade_result is None:
            return

        expected = self.cas_template.tasks
        recorded = self.upgrade_result.task_names()
        if recorded != expected:
            self.errors.append(
                f"upgrade result '{self.upgrade_result.name}' tracks tasks {recorded}, "
                f"cas template '{self.cas_template.metadata.name}' declares {expected}"
            )
        needs_tasks = expected or self.cas_template.output_task or self.cas_template.fallback
        if needs_tasks and not self.cas_template.task_namespace:
            self.errors.append(
                f"cas template '{self.cas_template.metadata.name}' has no task namespace"
            )

    def _values(self) -> Dict[str, Any]:
        tree = v.new_value_tree()
        try:
            tree[v.KEY_CONFIG] = v.config_to_map(v.merge_config(self.cas_template.defaults, []))
        except ValueError as e:
            self.errors.append(f"invalid default config: {e}")
        try:
            runtime = v.data_items_to_configs(self.runtime_data)
            tree[v.KEY_RUNTIME] = v.config_to_map(v.merge_config(runtime, []))
        except ValueError as e:
            self.errors.append(f"invalid runtime config: {e}")

        tree[v.KEY_UPGRADE_ITEM] = {
            "name": self.unit_of_upgrade.name,
            "namespace": self.unit_of_upgrade.namespace,
            "kind": self.unit_of_upgrade.kind,
            "upgradeResultName": self.upgrade_result.name,
            "upgradeResultNamespace": self.upgrade_result.namespace,
        }
        tree[v.KEY_CAS_OPTIONS] = self.cas_template.labels
        return tree

    def build(self) -> CASTEngine:
        self.errors = []
        self._validate()
        if self.errors:
            raise BuilderError("failed to build cas engine", self.errors)

        values = self._values()
        if self.errors:
            raise BuilderError("failed to build cas engine", self.errors)

        api = self.api or self.cas_template._api
        return CASTEngine(
            self.cas_template,
            values,
            executor=self.executor or KubernetesTaskExecutor(),
            fetcher=RunTaskFetcher(self.cas_template.task_namespace, api=api),
            registry=self.registry,
            logger=self.logger,
        )
