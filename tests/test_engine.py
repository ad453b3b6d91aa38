import pytest

from mayaupgrade.crds.base import ObjectMeta
from mayaupgrade.crds.castemplate import CASTemplate, Config
from mayaupgrade.crds.upgraderesult import TaskProgress, UpgradeResult
from mayaupgrade.engine.engine import EngineBuilder
from mayaupgrade.errors import BuilderError, RunTaskNotFoundError
from mayaupgrade.upgrade.config import DataItem, ResourceRef, UpgradeConfig
from mayaupgrade.upgrade.result import UpgradeResultRegistry
from tests.helpers import (
    JOB_NAMESPACE,
    TASK_NAMESPACE,
    ScriptedExecutor,
    add_cas_template,
    add_run_task,
    owner_pod,
)

POOL = ResourceRef(kind="Pool", name="p1", namespace="ns")


def template(tasks=("t1", "t2"), **kwargs) -> CASTemplate:
    kwargs.setdefault("task_namespace", TASK_NAMESPACE)
    return CASTemplate(
        metadata=ObjectMeta(name="cast-A", labels={"openebs.io/version": "1.0.0"}),
        tasks=list(tasks),
        **kwargs,
    )


def record(tasks=("t1", "t2")) -> UpgradeResult:
    return UpgradeResult(
        metadata=ObjectMeta(name="upgrade-job-00001", namespace=JOB_NAMESPACE),
        tasks=[TaskProgress(name=t) for t in tasks],
    )


def builder(**overrides) -> EngineBuilder:
    return (
        EngineBuilder()
        .with_cas_template(overrides.get("cas_template", template()))
        .with_unit_of_upgrade(POOL)
        .with_runtime_config([DataItem(name="upgrade-version", value="1.0.0")])
        .with_upgrade_result(overrides.get("upgrade_result", record()))
        .with_task_executor(ScriptedExecutor())
    )


def test_build_reports_every_missing_input():
    with pytest.raises(BuilderError) as exc_info:
        EngineBuilder().build()
    assert exc_info.value.errors == [
        "missing cas template",
        "missing unit of upgrade",
        "missing runtime config",
        "missing upgrade result",
    ]


def test_build_rejects_mismatched_task_names():
    with pytest.raises(BuilderError, match="tracks tasks"):
        builder(upgrade_result=record(tasks=("t2", "t1"))).build()


def test_build_requires_task_namespace():
    with pytest.raises(BuilderError, match="no task namespace"):
        builder(cas_template=template(task_namespace="")).build()


def test_build_accepts_empty_template_without_namespace():
    engine = builder(cas_template=template(tasks=(), task_namespace=""), upgrade_result=record(tasks=())).build()
    assert engine.cas_template.tasks == []


def test_build_rejects_invalid_defaults():
    bad = template(defaults=[Config(name="a"), Config(name=" ")])
    with pytest.raises(BuilderError, match="invalid default config"):
        builder(cas_template=bad).build()


def test_value_tree():
    cas_template = template(
        defaults=[
            Config(name="upgrade-version", value="0.9.0", enabled="true"),
            Config(name="upgrade-version", value="ignored"),
            Config(name="image", value="openebs/pool"),
        ]
    )
    engine = builder(cas_template=cas_template).build()

    assert engine.values["Config"] == {
        "upgrade-version": {"enabled": "true", "value": "0.9.0"},
        "image": {"enabled": "", "value": "openebs/pool"},
    }
    assert engine.values["Runtime"] == {"upgrade-version": {"enabled": "", "value": "1.0.0"}}
    assert engine.values["UpgradeItem"] == {
        "name": "p1",
        "namespace": "ns",
        "kind": "Pool",
        "upgradeResultName": "upgrade-job-00001",
        "upgradeResultNamespace": JOB_NAMESPACE,
    }
    assert engine.values["CASOptions"] == {"openebs.io/version": "1.0.0"}
    assert engine.values["TaskResult"] == {}
    assert engine.values["ListItems"] == {}


def stored_engine(fake_api, tasks, output=""):
    add_cas_template(fake_api, "cast-A", tasks=list(tasks), output=output)
    cas_template = CASTemplate.get("cast-A", api=fake_api)
    registry = UpgradeResultRegistry(fake_api)
    upgrade_result = registry.get_or_create(
        JOB_NAMESPACE,
        owner_pod().metadata.owner_references[0],
        UpgradeConfig(cas_template="cast-A", resources=(POOL,)),
        POOL,
        [TaskProgress(name=t) for t in cas_template.tasks],
    )
    executor = ScriptedExecutor()
    engine = (
        EngineBuilder()
        .with_cas_template(cas_template)
        .with_unit_of_upgrade(POOL)
        .with_runtime_config([])
        .with_upgrade_result(upgrade_result)
        .with_task_executor(executor)
        .with_registry(registry)
        .build()
    )
    return engine, executor, registry, upgrade_result.name


@pytest.mark.asyncio
async def test_engine_runs_tasks_and_renders_output(fake_api):
    for name in ("t1", "t2"):
        add_run_task(fake_api, name)
    add_run_task(fake_api, "tout", task="{{ UpgradeItem.name }} done")
    engine, executor, registry, name = stored_engine(fake_api, ["t1", "t2"], output="tout")

    assert await engine.run() == "p1 done"
    assert executor.executed() == ["t1", "t2"]
    stored = registry.get(name, JOB_NAMESPACE)
    assert [t.status for t in stored.tasks] == ["Succeeded", "Succeeded"]
    assert stored.status.actual_count == 2


@pytest.mark.asyncio
async def test_missing_run_task_fails_before_any_task_runs(fake_api):
    add_run_task(fake_api, "t1")
    engine, executor, registry, name = stored_engine(fake_api, ["t1", "missing"])

    with pytest.raises(RunTaskNotFoundError) as exc_info:
        await engine.run()

    assert exc_info.value.name == "missing"
    assert executor.executed() == []
    assert [t.status for t in registry.get(name, JOB_NAMESPACE).tasks] == ["", ""]


@pytest.mark.asyncio
async def test_empty_template_has_empty_output(fake_api):
    engine, executor, registry, name = stored_engine(fake_api, [])

    assert await engine.run() == ""
    assert registry.get(name, JOB_NAMESPACE).tasks == []


@pytest.mark.asyncio
async def test_output_without_tasks_sees_initial_values(fake_api):
    add_run_task(fake_api, "tout", task="{{ UpgradeItem.kind }}/{{ UpgradeItem.name }} {{ TaskResult | length }}")
    engine, executor, registry, name = stored_engine(fake_api, [], output="tout")

    assert await engine.run() == "Pool/p1 0"
    assert executor.executed() == []
    assert registry.get(name, JOB_NAMESPACE).tasks == []


@pytest.mark.asyncio
async def test_no_op_runs_are_repeatable(fake_api):
    """Running the same no-op template twice leaves the same record, timestamps aside."""
    add_run_task(fake_api, "t1")

    def snapshot():
        stored = registry.get(name, JOB_NAMESPACE)
        return [(t.name, t.status, t.retries, t.last_error) for t in stored.tasks], stored.status.to_dict()

    engine, _, registry, name = stored_engine(fake_api, ["t1"])
    await engine.run()
    first = snapshot()

    engine, _, registry, name = stored_engine(fake_api, ["t1"])
    await engine.run()

    assert snapshot() == first
