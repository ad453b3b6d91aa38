import io
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner
from rich.console import Console

from mayaupgrade.cli import handlers
from mayaupgrade.cli import main as cli_main
from mayaupgrade.crds.upgraderesult import TaskProgress
from mayaupgrade.errors import UpgradeFailedError, VerifyError
from mayaupgrade.settings import UpgradeSettings
from mayaupgrade.upgrade.config import ResourceRef
from mayaupgrade.upgrade.executor import ResourceOutcome
from mayaupgrade.upgrade.result import UpgradeResultRegistry
from tests.helpers import JOB_NAME, JOB_NAMESPACE, owner_pod

VALID_CONFIG = """
casTemplate: cast-A
resources:
  - kind: Pool
    name: p1
    namespace: ns
"""

INVALID_CONFIG = """
casTemplate: ""
resources: []
"""


@pytest.fixture
def settings(tmp_path: Path) -> UpgradeSettings:
    upgrade_settings = UpgradeSettings(str(tmp_path / "no-settings.yaml"))
    upgrade_settings.upgrade_config_path = str(tmp_path / "upgrade.yaml")
    return upgrade_settings


@pytest.fixture
def console() -> Console:
    return Console(file=io.StringIO(), width=200)


def output_of(console: Console) -> str:
    return console.file.getvalue()


def write_config(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "upgrade.yaml"
    path.write_text(content)
    return path


def test_validate_command_accepts_valid_config(tmp_path):
    path = write_config(tmp_path, VALID_CONFIG)
    result = CliRunner().invoke(
        cli_main.main,
        ["--settings", str(tmp_path / "none.yaml"), "validate", "--config", str(path)],
    )
    assert result.exit_code == 0, result.output
    assert "Upgrade config is valid" in result.output
    assert "cast-A" in result.output


def test_validate_command_lists_every_problem(tmp_path):
    path = write_config(tmp_path, INVALID_CONFIG)
    result = CliRunner().invoke(
        cli_main.main,
        ["--settings", str(tmp_path / "none.yaml"), "validate", "--config", str(path)],
    )
    assert result.exit_code == 1
    assert "casTemplate name is missing" in result.output
    assert "resources are missing" in result.output


def test_validate_missing_file(tmp_path, console):
    with pytest.raises(SystemExit) as exc_info:
        handlers.validate_config_file(tmp_path / "missing.yaml", console=console)
    assert exc_info.value.code == 1
    assert "not found" in output_of(console)


def test_run_command_passes_options(tmp_path):
    with patch("mayaupgrade.cli.handlers.run_upgrade") as mock_run:
        result = CliRunner().invoke(
            cli_main.main,
            [
                "--settings",
                str(tmp_path / "none.yaml"),
                "--log-level",
                "debug",
                "run",
                "--config",
                "/tmp/upgrade.yaml",
                "--continue-on-error",
            ],
        )
    assert result.exit_code == 0, result.output
    kwargs = mock_run.call_args.kwargs
    assert kwargs["config_path"] == Path("/tmp/upgrade.yaml")
    assert kwargs["continue_on_error"] is True
    assert isinstance(kwargs["settings"], UpgradeSettings)


def test_status_command_requires_namespace(tmp_path):
    result = CliRunner().invoke(cli_main.main, ["--settings", str(tmp_path / "none.yaml"), "status"])
    assert result.exit_code == 2
    assert "--namespace" in result.output


def outcome(name: str, error=None) -> ResourceOutcome:
    return ResourceOutcome(
        resource=ResourceRef(kind="Pool", name=name, namespace="ns"),
        upgrade_result=f"{JOB_NAME}-00001",
        error=error,
    )


def test_run_upgrade_prints_summary(tmp_path, settings, console):
    write_config(tmp_path, VALID_CONFIG)
    with patch("mayaupgrade.cli.handlers.run.configure_kube_client") as mock_configure, patch(
        "mayaupgrade.cli.handlers.run.client.CustomObjectsApi"
    ), patch("mayaupgrade.cli.handlers.run.UpgradeExecutor") as mock_executor:
        mock_executor.return_value.execute = AsyncMock(return_value=[outcome("p1")])
        handlers.run_upgrade(settings, console=console)

    mock_configure.assert_called_once()
    assert mock_executor.call_args.kwargs["continue_on_error"] is False
    assert "Upgraded 1 resource(s)" in output_of(console)
    assert f"{JOB_NAME}-00001" in output_of(console)


def test_run_upgrade_exits_on_failure(tmp_path, settings, console):
    write_config(tmp_path, VALID_CONFIG)
    failed = outcome("p1", error=VerifyError("p1 is broken"))
    with patch("mayaupgrade.cli.handlers.run.configure_kube_client"), patch(
        "mayaupgrade.cli.handlers.run.client.CustomObjectsApi"
    ), patch("mayaupgrade.cli.handlers.run.UpgradeExecutor") as mock_executor:
        mock_executor.return_value.execute = AsyncMock(side_effect=UpgradeFailedError([failed]))
        with pytest.raises(SystemExit) as exc_info:
            handlers.run_upgrade(settings, continue_on_error=True, console=console)

    assert exc_info.value.code == 1
    assert mock_executor.call_args.kwargs["continue_on_error"] is True
    assert "p1 is broken" in output_of(console)
    assert "1 resource(s) failed" in output_of(console)


def test_run_upgrade_rejects_invalid_config(tmp_path, settings, console):
    write_config(tmp_path, INVALID_CONFIG)
    with patch("mayaupgrade.cli.handlers.run.UpgradeExecutor") as mock_executor:
        with pytest.raises(SystemExit):
            handlers.run_upgrade(settings, console=console)
    mock_executor.assert_not_called()


def test_show_status_table(fake_api, pool_config, console):
    registry = UpgradeResultRegistry(fake_api)
    record = registry.get_or_create(
        JOB_NAMESPACE,
        owner_pod().metadata.owner_references[0],
        pool_config,
        pool_config.resources[0],
        [TaskProgress(name="t1"), TaskProgress(name="t2")],
    )
    registry.update_task(record.name, JOB_NAMESPACE, "t1", status="Succeeded")

    handlers.show_status(MagicMock(), JOB_NAMESPACE, job_name=JOB_NAME, registry=registry, console=console)

    output = output_of(console)
    assert record.name in output
    assert "ns/p1" in output
    assert "t1=Succeeded" in output
    assert "t2=Pending" in output


def test_show_status_empty(fake_api, console):
    handlers.show_status(MagicMock(), JOB_NAMESPACE, registry=UpgradeResultRegistry(fake_api), console=console)
    assert "No upgrade results found." in output_of(console)


def test_run_upgrade_summary_lists_resources_before_the_failure(tmp_path, settings, console):
    write_config(tmp_path, VALID_CONFIG)
    upgraded = outcome("p0")
    failed = outcome("p1", error=VerifyError("p1 is broken"))
    with patch("mayaupgrade.cli.handlers.run.configure_kube_client"), patch(
        "mayaupgrade.cli.handlers.run.client.CustomObjectsApi"
    ), patch("mayaupgrade.cli.handlers.run.UpgradeExecutor") as mock_executor:
        mock_executor.return_value.execute = AsyncMock(
            side_effect=UpgradeFailedError([failed], [upgraded, failed])
        )
        with pytest.raises(SystemExit):
            handlers.run_upgrade(settings, console=console)

    output = output_of(console)
    assert "p0" in output
    assert "Succeeded" in output
    assert "1 resource(s) failed" in output
