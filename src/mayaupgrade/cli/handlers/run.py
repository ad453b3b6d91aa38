import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from kubernetes import client
from rich.console import Console
from rich.table import Table

from ...errors import ExecutorError, UpgradeFailedError
from ...settings import UpgradeSettings
from ...upgrade.executor import ResourceOutcome, UpgradeExecutor
from ...utils.kube import KubernetesConfigurationError, configure_kube_client
from .validate import load_or_exit

logger = logging.getLogger(__name__)


def _summary(outcomes: List[ResourceOutcome]) -> Table:
    table = Table(title="Upgrade Summary")
    table.add_column("Kind", style="cyan")
    table.add_column("Namespace", style="green")
    table.add_column("Name", style="magenta")
    table.add_column("Upgrade Result")
    table.add_column("Status", style="yellow")
    for outcome in outcomes:
        table.add_row(
            outcome.kind,
            outcome.namespace,
            outcome.name,
            outcome.upgrade_result or "-",
            "Succeeded" if outcome.succeeded else f"Failed: {outcome.error}",
        )
    return table


def run_upgrade(
    settings: UpgradeSettings,
    config_path: Optional[Path] = None,
    continue_on_error: Optional[bool] = None,
    console: Optional[Console] = None,
) -> None:
    """Runs the upgrade job. Exits with status 1 when anything failed."""
    console = console or Console()
    config = load_or_exit(Path(config_path or settings.upgrade_config_path), console)
    if continue_on_error is None:
        continue_on_error = settings.continue_on_error

    try:
        configure_kube_client(logger, kubeconfig_path=settings.kubeconfig_path)
    except KubernetesConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    try:
        executor = UpgradeExecutor(
            config,
            continue_on_error=continue_on_error,
            api=client.CustomObjectsApi(),
        )
        outcomes = asyncio.run(executor.execute())
    except ExecutorError as e:
        console.print(f"[red]Upgrade could not start: {e}[/red]")
        sys.exit(1)
    except UpgradeFailedError as e:
        console.print(_summary(e.outcomes))
        console.print(f"[red]{len(e.failures)} resource(s) failed to upgrade.[/red]")
        sys.exit(1)

    console.print(_summary(outcomes))
    console.print(f"✅ Upgraded {len(outcomes)} resource(s).")
