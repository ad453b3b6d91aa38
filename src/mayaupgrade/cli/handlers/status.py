import logging
import sys
from typing import Optional

from kubernetes import client
from rich.console import Console
from rich.table import Table

from ...crds.const import LABEL_ITEM_KIND, LABEL_ITEM_NAME, LABEL_ITEM_NAMESPACE, LABEL_JOB_NAME
from ...crds.upgraderesult import UpgradeResult
from ...settings import UpgradeSettings
from ...upgrade.result import UpgradeResultRegistry
from ...utils.kube import KubernetesConfigurationError, configure_kube_client

logger = logging.getLogger(__name__)

_STATUS_STYLES = {
    "Succeeded": "green",
    "SucceededWithFallback": "green",
    "Failed": "red",
}


def _task_summary(record: UpgradeResult) -> str:
    parts = []
    for task in record.tasks:
        status = task.status or "Pending"
        style = _STATUS_STYLES.get(status, "dim")
        parts.append(f"{task.name}=[{style}]{status}[/{style}]")
    return ", ".join(parts) or "-"


def show_status(
    settings: UpgradeSettings,
    namespace: str,
    job_name: Optional[str] = None,
    registry: Optional[UpgradeResultRegistry] = None,
    console: Optional[Console] = None,
) -> None:
    """Prints the UpgradeResult records of a namespace, optionally for one job."""
    console = console or Console()
    if registry is None:
        try:
            configure_kube_client(logger, kubeconfig_path=settings.kubeconfig_path)
        except KubernetesConfigurationError as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)
        registry = UpgradeResultRegistry(client.CustomObjectsApi())

    try:
        records = registry.list(namespace, job_name=job_name)
    except client.ApiException as e:
        console.print(f"Error listing upgrade results: {e.reason}")
        sys.exit(1)

    if not records:
        console.print("No upgrade results found.")
        return

    table = Table(title="Upgrade Results")
    table.add_column("Name", style="cyan")
    table.add_column("Job", style="magenta")
    table.add_column("Item", style="green")
    table.add_column("Kind")
    table.add_column("Desired", justify="right")
    table.add_column("Actual", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Tasks")

    for record in records:
        labels = record.metadata.labels
        table.add_row(
            record.name,
            labels.get(LABEL_JOB_NAME, ""),
            f"{labels.get(LABEL_ITEM_NAMESPACE, '')}/{labels.get(LABEL_ITEM_NAME, '')}",
            labels.get(LABEL_ITEM_KIND, ""),
            str(record.status.desired_count),
            str(record.status.actual_count),
            str(record.status.failed_count),
            _task_summary(record),
        )
    console.print(table)
