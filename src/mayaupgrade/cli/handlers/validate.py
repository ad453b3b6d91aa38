import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from ...errors import ConfigInvalidError
from ...upgrade.config import UpgradeConfig, load_config


def load_or_exit(config_path: Path, console: Console) -> UpgradeConfig:
    """Loads the upgrade config, printing every problem and exiting on failure."""
    try:
        return load_config(config_path)
    except FileNotFoundError:
        console.print(f"[red]Upgrade config not found at {config_path}.[/red]")
    except OSError as e:
        console.print(f"[red]Could not read upgrade config {config_path}: {e}[/red]")
    except ConfigInvalidError as e:
        console.print(f"[red]Upgrade config {config_path} is invalid:[/red]")
        for error in e.errors:
            console.print(f"  - {error}")
    sys.exit(1)


def validate_config_file(config_path: Path, console: Optional[Console] = None) -> None:
    """Validates an upgrade config without touching the cluster."""
    console = console or Console()
    config = load_or_exit(config_path, console)
    console.print(
        f"✅ Upgrade config is valid: template [cyan]{config.cas_template}[/cyan], "
        f"{len(config.resources)} {config.resources[0].kind} resource(s)."
    )
