import logging
from pathlib import Path
from typing import Optional

import click
from rich.logging import RichHandler

from .. import settings as settings_module
from ..settings import UpgradeSettings
from . import handlers

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


@click.group()
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to the upgrade settings file.",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Log level, overriding the settings file.",
)
@click.pass_context
def main(ctx, settings_path: Optional[Path], log_level: Optional[str]) -> None:
    """Runs and inspects OpenEBS upgrade jobs."""
    ctx.ensure_object(dict)
    if settings_path:
        upgrade_settings = UpgradeSettings(str(settings_path))
    else:
        upgrade_settings = settings_module.settings
    configure_logging(log_level or upgrade_settings.log_level)
    ctx.obj["SETTINGS"] = upgrade_settings


@main.command(help="Run the upgrade described by an upgrade config.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to the upgrade config. Defaults to the settings value.",
)
@click.option(
    "--continue-on-error/--stop-on-error",
    default=None,
    help="Keep upgrading the remaining resources after a failure.",
)
@click.pass_context
def run(ctx, config_path: Optional[Path], continue_on_error: Optional[bool]) -> None:
    """Run the upgrade."""
    handlers.run_upgrade(
        settings=ctx.obj["SETTINGS"],
        config_path=config_path,
        continue_on_error=continue_on_error,
    )


@main.command(help="Validate an upgrade config without contacting the cluster.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to the upgrade config. Defaults to the settings value.",
)
@click.pass_context
def validate(ctx, config_path: Optional[Path]) -> None:
    """Validate an upgrade config."""
    handlers.validate_config_file(
        config_path or Path(ctx.obj["SETTINGS"].upgrade_config_path)
    )


@main.command(help="Show the upgrade results recorded in a namespace.")
@click.option("-n", "--namespace", type=str, required=True, help="Namespace of the upgrade job.")
@click.option("--job", "job_name", type=str, default=None, help="Only show results of this job.")
@click.pass_context
def status(ctx, namespace: str, job_name: Optional[str]) -> None:
    """Show upgrade results."""
    handlers.show_status(settings=ctx.obj["SETTINGS"], namespace=namespace, job_name=job_name)


if __name__ == "__main__":
    main()
