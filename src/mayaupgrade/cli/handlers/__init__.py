from .run import run_upgrade
from .status import show_status
from .validate import validate_config_file

__all__ = ["run_upgrade", "show_status", "validate_config_file"]
