import logging
import os
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = "/etc/maya-upgrade/settings.yaml"
DEFAULT_UPGRADE_CONFIG_PATH = "/etc/config/upgrade/upgrade.yaml"
DEFAULT_CONTINUE_ON_ERROR = False
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_KUBECONFIG_PATH = None


def get_bool(value) -> bool:
    return str(value).lower() in ("true", "1", "t", "yes")


class UpgradeSettings:
    """
    Settings of an upgrade job. Environment variables win over the settings
    file, which wins over the defaults.
    """

    def __init__(self, settings_path: Optional[str] = None):
        self.settings_path = settings_path or os.environ.get(
            "MAYA_UPGRADE_SETTINGS_PATH", DEFAULT_SETTINGS_PATH
        )
        self._settings = self._load_settings()

        self.upgrade_config_path = self._get_value(
            "MAYA_UPGRADE_CONFIG_PATH",
            "upgradeConfigPath",
            DEFAULT_UPGRADE_CONFIG_PATH,
        )
        self.continue_on_error = self._get_value(
            "MAYA_UPGRADE_CONTINUE_ON_ERROR",
            "continueOnError",
            DEFAULT_CONTINUE_ON_ERROR,
            caster=get_bool,
        )
        self.log_level = self._get_value(
            "MAYA_UPGRADE_LOG_LEVEL",
            "logLevel",
            DEFAULT_LOG_LEVEL,
            caster=lambda v: str(v).upper(),
        )
        self.kubeconfig_path = self._get_value(
            "MAYA_UPGRADE_KUBECONFIG",
            "kubeconfigPath",
            DEFAULT_KUBECONFIG_PATH,
        )

    def _get_value(self, env_key, yaml_key, default, caster=None):
        val = os.environ.get(env_key, self._settings.get(yaml_key, default))
        if caster and val is not None:
            return caster(val)
        return val

    def _load_settings(self):
        try:
            with open(self.settings_path, "r") as f:
                settings_data = yaml.safe_load(f)
                logger.info(f"Loaded upgrade settings from {self.settings_path}")
                if settings_data and not isinstance(settings_data, dict):
                    logger.error(
                        f"Upgrade settings at {self.settings_path} are not a mapping, "
                        "using default values."
                    )
                    return {}
                return settings_data if settings_data else {}
        except FileNotFoundError:
            logger.info(
                f"Upgrade settings file not found at {self.settings_path}, using default values."
            )
            return {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading upgrade settings from {self.settings_path}: {e}")
            return {}


# Global settings instance used by the CLI
settings = UpgradeSettings()
