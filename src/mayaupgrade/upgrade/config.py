"""
Loading and validation of the user supplied upgrade config.

An upgrade config names the CAS template to apply, runtime data handed to the
template's tasks, and the resources to upgrade:

    casTemplate: upgrade-pool-0.9.0-1.0.0
    data:
      - name: upgrade-version
        value: 1.0.0
    resources:
      - kind: StoragePoolClaim
        name: sparse-claim
        namespace: openebs

Validation is predicate based. Every check runs, and all failures are
reported together in one ConfigInvalidError.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import yaml

from ..errors import ConfigInvalidError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DataItem:
    name: str
    value: str = ""
    entries: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataItem":
        return cls(
            name=str(data.get("name") or ""),
            value="" if data.get("value") is None else str(data["value"]),
            entries={str(k): str(v) for k, v in (data.get("entries") or {}).items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "value": self.value}
        if self.entries:
            result["entries"] = dict(self.entries)
        return result


@dataclass(frozen=True)
class ResourceRef:
    """Identifies one unit of upgrade."""

    kind: str
    name: str
    namespace: str
    api_version: Optional[str] = None
    generation: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceRef":
        generation = data.get("generation")
        return cls(
            kind=str(data.get("kind") or ""),
            name=str(data.get("name") or ""),
            namespace=str(data.get("namespace") or ""),
            api_version=data.get("apiVersion") or None,
            generation=None if generation is None else str(generation),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "kind": self.kind,
            "name": self.name,
            "namespace": self.namespace,
        }
        if self.api_version:
            result["apiVersion"] = self.api_version
        if self.generation is not None:
            result["generation"] = self.generation
        return result

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


@dataclass(frozen=True)
class UpgradeConfig:
    cas_template: str = ""
    data: Tuple[DataItem, ...] = ()
    resources: Tuple[ResourceRef, ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "UpgradeConfig":
        data = data or {}
        if not isinstance(data, dict):
            raise TypeError(f"Upgrade config must be a mapping, got {type(data).__name__}")
        return cls(
            cas_template=str(data.get("casTemplate") or ""),
            data=tuple(DataItem.from_dict(d) for d in data.get("data") or []),
            resources=tuple(ResourceRef.from_dict(r) for r in data.get("resources") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "casTemplate": self.cas_template,
            "data": [d.to_dict() for d in self.data],
            "resources": [r.to_dict() for r in self.resources],
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)


Predicate = Callable[[UpgradeConfig], bool]


def is_cas_template_name(config: UpgradeConfig) -> bool:
    return bool(config.cas_template.strip())


def is_resource(config: UpgradeConfig) -> bool:
    return len(config.resources) != 0


def is_valid_resource(config: UpgradeConfig) -> bool:
    return all(r.kind and r.name and r.namespace for r in config.resources)


def is_same_kind(config: UpgradeConfig) -> bool:
    return len({r.kind for r in config.resources}) <= 1


DEFAULT_CHECKS: List[Tuple[Predicate, str]] = [
    (is_cas_template_name, "casTemplate name is missing"),
    (is_resource, "resources are missing"),
    (is_valid_resource, "every resource needs a kind, name and namespace"),
    (is_same_kind, "all resources must be of the same kind"),
]


class ConfigBuilder:
    """
    Builds a validated UpgradeConfig.

    Parse problems are collected when the builder is created; predicate
    failures are collected when ``build`` runs. Both end up in the same
    ConfigInvalidError.
    """

    def __init__(self, config: Optional[UpgradeConfig] = None) -> None:
        self.config = config or UpgradeConfig()
        self.checks: List[Tuple[Predicate, str]] = []
        self.errors: List[str] = []

    @classmethod
    def for_dict(cls, data: Any) -> "ConfigBuilder":
        builder = cls()
        try:
            builder.config = UpgradeConfig.from_dict(data)
        except (TypeError, ValueError, AttributeError) as exc:
            builder.errors.append(f"invalid upgrade config: {exc}")
        return builder

    @classmethod
    def for_yaml(cls, text: str) -> "ConfigBuilder":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            builder = cls()
            builder.errors.append(f"invalid yaml: {exc}")
            return builder
        return cls.for_dict(data)

    @classmethod
    def for_raw(cls, raw: bytes) -> "ConfigBuilder":
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            builder = cls()
            builder.errors.append(f"upgrade config is not valid utf-8: {exc}")
            return builder
        return cls.for_yaml(text)

    def add_check(self, predicate: Predicate, message: str = "") -> "ConfigBuilder":
        self.checks.append((predicate, message or getattr(predicate, "__name__", "check")))
        return self

    def add_checks(self, *checks: Union[Predicate, Tuple[Predicate, str]]) -> "ConfigBuilder":
        for check in checks:
            if isinstance(check, tuple):
                self.add_check(*check)
            else:
                self.add_check(check)
        return self

    def with_default_checks(self) -> "ConfigBuilder":
        return self.add_checks(*DEFAULT_CHECKS)

    def validate(self) -> List[str]:
        failures = list(self.errors)
        if self.errors:
            # A config that failed to parse has nothing meaningful to check.
            return failures
        for predicate, message in self.checks:
            if not predicate(self.config):
                failures.append(f"failed to validate: {message}")
        return failures

    def build(self) -> UpgradeConfig:
        failures = self.validate()
        if failures:
            raise ConfigInvalidError("invalid upgrade config", failures)
        return self.config


def validate_config(source: Union[str, bytes, Dict[str, Any], UpgradeConfig]) -> UpgradeConfig:
    """Parses (if needed) and validates an upgrade config with the default checks."""
    if isinstance(source, UpgradeConfig):
        builder = ConfigBuilder(source)
    elif isinstance(source, bytes):
        builder = ConfigBuilder.for_raw(source)
    elif isinstance(source, str):
        builder = ConfigBuilder.for_yaml(source)
    else:
        builder = ConfigBuilder.for_dict(source)
    return builder.with_default_checks().build()


def load_config(path: Union[str, Path]) -> UpgradeConfig:
    """Reads and validates the upgrade config stored at ``path``."""
    with open(path, "rb") as f:
        raw = f.read()
    config = validate_config(raw)
    logger.info(
        f"Loaded upgrade config from {path}: template '{config.cas_template}', "
        f"{len(config.resources)} resource(s)"
    )
    return config
