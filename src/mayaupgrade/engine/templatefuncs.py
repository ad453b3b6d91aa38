"""
Functions available to run task bodies while they are rendered.

Most functions take the piped value first so that they read naturally as
Jinja filters:

    {{ TaskResult.getpool.phase | saveAs("TaskResult.phase") | noop }}
    {{ Runtime["upgrade-version"].value | empty | verifyErr("version is missing") }}

The same callables are also exposed as globals. Functions that store values
write into the value tree of the engine they were bound to.
"""
import json
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import yaml

from ..errors import NotFoundSignalError, VerifyError, VersionMismatchError
from . import values as v

if TYPE_CHECKING:
    from ..upgrade.result import UpgradeResultRegistry

logger = logging.getLogger(__name__)

# template spelling -> TaskProgress attribute
_TASK_FIELDS = {
    "status": "status",
    "message": "message",
    "lastError": "last_error",
    "startTime": "start_time",
    "endTime": "end_time",
    "lastTransitionTime": "last_transition_time",
    "retries": "retries",
}


def empty(given: Any) -> bool:
    """True for None, False, zero and empty collections or strings."""
    if given is None:
        return True
    if isinstance(given, (str, bytes, list, tuple, dict, set)):
        return len(given) == 0
    if isinstance(given, (bool, int, float, complex)):
        return not given
    return False


def if_not_nil(this: Any, then: Any) -> Any:
    return then if not empty(this) else this


def is_len(given: Any, expected: int) -> bool:
    if isinstance(given, (str, list, tuple, dict)):
        return len(given) == int(expected)
    return False


def noop(*args: Any, **kwargs: Any) -> str:
    return ""


def pick_suffix(given: List[str], match: str) -> str:
    return next((item for item in given or [] if item.endswith(match)), "")


def pick_prefix(given: List[str], match: str) -> str:
    return next((item for item in given or [] if item.startswith(match)), "")


def pick_contains(given: List[str], match: str) -> str:
    return next((item for item in given or [] if match in item), "")


def split_list_trim(orig: str, sep: str) -> List[str]:
    return orig.strip(sep).split(sep)


def split_list_len(orig: str, sep: str) -> int:
    return len(split_list_trim(orig, sep))


def to_yaml(value: Any) -> str:
    try:
        return yaml.safe_dump(value, default_flow_style=False, sort_keys=False)
    except yaml.YAMLError as e:
        return f"error: {e}"


def from_yaml(text: str) -> Dict[str, Any]:
    """Parses a YAML mapping. Parse errors end up under the ``Error`` key."""
    try:
        parsed = yaml.safe_load(text)
    except yaml.YAMLError as e:
        return {"Error": str(e)}
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        return {"Error": f"expected a mapping, got {type(parsed).__name__}"}
    return parsed


def jsonpath(document: Any, path: str) -> str:
    """
    Reads ``path`` from a document given as a YAML/JSON string or an already
    parsed object. Lists come back space separated, like kubectl prints them.
    """
    if isinstance(document, (str, bytes)):
        try:
            document = yaml.safe_load(document)
        except yaml.YAMLError as e:
            return f"jsonpath failed: path '{path}': error '{e}'"
    try:
        value = v.read_path(document, path)
    except ValueError as e:
        return f"jsonpath failed: path '{path}': error '{e}'"
    if isinstance(value, list):
        return " ".join(_scalar_text(item) for item in value)
    return _scalar_text(value)


def _scalar_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def not_found_err(given: Any, message: str = "") -> str:
    if empty(given):
        raise NotFoundSignalError(message or "item is not found")
    return ""


def verify_err(failed: Any, message: str = "") -> str:
    if failed:
        raise VerifyError(message or "verification failed")
    return ""


def version_mismatch_err(wrong_version: Any, message: str = "") -> str:
    if wrong_version:
        raise VersionMismatchError(message or "version mismatch")
    return ""


class TemplateFunctions:
    """
    The function table for one engine. Functions that read or write the value
    tree, or the engine's UpgradeResult, are bound here.
    """

    def __init__(
        self,
        values: Dict[str, Any],
        registry: Optional["UpgradeResultRegistry"] = None,
    ) -> None:
        self.values = values
        self.registry = registry

    def save_as(self, given: Any, path: str) -> Any:
        v.set_nested(self.values, path, given)
        return given

    def save_if(self, given: Any, path: str) -> Any:
        old = v.get_nested(self.values, path)
        if not empty(old):
            return old
        v.set_nested(self.values, path, given)
        return given

    def add_to(self, given: str, path: str) -> str:
        new = str(given).strip()
        if not new:
            return given
        old = v.get_nested(self.values, path)
        if isinstance(old, str) and old:
            new = f"{old}, {new}"
        v.set_nested(self.values, path, new)
        return given

    def config_value(self, name: str) -> str:
        """Runtime value for ``name`` if one is set, else the template default."""
        for key in (v.KEY_RUNTIME, v.KEY_CONFIG):
            value = v.get_nested(self.values, f"{key}.{name}.value")
            if value not in (None, ""):
                return value
        return ""

    def _current_result(self) -> tuple:
        if self.registry is None:
            raise RuntimeError("no upgrade result registry is bound to this engine")
        item = self.values.get(v.KEY_UPGRADE_ITEM) or {}
        name = item.get("upgradeResultName")
        namespace = item.get("upgradeResultNamespace")
        if not name or not namespace:
            raise RuntimeError("the current upgrade item has no upgrade result")
        return name, namespace

    def update_upgrade_result(self, task_name: str, **fields: Any) -> str:
        """
        Writes task progress into this engine's UpgradeResult, e.g.
        ``updateUpgradeResult("t1", status="Succeeded", message="done")``.
        """
        changes = {}
        for key, value in fields.items():
            if key not in _TASK_FIELDS:
                raise ValueError(f"unknown task field '{key}'")
            changes[_TASK_FIELDS[key]] = value
        name, namespace = self._current_result()
        self.registry.update_task(name, namespace, task_name, **changes)
        return ""

    def update_resource_state(self, which: str, status: str, message: str = "") -> str:
        """Writes the pre or post state of the target, e.g. ``updateResourceState("pre", "Healthy")``."""
        if which not in ("pre", "post"):
            raise ValueError(f"resource state must be 'pre' or 'post', got '{which}'")
        name, namespace = self._current_result()
        state = {"status": status, "message": message}
        self.registry.update_resource_state(name, namespace, **{f"{which}_state": state})
        return ""

    def as_dict(self) -> Dict[str, Callable[..., Any]]:
        return {
            "saveAs": self.save_as,
            "saveas": self.save_as,
            "saveIf": self.save_if,
            "saveif": self.save_if,
            "addTo": self.add_to,
            "configValue": self.config_value,
            "updateUpgradeResult": self.update_upgrade_result,
            "updateResourceState": self.update_resource_state,
            "noop": noop,
            "empty": empty,
            "ifNotNil": if_not_nil,
            "isLen": is_len,
            "pickSuffix": pick_suffix,
            "pickPrefix": pick_prefix,
            "pickContains": pick_contains,
            "splitListTrim": split_list_trim,
            "splitListLen": split_list_len,
            "toYaml": to_yaml,
            "fromYaml": from_yaml,
            "jsonpath": jsonpath,
            "notFoundErr": not_found_err,
            "verifyErr": verify_err,
            "versionMismatchErr": version_mismatch_err,
        }
