"""
Helpers for the engine's value tree.

The tree is a plain nested dict. Top-level keys are reserved for the engine:
Config, Runtime, UpgradeItem, ListItems, TaskResult and CASOptions.
"""
import copy
import re
from typing import Any, Dict, Iterable, List, Optional

from ..crds.castemplate import Config
from ..upgrade.config import DataItem

KEY_CONFIG = "Config"
KEY_RUNTIME = "Runtime"
KEY_UPGRADE_ITEM = "UpgradeItem"
KEY_LIST_ITEMS = "ListItems"
KEY_TASK_RESULT = "TaskResult"
KEY_CAS_OPTIONS = "CASOptions"

RESERVED_KEYS = (
    KEY_CONFIG,
    KEY_RUNTIME,
    KEY_UPGRADE_ITEM,
    KEY_LIST_ITEMS,
    KEY_TASK_RESULT,
    KEY_CAS_OPTIONS,
)


def new_value_tree() -> Dict[str, Any]:
    return {key: {} for key in RESERVED_KEYS}


def merge_config(high: Iterable[Config], low: Iterable[Config]) -> List[Config]:
    """
    Merges two config lists by trimmed name.

    Every entry of ``high`` is kept in order, then the entries of ``low``
    whose names were not seen yet are appended in order. Within one list
    the first occurrence of a name wins.

    Raises:
        ValueError: If any name is empty or blank.
    """
    merged: List[Config] = []
    seen = set()
    for entries in (high, low):
        for entry in entries:
            name = entry.name.strip()
            if not name:
                raise ValueError("config name must not be empty")
            if name in seen:
                continue
            seen.add(name)
            merged.append(
                Config(name=name, value=entry.value, enabled=entry.enabled, data=dict(entry.data))
            )
    return merged


def config_to_map(configs: Iterable[Config]) -> Dict[str, Dict[str, Any]]:
    """
    Turns an ordered config list into ``{name: {"enabled": ..., "value": ...}}``.

    Items that carry data also get a ``data`` key. No merging happens here,
    so a repeated name is an error.
    """
    result: Dict[str, Dict[str, Any]] = {}
    for config in configs:
        name = config.name.strip()
        if not name:
            raise ValueError("config name must not be empty")
        if name in result:
            raise ValueError(f"duplicate config name '{name}'")
        item: Dict[str, Any] = {"enabled": config.enabled, "value": config.value}
        if config.data:
            item["data"] = dict(config.data)
        result[name] = item
    return result


def data_items_to_configs(items: Iterable[DataItem]) -> List[Config]:
    return [Config(name=i.name, value=i.value, enabled="", data=dict(i.entries)) for i in items]


def get_nested(tree: Dict[str, Any], path: str, default: Any = None) -> Any:
    """Reads a dotted path such as ``Config.upgrade-version.value``."""
    current: Any = tree
    for part in _split_dotted(path):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def set_nested(tree: Dict[str, Any], path: str, value: Any) -> None:
    """Writes ``value`` at a dotted path, creating intermediate maps. Last write wins."""
    parts = _split_dotted(path)
    if not parts:
        raise ValueError("value tree path must not be empty")
    current = tree
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = copy.deepcopy(value)


def _split_dotted(path: str) -> List[str]:
    return [p for p in path.strip().strip(".").split(".") if p]


_TOKEN = re.compile(r"\.?([^.\[\]]+)|\[(\*|-?\d+)\]")


def _tokens(path: str) -> Optional[List[str]]:
    text = path.strip()
    if text.startswith("{") and text.endswith("}"):
        text = text[1:-1].strip()
    if text.startswith("$"):
        text = text[1:]
    tokens = []
    position = 0
    while position < len(text):
        match = _TOKEN.match(text, position)
        if match is None:
            return None
        tokens.append(match.group(1) if match.group(1) is not None else f"[{match.group(2)}]")
        position = match.end()
    return tokens


def read_path(document: Any, path: str) -> Any:
    """
    Reads a JSONPath-like expression from a parsed document.

    Supported forms: ``.status.phase``, ``{.items[0].metadata.name}`` and
    ``items[*].kind``. A missing value reads as an empty string; an empty
    path returns the whole document.
    """
    tokens = _tokens(path)
    if tokens is None:
        raise ValueError(f"invalid path expression '{path}'")

    nodes = [document]
    wildcard = False
    for token in tokens:
        next_nodes = []
        for node in nodes:
            if token == "[*]":
                wildcard = True
                if isinstance(node, list):
                    next_nodes.extend(node)
            elif token.startswith("["):
                index = int(token[1:-1])
                if isinstance(node, list) and -len(node) <= index < len(node):
                    next_nodes.append(node[index])
            elif isinstance(node, dict) and token in node:
                next_nodes.append(node[token])
        nodes = next_nodes

    if wildcard:
        return nodes
    if not nodes or nodes[0] is None:
        return ""
    return nodes[0]
