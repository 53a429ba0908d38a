"""Slash-path navigation over nested JSON values (dicts, lists, scalars).

Mirrors how the realtime database addresses data: list elements are
addressed by their decimal index, empty containers disappear, and writing
None deletes.
"""

from typing import Any


def split_path(path: str) -> list[str]:
    """Split ``"devices/A/data"`` into ``["devices", "A", "data"]``."""
    return [part for part in path.strip("/").split("/") if part]


def _child(node: Any, key: str) -> Any:
    if isinstance(node, dict):
        return node.get(key)
    if isinstance(node, list) and key.isdigit():
        index = int(key)
        return node[index] if index < len(node) else None
    return None


def get_at(tree: Any, parts: list[str]) -> Any:
    """Return the value under parts, or None when any segment is missing."""
    node = tree
    for key in parts:
        node = _child(node, key)
        if node is None:
            return None
    return node


def _as_dict(node: list[Any]) -> dict[str, Any]:
    return {str(i): v for i, v in enumerate(node) if v is not None}


def set_at(tree: Any, parts: list[str], value: Any) -> Any:
    """Write value under parts and return the (possibly new) root.

    Missing intermediate nodes are created as dicts; scalars in the way are
    replaced. Writing None is the same as ``remove_at``.
    """
    if value is None:
        return remove_at(tree, parts)
    if not parts:
        return value

    key, rest = parts[0], parts[1:]
    if isinstance(tree, list) and key.isdigit() and int(key) <= len(tree):
        index = int(key)
        current = tree[index] if index < len(tree) else None
        child = set_at(current, rest, value)
        if index == len(tree):
            tree.append(child)
        else:
            tree[index] = child
        return tree

    node = _as_dict(tree) if isinstance(tree, list) else tree
    if not isinstance(node, dict):
        node = {}
    node[key] = set_at(node.get(key), rest, value)
    return node


def remove_at(tree: Any, parts: list[str]) -> Any:
    """Delete the value under parts and return the (possibly new) root.

    Containers left empty by the removal are pruned.
    """
    if not parts:
        return None

    key, rest = parts[0], parts[1:]
    if isinstance(tree, list):
        if not key.isdigit() or int(key) >= len(tree):
            return tree
        node: Any = _as_dict(tree)
    elif isinstance(tree, dict):
        node = tree
    else:
        return tree

    if key not in node:
        return tree
    child = remove_at(node[key], rest)
    if child is None:
        del node[key]
    else:
        node[key] = child
    return node or None


def overlaps(watched: list[str], changed: list[str]) -> bool:
    """True when a change at ``changed`` can alter the value at ``watched``."""
    common = min(len(watched), len(changed))
    return watched[:common] == changed[:common]
