"""
Dotted-path helpers over nested documents.

A path such as "orders.customer.id" walks dict keys; integer segments index
into lists ("orders.0.total").
"""

from typing import Any, Callable, Dict, List, Optional

MISSING = object()


def _split(path: str) -> List[str]:
    return path.split('.')


def _step(current: Any, key: str) -> Any:
    if isinstance(current, dict):
        return current.get(key, MISSING)
    if isinstance(current, list) and key.isdigit():
        index = int(key)
        return current[index] if index < len(current) else MISSING
    return MISSING


def get_path(document: Any, path: str, default: Any = None) -> Any:
    """
    Get the value at a dotted path.

    Args:
        document: Nested dict/list structure
        path: Dot-separated path
        default: Returned when any segment is missing

    Returns:
        Value at path or default
    """
    current = document
    for key in _split(path):
        current = _step(current, key)
        if current is MISSING:
            return default
    return current


def has_path(document: Any, path: str) -> bool:
    """Check whether every segment of path exists in document."""
    return get_path(document, path, MISSING) is not MISSING


def set_path(document: Dict[str, Any], path: str, value: Any) -> Dict[str, Any]:
    """
    Set the value at a dotted path, creating intermediate dicts.

    Mutates and returns document.
    """
    keys = _split(path)
    current = document
    for key in keys[:-1]:
        if isinstance(current, list) and key.isdigit():
            current = current[int(key)]
            continue
        if not isinstance(current.get(key), (dict, list)):
            current[key] = {}
        current = current[key]

    last = keys[-1]
    if isinstance(current, list) and last.isdigit():
        current[int(last)] = value
    else:
        current[last] = value
    return document


def unset_path(document: Dict[str, Any], path: str) -> Dict[str, Any]:
    """
    Remove the key at a dotted path if present.

    Mutates and returns document.
    """
    keys = _split(path)
    parent = get_path(document, '.'.join(keys[:-1])) if len(keys) > 1 else document
    if isinstance(parent, dict):
        parent.pop(keys[-1], None)
    return document


def find_index(items: List[Any], predicate: Callable[[Any], bool]) -> Optional[int]:
    """
    Get the index of the first item matching predicate.

    Returns:
        Index or None when nothing matches
    """
    for index, item in enumerate(items):
        if predicate(item):
            return index
    return None
