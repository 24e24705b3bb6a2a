"""
Dot-path helpers for nested state dictionaries.
"""

from typing import Any, Dict


def get_path(data: Dict, path: str) -> Any:
    """
    Navigate a dot-path into a nested dictionary.

    Returns:
        The value at the path, or None if any segment is missing
    """
    if not path or path in (".", ""):
        return data

    current = data
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return None
    return current


def set_path(data: Dict, path: str, value: Any) -> bool:
    """
    Set a value at a dot-path, creating intermediate dictionaries.

    Returns:
        False if the path is empty or runs through a non-dict value
    """
    if not path or path in (".", ""):
        return False

    keys = path.split(".")
    current = data

    for key in keys[:-1]:
        if key not in current or current[key] is None:
            current[key] = {}
        current = current[key]
        if not isinstance(current, dict):
            return False

    current[keys[-1]] = value
    return True


def path_root(path: str) -> str:
    return path.split(".", 1)[0]
