"""
Cache key normalization.

Callers describe a query with a short ordered list of primitives, e.g.
["/api/projects", 12, "rfis"]. The descriptor is usually rebuilt on every
call, so identity comes from its serialized form, never from the object.
"""
import json
from typing import Any, List, Sequence


def _as_parts(descriptor: Any) -> List[Any]:
    """Lists and tuples keep their order; anything else is a one-element key."""
    if isinstance(descriptor, (list, tuple)):
        return list(descriptor)
    return [descriptor]


def normalize_key(descriptor: Any) -> str:
    """
    Turn a key descriptor into a stable, comparable string.

    Sequence order is preserved, dict members are sorted, and values JSON
    cannot represent are stringified. No validation is performed.

    Args:
        descriptor: A list/tuple of primitives, or a single primitive

    Returns:
        Canonical key string
    """
    return json.dumps(
        _as_parts(descriptor),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def key_parts(descriptor: Any) -> List[Any]:
    """Normalized descriptor as a list (tuples become lists, odd values strings)."""
    return json.loads(normalize_key(descriptor))


def matches_prefix(parts: Sequence[Any], prefix: Any) -> bool:
    """
    Check whether a key starts with the elements of a prefix descriptor.

    ["/api/projects", 12] matches ["/api/projects", 12, "rfis"] but not
    ["/api/projects", 13].
    """
    wanted = key_parts(prefix)
    if len(wanted) > len(parts):
        return False
    return list(parts[: len(wanted)]) == wanted
