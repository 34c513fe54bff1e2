from __future__ import annotations

import json
from typing import Any, Mapping, Optional


def single_related(value: Any) -> Optional[Mapping[str, Any]]:
    """Collapse a joined relation into one record or None.

    Joined reads hand back a related record either as an object or as a
    one-element list depending on the query shape. Call this right after the
    fetch so nothing downstream has to care which one it got.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = json.loads(value)
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def related_field(value: Any, key: str, default: Any = None) -> Any:
    record = single_related(value)
    if record is None:
        return default
    return record.get(key, default)


def json_list(value: Any) -> list:
    """Decode a JSON/JSONB array column that may arrive as text or a Python list."""
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value)
    return list(value)
