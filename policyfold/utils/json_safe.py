from __future__ import annotations

from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Mapping
from uuid import UUID


def to_jsonable(obj: Any) -> Any:
    """
    Convert conversion reports (dataclasses, enums, events) to JSON-serializable
    equivalents.

    Security considerations:
    - does NOT execute or import anything dynamically.

    """
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj

    # datetime/date -> ISO 8601
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()

    if isinstance(obj, (Path, UUID)):
        return str(obj)

    # ObjectType and friends serialize as their value
    if isinstance(obj, Enum):
        return to_jsonable(obj.value)

    # events carry their own payload shape
    to_payload = getattr(obj, "to_payload", None)
    if callable(to_payload):
        return to_jsonable(to_payload())

    if is_dataclass(obj) and not isinstance(obj, type):
        return to_jsonable(asdict(obj))

    if isinstance(obj, Mapping):
        return {str(k): to_jsonable(v) for k, v in obj.items()}

    # iterables (including set/frozenset/tuple/list)
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_jsonable(x) for x in obj]

    # fallback: string representation
    return str(obj)
