from __future__ import annotations

from dataclasses import fields, is_dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Mapping


def to_jsonable(obj: Any) -> Any:
    """
    Convert shiplock values to JSON-serializable equivalents.

    Security considerations:
    - bytes become 0x-prefixed hex, the ledger's native encoding.
    - dataclass fields declared with repr=False (secret material, key bytes)
      are omitted.
    - does NOT execute or import anything dynamically.

    """
    if obj is None or isinstance(obj, (bool, int, float, str)) and not isinstance(obj, Enum):
        return obj

    if isinstance(obj, Enum):
        return obj.value

    if isinstance(obj, (datetime, date)):
        return obj.isoformat()

    if isinstance(obj, Path):
        return str(obj)

    if isinstance(obj, (bytes, bytearray)):
        return "0x" + bytes(obj).hex()

    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in fields(obj) if f.repr}

    if isinstance(obj, Mapping):
        return {str(k): to_jsonable(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_jsonable(x) for x in obj]

    return str(obj)
