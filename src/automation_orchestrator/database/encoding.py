"""JSON encoding of step payloads.

Step input/output are stored as JSON text. Payloads are whatever the
pipeline has at hand: dataclasses, pydantic models, enums, datetimes.
"""

from __future__ import annotations

import dataclasses
import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


def _default(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str | None:
    """Serialize a payload; None stays NULL in the database."""
    if value is None:
        return None
    return json.dumps(value, default=_default, sort_keys=True)


def loads(text: str | None) -> Any:
    if text is None:
        return None
    return json.loads(text)
