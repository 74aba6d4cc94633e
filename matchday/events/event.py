from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"{type(obj).__name__} is not JSON serialisable")


class Event:
    """Base domain event: a typed, identified payload.

    ``event_id`` is deterministic for events that must be emitted at most
    once, so sinks can de-duplicate on it.
    """

    def __init__(self, *, event_id: str | None, event_type: str, event_data: Dict[str, Any]):
        self.event_type = event_type
        self.event_data = event_data
        self.event_id = event_id or Event.make_id(event_type, Event.canonical_json(event_data))
        self.created_at = datetime.now(timezone.utc)

    @staticmethod
    def make_id(*parts: Any) -> str:
        joined = "|".join(str(p) for p in parts)
        return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:32]

    @staticmethod
    def canonical_json(payload: Dict[str, Any]) -> str:
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=_default)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "created_at": self.created_at.isoformat(),
            "data": self.event_data,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(event_id={self.event_id!r}, event_type={self.event_type!r})"
