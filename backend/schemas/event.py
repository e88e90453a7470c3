from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class EventsOut(BaseModel):
    last_seq: int
    events: list[dict[str, Any]]
