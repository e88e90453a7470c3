from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.deps import get_event_bus
from schemas.event import EventsOut
from services.events import EventBus, event_to_dict


router = APIRouter()


@router.get("/", response_model=EventsOut)
def list_events(
    after: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    bus: EventBus = Depends(get_event_bus),
) -> EventsOut:
    return {
        "last_seq": bus.last_seq,
        "events": [event_to_dict(seq, event) for seq, event in bus.since(after, limit=limit)],
    }
