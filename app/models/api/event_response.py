# app/models/api/event_response.py
from datetime import datetime

from app.models.api.base import CamelModel
from app.models.api.user_response import UserPartialResponse
from app.models.domain.event_domain import Event


class EventResponse(CamelModel):
    id: str
    name: str
    description: str
    owner: UserPartialResponse | None
    hosts: list[UserPartialResponse]
    users: list[UserPartialResponse]
    rsvps: list[UserPartialResponse]
    user_reads: list[UserPartialResponse]
    place_id: str
    address: str
    lat: float
    lng: float
    timestamp: datetime
    utc_offset: int
    guests_can_invite: bool
    created_at: datetime

    @classmethod
    def from_event(cls, event: Event) -> "EventResponse":
        def partials(items):
            return [UserPartialResponse.from_partial(p) for p in items]

        return cls(
            id=event.id,
            name=event.name,
            description=event.description,
            owner=UserPartialResponse.from_partial(event.owner) if event.owner else None,
            hosts=partials(event.hosts),
            users=partials(event.members),
            rsvps=partials(event.rsvps),
            user_reads=partials(event.user_reads()),
            place_id=event.place_id,
            address=event.address,
            lat=event.lat,
            lng=event.lng,
            timestamp=event.timestamp,
            utc_offset=event.utc_offset,
            guests_can_invite=event.guests_can_invite,
            created_at=event.created_at,
        )


class EventsResponse(CamelModel):
    events: list[EventResponse]


class MagicLinkResponse(CamelModel):
    magic_link: str
