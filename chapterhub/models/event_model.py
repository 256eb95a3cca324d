from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

EventType = Literal["meeting", "event", "chapter"]
EventStatus = Literal["scheduled", "ongoing", "completed", "cancelled"]
GemCategory = Literal[
    "general-conference",
    "committee-meeting",
    "pillar-brotherhood",
    "pillar-professionalism",
    "pillar-service",
    "rush-event",
    "rush-tabling",
    "fso-event",
    "lock-in",
]


class RecurrenceIn(BaseModel):
    enabled: bool = False
    frequency: Optional[str] = None
    interval: Optional[int] = None
    end_date: Optional[datetime] = None
    count: Optional[int] = None


class EventCreate(BaseModel):
    name: str = Field(..., min_length=1, example="Chapter Meeting")
    description: str = ""
    committee_id: Optional[str] = None
    start_time: datetime
    end_time: datetime
    location: str = ""
    event_type: EventType = "event"
    gem_category: Optional[GemCategory] = None
    status: EventStatus = "scheduled"
    visible_to_alumni: bool = True
    recurrence: Optional[RecurrenceIn] = None


class EventUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    committee_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    location: Optional[str] = None
    event_type: Optional[EventType] = None
    gem_category: Optional[GemCategory] = None
    status: Optional[EventStatus] = None
    visible_to_alumni: Optional[bool] = None
    recurrence: Optional[RecurrenceIn] = None


class CheckInIn(BaseModel):
    code: str
    source: str = Field(..., example="qr-scanner")
    scanner_member_id: Optional[str] = None


class ManualCheckInIn(BaseModel):
    member_id: str
