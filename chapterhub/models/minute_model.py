from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class MinuteCreate(BaseModel):
    start_time: datetime
    end_time: datetime
    actives_present: int = Field(..., ge=0)
    quorum_required: bool = False
    executive_summary: str = Field(..., min_length=1)
    event_id: Optional[str] = None
    # Uploaded elsewhere; only the resulting link is stored here
    minutes_url: str = Field(..., min_length=1)


class MinuteUpdate(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    actives_present: Optional[int] = Field(None, ge=0)
    quorum_required: Optional[bool] = None
    executive_summary: Optional[str] = None
    event_id: Optional[str] = None
    minutes_url: Optional[str] = None
    hidden: Optional[bool] = None
