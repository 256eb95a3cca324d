from typing import Literal

from pydantic import BaseModel, Field


class LockdownIn(BaseModel):
    action: Literal["engage", "release"] = "engage"
    reason: str = ""
    duration_minutes: int = Field(0, ge=0)
