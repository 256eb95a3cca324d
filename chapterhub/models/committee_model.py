from typing import List, Optional

from pydantic import BaseModel, Field


class CommitteeCreate(BaseModel):
    name: str = Field(..., min_length=1, example="Philanthropy")
    description: str = ""
    head_id: Optional[str] = None
    member_ids: List[str] = Field(default_factory=list)


class CommitteeUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    head_id: Optional[str] = None
    member_ids: Optional[List[str]] = None
