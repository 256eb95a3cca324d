from typing import Optional

from pydantic import BaseModel, Field


class GpaUpdate(BaseModel):
    member_id: str
    semester: Optional[str] = Field(None, example="Fall 2026")
    # required, null clears the recorded GPA
    gpa: Optional[float] = Field(..., example=3.4)
