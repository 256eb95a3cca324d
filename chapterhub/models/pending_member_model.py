from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from chapterhub.models.member_model import MemberRole, MemberStatus


class PendingMemberCreate(BaseModel):
    """Onboarding form a signed-in user submits before an admin lets them in."""
    roll_no: str = Field(..., min_length=1, example="412")
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    grad_year: int = Field(..., example=2028)
    is_ecouncil: bool
    ecouncil_position: str = ""
    majors: List[str] = Field(default_factory=list)
    bio: str = ""
    hometown: str = ""
    pledge_class: str = ""
    family_line: str = ""
    social_links: Dict[str, str] = Field(default_factory=dict)


class PendingMemberUpdate(BaseModel):
    roll_no: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    grad_year: Optional[int] = None
    majors: Optional[List[str]] = None
    bio: Optional[str] = None
    hometown: Optional[str] = None
    pledge_class: Optional[str] = None
    family_line: Optional[str] = None
    social_links: Optional[Dict[str, str]] = None
    preferred_status: Optional[MemberStatus] = None
    preferred_role: Optional[MemberRole] = None


class PendingReview(BaseModel):
    action: Literal["approve", "reject", "update"]
    review_comments: Optional[str] = None
    updates: Optional[PendingMemberUpdate] = None
