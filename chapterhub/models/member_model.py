from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

MemberStatus = Literal["Active", "Alumni", "Removed", "Deceased"]
MemberRole = Literal["superadmin", "admin", "member"]


class MemberCreate(BaseModel):
    user_id: str
    roll_no: str
    first_name: str
    last_name: str
    grad_year: int
    status: MemberStatus = "Active"
    role: MemberRole = "member"
    is_ecouncil: bool = False
    ecouncil_position: Optional[str] = None


class ProfileUpdate(BaseModel):
    bio: Optional[str] = None
    headline: Optional[str] = None
    pronouns: Optional[str] = None
    hometown: Optional[str] = None
    majors: Optional[List[str]] = None
    minors: Optional[List[str]] = None
    social_links: Optional[Dict[str, str]] = None


class PermissionUpdate(BaseModel):
    status: Optional[MemberStatus] = None
    role: Optional[MemberRole] = None
    is_ecouncil: Optional[bool] = None
    ecouncil_position: Optional[str] = None
