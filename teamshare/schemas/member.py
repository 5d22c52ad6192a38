from datetime import datetime
from typing import Optional, Literal, List
from sqlmodel import SQLModel




class MemberRead(SQLModel):
    id: str
    team_id: str
    user_id: str
    name: str
    email: str
    role: Literal["owner", "admin", "member", "viewer"]
    joined_at: datetime
    updated_at: Optional[datetime] = None




class MemberList(SQLModel):
    members: List[MemberRead]
    total: int




class MemberRoleUpdate(SQLModel):
    # Ownership is never handed out through a role change
    role: Literal["admin", "member", "viewer"]




class MemberGrant(SQLModel):
    role: Optional[Literal["owner", "admin", "member", "viewer"]] = None
