from datetime import datetime
from typing import Optional, Literal, List
from sqlmodel import SQLModel


class TeamCreate(SQLModel):
    name: str
    description: Optional[str] = None
    default_role: Literal["member", "viewer"] = "member"
    allow_invites: bool = True



class TeamRead(TeamCreate):
    id: str
    owner_id: str
    invite_code: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime] = None




class TeamList(SQLModel):
    teams: List[TeamRead]




class TeamUpdate(SQLModel):
    description: Optional[str] = None
    default_role: Optional[Literal["member", "viewer"]] = None
    allow_invites: Optional[bool] = None




class TeamActivityRead(SQLModel):
    id: str
    team_id: str
    user_id: str
    user_name: str
    action: str
    target: str
    created_at: datetime




class TeamActivityList(SQLModel):
    activities: List[TeamActivityRead]
