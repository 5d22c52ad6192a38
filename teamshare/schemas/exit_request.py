from datetime import datetime
from typing import Optional, List
from sqlmodel import SQLModel
from enum import Enum


class ExitRequestStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"




class ExitRequestCreate(SQLModel):
    reason: Optional[str] = None




class ExitRequestReject(SQLModel):
    reason: Optional[str] = None




class ExitRequestRead(SQLModel):
    id: str
    team_id: str
    member_id: str
    member_name: str
    member_email: str
    reason: Optional[str] = None
    status: ExitRequestStatus
    rejected_reason: Optional[str] = None
    requested_at: datetime
    resolved_at: Optional[datetime] = None




class ExitRequestList(SQLModel):
    exit_requests: List[ExitRequestRead]
