from datetime import datetime
from sqlalchemy import (UniqueConstraint, CheckConstraint, Index,
                        Column, String, JSON, ForeignKey, event)
from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List
from uuid import uuid4
from .utils.time import get_time_stamp


def empty_permissions():
    return {"view": [], "edit": [], "admin": []}


def generate_invite_code():
    return uuid4().hex[:8].upper()




class Team(SQLModel, table=True):
    __tablename__ = 'teams'
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(unique=True,
                      max_length=255,
                      index=True,
                      sa_column_kwargs={"nullable": False})
    description: Optional[str] = Field(default=None)
    owner_id: str = Field(index=True, max_length=255)

    # Settings
    default_role: str = Field(
        default="member",
        max_length=50,
        sa_column=Column(String(50), CheckConstraint("default_role IN ('member', 'viewer')"))
    )
    allow_invites: bool = Field(default=True)
    invite_code: str = Field(default_factory=generate_invite_code, unique=True, index=True)

    created_at: datetime = Field(default_factory=get_time_stamp)
    updated_at: datetime = Field(default_factory=get_time_stamp)

    # Relationships
    members: List["Member"] = Relationship(back_populates='team', passive_deletes=True)
    exit_requests: List["ExitRequest"] = Relationship(back_populates='team', passive_deletes=True)




class Member(SQLModel, table=True):
    __tablename__ = 'members'
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    team_id: str = Field(
        sa_column=Column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    )
    # Identity used in resource ACLs
    user_id: str = Field(index=True, max_length=255)
    name: str = Field(max_length=255)
    email: str = Field(index=True, max_length=255)

    role: str = Field(
        default="member",
        max_length=50,
        sa_column=Column(String(50), CheckConstraint("role IN ('owner', 'admin', 'member', 'viewer')"))
    )
    joined_at: datetime = Field(default_factory=get_time_stamp)
    updated_at: datetime = Field(default_factory=get_time_stamp)

    # Defining the UNIQUE constraint on (team_id, user_id)
    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="unique_team_user"),
    )

    # Relationships
    team: Optional["Team"] = Relationship(back_populates='members', passive_deletes=True)




class ExitRequest(SQLModel, table=True):
    __tablename__ = 'exit_requests'
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    team_id: str = Field(
        sa_column=Column(ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    )
    member_id: str = Field(max_length=255)
    member_name: str = Field(max_length=255)
    member_email: str = Field(max_length=255)
    reason: Optional[str] = Field(default=None)
    status: str = Field(
        default="pending",
        max_length=50,
        sa_column=Column(String(50), CheckConstraint("status IN ('pending', 'approved', 'rejected')"))
    )
    rejected_reason: Optional[str] = Field(default=None)
    requested_at: datetime = Field(default_factory=get_time_stamp)
    resolved_at: Optional[datetime] = Field(default=None)
    updated_at: datetime = Field(default_factory=get_time_stamp)

    # One record per member, reused when a rejected member asks again
    __table_args__ = (
        UniqueConstraint("team_id", "member_id", name="unique_team_exit_request"),
        Index("ix_exit_requests_team_status", "team_id", "status"),
    )

    def __repr__(self):
        return f"<ExitRequest member_id={self.member_id} team_id={self.team_id} status={self.status}>"

    # Relationships
    team: Optional["Team"] = Relationship(back_populates='exit_requests', passive_deletes=True)




class SharedFile(SQLModel, table=True):
    __tablename__ = 'shared_files'
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    team_id: str = Field(
        sa_column=Column(ForeignKey("teams.id", ondelete="CASCADE"), index=True)
    )
    file_name: str = Field(default="Unknown File", max_length=255)
    permissions: dict = Field(default_factory=empty_permissions, sa_column=Column(JSON, nullable=False))
    last_modified: datetime = Field(default_factory=get_time_stamp)
    last_modified_by: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=get_time_stamp)




class SharedFolder(SQLModel, table=True):
    __tablename__ = 'shared_folders'
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    team_id: str = Field(
        sa_column=Column(ForeignKey("teams.id", ondelete="CASCADE"), index=True)
    )
    folder_name: str = Field(default="Unknown Folder", max_length=255)
    permissions: dict = Field(default_factory=empty_permissions, sa_column=Column(JSON, nullable=False))
    last_modified: datetime = Field(default_factory=get_time_stamp)
    last_modified_by: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=get_time_stamp)




class TeamActivity(SQLModel, table=True):
    __tablename__ = 'team_activities'
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    team_id: str = Field(
        sa_column=Column(ForeignKey("teams.id", ondelete="CASCADE"), index=True)
    )
    user_id: str = Field(max_length=255)
    user_name: str = Field(max_length=255)
    action: str = Field(max_length=255)
    target: str = Field(max_length=255)
    created_at: datetime = Field(default_factory=get_time_stamp)




@event.listens_for(SQLModel, "before_update", propagate=True)
def auto_update_timestamp(_, __, target):
    if hasattr(target, "updated_at"):
        target.updated_at = get_time_stamp()
