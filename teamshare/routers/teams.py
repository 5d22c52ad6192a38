from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, select, and_, func
from teamshare.models import Member, Team
from teamshare.schemas.teams import (TeamCreate, TeamRead, TeamUpdate, TeamList,
                                     TeamActivityList, TeamActivityRead)
from teamshare.schemas.member import MemberList, MemberRead
from teamshare.database import get_session
from typing import Annotated
from ..schemas.user import CurrentUser
from ..services.auth import get_current_user
from ..services.membership import MembershipLifecycle, get_lifecycle


router = APIRouter(prefix="/team", tags=["Team"])
user_dependency = Annotated[CurrentUser, Depends(get_current_user)]
lifecycle_dependency = Annotated[MembershipLifecycle, Depends(get_lifecycle)]


def validate_membership(user_id:str, team_id:str, session: Session):
    statement = select(Member).where(and_(
        Member.user_id == user_id,
        Member.team_id == team_id
    ))
    membership = session.exec(statement).first()
    if not membership:
        raise HTTPException(status_code=403, detail="Access denied, user is not a member of the team.")
    return membership


@router.post("/create", response_model=TeamRead)
async def create_team(current_user: user_dependency, team: TeamCreate, session: Session = Depends(get_session)):
    statement = select(Team).where(Team.name == team.name)
    existing_team = session.exec(statement).first()
    if existing_team:
        raise HTTPException(status_code=409, detail="Team with this name already exists")
    new_team = Team(**team.model_dump(), owner_id=current_user.id)
    team_owner = Member(team_id=new_team.id,
                        user_id=current_user.id,
                        name=current_user.display_name,
                        email=current_user.email or "",
                        role="owner")
    session.add(new_team)
    session.add(team_owner)
    session.commit()
    session.refresh(new_team)
    return new_team


@router.put("/update/{team_id}", response_model=TeamRead)
async def update_team(current_user: user_dependency, team_id: str, team: TeamUpdate,
                       session: Session = Depends(get_session)):
    team_to_update = session.get(Team, team_id)
    if not team_to_update:
        raise HTTPException(status_code=404, detail="Team not found")
    member = validate_membership(current_user.id, team_id, session)
    if member.role != "owner":
        raise HTTPException(
            status_code=403,
            detail="You are not authorized to modify team data. Only the owner can perform this action."
        )
    data_to_update = team.model_dump(exclude_unset=True)
    for key, value in data_to_update.items():
        setattr(team_to_update, key, value)
    session.add(team_to_update)
    session.commit()
    session.refresh(team_to_update)
    return team_to_update


@router.delete("/delete/{team_id}", status_code=204)
async def delete_team(current_user: user_dependency, team_id: str, lifecycle: lifecycle_dependency):
    lifecycle.delete_team(current_user, team_id)
    return


@router.get("", response_model=TeamList)
async def get_user_teams(current_user: user_dependency, lifecycle: lifecycle_dependency):
    teams = lifecycle.list_teams(current_user)
    return TeamList(teams=[TeamRead.model_validate(team) for team in teams])


@router.post("/join/{invite_code}", response_model=MemberRead)
async def join_team(current_user: user_dependency, invite_code: str, lifecycle: lifecycle_dependency):
    return lifecycle.join_team(current_user, invite_code)


@router.get("/{team_id}", response_model=TeamRead)
async def get_team(current_user: user_dependency,
                   team_id: str,
                   session: Session = Depends(get_session)):
    team = session.get(Team, team_id)
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    validate_membership(current_user.id, team_id, session)
    return team


@router.get("/members/{team_id}", response_model=MemberList)
async def get_team_members(current_user: user_dependency,
                           team_id: str,
                           limit: int = Query(5, ge=1),
                           offset: int = Query(0, ge=0),
                           session: Session = Depends(get_session)):
    validate_membership(current_user.id, team_id, session)
    total = session.exec(
        select(func.count()).select_from(Member).where(Member.team_id == team_id)
    ).one()
    statement = (select(Member)
                 .where(Member.team_id == team_id)
                 .order_by(Member.joined_at, Member.id)
                 .offset(offset)
                 .limit(limit))
    members = session.exec(statement).all()
    return MemberList(members=[MemberRead.model_validate(member) for member in members], total=total)


@router.get("/{team_id}/activities", response_model=TeamActivityList)
async def get_team_activities(current_user: user_dependency,
                              team_id: str,
                              lifecycle: lifecycle_dependency,
                              limit: int = Query(20, ge=1, le=100)):
    activities = lifecycle.get_activities(current_user, team_id, limit=limit)
    return TeamActivityList(
        activities=[TeamActivityRead.model_validate(activity) for activity in activities]
    )
