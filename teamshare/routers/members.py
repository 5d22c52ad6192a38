from fastapi import APIRouter, Depends, HTTPException
from typing import Annotated
from teamshare.schemas.member import MemberRead, MemberRoleUpdate
from teamshare.schemas.user import CurrentUser
from ..services.auth import get_current_user
from ..services.membership import MembershipLifecycle, get_lifecycle


router = APIRouter(prefix="/members", tags=["Members"])
user_dependency = Annotated[CurrentUser, Depends(get_current_user)]
lifecycle_dependency = Annotated[MembershipLifecycle, Depends(get_lifecycle)]


@router.get("/{team_id}/{member_id}", response_model=MemberRead)
async def get_member(current_user: user_dependency, team_id: str, member_id: str,
                     lifecycle: lifecycle_dependency):
    lifecycle.get_team(team_id)
    if not lifecycle.get_member(team_id, current_user.id):
        raise HTTPException(status_code=403, detail="Access denied, user is not a member of the team.")
    member_to_get = lifecycle.get_member(team_id, member_id)
    if not member_to_get:
        raise HTTPException(status_code=404, detail="Member not found")
    return member_to_get


@router.put("/{team_id}/{member_id}/role", response_model=MemberRead)
async def change_member_role(current_user: user_dependency, team_id: str, member_id: str,
                             member: MemberRoleUpdate, lifecycle: lifecycle_dependency):
    return lifecycle.change_role(current_user, team_id, member_id, member.role)


@router.delete("/{team_id}/{member_id}", status_code=204)
async def remove_member(current_user: user_dependency, team_id: str, member_id: str,
                        lifecycle: lifecycle_dependency):
    lifecycle.remove_member(current_user, team_id, member_id)
    return
