from fastapi import APIRouter, Depends
from typing import Annotated, Optional
from ..schemas.exit_request import (ExitRequestCreate, ExitRequestReject, ExitRequestRead,
                                    ExitRequestList, ExitRequestStatus)
from ..schemas.user import CurrentUser
from ..services.auth import get_current_user
from ..services.membership import MembershipLifecycle, get_lifecycle


router = APIRouter(prefix="/exit-requests", tags=["Exit Requests"])
user_dependency = Annotated[CurrentUser, Depends(get_current_user)]
lifecycle_dependency = Annotated[MembershipLifecycle, Depends(get_lifecycle)]


@router.post("/{team_id}", response_model=ExitRequestRead)
async def request_exit(current_user: user_dependency, team_id: str,
                       exit_request: ExitRequestCreate, lifecycle: lifecycle_dependency):
    """Ask to leave the team. An owner or admin has to approve the request."""
    return lifecycle.request_exit(current_user, team_id, exit_request.reason)


@router.delete("/{team_id}", status_code=204)
async def cancel_exit(current_user: user_dependency, team_id: str, lifecycle: lifecycle_dependency):
    lifecycle.cancel_exit(current_user, team_id)
    return


@router.get("/{team_id}", response_model=ExitRequestList)
async def list_exit_requests(current_user: user_dependency, team_id: str,
                             lifecycle: lifecycle_dependency,
                             status: Optional[ExitRequestStatus] = None):
    exit_requests = lifecycle.list_exit_requests(current_user, team_id,
                                                 status.value if status else None)
    return ExitRequestList(
        exit_requests=[ExitRequestRead.model_validate(request) for request in exit_requests]
    )


@router.post("/{team_id}/{member_id}/approve", status_code=204)
async def approve_exit(current_user: user_dependency, team_id: str, member_id: str,
                       lifecycle: lifecycle_dependency):
    """Approve a pending request: the member leaves and loses access to team files."""
    lifecycle.approve_exit(current_user, team_id, member_id)
    return


@router.post("/{team_id}/{member_id}/reject", response_model=ExitRequestRead)
async def reject_exit(current_user: user_dependency, team_id: str, member_id: str,
                      respond: ExitRequestReject, lifecycle: lifecycle_dependency):
    return lifecycle.reject_exit(current_user, team_id, member_id, respond.reason)
