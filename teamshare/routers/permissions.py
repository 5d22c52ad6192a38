from fastapi import APIRouter, Depends, Query
from typing import Annotated, Optional
from ..schemas.member import MemberGrant
from ..schemas.permissions import PropagationReport
from ..schemas.user import CurrentUser
from ..services.auth import get_current_user
from ..services.membership import MembershipLifecycle, get_lifecycle


router = APIRouter(prefix="/permissions", tags=["Permissions"])
user_dependency = Annotated[CurrentUser, Depends(get_current_user)]
lifecycle_dependency = Annotated[MembershipLifecycle, Depends(get_lifecycle)]


@router.post("/{team_id}/grant/{member_id}", response_model=PropagationReport)
async def grant_access(current_user: user_dependency, team_id: str, member_id: str,
                       lifecycle: lifecycle_dependency, grant: Optional[MemberGrant] = None):
    role = grant.role if grant else None
    results = lifecycle.grant_access(current_user, team_id, member_id, role)
    return PropagationReport.from_results(team_id, results)


@router.post("/{team_id}/revoke/{member_id}", response_model=PropagationReport)
async def revoke_access(current_user: user_dependency, team_id: str, member_id: str,
                        lifecycle: lifecycle_dependency):
    results = lifecycle.revoke_access(current_user, team_id, member_id)
    return PropagationReport.from_results(team_id, results)


@router.post("/{team_id}/sync", response_model=PropagationReport)
async def sync_all(current_user: user_dependency, team_id: str, lifecycle: lifecycle_dependency,
                   dry_run: bool = Query(False)):
    """Recompute every file and folder ACL of the team from its current membership."""
    results = lifecycle.sync_all(current_user, team_id, dry_run=dry_run)
    return PropagationReport.from_results(team_id, results)
