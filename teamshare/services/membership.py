"""
Team membership lifecycle: joins, removals, role changes and exit requests.

Every operation receives the authenticated caller explicitly, authorizes it
against the caller's team role, commits the membership change and only then
propagates the change into file and folder ACLs. Propagation is best-effort;
a failure there is logged and repaired later by ``sync_all`` or the nightly
resync job.
"""
import logging
from typing import List, Optional

from fastapi import Depends
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select, and_

from ..config import ROLE_HIERARCHY
from ..database import get_session
from ..exceptions import AuthorizationError, NotFoundError, StateConflictError, InvalidRoleError
from ..models import Team, Member, ExitRequest, TeamActivity, SharedFile, SharedFolder
from ..schemas.permissions import PropagationResult
from ..schemas.user import CurrentUser
from ..utils.time import get_time_stamp
from .propagation import BatchedPropagator, Grant, Revoke, ChangeRole, FullResync


logger = logging.getLogger(__name__)


def rank(role: Optional[str]) -> int:
    return ROLE_HIERARCHY.get(role, -1)


def membership_snapshot(session: Session, team_id: str) -> dict:
    members = session.exec(select(Member).where(Member.team_id == team_id)).all()
    return {member.user_id: member.role for member in members}


class MembershipLifecycle:
    def __init__(self, session: Session, propagator: Optional[BatchedPropagator] = None):
        self.session = session
        self.propagator = propagator or BatchedPropagator(session)

    # Lookups

    def get_team(self, team_id: str) -> Team:
        team = self.session.get(Team, team_id)
        if not team:
            raise NotFoundError("Team not found")
        return team

    def get_member(self, team_id: str, user_id: str) -> Optional[Member]:
        statement = select(Member).where(and_(
            Member.team_id == team_id,
            Member.user_id == user_id
        ))
        return self.session.exec(statement).first()

    def get_exit_request(self, team_id: str, member_id: str) -> Optional[ExitRequest]:
        statement = select(ExitRequest).where(and_(
            ExitRequest.team_id == team_id,
            ExitRequest.member_id == member_id
        ))
        return self.session.exec(statement).first()

    def _require_member(self, team_id: str, caller: CurrentUser) -> Member:
        membership = self.get_member(team_id, caller.id)
        if not membership:
            raise AuthorizationError("Access denied, user is not a member of the team.")
        return membership

    def _require_target(self, team_id: str, member_id: str) -> Member:
        target = self.get_member(team_id, member_id)
        if not target:
            raise NotFoundError("Member not found")
        return target

    @staticmethod
    def _require_rank(membership: Member, minimum: str, detail: str):
        if rank(membership.role) < rank(minimum):
            raise AuthorizationError(detail)

    def _require_pending(self, team_id: str, member_id: str, detail: str) -> ExitRequest:
        exit_request = self.get_exit_request(team_id, member_id)
        if not exit_request or exit_request.status != "pending":
            raise NotFoundError(detail)
        return exit_request

    @staticmethod
    def _authorize_removal(actor: Member, target: Member):
        if target.role == "owner":
            raise AuthorizationError("Cannot remove team owner")
        if target.role == "admin" and actor.role != "owner":
            raise AuthorizationError("Only team owner can remove admins")
        if rank(actor.role) < rank("admin"):
            raise AuthorizationError("Insufficient permissions to remove members")

    # Bookkeeping

    def _log_activity(self, team_id: str, caller: CurrentUser, action: str, target: str):
        self.session.add(TeamActivity(
            team_id=team_id,
            user_id=caller.id,
            user_name=caller.display_name,
            action=action,
            target=target,
        ))

    def _touch(self, team: Team):
        team.updated_at = get_time_stamp()
        self.session.add(team)

    def _propagate(self, team_id: str, op, dry_run: bool = False) -> List[PropagationResult]:
        """Run the ACL pass after the membership change is committed; never raises."""
        try:
            return self.propagator.propagate(team_id, op, dry_run=dry_run)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.warning(f"File permission propagation failed for team {team_id}, "
                           f"a later resync will repair it: {e}")
            return []

    # Propagation entry points

    def grant_access(self, caller: CurrentUser, team_id: str, member_id: str,
                     role: Optional[str] = None) -> List[PropagationResult]:
        self.get_team(team_id)
        actor = self._require_member(team_id, caller)
        if caller.id != member_id:
            self._require_rank(actor, "admin", "Only team owners and admins can grant file access")
        target = self._require_target(team_id, member_id)
        if role is not None and role != target.role:
            raise StateConflictError(
                f"Member holds role '{target.role}', not '{role}'. Change the role instead."
            )
        return self._propagate(team_id, Grant(member_id, target.role))

    def revoke_access(self, caller: CurrentUser, team_id: str, member_id: str) -> List[PropagationResult]:
        self.get_team(team_id)
        actor = self._require_member(team_id, caller)
        self._require_rank(actor, "admin", "Only team owners and admins can revoke file access")
        if self.get_member(team_id, member_id):
            logger.warning(f"Revoking file access of current member {member_id} in team {team_id}, "
                           f"the next resync grants it again")
        return self._propagate(team_id, Revoke(member_id))

    def sync_all(self, caller: CurrentUser, team_id: str, dry_run: bool = False) -> List[PropagationResult]:
        self.get_team(team_id)
        actor = self._require_member(team_id, caller)
        self._require_rank(actor, "admin", "Only team owners and admins can resync file permissions")
        members = membership_snapshot(self.session, team_id)
        return self._propagate(team_id, FullResync(members), dry_run=dry_run)

    # Teams

    def list_teams(self, caller: CurrentUser) -> List[Team]:
        statement = (select(Team)
                     .join(Member, Member.team_id == Team.id)
                     .where(Member.user_id == caller.id)
                     .order_by(Team.updated_at.desc(), Team.id))
        return self.session.exec(statement).all()

    def delete_team(self, caller: CurrentUser, team_id: str):
        """Delete the team with its members, exit requests, activities and shared resources."""
        team = self.get_team(team_id)
        actor = self._require_member(team_id, caller)
        if actor.role != "owner" or team.owner_id != caller.id:
            raise AuthorizationError("Only team owner can delete the team")

        for model in (ExitRequest, TeamActivity, SharedFile, SharedFolder, Member):
            for row in self.session.exec(select(model).where(model.team_id == team_id)).all():
                self.session.delete(row)
        self.session.delete(team)
        self.session.commit()
        logger.info(f"Team {team_id} deleted by {caller.id}")

    # Membership transitions

    def join_team(self, caller: CurrentUser, invite_code: str) -> Member:
        team = self.session.exec(select(Team).where(Team.invite_code == invite_code)).first()
        if not team:
            raise NotFoundError("Invalid invite code")
        if not team.allow_invites:
            raise AuthorizationError("This team is not accepting new members")
        if self.get_member(team.id, caller.id):
            raise StateConflictError("You are already a member of this team")

        new_member = Member(
            team_id=team.id,
            user_id=caller.id,
            name=caller.display_name,
            email=caller.email or "",
            role=team.default_role,
        )
        self.session.add(new_member)
        self._touch(team)
        self._log_activity(team.id, caller, "joined team", new_member.name)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise StateConflictError("You are already a member of this team")
        self.session.refresh(new_member)

        self._propagate(team.id, Grant(new_member.user_id, new_member.role))
        return new_member

    def remove_member(self, caller: CurrentUser, team_id: str, member_id: str):
        team = self.get_team(team_id)
        actor = self._require_member(team_id, caller)
        target = self._require_target(team_id, member_id)
        self._authorize_removal(actor, target)

        exit_request = self.get_exit_request(team_id, member_id)
        if exit_request:
            self.session.delete(exit_request)
        self.session.delete(target)
        self._touch(team)
        self._log_activity(team_id, caller, "removed member", target.name)
        self.session.commit()

        self._propagate(team_id, Revoke(member_id))

    def change_role(self, caller: CurrentUser, team_id: str, member_id: str, new_role: str) -> Member:
        team = self.get_team(team_id)
        actor = self._require_member(team_id, caller)
        if actor.role != "owner":
            raise AuthorizationError("Only team owner can change member roles")
        target = self._require_target(team_id, member_id)

        if new_role not in ROLE_HIERARCHY:
            raise InvalidRoleError(f"Unknown role '{new_role}'")
        if target.role == "owner":
            raise AuthorizationError("Cannot change owner role")
        if new_role == "owner":
            raise AuthorizationError("A team has exactly one owner")
        if target.role == new_role:
            raise StateConflictError(f"Member already has the role '{new_role}'")

        old_role = target.role
        target.role = new_role
        self.session.add(target)
        self._touch(team)
        self._log_activity(team_id, caller, "updated member role", f"{target.name} to {new_role}")
        self.session.commit()
        self.session.refresh(target)

        logger.info(f"Updating file permissions for role change: {old_role} -> {new_role}")
        self._propagate(team_id, ChangeRole(member_id, new_role))
        return target

    # Exit requests

    def request_exit(self, caller: CurrentUser, team_id: str, reason: Optional[str] = None) -> ExitRequest:
        team = self.get_team(team_id)
        member = self._require_member(team_id, caller)
        if member.role == "owner":
            raise AuthorizationError("Team owners cannot exit the team. Transfer ownership first.")

        exit_request = self.get_exit_request(team_id, caller.id)
        if exit_request and exit_request.status == "pending":
            raise StateConflictError("You already have a pending exit request")

        if exit_request is None:
            exit_request = ExitRequest(team_id=team_id, member_id=caller.id,
                                       member_name=member.name, member_email=member.email)
        exit_request.member_name = member.name
        exit_request.member_email = member.email
        exit_request.reason = reason
        exit_request.status = "pending"
        exit_request.rejected_reason = None
        exit_request.requested_at = get_time_stamp()
        exit_request.resolved_at = None

        self.session.add(exit_request)
        self._touch(team)
        self._log_activity(team_id, caller, "requested to exit", member.name)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise StateConflictError("You already have a pending exit request")
        self.session.refresh(exit_request)
        return exit_request

    def approve_exit(self, caller: CurrentUser, team_id: str, member_id: str):
        team = self.get_team(team_id)
        actor = self._require_member(team_id, caller)
        self._require_rank(actor, "admin", "Only team owners and admins can approve exit requests")
        exit_request = self._require_pending(team_id, member_id,
                                             "No pending exit request found for this member")
        target = self._require_target(team_id, member_id)
        self._authorize_removal(actor, target)

        self.session.delete(target)
        self.session.delete(exit_request)
        self._touch(team)
        self._log_activity(team_id, caller, "approved exit request", target.name)
        self.session.commit()

        self._propagate(team_id, Revoke(member_id))

    def reject_exit(self, caller: CurrentUser, team_id: str, member_id: str,
                    reason: Optional[str] = None) -> ExitRequest:
        team = self.get_team(team_id)
        actor = self._require_member(team_id, caller)
        self._require_rank(actor, "admin", "Only team owners and admins can reject exit requests")
        exit_request = self._require_pending(team_id, member_id,
                                             "No pending exit request found for this member")

        exit_request.status = "rejected"
        exit_request.rejected_reason = reason
        exit_request.resolved_at = get_time_stamp()
        self.session.add(exit_request)
        self._touch(team)
        self._log_activity(team_id, caller, "rejected exit request", exit_request.member_name)
        self.session.commit()
        self.session.refresh(exit_request)
        return exit_request

    def cancel_exit(self, caller: CurrentUser, team_id: str):
        team = self.get_team(team_id)
        exit_request = self._require_pending(team_id, caller.id, "No pending exit request found")

        self.session.delete(exit_request)
        self._touch(team)
        self._log_activity(team_id, caller, "cancelled exit request", exit_request.member_name)
        self.session.commit()

    def list_exit_requests(self, caller: CurrentUser, team_id: str,
                           status: Optional[str] = None) -> List[ExitRequest]:
        self.get_team(team_id)
        actor = self._require_member(team_id, caller)
        self._require_rank(actor, "admin", "Only team owners and admins can view exit requests")
        statement = select(ExitRequest).where(ExitRequest.team_id == team_id)
        if status:
            statement = statement.where(ExitRequest.status == status)
        return self.session.exec(statement.order_by(ExitRequest.requested_at)).all()

    def get_activities(self, caller: CurrentUser, team_id: str, limit: int = 20) -> List[TeamActivity]:
        self.get_team(team_id)
        self._require_member(team_id, caller)
        statement = (select(TeamActivity)
                     .where(TeamActivity.team_id == team_id)
                     .order_by(TeamActivity.created_at.desc())
                     .limit(limit))
        return self.session.exec(statement).all()


def get_lifecycle(session: Session = Depends(get_session)) -> MembershipLifecycle:
    return MembershipLifecycle(session)
