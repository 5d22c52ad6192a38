from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from teamshare.exceptions import AuthorizationError, InvalidRoleError, NotFoundError, StateConflictError
from teamshare.models import ExitRequest, Member, SharedFile, SharedFolder, Team, TeamActivity
from teamshare.services.membership import MembershipLifecycle


EMPTY = {"view": [], "edit": [], "admin": []}


@pytest.fixture
def lifecycle(session):
    return MembershipLifecycle(session)


@pytest.fixture
def team(factory, alice, bob, carol):
    team = factory.team(alice)
    factory.member(team, bob, "member")
    factory.member(team, carol, "admin")
    return team


def tiers_holding(permissions: dict, member_id: str) -> list:
    return [tier for tier, ids in permissions.items() if member_id in ids]


class FailingPropagator:
    def propagate(self, team_id, op, dry_run=False):
        raise OperationalError("SELECT", {}, Exception("store unavailable"))


class TestGrantAndRevoke:
    def test_grant_uses_stored_role(self, session, lifecycle, factory, team, alice, bob):
        f1 = factory.file(team, "F1", {"view": [], "edit": [], "admin": [alice.id]})
        f2 = factory.file(team, "F2", {"view": [bob.id], "edit": [], "admin": [alice.id]})

        results = lifecycle.grant_access(alice, team.id, bob.id, "member")

        assert [result.updated for result in results] == [True, True]
        session.refresh(f1)
        session.refresh(f2)
        assert f1.permissions == {"view": [], "edit": [bob.id], "admin": [alice.id]}
        assert f2.permissions == {"view": [], "edit": [bob.id], "admin": [alice.id]}

    def test_member_may_grant_their_own_access(self, lifecycle, factory, team, bob):
        factory.file(team)
        results = lifecycle.grant_access(bob, team.id, bob.id)
        assert results[0].updated is True

    def test_member_cannot_grant_others(self, lifecycle, team, bob, carol):
        with pytest.raises(AuthorizationError):
            lifecycle.grant_access(bob, team.id, carol.id)

    def test_grant_with_mismatched_role_is_a_conflict(self, lifecycle, team, alice, bob):
        with pytest.raises(StateConflictError):
            lifecycle.grant_access(alice, team.id, bob.id, "admin")

    def test_grant_for_unknown_member(self, lifecycle, team, alice, dave):
        with pytest.raises(NotFoundError):
            lifecycle.grant_access(alice, team.id, dave.id)

    def test_revoke_current_member_clears_every_tier(self, session, lifecycle, factory, team, alice, bob):
        resources = [factory.file(team, "F", {"view": [bob.id], "edit": [bob.id], "admin": [alice.id]}),
                     factory.folder(team, "D", {"view": [], "edit": [bob.id], "admin": [alice.id]})]

        results = lifecycle.revoke_access(alice, team.id, bob.id)

        assert all(result.updated for result in results)
        for resource in resources:
            session.refresh(resource)
            assert tiers_holding(resource.permissions, bob.id) == []
        assert lifecycle.get_member(team.id, bob.id).role == "member"

    def test_member_cannot_revoke(self, lifecycle, team, bob, carol):
        with pytest.raises(AuthorizationError):
            lifecycle.revoke_access(bob, team.id, carol.id)

    def test_revoke_former_member(self, session, lifecycle, factory, team, alice):
        shared_file = factory.file(team, "F", {"view": ["former"], "edit": [], "admin": [alice.id]})

        lifecycle.revoke_access(alice, team.id, "former")

        session.refresh(shared_file)
        assert shared_file.permissions == {"view": [], "edit": [], "admin": [alice.id]}

    def test_unknown_team(self, lifecycle, alice):
        with pytest.raises(NotFoundError):
            lifecycle.sync_all(alice, "missing-team")


class TestSyncAll:
    def test_sync_is_idempotent(self, lifecycle, factory, team, alice):
        factory.file(team, "F", EMPTY)
        factory.folder(team, "D", {"view": ["former"], "edit": [], "admin": []})

        first = lifecycle.sync_all(alice, team.id)
        second = lifecycle.sync_all(alice, team.id)

        assert all(result.updated for result in first)
        assert all(result.updated is False for result in second)

    def test_every_member_holds_exactly_one_tier(self, session, lifecycle, factory, team, alice, bob, carol):
        resources = [factory.file(team, "F", {"view": [bob.id], "edit": [bob.id], "admin": []}),
                     factory.folder(team, "D", EMPTY)]

        lifecycle.sync_all(alice, team.id)

        for resource in resources:
            session.refresh(resource)
            for member_id in (alice.id, bob.id, carol.id):
                assert len(tiers_holding(resource.permissions, member_id)) == 1

    def test_dry_run_reports_drift_without_writing(self, session, lifecycle, factory, team, alice):
        shared_file = factory.file(team, "F", EMPTY)

        results = lifecycle.sync_all(alice, team.id, dry_run=True)

        assert results[0].updated is True
        session.refresh(shared_file)
        assert shared_file.permissions == EMPTY

    def test_only_admins_can_sync(self, lifecycle, team, bob):
        with pytest.raises(AuthorizationError):
            lifecycle.sync_all(bob, team.id)

    def test_outsiders_are_rejected(self, lifecycle, team, dave):
        with pytest.raises(AuthorizationError):
            lifecycle.sync_all(dave, team.id)


class TestRemoveMember:
    def test_removal_revokes_every_resource(self, session, lifecycle, factory, team, alice, bob):
        f1 = factory.file(team, "F1", {"view": [], "edit": [bob.id], "admin": [alice.id]})
        d1 = factory.folder(team, "D1", {"view": [], "edit": [bob.id], "admin": [alice.id]})

        lifecycle.remove_member(alice, team.id, bob.id)

        assert lifecycle.get_member(team.id, bob.id) is None
        for resource in (f1, d1):
            session.refresh(resource)
            assert tiers_holding(resource.permissions, bob.id) == []

    def test_owner_cannot_be_removed(self, lifecycle, team, alice, carol):
        with pytest.raises(AuthorizationError):
            lifecycle.remove_member(carol, team.id, alice.id)
        with pytest.raises(AuthorizationError):
            lifecycle.remove_member(alice, team.id, alice.id)

    def test_admin_removal_requires_owner(self, lifecycle, factory, team, alice, carol, dave):
        factory.member(team, dave, "admin")
        with pytest.raises(AuthorizationError):
            lifecycle.remove_member(carol, team.id, dave.id)
        lifecycle.remove_member(alice, team.id, dave.id)
        assert lifecycle.get_member(team.id, dave.id) is None

    def test_admin_can_remove_member(self, lifecycle, team, bob, carol):
        lifecycle.remove_member(carol, team.id, bob.id)
        assert lifecycle.get_member(team.id, bob.id) is None

    def test_member_cannot_remove(self, lifecycle, factory, team, bob, dave):
        factory.member(team, dave, "viewer")
        with pytest.raises(AuthorizationError):
            lifecycle.remove_member(bob, team.id, dave.id)

    def test_missing_target(self, lifecycle, team, alice, dave):
        with pytest.raises(NotFoundError):
            lifecycle.remove_member(alice, team.id, dave.id)

    def test_removal_succeeds_when_propagation_fails(self, session, factory, team, alice, bob):
        lifecycle = MembershipLifecycle(session, propagator=FailingPropagator())

        lifecycle.remove_member(alice, team.id, bob.id)

        assert lifecycle.get_member(team.id, bob.id) is None


class TestChangeRole:
    def test_viewer_to_admin_converges(self, session, lifecycle, factory, team, alice, dave):
        factory.member(team, dave, "viewer")
        resources = [factory.file(team, "F", {"view": [dave.id], "edit": [], "admin": [alice.id]}),
                     factory.folder(team, "D", {"view": [dave.id], "edit": [dave.id], "admin": [alice.id]})]

        member = lifecycle.change_role(alice, team.id, dave.id, "admin")

        assert member.role == "admin"
        for resource in resources:
            session.refresh(resource)
            assert tiers_holding(resource.permissions, dave.id) == ["admin"]

    def test_only_owner_changes_roles(self, lifecycle, team, bob, carol):
        with pytest.raises(AuthorizationError):
            lifecycle.change_role(carol, team.id, bob.id, "viewer")

    def test_owner_role_is_untouchable(self, lifecycle, team, alice, bob):
        with pytest.raises(AuthorizationError):
            lifecycle.change_role(alice, team.id, alice.id, "admin")
        with pytest.raises(AuthorizationError):
            lifecycle.change_role(alice, team.id, bob.id, "owner")

    def test_promoting_an_admin_to_admin_is_a_conflict(self, lifecycle, team, alice, carol):
        with pytest.raises(StateConflictError):
            lifecycle.change_role(alice, team.id, carol.id, "admin")

    def test_unknown_role(self, lifecycle, team, alice, bob):
        with pytest.raises(InvalidRoleError):
            lifecycle.change_role(alice, team.id, bob.id, "superuser")

    def test_non_owner_with_unknown_role_is_refused_first(self, lifecycle, team, bob, carol):
        with pytest.raises(AuthorizationError):
            lifecycle.change_role(carol, team.id, bob.id, "superuser")

    def test_role_is_kept_when_propagation_fails(self, session, factory, team, alice, bob):
        lifecycle = MembershipLifecycle(session, propagator=FailingPropagator())

        lifecycle.change_role(alice, team.id, bob.id, "viewer")

        assert lifecycle.get_member(team.id, bob.id).role == "viewer"


class TestExitRequests:
    def test_owner_cannot_request_exit(self, lifecycle, team, alice):
        with pytest.raises(AuthorizationError):
            lifecycle.request_exit(alice, team.id)

    def test_non_member_cannot_request_exit(self, lifecycle, team, dave):
        with pytest.raises(AuthorizationError):
            lifecycle.request_exit(dave, team.id)

    def test_second_pending_request_conflicts(self, lifecycle, team, bob):
        lifecycle.request_exit(bob, team.id, "moving on")
        with pytest.raises(StateConflictError):
            lifecycle.request_exit(bob, team.id)

    def test_racing_duplicate_request_conflicts(self, monkeypatch, lifecycle, team, bob):
        lifecycle.request_exit(bob, team.id)
        # Both requests passed the read check before either committed
        monkeypatch.setattr(lifecycle, "get_exit_request", lambda team_id, member_id: None)

        with pytest.raises(StateConflictError):
            lifecycle.request_exit(bob, team.id)

        monkeypatch.undo()
        assert lifecycle.get_exit_request(team.id, bob.id).status == "pending"

    def test_cancel_allows_a_new_request(self, session, lifecycle, team, bob):
        lifecycle.request_exit(bob, team.id)
        lifecycle.cancel_exit(bob, team.id)
        assert lifecycle.get_exit_request(team.id, bob.id) is None

        exit_request = lifecycle.request_exit(bob, team.id, "second try")
        assert exit_request.status == "pending"
        assert exit_request.reason == "second try"

    def test_cancel_without_pending_request(self, lifecycle, team, bob):
        with pytest.raises(NotFoundError):
            lifecycle.cancel_exit(bob, team.id)

    def test_approve_removes_member_and_access(self, session, lifecycle, factory, team, alice, bob, carol):
        shared_file = factory.file(team, "F", {"view": [], "edit": [bob.id], "admin": [alice.id, carol.id]})
        lifecycle.request_exit(bob, team.id)

        lifecycle.approve_exit(carol, team.id, bob.id)

        assert lifecycle.get_member(team.id, bob.id) is None
        assert lifecycle.get_exit_request(team.id, bob.id) is None
        session.refresh(shared_file)
        assert tiers_holding(shared_file.permissions, bob.id) == []

    def test_member_cannot_approve(self, lifecycle, factory, team, bob, dave):
        factory.member(team, dave, "member")
        lifecycle.request_exit(dave, team.id)
        with pytest.raises(AuthorizationError):
            lifecycle.approve_exit(bob, team.id, dave.id)

    def test_admin_exit_needs_owner_approval(self, lifecycle, factory, team, alice, carol, dave):
        factory.member(team, dave, "admin")
        lifecycle.request_exit(dave, team.id)
        with pytest.raises(AuthorizationError):
            lifecycle.approve_exit(carol, team.id, dave.id)
        lifecycle.approve_exit(alice, team.id, dave.id)
        assert lifecycle.get_member(team.id, dave.id) is None

    def test_approve_without_request(self, lifecycle, team, alice, bob):
        with pytest.raises(NotFoundError):
            lifecycle.approve_exit(alice, team.id, bob.id)

    def test_reject_keeps_record_and_allows_retry(self, lifecycle, team, alice, bob):
        lifecycle.request_exit(bob, team.id, "busy")

        rejected = lifecycle.reject_exit(alice, team.id, bob.id, "we need you")

        assert rejected.status == "rejected"
        assert rejected.rejected_reason == "we need you"
        assert lifecycle.get_member(team.id, bob.id) is not None
        with pytest.raises(NotFoundError):
            lifecycle.approve_exit(alice, team.id, bob.id)

        retried = lifecycle.request_exit(bob, team.id, "still busy")
        assert retried.id == rejected.id
        assert retried.status == "pending"
        assert retried.rejected_reason is None

    def test_list_pending_requests(self, lifecycle, factory, team, alice, bob, dave):
        factory.member(team, dave, "viewer")
        lifecycle.request_exit(bob, team.id)
        lifecycle.request_exit(dave, team.id)
        lifecycle.reject_exit(alice, team.id, dave.id)

        pending = lifecycle.list_exit_requests(alice, team.id, "pending")

        assert [request.member_id for request in pending] == [bob.id]
        assert len(lifecycle.list_exit_requests(alice, team.id)) == 2

    def test_removal_clears_pending_request(self, lifecycle, team, alice, bob):
        lifecycle.request_exit(bob, team.id)
        lifecycle.remove_member(alice, team.id, bob.id)
        assert lifecycle.get_exit_request(team.id, bob.id) is None


class TestJoinTeam:
    def test_join_grants_default_role_access(self, session, lifecycle, factory, alice, dave):
        team = factory.team(alice, name="Open", default_role="viewer")
        shared_file = factory.file(team, "F", {"view": [], "edit": [], "admin": [alice.id]})

        member = lifecycle.join_team(dave, team.invite_code)

        assert member.role == "viewer"
        session.refresh(shared_file)
        assert shared_file.permissions["view"] == [dave.id]

    def test_invalid_code(self, lifecycle, dave):
        with pytest.raises(NotFoundError):
            lifecycle.join_team(dave, "NOPE")

    def test_closed_team(self, lifecycle, factory, alice, dave):
        team = factory.team(alice, name="Closed", allow_invites=False)
        with pytest.raises(AuthorizationError):
            lifecycle.join_team(dave, team.invite_code)

    def test_already_member(self, lifecycle, team, bob):
        with pytest.raises(StateConflictError):
            lifecycle.join_team(bob, team.invite_code)

    def test_racing_join_conflicts(self, monkeypatch, session, lifecycle, team, bob):
        monkeypatch.setattr(lifecycle, "get_member", lambda team_id, user_id: None)

        with pytest.raises(StateConflictError):
            lifecycle.join_team(bob, team.invite_code)

        members = session.exec(select(Member).where(Member.team_id == team.id)).all()
        assert sorted(member.user_id for member in members) == ["user-a", "user-b", "user-c"]


class TestActivities:
    def test_membership_changes_are_logged(self, lifecycle, team, alice, bob):
        lifecycle.request_exit(bob, team.id)
        lifecycle.approve_exit(alice, team.id, bob.id)

        actions = {activity.action for activity in lifecycle.get_activities(alice, team.id)}

        assert {"requested to exit", "approved exit request"} <= actions


class TestTeams:
    def test_list_teams_most_recent_first(self, lifecycle, factory, alice, bob, carol):
        older = factory.team(alice, name="Older", updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        newer = factory.team(carol, name="Newer", updated_at=datetime(2024, 6, 1, tzinfo=timezone.utc))
        factory.member(newer, alice, "viewer")
        factory.team(bob, name="Elsewhere")

        teams = lifecycle.list_teams(alice)

        assert [team.id for team in teams] == [newer.id, older.id]

    def test_owner_deletes_team_with_everything_in_it(self, session, lifecycle, factory, team, alice, bob):
        factory.file(team, "F")
        factory.folder(team, "D")
        lifecycle.request_exit(bob, team.id)
        team_id = team.id

        lifecycle.delete_team(alice, team_id)

        assert session.get(Team, team_id) is None
        for model in (Member, ExitRequest, TeamActivity, SharedFile, SharedFolder):
            assert session.exec(select(model).where(model.team_id == team_id)).all() == []

    def test_admin_cannot_delete_team(self, lifecycle, team, carol):
        with pytest.raises(AuthorizationError):
            lifecycle.delete_team(carol, team.id)
        assert lifecycle.get_team(team.id)

    def test_delete_unknown_team(self, lifecycle, alice):
        with pytest.raises(NotFoundError):
            lifecycle.delete_team(alice, "missing-team")
