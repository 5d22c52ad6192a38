class MembershipError(Exception):
    """Base error for team membership operations, rejected before any mutation."""
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class AuthorizationError(MembershipError):
    status_code = 403


class NotFoundError(MembershipError):
    status_code = 404


class StateConflictError(MembershipError):
    status_code = 409


class InvalidRoleError(MembershipError):
    status_code = 400
