"""
Typed failures raised by the task tracker engines.

Every engine operation either returns its result or raises exactly one of the
DomainError subclasses below. The HTTP layer maps `status_code` onto the
response; engines never build HTTP responses themselves.
"""


class DomainError(Exception):
    status_code = 500
    default_detail = "Server error"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFound(DomainError):
    status_code = 404
    default_detail = "Not found"


class Forbidden(DomainError):
    status_code = 403
    default_detail = "Not authorized"


class InvalidInput(DomainError):
    status_code = 400
    default_detail = "Invalid request"


class Conflict(DomainError):
    status_code = 409
    default_detail = "Conflict"


class AlreadyMember(Conflict):
    default_detail = "User is already a team member"


class Unauthenticated(DomainError):
    status_code = 401
    default_detail = "Please authenticate"


class Internal(DomainError):
    """Storage or other lower-layer failure; the cause is chained."""
