class CrushError(Exception):
    """Base for recoverable crush/match conditions with a user-facing message."""

    status_code = 400
    reason = "crush_error"
    default_detail = "Crush request failed"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class SelfReferenceError(CrushError):
    reason = "self_reference"
    default_detail = "You cannot add yourself as a crush"


class DuplicateError(CrushError):
    status_code = 409
    reason = "duplicate"
    default_detail = "You already have this person as a crush"


class CapExceededError(CrushError):
    reason = "cap_exceeded"
    default_detail = "You have reached the crush limit"

    def __init__(self, cap: int):
        self.cap = cap
        super().__init__(f"You can only have up to {cap} crushes at a time")


class NotFoundError(CrushError):
    status_code = 404
    reason = "not_found"
    default_detail = "User not found"


class UnverifiedUserError(CrushError):
    status_code = 403
    reason = "unverified"
    default_detail = "Verify your email before adding crushes"


class ConstraintRaceError(CrushError):
    """Lost the insert race on the canonical match pair. Never leaves the matching service."""

    status_code = 409
    reason = "constraint_race"
    default_detail = "Match already exists"
