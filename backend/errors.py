"""
Business errors raised by the attendance services.

Every error carries a stable ``error_code`` for programmatic handling and the
HTTP status the API layer should answer with. The FastAPI app renders them as
``{"detail": message, "code": error_code}``.
"""


class TrackerError(Exception):
    """Base class for business rejections that are not system failures."""

    status_code = 400

    def __init__(self, message: str, error_code: str = "ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class NotFoundError(TrackerError):
    status_code = 404

    def __init__(self, entity: str, entity_id: str | int):
        super().__init__(f"{entity} not found.", f"{entity.upper().replace(' ', '_')}_NOT_FOUND")
        self.entity = entity
        self.entity_id = entity_id


class ValidationFailure(TrackerError):
    status_code = 400

    def __init__(self, field_name: str, reason: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(reason, error_code)
        self.field_name = field_name


class NotVipSessionError(TrackerError):
    status_code = 400

    def __init__(self, session_id: str):
        super().__init__("This is not a VIP session.", "NOT_VIP_SESSION")
        self.session_id = session_id


class AccessDeniedError(TrackerError):
    status_code = 403


class CapacityExceededError(AccessDeniedError):
    def __init__(self, session_id: str, max_capacity: int):
        super().__init__(
            f"Session has reached its maximum capacity of {max_capacity}.",
            "CAPACITY_EXCEEDED",
        )
        self.session_id = session_id
        self.max_capacity = max_capacity


class ConflictError(TrackerError):
    status_code = 409
