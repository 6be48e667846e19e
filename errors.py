"""
Error taxonomy shared by services and routes.

Every error carries a machine-readable ``code`` and a fixed HTTP status so
callers can tell "fix your input" (4xx) from "try again later" (5xx).
"""

from typing import Any, Optional

class ServiceError(Exception):
    status_code = 400
    code = "bad_request"

    def __init__(self, code: Optional[str] = None, details: Any = None):
        if code:
            self.code = code
        self.details = details
        super().__init__(self.code if details is None else f"{self.code}: {details}")

    def to_dict(self) -> dict:
        body = {"ok": False, "error": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body

class PayloadError(ServiceError):
    status_code = 400

class DeadlinePassed(ServiceError):
    status_code = 400
    code = "deadline_passed"

class Unauthorized(ServiceError):
    status_code = 401
    code = "invalid_token"

class Forbidden(ServiceError):
    status_code = 403
    code = "forbidden"

class NotFound(ServiceError):
    status_code = 404
    code = "not_found"

class AlreadySubmitted(ServiceError):
    status_code = 409
    code = "already_submitted"

class StorageError(ServiceError):
    status_code = 500
    code = "db_error"


class StorageTimeout(ServiceError):
    status_code = 503
    code = "db_timeout"
