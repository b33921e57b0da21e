# careerhub/app/errors.py
from typing import Any


class AppError(Exception):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: Any = None):
        self.detail = detail if detail is not None else self.default_detail
        super().__init__(str(self.detail))


class ValidationError(AppError):
    """Malformed or out-of-range input."""
    status_code = 400
    default_detail = "invalid request"


class ForbiddenError(AppError):
    status_code = 403
    default_detail = "forbidden"


class NotFoundError(AppError):
    """Entity absent, or not owned by the requestor."""
    status_code = 404
    default_detail = "not found"


class ConflictError(AppError):
    status_code = 409
    default_detail = "already exists"


class InternalError(AppError):
    """The record store failed; the detail never carries driver text."""
    status_code = 500
