# errors.py
from typing import Optional


class BusinessRuleError(Exception):
    """A request that is well formed but breaks a ledger rule."""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFound(BusinessRuleError):
    status_code = 404


class Conflict(BusinessRuleError):
    status_code = 409


class InvalidState(BusinessRuleError):
    status_code = 400
