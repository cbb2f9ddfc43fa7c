"""
Exceptions for ManageEase.

Services raise these; the HTTP layer renders them into the standard
``{success: false, message, errors?}`` envelope with the matching status code.

Usage:
    from errors import NotFound

    if not task:
        raise NotFound("Task not found")
"""
from typing import Any, Dict, List, Optional


class ManageEaseError(Exception):
    """Base exception for all ManageEase errors"""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        self.message = message
        self.errors = errors
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationFailed(ManageEaseError):
    """Missing or malformed input"""

    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidReference(ManageEaseError):
    """A referenced user does not exist"""

    status_code = 400
    code = "INVALID_REFERENCE"

    def __init__(self, message: str = "Assigned user does not exist"):
        super().__init__(message)


class Unauthenticated(ManageEaseError):
    """Missing, invalid or expired credentials"""

    status_code = 401
    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AccessDenied(ManageEaseError):
    """Authenticated but not permitted"""

    status_code = 403
    code = "ACCESS_DENIED"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFound(ManageEaseError):
    """Resource does not exist, or exists but is hidden from the caller"""

    status_code = 404
    code = "NOT_FOUND"
