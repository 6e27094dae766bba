"""
Error Taxonomy Module

Typed exceptions raised by the lending core. Every error carries a stable
``code`` and a ``user_message`` that is safe to show to dashboard users.
Storage internals only ever travel in ``details``.
"""

from typing import Any, Dict, Optional


class MicrofinanceError(Exception):
    """Base exception for all lending core errors."""

    code = "error"
    user_message = "The operation could not be completed"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Public representation (never includes details)"""
        return {
            "error": self.code,
            "message": self.user_message if self.user_message else self.message,
        }


class ValidationError(MicrofinanceError):
    """Raised when input is malformed or out of range."""

    code = "validation_error"
    user_message = None

    def __init__(self, message: str, field: Optional[str] = None,
                 code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.field = field
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        result = {"error": self.code, "message": self.message}
        if self.field:
            result["field"] = self.field
        return result


class UnauthorizedError(MicrofinanceError):
    """Raised when an access policy predicate fails. No side effects occurred."""

    code = "unauthorized"
    user_message = "You do not have permission to perform this action"

    def __init__(self, action: str, principal_id: Optional[str] = None,
                 resource_id: Optional[str] = None):
        details = {"action": action}
        if principal_id:
            details["principal_id"] = principal_id
        if resource_id:
            details["resource_id"] = resource_id
        super().__init__(f"Not allowed to {action}", details)
        self.action = action


class NotFoundError(MicrofinanceError):
    """Raised when a referenced record does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: Optional[str] = None):
        message = f"{entity} not found"
        if entity_id:
            message = f"{entity} {entity_id} not found"
        super().__init__(message, {"entity": entity, "entity_id": entity_id})
        self.entity = entity
        self.entity_id = entity_id

    @property
    def user_message(self) -> str:
        labels = {
            "client": "Client not found",
            "loan": "Loan not found",
            "payment": "Payment not found",
            "user": "User not found",
            "goal": "Goal not found",
            "cash_closing": "Cash closing not found",
            "transaction": "Transaction not found",
        }
        return labels.get(self.entity, "Record not found")


class InvalidStateError(MicrofinanceError):
    """Raised when a transition is attempted from a state that disallows it."""

    code = "invalid_state"

    def __init__(self, message: str, current_state: Optional[str] = None,
                 user_message: Optional[str] = None):
        details = {}
        if current_state:
            details["current_state"] = current_state
        super().__init__(message, details)
        self.current_state = current_state
        self.user_message = user_message or "This operation is not allowed in the current state"


class ConflictError(MicrofinanceError):
    """Raised when dependent records or a concurrent update block the operation."""

    code = "conflict"

    def __init__(self, message: str, user_message: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.user_message = user_message or "This operation conflicts with existing records"


class StoreFailureError(MicrofinanceError):
    """Raised when the data store itself fails. Never retried."""

    code = "store_failure"
    user_message = "Something went wrong while saving. Please try again"
