"""
Domain errors raised by the fulfillment services.

Services never build HTTP responses themselves. Each error carries a short
machine-checkable ``kind`` plus a human-readable message, and the API layer
maps the kind to a status code (see ``fulfillment.main``).
"""
from typing import Any, Dict, Optional


class FulfillmentError(Exception):
    """Base class for every error the core surfaces to callers."""

    kind = "FULFILLMENT_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "kind": self.kind}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(FulfillmentError):
    """Malformed or constraint-violating input."""
    kind = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(FulfillmentError):
    """Referenced product, warehouse, order or user does not exist."""
    kind = "NOT_FOUND"
    status_code = 404


class PermissionDeniedError(FulfillmentError):
    """Caller's role or tenant does not authorize the mutation."""
    kind = "PERMISSION_DENIED"
    status_code = 403


class ConflictError(FulfillmentError):
    """Operation would break a business invariant (live dependents, reused ids)."""
    kind = "CONFLICT"
    status_code = 409


class GenerationError(FulfillmentError):
    """SKU or code generation exhausted its search space."""
    kind = "GENERATION_ERROR"
    status_code = 422


class UnauthenticatedError(FulfillmentError):
    """Caller identity missing or malformed."""
    kind = "UNAUTHENTICATED"
    status_code = 401
