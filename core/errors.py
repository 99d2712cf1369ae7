"""
Error taxonomy shared by the authorization core and the HTTP layer.

Each error carries the HTTP status the web layer maps it to:
- Unauthenticated   -> 401
- Forbidden         -> 403 (TransitionDenied is a Forbidden)
- NotFound          -> 404
- ValidationError   -> 400 (UnknownCapability is a ValidationError)
- InvalidTransition -> 400
- CycleDetected     -> 400
- everything else   -> 500
"""

from typing import Any, Dict, Optional


class DocGateError(Exception):
    """Base class for caller-visible failures"""

    status_code = 500

    def __init__(self, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "code": type(self).__name__}
        if self.details:
            body["details"] = self.details
        return body


class Unauthenticated(DocGateError):
    status_code = 401

    def __init__(self, message: str = "Authentication required", **kwargs):
        super().__init__(message, **kwargs)


class Forbidden(DocGateError):
    status_code = 403

    def __init__(self, message: str = "Access denied", **kwargs):
        super().__init__(message, **kwargs)


class TransitionDenied(Forbidden):
    """Actor lacks the capability required by an existing workflow edge"""

    def __init__(self, from_status: str, to_status: str, required: str):
        super().__init__(
            f"Transition {from_status} -> {to_status} requires '{required}'",
            details={"from": from_status, "to": to_status, "requiredCapability": required},
        )


class NotFound(DocGateError):
    status_code = 404

    def __init__(self, message: str = "Resource not found", **kwargs):
        super().__init__(message, **kwargs)


class ValidationError(DocGateError):
    status_code = 400

    def __init__(self, message: str = "Validation failed", **kwargs):
        super().__init__(message, **kwargs)


class UnknownCapability(ValidationError):
    def __init__(self, name: str):
        super().__init__(f"Unknown capability '{name}'", details={"capability": name})


class InvalidTransition(DocGateError):
    """No edge exists for (from, to) in the workflow table"""

    status_code = 400

    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"No workflow transition from {from_status} to {to_status}",
            details={"from": from_status, "to": to_status},
        )


class CycleDetected(DocGateError):
    status_code = 400

    def __init__(self, message: str = "Document hierarchy cycle detected", **kwargs):
        super().__init__(message, **kwargs)


class ConflictOnReorder(DocGateError):
    """A concurrent writer changed the sibling set during a reorder/reparent"""

    def __init__(self, message: str = "Concurrent hierarchy update, retry the request", **kwargs):
        super().__init__(message, **kwargs)
