"""
Engine Exception Types

Service-layer errors raised by the trigger engine, the sequence engine and the
suppression gate. Routes translate them into the standard error payload via
the handlers registered in error_handlers.py.
"""

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for all outreach engine errors."""

    code = 'INTERNAL_ERROR'

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(EngineError):
    """Malformed input; `details` carries field-level errors."""

    code = 'VALIDATION_ERROR'


class NotFound(EngineError):
    code = 'NOT_FOUND'

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id:
            message += f" with id: {resource_id}"
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id


class TransientActionFailure(EngineError):
    """An outbound call (webhook, email transport) failed; never retried automatically."""

    code = 'EXTERNAL_API_ERROR'


class InvalidStateTransition(EngineError):
    code = 'INVALID_STATE_TRANSITION'

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot transition enrollment from '{current}' to '{target}'",
                         {'current_status': current, 'target_status': target})
        self.current = current
        self.target = target


class Conflict(EngineError):
    code = 'CONFLICT'
