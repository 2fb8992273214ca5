"""
Custom exceptions for the follow-up engine.
Provides consistent error handling across services, workers and the API.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse


class FollowupEngineError(Exception):
    """Base exception for the follow-up engine"""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class AuthenticationError(FollowupEngineError):
    """Missing or invalid credentials"""
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message)


class NotFoundError(FollowupEngineError):
    """Resource not found"""
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str = "Resource", resource_id: str = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(message)


class ValidationError(FollowupEngineError):
    """Validation failed"""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str = "Validation failed", field: str = None):
        self.field = field
        if field:
            message = f"Validation failed for field '{field}': {message}"
        super().__init__(message)


class InvalidStateTransition(FollowupEngineError):
    """Status change not allowed from the current state"""
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current: str, target: str, reason: str = None):
        self.current = current
        self.target = target
        message = f"Cannot transition from '{current}' to '{target}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RuleCooldownActive(FollowupEngineError):
    """Automation rule blocked by its cooldown or per-lead cap"""

    def __init__(self, rule_id: str, lead_id: str = None, message: str = None):
        self.rule_id = rule_id
        self.lead_id = lead_id
        msg = message or f"Automation rule '{rule_id}' is cooling down"
        if lead_id and not message:
            msg = f"{msg} for lead '{lead_id}'"
        super().__init__(msg)


class EscalationTargetUnresolvable(FollowupEngineError):
    """No supervisor could be found for an escalation candidate"""

    def __init__(self, item_id: str, assignee_id: str = None):
        self.item_id = item_id
        self.assignee_id = assignee_id
        message = f"No escalation target for item '{item_id}'"
        if assignee_id:
            message = f"{message} (assignee '{assignee_id}' has no active manager)"
        super().__init__(message)


# Raise helpers
def raise_unauthorized(message: str = "Could not validate credentials"):
    """Raise AuthenticationError"""
    raise AuthenticationError(message)


def raise_not_found(resource: str = "Resource", resource_id: str = None):
    """Raise NotFoundError"""
    raise NotFoundError(resource, resource_id)


def raise_validation_error(message: str = "Validation failed", field: str = None):
    """Raise ValidationError"""
    raise ValidationError(message, field)


def raise_invalid_transition(current: str, target: str, reason: str = None):
    """Raise InvalidStateTransition"""
    raise InvalidStateTransition(current, target, reason)


async def engine_error_handler(request: Request, exc: FollowupEngineError) -> JSONResponse:
    """Map domain errors onto HTTP responses."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
