"""Error taxonomy shared by the stores, the workflow and the HTTP layer.

Each class maps to one way a user action can fail.  The core raises them; only
``api.py`` turns them into HTTP responses.
"""

from typing import Dict, List, Optional


class PortalError(Exception):
    """Base class for every error the portal raises on purpose."""

    code = "error"
    redirect: Optional[str] = None

    def __init__(self, message: str, *, redirect: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if redirect is not None:
            self.redirect = redirect


class ConfigurationError(PortalError):
    """Required external settings are absent or invalid."""

    code = "not_configured"

    def __init__(self, missing: List[str]) -> None:
        super().__init__(
            "The portal is not configured. Missing settings: " + ", ".join(missing)
        )
        self.missing = list(missing)


class AuthenticationError(PortalError):
    """Bad credentials, missing session or a role that does not match the profile."""

    code = "not_authenticated"
    redirect = "/login"


class AuthorizationError(PortalError):
    code = "forbidden"
    redirect = "/unauthorized"


class NotFoundError(PortalError):
    code = "not_found"


class InvalidTransitionError(PortalError):
    """The record is not in the state the requested action starts from."""

    code = "invalid_transition"


class ActionInProgressError(PortalError):
    code = "action_in_progress"


class ValidationError(PortalError):
    code = "invalid"

    def __init__(self, errors: Dict[str, str]) -> None:
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = dict(errors)


class ExternalServiceError(PortalError):
    """A store or upload call failed; the action may be retried by hand."""

    code = "external_service_error"
