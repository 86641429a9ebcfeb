"""Error kinds raised by the HITL coordinator."""

from __future__ import annotations

from typing import Optional


class HitlError(Exception):
    """Base class for coordinator errors."""


class ConfigurationError(HitlError):
    """A required parameter is missing or unparseable.

    Raised before any side effect (no registration, no outbound call).
    """


class DispatchFailure(HitlError):
    """The create-request call to the decision service failed."""

    def __init__(self, reason: str, status_code: Optional[int] = None) -> None:
        self.reason = reason
        self.status_code = status_code
        message = "Failed to create HITL request on the decision service"
        if status_code is not None:
            message += f" (HTTP {status_code})"
        super().__init__(f"{message}: {reason}")


class DuplicateCorrelation(HitlError):
    """A correlation token is already registered."""


class WebhookValidationError(HitlError):
    """Inbound webhook payload failed validation. Answered with HTTP 400."""


class UnknownCorrelation(HitlError):
    """Inbound token is unknown or already resolved.

    Answered with HTTP 410, or 404 when the host does not know the execution
    the webhook was addressed to.
    """

    def __init__(self, message: str, status_code: int = 410) -> None:
        self.status_code = status_code
        super().__init__(message)


class DeadlineExpired(HitlError):
    """The waiting-state deadline fired before a response arrived."""
