"""Domain exceptions raised by the service layer.

The API layer maps each of these to an HTTP status code (see
``tiro.api.errors``); services never raise ``HTTPException`` themselves.
"""
from __future__ import annotations


class TiroError(Exception):
    """Base class for all domain errors."""


class NotFoundError(TiroError):
    """A referenced entity does not exist."""


class PermissionDeniedError(TiroError):
    """The acting user may not perform the operation."""


class TransitionNotAllowedError(TiroError):
    """The lifecycle event is not valid from the project's current status."""

    def __init__(self, current: str, event: str):
        self.current = current
        self.event = event
        super().__init__(f"Cannot apply '{event}' to a project in status {current}")


class PreconditionFailedError(TiroError):
    """A transition guard or input validation failed; nothing was written."""


class ConcurrentUpdateError(TiroError):
    """The project row changed between read and conditional update."""


class DuplicateReviewError(TiroError):
    """A review already exists for this (project, student, entrepreneur)."""


class PaymentGatewayError(TiroError):
    """The payment gateway is unreachable, misconfigured, or rejected a call."""


class EmailNotConfiguredError(TiroError):
    """No SMTP host is configured for outgoing mail."""
