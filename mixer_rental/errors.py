"""Service-layer exceptions.

ValidationError and NotFoundError are translated to JSON responses by the
handlers registered in main.py. TransientDeliveryError never leaves the email
job queue, and ConfigParseError is logged and replaced by a fallback value.
"""


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""

    def __init__(self, message: str, details: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(ServiceError):
    """Input rejected before any write happened."""


class NotFoundError(ServiceError):
    """Unknown document, machine or job id."""


class TransientDeliveryError(ServiceError):
    """The mail collaborator failed; the job stays eligible for retry."""


class ConfigParseError(ServiceError):
    """A stored notification day list could not be used."""


class JobUnavailableError(ValidationError):
    """The email job is no longer pending, usually because another worker claimed it."""
