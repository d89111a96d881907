"""Errors raised by side-effect providers."""


class ExternalServiceError(Exception):
    """A provider call failed, timed out or was rejected by an open circuit."""

    def __init__(self, service: str, message: str, status_code: int | None = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code


class ConfigurationError(ExternalServiceError):
    """A node references a resource that does not exist (appointment, type, lead)."""
