"""Exception types shared across the LogiTrack core."""

from __future__ import annotations


class LogiTrackError(RuntimeError):
    """Base class for every domain error raised by LogiTrack."""


class ConfigurationError(LogiTrackError):
    """The rate table and the request data have drifted out of sync."""


class MissingRateError(ConfigurationError):
    """Raised when a vehicle category has no entry in the rate table."""

    def __init__(self, category: str) -> None:
        super().__init__(f"No rate configured for vehicle category '{category}'.")
        self.category = category


class InvalidRateError(ConfigurationError):
    """Raised when a rate entry carries a negative monetary value."""


class RemoteStoreError(LogiTrackError):
    """Any failure talking to the remote store."""


class ValidationError(LogiTrackError):
    """A record failed form-level validation before it was written."""


class DuplicateUsernameError(ValidationError):
    def __init__(self, username: str) -> None:
        super().__init__(f"Username '{username}' is already taken.")
        self.username = username


class ProtectedAccountError(ValidationError):
    """The default administrator account cannot be removed."""


class RouteLookupError(LogiTrackError):
    """Domain-specific error raised for route distance lookups."""
