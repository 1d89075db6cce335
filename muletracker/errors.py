"""Exception types for MuleTracker."""


class MuleTrackerError(Exception):
    """Base exception for all MuleTracker errors."""


class ConfigError(MuleTrackerError):
    """Raised when the local config file cannot be read or written."""


class SessionError(MuleTrackerError):
    """Raised when no usable session exists (not connected, incomplete, or expired)."""


class AuthenticationError(MuleTrackerError):
    """Raised when the connected app login is rejected."""


class ApiError(MuleTrackerError):
    """Raised when an Anypoint API request fails or returns an unexpected payload."""
