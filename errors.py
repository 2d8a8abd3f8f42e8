from typing import Optional


class OctoError(Exception):
    """Base class for every failure raised by the check-run bridge."""


class ConfigurationError(OctoError):
    pass


class AuthError(OctoError):
    """Signature, sender or installation-token failure. Never retried."""


class ValidationError(OctoError):
    pass


class RemoteError(OctoError):
    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class ToolError(OctoError):
    """An external tool (git, rubocop) crashed, timed out or produced garbage."""

    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out
