"""
Exception taxonomy for the GitOps orchestration layer.

Provider and git failures are converted to typed results at the component
boundaries; these exceptions travel between components, and only programmer
errors are expected to reach callers of the facade.
"""
from typing import Optional

from utils.encryption import EncryptionUnavailable

__all__ = [
    'GitOpsError',
    'ConfigurationError',
    'NoServerConfigured',
    'MissingCredentials',
    'EncryptionUnavailable',
    'AuthenticationError',
    'NetworkError',
    'ProviderAPIError',
    'AlreadyExistsError',
    'GitNotAvailableError',
]


class GitOpsError(Exception):
    """Base class for all errors raised by this package."""
    pass


class ConfigurationError(GitOpsError):
    """Missing or inconsistent configuration, never retried."""
    pass


class NoServerConfigured(ConfigurationError):
    """No registered server matches a repository URL."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"No git server configured for {url}")


class MissingCredentials(ConfigurationError):
    """A server has no stored credentials."""

    def __init__(self, server_name: str):
        self.server_name = server_name
        super().__init__(
            f"Server '{server_name}' is not authenticated. Please authenticate the server first."
        )


class AuthenticationError(GitOpsError):
    """The host answered but rejected the credentials."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class NetworkError(GitOpsError):
    """The host could not be reached or timed out."""
    pass


class ProviderAPIError(GitOpsError):
    """A provider returned an unexpected 4xx/5xx; status and body kept verbatim."""

    def __init__(self, status_code: int, body: str, message: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"HTTP {status_code}: {body}")


class AlreadyExistsError(GitOpsError):
    """Creation hit an existing resource that could not be read back."""
    pass


class GitNotAvailableError(RuntimeError):
    """Raised when git is not installed or not accessible."""
    pass
