"""Error taxonomy for the token issuance flow.

Every error terminates the invocation with a non-zero exit code. Only
TransientError is eligible for a retry, and only one.

    ConfigurationError  missing/malformed secret or setting      exit 2
    SigningError        private key parse or RS256 sign failure  exit 3
    AuthError           GitHub rejected the JWT or installation  exit 4
    GitHubAPIError      any other non-2xx from GitHub            exit 5
    TransientError      network failure or 5xx                   exit 6
"""

from typing import Optional


class SdkAutomationError(Exception):
    """Base class for all errors raised by this package."""

    exit_code = 1


class ConfigurationError(SdkAutomationError):
    """A required setting or secret is missing or malformed."""

    exit_code = 2


class SigningError(SdkAutomationError):
    """The App private key could not be parsed or used to sign a JWT."""

    exit_code = 3


class GitHubAPIError(SdkAutomationError):
    """GitHub answered with an unexpected non-2xx status.

    Carries the HTTP status and GitHub's error body so operators can
    diagnose the failure from the build log.
    """

    exit_code = 5

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        self.status_code = status_code
        self.body = body
        detail = message
        if status_code is not None:
            detail = f"{message} (HTTP {status_code})"
        if body:
            detail = f"{detail}: {body}"
        super().__init__(detail)


class AuthError(GitHubAPIError):
    """GitHub rejected the JWT, or the App is not installed for the repository."""

    exit_code = 4


class TransientError(SdkAutomationError):
    """Network failure or 5xx response; may succeed on a fresh attempt."""

    exit_code = 6

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
