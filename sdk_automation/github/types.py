"""Credential types for the GitHub App token flow.

All of these live only in process memory. Their reprs never include key
material, JWTs or tokens so they are safe to pass to a logger.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

# Installation tokens are issued for one hour.
INSTALLATION_TOKEN_TTL_SECONDS = 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AppIdentity:
    """GitHub App id plus its PEM-encoded RSA private key."""

    app_id: int
    private_key: str = field(repr=False)


@dataclass(frozen=True)
class InstallationRef:
    """An App installation and the single repository it is used for."""

    installation_id: int
    repository_full_name: str

    @property
    def owner(self) -> str:
        return self.repository_full_name.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.repository_full_name.split("/", 1)[1]


@dataclass
class SignedJWT:
    """An RS256-signed App JWT.

    Usable for exactly one successful installation token exchange, and
    never after `expires_at`.
    """

    token: str = field(repr=False)
    app_id: int
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        return not self.consumed and not self.is_expired(now)

    def consume(self) -> None:
        self.consumed = True


@dataclass(frozen=True)
class InstallationToken:
    """A repository-scoped installation access token."""

    token: str = field(repr=False)
    expires_at: datetime
    installation_id: int
    repository_full_name: str
    permissions: dict = field(default_factory=dict)

    def expires_in(self, now: Optional[datetime] = None) -> float:
        """Seconds until expiry (negative once expired)."""
        return (self.expires_at - (now or _utcnow())).total_seconds()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_in(now) <= 0

    def covers(self, repository_full_name: str) -> bool:
        return repository_full_name.lower() == self.repository_full_name.lower()
