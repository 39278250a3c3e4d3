"""GitHub App authentication.

Handles loading the App identity and JWT generation for GitHub App auth.
The private key is read from Secret Manager per invocation, never from
source control, never written to disk.

GitHub App auth flow:
1. Generate a JWT signed with the App's private key
2. Exchange the JWT for a short-lived installation access token
3. Use the installation token for API calls scoped to that installation
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from sdk_automation.core.config import MAX_JWT_LIFETIME_SECONDS, Settings
from sdk_automation.core.errors import ConfigurationError, SigningError
from sdk_automation.core.scrub import CredentialScrubber
from sdk_automation.github.types import AppIdentity, SignedJWT
from sdk_automation.secrets.store import SecretStore, get_latest_text

logger = logging.getLogger(__name__)

DEFAULT_CLOCK_SKEW_SECONDS = 60


def load_app_identity(
    store: SecretStore,
    settings: Settings,
    scrubber: Optional[CredentialScrubber] = None,
) -> AppIdentity:
    """Fetch the App id and private key from the secret store.

    The key is registered with the scrubber before anything else can log it.
    """
    pem = get_latest_text(store, settings.github_private_key_secret)
    if scrubber is not None:
        scrubber.register(pem)
    if not pem:
        raise ConfigurationError(
            f"GitHub App private key secret {settings.github_private_key_secret!r} "
            "is missing or empty"
        )

    app_id = settings.github_app_id or get_latest_text(store, settings.github_app_id_secret)
    if not app_id:
        raise ConfigurationError(
            "GitHub App id not configured. Set GITHUB_APP_ID or create the "
            f"{settings.github_app_id_secret!r} secret."
        )
    if not app_id.isdigit():
        raise ConfigurationError(f"GitHub App id must be numeric, got {app_id!r}")

    logger.info("Loaded GitHub App identity for app %s", app_id)
    return AppIdentity(app_id=int(app_id), private_key=pem)


def load_private_key(pem: str) -> rsa.RSAPrivateKey:
    """Parse a PEM RSA private key (PKCS#1 or PKCS#8, unencrypted)."""
    if not pem or "PRIVATE KEY" not in pem:
        raise SigningError("Private key is empty or not PEM encoded")
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        # The exception message can quote key bytes; keep only the type.
        raise SigningError(f"Private key could not be parsed ({type(exc).__name__})") from None
    if not isinstance(key, rsa.RSAPrivateKey):
        raise SigningError("GitHub App keys must be RSA private keys")
    return key


def create_app_jwt(
    identity: AppIdentity,
    now: Optional[datetime] = None,
    clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS,
    lifetime_seconds: int = MAX_JWT_LIFETIME_SECONDS,
) -> SignedJWT:
    """Create a JWT for authenticating as the GitHub App.

    iat is backdated by the clock skew and exp = iat + lifetime, so with
    the defaults the JWT expires 9 minutes from now and exp - iat is
    exactly the 10 minute maximum GitHub accepts.
    """
    lifetime_seconds = min(lifetime_seconds, MAX_JWT_LIFETIME_SECONDS)
    now = now or datetime.now(timezone.utc)
    iat = int(now.timestamp()) - clock_skew_seconds
    exp = iat + lifetime_seconds
    payload = {
        "iat": iat,
        "exp": exp,
        "iss": str(identity.app_id),
    }

    key = load_private_key(identity.private_key)
    try:
        token = jwt.encode(payload, key, algorithm="RS256")
    except (jwt.PyJWTError, ValueError, TypeError) as exc:
        raise SigningError(f"Failed to sign App JWT ({type(exc).__name__})") from None

    return SignedJWT(
        token=token,
        app_id=identity.app_id,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )


def create_settings_jwt(
    identity: AppIdentity,
    settings: Settings,
    scrubber: Optional[CredentialScrubber] = None,
) -> SignedJWT:
    """create_app_jwt with claim timing from settings; registers the JWT."""
    signed = create_app_jwt(
        identity,
        clock_skew_seconds=settings.jwt_clock_skew_seconds,
        lifetime_seconds=settings.jwt_lifetime_seconds,
    )
    if scrubber is not None:
        scrubber.register(signed.token)
    return signed
