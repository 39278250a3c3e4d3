"""GitHub App private key checks and rotation.

Rotation flow:
1. Validate the downloaded PEM file is an unencrypted RSA private key
2. Sign a JWT with it and call GET /app so GitHub confirms the key
3. Add the key as a new version of the private-key secret
4. Optionally delete the local PEM file

The key is tested before it is stored, so a bad download never becomes
the latest secret version. The previous version remains in Secret
Manager and can be re-enabled if needed; no plaintext backup is written.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sdk_automation.core.config import Settings
from sdk_automation.core.errors import ConfigurationError
from sdk_automation.core.scrub import CredentialScrubber
from sdk_automation.github.auth import create_settings_jwt, load_private_key
from sdk_automation.github.client import GitHubClient
from sdk_automation.github.types import AppIdentity
from sdk_automation.secrets.store import SecretStore, get_latest_text

logger = logging.getLogger(__name__)


@dataclass
class KeyCheck:
    app_id: int
    app_slug: str
    app_name: str
    installation_count: int


def read_pem_file(path: Path, scrubber: Optional[CredentialScrubber] = None) -> str:
    """Read and validate a PEM private key file."""
    path = Path(path).expanduser()
    if not path.is_file():
        raise ConfigurationError(f"File not found: {path}")
    try:
        pem = path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        raise ConfigurationError(f"File is not a text PEM key: {path}") from None
    if scrubber is not None:
        scrubber.register(pem)
    if "BEGIN RSA PRIVATE KEY" not in pem and "BEGIN PRIVATE KEY" not in pem:
        raise ConfigurationError(f"File does not appear to be a private key: {path}")
    load_private_key(pem)
    return pem


def resolve_app_id(store: Optional[SecretStore], settings: Settings) -> int:
    app_id = settings.github_app_id
    if not app_id and store is not None:
        app_id = get_latest_text(store, settings.github_app_id_secret) or ""
    if not app_id.isdigit():
        raise ConfigurationError("GitHub App id not configured (GITHUB_APP_ID)")
    return int(app_id)


def check_key(
    client: GitHubClient,
    identity: AppIdentity,
    settings: Settings,
    scrubber: Optional[CredentialScrubber] = None,
) -> KeyCheck:
    """Confirm GitHub accepts a JWT signed by `identity`."""
    signed = create_settings_jwt(identity, settings, scrubber)
    app = client.get_app(signed)
    installations = client.list_installations(signed)
    check = KeyCheck(
        app_id=identity.app_id,
        app_slug=app.get("slug", ""),
        app_name=app.get("name", ""),
        installation_count=len(installations),
    )
    logger.info(
        "Key accepted for app %s (%s), %d installation(s)",
        check.app_id, check.app_slug, check.installation_count,
    )
    return check


def rotate_key(
    store: SecretStore,
    client: GitHubClient,
    settings: Settings,
    key_path: Path,
    delete_file: bool = False,
    scrubber: Optional[CredentialScrubber] = None,
) -> KeyCheck:
    pem = read_pem_file(key_path, scrubber)
    identity = AppIdentity(app_id=resolve_app_id(store, settings), private_key=pem)

    check = check_key(client, identity, settings, scrubber)

    store.put(settings.github_private_key_secret, pem.encode("utf-8"))
    logger.info(
        "Stored new private key as latest version of %s",
        settings.github_private_key_secret,
    )

    if delete_file:
        Path(key_path).expanduser().unlink()
        logger.info("Deleted local key file %s", key_path)
    else:
        logger.warning("Remember to securely delete the downloaded key file: %s", key_path)
    return check
