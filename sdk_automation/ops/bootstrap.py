"""Create-or-update of the secrets the build step reads."""

import logging
from typing import Optional

from sdk_automation.core.config import Settings
from sdk_automation.core.errors import ConfigurationError
from sdk_automation.secrets.store import SecretStore

logger = logging.getLogger(__name__)

LEGACY_TOKEN_SECRET = "sdk-github-token"


def setup_secrets(
    store: SecretStore,
    settings: Settings,
    app_id: str,
    github_token: Optional[str] = None,
) -> list[str]:
    """Write the App id (and optionally a legacy PAT) to Secret Manager.

    Returns the ids of the secrets that received a new version.
    """
    app_id = app_id.strip()
    if not app_id.isdigit():
        raise ConfigurationError(f"GitHub App id must be numeric, got {app_id!r}")

    written: list[str] = []
    store.put(settings.github_app_id_secret, app_id.encode("utf-8"))
    written.append(settings.github_app_id_secret)

    if github_token:
        store.put(LEGACY_TOKEN_SECRET, github_token.strip().encode("utf-8"))
        written.append(LEGACY_TOKEN_SECRET)

    logger.info("Secrets ready: %s", ", ".join(written))
    return written
