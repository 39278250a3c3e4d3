"""Installation id cache keyed by repository full name.

Each scheduled build runs in its own isolated environment, so an
in-memory map would be lost between runs. The cache is therefore a thin
get/put view over the secret store, one secret per repository.
"""

import logging
from typing import Callable, Optional

from sdk_automation.core.errors import ConfigurationError
from sdk_automation.secrets.store import SecretStore, get_latest_text

logger = logging.getLogger(__name__)


class InstallationCache:
    def __init__(self, store: SecretStore, secret_id_for: Callable[[str], str]):
        self._store = store
        self._secret_id_for = secret_id_for

    def get(self, repository_full_name: str) -> Optional[int]:
        """Return the cached installation id, or None on a miss."""
        secret_id = self._secret_id_for(repository_full_name)
        raw = get_latest_text(self._store, secret_id)
        if raw is None or raw == "":
            logger.info("No cached installation id for %s", repository_full_name)
            return None
        if not raw.isdigit():
            raise ConfigurationError(
                f"Secret {secret_id!r} does not hold a numeric installation id"
            )
        return int(raw)

    def put(self, repository_full_name: str, installation_id: int) -> None:
        secret_id = self._secret_id_for(repository_full_name)
        self._store.put(secret_id, str(installation_id).encode("utf-8"))
        logger.info(
            "Cached installation id %d for %s in %s",
            installation_id, repository_full_name, secret_id,
        )
