"""Installation Token Issuer.

Given the App identity and a target repository, produce a valid,
time-bounded installation access token scoped to that repository:

  1. Resolve the installation id: cached secret first, otherwise
     discover it with an App JWT and cache the result.
  2. Exchange a freshly signed JWT for an installation token.

Retry policy: 4xx responses are configuration problems and fail
immediately. A 5xx or network failure gets exactly one retry after a
short backoff, and the retry signs a new JWT so no attempt ever leans on
a JWT from before the failure. Tokens are never cached: every call to
issue() yields a new token.
"""

import logging
import time
from typing import Callable, Optional

from sdk_automation.core.config import Settings
from sdk_automation.core.errors import TransientError
from sdk_automation.core.scrub import CredentialScrubber
from sdk_automation.github.auth import create_settings_jwt, load_app_identity
from sdk_automation.github.client import GitHubClient
from sdk_automation.github.types import (
    AppIdentity,
    InstallationRef,
    InstallationToken,
    SignedJWT,
)
from sdk_automation.secrets.installations import InstallationCache
from sdk_automation.secrets.store import SecretStore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


class InstallationTokenIssuer:
    def __init__(
        self,
        settings: Settings,
        store: SecretStore,
        client: GitHubClient,
        scrubber: CredentialScrubber,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.store = store
        self.client = client
        self.scrubber = scrubber
        self.cache = InstallationCache(store, settings.installation_secret_id)
        self._sleep = sleep

    def load_identity(self) -> AppIdentity:
        return load_app_identity(self.store, self.settings, self.scrubber)

    def build_jwt(self, identity: AppIdentity) -> SignedJWT:
        return create_settings_jwt(identity, self.settings, self.scrubber)

    def resolve_installation(
        self,
        identity: AppIdentity,
        repository_full_name: str,
    ) -> InstallationRef:
        installation_id = self.cache.get(repository_full_name)
        if installation_id is None:
            installation_id = self._with_retry(
                lambda: self.client.get_repo_installation(
                    self.build_jwt(identity), repository_full_name
                ),
                "installation lookup",
            )
            logger.info(
                "Discovered installation %d for %s", installation_id, repository_full_name
            )
            self.cache.put(repository_full_name, installation_id)
        return InstallationRef(
            installation_id=installation_id,
            repository_full_name=repository_full_name,
        )

    def exchange(
        self,
        identity: AppIdentity,
        ref: InstallationRef,
        signed: Optional[SignedJWT] = None,
    ) -> InstallationToken:
        """Exchange `signed` (or a new JWT) for an installation token."""
        # The caller's JWT serves the first attempt only.
        pending = [signed] if signed is not None and signed.is_usable() else []

        def attempt() -> InstallationToken:
            current = pending.pop() if pending else self.build_jwt(identity)
            return self.client.create_installation_token(current, ref)

        token = self._with_retry(attempt, "installation token exchange")
        self.scrubber.register(token.token)
        return token

    def issue(self, repository_full_name: str) -> InstallationToken:
        identity = self.load_identity()
        ref = self.resolve_installation(identity, repository_full_name)
        return self.exchange(identity, ref)

    def _with_retry(self, call: Callable, action: str):
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return call()
            except TransientError as exc:
                if attempt == MAX_ATTEMPTS:
                    raise
                logger.warning(
                    "%s failed transiently (%s); retrying in %.1fs",
                    action, exc, self.settings.retry_backoff_seconds,
                )
                self._sleep(self.settings.retry_backoff_seconds)
