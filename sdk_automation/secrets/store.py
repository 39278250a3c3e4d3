"""Secret store backed by Google Secret Manager.

The build step reads two kinds of secrets:
  - the shared GitHub App private key (and optionally the App id);
  - one installation id per managed repository.

The only write the token issuer performs is caching a newly discovered
installation id. Operator commands (key rotation, secret setup) also
write through put().
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from google.api_core import exceptions as google_exceptions

from sdk_automation.core.errors import ConfigurationError, TransientError

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    """Minimal key/value view of a secret service."""

    def get_latest(self, secret_id: str) -> bytes:
        """Return the latest version's payload. Raises ConfigurationError if absent."""
        ...

    def put(self, secret_id: str, data: bytes) -> None:
        """Add a new version, creating the secret first if needed."""
        ...


class SecretNotFoundError(ConfigurationError):
    """The secret (or its latest version) does not exist."""

    def __init__(self, secret_id: str):
        self.secret_id = secret_id
        super().__init__(f"Secret {secret_id!r} not found or has no enabled version")


class SecretManagerStore:
    """SecretStore on top of `google-cloud-secret-manager`.

    The client is created lazily so constructing the store never needs
    credentials; pass `client` to inject a fake in tests.
    """

    def __init__(self, project_id: str, client=None):
        if not project_id:
            raise ConfigurationError("PROJECT_ID is required to access Secret Manager")
        self.project_id = project_id
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from google.cloud import secretmanager

            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    def _secret_path(self, secret_id: str) -> str:
        return f"projects/{self.project_id}/secrets/{secret_id}"

    def get_latest(self, secret_id: str) -> bytes:
        name = f"{self._secret_path(secret_id)}/versions/latest"
        try:
            response = self.client.access_secret_version(request={"name": name})
        except google_exceptions.NotFound as exc:
            raise SecretNotFoundError(secret_id) from exc
        except google_exceptions.PermissionDenied as exc:
            raise ConfigurationError(
                f"Permission denied reading secret {secret_id!r}; "
                "grant roles/secretmanager.secretAccessor to the build service account"
            ) from exc
        except google_exceptions.InvalidArgument as exc:
            raise _invalid_secret_id(secret_id) from exc
        except (google_exceptions.ServiceUnavailable, google_exceptions.DeadlineExceeded) as exc:
            raise TransientError(f"Secret Manager unavailable reading {secret_id!r}") from exc
        return response.payload.data

    def exists(self, secret_id: str) -> bool:
        try:
            self.client.get_secret(request={"name": self._secret_path(secret_id)})
        except google_exceptions.NotFound:
            return False
        except google_exceptions.InvalidArgument as exc:
            raise _invalid_secret_id(secret_id) from exc
        return True

    def put(self, secret_id: str, data: bytes) -> None:
        if not self.exists(secret_id):
            try:
                self.client.create_secret(
                    request={
                        "parent": f"projects/{self.project_id}",
                        "secret_id": secret_id,
                        "secret": {"replication": {"automatic": {}}},
                    }
                )
                logger.info("Created secret %s", secret_id)
            except google_exceptions.AlreadyExists:
                # Created concurrently by another build; add the version below.
                pass
            except google_exceptions.PermissionDenied as exc:
                raise ConfigurationError(f"Permission denied creating secret {secret_id!r}") from exc
            except google_exceptions.InvalidArgument as exc:
                raise _invalid_secret_id(secret_id) from exc

        try:
            self.client.add_secret_version(
                request={
                    "parent": self._secret_path(secret_id),
                    "payload": {"data": data},
                }
            )
        except google_exceptions.PermissionDenied as exc:
            raise ConfigurationError(
                f"Permission denied adding a version to secret {secret_id!r}"
            ) from exc
        except google_exceptions.InvalidArgument as exc:
            raise _invalid_secret_id(secret_id) from exc
        logger.info("Added new version to secret %s", secret_id)


def _invalid_secret_id(secret_id: str) -> ConfigurationError:
    return ConfigurationError(
        f"Secret id {secret_id!r} was rejected by Secret Manager; "
        "ids may only contain letters, digits, '_' and '-'"
    )


def get_latest_text(store: SecretStore, secret_id: str) -> Optional[str]:
    """Read a secret as stripped UTF-8 text; None if it does not exist."""
    try:
        data = store.get_latest(secret_id)
    except SecretNotFoundError:
        return None
    try:
        return data.decode("utf-8").strip()
    except UnicodeDecodeError:
        raise ConfigurationError(f"Secret {secret_id!r} is not valid UTF-8") from None
