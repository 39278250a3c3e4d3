"""GitHub REST API client.

Uses a synchronous httpx client with a short fixed timeout; the build
step runs exactly one flow per process.

Two authentication modes:
  - App JWT (`Authorization: Bearer <jwt>`) for /app endpoints: token
    exchange, installation discovery, key checks.
  - Installation token (`Authorization: token <value>`) for repository
    calls. RepositoryClient only talks to the single repository the
    token was issued for.

Status mapping:
  401/403/404 -> AuthError
  429/5xx, network errors -> TransientError
  anything else non-2xx -> GitHubAPIError
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from sdk_automation.core.errors import AuthError, GitHubAPIError, TransientError
from sdk_automation.core.scrub import redact
from sdk_automation.github.types import InstallationRef, InstallationToken, SignedJWT

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
USER_AGENT = "sdk-automation"
PER_PAGE = 100

# Error bodies are echoed into logs for diagnosis; keep them short.
_MAX_ERROR_BODY = 500

_AUTH_STATUSES = {401, 403, 404}


def _raise_for_status(response: httpx.Response, action: str, auth_statuses=_AUTH_STATUSES) -> None:
    status = response.status_code
    if status < 400:
        return
    body = redact(response.text[:_MAX_ERROR_BODY])
    if status in auth_statuses:
        raise AuthError(f"GitHub rejected {action}", status_code=status, body=body)
    if status == 429 or status >= 500:
        raise TransientError(f"GitHub returned HTTP {status} for {action}", status_code=status)
    raise GitHubAPIError(f"GitHub request failed: {action}", status_code=status, body=body)


def _parse_timestamp(value: str, action: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise GitHubAPIError(f"Malformed timestamp in response to {action}") from None
    # Timestamps without an offset are UTC.
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _json(response: httpx.Response, action: str, *required: str):
    """Decode a response body, checking that `required` keys are present."""
    try:
        data = response.json()
    except ValueError:
        raise GitHubAPIError(
            f"Response to {action} is not JSON", status_code=response.status_code
        ) from None
    if required:
        missing = [key for key in required if not isinstance(data, dict) or data.get(key) is None]
        if missing:
            raise GitHubAPIError(
                f"Response to {action} is missing {', '.join(missing)}",
                status_code=response.status_code,
            )
    return data


def _check_pull(pr, action: str) -> dict:
    """Pull request objects must carry a number and a head ref.

    head.repo is not checked: GitHub sends null for a deleted fork.
    """
    head = pr.get("head") if isinstance(pr, dict) else None
    if (
        not isinstance(head, dict)
        or not isinstance(head.get("ref"), str)
        or not isinstance(pr.get("number"), int)
    ):
        raise GitHubAPIError(f"Malformed pull request in response to {action}")
    return pr


class GitHubClient:
    """App-level client. One instance per invocation; close() when done."""

    def __init__(
        self,
        base_url: str = GITHUB_API_BASE,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
                "User-Agent": USER_AGENT,
            },
        )

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def request(
        self,
        method: str,
        path: str,
        authorization: str,
        auth_statuses=_AUTH_STATUSES,
        **kwargs,
    ) -> httpx.Response:
        action = f"{method} {path}"
        try:
            response = self._http.request(
                method, path, headers={"Authorization": authorization}, **kwargs
            )
        except httpx.TransportError as exc:
            raise TransientError(f"Network error on {action}: {type(exc).__name__}") from exc
        _raise_for_status(response, action, auth_statuses)
        return response

    # ------------------------------------------------------------------
    # App JWT endpoints
    # ------------------------------------------------------------------

    def _app_auth(self, signed: SignedJWT) -> str:
        if signed.is_expired():
            raise AuthError("App JWT has expired; sign a new one")
        return f"Bearer {signed.token}"

    def get_app(self, signed: SignedJWT) -> dict:
        """GET /app, the authenticated App. Confirms GitHub accepts the key."""
        return _json(self.request("GET", "/app", self._app_auth(signed)), "GET /app", "id")

    def list_installations(self, signed: SignedJWT) -> list[dict]:
        """GET /app/installations, all pages."""
        installations: list[dict] = []
        page = 1
        while True:
            response = self.request(
                "GET",
                "/app/installations",
                self._app_auth(signed),
                params={"per_page": PER_PAGE, "page": page},
            )
            batch = _json(response, "GET /app/installations")
            if not isinstance(batch, list):
                raise GitHubAPIError("Response to GET /app/installations is not a list")
            installations.extend(batch)
            if len(batch) < PER_PAGE:
                return installations
            page += 1

    def get_repo_installation(self, signed: SignedJWT, repository_full_name: str) -> int:
        """GET /repos/{owner}/{repo}/installation: installation id for a repo.

        404 means the App is not installed on the repository.
        """
        path = f"/repos/{repository_full_name}/installation"
        response = self.request("GET", path, self._app_auth(signed))
        installation_id = _json(response, f"GET {path}", "id")["id"]
        if not isinstance(installation_id, int):
            raise GitHubAPIError(f"Installation id in response to GET {path} is not a number")
        return installation_id

    def create_installation_token(
        self,
        signed: SignedJWT,
        ref: InstallationRef,
    ) -> InstallationToken:
        """Exchange a JWT for an installation access token.

        The request names the single target repository, so GitHub issues
        a token that cannot touch any other repository of the
        installation. The JWT is consumed on success and must not be used
        again.
        """
        if signed.consumed:
            raise AuthError("App JWT was already exchanged; sign a new one")
        path = f"/app/installations/{ref.installation_id}/access_tokens"
        response = self.request(
            "POST",
            path,
            self._app_auth(signed),
            # 422: the repository is not part of this installation.
            auth_statuses=_AUTH_STATUSES | {422},
            json={"repositories": [ref.repo]},
        )
        if response.status_code != 201:
            raise GitHubAPIError(
                "Unexpected response to installation token request",
                status_code=response.status_code,
            )
        signed.consume()

        action = f"POST {path}"
        data = _json(response, action, "token", "expires_at")
        if not isinstance(data["token"], str):
            raise GitHubAPIError(f"Token in response to {action} is not a string")
        token = InstallationToken(
            token=data["token"],
            expires_at=_parse_timestamp(data["expires_at"], action),
            installation_id=ref.installation_id,
            repository_full_name=ref.repository_full_name,
            permissions=data.get("permissions") or {},
        )
        logger.info(
            "Issued installation token for %s (installation %d), expires %s",
            ref.repository_full_name, ref.installation_id, token.expires_at.isoformat(),
        )
        return token

    def for_repository(self, token: InstallationToken) -> "RepositoryClient":
        return RepositoryClient(self, token)


class RepositoryClient:
    """Pull request calls for the one repository an installation token covers."""

    def __init__(self, client: GitHubClient, token: InstallationToken):
        self._client = client
        self._token = token

    @property
    def repository_full_name(self) -> str:
        return self._token.repository_full_name

    def _request(self, method: str, repository_full_name: str, path: str, **kwargs) -> httpx.Response:
        if not self._token.covers(repository_full_name):
            raise AuthError(
                f"Installation token for {self._token.repository_full_name} "
                f"does not cover {repository_full_name}"
            )
        if self._token.is_expired():
            raise AuthError("Installation token has expired")
        return self._client.request(
            method,
            f"/repos/{repository_full_name}{path}",
            f"token {self._token.token}",
            **kwargs,
        )

    def get_repository(self, repository_full_name: str) -> dict:
        return self._request("GET", repository_full_name, "").json()

    def list_open_pulls(self, repository_full_name: str) -> list[dict]:
        action = f"GET /repos/{repository_full_name}/pulls"
        pulls: list[dict] = []
        page = 1
        while True:
            response = self._request(
                "GET",
                repository_full_name,
                "/pulls",
                params={"state": "open", "per_page": PER_PAGE, "page": page},
            )
            batch = _json(response, action)
            if not isinstance(batch, list):
                raise GitHubAPIError(f"Response to {action} is not a list")
            pulls.extend(_check_pull(pr, action) for pr in batch)
            if len(batch) < PER_PAGE:
                return pulls
            page += 1

    def create_pull(
        self,
        repository_full_name: str,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> dict:
        response = self._request(
            "POST",
            repository_full_name,
            "/pulls",
            json={"title": title, "body": body, "head": head, "base": base},
        )
        action = f"POST /repos/{repository_full_name}/pulls"
        return _check_pull(_json(response, action), action)

    def close_pull(self, repository_full_name: str, number: int) -> dict:
        return self._request(
            "PATCH",
            repository_full_name,
            f"/pulls/{number}",
            json={"state": "closed"},
        ).json()

    def comment(self, repository_full_name: str, number: int, body: str) -> dict:
        return self._request(
            "POST",
            repository_full_name,
            f"/issues/{number}/comments",
            json={"body": body},
        ).json()
