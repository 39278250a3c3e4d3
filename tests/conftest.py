"""Shared fixtures for the sdk_automation test suite.

No test touches the network or Google Cloud:
  - `InMemorySecretStore` stands in for Secret Manager.
  - `FakeGitHub` is an httpx.MockTransport handler that implements the
    handful of GitHub endpoints the flow calls. It verifies App JWTs with
    the public half of the test key and only honours installation tokens
    for the repository they were issued for, like GitHub does.
"""

import json
import logging
import re
import secrets
import string
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from sdk_automation.core.config import Settings
from sdk_automation.github.client import GitHubClient
from sdk_automation.secrets.store import SecretNotFoundError

TEST_APP_ID = 1770057
TEST_REPOSITORY = "org/python-sdk"
TEST_INSTALLATION_ID = 123


def _generate_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _pem(key: rsa.RSAPrivateKey) -> str:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    ).decode()


_TEST_KEY = _generate_private_key()
TEST_PRIVATE_KEY = _pem(_TEST_KEY)


class InMemorySecretStore:
    """SecretStore fake: every put() appends a version."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.versions: dict[str, list[bytes]] = {}
        for secret_id, value in (initial or {}).items():
            self.versions[secret_id] = [value.encode()]
        self.puts: list[str] = []

    def get_latest(self, secret_id: str) -> bytes:
        if not self.versions.get(secret_id):
            raise SecretNotFoundError(secret_id)
        return self.versions[secret_id][-1]

    def put(self, secret_id: str, data: bytes) -> None:
        self.versions.setdefault(secret_id, []).append(data)
        self.puts.append(secret_id)


def _random_token(prefix: str = "ghs_") -> str:
    alphabet = string.ascii_letters + string.digits
    return prefix + "".join(secrets.choice(alphabet) for _ in range(36))


class FakeGitHub:
    def __init__(self, public_key, app_id: int = TEST_APP_ID):
        self.public_key = public_key
        self.app_id = app_id
        self.installations: dict[int, set[str]] = {
            TEST_INSTALLATION_ID: {TEST_REPOSITORY, "org/go-sdk"},
        }
        self.issued: dict[str, str] = {}
        self.pulls: dict[str, list[dict]] = {}
        self.comments: list[tuple[str, int, str]] = []
        self.requests: list[httpx.Request] = []
        # Statuses returned (and popped) by the next token exchanges.
        self.exchange_failures: list[int] = []
        self._next_number = 100

    # -- helpers -------------------------------------------------------

    def add_pull(
        self,
        repository: str,
        head: str,
        number: int | None = None,
        head_repo: str | None = None,
    ) -> dict:
        """Add an open PR; `head_repo` names a fork the branch lives in."""
        if number is None:
            number = self._next_number
            self._next_number += 1
        pr = {
            "number": number,
            "state": "open",
            "head": {"ref": head, "repo": {"full_name": head_repo or repository}},
            "html_url": f"https://github.com/{repository}/pull/{number}",
        }
        self.pulls.setdefault(repository, []).append(pr)
        return pr

    def open_pulls(self, repository: str) -> list[dict]:
        return [pr for pr in self.pulls.get(repository, []) if pr["state"] == "open"]

    def _json(self, status: int, data) -> httpx.Response:
        return httpx.Response(status, json=data)

    def _verify_jwt(self, request: httpx.Request) -> bool:
        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer "):
            return False
        try:
            jwt.decode(
                auth.removeprefix("Bearer "),
                self.public_key,
                algorithms=["RS256"],
                issuer=str(self.app_id),
                options={"require": ["exp", "iat", "iss"]},
            )
        except jwt.PyJWTError:
            return False
        return True

    def _token_repo(self, request: httpx.Request) -> str | None:
        auth = request.headers.get("Authorization", "")
        if not auth.startswith("token "):
            return None
        return self.issued.get(auth.removeprefix("token "))

    # -- transport -----------------------------------------------------

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        method = request.method

        if path.startswith("/app") or path.endswith("/installation"):
            if not self._verify_jwt(request):
                return self._json(401, {"message": "A JSON web token could not be decoded"})
            return self._app_route(method, path, request)
        return self._repo_route(method, path, request)

    def _app_route(self, method: str, path: str, request: httpx.Request) -> httpx.Response:
        if method == "GET" and path == "/app":
            return self._json(200, {"id": self.app_id, "slug": "sdk-automation", "name": "SDK Automation"})

        if method == "GET" and path == "/app/installations":
            return self._json(200, [{"id": i} for i in self.installations])

        match = re.fullmatch(r"/repos/([^/]+/[^/]+)/installation", path)
        if method == "GET" and match:
            for installation_id, repos in self.installations.items():
                if match.group(1) in repos:
                    return self._json(200, {"id": installation_id})
            return self._json(404, {"message": "Not Found"})

        match = re.fullmatch(r"/app/installations/(\d+)/access_tokens", path)
        if method == "POST" and match:
            if self.exchange_failures:
                return self._json(self.exchange_failures.pop(0), {"message": "Server Error"})
            installation_id = int(match.group(1))
            if installation_id not in self.installations:
                return self._json(404, {"message": "Not Found"})
            names = json.loads(request.content).get("repositories", [])
            repos = self.installations[installation_id]
            full_names = [r for r in repos if r.split("/", 1)[1] in names]
            if len(full_names) != len(names) or len(names) != 1:
                return self._json(422, {"message": "There is at least one repository that does not exist or is not accessible"})
            token = _random_token()
            self.issued[token] = full_names[0]
            expires_at = datetime.now(timezone.utc) + timedelta(hours=1)
            return self._json(201, {
                "token": token,
                "expires_at": expires_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "permissions": {"pull_requests": "write", "contents": "write"},
            })

        return self._json(404, {"message": "Not Found"})

    def _repo_route(self, method: str, path: str, request: httpx.Request) -> httpx.Response:
        match = re.fullmatch(r"/repos/([^/]+/[^/]+)(/.*)?", path)
        if not match:
            return self._json(404, {"message": "Not Found"})
        repository, rest = match.group(1), match.group(2) or ""
        token_repo = self._token_repo(request)
        if token_repo is None:
            return self._json(401, {"message": "Bad credentials"})
        if token_repo != repository:
            return self._json(404, {"message": "Not Found"})

        body = json.loads(request.content) if request.content else {}

        if method == "GET" and rest == "":
            return self._json(200, {"full_name": repository})
        if method == "GET" and rest == "/pulls":
            return self._json(200, self.open_pulls(repository))
        if method == "POST" and rest == "/pulls":
            if any(
                pr["head"] == {"ref": body["head"], "repo": {"full_name": repository}}
                for pr in self.open_pulls(repository)
            ):
                return self._json(422, {"message": "A pull request already exists"})
            pr = self.add_pull(repository, body["head"])
            pr.update({"title": body["title"], "body": body["body"], "base": {"ref": body["base"]}})
            return self._json(201, pr)
        match = re.fullmatch(r"/pulls/(\d+)", rest)
        if method == "PATCH" and match:
            for pr in self.pulls.get(repository, []):
                if pr["number"] == int(match.group(1)):
                    pr["state"] = body.get("state", pr["state"])
                    return self._json(200, pr)
            return self._json(404, {"message": "Not Found"})
        match = re.fullmatch(r"/issues/(\d+)/comments", rest)
        if method == "POST" and match:
            self.comments.append((repository, int(match.group(1)), body["body"]))
            return self._json(201, {"id": len(self.comments)})
        return self._json(404, {"message": "Not Found"})


@pytest.fixture
def private_key_pem() -> str:
    return TEST_PRIVATE_KEY


@pytest.fixture
def secret_store() -> InMemorySecretStore:
    return InMemorySecretStore({"github-app-private-key": TEST_PRIVATE_KEY})


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        project_id="sdk-project",
        github_app_id=str(TEST_APP_ID),
        repository=TEST_REPOSITORY,
        head_branch="sdk-automation/regen",
        base_branch="main",
        branch_prefix="sdk-automation/",
        retry_backoff_seconds=0,
        build_id="build-1",
    )


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub(_TEST_KEY.public_key())


@pytest.fixture
def github_client(fake_github):
    client = GitHubClient("https://api.github.test", transport=httpx.MockTransport(fake_github))
    yield client
    client.close()


@pytest.fixture
def make_store():
    """Factory for InMemorySecretStore with custom initial secrets."""
    return InMemorySecretStore


@pytest.fixture
def make_private_key_pem():
    """Factory for fresh PEM keys (a key GitHub does not know about)."""
    return lambda: _pem(_generate_private_key())


@pytest.fixture(autouse=True)
def _reset_root_logging():
    """Drop handlers bound to a test's captured stdout."""
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)


@pytest.fixture(autouse=True)
def _isolate_token_env(monkeypatch):
    """Scrubbing deletes these from os.environ; restore the runner's values afterwards."""
    for name in ("GITHUB_TOKEN", "GH_TOKEN", "GITHUB_APP_PRIVATE_KEY"):
        monkeypatch.delenv(name, raising=False)
