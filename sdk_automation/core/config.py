import re

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sdk_automation.core.errors import ConfigurationError

# GitHub rejects App JWTs whose exp is more than 10 minutes after iat.
MAX_JWT_LIFETIME_SECONDS = 600

# Characters Secret Manager rejects in secret ids.
_SECRET_ID_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class Settings(BaseSettings):
    """Build-step settings loaded from environment variables.

    Cloud Build substitutes these per repository. Only secret *names* live
    here; secret values are fetched from Secret Manager at run time and are
    never part of the settings object.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Google Cloud
    project_id: str = ""

    # GitHub App. When github_app_id is blank it is read from the
    # github_app_id_secret secret instead.
    github_app_id: str = ""
    github_app_id_secret: str = "github-app-id"
    github_private_key_secret: str = "github-app-private-key"

    # Per-repository installation id cache. "{repo}" is the repository name
    # without the owner.
    installation_id_secret_template: str = "{repo}-installation-id"

    # Target repository, "owner/name".
    repository: str = ""

    # Cloud Build's $BUILD_ID; tags log lines and PR bodies.
    build_id: str = ""

    github_api_url: str = "https://api.github.com"
    http_timeout_seconds: float = 10.0

    # JWT claims: iat is backdated by the skew, exp = iat + lifetime.
    jwt_clock_skew_seconds: int = 60
    jwt_lifetime_seconds: int = MAX_JWT_LIFETIME_SECONDS

    # Backoff before the single retry on a 5xx or network failure.
    retry_backoff_seconds: float = 2.0

    # Pull request produced by the update flow.
    head_branch: str = ""
    base_branch: str = "main"
    branch_prefix: str = "sdk-automation/"
    pr_title: str = "Update generated SDK"
    pr_body: str = "Automated SDK regeneration."

    # Environment variables removed from os.environ during scrub.
    scrub_env_vars: list[str] = ["GITHUB_TOKEN", "GH_TOKEN", "GITHUB_APP_PRIVATE_KEY"]

    # Sentry. Leave blank to disable error capture.
    sentry_dsn: str = ""
    environment: str = "development"

    debug: bool = False

    @field_validator("github_app_id", mode="before")
    @classmethod
    def validate_app_id(cls, v) -> str:
        v = str(v).strip()
        if v and not v.isdigit():
            raise ValueError(f"github_app_id must be numeric, got {v!r}")
        return v

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, v: str) -> str:
        v = v.strip()
        if v and (v.count("/") != 1 or v.startswith("/") or v.endswith("/")):
            raise ValueError(f"repository must be 'owner/name', got {v!r}")
        return v

    @field_validator("jwt_lifetime_seconds")
    @classmethod
    def validate_jwt_lifetime(cls, v: int) -> int:
        if v <= 0 or v > MAX_JWT_LIFETIME_SECONDS:
            raise ValueError(
                f"jwt_lifetime_seconds must be in 1..{MAX_JWT_LIFETIME_SECONDS}, got {v}"
            )
        return v

    @field_validator("jwt_clock_skew_seconds")
    @classmethod
    def validate_clock_skew(cls, v: int) -> int:
        if v < 0:
            raise ValueError("jwt_clock_skew_seconds must not be negative")
        return v

    def installation_secret_id(self, repository_full_name: str) -> str:
        """Secret id holding the cached installation id for a repository.

        Characters Secret Manager rejects (GitHub allows "." in names) become "-".
        """
        owner, _, repo = repository_full_name.partition("/")
        secret_id = self.installation_id_secret_template.format(repo=repo, owner=owner)
        return _SECRET_ID_INVALID_CHARS.sub("-", secret_id)


def get_settings(**overrides) -> Settings:
    """Load settings, turning validation failures into ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
