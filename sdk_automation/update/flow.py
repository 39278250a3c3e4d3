"""Update flow for one scheduled build invocation.

State machine:
    FETCH_KEY -> BUILD_JWT -> EXCHANGE_TOKEN -> USE_TOKEN -> SCRUB -> SUCCESS
         \\            \\               \\              \\-> SCRUB -> FAILED
          `------------`---------------`--> SCRUB -> FAILED

Every path passes through SCRUB, so the private key, JWTs and the
installation token are wiped whether the run succeeds or fails.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from sdk_automation.core.config import Settings
from sdk_automation.core.errors import ConfigurationError, SdkAutomationError
from sdk_automation.core.scrub import CredentialScrubber, credential_scope
from sdk_automation.github.client import GitHubClient
from sdk_automation.github.issuer import InstallationTokenIssuer
from sdk_automation.secrets.store import SecretStore
from sdk_automation.update.pulls import PullRequestResult, refresh_pull_request

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    FETCH_KEY = "fetch_key"
    BUILD_JWT = "build_jwt"
    EXCHANGE_TOKEN = "exchange_token"
    USE_TOKEN = "use_token"
    SCRUB = "scrub"
    SUCCESS = "success"
    FAILED = "failed"


VALID_TRANSITIONS: dict[FlowState, set[FlowState]] = {
    FlowState.FETCH_KEY: {FlowState.BUILD_JWT, FlowState.SCRUB},
    FlowState.BUILD_JWT: {FlowState.EXCHANGE_TOKEN, FlowState.SCRUB},
    FlowState.EXCHANGE_TOKEN: {FlowState.USE_TOKEN, FlowState.SCRUB},
    FlowState.USE_TOKEN: {FlowState.SCRUB},
    FlowState.SCRUB: {FlowState.SUCCESS, FlowState.FAILED},
}


def validate_transition(current: FlowState, target: FlowState) -> None:
    """Enforce the flow state machine.

    Raises ValueError if the transition is not allowed.
    """
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise ValueError(
            f"Invalid flow state transition: {current.value} -> {target.value}. "
            f"Allowed transitions from '{current.value}': "
            f"{sorted(s.value for s in allowed) or 'none (terminal state)'}"
        )


@dataclass
class FlowResult:
    state: FlowState
    history: list[FlowState] = field(default_factory=list)
    pull_request: Optional[PullRequestResult] = None
    token_expires_at: Optional[datetime] = None
    error: Optional[SdkAutomationError] = None

    @property
    def succeeded(self) -> bool:
        return self.state is FlowState.SUCCESS

    @property
    def exit_code(self) -> int:
        if self.succeeded:
            return 0
        return self.error.exit_code if self.error is not None else 1


class UpdateFlow:
    """Runs the token flow and the PR refresh for `settings.repository`."""

    def __init__(
        self,
        settings: Settings,
        store: SecretStore,
        client: GitHubClient,
        scrubber: Optional[CredentialScrubber] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.client = client
        self.scrubber = scrubber or CredentialScrubber()
        self.issuer = InstallationTokenIssuer(settings, store, client, self.scrubber, sleep)
        self.state = FlowState.FETCH_KEY
        self.history: list[FlowState] = [FlowState.FETCH_KEY]

    def _transition(self, target: FlowState) -> None:
        validate_transition(self.state, target)
        logger.debug("Flow %s -> %s", self.state.value, target.value)
        self.state = target
        self.history.append(target)

    def _check_settings(self) -> None:
        if not self.settings.repository:
            raise ConfigurationError("REPOSITORY (owner/name) is required")
        if not self.settings.head_branch:
            raise ConfigurationError("HEAD_BRANCH is required")
        if self.settings.head_branch == self.settings.base_branch:
            raise ConfigurationError("HEAD_BRANCH must differ from BASE_BRANCH")

    def run(self) -> FlowResult:
        if self.state is not FlowState.FETCH_KEY:
            raise RuntimeError("UpdateFlow instances are single-use")

        for name in self.settings.scrub_env_vars:
            self.scrubber.register_env(name)

        result = FlowResult(state=self.state)
        repository = self.settings.repository

        with credential_scope(self.scrubber):
            try:
                self._check_settings()
                identity = self.issuer.load_identity()

                self._transition(FlowState.BUILD_JWT)
                signed = self.issuer.build_jwt(identity)

                self._transition(FlowState.EXCHANGE_TOKEN)
                ref = self.issuer.resolve_installation(identity, repository)
                token = self.issuer.exchange(identity, ref, signed)
                result.token_expires_at = token.expires_at

                self._transition(FlowState.USE_TOKEN)
                result.pull_request = refresh_pull_request(
                    self.client.for_repository(token),
                    head_branch=self.settings.head_branch,
                    base_branch=self.settings.base_branch,
                    title=self.settings.pr_title,
                    body=self.settings.pr_body,
                    branch_prefix=self.settings.branch_prefix,
                    build_id=self.settings.build_id,
                )
            except SdkAutomationError as exc:
                result.error = exc
                logger.error(
                    "Update flow failed in %s: %s: %s",
                    self.state.value, type(exc).__name__, exc,
                )
            finally:
                self._transition(FlowState.SCRUB)
                self.scrubber.wipe()

        self._transition(FlowState.FAILED if result.error else FlowState.SUCCESS)
        result.state = self.state
        result.history = list(self.history)
        if result.succeeded:
            logger.info(
                "Update flow succeeded for %s: PR #%d",
                repository, result.pull_request.number,
            )
        return result
