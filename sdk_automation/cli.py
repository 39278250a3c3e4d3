"""Command-line entry point invoked by Cloud Build and by operators.

    sdk-automation update          token flow + PR refresh for $REPOSITORY
    sdk-automation test-key        confirm GitHub accepts the App key
    sdk-automation rotate-key      store a new App private key
    sdk-automation setup-secrets   create/update the App id secret
    sdk-automation scan [PATH...]  look for credentials in a tree

Exit code 0 on success. Failures exit with the error's exit code (see
sdk_automation.core.errors).
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from sdk_automation.core.config import Settings, get_settings
from sdk_automation.core.errors import SdkAutomationError
from sdk_automation.core.logging import bind_invocation, configure_structlog
from sdk_automation.core.scrub import credential_scope
from sdk_automation.core.sentry import init_sentry
from sdk_automation.github.auth import load_app_identity
from sdk_automation.github.client import GitHubClient
from sdk_automation.github.types import AppIdentity
from sdk_automation.ops.bootstrap import setup_secrets
from sdk_automation.ops.keys import check_key, read_pem_file, resolve_app_id, rotate_key
from sdk_automation.ops.leaks import DEFAULT_EXCLUDED_SUFFIXES, scan_tree
from sdk_automation.secrets.store import SecretManagerStore
from sdk_automation.update.flow import UpdateFlow

logger = logging.getLogger(__name__)


def _make_client(settings: Settings) -> GitHubClient:
    return GitHubClient(settings.github_api_url, timeout=settings.http_timeout_seconds)


def _make_store(settings: Settings) -> SecretManagerStore:
    return SecretManagerStore(settings.project_id)


def cmd_update(args: argparse.Namespace, settings: Settings) -> int:
    with _make_client(settings) as client:
        result = UpdateFlow(settings, _make_store(settings), client).run()
    if result.error is not None:
        # UpdateFlow already logged the failure with its state.
        _capture(result.error, settings)
    elif result.pull_request is not None:
        logger.info(
            "PR #%d %s (closed stale: %s)",
            result.pull_request.number,
            "opened" if result.pull_request.created else "reused",
            result.pull_request.closed or "none",
        )
    return result.exit_code


def cmd_test_key(args: argparse.Namespace, settings: Settings) -> int:
    with credential_scope() as scrubber, _make_client(settings) as client:
        if args.key_file:
            pem = read_pem_file(args.key_file, scrubber)
            store = _make_store(settings) if not settings.github_app_id else None
            identity = AppIdentity(app_id=resolve_app_id(store, settings), private_key=pem)
        else:
            identity = load_app_identity(_make_store(settings), settings, scrubber)
        check = check_key(client, identity, settings, scrubber)
    print(f"Key OK: app {check.app_id} ({check.app_slug}), {check.installation_count} installation(s)")
    return 0


def cmd_rotate_key(args: argparse.Namespace, settings: Settings) -> int:
    with credential_scope() as scrubber, _make_client(settings) as client:
        check = rotate_key(
            _make_store(settings),
            client,
            settings,
            Path(args.key_file),
            delete_file=args.delete,
            scrubber=scrubber,
        )
    print(f"Rotated private key for app {check.app_id} ({check.app_slug})")
    return 0


def cmd_setup_secrets(args: argparse.Namespace, settings: Settings) -> int:
    token = os.environ.get(args.token_env) if args.token_env else None
    with credential_scope() as scrubber:
        scrubber.register(token)
        written = setup_secrets(_make_store(settings), settings, args.app_id, token)
    print("Secrets ready: " + ", ".join(written))
    return 0


def cmd_scan(args: argparse.Namespace, settings: Settings) -> int:
    excluded = args.exclude if args.exclude is not None else DEFAULT_EXCLUDED_SUFFIXES
    findings = scan_tree([Path(p) for p in args.paths], excluded)
    for finding in findings:
        print(f"{finding.path}:{finding.line}: {finding.kind}")
    if findings:
        logger.error("Found %d potential secret(s); use Secret Manager instead", len(findings))
        return 1
    logger.info("No secrets found")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sdk-automation",
        description="GitHub App token flow for SDK repository automation.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    update = sub.add_parser("update", help="Refresh the SDK pull request for $REPOSITORY")
    update.set_defaults(func=cmd_update)

    test_key = sub.add_parser("test-key", help="Check that GitHub accepts the App private key")
    test_key.add_argument("--key-file", help="PEM file to test instead of the stored key")
    test_key.set_defaults(func=cmd_test_key)

    rotate = sub.add_parser("rotate-key", help="Store a new App private key in Secret Manager")
    rotate.add_argument("--key-file", required=True, help="Newly downloaded PEM file")
    rotate.add_argument("--delete", action="store_true", help="Delete the PEM file afterwards")
    rotate.set_defaults(func=cmd_rotate_key)

    setup = sub.add_parser("setup-secrets", help="Create or update the App id secret")
    setup.add_argument("--app-id", required=True, help="Numeric GitHub App id")
    setup.add_argument(
        "--token-env",
        help="Environment variable holding a legacy PAT to store as sdk-github-token",
    )
    setup.set_defaults(func=cmd_setup_secrets)

    scan = sub.add_parser("scan", help="Look for credentials in files")
    scan.add_argument("paths", nargs="*", default=["."])
    scan.add_argument(
        "--exclude",
        action="append",
        help="File suffix to skip (repeatable; default: .md .sh .yml .yaml)",
    )
    scan.set_defaults(func=cmd_scan)

    return parser


def _report(exc: SdkAutomationError, settings: Settings) -> None:
    logger.error("%s: %s", type(exc).__name__, exc)
    _capture(exc, settings)


def _capture(exc: SdkAutomationError, settings: Settings) -> None:
    if settings.sentry_dsn:
        import sentry_sdk

        sentry_sdk.capture_exception(exc)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except SdkAutomationError as exc:
        configure_structlog(debug=False)
        logger.error("%s: %s", type(exc).__name__, exc)
        return exc.exit_code

    configure_structlog(debug=settings.debug)
    init_sentry(settings.sentry_dsn, settings.environment)
    bind_invocation(settings.repository, settings.build_id)

    try:
        return args.func(args, settings)
    except SdkAutomationError as exc:
        _report(exc, settings)
        return exc.exit_code


if __name__ == "__main__":
    sys.exit(main())
