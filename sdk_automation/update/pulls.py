"""Pull request refresh for the generated SDK branch.

The build pushes regenerated code to `head_branch`; this step makes sure
exactly one automation PR is open for it:

1. Open a PR from head_branch into base_branch, or reuse the open one
2. Close every other open PR whose head branch lives in the repository
   and carries the automation prefix, leaving a comment that points at
   the replacement. PRs from forks are never touched.

The new PR is opened before anything is closed so a failure never leaves
the repository without an open automation PR.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sdk_automation.github.client import RepositoryClient

logger = logging.getLogger(__name__)


@dataclass
class PullRequestResult:
    number: int
    html_url: str
    created: bool
    closed: list[int] = field(default_factory=list)


def _head_in_repository(pr: dict, repository: str) -> bool:
    """True when the PR's head branch lives in `repository`, not in a fork."""
    head_repo = pr["head"].get("repo")
    if not isinstance(head_repo, dict):
        return False
    return str(head_repo.get("full_name", "")).lower() == repository.lower()


def refresh_pull_request(
    repo_client: RepositoryClient,
    head_branch: str,
    base_branch: str,
    title: str,
    body: str,
    branch_prefix: str,
    build_id: str = "",
) -> PullRequestResult:
    repository = repo_client.repository_full_name
    # Fork PRs can reuse automation branch names; only same-repository heads count.
    open_pulls = [
        pr for pr in repo_client.list_open_pulls(repository)
        if _head_in_repository(pr, repository)
    ]

    current = next(
        (pr for pr in open_pulls if pr["head"]["ref"] == head_branch),
        None,
    )
    if current is None:
        current = repo_client.create_pull(
            repository,
            title=title,
            body=_build_pr_body(body, build_id),
            head=head_branch,
            base=base_branch,
        )
        created = True
        logger.info("Opened PR #%d on %s", current["number"], repository)
    else:
        created = False
        logger.info("PR #%d already open for %s", current["number"], head_branch)

    closed: list[int] = []
    for pr in open_pulls:
        if pr["number"] == current["number"]:
            continue
        if not pr["head"]["ref"].startswith(branch_prefix):
            continue
        repo_client.comment(
            repository,
            pr["number"],
            f"Superseded by #{current['number']}.",
        )
        repo_client.close_pull(repository, pr["number"])
        closed.append(pr["number"])
        logger.info("Closed stale PR #%d on %s", pr["number"], repository)

    return PullRequestResult(
        number=current["number"],
        html_url=current.get("html_url", ""),
        created=created,
        closed=closed,
    )


def _build_pr_body(body: str, build_id: str = "") -> str:
    generated_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    lines = [body.rstrip(), "", "---", f"_Generated by SDK automation at {generated_at}_"]
    if build_id:
        lines.append(f"_Cloud Build: `{build_id}`_")
    return "\n".join(lines) + "\n"
