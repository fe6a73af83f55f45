# dispatch/hook.py
#
# Glue between the code review system and the CI scheduler.
#
# Outbound: runs as a git post-receive hook, reads "<old> <new> <ref>" lines
# and triggers a build for every update of a tracked branch.
# Return leg: once the build finished, posts its result as a review comment.
from __future__ import annotations

import subprocess
from typing import Callable, Iterable, List, Optional

from ..git_facts.git import commit_author, commit_subject
from ..ui.console import get_console
from .api_client import APIClient, APIError
from .models import DispatchConfig, RefUpdate, TriggerPayload

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 3


def parse_ref_updates(lines: Iterable[str]) -> List[RefUpdate]:
    updates: List[RefUpdate] = []
    for line in lines:
        line = line.strip()
        if not line:
            continue
        fragments = line.split(" ")
        if len(fragments) != 3:
            raise ValueError(f"invalid ref update: '{line}'")
        old, new, name = fragments
        updates.append(RefUpdate(old=old, new=new, name=name))
    return updates


def _commit_facts(commit: str) -> tuple[str, str]:
    return commit_subject(commit), commit_author(commit)


def trigger_builds(
    config: DispatchConfig,
    updates: Iterable[RefUpdate],
    client: APIClient,
    commit_facts: Callable[[str], tuple[str, str]] = _commit_facts,
) -> int:
    """
    Trigger a build for every tracked, non-deleting ref update.

    A failed trigger might be a temporary problem on the scheduler side; it
    is reported and the remaining updates are still processed.

    Returns:
        Number of builds triggered.
    """
    console = get_console()
    triggered = 0

    for update in updates:
        if update.name not in config.branches:
            console.print_debug(f"ignoring update of untracked ref {update.name}")
            continue
        if update.is_deletion:
            console.print_debug(f"ignoring deletion of {update.name}")
            continue

        try:
            message, author = commit_facts(update.new)
            payload = TriggerPayload(
                commit=update.new,
                branch=update.branch,
                message=message,
                author=author,
            )
            client.trigger_build(config.project, payload.model_dump())
        except (APIError, subprocess.CalledProcessError) as e:
            console.print_error(
                "Failed to trigger build",
                f"branch '{update.branch}' at commit '{update.new}'",
                details=[str(e)],
            )
            continue

        console.print_info(f"triggered build for branch '{update.branch}' at commit '{update.new}'")
        triggered += 1

    return triggered


def report_result(
    config: DispatchConfig,
    commit: str,
    exit_status: int,
    client: Optional[APIClient] = None,
    build_url: Optional[str] = None,
) -> bool:
    """
    Post the build result for `commit` as a review comment.

    Returns False if the comment could not be posted. This never fails the
    build itself.
    """
    console = get_console()
    if client is None:
        if config.review_url is None:
            console.print_debug("no review_url configured, not reporting")
            return False
        try:
            client = APIClient(config.review_url, token=config.token())
        except OSError as e:
            console.print_error("Failed to read API token", str(e))
            return False

    passed = exit_status == 0
    message = "CI build passed." if passed else f"CI build failed (exit status {exit_status})."
    url = build_url or config.build_url
    if url:
        message = f"{message} {url}"

    try:
        client.post_comment(commit, message, labels={"Verified": "+1" if passed else "-1"})
    except APIError as e:
        console.print_error("Failed to post review comment", str(e))
        return False
    return True
