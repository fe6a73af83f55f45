# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.
    """
    # If git exits with a non-zero status, CalledProcessError is raised.
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
    )
    return out.strip()


def rev_parse(ref: str, cwd: Optional[str] = None) -> str:
    """Resolve `ref` (branch, tag, `sha~1`, ...) to a full commit SHA."""
    return _git(["rev-parse", ref], cwd=cwd)


def merge_base(with_ref: str = "origin/main", cwd: Optional[str] = None) -> str:
    """
    Return the merge-base (common ancestor) between HEAD and another ref.

    This is the point where the current branch diverged from `with_ref`, and
    the commit whose target map a new build should be compared against.
    """
    return _git(["merge-base", "HEAD", with_ref], cwd=cwd)


def commit_author(commit: str, cwd: Optional[str] = None) -> str:
    """'Name <email>' of the author of `commit`."""
    return _git(["log", "-1", "--format=%an <%ae>", commit], cwd=cwd)


def commit_subject(commit: str, cwd: Optional[str] = None) -> str:
    """First line of the commit message of `commit`."""
    return _git(["log", "-1", "--format=%s", commit], cwd=cwd)


def parent_candidates(compare_ref: str, depth: int = 3, cwd: Optional[str] = None) -> List[str]:
    """
    The fork point of HEAD from `compare_ref` and up to `depth - 1` of its
    ancestors, nearest first.

    A build may start from a fork point whose own pipeline has not finished
    yet, so a few older commits are considered as well.
    """
    first = merge_base(compare_ref, cwd=cwd)
    candidates = [first]
    for i in range(1, depth):
        try:
            candidates.append(rev_parse(f"{first}~{i}", cwd=cwd))
        except subprocess.CalledProcessError:
            # reached the root commit
            break
    return candidates


def find_parent_map(
    store_dir: str | Path,
    compare_ref: str = "origin/main",
    cwd: Optional[str] = None,
) -> Optional[Path]:
    """
    Locate the target map of the most relevant previous build.

    Target maps are expected as `<store_dir>/<commit sha>.json`. Returns None
    if no candidate commit has one, in which case all targets are built.
    """
    store = Path(store_dir)
    for commit in parent_candidates(compare_ref, cwd=cwd):
        candidate = store / f"{commit}.json"
        if candidate.is_file():
            return candidate
    return None
