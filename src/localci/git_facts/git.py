# git.py
# Small, focused wrapper around the Git CLI.
# The CLI uses it to describe the checkout it is running in, so a default
# event (branch, commit) can be built without the user spelling it out.

from __future__ import annotations

import subprocess
from typing import Dict, Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero (e.g. not a repo)
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> Optional[str]:
    """
    Name of the checked-out branch.

    Returns:
        The branch name, or None on a detached HEAD.
    """
    # `--abbrev-ref` prints "HEAD" when detached
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return None if name == "HEAD" else name


def is_dirty(cwd: Optional[str] = None) -> bool:
    """True if the working tree has modified, staged or untracked files."""
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def describe_checkout(cwd: Optional[str] = None) -> Dict[str, str]:
    """
    Best-effort facts about the checkout, for event metadata.

    Never raises: outside a repository (or without git) it returns {}.
    """
    try:
        facts = {"sha": head_sha(cwd), "dirty": "true" if is_dirty(cwd) else "false"}
        branch = current_branch(cwd)
        if branch:
            facts["branch"] = branch
        return facts
    except (subprocess.CalledProcessError, OSError):
        return {}
