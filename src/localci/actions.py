# actions.py
from __future__ import annotations

import shlex
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, Iterable, Optional

from .errors import StepLaunchError

if TYPE_CHECKING:
    from .executor import StepContext

# ---------------------------------------------------------------------
# Built-in actions
# ---------------------------------------------------------------------
# A built-in action is a callable (StepContext) -> exit code. It runs inside
# the job's workspace like any shell step and may raise StepLaunchError when
# it cannot start. Workflow files reference actions by name or by one of
# their aliases (e.g. "actions/checkout@v4" -> "checkout").
# ---------------------------------------------------------------------

Action = Callable[["StepContext"], int]

_ACTIONS: Dict[str, Action] = {}
_ALIASES: Dict[str, str] = {}

CHECKOUT_IGNORE = (".git", ".localci", "__pycache__")


def register_action(name: str, aliases: Iterable[str] = ()):
    """Decorator: register `fn` as built-in action `name`."""
    def deco(fn: Action) -> Action:
        _ACTIONS[name] = fn
        for alias in aliases:
            _ALIASES[alias] = name
        return fn
    return deco


def resolve_action(ref: str) -> Optional[str]:
    """
    Map a `uses:` reference to a registered action name.
    Version pins are dropped: "pre-commit/action@v3.0.1" -> "pre-commit".
    """
    bare = ref.split("@", 1)[0].strip()
    if bare in _ACTIONS:
        return bare
    return _ALIASES.get(bare)


def get_action(name: str) -> Optional[Action]:
    return _ACTIONS.get(name)


@register_action("checkout", aliases=("actions/checkout",))
def checkout(ctx: StepContext) -> int:
    """Copy the repository into the job workspace."""
    src = ctx.repo_root.resolve()
    if not src.is_dir():
        raise StepLaunchError(ctx.job_name, ctx.step.name, f"repository not found: {src}")

    workspace = ctx.workspace.resolve()
    dest = (workspace / ctx.step.params.get("path", "")).resolve()
    if not dest.is_relative_to(workspace):
        raise StepLaunchError(
            ctx.job_name,
            ctx.step.name,
            f"checkout path escapes the workspace: {dest}",
            path=ctx.step.params.get("path"),
        )

    # the workspace may sit inside the repository; never copy it into itself
    ignore_names = set(CHECKOUT_IGNORE)

    def _ignore(directory: str, names: list[str]) -> set[str]:
        skipped = {n for n in names if n in ignore_names}
        for n in names:
            if (Path(directory) / n).resolve() in (workspace, dest):
                skipped.add(n)
        return skipped

    shutil.copytree(src, dest, ignore=_ignore, dirs_exist_ok=True, symlinks=True)
    ctx.console.print_step_output(ctx.job_name, ctx.step.name, f"checked out {src} -> {dest}")
    return 0


@register_action("pre-commit", aliases=("pre-commit/action",))
def pre_commit(ctx: StepContext) -> int:
    """Run the pre-commit hooks; `extra_args` replaces the default `--all-files`."""
    cmd = "pre-commit run --show-diff-on-failure --color=always"
    extra = ctx.step.params.get("extra_args")
    if extra:
        cmd = f"{cmd} {' '.join(shlex.quote(a) for a in shlex.split(extra))}"
    else:
        cmd = f"{cmd} --all-files"
    return ctx.shell(cmd, ctx.step.working_directory)
