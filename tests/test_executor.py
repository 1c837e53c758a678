"""
Step Executor
=============
Ordered, fail-fast execution of a job's steps as real shell processes.
"""
import os
import threading
import time

import pytest

from localci.cancel import CancelToken
from localci.dsl import sh, uses
from localci.executor import run_steps
from localci.model import RunStatus, Step, StepKind


def _env(**extra):
    env = dict(os.environ)
    env.update(extra)
    return env


class TestOrdering:

    def test_all_steps_succeed(self, tmp_path, spy, console):
        steps = [sh("a", spy.cmd("a")), sh("b", spy.cmd("b")), sh("c", spy.cmd("c"))]
        outcome = run_steps(steps, _env(), workspace=tmp_path, job_name="j", console=console)

        assert outcome.status is RunStatus.SUCCESS
        assert outcome.failed_index is None
        assert outcome.exit_code == 0
        assert spy.calls() == ["a", "b", "c"]

    @pytest.mark.parametrize("k", [0, 1, 2, 3])
    def test_first_failure_halts(self, tmp_path, spy, console, k):
        steps = [sh(f"s{i}", spy.cmd(f"s{i}", 3 if i == k else 0)) for i in range(4)]
        outcome = run_steps(steps, _env(), workspace=tmp_path, job_name="j", console=console)

        assert outcome.status is RunStatus.FAILURE
        assert outcome.failed_index == k
        assert outcome.exit_code == 3
        # steps after k never started
        assert spy.calls() == [f"s{i}" for i in range(k + 1)]

    def test_later_failures_are_never_reached(self, tmp_path, spy, console):
        steps = [sh("a", spy.cmd("a", 2)), sh("b", spy.cmd("b", 5))]
        outcome = run_steps(steps, _env(), workspace=tmp_path, job_name="j", console=console)
        assert (outcome.failed_index, outcome.exit_code) == (0, 2)
        assert spy.calls() == ["a"]

    def test_empty_step_list_is_success(self, tmp_path, console):
        outcome = run_steps([], _env(), workspace=tmp_path, console=console)
        assert outcome.status is RunStatus.SUCCESS


class TestEnvironmentAndCwd:

    def test_env_reaches_the_process(self, tmp_path, console):
        out = tmp_path / "out.txt"
        steps = [sh("print", f'printf "%s" "$GREETING" > {out}')]
        run_steps(steps, _env(GREETING="hello"), workspace=tmp_path, console=console)
        assert out.read_text() == "hello"

    def test_working_directory_is_relative_to_workspace(self, tmp_path, console):
        (tmp_path / "sub").mkdir()
        steps = [sh("pwd", "pwd -P > where.txt", cwd="sub")]
        run_steps(steps, _env(), workspace=tmp_path, console=console)
        assert (tmp_path / "sub" / "where.txt").read_text().strip() == str((tmp_path / "sub").resolve())

    def test_output_lines_are_tagged(self, tmp_path, console):
        run_steps([sh("hello", "echo hi there")], _env(), workspace=tmp_path, job_name="build", console=console)
        assert "[build/hello] hi there" in console.text


class TestLaunchErrors:

    def test_command_not_found_is_error(self, tmp_path, spy, console):
        steps = [sh("missing", "definitely-not-a-real-command-xyz"), sh("after", spy.cmd("after"))]
        outcome = run_steps(steps, _env(), workspace=tmp_path, job_name="j", console=console)

        assert outcome.status is RunStatus.ERROR
        assert outcome.failed_index == 0
        assert outcome.exit_code == 127
        assert spy.calls() == []
        assert "LAUNCH ERROR" in console.text

    def test_not_executable_is_error(self, tmp_path, console):
        script = tmp_path / "script.sh"
        script.write_text("#!/bin/sh\nexit 0\n")
        script.chmod(0o644)
        outcome = run_steps([sh("noexec", "./script.sh")], _env(), workspace=tmp_path, console=console)
        assert outcome.status is RunStatus.ERROR
        assert outcome.exit_code == 126

    def test_missing_working_directory_is_error(self, tmp_path, console):
        outcome = run_steps([sh("x", "true", cwd="nope")], _env(), workspace=tmp_path, console=console)
        assert outcome.status is RunStatus.ERROR
        assert outcome.exit_code is None
        assert "cwd not found" in outcome.reason

    def test_unknown_builtin_action_is_error(self, tmp_path, console):
        step = Step(name="mystery", command="acme/thing@v1", kind=StepKind.BUILTIN, action="acme-thing")
        outcome = run_steps([step], _env(), workspace=tmp_path, console=console)
        assert outcome.status is RunStatus.ERROR
        assert "unknown action" in outcome.reason


class TestBuiltins:

    def test_checkout_copies_repository(self, tmp_path, console):
        repo = tmp_path / "repo"
        (repo / "src").mkdir(parents=True)
        (repo / "src" / "lib.rs").write_text("fn main() {}\n")
        (repo / ".git").mkdir()
        (repo / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
        workspace = tmp_path / "ws"
        workspace.mkdir()

        steps = [uses("actions/checkout@v4"), sh("list", "test -f src/lib.rs")]
        outcome = run_steps(steps, _env(), workspace=workspace, repo_root=repo, console=console)

        assert outcome.status is RunStatus.SUCCESS
        assert (workspace / "src" / "lib.rs").exists()
        assert not (workspace / ".git").exists()

    def test_pre_commit_runs_through_the_shell(self, tmp_path, console):
        bindir = tmp_path / "bin"
        bindir.mkdir()
        fake = bindir / "pre-commit"
        fake.write_text(f'#!/bin/sh\necho "$@" > {tmp_path / "args.txt"}\nexit 1\n')
        fake.chmod(0o755)

        env = _env(PATH=f"{bindir}{os.pathsep}{os.environ.get('PATH', '')}")
        outcome = run_steps([uses("pre-commit/action@v3.0.1")], env, workspace=tmp_path, console=console)

        assert outcome.status is RunStatus.FAILURE
        assert outcome.exit_code == 1
        args = (tmp_path / "args.txt").read_text()
        assert args.startswith("run --show-diff-on-failure")
        assert "--all-files" in args

    def test_pre_commit_extra_args_replace_all_files(self, tmp_path, console):
        bindir = tmp_path / "bin"
        bindir.mkdir()
        fake = bindir / "pre-commit"
        fake.write_text(f'#!/bin/sh\necho "$@" > {tmp_path / "args.txt"}\n')
        fake.chmod(0o755)

        env = _env(PATH=f"{bindir}{os.pathsep}{os.environ.get('PATH', '')}")
        step = uses("pre-commit/action@v3.0.1", extra_args="--hook-stage manual")
        outcome = run_steps([step], env, workspace=tmp_path, console=console)

        assert outcome.status is RunStatus.SUCCESS
        args = (tmp_path / "args.txt").read_text().split()
        assert args[-2:] == ["--hook-stage", "manual"]
        assert "--all-files" not in args

    def test_checkout_into_subdirectory(self, tmp_path, console):
        repo = tmp_path / "repo"
        repo.mkdir()
        (repo / "f.txt").write_text("x")
        workspace = tmp_path / "ws"
        workspace.mkdir()

        step = uses("actions/checkout@v4", path="src/app")
        outcome = run_steps([step], _env(), workspace=workspace, repo_root=repo, console=console)

        assert outcome.status is RunStatus.SUCCESS
        assert (workspace / "src" / "app" / "f.txt").exists()

    @pytest.mark.parametrize("path", ["../escaped", "sub/../../escaped", "ABSOLUTE"])
    def test_checkout_path_must_stay_in_workspace(self, tmp_path, console, path):
        repo = tmp_path / "repo"
        repo.mkdir()
        (repo / "f.txt").write_text("x")
        box = tmp_path / "box"
        workspace = box / "ws"
        workspace.mkdir(parents=True)
        if path == "ABSOLUTE":
            path = str(box / "escaped")

        step = uses("actions/checkout@v4", path=path)
        outcome = run_steps([step], _env(), workspace=workspace, repo_root=repo, console=console)

        assert outcome.status is RunStatus.ERROR
        assert "escapes the workspace" in outcome.reason
        assert not (box / "escaped").exists()


class TestCancellation:

    def test_cancelled_before_start_never_launches(self, tmp_path, spy, console):
        token = CancelToken()
        token.cancel("superseded")
        outcome = run_steps([sh("a", spy.cmd("a"))], _env(), workspace=tmp_path, console=console, cancel=token)

        assert outcome.status is RunStatus.ERROR
        assert outcome.exit_code is None
        assert outcome.reason == "superseded"
        assert spy.calls() == []

    def test_cancel_terminates_running_step(self, tmp_path, spy, console):
        token = CancelToken()
        steps = [sh("slow", "sleep 30"), sh("after", spy.cmd("after"))]
        threading.Timer(0.3, token.cancel).start()

        started = time.monotonic()
        outcome = run_steps(steps, _env(), workspace=tmp_path, console=console, cancel=token)

        assert time.monotonic() - started < 10
        assert outcome.status is RunStatus.ERROR
        assert outcome.failed_index == 0
        assert outcome.exit_code is None
        assert spy.calls() == []
