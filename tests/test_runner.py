"""Job Runner: scoped workspace, merged environment, one result per job."""
import threading
from pathlib import Path

import localci.runner as runner_mod
from localci.cancel import CancelToken
from localci.dsl import job, sh
from localci.model import RunStatus
from localci.runner import merge_env, run_job


def _workspace_of(path: Path) -> Path:
    return Path(path.read_text().strip())


class TestWorkspace:

    def test_workspace_removed_after_success(self, tmp_path, console):
        marker = tmp_path / "ws.txt"
        j = job("build", sh("record", f'pwd > {marker}; touch artifact'))
        result = run_job(j, console=console)

        assert result.status is RunStatus.SUCCESS
        assert not _workspace_of(marker).exists()

    def test_workspace_removed_after_failure(self, tmp_path, console):
        marker = tmp_path / "ws.txt"
        j = job("build", sh("record", f'echo "$LOCALCI_WORKSPACE" > {marker}; exit 4'))
        result = run_job(j, console=console)

        assert result.status is RunStatus.FAILURE
        assert (result.failed_step_index, result.exit_code) == (0, 4)
        assert not _workspace_of(marker).exists()

    def test_workspace_removed_after_cancellation(self, tmp_path, console):
        marker = tmp_path / "ws.txt"
        token = CancelToken()
        j = job("slow", sh("record", f'echo "$LOCALCI_WORKSPACE" > {marker}; sleep 30'))
        threading.Timer(0.5, token.cancel).start()
        result = run_job(j, console=console, cancel=token)

        assert result.status is RunStatus.ERROR
        assert result.exit_code is None
        assert not _workspace_of(marker).exists()

    def test_each_run_gets_a_fresh_workspace(self, tmp_path, console):
        j = job("fresh", sh("must be empty", 'test -z "$(ls -A)"; touch leftover'))
        assert run_job(j, console=console).ok
        assert run_job(j, console=console).ok


class TestEnvironment:

    def test_job_env_overrides_base(self, tmp_path, console):
        out = tmp_path / "env.txt"
        j = job("env", sh("dump", f'echo "$A $B $CI $LOCALCI_JOB" > {out}'), env={"B": "job"})
        base = {"PATH": "/usr/bin:/bin", "A": "base", "B": "base"}
        run_job(j, base_env=base, console=console)

        assert out.read_text().split() == ["base", "job", "true", "env"]

    def test_base_env_is_not_mutated(self, console):
        base = {"PATH": "/usr/bin:/bin"}
        run_job(job("x", sh("ok", "true"), env={"EXTRA": "1"}), base_env=base, console=console)
        assert base == {"PATH": "/usr/bin:/bin"}

    def test_merge_env_precedence(self):
        assert merge_env({"a": "1", "b": "1"}, {"b": "2"}, None, {"c": "3"}) == {"a": "1", "b": "2", "c": "3"}


class TestResults:

    def test_result_carries_job_name(self, console):
        result = run_job(job("lint", sh("check", "exit 1")), console=console)
        assert result.job_name == "lint"
        assert result.status is RunStatus.FAILURE
        assert result.duration >= 0

    def test_idempotent(self, console):
        j = job("twice", sh("a", "true"), sh("b", "exit 2"), sh("c", "true"))
        first = run_job(j, console=console)
        second = run_job(j, console=console)
        assert (first.status, first.failed_step_index) == (second.status, second.failed_step_index)
        assert first.failed_step_index == 1

    def test_unexpected_exception_becomes_error(self, monkeypatch, console):
        def boom(*args, **kwargs):
            raise RuntimeError("executor exploded")

        monkeypatch.setattr(runner_mod, "run_steps", boom)
        result = run_job(job("x", sh("a", "true")), console=console)

        assert result.status is RunStatus.ERROR
        assert result.exit_code is None
        assert "executor exploded" in result.reason
