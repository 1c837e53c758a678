import io
import shlex

import pytest

from localci.ui.console import Console


class CapturedConsole(Console):
    """Console that writes into memory so tests can inspect the log."""

    def __init__(self, debug: bool = False):
        self.out = io.StringIO()
        self.err = io.StringIO()
        super().__init__(debug=debug, stream=self.out, err_stream=self.err)

    @property
    def text(self) -> str:
        return self.out.getvalue() + self.err.getvalue()


@pytest.fixture
def console():
    return CapturedConsole()


@pytest.fixture
def spy(tmp_path):
    """
    Build shell commands that record themselves in a spy file before
    exiting with a chosen code.
    """
    log = tmp_path / "spy.log"

    class Spy:
        path = log

        def cmd(self, label: str, code: int = 0) -> str:
            return f"echo {shlex.quote(label)} >> {shlex.quote(str(log))}; exit {code}"

        def calls(self) -> list[str]:
            if not log.exists():
                return []
            return log.read_text().split()

    return Spy()
