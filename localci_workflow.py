# localci_workflow.py
# Pipeline for localci itself: tests on every push/PR, pre-commit hooks alongside.
from __future__ import annotations

from localci.dsl import wf, job, sh, uses, on_push, on_pull_request


def pipeline():
    return wf(
        job(
            "test",
            uses("actions/checkout@v4", "Checkout"),
            sh("Install package", "python -m pip install -e '.[test]'"),
            sh("Run pytest", "python -m pytest -q"),
            env={"PYTHONDONTWRITEBYTECODE": "1"},
        ),
        job(
            "pre-commit",
            uses("actions/checkout@v4", "Checkout code"),
            uses("pre-commit/action@v3.0.1", "Run pre-commit"),
        ),
        triggers=(on_push("main"), on_pull_request()),
    )
