# cancel.py
from __future__ import annotations

import threading
from typing import Dict, Optional


class CancelToken:
    """
    Shared, one-way cancellation signal for every job of a run.

    A token created with a `parent` also counts as cancelled once the
    parent is.
    """

    def __init__(self, parent: Optional[CancelToken] = None) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None
        self._parent = parent

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def reason(self) -> Optional[str]:
        if self._event.is_set():
            return self._reason
        if self._parent is not None:
            return self._parent.reason
        return None


class SupersessionRegistry:
    """
    Tracks the in-flight run per branch. Starting a new run for a branch
    cancels the one it supersedes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: Dict[str, CancelToken] = {}

    def begin(self, branch: str, parent: Optional[CancelToken] = None) -> CancelToken:
        token = CancelToken(parent=parent)
        with self._lock:
            previous = self._tokens.get(branch)
            self._tokens[branch] = token
        if previous is not None:
            previous.cancel(f"superseded by a newer run on {branch}")
        return token

    def end(self, branch: str, token: CancelToken) -> None:
        with self._lock:
            if self._tokens.get(branch) is token:
                del self._tokens[branch]
