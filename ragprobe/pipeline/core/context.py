from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import threading

from .models import ResultEntry


class CancelToken:
    """
    Cooperative cancellation flag shared by the engine, the invoker and the transport.

    wait() doubles as the interruptible sleep used for retry and pacing delays.
    """
    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancel requested"):
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; True if cancelled meanwhile."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)


@dataclass
class StageStats:
    name: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RunContext:
    run_id: str
    base_dir: Path
    total_tasks: int = 0
    completed_tasks: int = 0
    skipped_tasks: int = 0
    token_usage: int = 0
    invocations: int = 0
    results: List[ResultEntry] = field(default_factory=list)
    cancel: CancelToken = field(default_factory=CancelToken)

    # misc
    stats: List[StageStats] = field(default_factory=list)

    @property
    def progress(self) -> float:
        if not self.total_tasks:
            return 0.0
        return min(100.0, self.completed_tasks / self.total_tasks * 100)

    def advance(self, step: int = 1):
        self.completed_tasks = min(self.total_tasks, self.completed_tasks + step)

    def add_stats(self, name: str, **details):
        self.stats.append(StageStats(name=name, details=details))
