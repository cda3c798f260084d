from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional
import json
import logging
import queue
import threading

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, BarColumn, TextColumn, MofNCompleteColumn, TimeElapsedColumn, TimeRemainingColumn

logger = logging.getLogger(__name__)

LOG = "log"
UPDATE = "update"
STATE_UPDATE = "state_update"
TOKEN_USAGE = "token_usage"
DONE = "done"
ERROR = "error"

TERMINAL_TYPES = frozenset({DONE, ERROR})


@dataclass(frozen=True)
class ProgressEvent:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.type in TERMINAL_TYPES

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, **self.data}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class ProgressReporter:
    """Producer side of the run's event stream. Subclasses implement emit()."""

    def emit(self, event: ProgressEvent) -> bool: ...
    def close(self): ...

    def log(self, message: str) -> bool:
        return self.emit(ProgressEvent(LOG, {"message": message}))

    def update(self, message: str, *, progress: float, current: int, total: int) -> bool:
        return self.emit(ProgressEvent(UPDATE, {"payload": {
            "activeTaskMessage": message,
            "progress": round(progress, 2),
            "currentTask": current,
            "totalTasks": total,
        }}))

    def state_update(self, question_id: Any, question: str, answer: str) -> bool:
        return self.emit(ProgressEvent(STATE_UPDATE, {"payload": {
            "questionId": question_id,
            "questionText": question,
            "modelAnswer": answer,
        }}))

    def token_usage(self, total: int) -> bool:
        return self.emit(ProgressEvent(TOKEN_USAGE, {"tokenUsage": total}))

    def done(self, message: str, **extra) -> bool:
        return self.emit(ProgressEvent(DONE, {"message": message, **extra}))

    def error(self, message: str, *, cancelled: bool = False, **extra) -> bool:
        return self.emit(ProgressEvent(ERROR, {"message": message, "cancelled": cancelled, **extra}))


class EventChannel(ProgressReporter):
    """
    Single-producer, single-consumer ordered queue between the engine and a transport.

    Once the consumer closes the channel every send is refused; refusals are
    logged and reported to the on_refused callbacks (the engine cancels its run).
    """
    _SENTINEL = object()

    def __init__(self, maxsize: int = 0):
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._closed = False
        self._finished = False
        self._refused_callbacks: List[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def on_refused(self, callback: Callable[[], None]):
        self._refused_callbacks.append(callback)

    def emit(self, event: ProgressEvent) -> bool:
        with self._lock:
            refused = self._closed or self._finished
            if not refused:
                self._queue.put(event)
                if event.terminal:
                    self._finished = True
                    self._queue.put(self._SENTINEL)
        if refused:
            logger.warning("Progress consumer is gone; dropped %s event", event.type)
            for cb in list(self._refused_callbacks):
                cb()
            return False
        return True

    def close(self):
        """Consumer-side close (e.g. client disconnect)."""
        with self._lock:
            self._closed = True

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Next event, or None once the terminal event has been consumed. Raises queue.Empty on timeout."""
        item = self._queue.get(timeout=timeout)
        if item is self._SENTINEL:
            return None
        return item

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            ev = self.get()
            if ev is None:
                return
            yield ev

    def drain(self) -> List[ProgressEvent]:
        out: List[ProgressEvent] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return out
            if item is not self._SENTINEL:
                out.append(item)


class RichProgressReporter:
    """Console consumer: renders a channel's events as a rich progress bar."""

    def __init__(self, console: Optional[Console] = None, *, verbose: bool = False):
        self.console = console or Console()
        self.verbose = verbose
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            transient=False,
            console=self.console,
        )
        self._started = False

    def __enter__(self):
        self.progress.__enter__(); self._started = True; return self

    def __exit__(self, exc_type, exc, tb):
        self.progress.__exit__(exc_type, exc, tb); self._started = False

    def consume(self, events) -> Optional[ProgressEvent]:
        """Render until the terminal event; returns it (None if the stream ended early)."""
        task = self.progress.add_task("Starting run", total=None)
        tokens = 0
        for ev in events:
            if ev.type == LOG:
                self.progress.console.log(ev.data.get("message", ""))
            elif ev.type == UPDATE:
                p = ev.data["payload"]
                self.progress.update(
                    task,
                    description=f"{p['activeTaskMessage']} [dim]({tokens} tokens)[/dim]",
                    completed=p["currentTask"],
                    total=p["totalTasks"],
                )
            elif ev.type == TOKEN_USAGE:
                tokens = ev.data.get("tokenUsage", tokens)
            elif ev.type == STATE_UPDATE and self.verbose:
                p = ev.data["payload"]
                self.progress.console.log(f"[cyan]#{p['questionId']}[/cyan] {p['questionText']}")
            elif ev.type == DONE:
                self.progress.console.log(f"✅ {ev.data.get('message', '')}")
                return ev
            elif ev.type == ERROR:
                self.progress.console.log(f"[red]❌ {ev.data.get('message', '')}[/red]")
                return ev
        return None
