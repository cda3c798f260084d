from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple
import json
import os
import tempfile

from .models import Category, ResultEntry


SCHEMA_VERSION = "v1"
RESULTS_FILE = "results.json"
MANIFEST_FILE = "run.json"
LOG_FILE = "log.txt"


def make_run_id(now: Optional[datetime] = None) -> str:
    """YYMMDD_HHMMSS, second resolution."""
    return (now or datetime.now()).strftime("%y%m%d_%H%M%S")


def create_run_dir(results_root: Path, now: Optional[datetime] = None) -> Tuple[str, Path]:
    """
    Create an exclusive run directory under results_root.

    Runs started within the same second get a counter suffix: <ts>, <ts>-1, <ts>-2, ...
    mkdir(exist_ok=False) makes the claim atomic across threads and processes.
    """
    root = Path(results_root)
    root.mkdir(parents=True, exist_ok=True)
    base = make_run_id(now)
    n = 0
    while True:
        run_id = base if n == 0 else f"{base}-{n}"
        path = root / run_id
        try:
            path.mkdir(exist_ok=False)
            return run_id, path.resolve()
        except FileExistsError:
            n += 1


def atomic_write_text(path: Path, text: str):
    """Write via a sibling temp file + os.replace so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class ResultStore:
    """
    Run-scoped persistence.

    Layout under <results_root>/<run_id>/:
      results.json                 flat list of ResultEntry, rewritten after every task
      run.json                     manifest (config summary, counters, status)
      <category>/<loop>/log.txt    append-only transcript per loop
    """

    def __init__(self, base_dir: Path, run_id: str):
        self.run_id = run_id
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def create(cls, results_root: Path, now: Optional[datetime] = None) -> "ResultStore":
        run_id, path = create_run_dir(results_root, now)
        return cls(path, run_id)

    # ----- helpers ------------------------------------------------------------
    def _wrap(self, obj: Any, kind: str) -> Any:
        return {
            "schema_version": SCHEMA_VERSION,
            "kind": kind,
            "run_id": self.run_id,
            "updated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "payload": obj,
        }

    @property
    def results_path(self) -> Path:
        return self.base_dir / RESULTS_FILE

    # ----- per-loop logs ------------------------------------------------------
    def loop_dir(self, category: Category, loop: int) -> Path:
        p = self.base_dir / category.value.lower() / str(loop)
        p.mkdir(parents=True, exist_ok=True)
        return p

    def ensure_loop_log(self, category: Category, loop: int) -> Path:
        p = self.loop_dir(category, loop) / LOG_FILE
        p.touch(exist_ok=True)
        return p

    @staticmethod
    def append_log(log_path: Optional[Path], text: str):
        if not log_path:
            return
        with Path(log_path).open("a", encoding="utf-8") as f:
            f.write(text)

    # ----- results ------------------------------------------------------------
    def write_results(self, entries: Iterable[ResultEntry]):
        payload = [e.to_dict() for e in entries]
        atomic_write_text(self.results_path, json.dumps(payload, indent=2, ensure_ascii=False))

    def load_results(self) -> List[dict]:
        if not self.results_path.exists():
            return []
        return json.loads(self.results_path.read_text(encoding="utf-8"))

    # ----- manifest -----------------------------------------------------------
    def save_manifest(self, obj: Any):
        atomic_write_text(self.base_dir / MANIFEST_FILE, json.dumps(self._wrap(obj, "run"), indent=2, ensure_ascii=False))

    def load_manifest(self) -> Optional[Any]:
        p = self.base_dir / MANIFEST_FILE
        if not p.exists():
            return None
        return json.loads(p.read_text(encoding="utf-8")).get("payload")


def list_runs(results_root: Path) -> List[str]:
    """Run ids under results_root, newest first."""
    root = Path(results_root)
    if not root.is_dir():
        return []
    return sorted((p.name for p in root.iterdir() if p.is_dir()), reverse=True)
