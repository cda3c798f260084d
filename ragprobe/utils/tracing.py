import json
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

from langchain_core.callbacks.base import BaseCallbackHandler
from langchain_core.messages import BaseMessage
from pydantic import BaseModel


def _json_safe(obj: Any) -> Any:
    try:
        json.dumps(obj)
        return obj
    except TypeError:
        pass
    if isinstance(obj, BaseModel):
        return obj.model_dump()
    if isinstance(obj, dict):
        return {k: _json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_json_safe(v) for v in obj]
    return str(obj)


def _role(message: BaseMessage) -> str:
    return {"human": "user", "ai": "assistant"}.get(message.type, message.type)


class TranscriptHandler(BaseCallbackHandler):
    """
    Appends the outgoing prompt and the model's reasoning to a loop's log.txt.

    Progress events stay compact; everything verbose lands here.
    The engine writes the task header and final answer itself.
    """

    _locks: Dict[str, Lock] = {}
    _locks_guard = Lock()

    def __init__(self, log_path: Path, truncate: Optional[int] = None):
        self.log_path = Path(log_path)
        self.truncate = truncate
        with self._locks_guard:
            self._lock = self._locks.setdefault(str(self.log_path.resolve()), Lock())

    # ---------- internals ----------

    def _append(self, header: str, body: str) -> None:
        if self.truncate and len(body) > self.truncate:
            body = body[: self.truncate] + "..."
        with self._lock:
            with self.log_path.open("a", encoding="utf-8") as f:
                f.write(f"--- {header} ---\n{body}\n\n")

    # ---------- LangChain hooks ----------

    def on_chat_model_start(self, serialized, messages: List[List[BaseMessage]], run_id=None, **kwargs):
        flat = [{"role": _role(m), "content": _json_safe(m.content)} for batch in messages for m in batch]
        self._append("Messages sent to model", json.dumps(flat, indent=2, ensure_ascii=False))

    def on_llm_end(self, response, run_id=None, **kwargs):
        for batch in getattr(response, "generations", None) or []:
            for gen in batch:
                message = getattr(gen, "message", None)
                if message is None:
                    continue
                reasoning = message.additional_kwargs.get("reasoning_content")
                if reasoning and len(reasoning) > 10:
                    self._append("Reasoning", str(reasoning))

    def on_llm_error(self, error, run_id=None, **kwargs):
        self._append("Model error", f"{type(error).__name__}: {error}")
