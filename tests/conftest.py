from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from ragprobe.llm.chat_service import ChatCompletionService
from ragprobe.llm.types import CallOptions, ChatResponse, TokenUsage
from ragprobe.pipeline.core import Category, CancelToken, RunConfig

QA_REPLY = '{"question": "What is covered?", "answer": "Everything in the source."}'


def qa_text(n: int) -> str:
    """n well-formed Q/A blocks separated by blank lines."""
    return "\n\n".join(f"Q: question {i}?\nA: answer {i}." for i in range(1, n + 1)) + "\n"


class FakeChatService(ChatCompletionService):
    """
    Scripted chat service. Each reply is a string, an exception to raise, or a
    callable(messages, options) returning either. Falls back to `default`.
    """

    def __init__(self, replies=None, default=QA_REPLY, tokens: int = 10, on_call: Optional[Callable[[int], None]] = None):
        self.replies = list(replies or [])
        self.default = default
        self.tokens = tokens
        self.on_call = on_call
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def call(self, model_name, messages, options: CallOptions) -> ChatResponse:
        with self._lock:
            self.calls.append((model_name, messages, options))
            n = len(self.calls)
            reply = self.replies.pop(0) if self.replies else self.default
        if self.on_call is not None:
            self.on_call(n)
        if callable(reply):
            reply = reply(messages, options)
        if isinstance(reply, BaseException):
            raise reply
        return ChatResponse(
            content=reply,
            usage=TokenUsage(prompt_tokens=4, completion_tokens=self.tokens - 4, total_tokens=self.tokens),
            duration_ns=2_000_000,
        )


class RecordingCancelToken(CancelToken):
    """Records requested waits instead of sleeping."""

    def __init__(self):
        super().__init__()
        self.waits: List[float] = []

    def wait(self, seconds: float) -> bool:
        self.waits.append(seconds)
        return self.cancelled


def make_run_config(tmp_path: Path, **overrides) -> RunConfig:
    prompts = {c: f"{c.value.lower()} system prompt" for c in Category}
    counts = {
        Category.QA: 1,
        Category.CHUNK: 0,
        Category.DOCUMENT: 0,
        Category.COMPREHENSIVE: 0,
        Category.TEST: 1,
    }
    prompts.update(overrides.pop("prompts", {}))
    counts.update(overrides.pop("counts", {}))
    params = dict(
        model="fake-model",
        prompts=prompts,
        counts=counts,
        knowledge_dir=tmp_path / "knowledge",
        output_root=tmp_path / "output",
        retries=2,
        retry_delay_ms=0,
        timeout_ms=5000,
        pacing_ms=0,
    )
    params.update(overrides)
    return RunConfig(**params)


@pytest.fixture
def knowledge_dir(tmp_path: Path) -> Path:
    d = tmp_path / "knowledge"
    d.mkdir()
    return d
