from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import os
from typing import Dict, List, Optional

from ragprobe.config_schema import AppConfig
from ragprobe.utils.prompt_loader import resolve_prompt
from .models import Category, TestCase


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw.isdigit() else default


@dataclass(frozen=True)
class GenerationOptions:
    temperature: float = 1.0
    top_p: float = 1.0
    presence_penalty: float = 0.0
    frequency_penalty: float = 0.0
    max_output_tokens: int = 8192
    stream: bool = False


@dataclass
class RunConfig:
    """
    Read-only parameters of one run, resolved from AppConfig.

    prompts/counts are keyed by Category. In fixed-list mode only
    Category.TEST is used and its count is the number of loops.
    """
    model: str
    prompts: Dict[Category, str]
    counts: Dict[Category, int]
    source_mode: str = "knowledge"
    knowledge_dir: Optional[Path] = None
    test_cases: List[TestCase] = field(default_factory=list)
    test_cases_path: Optional[Path] = None
    output_root: Path = Path("output")
    suffixes: List[str] = field(default_factory=lambda: [".txt", ".md", ""])
    generation: GenerationOptions = GenerationOptions()

    # execution knobs
    retries: int = field(default_factory=lambda: _env_int("RAGPROBE_MAX_RETRIES", 2))
    retry_delay_ms: int = field(default_factory=lambda: _env_int("RAGPROBE_RETRY_DELAY_MS", 2000))
    timeout_ms: int = field(default_factory=lambda: _env_int("RAGPROBE_TIMEOUT_MS", 90000))
    pacing_ms: int = field(default_factory=lambda: _env_int("RAGPROBE_PACING_MS", 1500))

    @property
    def is_fixed_list(self) -> bool:
        return self.source_mode == "fixed_list"

    @property
    def results_root(self) -> Path:
        return Path(self.output_root) / "result"

    def prompt_for(self, category: Category) -> str:
        return self.prompts.get(category, "") or ""

    def count_for(self, category: Category) -> int:
        return int(self.counts.get(category, 0) or 0)

    @classmethod
    def from_app(cls, app: AppConfig, test_cases: Optional[List[TestCase]] = None) -> "RunConfig":
        files = app.prompts.files.get_map()
        prompts = {
            Category.QA: resolve_prompt("qa", app.prompts.qa, files),
            Category.CHUNK: resolve_prompt("chunk", app.prompts.chunk, files),
            Category.DOCUMENT: resolve_prompt("document", app.prompts.document, files),
            Category.COMPREHENSIVE: resolve_prompt("comprehensive", app.prompts.comprehensive, files),
            Category.TEST: resolve_prompt("test", app.prompts.test, files),
        }
        counts = {
            Category.QA: app.counts.qa,
            Category.CHUNK: app.counts.chunk,
            Category.DOCUMENT: app.counts.document,
            Category.COMPREHENSIVE: app.counts.comprehensive,
            Category.TEST: app.counts.loop_count,
        }
        gen = app.generation
        cfg = cls(
            model=app.llm.model,
            prompts=prompts,
            counts=counts,
            source_mode=app.runtime.source_mode,
            knowledge_dir=Path(app.io.knowledge_dir) if app.io.knowledge_dir else None,
            test_cases=list(test_cases or []),
            test_cases_path=Path(app.io.test_cases) if app.io.test_cases else None,
            output_root=Path(app.io.output_dir),
            suffixes=list(app.io.suffixes),
            generation=GenerationOptions(
                temperature=gen.temperature,
                top_p=gen.top_p,
                presence_penalty=gen.presence_penalty,
                frequency_penalty=gen.frequency_penalty,
                max_output_tokens=gen.max_output_tokens,
                stream=gen.stream,
            ),
        )
        rt = app.runtime
        if rt.retries is not None:
            cfg.retries = rt.retries
        if rt.retry_delay_ms is not None:
            cfg.retry_delay_ms = rt.retry_delay_ms
        if rt.timeout_ms is not None:
            cfg.timeout_ms = rt.timeout_ms
        if rt.pacing_ms is not None:
            cfg.pacing_ms = rt.pacing_ms
        return cfg
