from __future__ import annotations

from pydantic import BaseModel, Field, RootModel
from typing import Dict, List, Literal, Optional
from pathlib import Path
import json
import logging
import tomllib

import yaml

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIG MODELS
# =============================================================================

class IOConfig(BaseModel):
    """
    Inputs are read-only; every run writes under <output_dir>/result/<run_id>/.
    """
    knowledge_dir: Optional[str] = "knowledge"
    # JSON file: {"checks": [...]} or a bare list of {id, question, answer, score}
    test_cases: Optional[str] = None
    output_dir: str = "output"
    # Files considered by the classifier; "" matches files without a suffix
    suffixes: List[str] = Field(default_factory=lambda: [".txt", ".md", ""])


class LLMConfig(BaseModel):
    provider: str = "deepseek"
    model: str = "deepseek-chat"
    api_key_env: str = "DEEPSEEK_API_KEY"
    api_key: Optional[str] = None
    base_url: Optional[str] = None


class GenerationConfig(BaseModel):
    temperature: float = 1.0
    top_p: float = 1.0
    presence_penalty: float = 0.0
    frequency_penalty: float = 0.0
    max_output_tokens: int = 8192
    stream: bool = False


class PromptsFilesConfig(RootModel[Dict[str, str]]):
    """
    Category key -> prompt file path. Missing files fall back to built-ins.
    """
    def get_map(self) -> Dict[str, str]:
        return dict(self.root or {})


class PromptsConfig(BaseModel):
    """
    Inline system prompts per category. None -> file override or built-in;
    an explicit empty string disables the category.
    """
    qa: Optional[str] = None
    chunk: Optional[str] = None
    document: Optional[str] = None
    comprehensive: Optional[str] = None
    test: Optional[str] = None
    files: PromptsFilesConfig = PromptsFilesConfig(root={})


class CountsConfig(BaseModel):
    qa: int = Field(1, ge=0)
    chunk: int = Field(1, ge=0)
    document: int = Field(1, ge=0)
    # fixed task count, not a multiplier
    comprehensive: int = Field(0, ge=0)
    # fixed-list mode: passes over the stored test cases
    loop_count: int = Field(1, ge=0)


class RuntimeConfig(BaseModel):
    source_mode: Literal["knowledge", "fixed_list"] = "knowledge"
    debug: bool = False
    # None -> environment / built-in default (see pipeline.core.config)
    retries: Optional[int] = Field(None, ge=0)
    retry_delay_ms: Optional[int] = Field(None, ge=0)
    timeout_ms: Optional[int] = Field(None, gt=0)
    pacing_ms: Optional[int] = Field(None, ge=0)


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000


class AppConfig(BaseModel):
    io: IOConfig = IOConfig()
    llm: LLMConfig = LLMConfig()
    generation: GenerationConfig = GenerationConfig()
    prompts: PromptsConfig = PromptsConfig()
    counts: CountsConfig = CountsConfig()
    runtime: RuntimeConfig = RuntimeConfig()
    server: ServerConfig = ServerConfig()


# =============================================================================
# LOAD
# =============================================================================

def _load_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8-sig")  # handles BOM transparently
    except UnicodeDecodeError as e:
        raise ValueError(
            f"Could not read {path} as UTF-8. Please re-save the file as UTF-8 (with or without BOM)."
        ) from e


def _parse_config_text(text: str, suffix: str) -> dict:
    if suffix == ".toml":
        return tomllib.loads(text)
    if suffix in (".yaml", ".yml"):
        return yaml.safe_load(text) or {}
    # Default to JSON if unknown
    return json.loads(text)


def load_config(path_like: Optional[str]) -> AppConfig:
    raw: dict = {}
    if path_like:
        p = Path(path_like)
        if not p.exists():
            raise FileNotFoundError(f"Config file not found: {path_like}")
        raw = _parse_config_text(_load_text(p), p.suffix.lower())
        logger.debug("Loaded config from %s", p)
    return AppConfig(**(raw or {}))
