from __future__ import annotations

from importlib.resources import files as _pkg_files
from pathlib import Path
from typing import Mapping, Optional
import logging

logger = logging.getLogger(__name__)

BUILTIN_PROMPTS = {
    "qa":            "prompts/qa.txt",
    "chunk":         "prompts/chunk.txt",
    "document":      "prompts/document.txt",
    "comprehensive": "prompts/comprehensive.txt",
    "test":          "prompts/test.txt",
}


def _read_pkg_text(rel_path: str) -> str:
    p = _pkg_files("ragprobe").joinpath(rel_path)
    try:
        return p.read_text(encoding="utf-8-sig")
    except OSError as e:
        raise FileNotFoundError(f"Built-in prompt missing: {rel_path}") from e


def load_prompt(key: str, file_overrides: Optional[Mapping[str, str]] = None) -> str:
    # 1) user override (external file path)
    ov_path = (file_overrides or {}).get(key)
    if ov_path:
        p = Path(ov_path)
        if p.exists():
            return p.read_text(encoding="utf-8-sig")
        logger.warning("[prompts.files] path for key '%s' not found: %s -> falling back to built-in.", key, ov_path)

    # 2) built-in prompt bundled in the package
    rel = BUILTIN_PROMPTS.get(key)
    if not rel:
        raise ValueError(
            f"No built-in prompt for key: '{key}'. "
            "Valid keys include: " + ", ".join(sorted(BUILTIN_PROMPTS.keys()))
        )
    return _read_pkg_text(rel)


def resolve_prompt(key: str, inline: Optional[str], file_overrides: Optional[Mapping[str, str]] = None) -> str:
    """Inline text wins (an empty string disables the category), then files, then built-ins."""
    if inline is not None:
        return inline
    return load_prompt(key, file_overrides)
