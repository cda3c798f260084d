from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class CallOptions:
    system_prompt: str = ""
    temperature: float = 1.0
    top_p: float = 1.0
    presence_penalty: float = 0.0
    frequency_penalty: float = 0.0
    max_output_tokens: int = 8192
    stream: bool = False
    timeout_ms: int = 90000
    log_path: Optional[Path] = None


@dataclass
class ChatResponse:
    content: Optional[str]
    usage: TokenUsage = field(default_factory=TokenUsage)
    duration_ns: int = 0
    reasoning: Optional[str] = None
