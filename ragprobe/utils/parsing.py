from __future__ import annotations
from typing import Optional
import json
import re

from pydantic import BaseModel, Field, ValidationError

PARSE_FAILED_MARKER = "[parse failed]"

# ```json ... ``` (language tag optional); the closing fence is required
FENCED_BLOCK_RE = re.compile(r"```(?:json)?[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)


class GeneratedQA(BaseModel):
    question: str = Field(..., description="Generated test question")
    answer: str = Field(..., description="Reference answer")


def _json_candidate(content: str) -> str:
    match = FENCED_BLOCK_RE.search(content)
    if match:
        return match.group(1).strip()
    return content.strip()


def parse_generated_qa(content: str) -> Optional[GeneratedQA]:
    """
    Extract {question, answer} from a model reply.

    A fenced ```json block is preferred; otherwise the whole reply is parsed as JSON.
    Parsing is strict: a reply cut off mid-object is not repaired.
    Returns None when the reply doesn't hold that shape.
    """
    if not content or not content.strip():
        return None
    try:
        # strict=False only admits raw control characters inside strings
        data = json.loads(_json_candidate(content), strict=False)
        return GeneratedQA.model_validate(data)
    except (json.JSONDecodeError, ValidationError):
        return None
