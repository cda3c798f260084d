from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union
import json

from ragprobe.utils.parsing import PARSE_FAILED_MARKER, parse_generated_qa
from ..core.errors import ConfigurationError
from ..core.models import Category, Chunk, Document, ModelCallResult, QAPair, ResultEntry, Task, TestCase
from .plan import CategoryPlan

CALL_FAILED_PLACEHOLDER = "N/A (model call failed)"


# ----- stored test cases ------------------------------------------------------
def cases_from_dicts(items: Iterable[Dict[str, Any]]) -> List[TestCase]:
    cases: List[TestCase] = []
    for i, raw in enumerate(items, start=1):
        if not isinstance(raw, dict) or not str(raw.get("question", "")).strip():
            raise ConfigurationError(f"Test case #{i} has no question")
        cases.append(TestCase(
            id=raw.get("id", i),
            question=str(raw["question"]),
            answer=str(raw.get("answer", "")),
            score=raw.get("score", 10) or 10,
        ))
    return cases


def load_test_cases(path: Union[str, Path]) -> List[TestCase]:
    """Accepts {"checks": [...]} or a bare list of {id, question, answer, score}."""
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8-sig"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read test cases {p}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Test case file {p} is not valid JSON: {e}") from e
    if isinstance(raw, dict):
        raw = raw.get("checks", [])
    if not isinstance(raw, list):
        raise ConfigurationError(f"Test case file {p} must hold a list or a {{\"checks\": [...]}} object")
    return cases_from_dicts(raw)


# ----- task sources -----------------------------------------------------------
class TaskSource:
    """Turns plan items into Tasks and model outcomes into ResultEntries."""

    # pause between items (fixed-list replay only)
    paced = False

    def build_task(self, plan: CategoryPlan, loop: int, index: int, item: Any) -> Task:
        raise NotImplementedError

    def to_entry(self, entry_id: int, task: Task, call: ModelCallResult) -> ResultEntry:
        raise NotImplementedError

    @staticmethod
    def describe(task: Task) -> str:
        return f"{task.category.value} loop {task.loop}: {task.source_id}"


class KnowledgeTaskSource(TaskSource):
    def build_task(self, plan: CategoryPlan, loop: int, index: int, item: Any) -> Task:
        if isinstance(item, (QAPair, Chunk)):
            source_id, message = item.source_id, item.text
        elif isinstance(item, Document):
            source_id, message = item.name, item.text
        elif plan.category is Category.COMPREHENSIVE:
            source_id, message = "comprehensive", str(item)
        else:
            raise TypeError(f"Unsupported item for {plan.category.value}: {type(item).__name__}")
        return Task(category=plan.category, loop=loop, index=index, source_id=source_id, user_message=message)

    def to_entry(self, entry_id: int, task: Task, call: ModelCallResult) -> ResultEntry:
        if call.success:
            parsed = parse_generated_qa(call.content or "")
            if parsed is not None:
                question, answer = parsed.question, parsed.answer
            else:
                question, answer = PARSE_FAILED_MARKER, call.content or ""
        else:
            question, answer = CALL_FAILED_PLACEHOLDER, CALL_FAILED_PLACEHOLDER
        return ResultEntry(
            id=entry_id,
            task_type=task.category,
            question=question,
            answer=answer,
            token_usage=call.token_usage.total_tokens if call.token_usage else 0,
            duration_ms=call.duration_ms,
            error=call.error,
            loop=task.loop,
            source=task.source_id,
            success=call.success,
        )


class FixedListTaskSource(TaskSource):
    paced = True

    def build_task(self, plan: CategoryPlan, loop: int, index: int, item: Any) -> Task:
        if not isinstance(item, TestCase):
            raise TypeError(f"Fixed-list runs replay TestCase items, got {type(item).__name__}")
        return Task(
            category=plan.category,
            loop=loop,
            index=index,
            source_id=str(item.id),
            user_message=item.question,
            reference=item,
        )

    def to_entry(self, entry_id: int, task: Task, call: ModelCallResult) -> ResultEntry:
        case = task.reference
        return ResultEntry(
            id=entry_id,
            task_type=task.category,
            question=task.user_message,
            answer=call.content if call.success and call.content is not None else CALL_FAILED_PLACEHOLDER,
            score=case.score if case else 10,
            token_usage=call.token_usage.total_tokens if call.token_usage else 0,
            duration_ms=call.duration_ms,
            error=call.error,
            loop=task.loop,
            source=task.source_id,
            reference_answer=case.answer if case else None,
            success=call.success,
        )
