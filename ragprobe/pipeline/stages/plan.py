from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..core.config import RunConfig
from ..core.errors import ConfigurationError
from ..core.models import CATEGORY_ORDER, Category, Document, KnowledgeBase, TestCase

# Joins documents in the comprehensive message.
COMPREHENSIVE_DELIMITER = "\n\n---\n\n"


def build_comprehensive_message(documents: Sequence[Document]) -> str:
    """
    Every document as "## <name>\\n<text>", joined by COMPREHENSIVE_DELIMITER.

    The same string is reused for every comprehensive repeat.
    """
    return COMPREHENSIVE_DELIMITER.join(f"## {d.name}\n{d.text.strip()}" for d in documents)


@dataclass(frozen=True)
class CategoryPlan:
    category: Category
    items: Sequence[object]  # KnowledgeItem, TestCase, or the comprehensive message
    repeats: int
    system_prompt: str
    skip_blank_prompt: bool = True
    # set when the category cannot produce a meaningful message
    unavailable: Optional[str] = None

    @property
    def task_count(self) -> int:
        return len(self.items) * self.repeats

    @property
    def skip_reason(self) -> Optional[str]:
        if self.skip_blank_prompt and not self.system_prompt.strip():
            return "system prompt is blank"
        return self.unavailable


def _total(plans: Sequence[CategoryPlan]) -> int:
    return sum(p.task_count for p in plans)


def plan_knowledge(kb: KnowledgeBase, cfg: RunConfig) -> List[CategoryPlan]:
    """
    total = |qa|*qa + |chunks|*chunk + |documents|*document + comprehensive

    The comprehensive category has exactly one item, run `comprehensive` times.
    """
    items = {
        Category.QA: list(kb.qa_pairs),
        Category.CHUNK: list(kb.chunks),
        Category.DOCUMENT: list(kb.documents),
        Category.COMPREHENSIVE: [build_comprehensive_message(kb.documents)],
    }
    plans = [
        CategoryPlan(
            category=c,
            items=items[c],
            repeats=cfg.count_for(c),
            system_prompt=cfg.prompt_for(c),
            unavailable="no documents to combine" if c is Category.COMPREHENSIVE and not kb.documents else None,
        )
        for c in CATEGORY_ORDER
    ]
    if _total(plans) == 0:
        raise ConfigurationError(
            "No tasks to run: every category has zero items or a zero repeat count "
            f"(qa_pairs={len(kb.qa_pairs)}, chunks={len(kb.chunks)}, documents={len(kb.documents)})."
        )
    return plans


def plan_fixed_list(cases: Sequence[TestCase], cfg: RunConfig) -> List[CategoryPlan]:
    """total = |test cases| * loop_count. A blank system prompt is allowed here."""
    plans = [
        CategoryPlan(
            category=Category.TEST,
            items=list(cases),
            repeats=cfg.count_for(Category.TEST),
            system_prompt=cfg.prompt_for(Category.TEST),
            skip_blank_prompt=False,
        )
    ]
    if _total(plans) == 0:
        raise ConfigurationError(
            f"No tasks to run: {len(cases)} test cases x {cfg.count_for(Category.TEST)} loops."
        )
    return plans


def total_tasks(plans: Sequence[CategoryPlan]) -> int:
    return _total(plans)
