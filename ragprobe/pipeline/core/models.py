from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ragprobe.llm.types import TokenUsage


class Category(str, Enum):
    QA = "QA"
    CHUNK = "CHUNK"
    DOCUMENT = "DOCUMENT"
    COMPREHENSIVE = "COMPREHENSIVE"
    TEST = "TEST"  # fixed-list replay


# Knowledge-driven execution order.
CATEGORY_ORDER = (Category.QA, Category.CHUNK, Category.DOCUMENT, Category.COMPREHENSIVE)


# ----- knowledge items --------------------------------------------------------
@dataclass(frozen=True)
class QAPair:
    source_name: str
    text: str

    @property
    def source_id(self) -> str:
        return self.source_name


@dataclass(frozen=True)
class Chunk:
    source_name: str
    index: int
    text: str

    @property
    def source_id(self) -> str:
        return f"{self.source_name}#{self.index}"


@dataclass(frozen=True)
class Document:
    name: str
    text: str

    @property
    def source_id(self) -> str:
        return self.name


KnowledgeItem = Union[QAPair, Chunk, Document]


@dataclass
class KnowledgeBase:
    qa_pairs: List[QAPair] = field(default_factory=list)
    chunks: List[Chunk] = field(default_factory=list)
    documents: List[Document] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {"qa_pairs": len(self.qa_pairs), "chunks": len(self.chunks), "documents": len(self.documents)}


@dataclass(frozen=True)
class TestCase:
    id: Any
    question: str
    answer: str = ""
    score: float = 10

    __test__ = False  # keep pytest from collecting this class


# ----- tasks & outcomes -------------------------------------------------------
@dataclass(frozen=True)
class Task:
    category: Category
    loop: int
    index: int
    source_id: str
    user_message: str
    reference: Optional[TestCase] = None


@dataclass
class ModelCallResult:
    success: bool
    content: Optional[str] = None
    token_usage: Optional[TokenUsage] = None
    duration_ns: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0

    @property
    def duration_ms(self) -> int:
        return round((self.duration_ns or 0) / 1e6)


@dataclass
class ResultEntry:
    id: int
    task_type: Category
    question: str
    answer: str
    score: float = 10
    token_usage: int = 0
    duration_ms: int = 0
    error: Optional[str] = None
    loop: int = 1
    source: str = ""
    reference_answer: Optional[str] = None
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "taskType": self.task_type.value,
            "loop": self.loop,
            "source": self.source,
            "question": self.question,
            "answer": self.answer,
            "score": self.score,
            "success": self.success,
            "tokenUsage": self.token_usage,
            "durationMs": self.duration_ms,
        }
        if self.reference_answer is not None:
            out["standardAnswer"] = self.reference_answer
        if self.error is not None:
            out["error"] = self.error
        return out
