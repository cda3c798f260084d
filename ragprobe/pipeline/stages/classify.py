from __future__ import annotations
from pathlib import Path
from typing import Iterable, List, Optional
import logging
import re

from ..core.context import RunContext
from ..core.errors import ConfigurationError
from ..core.models import Chunk, Document, KnowledgeBase, QAPair
from ..core.progress import ProgressReporter

logger = logging.getLogger(__name__)

# A "Q:" line immediately followed by an "A:" line (ASCII or full-width colon).
QA_PAIR_RE = re.compile(r"^[ \t]*Q[:：][^\n]*\S[^\n]*\n[ \t]*A[:：][^\n]*\S", re.MULTILINE)
PARAGRAPH_SPLIT_RE = re.compile(r"\n[ \t]*\n")

# More pair-holding paragraphs than this makes a file QA-type.
QA_THRESHOLD = 5


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in PARAGRAPH_SPLIT_RE.split(_normalize_newlines(text)) if p.strip()]


def count_qa_pairs(text: str) -> int:
    """Number of paragraphs holding a Q:/A: pair; a dense paragraph counts once."""
    return sum(1 for para in split_paragraphs(text) if QA_PAIR_RE.search(para))


def is_qa_file(text: str) -> bool:
    return count_qa_pairs(text) > QA_THRESHOLD


def classify_text(name: str, text: str, kb: Optional[KnowledgeBase] = None) -> KnowledgeBase:
    """
    Add one file's items to kb.

    QA-type files contribute only QAPair blocks; every other file contributes
    one Document plus one Chunk per paragraph.
    """
    kb = kb if kb is not None else KnowledgeBase()
    if is_qa_file(text):
        kb.qa_pairs.extend(QAPair(source_name=name, text=block) for block in split_paragraphs(text))
        return kb
    kb.documents.append(Document(name=name, text=text))
    kb.chunks.extend(
        Chunk(source_name=name, index=i, text=para) for i, para in enumerate(split_paragraphs(text), start=1)
    )
    return kb


def _candidate_files(directory: Path, suffixes: Iterable[str]) -> List[Path]:
    wanted = {s.lower() for s in suffixes}
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise ConfigurationError(f"Cannot read knowledge directory {directory}: {e}") from e
    return [p for p in entries if p.is_file() and not p.name.startswith(".") and p.suffix.lower() in wanted]


def classify_directory(directory: Path, suffixes: Iterable[str] = (".txt", ".md", "")) -> KnowledgeBase:
    directory = Path(directory)
    if not directory.is_dir():
        raise ConfigurationError(f"Knowledge directory not found: {directory}")

    kb = KnowledgeBase()
    for path in _candidate_files(directory, suffixes):
        try:
            text = path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Skipping unreadable knowledge file %s: %s", path.name, e)
            continue
        classify_text(path.name, text, kb)
    return kb


class ClassifyStage:
    def run(
        self,
        ctx: RunContext,
        progress: ProgressReporter,
        *,
        knowledge_dir: Optional[Path],
        suffixes: Iterable[str],
    ) -> KnowledgeBase:
        if knowledge_dir is None:
            raise ConfigurationError("Knowledge-driven run requires [io].knowledge_dir")
        progress.log(f"Loading knowledge files from {knowledge_dir}")
        kb = classify_directory(Path(knowledge_dir), suffixes)
        counts = kb.counts()
        ctx.add_stats("classify", **counts)
        progress.log(
            f"Knowledge base: {counts['qa_pairs']} QA pairs, {counts['chunks']} chunks, {counts['documents']} documents"
        )
        return kb
