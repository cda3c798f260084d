import pytest

from conftest import qa_text
from ragprobe.pipeline.core import ConfigurationError, KnowledgeBase
from ragprobe.pipeline.stages.classify import (
    classify_directory,
    classify_text,
    count_qa_pairs,
    is_qa_file,
    split_paragraphs,
)


def test_six_pairs_make_a_qa_file():
    kb = classify_text("faq.txt", qa_text(6))
    assert len(kb.qa_pairs) == 6
    assert kb.documents == []
    assert kb.chunks == []
    assert kb.qa_pairs[0].text == "Q: question 1?\nA: answer 1."
    assert kb.qa_pairs[0].source_id == "faq.txt"


def test_five_pairs_stay_a_document():
    assert count_qa_pairs(qa_text(5)) == 5
    assert not is_qa_file(qa_text(5))


def test_document_contributes_one_document_and_a_chunk_per_paragraph():
    text = qa_text(3) + "\nSome closing paragraph.\n"
    kb = classify_text("notes.md", text)
    assert kb.qa_pairs == []
    assert [d.name for d in kb.documents] == ["notes.md"]
    assert kb.documents[0].text == text
    assert len(kb.chunks) == 4
    assert [c.source_id for c in kb.chunks] == ["notes.md#1", "notes.md#2", "notes.md#3", "notes.md#4"]
    assert kb.chunks[-1].text == "Some closing paragraph."


def test_full_width_colon_and_crlf_are_recognised():
    text = "\r\n\r\n".join(f"Q：问题{i}\r\nA：答案{i}" for i in range(6))
    assert count_qa_pairs(text) == 6
    assert is_qa_file(text)


def test_question_without_adjacent_answer_is_not_a_pair():
    assert count_qa_pairs("Q: lonely question\n\nA: detached answer") == 0


def test_split_paragraphs_drops_blank_blocks():
    assert split_paragraphs("one\n\n  \n\ntwo\n \nthree") == ["one", "two", "three"]


def test_classify_text_accumulates_into_existing_kb():
    kb = KnowledgeBase()
    classify_text("a.txt", "alpha", kb)
    classify_text("b.txt", qa_text(7), kb)
    assert kb.counts() == {"qa_pairs": 7, "chunks": 1, "documents": 1}


def test_classify_directory_filters_by_suffix(knowledge_dir):
    (knowledge_dir / "faq.txt").write_text(qa_text(6), encoding="utf-8")
    (knowledge_dir / "guide.md").write_text("para one\n\npara two", encoding="utf-8")
    (knowledge_dir / "README").write_text("no suffix", encoding="utf-8")
    (knowledge_dir / "data.json").write_text('{"ignored": true}', encoding="utf-8")
    (knowledge_dir / ".hidden.txt").write_text("ignored", encoding="utf-8")
    (knowledge_dir / "sub").mkdir()

    kb = classify_directory(knowledge_dir)

    assert len(kb.qa_pairs) == 6
    assert [d.name for d in kb.documents] == ["README", "guide.md"]
    assert len(kb.chunks) == 3


def test_unreadable_file_is_skipped(knowledge_dir):
    (knowledge_dir / "broken.txt").write_bytes(b"\xff\xfe\xfa not utf-8 \x80")
    (knowledge_dir / "ok.txt").write_text("fine", encoding="utf-8")
    kb = classify_directory(knowledge_dir)
    assert [d.name for d in kb.documents] == ["ok.txt"]


def test_missing_directory_is_a_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        classify_directory(tmp_path / "does-not-exist")


def test_dense_pairs_in_one_paragraph_count_once():
    text = "\n".join(f"Q: q{i}?\nA: a{i}." for i in range(6))
    assert count_qa_pairs(text) == 1
    assert not is_qa_file(text)
    kb = classify_text("dense.txt", text)
    assert kb.counts() == {"qa_pairs": 0, "chunks": 1, "documents": 1}
