import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from ragprobe.config_schema import LLMConfig
from ragprobe.llm.chat_service import (
    LangChainChatService,
    build_chat_model,
    split_model_name,
    to_langchain_messages,
)
from ragprobe.llm.types import CallOptions


@pytest.mark.parametrize(
    "name,expected",
    [
        ("deepseek-chat", ("deepseek", "deepseek-chat")),
        ("openai:gpt-4o-mini", ("openai", "gpt-4o-mini")),
        ("ollama:qwen2.5:7b", ("ollama", "qwen2.5:7b")),
        ("vendor:model", ("deepseek", "vendor:model")),
    ],
)
def test_split_model_name(name, expected):
    assert split_model_name(name, "deepseek") == expected


def test_blank_system_prompt_is_not_sent():
    msgs = to_langchain_messages([{"role": "user", "content": "hi"}], "  ")
    assert msgs == [HumanMessage(content="hi")]
    msgs = to_langchain_messages([{"role": "user", "content": "hi"}], "be brief")
    assert msgs == [SystemMessage(content="be brief"), HumanMessage(content="hi")]


def test_deepseek_requires_an_api_key(monkeypatch):
    monkeypatch.delenv("DEEPSEEK_API_KEY", raising=False)
    with pytest.raises(RuntimeError):
        build_chat_model("deepseek", "deepseek-chat", LLMConfig(), CallOptions())


def test_unknown_provider_requires_base_url():
    with pytest.raises(ValueError):
        build_chat_model("vendor", "m", LLMConfig(provider="vendor"), CallOptions())


def test_openai_model_carries_generation_options():
    llm = build_chat_model(
        "openai", "gpt-4o-mini", LLMConfig(provider="openai", api_key="sk-test"),
        CallOptions(temperature=0.3, max_output_tokens=256, timeout_ms=5000),
    )
    assert isinstance(llm, ChatOpenAI)
    assert llm.model_name == "gpt-4o-mini"
    assert llm.temperature == 0.3
    assert llm.max_tokens == 256
    assert llm.max_retries == 0


def _factory(seen, responses):
    def make(provider, model, cfg, options):
        seen.append((provider, model))
        return FakeListChatModel(responses=responses)
    return make


def test_service_invokes_the_resolved_model_and_logs_the_prompt(tmp_path):
    seen = []
    service = LangChainChatService(LLMConfig(), model_factory=_factory(seen, ['{"question": "q", "answer": "a"}']))
    log = tmp_path / "log.txt"

    response = service.call(
        "ollama:qwen2.5:7b",
        [{"role": "user", "content": "hello"}],
        CallOptions(system_prompt="generate", log_path=log),
    )

    assert seen == [("ollama", "qwen2.5:7b")]
    assert response.content == '{"question": "q", "answer": "a"}'
    assert response.usage.total_tokens == 0
    assert response.duration_ns >= 0
    text = log.read_text(encoding="utf-8")
    assert "--- Messages sent to model ---" in text
    assert '"content": "generate"' in text
    assert '"content": "hello"' in text


def test_streamed_reply_is_concatenated():
    service = LangChainChatService(LLMConfig(), model_factory=_factory([], ["streamed reply"]))
    response = service.call("deepseek-chat", [{"role": "user", "content": "x"}], CallOptions(stream=True))
    assert response.content == "streamed reply"
