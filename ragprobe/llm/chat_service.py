"""Chat Completion Service adapter.

Maps a logical model name onto a LangChain chat model and normalizes the
reply into :class:`ChatResponse`. This is the only module that talks to the
network; retries, deadlines and cancellation live in
``ragprobe.pipeline.core.retry``.

Model names may be qualified with a provider, e.g. ``openai:gpt-4o-mini`` or
``ollama:qwen2.5:7b``; unqualified names use ``[llm].provider``.

Supported providers:

* **deepseek** - ``langchain-deepseek`` (``DEEPSEEK_API_KEY``)
* **openai** - ``langchain-openai`` (``OPENAI_API_KEY``)
* **ollama** - OpenAI-compatible endpoint, default ``http://127.0.0.1:11434/v1``
* anything else - OpenAI-compatible endpoint at ``[llm].base_url``
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import os
import time

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_deepseek import ChatDeepSeek
from langchain_openai import ChatOpenAI

from ragprobe.config_schema import LLMConfig
from ragprobe.llm.types import CallOptions, ChatResponse, TokenUsage
from ragprobe.utils.tracing import TranscriptHandler

logger = logging.getLogger(__name__)

OLLAMA_BASE_URL = "http://127.0.0.1:11434/v1"
KNOWN_PROVIDERS = ("deepseek", "openai", "ollama")


class ChatCompletionService:
    """call(model_name, messages, options) -> ChatResponse; raises on failure."""

    def call(self, model_name: str, messages: List[Dict[str, str]], options: CallOptions) -> ChatResponse:
        raise NotImplementedError


def split_model_name(model_name: str, default_provider: str) -> Tuple[str, str]:
    head, sep, tail = model_name.partition(":")
    if sep and head.lower() in KNOWN_PROVIDERS and tail:
        return head.lower(), tail
    return default_provider.lower(), model_name


def build_chat_model(provider: str, model: str, cfg: LLMConfig, options: CallOptions) -> BaseChatModel:
    api_key = cfg.api_key or os.getenv(cfg.api_key_env, "")
    common: Dict[str, Any] = dict(
        model=model,
        temperature=options.temperature,
        top_p=options.top_p,
        presence_penalty=options.presence_penalty,
        frequency_penalty=options.frequency_penalty,
        max_tokens=options.max_output_tokens,
        timeout=options.timeout_ms / 1000,
        max_retries=0,  # retries are owned by the invoker
        stream_usage=True,
    )
    if provider == "deepseek":
        if not api_key:
            raise RuntimeError(f"Missing API key: set {cfg.api_key_env} or provide [llm].api_key")
        if cfg.base_url:
            common["api_base"] = cfg.base_url
        return ChatDeepSeek(api_key=api_key, **common)
    if provider == "ollama":
        return ChatOpenAI(base_url=cfg.base_url or OLLAMA_BASE_URL, api_key=api_key or "ollama", **common)
    if provider == "openai":
        return ChatOpenAI(base_url=cfg.base_url, api_key=api_key or None, **common)
    if not cfg.base_url:
        raise ValueError(
            f"Unknown provider '{provider}' and no [llm].base_url for an OpenAI-compatible endpoint. "
            f"Supported: {', '.join(KNOWN_PROVIDERS)}"
        )
    return ChatOpenAI(base_url=cfg.base_url, api_key=api_key or None, **common)


def to_langchain_messages(messages: List[Dict[str, str]], system_prompt: str = "") -> List[BaseMessage]:
    out: List[BaseMessage] = []
    if system_prompt.strip():
        out.append(SystemMessage(content=system_prompt))
    for m in messages:
        role = m.get("role", "user")
        if role == "system":
            out.append(SystemMessage(content=m["content"]))
        elif role == "assistant":
            out.append(AIMessage(content=m["content"]))
        else:
            out.append(HumanMessage(content=m["content"]))
    return out


def _text_of(message: Optional[BaseMessage]) -> Optional[str]:
    if message is None:
        return None
    content = message.content
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [p if isinstance(p, str) else p.get("text", "") for p in content if isinstance(p, (str, dict))]
        return "".join(parts) if parts else None
    return None


def _usage_of(message: Optional[BaseMessage]) -> TokenUsage:
    meta = getattr(message, "usage_metadata", None) or {}
    prompt = int(meta.get("input_tokens", 0) or 0)
    completion = int(meta.get("output_tokens", 0) or 0)
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=int(meta.get("total_tokens", 0) or (prompt + completion)),
    )


class LangChainChatService(ChatCompletionService):
    def __init__(
        self,
        llm_config: Optional[LLMConfig] = None,
        model_factory: Optional[Callable[[str, str, LLMConfig, CallOptions], BaseChatModel]] = None,
    ):
        self.llm_config = llm_config or LLMConfig()
        self.model_factory = model_factory or build_chat_model

    def call(self, model_name: str, messages: List[Dict[str, str]], options: CallOptions) -> ChatResponse:
        provider, model = split_model_name(model_name or self.llm_config.model, self.llm_config.provider)
        llm = self.model_factory(provider, model, self.llm_config, options)
        lc_messages = to_langchain_messages(messages, options.system_prompt)

        callbacks = [TranscriptHandler(options.log_path, truncate=300 if options.stream else None)] if options.log_path else None
        config = {"run_name": "ChatCompletion", "callbacks": callbacks, "tags": ["ragprobe", provider]}

        logger.debug("Calling %s:%s (%d messages, stream=%s)", provider, model, len(lc_messages), options.stream)
        t0 = time.perf_counter_ns()
        if options.stream:
            message = None
            for chunk in llm.stream(lc_messages, config=config):
                message = chunk if message is None else message + chunk
        else:
            message = llm.invoke(lc_messages, config=config)
        duration_ns = time.perf_counter_ns() - t0

        reasoning = None
        if message is not None:
            reasoning = message.additional_kwargs.get("reasoning_content")
        return ChatResponse(
            content=_text_of(message),
            usage=_usage_of(message),
            duration_ns=duration_ns,
            reasoning=reasoning,
        )
