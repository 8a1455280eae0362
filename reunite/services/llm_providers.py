"""Pluggable LLM provider abstraction layer.

Usage:
  from reunite.services.llm_providers import get_llm
  llm = get_llm()
  reply = llm.generate(messages=[{"role": "user", "content": "Hello"}])

Providers:
    - EchoProvider: deterministic echo, for tests/local (never a real judge)
    - OpenAIProvider: OpenAI Chat Completions

Add new provider by implementing BaseLLMProvider.
"""
from __future__ import annotations
from typing import List, Dict, Any, Optional
import abc
import time

import openai

from config import settings
from reunite.domain.errors import ExternalServiceDegraded
from reunite.scripts.logging_config import get_logger

logger = get_logger("llm")

ChatMessage = Dict[str, str]  # {role: user|assistant|system, content: str}


class BaseLLMProvider(abc.ABC):
    name: str
    model: str = ""

    @abc.abstractmethod
    def generate(self, messages: List[ChatMessage], **kwargs) -> str:  # returns assistant reply
        ...


class EchoProvider(BaseLLMProvider):
    name = "echo"
    model = "echo"

    def generate(self, messages: List[ChatMessage], **kwargs) -> str:
        return next((m["content"] for m in reversed(messages) if m.get("role") == "user"), "")


class OpenAIProvider(BaseLLMProvider):
    name = "openai"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        api_key = api_key or settings.OPENAI_API_KEY
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY missing")
        self.client = openai.OpenAI(api_key=api_key)
        self.model = model or settings.OPENAI_MODEL_NAME

    def generate(self, messages: List[ChatMessage], **kwargs) -> str:
        formatted: List[Dict[str, Any]] = [
            {"role": m["role"], "content": str(m.get("content", ""))}
            for m in messages
            if m.get("role") in {"user", "assistant", "system"}
        ]
        timeout = kwargs.get("timeout", settings.SEMANTIC_JUDGE_TIMEOUT_S)
        start = time.time()
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=formatted,
                temperature=kwargs.get("temperature", 0),
                max_tokens=kwargs.get("max_tokens", 8),
                timeout=timeout,
            )
        except openai.OpenAIError as e:
            logger.warning("openai error model=%s latency=%.2fs type=%s msg=%s",
                           self.model, time.time() - start, type(e).__name__, str(e)[:180])
            raise ExternalServiceDegraded(f"openai call failed: {type(e).__name__}") from e
        out = resp.choices[0].message.content or ""
        logger.debug("openai done model=%s latency=%.2fs chars=%d", self.model, time.time() - start, len(out))
        return out


_singleton: Optional[BaseLLMProvider] = None


def get_llm() -> BaseLLMProvider:
    global _singleton
    if _singleton:
        return _singleton
    provider = settings.LLM_PROVIDER.lower()
    if provider == "openai":
        try:
            _singleton = OpenAIProvider()
            return _singleton
        except Exception as e:
            logger.warning("OpenAI init failed, falling back to echo: %s", e)
    _singleton = EchoProvider()
    return _singleton
