"""
Text-generation provider backed by OpenRouter through langchain-openai.

Usage:
    generator = OpenRouterTextGenerator(api_key=settings.OPENROUTER_API_KEY, model=settings.LLM_MODEL)
    text = await generator.generate("Resume en una frase: ...")
"""

import logging
from typing import Protocol

import pybreaker
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from chatflow.services.errors import ExternalServiceError
from shared.circuit_breaker import call_with_breaker, openrouter_breaker

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    async def generate(self, prompt: str, system_prompt: str | None = None) -> str: ...


class OpenRouterTextGenerator:
    """ChatOpenAI pointed at the OpenRouter API, guarded by a circuit breaker."""

    def __init__(
        self,
        api_key: str,
        model: str = "openai/gpt-4o-mini",
        temperature: float = 0.3,
        timeout: float = 30.0,
    ):
        self.llm = ChatOpenAI(
            model=model,
            base_url="https://openrouter.ai/api/v1",
            api_key=api_key,
            temperature=temperature,
            request_timeout=timeout,
            max_retries=0,
        )

    async def generate(self, prompt: str, system_prompt: str | None = None) -> str:
        messages: list[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=prompt))

        try:
            response = await call_with_breaker(openrouter_breaker, self.llm.ainvoke, messages)
        except pybreaker.CircuitBreakerError as e:
            raise ExternalServiceError("openrouter", "circuit open") from e

        content = response.content
        if isinstance(content, list):
            content = " ".join(
                block.get("text", "") for block in content
                if isinstance(block, dict) and block.get("type") == "text"
            )
        return str(content).strip()
