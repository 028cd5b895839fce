"""Base LLM interface and provider implementations.

The risk classifier treats the model as a black box: one prompt in,
one text completion out. Providers raise on transport failure; callers
decide how to degrade.
"""
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp
import openai

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 10000


class LLMProvider(Enum):
    """Supported LLM providers."""
    HUGGINGFACE = "huggingface"
    OPENAI = "openai"


@dataclass(frozen=True)
class LLMConfig:
    """Configuration for LLM inference."""
    provider: LLMProvider
    model_name: str
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    max_tokens: int = 400
    temperature: float = 0.2
    top_p: float = 0.9
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """Create config from environment variables.

        Environment variables:
            LLM_PROVIDER: openai or huggingface (default openai)
            LLM_MODEL: Model name (default gpt-4o-mini)
            LLM_API_KEY: Provider API key
            LLM_ENDPOINT: Inference endpoint (required for huggingface)
        """
        return cls(
            provider=LLMProvider(os.getenv("LLM_PROVIDER", "openai").lower()),
            model_name=os.getenv("LLM_MODEL", "gpt-4o-mini"),
            endpoint=os.getenv("LLM_ENDPOINT") or None,
            api_key=os.getenv("LLM_API_KEY") or None,
        )


@dataclass
class LLMResponse:
    """Response from LLM inference."""
    text: str
    model: str
    provider: str
    tokens_used: Optional[int] = None
    latency_ms: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None


class BaseLLM(ABC):
    """Abstract base class for LLM implementations."""

    def __init__(self, config: LLMConfig):
        self.config = config
        logger.info(
            "LLM_INITIALIZED",
            extra={
                "provider": config.provider.value,
                "model": config.model_name,
            }
        )

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        **kwargs
    ) -> LLMResponse:
        """Generate a completion.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt for context
            **kwargs: Provider-specific parameters

        Raises:
            ValueError: If prompt is invalid
        """
        pass

    def validate_prompt(self, prompt: str) -> bool:
        if not prompt or not prompt.strip():
            logger.warning("LLM_PROMPT_EMPTY")
            return False

        if len(prompt) > MAX_PROMPT_LENGTH:
            logger.warning("LLM_PROMPT_TOO_LONG", extra={"length": len(prompt)})
            return False

        return True


class HuggingFaceLLM(BaseLLM):
    """HuggingFace Inference endpoint implementation."""

    def __init__(self, config: LLMConfig):
        super().__init__(config)

        if not config.endpoint:
            raise ValueError("HuggingFace endpoint required")

        self.endpoint = config.endpoint
        self.headers = {}
        if config.api_key:
            self.headers["Authorization"] = f"Bearer {config.api_key}"

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        **kwargs
    ) -> LLMResponse:
        if not self.validate_prompt(prompt):
            raise ValueError("Invalid prompt")

        full_prompt = f"{system_prompt}\n\n{prompt}" if system_prompt else prompt
        payload = {
            "inputs": full_prompt,
            "parameters": {
                "max_new_tokens": self.config.max_tokens,
                "temperature": self.config.temperature,
                "top_p": self.config.top_p,
                "return_full_text": False,
            },
        }

        start_time = time.time()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.endpoint,
                    headers=self.headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
                ) as response:
                    response.raise_for_status()
                    result = await response.json()
        except Exception as e:
            logger.error(
                "LLM_GENERATION_FAILED",
                extra={"model": self.config.model_name, "error": str(e)}
            )
            raise

        latency_ms = (time.time() - start_time) * 1000

        if isinstance(result, list) and result:
            generated_text = result[0].get("generated_text", "")
        elif isinstance(result, dict):
            generated_text = result.get("generated_text", "")
        else:
            generated_text = ""

        logger.info(
            "LLM_GENERATION_SUCCEEDED",
            extra={"model": self.config.model_name, "latency_ms": latency_ms}
        )

        return LLMResponse(
            text=generated_text,
            model=self.config.model_name,
            provider=self.config.provider.value,
            latency_ms=latency_ms,
            metadata={"endpoint": self.endpoint},
        )


class OpenAILLM(BaseLLM):
    """OpenAI chat completions implementation.

    Without an injected client, each call opens and closes its own
    AsyncOpenAI client so no connection pool outlives the event loop that
    created it.
    """

    def __init__(self, config: LLMConfig, client: Optional[openai.AsyncOpenAI] = None):
        super().__init__(config)

        if client is None and not config.api_key:
            raise ValueError("OpenAI API key required")

        self.client = client

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        **kwargs
    ) -> LLMResponse:
        """Generate a completion.

        Pass json_mode=True to request a JSON object response.
        """
        if not self.validate_prompt(prompt):
            raise ValueError("Invalid prompt")

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        request: Dict[str, Any] = {
            "model": self.config.model_name,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "top_p": self.config.top_p,
            "timeout": self.config.timeout_seconds,
        }
        if kwargs.get("json_mode"):
            request["response_format"] = {"type": "json_object"}

        start_time = time.time()
        try:
            if self.client is not None:
                response = await self.client.chat.completions.create(**request)
            else:
                async with openai.AsyncOpenAI(api_key=self.config.api_key) as client:
                    response = await client.chat.completions.create(**request)
        except Exception as e:
            logger.error(
                "LLM_GENERATION_FAILED",
                extra={"model": self.config.model_name, "error": str(e)}
            )
            raise

        latency_ms = (time.time() - start_time) * 1000
        generated_text = response.choices[0].message.content or ""
        tokens_used = response.usage.total_tokens if response.usage else None

        logger.info(
            "LLM_GENERATION_SUCCEEDED",
            extra={
                "model": self.config.model_name,
                "latency_ms": latency_ms,
                "tokens_used": tokens_used,
            }
        )

        return LLMResponse(
            text=generated_text,
            model=self.config.model_name,
            provider=self.config.provider.value,
            tokens_used=tokens_used,
            latency_ms=latency_ms,
        )


def create_llm(config: LLMConfig) -> BaseLLM:
    """Factory function to create an LLM instance.

    Raises:
        ValueError: If provider not supported or misconfigured
    """
    if config.provider == LLMProvider.HUGGINGFACE:
        return HuggingFaceLLM(config)
    if config.provider == LLMProvider.OPENAI:
        return OpenAILLM(config)
    raise ValueError(f"Unsupported provider: {config.provider}")
