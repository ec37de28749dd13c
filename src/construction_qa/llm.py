"""
LLM Integration for Construction QA.

Provides:
- A registry of the chat models offered to users
- Completion providers for OpenAI-style and Anthropic-style APIs
- A router that sends a request to the provider that serves a model

OpenAI-compatible endpoints such as OpenRouter work through
``OpenAIChatProvider(base_url=...)``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from .exceptions import ConfigurationError, ProviderError, ProviderRateLimited, UnknownModelError

logger = logging.getLogger(__name__)

OPENAI = "openai"
ANTHROPIC = "anthropic"

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

Message = Dict[str, str]


@dataclass(frozen=True)
class ModelConfig:
    """
    One selectable chat model.

    Attributes:
        provider: "openai" or "anthropic"
        name: Display name
        description: One-line description for a model picker
        max_tokens: Default completion budget
        temperature: Default sampling temperature
        api_model: Model name sent to the provider
        reasoning: Whether complex questions get a step-by-step scaffold
    """
    provider: str
    name: str
    description: str
    max_tokens: int
    temperature: float
    api_model: str
    reasoning: bool = False


MODELS: Dict[str, ModelConfig] = {
    "gpt-4o-mini": ModelConfig(
        provider=OPENAI,
        name="GPT-4o Mini",
        description="Fast and efficient for simple questions",
        max_tokens=2000,
        temperature=0.7,
        api_model="gpt-4o-mini",
    ),
    "gpt-4o": ModelConfig(
        provider=OPENAI,
        name="GPT-4o",
        description="Balanced performance for most questions",
        max_tokens=2000,
        temperature=0.7,
        api_model="gpt-4o",
    ),
    "claude-opus-4.5": ModelConfig(
        provider=ANTHROPIC,
        name="Claude Opus 4.5",
        description="Superior reasoning for complex analysis",
        max_tokens=4096,
        temperature=0.3,
        api_model="claude-opus-4-20250514",
        reasoning=True,
    ),
    "claude-sonnet-4": ModelConfig(
        provider=ANTHROPIC,
        name="Claude Sonnet 4",
        description="Excellent balance of speed and intelligence",
        max_tokens=4096,
        temperature=0.3,
        api_model="claude-sonnet-4-20250514",
        reasoning=True,
    ),
}


class CompletionProvider(ABC):
    """Abstract chat completion backend."""

    name: str = ""

    @abstractmethod
    def complete(
        self,
        messages: List[Message],
        model: str,
        temperature: float,
        max_tokens: int
    ) -> str:
        """
        Run one chat completion.

        Args:
            messages: ``{"role", "content"}`` dicts; system messages first
            model: Provider-side model name
            temperature: Sampling temperature
            max_tokens: Completion budget

        Returns:
            Completion text

        Raises:
            ProviderError: On any provider failure
        """
        pass


class OpenAIChatProvider(CompletionProvider):
    """
    OpenAI chat completions. System messages travel inside the message list.

    Example:
        >>> provider = OpenAIChatProvider(api_key="sk-...")
        >>> provider.complete([{"role": "user", "content": "Hi"}], "gpt-4o-mini", 0.7, 50)
    """

    name = OPENAI

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client=None
    ):
        if client is None:
            try:
                from openai import OpenAI
            except ImportError:
                raise ImportError("Please install openai: pip install openai")
            client = OpenAI(api_key=api_key, base_url=base_url)
        self.client = client

    def complete(self, messages, model, temperature, max_tokens) -> str:
        import openai

        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.RateLimitError as e:
            raise ProviderRateLimited(str(e), provider=self.name) from e
        except openai.OpenAIError as e:
            raise ProviderError(str(e), provider=self.name) from e

        return response.choices[0].message.content or ""


class AnthropicChatProvider(CompletionProvider):
    """
    Anthropic messages API. System messages are sent out-of-band through
    the ``system`` parameter.
    """

    name = ANTHROPIC

    def __init__(self, api_key: Optional[str] = None, client=None):
        if client is None:
            try:
                import anthropic
            except ImportError:
                raise ImportError("Please install anthropic: pip install anthropic")
            client = anthropic.Anthropic(api_key=api_key)
        self.client = client

    @staticmethod
    def split_system(messages: List[Message]):
        """Separate system text from the conversational turns."""
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        turns = [{"role": m["role"], "content": m["content"]} for m in messages if m["role"] != "system"]
        return system, turns

    def complete(self, messages, model, temperature, max_tokens) -> str:
        import anthropic

        system, turns = self.split_system(messages)
        kwargs = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": turns,
        }
        if system:
            kwargs["system"] = system

        try:
            response = self.client.messages.create(**kwargs)
        except anthropic.RateLimitError as e:
            raise ProviderRateLimited(str(e), provider=self.name) from e
        except anthropic.AnthropicError as e:
            raise ProviderError(str(e), provider=self.name) from e

        return "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )


class LLMRouter:
    """
    Routes completions for a registry model id to the provider serving it.

    Args:
        providers: Provider instances keyed by provider name
        models: Model registry (defaults to ``MODELS``)
    """

    def __init__(
        self,
        providers: Dict[str, CompletionProvider],
        models: Optional[Dict[str, ModelConfig]] = None
    ):
        self.providers = providers
        self.models = models if models is not None else MODELS

    def get_config(self, model_id: str) -> ModelConfig:
        """
        Raises:
            UnknownModelError: If the id is not in the registry
        """
        config = self.models.get(model_id)
        if config is None:
            raise UnknownModelError(model_id)
        return config

    def provider_for(self, model_id: str) -> CompletionProvider:
        config = self.get_config(model_id)
        provider = self.providers.get(config.provider)
        if provider is None:
            raise ConfigurationError(f"No {config.provider} provider configured for model {model_id}")
        return provider

    def complete(
        self,
        model_id: str,
        messages: List[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> str:
        """
        Run a completion on a registry model, using the model's defaults
        for any setting not given.
        """
        config = self.get_config(model_id)
        provider = self.provider_for(model_id)
        logger.debug("Completion on %s (%d messages)", model_id, len(messages))
        return provider.complete(
            messages,
            model=config.api_model,
            temperature=config.temperature if temperature is None else temperature,
            max_tokens=config.max_tokens if max_tokens is None else max_tokens,
        )

    def available_models(self) -> List[Dict]:
        """Registry entries for a model picker."""
        return [
            {
                "id": model_id,
                "name": config.name,
                "description": config.description,
                "provider": config.provider,
                "available": config.provider in self.providers,
            }
            for model_id, config in self.models.items()
        ]
