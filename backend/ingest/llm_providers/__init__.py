"""LLM Provider implementations"""

from config.llm_config import LLMConfig, LLMProvider

from .anthropic_provider import AnthropicProvider
from .base_provider import BaseLLMProvider, LLMResponse
from .deepseek_provider import DeepseekProvider
from .google_provider import GoogleProvider
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider, OpenRouterProvider

PROVIDER_CLASSES = {
    LLMProvider.ANTHROPIC: AnthropicProvider,
    LLMProvider.OPENAI: OpenAIProvider,
    LLMProvider.OPENROUTER: OpenRouterProvider,
    LLMProvider.GOOGLE: GoogleProvider,
    LLMProvider.DEEPSEEK: DeepseekProvider,
    LLMProvider.OLLAMA: OllamaProvider,
}


def create_llm_provider(config: LLMConfig) -> BaseLLMProvider:
    """Build the provider client described by an LLMConfig."""
    provider_class = PROVIDER_CLASSES[config.provider]

    provider_kwargs = {
        "api_key": config.api_key,
        "model": config.model,
        "timeout": config.timeout,
        "debug": config.debug,
        "api_base_url": config.api_base_url,
    }
    if config.provider == LLMProvider.OLLAMA:
        provider_kwargs["cost_per_token"] = config.ollama_cost_per_token
    elif config.provider != LLMProvider.GOOGLE:
        provider_kwargs["max_retries"] = config.max_retries

    return provider_class(**provider_kwargs)


__all__ = [
    "BaseLLMProvider",
    "LLMResponse",
    "AnthropicProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "GoogleProvider",
    "DeepseekProvider",
    "OllamaProvider",
    "create_llm_provider",
]
