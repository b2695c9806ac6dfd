"""
LLM Configuration Management
Handles environment variables, validation, and provider configuration
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

ENV_PATH = Path(__file__).parent.parent / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=False)


class LLMProvider(str, Enum):
    """Supported LLM providers"""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    GOOGLE = "google"
    DEEPSEEK = "deepseek"
    OLLAMA = "ollama"


class SymbolResolverMode(str, Enum):
    """Which symbol resolver implementation the pipeline uses"""
    LIVE = "live"
    DETERMINISTIC = "deterministic"


OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"

MODEL_DEFAULTS = {
    LLMProvider.ANTHROPIC: "claude-3-5-sonnet-20241022",
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.OPENROUTER: "openai/gpt-4o-mini",
    LLMProvider.GOOGLE: "gemini-1.5-flash",
    LLMProvider.DEEPSEEK: "deepseek-chat",
    LLMProvider.OLLAMA: "mistral:7b",
}

PROVIDER_API_KEY_ENV = {
    LLMProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
    LLMProvider.OPENAI: "OPENAI_API_KEY",
    LLMProvider.OPENROUTER: "OPENROUTER_API_KEY",
    LLMProvider.GOOGLE: "GOOGLE_API_KEY",
    LLMProvider.DEEPSEEK: "DEEPSEEK_API_KEY",
    LLMProvider.OLLAMA: "OLLAMA_API_KEY",  # Optional for Ollama (local)
}


@dataclass
class LLMConfig:
    """LLM Configuration object"""
    provider: LLMProvider
    model: str
    api_key: str
    api_base_url: Optional[str] = None
    timeout: int = 30
    max_retries: int = 3
    cache_enabled: bool = True
    cache_ttl_hours: float = 2.0
    max_body_chars: int = 4000
    debug: bool = False
    ollama_cost_per_token: Optional[float] = None

    def __post_init__(self):
        """Validate configuration after initialization"""
        self.validate()

    def validate(self):
        """Validate LLM configuration"""
        if not self.provider:
            raise ValueError("LLM_PROVIDER is required")

        if not self.api_key:
            raise ValueError(f"API key required for provider: {self.provider}")

        if self.timeout <= 0:
            raise ValueError("LLM_TIMEOUT must be greater than 0")

        if self.max_retries < 0:
            raise ValueError("LLM_MAX_RETRIES must not be negative")

        if self.cache_ttl_hours <= 0:
            raise ValueError("LLM_CACHE_TTL_HOURS must be greater than 0")

        if self.max_body_chars <= 0:
            raise ValueError("LLM_MAX_BODY_CHARS must be greater than 0")

        # Provider-specific validation
        if self.provider == LLMProvider.ANTHROPIC:
            if not self.model.startswith("claude"):
                raise ValueError(f"Invalid Anthropic model: {self.model}")

        elif self.provider == LLMProvider.OPENAI:
            if not self.model.startswith(("gpt", "o1", "o3", "o4")):
                raise ValueError(f"Invalid OpenAI model: {self.model}")

        elif self.provider == LLMProvider.OPENROUTER:
            # OpenRouter models are namespaced, e.g. "anthropic/claude-3.5-sonnet"
            if "/" not in self.model:
                raise ValueError(f"Invalid OpenRouter model: {self.model} (expected 'vendor/model')")

        elif self.provider == LLMProvider.GOOGLE:
            if not self.model.startswith("gemini"):
                raise ValueError(f"Invalid Google model: {self.model}")

        elif self.provider == LLMProvider.DEEPSEEK:
            if "deepseek" not in self.model.lower():
                raise ValueError(f"Invalid Deepseek model: {self.model}")

        elif self.provider == LLMProvider.OLLAMA:
            if not self.model or ":" not in self.model:
                raise ValueError(f"Invalid Ollama model format: {self.model} (expected format: 'model:tag' like 'mistral:7b')")

            if self.ollama_cost_per_token is not None and self.ollama_cost_per_token < 0:
                raise ValueError(f"Ollama cost per token must be non-negative: {self.ollama_cost_per_token}")


def load_llm_config() -> Optional[LLMConfig]:
    """
    Load LLM configuration from environment variables.

    Environment Variables:
    - LLM_PROVIDER: anthropic|openai|openrouter|google|deepseek|ollama (AI fallback disabled if unset)
    - LLM_MODEL: Model name (provider default if unset)
    - LLM_API_KEY: API key (falls back to the provider-specific key, e.g. ANTHROPIC_API_KEY)
    - LLM_API_BASE_URL: Custom API endpoint (optional)
    - LLM_TIMEOUT: Request timeout in seconds (default: 30)
    - LLM_MAX_RETRIES: Number of SDK-level retries (default: 3)
    - LLM_CACHE_ENABLED: Cache model responses in memory (default: true)
    - LLM_CACHE_TTL_HOURS: Response cache lifetime (default: 2)
    - LLM_MAX_BODY_CHARS: Email body truncation before prompting (default: 4000)
    - LLM_DEBUG: Debug mode (default: false)
    - LLM_OLLAMA_COST_PER_TOKEN: Cost per token for tracking local Ollama inference (optional)

    Returns:
        LLMConfig object or None if no provider is configured
    """
    provider_str = os.getenv("LLM_PROVIDER", "").strip().lower()

    if not provider_str:
        return None

    try:
        provider = LLMProvider(provider_str)
    except ValueError:
        raise ValueError(
            f"Invalid LLM_PROVIDER: {provider_str}. "
            f"Must be one of: {', '.join([p.value for p in LLMProvider])}"
        )

    api_key = os.getenv("LLM_API_KEY", "").strip()
    if not api_key:
        api_key = os.getenv(PROVIDER_API_KEY_ENV[provider], "").strip()
        if not api_key and provider == LLMProvider.OLLAMA:
            api_key = "ollama-local"  # Dummy key for local Ollama

    model = os.getenv("LLM_MODEL", "").strip() or MODEL_DEFAULTS[provider]

    api_base_url = os.getenv("LLM_API_BASE_URL") or None
    if provider == LLMProvider.OPENROUTER and not api_base_url:
        api_base_url = OPENROUTER_API_BASE

    ollama_cost_per_token = None
    if provider == LLMProvider.OLLAMA:
        cost_env = os.getenv("LLM_OLLAMA_COST_PER_TOKEN", "").strip()
        if cost_env:
            ollama_cost_per_token = float(cost_env)

    return LLMConfig(
        provider=provider,
        model=model,
        api_key=api_key,
        api_base_url=api_base_url,
        timeout=int(os.getenv("LLM_TIMEOUT", "30")),
        max_retries=int(os.getenv("LLM_MAX_RETRIES", "3")),
        cache_enabled=os.getenv("LLM_CACHE_ENABLED", "true").lower() == "true",
        cache_ttl_hours=float(os.getenv("LLM_CACHE_TTL_HOURS", "2")),
        max_body_chars=int(os.getenv("LLM_MAX_BODY_CHARS", "4000")),
        debug=os.getenv("LLM_DEBUG", "false").lower() == "true",
        ollama_cost_per_token=ollama_cost_per_token,
    )


def load_symbol_resolver_mode() -> SymbolResolverMode:
    """Read SYMBOL_RESOLVER_MODE (live|deterministic, default: live)."""
    mode_str = os.getenv("SYMBOL_RESOLVER_MODE", "live").strip().lower()
    try:
        return SymbolResolverMode(mode_str)
    except ValueError:
        raise ValueError(
            f"Invalid SYMBOL_RESOLVER_MODE: {mode_str}. "
            f"Must be one of: {', '.join([m.value for m in SymbolResolverMode])}"
        )


def get_provider_info(provider: LLMProvider) -> Dict[str, Any]:
    """Get provider pricing used for cost estimates in logs."""

    provider_info = {
        LLMProvider.ANTHROPIC: {
            "name": "Anthropic",
            "cost_per_1k_input_tokens": 0.003,
            "cost_per_1k_output_tokens": 0.015,
        },
        LLMProvider.OPENAI: {
            "name": "OpenAI",
            "cost_per_1k_input_tokens": 0.00015,
            "cost_per_1k_output_tokens": 0.0006,
        },
        LLMProvider.OPENROUTER: {
            "name": "OpenRouter",
            "cost_per_1k_input_tokens": 0.00015,
            "cost_per_1k_output_tokens": 0.0006,
        },
        LLMProvider.GOOGLE: {
            "name": "Google Gemini",
            "cost_per_1k_input_tokens": 0.00035,
            "cost_per_1k_output_tokens": 0.0007,
        },
        LLMProvider.DEEPSEEK: {
            "name": "Deepseek",
            "cost_per_1k_input_tokens": 0.00014,
            "cost_per_1k_output_tokens": 0.00028,
        },
        LLMProvider.OLLAMA: {
            "name": "Ollama (Local)",
            "cost_per_1k_input_tokens": 0.0,
            "cost_per_1k_output_tokens": 0.0,
        },
    }

    return provider_info.get(provider, {})
