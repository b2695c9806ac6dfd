"""
Deepseek Provider Implementation
Uses Deepseek models via Deepseek API (OpenAI-compatible)
"""

from typing import Optional

from config.llm_config import LLMProvider

from .openai_provider import OpenAIProvider


class DeepseekProvider(OpenAIProvider):
    """Deepseek LLM provider implementation"""

    provider = LLMProvider.DEEPSEEK

    DEEPSEEK_API_BASE = "https://api.deepseek.com"

    def __init__(
        self,
        api_key: str,
        model: str = "deepseek-chat",
        timeout: int = 30,
        debug: bool = False,
        api_base_url: Optional[str] = None,
        max_retries: int = 3,
    ):
        super().__init__(
            api_key,
            model=model,
            timeout=timeout,
            debug=debug,
            api_base_url=api_base_url or self.DEEPSEEK_API_BASE,
            max_retries=max_retries,
        )
