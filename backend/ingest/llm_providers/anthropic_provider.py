"""
Anthropic Provider Implementation
Uses Claude models via Anthropic API
"""

from typing import Optional

import anthropic

from config.llm_config import LLMProvider

from .base_provider import BaseLLMProvider, LLMResponse


class AnthropicProvider(BaseLLMProvider):
    """Anthropic Claude LLM provider implementation"""

    provider = LLMProvider.ANTHROPIC

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-sonnet-20241022",
        timeout: int = 30,
        debug: bool = False,
        api_base_url: Optional[str] = None,
        max_retries: int = 3,
    ):
        """
        Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key
            model: Claude model to use
            timeout: Request timeout in seconds
            debug: Enable debug logging
            api_base_url: Custom API base URL (for proxies)
            max_retries: SDK-level retries on transient errors
        """
        super().__init__(api_key, model, timeout, debug)
        self.client = anthropic.Anthropic(
            api_key=api_key,
            base_url=api_base_url,
            max_retries=max_retries,
        )

    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        try:
            kwargs = {
                "model": self.model,
                "max_tokens": 1024,
                "messages": [{"role": "user", "content": prompt}],
                "timeout": self.timeout,
            }

            if system_prompt:
                kwargs["system"] = system_prompt

            response = self.client.messages.create(**kwargs)

            input_tokens = response.usage.input_tokens
            output_tokens = response.usage.output_tokens

            return LLMResponse(
                content=response.content[0].text,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
                cost=self.calculate_cost(input_tokens, output_tokens),
            )

        except Exception as e:
            self._log_failure(e)
            raise
