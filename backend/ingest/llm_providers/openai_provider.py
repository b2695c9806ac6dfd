"""
OpenAI Provider Implementation
Uses GPT models via OpenAI API. Also serves OpenRouter, which speaks the
same chat completions protocol at a different base URL.
"""

from typing import Optional

from openai import OpenAI

from config.llm_config import LLMProvider

from .base_provider import BaseLLMProvider, LLMResponse


class OpenAIProvider(BaseLLMProvider):
    """OpenAI GPT LLM provider implementation"""

    provider = LLMProvider.OPENAI

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: int = 30,
        debug: bool = False,
        api_base_url: Optional[str] = None,
        max_retries: int = 3,
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key
            model: GPT model to use
            timeout: Request timeout in seconds
            debug: Enable debug logging
            api_base_url: Custom API base URL (for proxies)
            max_retries: SDK-level retries on transient errors
        """
        super().__init__(api_key, model, timeout, debug)
        self.client = OpenAI(api_key=api_key, base_url=api_base_url, max_retries=max_retries)

    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        try:
            messages = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": prompt})

            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=1024,
                temperature=0,
                messages=messages,
                timeout=self.timeout,
            )

            content = response.choices[0].message.content or ""
            if response.usage:
                input_tokens = response.usage.prompt_tokens
                output_tokens = response.usage.completion_tokens
            else:
                input_tokens = self._estimate_tokens(prompt)
                output_tokens = self._estimate_tokens(content)

            return LLMResponse(
                content=content,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
                cost=self.calculate_cost(input_tokens, output_tokens),
            )

        except Exception as e:
            self._log_failure(e)
            raise


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter gateway (OpenAI-compatible API)"""

    provider = LLMProvider.OPENROUTER
