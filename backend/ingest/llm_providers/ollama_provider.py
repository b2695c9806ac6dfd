"""
Ollama Provider Implementation
Uses local Ollama models (Mistral, Llama, etc.) via HTTP API
"""

from typing import Optional

import requests

from config.llm_config import LLMProvider

from .base_provider import BaseLLMProvider, LLMResponse


class OllamaProvider(BaseLLMProvider):
    """Ollama local LLM provider implementation"""

    provider = LLMProvider.OLLAMA

    OLLAMA_API_BASE = "http://localhost:11434"

    def __init__(
        self,
        api_key: str,
        model: str = "mistral:7b",
        timeout: int = 30,
        debug: bool = False,
        api_base_url: Optional[str] = None,
        cost_per_token: Optional[float] = None,
    ):
        """
        Initialize Ollama provider.

        Args:
            api_key: Not used for Ollama (local), but required by base class
            model: Ollama model to use (e.g., "mistral:7b")
            timeout: Request timeout in seconds
            debug: Enable debug logging
            api_base_url: Custom Ollama base URL (default: http://localhost:11434)
            cost_per_token: Notional cost per token for tracking (default: free)
        """
        super().__init__(api_key, model, timeout, debug)
        self.base_url = (api_base_url or self.OLLAMA_API_BASE).rstrip("/")
        self.cost_per_token = cost_per_token or 0.0

    def calculate_cost(self, tokens_in: int, tokens_out: int) -> float:
        return (tokens_in + tokens_out) * self.cost_per_token

    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        try:
            payload = {
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "format": "json",
                "options": {"temperature": 0},
            }
            if system_prompt:
                payload["system"] = system_prompt

            response = requests.post(
                f"{self.base_url}/api/generate",
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            response_data = response.json()

            content = response_data.get("response", "")
            input_tokens = response_data.get("prompt_eval_count") or self._estimate_tokens(prompt)
            output_tokens = response_data.get("eval_count") or self._estimate_tokens(content)

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
