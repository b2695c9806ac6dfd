"""
Google Gemini Provider Implementation
Uses Google Gemini models via Google API
"""

import google.generativeai as genai

from config.llm_config import LLMProvider

from .base_provider import BaseLLMProvider, LLMResponse


class GoogleProvider(BaseLLMProvider):
    """Google Gemini LLM provider implementation"""

    provider = LLMProvider.GOOGLE

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        timeout: int = 30,
        debug: bool = False,
        api_base_url: str | None = None,
    ):
        super().__init__(api_key, model, timeout, debug)
        genai.configure(api_key=api_key)
        self.model_obj = genai.GenerativeModel(model)

    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        try:
            # Gemini doesn't have separate system messages, combine them
            full_prompt = prompt
            if system_prompt:
                full_prompt = f"{system_prompt}\n\n{prompt}"

            response = self.model_obj.generate_content(
                full_prompt,
                generation_config=genai.types.GenerationConfig(
                    temperature=0,
                    max_output_tokens=1024,
                ),
                request_options={"timeout": self.timeout},
            )

            content = response.text

            # Estimate tokens (Gemini doesn't always provide counts)
            input_tokens = self._estimate_tokens(full_prompt)
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
