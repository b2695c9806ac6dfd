"""
Base LLM Provider Abstract Class
Defines the interface that all LLM provider implementations must follow
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from config.llm_config import LLMProvider, get_provider_info
from ingest.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class LLMResponse:
    """Simple response from LLM completion"""

    content: str  # The text content of the response
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0  # Cost in USD


class BaseLLMProvider(ABC):
    """Abstract base class for LLM providers"""

    provider: LLMProvider = None

    def __init__(
        self, api_key: str, model: str, timeout: int = 30, debug: bool = False
    ):
        """
        Initialize LLM provider.

        Args:
            api_key: API key for the provider
            model: Model name/ID
            timeout: Request timeout in seconds
            debug: Enable debug logging
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.debug = debug

    @abstractmethod
    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        """
        Simple completion API for single prompt.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt

        Returns:
            LLMResponse with content and token/cost info

        Raises:
            Provider SDK errors, including timeouts; callers decide how to degrade
        """

    def calculate_cost(self, tokens_in: int, tokens_out: int) -> float:
        """
        Calculate estimated cost for a request from the provider price table.

        Args:
            tokens_in: Input tokens
            tokens_out: Output tokens

        Returns:
            Estimated cost in USD
        """
        info = get_provider_info(self.provider) if self.provider else {}
        input_cost = (tokens_in / 1000) * info.get("cost_per_1k_input_tokens", 0.0)
        output_cost = (tokens_out / 1000) * info.get("cost_per_1k_output_tokens", 0.0)
        return input_cost + output_cost

    def _log_failure(self, error: Exception) -> None:
        if self.debug:
            logger.warning(f"{self.provider.value} completion failed (model={self.model}): {error}")

    @staticmethod
    def _estimate_tokens(text: str) -> int:
        """
        Rough estimate of tokens (1 token ≈ 4 characters).
        Used by providers whose API does not report usage.
        """
        return max(1, len(text) // 4)
