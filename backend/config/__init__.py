"""Backend configuration module"""

from .llm_config import (
    LLMConfig,
    LLMProvider,
    SymbolResolverMode,
    get_provider_info,
    load_llm_config,
    load_symbol_resolver_mode,
)
from .pipeline_config import (
    ImapConfig,
    PipelineConfig,
    PortfolioAmbiguityPolicy,
    load_imap_config,
    load_pipeline_config,
)

__all__ = [
    "LLMConfig",
    "LLMProvider",
    "SymbolResolverMode",
    "load_llm_config",
    "load_symbol_resolver_mode",
    "get_provider_info",
    "ImapConfig",
    "PipelineConfig",
    "PortfolioAmbiguityPolicy",
    "load_imap_config",
    "load_pipeline_config",
]
