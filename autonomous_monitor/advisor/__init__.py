from .fix_advisor import FixAdvisor, fallback_plan, parse_fix_plan
from .providers import AnthropicProvider, LLMProvider, OpenAIProvider, ProviderRegistry

__all__ = [
    "FixAdvisor",
    "fallback_plan",
    "parse_fix_plan",
    "AnthropicProvider",
    "LLMProvider",
    "OpenAIProvider",
    "ProviderRegistry",
]
