"""
AI providers for the scribe and diagnostic assist features
"""
from emr_backend.services.ai.base import (
    AIProvider, AIProviderError, TranscriptionOptions,
    register_provider, get_provider, get_default_provider, default_provider_name, list_providers
)
from emr_backend.services.ai.openai_provider import OpenAIProvider
from emr_backend.services.ai.gemini_service import GeminiService
from emr_backend.services.ai.bastiongpt_provider import BastionGPTProvider
from emr_backend.services.ai.mock_provider import MockProvider
from emr_backend.services.ai.rate_limiter import RateLimiter, RateLimitExceeded, llm_rate_limiter, get_llm_rate_limiter

register_provider(OpenAIProvider())
register_provider(GeminiService())
register_provider(BastionGPTProvider())
register_provider(MockProvider())

__all__ = [
    'AIProvider', 'AIProviderError', 'TranscriptionOptions',
    'register_provider', 'get_provider', 'get_default_provider', 'default_provider_name', 'list_providers',
    'OpenAIProvider', 'GeminiService', 'BastionGPTProvider', 'MockProvider',
    'RateLimiter', 'RateLimitExceeded', 'llm_rate_limiter', 'get_llm_rate_limiter',
]
