"""API client integrations."""

from .openai_client import AIGateway, EMPTY_REPLY_FALLBACK, OpenAIGateway

__all__ = [
    "AIGateway",
    "EMPTY_REPLY_FALLBACK",
    "OpenAIGateway",
]
