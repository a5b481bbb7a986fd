"""Model adapters for the LLM proxy."""

from notehub.adapters.base import CompletionResult, Message, ProviderAdapter, UserContext

__all__ = ["CompletionResult", "Message", "ProviderAdapter", "UserContext"]
