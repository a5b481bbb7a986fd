"""Model selection with fallback.

Candidate models are resolved fresh for every call, in this order:
1. Redis model configuration (default + fallbacks), editable at runtime
2. The proxy's model discovery endpoint, filtered by the caller's organization
3. The statically configured ``llm_default_model`` (may be empty)
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as redis

from notehub.adapters.base import (
    AllModelsFailedError,
    CompletionResult,
    Message,
    ProviderAdapter,
    ProviderError,
    UserContext,
)
from notehub.adapters.openai_compat import get_openai_adapter
from notehub.config import settings

logger = logging.getLogger(__name__)


@dataclass
class ModelConfig:
    """Default model, ordered fallbacks and an optional context window override."""

    default_model: str
    fallback_models: list[str] = field(default_factory=list)
    max_tokens: int | None = None

    @property
    def candidates(self) -> list[str]:
        """Default first, then fallbacks, without duplicates."""
        ordered = [self.default_model]
        for model in self.fallback_models:
            if model and model not in ordered:
                ordered.append(model)
        return ordered

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "defaultModel": self.default_model,
            "fallbackModels": list(self.fallback_models),
        }
        if self.max_tokens:
            data["maxTokens"] = self.max_tokens
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelConfig":
        max_tokens = data.get("maxTokens")
        return cls(
            default_model=data.get("defaultModel") or "",
            fallback_models=[m for m in (data.get("fallbackModels") or []) if m],
            max_tokens=int(max_tokens) if max_tokens else None,
        )


class ModelConfigStore:
    """Redis-backed model configuration. Never cached in-process."""

    def __init__(self, redis_url: str | None = None, key: str | None = None):
        """
        Initialize store.

        Args:
            redis_url: Redis connection URL. Falls back to settings.
            key: Redis key holding the JSON config. Falls back to settings.
        """
        self._redis_url = redis_url or settings.notehub_redis_url
        self._key = key or settings.model_config_key
        self._client: redis.Redis | None = None

    async def _get_client(self) -> redis.Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def load(self) -> ModelConfig | None:
        """Read the current configuration; None when absent or unreadable."""
        try:
            client = await self._get_client()
            raw = await client.get(self._key)
        except Exception as e:
            logger.warning(f"Failed to read model config from Redis: {e}")
            return None

        if not raw:
            return None
        try:
            config = ModelConfig.from_dict(json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring malformed model config: {e}")
            return None
        return config if config.default_model else None

    async def save(self, config: ModelConfig) -> None:
        """Replace the configuration. Errors propagate to the caller."""
        client = await self._get_client()
        await client.set(self._key, json.dumps(config.to_dict()))
        logger.info(
            f"Model config updated: default={config.default_model}, "
            f"fallbacks={config.fallback_models}"
        )

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.close()
            self._client = None


class ModelSelector:
    """Resolves candidate models and calls them in order until one succeeds."""

    def __init__(
        self,
        adapter: ProviderAdapter | None = None,
        config_store: ModelConfigStore | None = None,
        static_default: str | None = None,
    ):
        self._adapter = adapter or get_openai_adapter()
        self._config_store = config_store or get_model_config_store()
        self._static_default = (
            static_default if static_default is not None else settings.llm_default_model
        )

    async def resolve_config(self, user: UserContext) -> ModelConfig:
        """Resolve the effective configuration for this call."""
        config = await self._config_store.load()
        if config is not None:
            return config

        try:
            models = await self._adapter.list_models(user)
        except ProviderError as e:
            logger.warning(f"Model discovery failed: {e}")
            models = []
        if models:
            logger.info(f"Using first discovered model: {models[0]}")
            return ModelConfig(default_model=models[0])

        if not self._static_default:
            logger.error(
                "No model available: Redis config empty, discovery unreachable, "
                "llm_default_model not set"
            )
        return ModelConfig(default_model=self._static_default)

    async def resolve_candidates(self, user: UserContext) -> list[str]:
        """Ordered candidate model ids; ``[""]`` when nothing is configured."""
        config = await self.resolve_config(user)
        return config.candidates

    def context_limit(self, config: ModelConfig) -> int:
        """Maximum context tokens for a session using this configuration."""
        if config.max_tokens and config.max_tokens > 0:
            return config.max_tokens
        return settings.default_context_tokens

    async def call_with_fallback(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        user: UserContext,
    ) -> CompletionResult:
        """
        Try each candidate model in order.

        Returns:
            The first successful completion

        Raises:
            AllModelsFailedError: If every candidate fails
        """
        candidates = await self.resolve_candidates(user)
        errors: dict[str, Exception] = {}

        for model in candidates:
            try:
                logger.info(f"Trying model: {model or '<empty>'}")
                return await self._adapter.complete(
                    messages=messages, model=model, tools=tools, user=user
                )
            except Exception as e:
                logger.warning(f"Model {model or '<empty>'} failed: {e}")
                errors[model] = e

        raise AllModelsFailedError(errors)


_model_config_store: ModelConfigStore | None = None


def get_model_config_store() -> ModelConfigStore:
    """Get the singleton model config store."""
    global _model_config_store
    if _model_config_store is None:
        _model_config_store = ModelConfigStore()
    return _model_config_store
