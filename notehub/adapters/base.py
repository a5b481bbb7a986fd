"""Base protocol and types for model adapters."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass
class UserContext:
    """Identity of the user a request acts for.

    Sent to the LLM proxy on every call so it can filter models by
    organization and attribute usage.
    """

    login_id: str
    username: str = ""
    dept_name: str = ""


@dataclass
class ToolCallRequest:
    """A single tool invocation proposed by the model.

    ``arguments`` is the raw JSON string exactly as the model produced it;
    parsing happens later so malformed payloads can be fed back.
    """

    id: str
    name: str
    arguments: str = "{}"

    def to_api_format(self) -> dict[str, Any]:
        """Convert to OpenAI chat format."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_api_format(cls, data: dict[str, Any]) -> "ToolCallRequest":
        """Build from an OpenAI chat tool_call entry."""
        function = data.get("function") or {}
        arguments = function.get("arguments")
        if arguments is None:
            arguments = "{}"
        elif not isinstance(arguments, str):
            # Some backends hand back decoded objects
            arguments = json.dumps(arguments, ensure_ascii=False)
        return cls(
            id=data.get("id", ""),
            name=function.get("name", ""),
            arguments=arguments,
        )


@dataclass
class Message:
    """A message in a conversation.

    ``content`` is never None: some backends reject a null content field,
    so an assistant turn with only a tool call carries an empty string.
    """

    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    tool_calls: list[ToolCallRequest] | None = None
    tool_call_id: str | None = None  # Set on role="tool"
    name: str | None = None  # Tool name on role="tool"

    def to_api_format(self) -> dict[str, Any]:
        """Convert to OpenAI chat format."""
        data: dict[str, Any] = {"role": self.role, "content": self.content or ""}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_api_format() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            data["name"] = self.name
        return data


@dataclass
class TokenUsage:
    """Token usage triple reported by the model."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_api_format(cls, data: dict[str, Any] | None) -> "TokenUsage":
        data = data or {}
        prompt = int(data.get("prompt_tokens") or 0)
        completion = int(data.get("completion_tokens") or 0)
        total = int(data.get("total_tokens") or (prompt + completion))
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


@dataclass
class CompletionResult:
    """Result from a completion request (first choice only)."""

    content: str
    model: str
    provider: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str | None = None
    raw_response: Any = None


class ProviderAdapter(ABC):
    """Protocol for LLM backends reachable through a single-model call."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'openai-compat')."""
        ...

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        model: str,
        tools: list[dict[str, Any]],
        user: UserContext,
        **kwargs: Any,
    ) -> CompletionResult:
        """
        Generate a completion for the given messages with tool use forced.

        Args:
            messages: Conversation history
            model: Model identifier to use
            tools: Tool schemas in OpenAI function format
            user: Caller identity forwarded to the backend

        Returns:
            CompletionResult with the first choice and usage

        Raises:
            ProviderError: If the request fails
        """
        ...

    @abstractmethod
    async def list_models(self, user: UserContext) -> list[str]:
        """Return model identifiers visible to this user, best first."""
        ...


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(
        self,
        message: str,
        provider: str,
        retriable: bool = False,
        status_code: int | None = None,
        model: str | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.retriable = retriable
        self.status_code = status_code
        self.model = model


class RateLimitError(ProviderError):
    """Provider rate limit exceeded."""

    def __init__(self, provider: str, model: str | None = None, retry_after: float | None = None):
        super().__init__(
            f"Rate limit exceeded for {provider} (model: {model})",
            provider=provider,
            retriable=True,
            status_code=429,
            model=model,
        )
        self.retry_after = retry_after


class AuthenticationError(ProviderError):
    """Provider authentication failed."""

    def __init__(self, provider: str, model: str | None = None, status_code: int = 401):
        super().__init__(
            f"Authentication failed for {provider} (model: {model})",
            provider=provider,
            retriable=False,
            status_code=status_code,
            model=model,
        )


class NoModelConfiguredError(ProviderError):
    """Candidate model id is empty: nothing configured and discovery failed."""

    def __init__(self, provider: str):
        super().__init__(
            "No model available: configuration empty, discovery failed, default not set",
            provider=provider,
            retriable=False,
        )


class AllModelsFailedError(Exception):
    """Every candidate model failed for one call."""

    def __init__(self, errors: dict[str, Exception]):
        self.errors = errors
        detail = "; ".join(f"{model or '<empty>'}: {err}" for model, err in errors.items())
        super().__init__(f"All models failed ({len(errors)} tried): {detail}")

    @property
    def last_error(self) -> Exception | None:
        if not self.errors:
            return None
        return list(self.errors.values())[-1]
