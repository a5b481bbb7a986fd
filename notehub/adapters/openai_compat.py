"""OpenAI-compatible adapter for the internal LLM proxy.

Every call goes through one HTTP endpoint that speaks the OpenAI chat
completions dialect. The proxy routes by ``model`` and filters the model
list by the caller's organization headers.
"""

import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from notehub.adapters.base import (
    AuthenticationError,
    CompletionResult,
    Message,
    NoModelConfiguredError,
    ProviderAdapter,
    ProviderError,
    RateLimitError,
    TokenUsage,
    ToolCallRequest,
    UserContext,
)
from notehub.config import settings

logger = logging.getLogger(__name__)


class OpenAICompatAdapter(ProviderAdapter):
    """Adapter for an OpenAI-compatible chat completions proxy."""

    def __init__(
        self,
        completions_url: str | None = None,
        models_url: str | None = None,
        service_id: str | None = None,
        timeout: float | None = None,
    ):
        """
        Initialize adapter.

        Args:
            completions_url: Chat completions endpoint. Falls back to settings.
            models_url: Model discovery endpoint. Falls back to settings.
            service_id: Value of the X-Service-Id header. Falls back to settings.
            timeout: Request timeout in seconds. Falls back to settings.
        """
        self._completions_url = completions_url or settings.llm_proxy_url
        self._models_url = models_url or settings.llm_models_url
        self._service_id = service_id or settings.llm_service_id
        self._timeout = timeout or settings.llm_timeout_seconds

    @property
    def provider_name(self) -> str:
        return "openai-compat"

    def _headers(self, user: UserContext) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Service-Id": self._service_id,
            "X-User-Id": user.login_id,
            "X-User-Name": quote(user.username, safe=""),
            "X-User-Dept": quote(user.dept_name, safe=""),
        }

    async def complete(
        self,
        messages: list[Message],
        model: str,
        tools: list[dict[str, Any]],
        user: UserContext,
        **kwargs: Any,
    ) -> CompletionResult:
        """Call one model with tool use forced and parallel tool calls disabled."""
        if not model:
            raise NoModelConfiguredError(self.provider_name)

        body: dict[str, Any] = {
            "model": model,
            "messages": [m.to_api_format() for m in messages],
            "tools": tools,
            "tool_choice": "required",
            "parallel_tool_calls": False,
        }
        body.update(kwargs)

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self._completions_url,
                    headers=self._headers(user),
                    json=body,
                )
        except httpx.RequestError as e:
            raise ProviderError(
                f"LLM request failed (model: {model}): {e}",
                provider=self.provider_name,
                retriable=True,
                model=model,
            ) from e

        self._raise_for_status(response, model)

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise ProviderError(
                f"LLM returned invalid JSON (model: {model})",
                provider=self.provider_name,
                retriable=True,
                status_code=response.status_code,
                model=model,
            ) from e

        return self._parse_completion(data, model)

    def _raise_for_status(self, response: httpx.Response, model: str) -> None:
        status = response.status_code
        if status < 400:
            return
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                self.provider_name,
                model=model,
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if status in (401, 403):
            raise AuthenticationError(self.provider_name, model=model, status_code=status)
        raise ProviderError(
            f"LLM API error (model: {model}): {status} - {response.text[:500]}",
            provider=self.provider_name,
            retriable=status >= 500,
            status_code=status,
            model=model,
        )

    def _parse_completion(self, data: dict[str, Any], model: str) -> CompletionResult:
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError(
                f"No response from LLM (model: {model})",
                provider=self.provider_name,
                retriable=True,
                model=model,
            )

        choice = choices[0]
        message = choice.get("message") or {}
        tool_calls = [
            ToolCallRequest.from_api_format(tc) for tc in (message.get("tool_calls") or [])
        ]

        return CompletionResult(
            content=message.get("content") or "",
            model=data.get("model") or model,
            provider=self.provider_name,
            usage=TokenUsage.from_api_format(data.get("usage")),
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason"),
            raw_response=data,
        )

    async def list_models(self, user: UserContext) -> list[str]:
        """Query the discovery endpoint; raises ProviderError on failure."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(self._models_url, headers=self._headers(user))
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            raise ProviderError(
                f"Model discovery failed: {e}",
                provider=self.provider_name,
                retriable=True,
            ) from e

        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, list) or not all(isinstance(m, dict) for m in entries):
            raise ProviderError(
                "Model discovery returned an unexpected body",
                provider=self.provider_name,
                retriable=False,
            )
        return [m["id"] for m in entries if isinstance(m.get("id"), str) and m["id"]]


_adapter: OpenAICompatAdapter | None = None


def get_openai_adapter() -> OpenAICompatAdapter:
    """Get singleton adapter instance."""
    global _adapter
    if _adapter is None:
        _adapter = OpenAICompatAdapter()
    return _adapter
