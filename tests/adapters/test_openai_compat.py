"""Tests for the OpenAI-compatible proxy adapter."""

import json

import httpx
import pytest

from notehub.adapters.base import (
    AuthenticationError,
    Message,
    NoModelConfiguredError,
    ProviderError,
    RateLimitError,
    ToolCallRequest,
    UserContext,
)
from notehub.adapters.openai_compat import OpenAICompatAdapter

COMPLETIONS_URL = "http://proxy.test/api/v1/chat/completions"
MODELS_URL = "http://proxy.test/api/v1/models"


@pytest.fixture
def adapter():
    return OpenAICompatAdapter(
        completions_url=COMPLETIONS_URL,
        models_url=MODELS_URL,
        service_id="note-hub",
        timeout=5,
    )


@pytest.fixture
def korean_user():
    return UserContext(login_id="kim01", username="김철수", dept_name="연구소")


def _completion_body(**message):
    return {
        "model": "gpt-x-2025",
        "choices": [{"message": message, "finish_reason": "tool_calls"}],
        "usage": {"prompt_tokens": 1200, "completion_tokens": 40, "total_tokens": 1240},
    }


class TestComplete:
    """Tests for OpenAICompatAdapter.complete."""

    @pytest.mark.asyncio
    async def test_request_shape(self, adapter, korean_user, httpx_mock):
        httpx_mock.add_response(
            url=COMPLETIONS_URL,
            method="POST",
            json=_completion_body(
                content=None,
                tool_calls=[
                    {
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "read_file", "arguments": '{"path": "/a.md"}'},
                    }
                ],
            ),
        )
        tools = [{"type": "function", "function": {"name": "read_file", "parameters": {}}}]

        result = await adapter.complete(
            [Message(role="system", content="sys"), Message(role="user", content="hi")],
            model="gpt-x",
            tools=tools,
            user=korean_user,
        )

        request = httpx_mock.get_request()
        assert request.headers["X-Service-Id"] == "note-hub"
        assert request.headers["X-User-Id"] == "kim01"
        assert request.headers["X-User-Name"] == "%EA%B9%80%EC%B2%A0%EC%88%98"
        assert request.headers["X-User-Dept"] == "%EC%97%B0%EA%B5%AC%EC%86%8C"
        body = json.loads(request.content)
        assert body["model"] == "gpt-x"
        assert body["tool_choice"] == "required"
        assert body["parallel_tool_calls"] is False
        assert body["tools"] == tools
        assert body["messages"][1] == {"role": "user", "content": "hi"}

        assert result.model == "gpt-x-2025"
        assert result.content == ""
        assert result.tool_calls == [ToolCallRequest("call_1", "read_file", '{"path": "/a.md"}')]
        assert result.usage.prompt_tokens == 1200
        assert result.usage.total_tokens == 1240

    @pytest.mark.asyncio
    async def test_history_serialization(self, adapter, user, httpx_mock):
        httpx_mock.add_response(json=_completion_body(content="", tool_calls=[]))
        call = ToolCallRequest("call_1", "list_folder", '{"path": "/"}')

        await adapter.complete(
            [
                Message(role="assistant", content="", tool_calls=[call]),
                Message(role="tool", content='{"success": true}', tool_call_id="call_1", name="list_folder"),
            ],
            model="gpt-x",
            tools=[],
            user=user,
        )

        messages = json.loads(httpx_mock.get_request().content)["messages"]
        assert messages[0]["content"] == ""
        assert messages[0]["tool_calls"][0]["function"]["name"] == "list_folder"
        assert messages[1]["tool_call_id"] == "call_1"
        assert messages[1]["name"] == "list_folder"

    @pytest.mark.asyncio
    async def test_decoded_arguments_reencoded(self, adapter, user, httpx_mock):
        httpx_mock.add_response(
            json=_completion_body(
                tool_calls=[
                    {"id": "c", "function": {"name": "read_file", "arguments": {"path": "/a.md"}}}
                ]
            )
        )

        result = await adapter.complete([], model="gpt-x", tools=[], user=user)

        assert json.loads(result.tool_calls[0].arguments) == {"path": "/a.md"}

    @pytest.mark.asyncio
    async def test_empty_model_rejected(self, adapter, user):
        with pytest.raises(NoModelConfiguredError):
            await adapter.complete([], model="", tools=[], user=user)

    @pytest.mark.asyncio
    async def test_rate_limit(self, adapter, user, httpx_mock):
        httpx_mock.add_response(status_code=429, headers={"Retry-After": "7"}, json={})

        with pytest.raises(RateLimitError) as exc_info:
            await adapter.complete([], model="gpt-x", tools=[], user=user)

        assert exc_info.value.retry_after == 7.0
        assert exc_info.value.retriable is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_auth_errors(self, adapter, user, httpx_mock, status_code):
        httpx_mock.add_response(status_code=status_code, json={})

        with pytest.raises(AuthenticationError) as exc_info:
            await adapter.complete([], model="gpt-x", tools=[], user=user)

        assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    async def test_server_error(self, adapter, user, httpx_mock):
        httpx_mock.add_response(status_code=502, text="bad gateway")

        with pytest.raises(ProviderError) as exc_info:
            await adapter.complete([], model="gpt-x", tools=[], user=user)

        assert exc_info.value.status_code == 502
        assert exc_info.value.retriable is True

    @pytest.mark.asyncio
    async def test_no_choices(self, adapter, user, httpx_mock):
        httpx_mock.add_response(json={"choices": []})

        with pytest.raises(ProviderError, match="No response from LLM"):
            await adapter.complete([], model="gpt-x", tools=[], user=user)

    @pytest.mark.asyncio
    async def test_transport_error(self, adapter, user, httpx_mock):
        httpx_mock.add_exception(httpx.ReadTimeout("timed out"))

        with pytest.raises(ProviderError) as exc_info:
            await adapter.complete([], model="gpt-x", tools=[], user=user)

        assert exc_info.value.retriable is True


class TestListModels:
    """Tests for model discovery."""

    @pytest.mark.asyncio
    async def test_ids_in_order(self, adapter, user, httpx_mock):
        httpx_mock.add_response(
            url=MODELS_URL,
            method="GET",
            json={"data": [{"id": "gpt-x"}, {"object": "model"}, {"id": "gpt-y"}]},
        )

        assert await adapter.list_models(user) == ["gpt-x", "gpt-y"]
        assert httpx_mock.get_request().headers["X-User-Id"] == "jdoe"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [{"data": None}, {"data": ["gpt-x"]}, [{"id": "gpt-x"}], "gpt-x"],
    )
    async def test_unexpected_body_raises(self, adapter, user, httpx_mock, body):
        httpx_mock.add_response(url=MODELS_URL, json=body)

        with pytest.raises(ProviderError, match="unexpected body"):
            await adapter.list_models(user)

    @pytest.mark.asyncio
    async def test_non_string_ids_skipped(self, adapter, user, httpx_mock):
        httpx_mock.add_response(url=MODELS_URL, json={"data": [{"id": 7}, {"id": "gpt-y"}]})

        assert await adapter.list_models(user) == ["gpt-y"]

    @pytest.mark.asyncio
    async def test_failure_raises(self, adapter, user, httpx_mock):
        httpx_mock.add_response(url=MODELS_URL, status_code=500)

        with pytest.raises(ProviderError, match="Model discovery failed"):
            await adapter.list_models(user)
