"""Shared pytest fixtures and configuration.

Integration tests are skipped by default. Run them with:
    pytest --run-integration

No test talks to a real LLM, note store, Redis or database: the loop is
driven by a scripted model selector and a recording tool executor.
"""

import json
import uuid
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from notehub.adapters.base import CompletionResult, TokenUsage, ToolCallRequest, UserContext
from notehub.constants import TaskKind
from notehub.services.agent_runner.models import AgentConfig, AgentJob
from notehub.services.ask_user import PendingQuestionRegistry
from notehub.services.events import EventPublisher, RequestEvent
from notehub.services.model_selector import ModelConfig
from notehub.services.tools.base import ToolExecutor, ToolResult


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires running services)",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires running services)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is passed."""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class FakeToolExecutor(ToolExecutor):
    """Records every call. Outcomes per tool name may be a ToolResult,
    an exception, a callable of the args, or a list consumed in order."""

    def __init__(self, results: dict[str, Any] | None = None):
        self.results: dict[str, Any] = results or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def execute(self, space_id, tool_name, args, acting_user):
        self.calls.append((tool_name, dict(args)))
        outcome = self.results.get(tool_name)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if outcome else None
        if callable(outcome) and not isinstance(outcome, ToolResult):
            outcome = outcome(args)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return ToolResult(success=True, data={})
        return outcome

    def calls_to(self, tool_name: str) -> list[dict[str, Any]]:
        return [args for name, args in self.calls if name == tool_name]

    @property
    def tool_names(self) -> list[str]:
        return [name for name, _ in self.calls]


class ScriptedSelector:
    """Stands in for ModelSelector; replays completions or raises errors in order."""

    def __init__(self, script: list[Any], config: ModelConfig | None = None):
        self.script = list(script)
        self.config = config or ModelConfig(default_model="model-a")
        self.calls = 0
        self.seen_messages: list[list[dict[str, Any]]] = []

    async def resolve_config(self, user):
        return self.config

    def context_limit(self, config):
        return config.max_tokens or 128000

    async def call_with_fallback(self, messages, tools, user):
        self.calls += 1
        self.seen_messages.append([m.to_api_format() for m in messages])
        if not self.script:
            raise AssertionError("model called more times than scripted")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def make_tool_call(name: str, arguments: Any = None, call_id: str | None = None) -> ToolCallRequest:
    """Tool call with dict arguments JSON-encoded; strings are passed through raw."""
    if arguments is None:
        arguments = {}
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return ToolCallRequest(id=call_id or f"call_{uuid.uuid4().hex[:8]}", name=name, arguments=raw)


def make_completion(
    *tool_calls: ToolCallRequest,
    content: str = "",
    prompt_tokens: int = 100,
    completion_tokens: int = 20,
    model: str = "model-a",
) -> CompletionResult:
    return CompletionResult(
        content=content,
        model=model,
        provider="openai-compat",
        usage=TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
        tool_calls=list(tool_calls),
        finish_reason="tool_calls" if tool_calls else "stop",
    )


@pytest.fixture
def user():
    return UserContext(login_id="jdoe", username="Jane Doe", dept_name="R&D")


@pytest.fixture
def make_job(user):
    """Factory for agent jobs."""

    def _create(
        kind: TaskKind = TaskKind.INPUT,
        input_text: str = "Meeting notes: ship v2 on Friday",
        personal_space: bool = False,
        request_id: str = "req-1",
    ) -> AgentJob:
        return AgentJob(
            request_id=request_id,
            space_id="space-1",
            kind=kind,
            input_text=input_text,
            user=user,
            personal_space=personal_space,
        )

    return _create


@pytest.fixture
def fast_config():
    """Loop limits with no backoff so retries do not sleep."""
    return AgentConfig(
        max_iterations=10,
        max_model_attempts=3,
        retry_backoff_seconds=0,
        max_protocol_violations=3,
        ask_user_timeout_seconds=5,
        token_safety_margin=500,
    )


@pytest.fixture
def recorded_events():
    """EventPublisher plus the list of events it delivered to handlers."""
    publisher = EventPublisher()
    events: list[RequestEvent] = []
    publisher.add_handler(events.append)
    return publisher, events


@pytest.fixture
def question_registry():
    return PendingQuestionRegistry()


@pytest.fixture
def mock_mirror():
    """QuestionMirror stand-in with async no-op methods."""
    mirror = MagicMock()
    mirror.save = AsyncMock()
    mirror.load = AsyncMock(return_value=None)
    mirror.clear = AsyncMock()
    return mirror


@pytest.fixture
def mock_request_logger():
    logger = MagicMock()
    logger.log = AsyncMock()
    logger.update_progress = AsyncMock()
    return logger
