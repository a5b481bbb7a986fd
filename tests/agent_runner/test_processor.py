"""Tests for job processing and durable outcome mapping."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from notehub.config import settings
from notehub.constants import RequestStatus, TaskKind
from notehub.services.agent_runner import processor as processor_module
from notehub.services.agent_runner.models import AgentResult, LoopStatus
from notehub.services.agent_runner.processor import (
    JobProcessor,
    durable_outcome,
    should_extract_tasks,
)
from notehub.services.agent_runner.todo_runner import TaskExtractionLoop
from notehub.services.events import RequestEventType
from notehub.services.model_selector import ModelConfig

from tests.conftest import FakeToolExecutor, make_completion, make_tool_call


class FakeSessionFactory:
    """async_sessionmaker stand-in handing out one mock session."""

    def __init__(self):
        self.session = MagicMock()
        self.session.commit = AsyncMock()

    def __call__(self):
        return self

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, *exc_info):
        return False


class RoutingSelector:
    """Serves the todo loop and the primary loop from separate scripts."""

    def __init__(self, primary, todo):
        self.primary = list(primary)
        self.todo = list(todo)

    async def resolve_config(self, user):
        return ModelConfig(default_model="model-a")

    def context_limit(self, config):
        return 128000

    async def call_with_fallback(self, messages, tools, user):
        names = {tool["function"]["name"] for tool in tools}
        script = self.todo if "nothing_more_todo" in names else self.primary
        return script.pop(0)


@pytest.fixture
def patched_store(monkeypatch):
    """Replace the request row writes with mocks."""
    mark_processing = AsyncMock()
    mark_finished = AsyncMock()
    monkeypatch.setattr(processor_module, "mark_processing", mark_processing)
    monkeypatch.setattr(processor_module, "mark_finished", mark_finished)
    return mark_processing, mark_finished


@pytest.fixture
def build_processor(fast_config, recorded_events, mock_request_logger):
    publisher, _ = recorded_events

    def _build(selector, executor=None):
        return JobProcessor(
            session_factory=FakeSessionFactory(),
            selector=selector,
            executor=executor or FakeToolExecutor(),
            publisher=publisher,
            config=fast_config,
            request_logger=mock_request_logger,
        )

    return _build


class TestDurableOutcome:
    """Tests for loop result -> request row mapping."""

    def test_completed(self):
        result = AgentResult(status=LoopStatus.COMPLETED, summary="done")

        status, payload, error = durable_outcome(result)

        assert status == RequestStatus.COMPLETED
        assert payload["status"] == "COMPLETED"
        assert payload["summary"] == "done"
        assert error is None

    def test_partial_is_stored_as_completed(self):
        result = AgentResult(
            status=LoopStatus.PARTIAL, folders_created=["/a"], error="Reached the iteration limit"
        )

        status, payload, error = durable_outcome(result)

        assert status == RequestStatus.COMPLETED
        assert payload["status"] == "PARTIAL"
        assert payload["foldersCreated"] == ["/a"]
        assert error is None

    def test_failed(self):
        result = AgentResult(status=LoopStatus.FAILED, error="Model call failed")

        status, _, error = durable_outcome(result)

        assert status == RequestStatus.FAILED
        assert error == "Model call failed"

    def test_rolled_back_is_cancelled(self):
        result = AgentResult(
            status=LoopStatus.FAILED, error="User response timeout", rolled_back=True
        )

        status, payload, error = durable_outcome(result)

        assert status == RequestStatus.CANCELLED
        assert payload is None
        assert error == "User response timeout"


class TestShouldExtractTasks:
    """Tests for the task extraction switch."""

    def test_input_in_personal_space(self, make_job):
        assert should_extract_tasks(make_job(kind=TaskKind.INPUT, personal_space=True))

    def test_shared_space(self, make_job):
        assert not should_extract_tasks(make_job(kind=TaskKind.INPUT, personal_space=False))

    def test_other_kinds(self, make_job):
        assert not should_extract_tasks(make_job(kind=TaskKind.SEARCH, personal_space=True))
        assert not should_extract_tasks(make_job(kind=TaskKind.REFACTOR, personal_space=True))

    def test_disabled(self, make_job, monkeypatch):
        monkeypatch.setattr(settings, "task_extraction_enabled", False)
        assert not should_extract_tasks(make_job(kind=TaskKind.INPUT, personal_space=True))


class TestJobProcessor:
    """Tests for JobProcessor.process."""

    @pytest.mark.asyncio
    async def test_success_records_and_publishes(
        self, make_job, build_processor, patched_store, recorded_events
    ):
        mark_processing, mark_finished = patched_store
        _, events = recorded_events
        selector = RoutingSelector(
            primary=[make_completion(make_tool_call("complete", {"summary": "filed"}))],
            todo=[],
        )
        processor = build_processor(selector)

        result = await processor(make_job())

        assert result.status == LoopStatus.COMPLETED
        assert mark_processing.await_args.args[1] == "req-1"
        args, kwargs = mark_finished.await_args
        assert args[1:] == ("req-1", RequestStatus.COMPLETED)
        assert kwargs["result"]["summary"] == "filed"
        assert kwargs["error"] is None

        complete = [e for e in events if e.event_type == RequestEventType.COMPLETE]
        assert len(complete) == 1
        assert complete[0].data["success"] is True
        assert complete[0].data["result"]["summary"] == "filed"

    @pytest.mark.asyncio
    async def test_failure_not_reported_as_complete(
        self, make_job, build_processor, patched_store, recorded_events
    ):
        _, mark_finished = patched_store
        _, events = recorded_events
        selector = RoutingSelector(primary=[make_completion(content="no tools")] * 3, todo=[])
        processor = build_processor(selector)

        result = await processor.process(make_job())

        assert result.status == LoopStatus.FAILED
        args, kwargs = mark_finished.await_args
        assert args[2] == RequestStatus.FAILED
        assert "tool protocol" in kwargs["error"]
        assert not [e for e in events if e.event_type == RequestEventType.COMPLETE]
        assert [e for e in events if e.event_type == RequestEventType.FAILED]

    @pytest.mark.asyncio
    async def test_task_extraction_runs_alongside(self, make_job, build_processor, patched_store):
        executor = FakeToolExecutor()
        selector = RoutingSelector(
            primary=[
                make_completion(make_tool_call("add_file", {"path": "/notes.md", "content": "x"})),
                make_completion(make_tool_call("complete", {"summary": "filed"})),
            ],
            todo=[
                make_completion(make_tool_call("add_todo", {"title": "Ship v2"})),
                make_completion(make_tool_call("nothing_more_todo")),
            ],
        )
        processor = build_processor(selector, executor=executor)

        result = await processor.process(make_job(personal_space=True))

        assert result.status == LoopStatus.COMPLETED
        assert result.files_created == ["/notes.md"]
        assert executor.calls_to("add_todo") == [{"title": "Ship v2"}]

    @pytest.mark.asyncio
    async def test_task_extraction_skipped_for_shared_space(
        self, make_job, build_processor, patched_store
    ):
        executor = FakeToolExecutor()
        selector = RoutingSelector(
            primary=[make_completion(make_tool_call("complete", {"summary": "ok"}))],
            todo=[make_completion(make_tool_call("add_todo", {"title": "never"}))],
        )
        processor = build_processor(selector, executor=executor)

        await processor.process(make_job(personal_space=False))

        assert executor.calls_to("add_todo") == []
        assert len(selector.todo) == 1

    @pytest.mark.asyncio
    async def test_task_extraction_crash_is_swallowed(
        self, make_job, build_processor, patched_store, monkeypatch
    ):
        monkeypatch.setattr(
            TaskExtractionLoop, "run", AsyncMock(side_effect=RuntimeError("todo store exploded"))
        )
        selector = RoutingSelector(
            primary=[make_completion(make_tool_call("complete", {"summary": "ok"}))], todo=[]
        )
        processor = build_processor(selector)

        result = await processor.process(make_job(personal_space=True))

        assert result.status == LoopStatus.COMPLETED
