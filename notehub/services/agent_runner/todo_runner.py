"""Task extraction loop: turns an input into todo changes."""

import logging

from notehub.adapters.base import CompletionResult, Message
from notehub.config import settings
from notehub.constants import TOOL_NOTHING_MORE_TODO
from notehub.services.model_selector import ModelSelector
from notehub.services.tools.arguments import MalformedToolCall, parse_tool_call
from notehub.services.tools.base import ToolExecutor, ToolResult, get_tool_executor
from notehub.services.tools.definitions import TODO_TOOLSET, get_tool_definitions

from .debug_logging import log_tool_call, log_tool_result
from .models import AgentConfig, AgentJob, LoopStatus, TaskExtractionResult
from .prompts import NO_TOOL_CALL_CORRECTION, TASK_EXTRACTION_PROMPT
from .runner import build_retrying

logger = logging.getLogger(__name__)


class TaskExtractionLoop:
    """
    Secondary loop run alongside INPUT requests in personal spaces.

    Same protocol as AgentLoop, minus questions, token budgeting and
    rollback. It ends on ``nothing_more_todo``.
    """

    def __init__(
        self,
        job: AgentJob,
        selector: ModelSelector | None = None,
        executor: ToolExecutor | None = None,
        config: AgentConfig | None = None,
        max_iterations: int | None = None,
    ):
        self.job = job
        self.config = config or AgentConfig()
        self.max_iterations = max_iterations or settings.task_extraction_max_iterations
        self._selector = selector or ModelSelector()
        self._executor = executor or get_tool_executor()
        self._tool_definitions = get_tool_definitions(TODO_TOOLSET)
        self.messages: list[Message] = [
            Message(role="system", content=TASK_EXTRACTION_PROMPT),
            Message(role="user", content=job.input_text),
        ]

    async def run(self) -> TaskExtractionResult:
        job = self.job
        todos_touched: list[str] = []
        violations = 0
        iteration = 0

        def _finish(status: LoopStatus, error: str | None = None) -> TaskExtractionResult:
            if status != LoopStatus.COMPLETED and todos_touched:
                status = LoopStatus.PARTIAL
            return TaskExtractionResult(
                status=status, todos_touched=todos_touched, iterations=iteration, error=error
            )

        logger.info(f"Starting task extraction for request {job.request_id}")
        while iteration < self.max_iterations:
            iteration += 1

            try:
                completion = await self._call_model()
            except Exception as e:
                logger.warning(f"Task extraction for {job.request_id}: model call gave up: {e}")
                return _finish(LoopStatus.FAILED, f"Model call failed: {e}")

            tool_calls = completion.tool_calls
            self.messages.append(
                Message(
                    role="assistant",
                    content=completion.content or "",
                    tool_calls=tool_calls[:1] or None,
                )
            )

            if not tool_calls:
                violations += 1
                if violations >= self.config.max_protocol_violations:
                    return _finish(LoopStatus.FAILED, "Model did not call a tool")
                self.messages.append(Message(role="user", content=NO_TOOL_CALL_CORRECTION))
                continue

            invocation = parse_tool_call(tool_calls[0], allowed=TODO_TOOLSET)
            if isinstance(invocation, MalformedToolCall):
                violations += 1
                feedback = ToolResult(
                    success=False,
                    message=f"{invocation.error}. Call the tool again with valid JSON arguments.",
                )
                self._append_tool_result(invocation.call_id, invocation.name, feedback.to_json())
                if violations >= self.config.max_protocol_violations:
                    return _finish(LoopStatus.FAILED, invocation.error)
                continue

            violations = 0
            if invocation.name == TOOL_NOTHING_MORE_TODO:
                logger.info(
                    f"Task extraction for {job.request_id} done: "
                    f"{len(todos_touched)} todo(s) in {iteration} iteration(s)"
                )
                return _finish(LoopStatus.COMPLETED)

            payload = invocation.payload
            log_tool_call(job.request_id, iteration, invocation.name, payload)
            try:
                result = await self._executor.execute(
                    job.space_id, invocation.name, payload, job.user.login_id
                )
            except Exception as e:
                logger.warning(f"Task extraction for {job.request_id}: {invocation.name} raised: {e}")
                return _finish(LoopStatus.FAILED, f"Tool {invocation.name} failed: {e}")

            if result.success:
                todos_touched.append(payload.get("title", ""))
            result_text = result.to_json()
            self._append_tool_result(invocation.call_id, invocation.name, result_text)
            log_tool_result(job.request_id, iteration, invocation.name, result_text)

        return _finish(
            LoopStatus.FAILED, f"Reached the iteration limit ({self.max_iterations})"
        )

    async def _call_model(self) -> CompletionResult:
        retrying = build_retrying(
            self.config.max_model_attempts, self.config.retry_backoff_seconds, "Task extraction call"
        )
        async for attempt in retrying:
            with attempt:
                return await self._selector.call_with_fallback(
                    self.messages, self._tool_definitions, self.job.user
                )
        raise RuntimeError("retry loop exited without a result")

    def _append_tool_result(self, call_id: str, name: str, content: str) -> None:
        self.messages.append(
            Message(role="tool", content=content, tool_call_id=call_id, name=name)
        )
