"""Agent loop orchestration."""

import logging
import time
from typing import Any

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_incrementing

from notehub.adapters.base import CompletionResult, Message
from notehub.constants import (
    TOOL_ADD_FILE,
    TOOL_ADD_FOLDER,
    TOOL_ASK_TO_USER,
    TOOL_COMPLETE,
    TOOL_EDIT_FILE,
    USER_RESPONSE_TIMEOUT_REASON,
)
from notehub.services.ask_user import AskUserGate, AskUserTimeoutError
from notehub.services.events import EventPublisher, publish_failed, publish_progress
from notehub.services.model_selector import ModelSelector
from notehub.services.request_store import AuditEntry, RequestLogger
from notehub.services.token_budget import AgentSession, TokenBudgetTracker, apply_token_warning
from notehub.services.tools.arguments import (
    AskToUserArgs,
    CompleteArgs,
    MalformedToolCall,
    ParsedToolCall,
    parse_tool_call,
)
from notehub.services.tools.base import ToolExecutor, ToolResult, get_tool_executor
from notehub.services.tools.definitions import TASK_TOOLSETS, get_tool_definitions
from notehub.services.undo_ledger import UndoLedger, invert_action

from .debug_logging import (
    log_agent_input,
    log_agent_response,
    log_final_output,
    log_tool_call,
    log_tool_result,
)
from .models import AgentConfig, AgentJob, AgentResult, LoopStatus
from .prompts import NO_TOOL_CALL_CORRECTION, build_system_prompt, snapshot_space

logger = logging.getLogger(__name__)

# Audit tool name for an iteration whose reply carried no tool call
NO_TOOL_CALL = "(none)"


def build_retrying(attempts: int, backoff: float, what: str) -> AsyncRetrying:
    """Bounded retry with linear backoff: attempt n waits n * backoff."""

    def _log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        sleep = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{what} failed (attempt {retry_state.attempt_number}/{attempts}): {error}; "
            f"retrying in {sleep:.1f}s"
        )

    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_incrementing(start=backoff, increment=backoff),
        before_sleep=_log_retry,
        reraise=True,
    )


def calculate_progress(iteration: int, max_iterations: int) -> float:
    """Percentage of the iteration ceiling, capped below 100 until the loop ends."""
    if max_iterations <= 0:
        return 99.0
    return min(round(iteration / max_iterations * 100, 1), 99.0)


class AgentLoop:
    """
    Runs one request's tool-calling loop to a terminal state.

    Each iteration:
    1. Emit progress
    2. Call the model (fallback chain, bounded retry)
    3. Update the token budget; warn or abort
    4. Honor only the first proposed tool call
    5. Dispatch: ask_to_user, complete, or a note-store tool

    Any real mutation turns an abnormal ending into PARTIAL instead of
    FAILED. Only an unanswered question rolls back earlier work.
    """

    def __init__(
        self,
        job: AgentJob,
        selector: ModelSelector | None = None,
        executor: ToolExecutor | None = None,
        request_logger: RequestLogger | None = None,
        publisher: EventPublisher | None = None,
        gate: AskUserGate | None = None,
        config: AgentConfig | None = None,
        tool_names: tuple[str, ...] | None = None,
    ):
        self.job = job
        self.config = config or AgentConfig()
        self._selector = selector or ModelSelector()
        self._executor = executor or get_tool_executor()
        self._request_logger = request_logger
        self._publisher = publisher
        self._gate = gate or AskUserGate(
            job.request_id,
            publisher=publisher,
            timeout_seconds=self.config.ask_user_timeout_seconds,
        )
        self._tool_names = tool_names or TASK_TOOLSETS[job.kind]
        self._tool_definitions = get_tool_definitions(self._tool_names)

        self.messages: list[Message] = []
        self.ledger = UndoLedger(self._executor, job.space_id, job.user.login_id)
        self.session = AgentSession(model_name="", max_tokens=0)

        self._files_created: list[str] = []
        self._files_modified: list[str] = []
        self._folders_created: list[str] = []
        self._mutation_count = 0
        self._violations = 0
        self._iteration = 0
        self._tokens_used = 0

    async def run(self) -> AgentResult:
        """
        Run the loop to COMPLETED, PARTIAL or FAILED.

        Never raises: unexpected errors end the loop like any other
        abnormal termination.
        """
        job = self.job
        logger.info(
            f"Starting agent loop for request {job.request_id} "
            f"({job.kind.value}, space={job.space_id})"
        )

        try:
            await self._seed()
            result = await self._run_iterations()
        except Exception as e:
            logger.exception(f"Agent loop for request {job.request_id} failed unexpectedly")
            result = await self._terminate_abnormally(f"Unexpected error: {e}")

        logger.info(
            f"Agent loop for request {job.request_id} finished: status={result.status.value}, "
            f"iterations={result.iterations}, mutations={self._mutation_count}"
        )
        log_final_output(
            request_id=job.request_id,
            status=result.status.value,
            summary=result.summary or result.error,
            iterations=result.iterations,
            mutations=self._mutation_count,
        )
        return result

    async def _seed(self) -> None:
        """Resolve the session and build the initial conversation."""
        job = self.job
        model_config = await self._selector.resolve_config(job.user)
        self.session = AgentSession(
            model_name=model_config.default_model,
            max_tokens=self._selector.context_limit(model_config),
        )

        snapshot = await snapshot_space(self._executor, job.space_id, job.user.login_id)
        system_prompt = build_system_prompt(job.kind, snapshot)
        self.messages = [
            Message(role="system", content=system_prompt),
            Message(role="user", content=job.input_text),
        ]
        log_agent_input(
            request_id=job.request_id,
            kind=job.kind.value,
            model=self.session.model_name,
            system_prompt=system_prompt,
            task=job.input_text,
        )

    async def _run_iterations(self) -> AgentResult:
        job = self.job
        max_iterations = self.config.max_iterations
        tracker = TokenBudgetTracker(self.session, margin=self.config.token_safety_margin)

        while self._iteration < max_iterations:
            self._iteration += 1
            iteration = self._iteration
            logger.info(f"Request {job.request_id}: iteration {iteration}/{max_iterations}")
            await publish_progress(
                job.request_id,
                iteration=iteration,
                progress=calculate_progress(iteration, max_iterations),
                message=f"Working (step {iteration})",
                publisher=self._publisher,
            )

            try:
                completion = await self._call_model()
            except Exception as e:
                logger.error(f"Request {job.request_id}: model call gave up: {e}")
                return await self._terminate_abnormally(
                    f"Model call failed after {self.config.max_model_attempts} attempts: {e}"
                )

            if completion.model:
                self.session.model_name = completion.model
            status = tracker.observe(completion.usage)
            self._tokens_used = completion.usage.total_tokens
            await self._record_progress()

            if status.should_wind_down:
                system = self.messages[0]
                system.content, added = apply_token_warning(system.content, status)
                if added:
                    logger.warning(
                        f"Request {job.request_id}: token usage at {status.usage_percent}%, "
                        "asking the model to wrap up"
                    )
            if status.must_abort:
                return await self._terminate_abnormally(
                    f"Token limit exceeded: {status.usage_percent}% of "
                    f"{self.session.max_tokens} tokens",
                    notify=True,
                )

            tool_calls = completion.tool_calls
            self.messages.append(
                Message(
                    role="assistant",
                    content=completion.content or "",
                    tool_calls=tool_calls[:1] or None,
                )
            )
            log_agent_response(
                job.request_id,
                iteration,
                completion.model,
                completion.content or "",
                completion.finish_reason,
            )

            if not tool_calls:
                await self._audit(
                    NO_TOOL_CALL,
                    {"content": completion.content or ""},
                    ToolResult(success=False, message="Model replied without a tool call"),
                    0,
                )
                outcome = await self._protocol_violation("model replied without a tool call")
                if outcome is not None:
                    return outcome
                self.messages.append(Message(role="user", content=NO_TOOL_CALL_CORRECTION))
                continue

            if len(tool_calls) > 1:
                logger.info(
                    f"Request {job.request_id}: model proposed {len(tool_calls)} tool calls, "
                    f"executing only {tool_calls[0].name}"
                )

            invocation = parse_tool_call(tool_calls[0], allowed=self._tool_names)
            if isinstance(invocation, MalformedToolCall):
                feedback = ToolResult(
                    success=False,
                    message=f"{invocation.error}. Call the tool again with valid JSON arguments.",
                )
                self._append_tool_result(invocation.call_id, invocation.name, feedback.to_json())
                await self._audit(invocation.name, {"raw": invocation.raw_arguments}, feedback, 0)
                outcome = await self._protocol_violation(invocation.error)
                if outcome is not None:
                    return outcome
                continue

            self._violations = 0
            outcome = await self._dispatch(invocation)
            if outcome is not None:
                return outcome

        return await self._terminate_abnormally(
            f"Reached the iteration limit ({max_iterations}) without completing"
        )

    async def _call_model(self) -> CompletionResult:
        retrying = build_retrying(
            self.config.max_model_attempts, self.config.retry_backoff_seconds, "Model call"
        )
        async for attempt in retrying:
            with attempt:
                return await self._selector.call_with_fallback(
                    self.messages, self._tool_definitions, self.job.user
                )
        raise RuntimeError("retry loop exited without a result")

    async def _execute_tool(self, name: str, payload: dict[str, Any]) -> ToolResult:
        retrying = build_retrying(
            self.config.max_model_attempts, self.config.retry_backoff_seconds, f"Tool {name}"
        )
        async for attempt in retrying:
            with attempt:
                return await self._executor.execute(
                    self.job.space_id, name, payload, self.job.user.login_id
                )
        raise RuntimeError("retry loop exited without a result")

    async def _protocol_violation(self, reason: str) -> AgentResult | None:
        """Count a violation; returns a terminal result once the limit is hit."""
        self._violations += 1
        limit = self.config.max_protocol_violations
        logger.warning(
            f"Request {self.job.request_id}: protocol violation {self._violations}/{limit}: {reason}"
        )
        if self._violations >= limit:
            return await self._terminate_abnormally(
                f"Model broke the tool protocol {limit} times in a row ({reason})"
            )
        return None

    async def _dispatch(self, invocation: ParsedToolCall) -> AgentResult | None:
        """Run one tool call. Returns a result when the loop must stop."""
        name = invocation.name
        payload = invocation.payload
        log_tool_call(self.job.request_id, self._iteration, name, payload)

        if name == TOOL_ASK_TO_USER:
            return await self._ask_user(invocation)

        if name == TOOL_COMPLETE:
            args: CompleteArgs = invocation.arguments  # type: ignore[assignment]
            await self._audit(name, payload, ToolResult(success=True), 0)
            return self._build_result(
                LoopStatus.COMPLETED,
                summary=args.summary or None,
                search_results=list(args.search_results),
            )

        started = time.monotonic()
        try:
            result = await self._execute_tool(name, payload)
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            await self._audit(name, payload, ToolResult(success=False, message=str(e)), duration_ms)
            return await self._terminate_abnormally(
                f"Tool {name} failed after {self.config.max_model_attempts} attempts: {e}"
            )
        duration_ms = int((time.monotonic() - started) * 1000)

        if result.success:
            self._record_mutation(name, payload)

        result_text = result.to_json()
        self._append_tool_result(invocation.call_id, name, result_text)
        log_tool_result(self.job.request_id, self._iteration, name, result_text)
        await self._audit(name, payload, result, duration_ms)
        return None

    async def _ask_user(self, invocation: ParsedToolCall) -> AgentResult | None:
        args: AskToUserArgs = invocation.arguments  # type: ignore[assignment]
        started = time.monotonic()
        try:
            answer = await self._gate.ask(args.question, list(args.options))
        except AskUserTimeoutError:
            duration_ms = int((time.monotonic() - started) * 1000)
            await self._audit(
                TOOL_ASK_TO_USER,
                invocation.payload,
                ToolResult(success=False, message=USER_RESPONSE_TIMEOUT_REASON),
                duration_ms,
            )
            return await self._abandon_after_timeout()

        duration_ms = int((time.monotonic() - started) * 1000)
        result = ToolResult(success=True, data={"answer": answer})
        self._append_tool_result(invocation.call_id, TOOL_ASK_TO_USER, result.to_json())
        await self._audit(TOOL_ASK_TO_USER, invocation.payload, result, duration_ms)
        return None

    async def _abandon_after_timeout(self) -> AgentResult:
        """Roll back every recorded mutation; the request ends as a failure."""
        job = self.job
        reverted = len(self.ledger)
        failures = await self.ledger.rollback_all()
        if failures:
            logger.warning(
                f"Request {job.request_id}: {len(failures)} of {reverted} rollback(s) failed"
            )
        logger.info(f"Request {job.request_id}: question timed out, reverted {reverted} change(s)")

        await publish_failed(
            job.request_id,
            f"{USER_RESPONSE_TIMEOUT_REASON}. The question was not answered in time "
            f"and {reverted} earlier change(s) were reverted.",
            publisher=self._publisher,
        )
        return AgentResult(
            status=LoopStatus.FAILED,
            error=USER_RESPONSE_TIMEOUT_REASON,
            rolled_back=True,
            iterations=self._iteration,
            tokens_used=self._tokens_used,
        )

    def _record_mutation(self, name: str, payload: dict[str, Any]) -> None:
        undo = invert_action(name, payload)
        if undo is None:
            return
        self.ledger.record(undo)
        self._mutation_count += 1

        path = payload.get("path")
        if name == TOOL_ADD_FILE:
            self._files_created.append(path)
        elif name == TOOL_EDIT_FILE and path not in self._files_modified:
            self._files_modified.append(path)
        elif name == TOOL_ADD_FOLDER:
            self._folders_created.append(path)

    def _append_tool_result(self, call_id: str, name: str, content: str) -> None:
        self.messages.append(
            Message(role="tool", content=content, tool_call_id=call_id, name=name)
        )

    async def _audit(
        self, tool: str, params: dict[str, Any], result: ToolResult, duration_ms: int
    ) -> None:
        if self._request_logger is None:
            return
        entry = AuditEntry(
            request_id=self.job.request_id,
            iteration=self._iteration,
            tool=tool,
            params=params,
            result=result.to_json(),
            success=result.success,
            duration_ms=duration_ms,
        )
        try:
            await self._request_logger.log(entry)
        except Exception as e:
            logger.warning(f"Audit log write failed for request {self.job.request_id}: {e}")

    async def _record_progress(self) -> None:
        if self._request_logger is None:
            return
        try:
            await self._request_logger.update_progress(
                self.job.request_id, self._iteration, self._tokens_used
            )
        except Exception as e:
            logger.warning(f"Progress update failed for request {self.job.request_id}: {e}")

    async def _terminate_abnormally(self, reason: str, notify: bool = False) -> AgentResult:
        """
        End the loop without complete().

        PARTIAL (with a synthesized summary) when anything was mutated,
        FAILED otherwise. Failures are always published; ``notify`` also
        publishes for PARTIAL endings.
        """
        if self._mutation_count:
            result = self._build_result(
                LoopStatus.PARTIAL, summary=self._fallback_summary(reason), error=reason
            )
        else:
            result = self._build_result(LoopStatus.FAILED, error=reason)

        if result.status == LoopStatus.FAILED or notify:
            await publish_failed(self.job.request_id, reason, publisher=self._publisher)
        return result

    def _fallback_summary(self, reason: str) -> str:
        return (
            f"Stopped before finishing ({reason}). Changes made so far: "
            f"{len(self._files_created)} file(s) created, "
            f"{len(self._files_modified)} file(s) modified, "
            f"{len(self._folders_created)} folder(s) created."
        )

    def _build_result(self, status: LoopStatus, **kwargs: Any) -> AgentResult:
        return AgentResult(
            status=status,
            files_created=list(self._files_created),
            files_modified=list(self._files_modified),
            folders_created=list(self._folders_created),
            iterations=self._iteration,
            tokens_used=self._tokens_used,
            **kwargs,
        )


async def run_agent_loop(job: AgentJob, **kwargs: Any) -> AgentResult:
    """Convenience wrapper: build an AgentLoop for ``job`` and run it."""
    return await AgentLoop(job, **kwargs).run()

