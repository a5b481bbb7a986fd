"""Agent runner: the tool-calling loops and job processing."""

from notehub.services.agent_runner.models import (
    AgentConfig,
    AgentJob,
    AgentResult,
    LoopStatus,
    TaskExtractionResult,
)
from notehub.services.agent_runner.processor import JobProcessor, durable_outcome
from notehub.services.agent_runner.runner import AgentLoop, run_agent_loop
from notehub.services.agent_runner.todo_runner import TaskExtractionLoop

__all__ = [
    "AgentConfig",
    "AgentJob",
    "AgentLoop",
    "AgentResult",
    "JobProcessor",
    "LoopStatus",
    "TaskExtractionLoop",
    "TaskExtractionResult",
    "durable_outcome",
    "run_agent_loop",
]
