"""
Token budget tracking for a single agent loop.

The prompt of the next model call is the whole history so far, so the
latest ``prompt_tokens`` plus this turn's ``completion_tokens`` plus a
margin for the next tool result estimates what the next call will cost.
"""

import logging
from dataclasses import dataclass

from notehub.adapters.base import TokenUsage
from notehub.config import settings
from notehub.constants import TOKEN_WARNING_MARKER

logger = logging.getLogger(__name__)


@dataclass
class AgentSession:
    """Per-request model/token state, owned by one loop invocation."""

    model_name: str
    max_tokens: int
    last_prompt_tokens: int = 0
    last_completion_tokens: int = 0
    iteration_count: int = 0


@dataclass(frozen=True)
class TokenUsageStatus:
    """Derived view of the budget after one model response."""

    current_prompt_tokens: int
    completion_tokens: int
    estimated_next_prompt: int
    remaining_tokens: int
    usage_percent: int
    should_wind_down: bool
    must_abort: bool


def evaluate_usage(
    max_tokens: int,
    usage: TokenUsage,
    margin: int | None = None,
    wind_down_percent: int | None = None,
    abort_percent: int | None = None,
) -> TokenUsageStatus:
    """Pure computation of the budget status for one usage report."""
    margin = settings.token_safety_margin if margin is None else margin
    wind_down_percent = (
        settings.token_wind_down_percent if wind_down_percent is None else wind_down_percent
    )
    abort_percent = settings.token_abort_percent if abort_percent is None else abort_percent

    estimated_next = usage.prompt_tokens + usage.completion_tokens + margin
    # Half-up rounding, independent of Python's banker's rounding
    usage_percent = int((100 * estimated_next) / max_tokens + 0.5) if max_tokens > 0 else 100

    return TokenUsageStatus(
        current_prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
        estimated_next_prompt=estimated_next,
        remaining_tokens=max_tokens - estimated_next,
        usage_percent=usage_percent,
        should_wind_down=usage_percent >= wind_down_percent,
        must_abort=usage_percent >= abort_percent,
    )


class TokenBudgetTracker:
    """Consumes usage reports for one session and decides wind-down/abort."""

    def __init__(self, session: AgentSession, margin: int | None = None):
        self.session = session
        self._margin = margin

    def observe(self, usage: TokenUsage) -> TokenUsageStatus:
        """
        Record one successful model response.

        Call exactly once per validated response, before any tool dispatch.
        """
        self.session.last_prompt_tokens = usage.prompt_tokens
        self.session.last_completion_tokens = usage.completion_tokens
        self.session.iteration_count += 1

        status = evaluate_usage(self.session.max_tokens, usage, margin=self._margin)
        logger.info(
            f"Token usage: {status.usage_percent}% "
            f"({status.current_prompt_tokens} prompt + {status.completion_tokens} completion, "
            f"model={self.session.model_name})"
        )
        return status


def build_token_warning(status: TokenUsageStatus) -> str:
    """Warning block appended to the system prompt once usage crosses wind-down."""
    estimated_sentences = max(status.remaining_tokens, 0) // 100
    return (
        f"!! {TOKEN_WARNING_MARKER} !!\n"
        f"- Current token usage: {status.usage_percent}%\n"
        f"- Remaining tokens: {status.remaining_tokens} (about {estimated_sentences} sentences)\n"
        "- State: wrap up now\n"
        "\n"
        "Instructions:\n"
        "1. Finish the operation in progress immediately.\n"
        "2. Avoid further file reads or complex edits.\n"
        "3. Call complete() within the next 1-2 iterations.\n"
        '4. If work remains, say so in the summary as "Further work needed: ...".\n'
    )


def apply_token_warning(system_prompt: str, status: TokenUsageStatus) -> tuple[str, bool]:
    """
    Append the warning block unless one is already present.

    Returns:
        Tuple of (new prompt, whether a block was added)
    """
    if TOKEN_WARNING_MARKER in system_prompt:
        return system_prompt, False
    return f"{system_prompt}\n\n{build_token_warning(status)}", True
