"""Generation orchestrator for the context mirror.

Drives a small closed state machine:

    START -> ATTEMPT_1 -> SUCCESS
                       -> ATTEMPT_2 (policy violation or timeout) -> SUCCESS | FALLBACK
                       -> FALLBACK  (transport / parse)

Every transition goes through ``next_state`` and the TRANSITIONS table, so
there is no path with more than two generation calls. FALLBACK always
produces a payload.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from cortex_insights.chains.generate_context_mirror import (
    INSIGHT_PAYLOAD_TOOL,
    GenerationResult,
    InsightPrompt,
    build_primary_prompt,
    build_retry_prompt,
)
from cortex_insights.core.context_policy import find_violations
from cortex_insights.core.context_templates import classify_archetype, fallback
from cortex_insights.core.insight_errors import GenerationError, GenerationTimeout, PolicyViolation
from cortex_insights.core.llm import truncate_raw
from cortex_insights.core.logging import get_logger, log_with_context
from cortex_insights.core.schemas_context_mirror import (
    ContextProfile,
    FinalSource,
    GenerationAttempt,
    GenerationDiagnostics,
    InsightPayload,
)

logger = get_logger(__name__)


class InsightGenerator(Protocol):
    async def generate(
        self,
        prompt: InsightPrompt,
        schema: dict[str, Any],
        deadline_seconds: float,
    ) -> GenerationResult: ...


# ============================================================================
# State machine
# ============================================================================


class OrchestratorState(str, Enum):
    START = "start"
    ATTEMPT_1 = "attempt_1"
    ATTEMPT_2 = "attempt_2"
    SUCCESS = "success"
    FALLBACK = "fallback"


class AttemptOutcome(str, Enum):
    CLEAN = "clean"
    POLICY_VIOLATION = "policy_violation"
    TIMEOUT = "timeout"
    FAILURE = "failure"


TERMINAL_STATES = frozenset({OrchestratorState.SUCCESS, OrchestratorState.FALLBACK})

TRANSITIONS: dict[tuple[OrchestratorState, AttemptOutcome | None], OrchestratorState] = {
    (OrchestratorState.START, None): OrchestratorState.ATTEMPT_1,
    (OrchestratorState.ATTEMPT_1, AttemptOutcome.CLEAN): OrchestratorState.SUCCESS,
    (OrchestratorState.ATTEMPT_1, AttemptOutcome.POLICY_VIOLATION): OrchestratorState.ATTEMPT_2,
    (OrchestratorState.ATTEMPT_1, AttemptOutcome.TIMEOUT): OrchestratorState.ATTEMPT_2,
    (OrchestratorState.ATTEMPT_1, AttemptOutcome.FAILURE): OrchestratorState.FALLBACK,
    (OrchestratorState.ATTEMPT_2, AttemptOutcome.CLEAN): OrchestratorState.SUCCESS,
    (OrchestratorState.ATTEMPT_2, AttemptOutcome.POLICY_VIOLATION): OrchestratorState.FALLBACK,
    (OrchestratorState.ATTEMPT_2, AttemptOutcome.TIMEOUT): OrchestratorState.FALLBACK,
    (OrchestratorState.ATTEMPT_2, AttemptOutcome.FAILURE): OrchestratorState.FALLBACK,
}


class InvalidTransition(Exception):
    """Raised when a (state, outcome) pair has no entry in TRANSITIONS."""


def next_state(
    state: OrchestratorState, outcome: AttemptOutcome | None = None
) -> OrchestratorState:
    try:
        return TRANSITIONS[(state, outcome)]
    except KeyError:
        raise InvalidTransition(f"No transition from {state.value} on {outcome}") from None


# ============================================================================
# Orchestrator
# ============================================================================


@dataclass(frozen=True)
class OrchestrationResult:
    payload: InsightPayload
    diagnostics: GenerationDiagnostics


class InsightOrchestrator:
    """Turns a context profile into a payload plus diagnostics, never failing."""

    def __init__(
        self,
        generator: InsightGenerator,
        timeout_seconds: float = 25.0,
        raw_response_chars: int = 500,
        clock: Callable[[], datetime] | None = None,
    ):
        self.generator = generator
        self.timeout_seconds = timeout_seconds
        self.raw_response_chars = raw_response_chars
        self._clock = clock or (lambda: datetime.now(UTC))

    def _prompt_for(
        self, previous: AttemptOutcome | None, profile: ContextProfile
    ) -> InsightPrompt:
        # Only a policy violation changes the prompt; a timeout resends it unchanged
        if previous == AttemptOutcome.POLICY_VIOLATION:
            return build_retry_prompt(profile)
        return build_primary_prompt(profile)

    async def _attempt(
        self,
        sequence: int,
        prompt: InsightPrompt,
        assessment_id: str | None,
    ) -> tuple[AttemptOutcome, GenerationAttempt, InsightPayload | None]:
        """Run one call/parse/validate cycle and record it."""
        started_at = self._clock()
        start = time.perf_counter()
        payload: InsightPayload | None = None
        raw: str | None = None
        error: GenerationError | None = None

        try:
            result = await self.generator.generate(
                prompt, INSIGHT_PAYLOAD_TOOL, self.timeout_seconds
            )
            raw = result.raw_response
            terms = find_violations(result.payload.insight)
            if terms:
                error = PolicyViolation(
                    f"Narrative contains banned terms: {', '.join(terms)}",
                    raw_response=raw,
                    terms=terms,
                )
            else:
                payload = result.payload
        except GenerationError as e:
            error = e
            raw = e.raw_response

        duration_ms = int((time.perf_counter() - start) * 1000)
        attempt = GenerationAttempt(
            sequence=sequence,
            prompt_variant=prompt.variant,
            started_at=started_at,
            ended_at=self._clock(),
            duration_ms=duration_ms,
            success=error is None,
            failure_reason=error.reason if error else None,
            raw_response=truncate_raw(raw, self.raw_response_chars),
        )

        if error is None:
            outcome = AttemptOutcome.CLEAN
        elif isinstance(error, PolicyViolation):
            outcome = AttemptOutcome.POLICY_VIOLATION
        elif isinstance(error, GenerationTimeout):
            outcome = AttemptOutcome.TIMEOUT
        else:
            outcome = AttemptOutcome.FAILURE

        log_with_context(
            logger,
            logging.INFO if error is None else logging.WARNING,
            f"Context mirror attempt {sequence} {outcome.value}"
            + (f": {error}" if error else ""),
            assessment_id=assessment_id,
            attempt=sequence,
            prompt_variant=prompt.variant.value,
            reason=attempt.failure_reason.value if attempt.failure_reason else None,
            duration_ms=duration_ms,
        )
        return outcome, attempt, payload

    async def run(
        self, profile: ContextProfile, assessment_id: str | None = None
    ) -> OrchestrationResult:
        """Generate a payload for ``profile``; falls back to the template on any failure."""
        generated_at = self._clock()
        run_start = time.perf_counter()
        attempts: list[GenerationAttempt] = []
        payload: InsightPayload | None = None
        final_source: FinalSource | None = None
        archetype: str | None = None
        outcome: AttemptOutcome | None = None

        state = next_state(OrchestratorState.START)
        while state not in TERMINAL_STATES:
            outcome, attempt, candidate = await self._attempt(
                len(attempts) + 1, self._prompt_for(outcome, profile), assessment_id
            )
            attempts.append(attempt)
            if outcome == AttemptOutcome.CLEAN:
                payload = candidate
                final_source = (
                    FinalSource.PRIMARY_MODEL
                    if state == OrchestratorState.ATTEMPT_1
                    else FinalSource.RETRIED_MODEL
                )
            state = next_state(state, outcome)

        if state == OrchestratorState.FALLBACK:
            archetype = classify_archetype(profile).value
            payload = fallback(profile)
            final_source = FinalSource.FALLBACK_TEMPLATE

        diagnostics = GenerationDiagnostics(
            attempts=attempts,
            final_source=final_source,
            total_duration_ms=int((time.perf_counter() - run_start) * 1000),
            generated_at=generated_at,
            archetype=archetype,
        )
        log_with_context(
            logger,
            logging.INFO,
            f"Context mirror generated via {final_source.value}",
            assessment_id=assessment_id,
            final_source=final_source.value,
            attempts=len(attempts),
            archetype=archetype,
            total_duration_ms=diagnostics.total_duration_ms,
        )
        return OrchestrationResult(payload=payload, diagnostics=diagnostics)


def build_orchestrator(generator: InsightGenerator | None = None) -> InsightOrchestrator:
    """Orchestrator wired to settings and the production generation client."""
    from cortex_insights.chains.generate_context_mirror import get_insight_client
    from cortex_insights.core.config import get_settings

    settings = get_settings()
    return InsightOrchestrator(
        generator=generator or get_insight_client(),
        timeout_seconds=settings.CONTEXT_MIRROR_TIMEOUT_SECONDS,
        raw_response_chars=settings.CONTEXT_MIRROR_RAW_RESPONSE_CHARS,
    )
