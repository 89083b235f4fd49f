"""Context mirror generation via Anthropic, with a hard deadline.

One call per ``generate``: the profile-derived prompt goes out with the
payload schema as a forced tool, and the reply comes back as a validated
InsightPayload or one of three errors (timeout, transport, parse). Retries
and fallback are the orchestrator's job, so SDK retries are disabled here.
"""

import asyncio
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Callable

import anthropic
from pydantic import ValidationError

from cortex_insights.core.config import get_settings
from cortex_insights.core.context_policy import RETRY_FORBIDDEN_TERMS
from cortex_insights.core.insight_errors import (
    GenerationParseError,
    GenerationTimeout,
    GenerationTransportError,
)
from cortex_insights.core.llm import parse_llm_json_dict
from cortex_insights.core.llm_usage import log_llm_usage
from cortex_insights.core.logging import get_logger
from cortex_insights.core.schemas_context_mirror import (
    ACTION_COUNT,
    HEADLINE_MAX_CHARS,
    INSIGHT_MAX_WORDS,
    INSIGHT_MIN_WORDS,
    LIST_ITEM_MAX_WORDS,
    WATCHOUT_COUNT,
    ContextProfile,
    InsightPayload,
    PromptVariant,
)

logger = get_logger(__name__)

WORKFLOW = "context_mirror"
TOOL_NAME = "submit_context_mirror"

SYSTEM_PROMPT = f"""You are an executive coach for AI readiness. You write concise, board-ready briefs.

Use ONLY the organizational profile provided. Do not invent numbers, benchmarks, or proper nouns.
Speak in tendencies and options ("often", "tends to"), not promises. Be educational, not prescriptive.

Write:
- headline: one sentence, at most {HEADLINE_MAX_CHARS} characters
- insight: exactly two paragraphs separated by a blank line, {INSIGHT_MIN_WORDS}-{INSIGHT_MAX_WORDS} words in total
- actions: exactly {ACTION_COUNT} imperative statements, each at most {LIST_ITEM_MAX_WORDS} words
- watchouts: exactly {WATCHOUT_COUNT} short cautions, each at most {LIST_ITEM_MAX_WORDS} words
- scenarios: one sentence each for "if_regulation_tightens" and "if_budgets_tighten"
- disclaimer: one short sentence

Submit the brief with the {TOOL_NAME} tool."""

USER_PROMPT = """<profile>
{profile_json}
</profile>

Dimensions are scored 0 (low) to 4 (high). Reflect the profile implicitly; do not quote dimension names or scores."""

RETRY_ADDENDUM = """

IMPORTANT: A previous draft repeated wording from these instructions. The brief is read by executives and must read as natural prose.
Never use any of these words or phrases: {forbidden}.
Never mention instructions, formats, word limits, or how the text was produced.
The output contract is unchanged: every field, count, and length limit above still applies."""

INSIGHT_PAYLOAD_TOOL: dict[str, Any] = {
    "name": TOOL_NAME,
    "description": "Submit the context mirror brief for this organizational profile.",
    "input_schema": {
        "type": "object",
        "properties": {
            "headline": {"type": "string", "description": "One sentence headline."},
            "insight": {
                "type": "string",
                "description": "Two paragraphs separated by a blank line.",
            },
            "actions": {
                "type": "array",
                "items": {"type": "string"},
                "minItems": ACTION_COUNT,
                "maxItems": ACTION_COUNT,
            },
            "watchouts": {
                "type": "array",
                "items": {"type": "string"},
                "minItems": WATCHOUT_COUNT,
                "maxItems": WATCHOUT_COUNT,
            },
            "scenarios": {
                "type": "object",
                "properties": {
                    "if_regulation_tightens": {"type": "string"},
                    "if_budgets_tighten": {"type": "string"},
                },
                "required": ["if_regulation_tightens", "if_budgets_tighten"],
            },
            "disclaimer": {"type": "string", "description": "One short sentence."},
        },
        "required": ["headline", "insight", "actions", "watchouts", "scenarios", "disclaimer"],
    },
}


@dataclass(frozen=True)
class InsightPrompt:
    system: str
    user: str
    variant: PromptVariant


@dataclass(frozen=True)
class GenerationResult:
    payload: InsightPayload
    raw_response: str


def build_primary_prompt(profile: ContextProfile) -> InsightPrompt:
    return InsightPrompt(
        system=SYSTEM_PROMPT,
        user=USER_PROMPT.format(profile_json=json.dumps(profile.model_dump(), indent=2)),
        variant=PromptVariant.PRIMARY,
    )


def build_retry_prompt(profile: ContextProfile) -> InsightPrompt:
    """Primary prompt plus an explicit ban on leaking instruction vocabulary."""
    forbidden = ", ".join(f'"{term}"' for term in RETRY_FORBIDDEN_TERMS)
    return InsightPrompt(
        system=SYSTEM_PROMPT + RETRY_ADDENDUM.format(forbidden=forbidden),
        user=USER_PROMPT.format(profile_json=json.dumps(profile.model_dump(), indent=2)),
        variant=PromptVariant.RETRY,
    )


def normalize_insight_text(text: str) -> str:
    """Normalize line endings and paragraph breaks without touching wording."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_raw_output(content: list[Any]) -> tuple[Any, str]:
    """
    Pull the structured output out of a Messages API response body.

    Returns (data, raw) where data is the tool input (dict, or str when the
    SDK hands it over unparsed) or, if no tool block is present, the joined
    text blocks.
    """
    for block in content:
        if getattr(block, "type", None) == "tool_use" and getattr(block, "name", None) == TOOL_NAME:
            data = block.input
            raw = data if isinstance(data, str) else json.dumps(data)
            return data, raw

    text = "".join(
        block.text for block in content if isinstance(getattr(block, "text", None), str)
    )
    return text, text


def parse_insight_payload(data: Any, raw: str) -> InsightPayload:
    """Validate structured output into a payload, or raise GenerationParseError."""
    try:
        if isinstance(data, str):
            if not data.strip():
                raise GenerationParseError("Empty response from model", raw_response=raw)
            data = parse_llm_json_dict(data)
        if not isinstance(data, dict):
            raise GenerationParseError(
                f"Expected an object, got {type(data).__name__}", raw_response=raw
            )
        if isinstance(data.get("insight"), str):
            data = {**data, "insight": normalize_insight_text(data["insight"])}
        return InsightPayload.model_validate(data)
    except (ValueError, ValidationError) as e:
        raise GenerationParseError(f"Unparseable model output: {e}", raw_response=raw) from e


class AnthropicInsightClient:
    """Generation client adapter over the Anthropic Messages API."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        usage_logger: Callable[..., None] = log_llm_usage,
    ):
        settings = get_settings()
        self._client = client or anthropic.AsyncAnthropic(
            api_key=settings.ANTHROPIC_API_KEY,
            max_retries=0,
        )
        self.model = model or settings.CONTEXT_MIRROR_MODEL
        self.max_tokens = max_tokens or settings.CONTEXT_MIRROR_MAX_TOKENS
        self.temperature = (
            temperature if temperature is not None else settings.CONTEXT_MIRROR_TEMPERATURE
        )
        self.prompt_version = settings.CONTEXT_MIRROR_PROMPT_VERSION
        self._usage_logger = usage_logger
        self._usage_tasks: set[asyncio.Task] = set()

    async def _call(self, prompt: InsightPrompt, schema: dict[str, Any]) -> tuple[Any, int]:
        # Only the API call runs inside the raced task; nothing here may block the loop
        start = time.time()
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=prompt.system,
            messages=[{"role": "user", "content": prompt.user}],
            tools=[schema],
            tool_choice={"type": "tool", "name": schema["name"]},
        )
        return response, int((time.time() - start) * 1000)

    def _log_usage(self, response: Any, duration_ms: int, prompt: InsightPrompt) -> None:
        """Record token usage on a worker thread. Fire-and-forget."""
        usage = getattr(response, "usage", None)
        if usage is None:
            return
        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(
                self._usage_logger,
                workflow=WORKFLOW,
                model=self.model,
                tokens_input=getattr(usage, "input_tokens", 0) or 0,
                tokens_output=getattr(usage, "output_tokens", 0) or 0,
                duration_ms=duration_ms,
                prompt_variant=prompt.variant.value,
                prompt_version=self.prompt_version,
            )
        )
        self._usage_tasks.add(task)
        task.add_done_callback(self._usage_tasks.discard)

    async def flush_usage(self) -> None:
        """Wait for pending usage writes (shutdown and tests)."""
        if self._usage_tasks:
            await asyncio.gather(*self._usage_tasks, return_exceptions=True)

    def _abandon(self, task: asyncio.Task, prompt: InsightPrompt) -> None:
        def _finished(done: asyncio.Task) -> None:
            # Abandoned calls still finish and still cost tokens
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None:
                logger.debug(f"Abandoned generation call finished with error: {exc}")
                return
            response, duration_ms = done.result()
            self._log_usage(response, duration_ms, prompt)

        task.add_done_callback(_finished)

    async def generate(
        self,
        prompt: InsightPrompt,
        schema: dict[str, Any],
        deadline_seconds: float,
    ) -> GenerationResult:
        """
        Make one generation call, racing it against ``deadline_seconds``.

        If the deadline wins, the in-flight call is abandoned (left to finish
        in the background) and GenerationTimeout is raised immediately.

        Raises:
            GenerationTimeout: Deadline elapsed first
            GenerationTransportError: API or connection failure
            GenerationParseError: Response could not be turned into a payload
        """
        task = asyncio.create_task(self._call(prompt, schema))
        try:
            response, duration_ms = await asyncio.wait_for(
                asyncio.shield(task), timeout=deadline_seconds
            )
        except TimeoutError as e:
            self._abandon(task, prompt)
            raise GenerationTimeout(f"No response within {deadline_seconds:.1f}s") from e
        except anthropic.APIError as e:
            raise GenerationTransportError(f"Anthropic API error: {e}") from e
        except Exception as e:
            logger.warning(f"Unexpected error calling {self.model}: {e}")
            raise GenerationTransportError(f"Generation call failed: {e}") from e

        self._log_usage(response, duration_ms, prompt)
        data, raw = extract_raw_output(response.content)
        payload = parse_insight_payload(data, raw)
        return GenerationResult(payload=payload, raw_response=raw)


def get_insight_client() -> AnthropicInsightClient:
    """Production adapter configured from settings."""
    return AnthropicInsightClient()
