"""LLM token usage logging for generation calls."""

import logging

from cortex_insights.db.supabase_client import get_supabase

logger = logging.getLogger(__name__)

# Pricing per 1M tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-sonnet-4-5-20250929": (3.0, 15.0),
    "claude-sonnet-4-20250514": (3.0, 15.0),
    "claude-haiku-4-5-20251001": (0.80, 4.0),
}


def estimate_cost(model: str, tokens_input: int, tokens_output: int) -> float:
    """Estimate cost in USD; unknown models cost $0."""
    pricing = MODEL_PRICING.get(model)
    if not pricing:
        logger.warning(f"No pricing found for model '{model}', using $0")
        return 0.0
    input_rate, output_rate = pricing
    cost = (tokens_input * input_rate + tokens_output * output_rate) / 1_000_000
    return round(cost, 6)


def log_llm_usage(
    workflow: str,
    model: str,
    tokens_input: int,
    tokens_output: int,
    duration_ms: int = 0,
    prompt_variant: str | None = None,
    prompt_version: str | None = None,
) -> None:
    """Record one LLM call in the usage table. Fire-and-forget."""
    try:
        row = {
            "workflow": workflow,
            "model": model,
            "provider": "anthropic",
            "tokens_input": tokens_input,
            "tokens_output": tokens_output,
            "estimated_cost_usd": estimate_cost(model, tokens_input, tokens_output),
            "duration_ms": duration_ms,
        }
        if prompt_variant or prompt_version:
            row["chain"] = ":".join(p for p in (workflow, prompt_version, prompt_variant) if p)

        get_supabase().table("llm_usage_log").insert(row).execute()

        logger.debug(
            f"LLM usage logged: {workflow} model={model} "
            f"tokens={tokens_input}+{tokens_output} duration={duration_ms}ms"
        )
    except Exception as e:
        # Never fail the main operation due to usage logging
        logger.error(f"Failed to log LLM usage: {e}")
