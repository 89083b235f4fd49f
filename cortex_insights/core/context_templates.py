"""Rule-based fallback templates for the context mirror.

Used whenever model generation cannot produce a compliant payload. The
output depends on the profile alone, never on time or randomness, so a given
profile always gets the same brief.

Every template was word-counted when it was written; the InsightPayload
validators check them again at import time.
"""

from enum import Enum

from cortex_insights.core.schemas_context_mirror import (
    ContextProfile,
    InsightPayload,
    InsightScenarios,
)


class Archetype(str, Enum):
    FAST_PACED = "fast_paced"
    COMPLEX_INTEGRATION = "complex_integration"
    REGULATED = "regulated"


def _para(*lines: str) -> str:
    return " ".join(lines)


_REGULATED = InsightPayload(
    headline="Clear guardrails earn a durable license to operate when controls are set early",
    insight=_para(
        "Your organization operates where regulatory expectations and data sensitivity set",
        "clear guardrails and earn stakeholder trust, while also adding oversight and",
        "integration friction. In settings like this, value tends to appear where outcomes",
        "are observable and risk can be bounded. The upside is a durable license to operate",
        "once controls are explicit; the trade-off is a slower path to production when",
        "governance, data lineage, and vendor requirements surface late rather than at the",
        "start of each initiative. Teams that treat compliance as a design input rather than",
        "a final review tend to move faster over time.",
    )
    + "\n\n"
    + _para(
        "Momentum usually comes from contained, high-signal pilots: workflows with",
        "measurable decisions, well-defined inputs, and human review at material decision",
        "points. Set continuity expectations early, including latency thresholds, fallbacks",
        "to standard procedures, and simple rollbacks, so operations never stall. As pilots",
        "prove stable, expand along data pipelines you already trust, harden audit trails,",
        "and make review criteria explicit. Oversight then becomes a routine part of",
        "delivery rather than a late-stage gate that holds back promising work.",
    ),
    actions=[
        "Map decision points that need human review before the first pilot ships",
        "Document data lineage and retention rules for every workflow you automate",
        "Agree continuity thresholds and rollback steps with operations before launch",
    ],
    watchouts=[
        "Late governance reviews can stall pilots that are otherwise ready to scale",
        "Vendor contracts may restrict data residency or model choices you assumed",
    ],
    scenarios=InsightScenarios(
        if_regulation_tightens=(
            "If regulation tightens, expand audit trails and human review on material decisions first."
        ),
        if_budgets_tighten=(
            "If budgets tighten, concentrate on pilots with measurable compliance or efficiency gains."
        ),
    ),
    disclaimer="Educational reflection based on your context; not a compliance determination.",
)

_FAST_PACED = InsightPayload(
    headline="Speed is your advantage if shared standards keep pace with adoption",
    insight=_para(
        "Your operating context favors speed and iteration. Light external constraints and a",
        "fast competitive tempo make experimentation and short feedback loops natural, while",
        "raising the odds of fragmented tooling, shadow adoption, and uneven quality when",
        "shared standards lag behind usage. The opportunity is rapid learning and",
        "differentiation; the hazard is value that stalls at the pilot stage because",
        "integration and measurement trail adoption. Organizations in this position often",
        "discover that the hardest part is not starting, but deciding which experiments",
        "deserve sustained investment.",
    )
    + "\n\n"
    + _para(
        "Prioritize quick wins that connect directly to revenue or cycle time, but anchor",
        "them to a minimal set of shared guardrails: output policies, data boundaries, and",
        "review criteria for customer-facing content. Instrument outcome metrics from the",
        "first release, such as time saved, conversion, and resolution rate, and publish a",
        "simple graduation path from pilot to supported to scaled. Consolidate on a small",
        "number of services early so tool sprawl does not accelerate along with usage, and",
        "retire experiments that miss their decision dates.",
    ),
    actions=[
        "Set a minimal shared policy for outputs and data boundaries this quarter",
        "Attach an outcome metric and a decision date to every pilot",
        "Consolidate tooling onto a small supported set before usage spreads further",
    ],
    watchouts=[
        "Shadow adoption can outpace review, exposing customers to uneven quality",
        "Pilots without measurement rarely earn the investment needed to scale",
    ],
    scenarios=InsightScenarios(
        if_regulation_tightens=(
            "If regulation tightens, add review steps to customer-facing outputs before expanding scope."
        ),
        if_budgets_tighten=(
            "If budgets tighten, keep the experiments tied directly to revenue or cycle time."
        ),
    ),
    disclaimer=(
        "Educational reflection based on your context; not a compliance or investment determination."
    ),
)

_COMPLEX_INTEGRATION = InsightPayload(
    headline="Reliability near systems of record unlocks value before novelty does",
    insight=_para(
        "A complex integration surface and strict continuity needs favor reliability over",
        "novelty. Value tends to appear where AI augments well-bounded tasks that sit close",
        "to existing systems of record. The benefit is clear provenance and stable runtime",
        "behavior; the downside is longer integration paths and tighter latency and",
        "observability constraints that can narrow model choice or limit the scope of early",
        "releases. Throughput peaks and coupled dependencies mean that a weak link in one",
        "system can ripple quickly into customer-facing operations.",
    )
    + "\n\n"
    + _para(
        "Start where latency budgets are tolerant and interfaces are stable, such as",
        "internal knowledge retrieval, assisted drafting, and request triage. Define p95",
        "latency targets and rollback paths up front so operations never stall. Run",
        "inference close to the data when feasible, and prefer patterns that cache,",
        "retrieve, and verify over those that demand deep re-platforming. As reliability",
        "holds, expand into higher-impact surfaces with explicit service levels, rate",
        "limits, and automated quality checks that catch regressions before users do.",
    ),
    actions=[
        "Start with internal retrieval and drafting tasks that tolerate higher latency",
        "Define p95 latency targets and rollback paths for every integration",
        "Add rate limits and failover before exposing AI to peak traffic",
    ],
    watchouts=[
        "Tightly coupled dependencies can turn one slow service into an outage",
        "Deep re-platforming ambitions can delay value far beyond the first year",
    ],
    scenarios=InsightScenarios(
        if_regulation_tightens=(
            "If regulation tightens, favor patterns that keep data and inference close to existing controls."
        ),
        if_budgets_tighten=(
            "If budgets tighten, invest in caching and retrieval before larger models or new platforms."
        ),
    ),
    disclaimer=(
        "Educational reflection based on your context; not an architecture or compliance determination."
    ),
)

TEMPLATES: dict[Archetype, InsightPayload] = {
    Archetype.FAST_PACED: _FAST_PACED,
    Archetype.COMPLEX_INTEGRATION: _COMPLEX_INTEGRATION,
    Archetype.REGULATED: _REGULATED,
}


def classify_archetype(profile: ContextProfile) -> Archetype:
    """Pick the archetype; rules are evaluated in priority order."""
    if profile.clock_speed >= 3 and profile.regulatory_intensity < 3:
        return Archetype.FAST_PACED
    if profile.scale_throughput >= 2 or profile.latency_edge >= 2:
        return Archetype.COMPLEX_INTEGRATION
    return Archetype.REGULATED


def fallback(profile: ContextProfile) -> InsightPayload:
    """Deterministic payload for a profile. Cannot fail."""
    # Deep copy so callers can never mutate the shared template lists
    return TEMPLATES[classify_archetype(profile)].model_copy(deep=True)
