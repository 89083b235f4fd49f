"""Content policy for user-facing context insight text.

Generated narratives must not leak the vocabulary of the instructions that
produced them, and must not make claims the product cannot stand behind.
Everything here is pure and total: it never raises, whatever it is handed.
"""

import re

# Instruction vocabulary that has leaked into model output in the past
_INTERNAL_VOCABULARY = [
    r"strengths?",
    r"fragilit(?:y|ies)",
    r"no vendor names",
    r"no benchmarks",
    r"probability[- ]?based",
    r"under \d+\s*words",
    r"json",
    r"schema",
    r"system prompt",
    r"as an ai(?: language model)?",
]

# Claims the product never makes
_DISALLOWED_CLAIMS = [
    r"guarantee[sd]?",
    r"risk[- ]free",
    r"zero risk",
    r"fully compliant",
]

BANNED_PHRASES_RE = re.compile(
    r"\b(?:" + "|".join(_INTERNAL_VOCABULARY + _DISALLOWED_CLAIMS) + r")\b",
    re.IGNORECASE,
)

# Terms the retry prompt tells the model to avoid
RETRY_FORBIDDEN_TERMS = [
    "strength",
    "strengths",
    "fragility",
    "fragilities",
    "JSON",
    "schema",
    "word limits",
    "guarantee",
    "risk-free",
]


def violates(text: str | None) -> bool:
    """Return True if ``text`` contains any banned term or claim."""
    if not text or not isinstance(text, str):
        return False
    return BANNED_PHRASES_RE.search(text) is not None


def find_violations(text: str | None) -> list[str]:
    """Return the distinct banned terms found in ``text``, lowercased, in order."""
    if not text or not isinstance(text, str):
        return []
    seen: list[str] = []
    for match in BANNED_PHRASES_RE.finditer(text):
        term = match.group(0).lower()
        if term not in seen:
            seen.append(term)
    return seen


def word_count(text: str | None) -> int:
    """Count whitespace-separated words."""
    if not text or not isinstance(text, str):
        return 0
    return len(text.split())
