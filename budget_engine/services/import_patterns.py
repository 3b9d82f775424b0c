"""Learned bank-statement description patterns.

A pattern is stored trimmed and upper-cased. ``*`` is the only wildcard:
``NETFLIX`` matches exactly, ``NETFLIX*`` by prefix, ``*NETFLIX`` by suffix,
``*NETFLIX*`` anywhere. Matching is case-insensitive.
"""

from collections.abc import Iterable

from budget_engine.services.errors import ValidationError

WILDCARD = "*"


def normalize_import_pattern(pattern: str) -> str:
    normalized = (pattern or "").strip().upper()
    if not normalized.strip(WILDCARD).strip():
        raise ValidationError("Import pattern must contain text besides wildcards")
    return normalized


def normalize_import_patterns(patterns: Iterable[str]) -> list[str]:
    """Normalize and de-duplicate, keeping first-seen order."""
    seen: dict[str, None] = {}
    for pattern in patterns:
        seen.setdefault(normalize_import_pattern(pattern), None)
    return list(seen)


def literal_pattern(description: str) -> str:
    """Pattern that matches exactly this description."""
    return normalize_import_pattern(description.replace(WILDCARD, " "))


def import_pattern_matches(pattern: str, description: str | None) -> bool:
    if not pattern or not description:
        return False
    text = description.strip().upper()
    pattern = pattern.strip().upper()
    starts = pattern.startswith(WILDCARD)
    ends = pattern.endswith(WILDCARD)
    core = pattern.strip(WILDCARD)
    if not core:
        return False
    if starts and ends:
        return core in text
    if ends:
        return text.startswith(core)
    if starts:
        return text.endswith(core)
    return text == core


def matches_any(patterns: Iterable[str], description: str | None) -> bool:
    return any(import_pattern_matches(pattern, description) for pattern in patterns)
