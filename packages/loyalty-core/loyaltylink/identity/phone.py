"""Phone number canonicalization for customer lookups.

Stored customer phones come from several generations of business-side forms,
so the same number may appear as ``+27 83 123-4567``, ``(27) 831234567`` or
``27831234567``. Lookups compare canonical forms and fall back to the raw
value because historical records were saved without normalization.

Examples:
    >>> normalize_phone("+27 (83) 123-4567")
    '27831234567'
    >>> phones_equal("+27 83 123 4567", "27831234567")
    True
    >>> lookup_candidates("+27 83 123 4567")
    ['27831234567', '+27 83 123 4567']
"""

from __future__ import annotations

import re

# Whitespace, hyphens and parentheses anywhere; "+" only as a leading mark.
_SEPARATORS = re.compile(r"[\s\-()]+")


def normalize_phone(phone: str | None) -> str:
    """Strip whitespace, hyphens, parentheses and the leading "+".

    Args:
        phone: Raw phone string. None is treated as empty.

    Returns:
        Canonical phone string, or empty string if nothing remains.
    """
    if not isinstance(phone, str):
        return ""
    stripped = _SEPARATORS.sub("", phone.strip())
    return stripped.lstrip("+")


def phones_equal(first: str | None, second: str | None) -> bool:
    """Return True if both phones normalize to the same non-empty value."""
    normalized = normalize_phone(first)
    return bool(normalized) and normalized == normalize_phone(second)


def lookup_candidates(phone: str | None) -> list[str]:
    """Return the values to query, normalized form first then the raw form.

    The raw form is only included when it differs from the normalized one.
    """
    normalized = normalize_phone(phone)
    if not normalized:
        return []
    candidates = [normalized]
    raw = phone.strip() if isinstance(phone, str) else ""
    if raw and raw != normalized:
        candidates.append(raw)
    return candidates
