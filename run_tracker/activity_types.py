"""Utilities for classifying Strava activity types."""

from __future__ import annotations

from typing import Iterable

__all__ = ["RUN_TYPE", "normalize_activity_type", "activity_type_matches", "is_run"]

RUN_TYPE = "run"


def normalize_activity_type(value: object) -> str | None:
    """Return a lowercase activity type string or ``None`` when missing.

    The Strava API can return either ``type`` or ``sport_type`` values, often
    with inconsistent casing. Normalising once keeps downstream comparisons
    cheap and deterministic.
    """

    if value is None:
        return None
    normalized = str(value).strip().lower()
    return normalized or None


def activity_type_matches(types: Iterable[object], allowed: set[str]) -> bool:
    """Return ``True`` when any of ``types`` is one of the ``allowed`` values.

    Args:
        types: Candidate type values, typically ``(sport_type, type)``.
        allowed: Normalised set of permitted lower-case type names.

    Returns:
        ``True`` if one of the values matches, otherwise ``False``. An empty
        ``allowed`` set implies no filtering should occur.
    """

    if not allowed:
        return True
    for value in types:
        normalized = normalize_activity_type(value)
        if normalized and normalized in allowed:
            return True
    return False


def is_run(sport_type: object, activity_type: object) -> bool:
    return activity_type_matches((sport_type, activity_type), {RUN_TYPE})
