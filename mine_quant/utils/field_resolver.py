"""
Numeric parsing and prioritized field lookup for loosely-structured payloads.

Detection and quantitative payloads spell the same quantity in several ways
(snake_case, camelCase, legacy names). Every lookup goes through a single
resolver that takes an ordered list of candidate paths; the first candidate
that yields a usable value wins.
"""
import logging
import math
from numbers import Real
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

logger = logging.getLogger(__name__)

FieldPath = Union[str, Sequence[str]]


def parse_numeric(value: Any) -> Optional[float]:
    """
    Parse a value into a finite float.

    Accepts real numbers and numeric strings. Booleans, NaN, infinities,
    empty strings and anything else yield None.

    Args:
        value: Raw value from a payload

    Returns:
        Finite float or None
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Real):
        parsed = float(value)
        return parsed if math.isfinite(parsed) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = float(text)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def parse_int(value: Any) -> Optional[int]:
    """Parse an integral value (int or integral float/string) into an int."""
    parsed = parse_numeric(value)
    if parsed is None or not parsed.is_integer():
        return None
    return int(parsed)


def is_finite_number(value: Any) -> bool:
    """True for real, finite, non-boolean numbers (strings are not numbers here)."""
    return (
        isinstance(value, Real)
        and not isinstance(value, bool)
        and math.isfinite(float(value))
    )


def get_path(source: Any, path: FieldPath) -> Any:
    """
    Walk a dotted path (or sequence of keys) through nested mappings.

    Args:
        source: Root mapping
        path: "summary.total_area_m2" or ("summary", "total_area_m2")

    Returns:
        The value at the path, or None when any segment is missing
    """
    keys = path.split(".") if isinstance(path, str) else list(path)
    current = source
    for key in keys:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def resolve_field(
    source: Any,
    candidates: Iterable[FieldPath],
    parser: Callable[[Any], Any] = parse_numeric,
) -> Any:
    """
    Resolve the first candidate path that parses to a non-None value.

    Args:
        source: Root mapping to probe
        candidates: Ordered candidate paths, highest priority first
        parser: Conversion applied to each raw value

    Returns:
        The first parsed value, or None when no candidate matches
    """
    for path in candidates:
        parsed = parser(get_path(source, path))
        if parsed is not None:
            return parsed
    return None


def first_numeric(*values: Any) -> Optional[float]:
    """Return the first value that parses as a finite number."""
    for value in values:
        parsed = parse_numeric(value)
        if parsed is not None:
            return parsed
    return None


def first_present(*values: Any) -> Any:
    """Return the first value that is not None (falsy values such as 0 count)."""
    for value in values:
        if value is not None:
            return value
    return None


def first_text(*values: Any) -> Optional[str]:
    """Return the first non-empty string, stringifying numbers."""
    for value in values:
        if isinstance(value, str) and value.strip():
            return value
        if is_finite_number(value):
            return str(value)
    return None


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, value))


def normalize_percentage(value: Any) -> Optional[float]:
    """
    Normalize a percentage-like value to the 0-100 scale.

    Values <= 1 are read as fractions and multiplied by 100; values > 1 are
    read as already being percentages. The result is clamped to [0, 100].

    The heuristic cannot tell a genuine sub-1% value written as a whole
    percent (e.g. 0.5 meaning 0.5%) from a fraction (0.5 meaning 50%); both
    are read as fractions.

    Args:
        value: Raw percentage or fraction

    Returns:
        Percentage in [0, 100], or None when the value is not numeric
    """
    parsed = parse_numeric(value)
    if parsed is None:
        return None
    normalized = parsed * 100.0 if parsed <= 1 else parsed
    return clamp_percent(normalized)
