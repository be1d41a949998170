"""
utils/report_utils.py
Shared helper functions for the suite and combined report generators.

This module contains the formatting, naming and text-classification helpers
used by both the per-suite renderer and the combined aggregator, so the two
sides agree on display names and on what counts as a soft failure.
"""

import html
import math
import re
from functools import lru_cache
from typing import Dict, Optional, Union

Number = Union[int, float]

RE_SCENARIO_PREFIX = re.compile(r"^SC_\d+_")
RE_NON_SLUG = re.compile(r"[^a-z0-9]+")
RE_PUNCTUATION = re.compile(r"[^\w\s]|_")
RE_PLACEHOLDER = re.compile(r"\{\{([A-Z0-9_]+)\}\}")


# -----------------------------------------------
# Formatting helpers
# -----------------------------------------------
def esc(value) -> str:
    """HTML-escape any value (None renders as an empty string)."""
    return html.escape("" if value is None else str(value), quote=True)


def fmt(value) -> str:
    """Format a number with thousands separators; None renders as an em dash."""
    if value is None:
        return "—"
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, int):
        return f"{value:,}"
    if isinstance(value, float):
        if not math.isfinite(value):
            return str(value)
        if value.is_integer():
            return f"{int(value):,}"
        return f"{value:,.3f}".rstrip("0").rstrip(".")
    return str(value)


def pct(num: Number, den: Number) -> int:
    """Integer percentage, 0 when the denominator is 0."""
    if not den:
        return 0
    return int(round_half_up(100 * num / den))


def pct_str(num: Number, den: Number) -> str:
    return f"{pct(num, den)}%"


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (Python's round() is banker's rounding)."""
    return int(math.floor(value + 0.5))


def pretty_name(name: Optional[str]) -> str:
    """
    Human-friendly display form of a folder or request name.

    Examples:
        >>> pretty_name("SC_01_Get_Invoice")
        'Get Invoice'
        >>> pretty_name("")
        'Untitled'
    """
    cleaned = RE_SCENARIO_PREFIX.sub("", str(name or "")).replace("_", " ").strip()
    return cleaned or "Untitled"


def sort_key(name: Optional[str]) -> str:
    """Punctuation-stripped, case-insensitive sort key of the pretty name."""
    stripped = RE_PUNCTUATION.sub("", pretty_name(name))
    return " ".join(stripped.split()).casefold()


def slugify(value: Optional[str]) -> str:
    """
    Compact identifier used for element ids.

    Examples:
        >>> slugify("Get Invoice-1")
        'get-invoice-1'
    """
    return RE_NON_SLUG.sub("-", str(value or "").lower()).strip("-")


# -----------------------------------------------
# Template rendering
# -----------------------------------------------
def render_template(template: str, context: Dict) -> str:
    """
    Render template with context using {{}} placeholders.

    Substitution is a single pass, so placeholder-looking text inside a
    substituted value is left alone. Unknown placeholders are kept as-is.
    """
    def _replace(match):
        key = match.group(1)
        return str(context[key]) if key in context else match.group(0)

    return RE_PLACEHOLDER.sub(_replace, template)


# -----------------------------------------------
# Assertion text classification
# -----------------------------------------------
def normalize_markup_text(text: Optional[str]) -> str:
    """
    HTML-unescape text until it stops changing.

    Assertion text can reach us raw (run JSON), escaped once (rendered
    document) or escaped twice (copied between documents); all three
    normalize to the same literal string.
    """
    current = "" if text is None else str(text)
    for _ in range(5):
        unescaped = html.unescape(current)
        if unescaped == current:
            break
        current = unescaped
    return current


@lru_cache(maxsize=32)
def marker_pattern(marker: str) -> "re.Pattern":
    """Whitespace-tolerant, case-insensitive pattern for a marker sequence."""
    tokens = [re.escape(tok) for tok in str(marker).split()]
    if not tokens:
        raise ValueError("Marker must contain at least one non-whitespace character.")
    return re.compile(r"\s*".join(tokens), re.IGNORECASE)


def contains_soft_failure(text: Optional[str], marker: str) -> bool:
    """
    True when text carries the soft-failure marker in literal or escaped form.

    Examples:
        >>> contains_soft_failure("Body schema + --> Failing", "+ --> Failing")
        True
        >>> contains_soft_failure("+ --&gt; Failing", "+ --> Failing")
        True
        >>> contains_soft_failure("Failing", "+ --> Failing")
        False
    """
    if not text:
        return False
    return marker_pattern(marker).search(normalize_markup_text(text)) is not None


@lru_cache(maxsize=8)
def _skip_pattern(marker: str) -> "re.Pattern":
    return re.compile(r"\b" + re.escape(marker) + r"\b", re.IGNORECASE)


def contains_skip_marker(text: Optional[str], marker: str = "skip") -> bool:
    """True when text contains the skip marker as a whole word (case-insensitive)."""
    if not text:
        return False
    return _skip_pattern(marker).search(str(text)) is not None
