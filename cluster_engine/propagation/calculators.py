"""
Recomputation Rules
===================

One calculator per RelationshipType. Each is a pure function of an
EdgeInput and the PropagationConfig and returns a Result holding an
EdgeOutcome (or a per-edge Error).

Numbers are parsed and rendered locale-agnostically: period decimal
separator, thousands separators stripped on input and never emitted.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
import re

from ..contracts.base import Error, ErrorCode, Result, RelationshipType


# Optional sign, optional currency symbol, then digits with optional
# thousands separators and fraction
NUMBER_PATTERN = re.compile(r"(?P<sign>-)?\s*[$€£]?\s*(?P<digits>\d[\d,]*(?:\.\d+)?|\.\d+)")

# (rising word, falling word); first match in the target text wins
DIRECTION_PAIRS: Tuple[Tuple[str, str], ...] = (
    ("up", "down"),
    ("rose", "fell"),
    ("rising", "falling"),
    ("increased", "decreased"),
    ("gained", "lost"),
    ("grew", "declined"),
)

# (word for a positive delta, word for a negative delta)
COMPARISON_PAIRS: Tuple[Tuple[str, str], ...] = (
    ("warmer", "cooler"),
    ("hotter", "colder"),
    ("higher", "lower"),
    ("greater", "less"),
    ("more", "fewer"),
    ("above", "below"),
    ("up", "down"),
)


@dataclass
class PropagationConfig:
    """Rendering options for recomputed values."""
    percentage_decimals: int = 1
    comparison_equal_text: str = "the same"
    comparison_default_pair: Tuple[str, str] = ("higher", "lower")
    direction_up: str = "up"
    direction_down: str = "down"


@dataclass(frozen=True)
class EdgeInput:
    """
    Everything one edge evaluation may read.

    ``source_old`` / ``source_new`` are the source fact's values before
    and after the current pass; ``target_value`` is the target's value
    as accumulated so far in this pass.
    """
    source_old: str
    source_new: str
    target_value: str
    reference_value: Optional[str] = None
    anchor_value: Optional[str] = None


@dataclass(frozen=True)
class EdgeOutcome:
    """
    Result of one edge evaluation.

    ``value`` is None when the target keeps its current value.
    """
    value: Optional[str]
    anchor_value: Optional[str] = None


# =============================================================================
# PARSING & FORMATTING
# =============================================================================

def parse_number(text: str) -> Optional[float]:
    """First number in ``text`` ("$1,257.75" -> 1257.75), or None."""
    match = NUMBER_PATTERN.search(text or "")
    if match is None:
        return None
    number = float(match.group("digits").replace(",", ""))
    return -number if match.group("sign") else number


def format_fixed(number: float, decimals: int) -> str:
    rounded = round(number, decimals) + 0.0  # folds -0.0 into 0.0
    return f"{rounded:.{decimals}f}"


def format_magnitude(number: float) -> str:
    """Whole numbers without decimals, everything else with one."""
    magnitude = abs(number)
    if magnitude == int(magnitude):
        return str(int(magnitude))
    return format_fixed(magnitude, 1)


def _find_word(text: str, words: Tuple[str, ...]) -> Optional[re.Match]:
    pattern = r"\b(" + "|".join(re.escape(w) for w in words) + r")\b"
    return re.search(pattern, text, re.IGNORECASE)


def _match_case(word: str, template: str) -> str:
    if template.isupper() and len(template) > 1:
        return word.upper()
    if template[:1].isupper():
        return word[:1].upper() + word[1:]
    return word


def _parse_pair(old: str, new: str) -> Result:
    parsed_old = parse_number(old)
    parsed_new = parse_number(new)
    unparseable = [v for v, p in ((old, parsed_old), (new, parsed_new)) if p is None]
    if unparseable:
        return Result.failure(Error.create(
            ErrorCode.UNPARSEABLE_VALUE,
            f"Not a numeric value: {unparseable[0]!r}",
            value=unparseable[0]
        ))
    return Result.success((parsed_old, parsed_new))


# =============================================================================
# CALCULATORS
# =============================================================================

def percentage_change(edge: EdgeInput, config: PropagationConfig) -> Result:
    """((new - old) / old) * 100 with a ``%`` suffix, signed."""
    parsed = _parse_pair(edge.source_old, edge.source_new)
    if parsed.is_failure:
        return parsed
    old, new = parsed.value

    if old == 0:
        return Result.failure(Error.create(
            ErrorCode.DIVISION_BY_ZERO,
            f"Cannot compute a percentage change from {edge.source_old!r}",
            value=edge.source_old
        ))

    percent = (new - old) / old * 100
    return Result.success(EdgeOutcome(f"{format_fixed(percent, config.percentage_decimals)}%"))


def direction(edge: EdgeInput, config: PropagationConfig) -> Result:
    """
    "up" / "down" by the sign of the source's change; unchanged when equal.

    If the target already uses a known pair ("rose"/"fell", ...) the
    matching word of that pair is substituted in place.
    """
    parsed = _parse_pair(edge.source_old, edge.source_new)
    if parsed.is_failure:
        return parsed
    old, new = parsed.value

    if new == old:
        return Result.success(EdgeOutcome(None))
    rising = new > old

    for up_word, down_word in DIRECTION_PAIRS:
        match = _find_word(edge.target_value, (up_word, down_word))
        if match is not None:
            word = _match_case(up_word if rising else down_word, match.group(0))
            text = edge.target_value[:match.start()] + word + edge.target_value[match.end():]
            return Result.success(EdgeOutcome(text))

    return Result.success(EdgeOutcome(config.direction_up if rising else config.direction_down))


def comparison(edge: EdgeInput, config: PropagationConfig) -> Result:
    """
    Re-render "<delta> <unit> <word>" from the source's new value.

    The delta is measured against the reference fact's value when the
    edge has one, otherwise against the source's previous value. Unit
    and comparison words are reused from the target's current text.
    """
    baseline = edge.reference_value if edge.reference_value is not None else edge.source_old
    parsed = _parse_pair(baseline, edge.source_new)
    if parsed.is_failure:
        return parsed
    base, new = parsed.value

    delta = new - base
    if delta == 0:
        return Result.success(EdgeOutcome(config.comparison_equal_text))

    pair = config.comparison_default_pair
    unit = ""
    target = edge.target_value
    for candidate in COMPARISON_PAIRS:
        match = _find_word(target, candidate)
        if match is not None:
            pair = candidate
            number = NUMBER_PATTERN.search(target[:match.start()])
            if number is not None:
                unit = target[number.end():match.start()].strip()
            break

    word = pair[0] if delta > 0 else pair[1]
    parts = [format_magnitude(delta), unit, word]
    return Result.success(EdgeOutcome(" ".join(p for p in parts if p)))


def reference_point(edge: EdgeInput, config: PropagationConfig) -> Result:
    """Freeze the source's prior value on first use; unchanged afterwards."""
    if edge.anchor_value is not None:
        return Result.success(EdgeOutcome(None, anchor_value=edge.anchor_value))
    return Result.success(EdgeOutcome(edge.source_old, anchor_value=edge.source_old))


CALCULATORS: Dict[RelationshipType, Callable[[EdgeInput, PropagationConfig], Result]] = {
    RelationshipType.PERCENTAGE_CHANGE: percentage_change,
    RelationshipType.DIRECTION: direction,
    RelationshipType.COMPARISON: comparison,
    RelationshipType.REFERENCE_POINT: reference_point,
}


def calculate(
    relationship_type: RelationshipType,
    edge: EdgeInput,
    config: PropagationConfig
) -> Result:
    return CALCULATORS[relationship_type](edge, config)
