"""
Base Contracts and Shared Types

These are the foundational types used across all components.
All types here are IMMUTABLE and represent pure data.
No behavior beyond construction checks, no side effects.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all components
- Components may import types but MUST NOT modify this module
- All types are frozen dataclasses for immutability guarantee
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, Optional, Tuple
from enum import Enum, auto


# Identity aliases. Facts use integer ids from a never-reused counter,
# clusters and relationships use prefixed string ids.
FactId = int
ClusterId = str
RelationshipId = str


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    No silent fallbacks - every error state is enumerated.
    """
    # Structural validation errors
    MISSING_PRIMARY = auto()
    MULTIPLE_PRIMARIES = auto()
    DANGLING_RELATIONSHIP = auto()
    CYCLE_DETECTED = auto()
    SELF_LOOP = auto()
    UNKNOWN_ID = auto()
    INVALID_ROLE = auto()
    INVALID_METADATA = auto()
    DUPLICATE_REFERENCE = auto()
    SELF_MERGE = auto()
    MEMBERSHIP_MISMATCH = auto()

    # Propagation errors
    DIVISION_BY_ZERO = auto()
    UNPARSEABLE_VALUE = auto()
    INACTIVE_CLUSTER = auto()
    INVALID_CLUSTER = auto()


VALIDATION_CODES: FrozenSet[ErrorCode] = frozenset({
    ErrorCode.MISSING_PRIMARY,
    ErrorCode.MULTIPLE_PRIMARIES,
    ErrorCode.DANGLING_RELATIONSHIP,
    ErrorCode.CYCLE_DETECTED,
    ErrorCode.SELF_LOOP,
    ErrorCode.UNKNOWN_ID,
    ErrorCode.INVALID_ROLE,
    ErrorCode.INVALID_METADATA,
    ErrorCode.DUPLICATE_REFERENCE,
    ErrorCode.SELF_MERGE,
    ErrorCode.MEMBERSHIP_MISMATCH,
})

PROPAGATION_CODES: FrozenSet[ErrorCode] = frozenset({
    ErrorCode.DIVISION_BY_ZERO,
    ErrorCode.UNPARSEABLE_VALUE,
    ErrorCode.INACTIVE_CLUSTER,
    ErrorCode.INVALID_CLUSTER,
})


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and queried.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def context_value(self, key: str) -> Optional[str]:
        """First context value recorded under ``key``."""
        for k, v in self.context:
            if k == key:
                return v
        return None

    @property
    def is_validation(self) -> bool:
        return self.code in VALIDATION_CODES

    @property
    def is_propagation(self) -> bool:
        return self.code in PROPAGATION_CODES

    @staticmethod
    def create(code: ErrorCode, message: str, **context: object) -> Error:
        """Build an error stamped now, with context pairs from keywords."""
        return Error(
            code=code,
            message=message,
            timestamp=datetime.now(timezone.utc),
            context=tuple((key, str(value)) for key, value in context.items())
        )


@dataclass(frozen=True)
class Result:
    """
    Generic result type for operations that can fail.
    Either contains a value OR an error, never both.
    """
    value: Optional[object] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: object) -> Result:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: Error) -> Result:
        return Result(value=None, error=error)


@dataclass(frozen=True)
class Violation:
    """
    One structural invariant violation found by a read-only check.

    Carries the offending ids so callers can branch without parsing text.
    """
    code: ErrorCode
    message: str
    fact_ids: Tuple[FactId, ...] = field(default_factory=tuple)
    relationship_ids: Tuple[RelationshipId, ...] = field(default_factory=tuple)


# =============================================================================
# TEMPORAL TYPES (Immutable, explicit semantics)
# =============================================================================

@dataclass(frozen=True)
class Timestamp:
    """
    Immutable timestamp with explicit semantics.
    All timestamps are UTC, never local time.
    """
    value: datetime

    def __post_init__(self):
        # Ensure UTC timezone
        if self.value.tzinfo is None:
            object.__setattr__(self, 'value', self.value.replace(tzinfo=timezone.utc))

    @staticmethod
    def now() -> Timestamp:
        return Timestamp(value=datetime.now(timezone.utc))

    @staticmethod
    def from_iso(iso_string: str) -> Timestamp:
        dt = datetime.fromisoformat(iso_string.replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return Timestamp(value=dt)

    def to_iso(self) -> str:
        return self.value.isoformat()


# =============================================================================
# CLASSIFICATION ENUMS (Explicit, no implicit states)
# =============================================================================

class FactRole(Enum):
    """
    Role of a fact within its cluster.

    PRIMARY facts are supplied externally, DEPENDENT facts are derived
    by propagation, STANDALONE facts belong to no cluster.
    """
    PRIMARY = "primary"
    DEPENDENT = "dependent"
    STANDALONE = "standalone"


class Confidence(Enum):
    """Informational confidence level of an extracted fact."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RelationshipType(Enum):
    """
    Recomputation rule applied along a relationship edge.
    No implicit relationships - all must be explicitly typed.
    """
    PERCENTAGE_CHANGE = "percentage_change"
    DIRECTION = "direction"
    COMPARISON = "comparison"
    REFERENCE_POINT = "reference_point"


def id_sort_key(identifier: str) -> Tuple[str, int, str]:
    """Order prefixed ids numerically, so ``rel_10`` sorts after ``rel_9``."""
    prefix, _, number = identifier.rpartition("_")
    if number.isdigit():
        return (prefix, int(number), "")
    return (identifier, -1, identifier)
