"""
Bounded long sum.
Shared accumulation rule for the map-side combiner and the reducer:
result(key) = bound(sum(values)), clamped to the signed 64-bit range.
"""

import logging
from enum import Enum
from typing import Iterable, Iterator, Optional, Tuple

from traitor.common.errors import BoundedSumOverflowError

logger = logging.getLogger(__name__)

INT64_MAX = (1 << 63) - 1
INT64_MIN = -(1 << 63)


class OverflowPolicy(Enum):
    """What the reducer does with a sum outside the int64 range"""
    SATURATE = "saturate"
    REJECT = "reject"
    DROP = "drop"


def bound(value: int) -> int:
    """Clamp an integer to [INT64_MIN, INT64_MAX]."""
    if value > INT64_MAX:
        return INT64_MAX
    if value < INT64_MIN:
        return INT64_MIN
    return value


def saturating_add(a: int, b: int) -> int:
    """Add two int64 values, saturating instead of wrapping."""
    return bound(a + b)


def combine_values(values: Iterable[int]) -> int:
    """
    Combiner step: exact partial sum of one key's local values.

    Partials are kept exact so that combining any grouping of the values
    and then reducing gives the same answer as reducing them directly,
    including inputs that would saturate along the way.
    """
    total = 0
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"Expected integer value, got {type(value).__name__}")
        total += value
    return total


def reduce_values(key: str, values: Iterable[int],
                  policy: OverflowPolicy = OverflowPolicy.SATURATE) -> Optional[int]:
    """
    Reducer step: bounded sum of every value seen for a key.

    Returns None when the key must not be emitted (DROP policy).

    Raises:
        BoundedSumOverflowError: sum out of range under the REJECT policy
    """
    total = combine_values(values)
    clamped = bound(total)
    if clamped == total:
        return total

    if policy is OverflowPolicy.REJECT:
        raise BoundedSumOverflowError(key, total)
    if policy is OverflowPolicy.DROP:
        logger.warning(f"Dropping key {key!r}: sum {total} overflows int64")
        return None
    logger.warning(f"Saturating key {key!r}: sum {total} clamped to {clamped}")
    return clamped


def combiner_function(key: str, values: Iterable[int]) -> Iterator[Tuple[str, int]]:
    """Combiner in (key, values) -> pairs form; emits one exact partial."""
    yield (key, combine_values(values))


def reducer_function(key: str, values: Iterable[int],
                     policy: OverflowPolicy = OverflowPolicy.SATURATE) -> Iterator[Tuple[str, int]]:
    """Reducer in (key, values) -> pairs form; emits at most one bounded sum."""
    result = reduce_values(key, values, policy)
    if result is not None:
        yield (key, result)
