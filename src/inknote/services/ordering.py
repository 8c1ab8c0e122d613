"""Fractional order values.

Siblings (categories of a notebook, notes of a notebook) are totally
ordered by a float ``order``. Inserting between two siblings takes the
midpoint of their orders, so a move rewrites one row. Repeated bisection
eventually exhausts float precision; ``get_order_number`` then reports "no
room" by returning None and the caller decides how to make space.
"""
from typing import List, Optional

ORDER_STEP = 1000.0


def get_order_number(
    min: Optional[float] = None,
    max: Optional[float] = None,
    step: float = ORDER_STEP,
) -> Optional[float]:
    """Compute an order value strictly between ``min`` and ``max``.

    Args:
        min: Lower bound, exclusive. None when there is no lower neighbour.
        max: Upper bound, exclusive. None when there is no upper neighbour.
        step: Offset used when only one bound is given, and the value
            returned when neither is.

    Returns:
        The new order, or None when no float distinct from both bounds
        lies between them.

    Examples:
        >>> get_order_number(1000.0, 3000.0)
        2000.0
        >>> get_order_number(min=1000.0)
        2000.0
        >>> get_order_number(1.0, 1.0000000000000002) is None
        True
    """
    if min is None and max is None:
        return step
    if max is None:
        value = min + step
        return value if value > min else None
    if min is None:
        value = max - step
        return value if value < max else None
    if not min < max:
        return None
    value = min + (max - min) / 2
    if min < value < max:
        return value
    return None


def normalize_order_list(count: int, step: float = ORDER_STEP) -> List[float]:
    """Return ``count`` evenly spaced orders: step, 2*step, ...

    Used to renumber a whole sibling list once bisection has fragmented it.
    """
    if count < 0:
        raise ValueError("count must be non-negative")
    return [step * (index + 1) for index in range(count)]
