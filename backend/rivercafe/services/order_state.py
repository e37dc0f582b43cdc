"""Order status rules.

Pure functions over anything exposing ``qty`` and ``prepared_count``; no
database access, so they can be unit-tested in isolation.

Derived status:
    prepared == 0            -> placed
    0 < prepared < total     -> preparing
    prepared >= total        -> ready

``collected`` and ``cancelled`` are terminal; neither the derived rule nor
an explicit override may move an order out of them.
"""

from typing import Any, Iterable, Optional, Sequence, Tuple

from rivercafe.core.errors import InvalidState, InvalidStatus
from rivercafe.models.order import TERMINAL_STATUSES, OrderStatus, item_name_key


def totals(items: Iterable[Any]) -> Tuple[int, int]:
    """Return ``(prepared, ordered)`` unit counts."""
    prepared = ordered = 0
    for item in items:
        prepared += item.prepared_count or 0
        ordered += item.qty
    return prepared, ordered


def status_for_counts(prepared: int, ordered: int) -> OrderStatus:
    if prepared <= 0:
        return OrderStatus.PLACED
    if prepared < ordered:
        return OrderStatus.PREPARING
    return OrderStatus.READY


def derive_status(items: Iterable[Any]) -> OrderStatus:
    return status_for_counts(*totals(items))


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def parse_status(value: Any) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidStatus(f"Unknown order status: {value}")


def check_override(current: OrderStatus, target: Any) -> OrderStatus:
    """Validate an explicit status change and return the target status.

    Any known status may be set while the order is live; terminal orders
    reject every override.
    """
    target_status = parse_status(target)
    if is_terminal(current):
        raise InvalidState(
            f"Order is already {current.value}", extra={"status": current.value}
        )
    return target_status


def name_key(name: Optional[str]) -> str:
    return item_name_key(name)


def next_to_prepare(items: Sequence[Any], product_key: Optional[str] = None) -> Optional[Any]:
    """First item in line order with units left to prepare."""
    for item in items:
        if product_key is not None and name_key(item.name) != product_key:
            continue
        if (item.prepared_count or 0) < item.qty:
            return item
    return None


def next_to_unprepare(items: Sequence[Any], product_key: Optional[str] = None) -> Optional[Any]:
    """Last item in line order with prepared units."""
    for item in reversed(items):
        if product_key is not None and name_key(item.name) != product_key:
            continue
        if (item.prepared_count or 0) > 0:
            return item
    return None
