"""
Line item helpers shared by the cart, kitchen and billing services.
"""

from typing import Callable, Optional, Sequence

from tableside.models import ItemStatus
from tableside.schemas import MenuItem, OrderItem


def merge_line(
    items: Sequence[OrderItem],
    menu_item: MenuItem,
    quantity: int,
) -> list[OrderItem]:
    """
    Add ``quantity`` of ``menu_item`` to a line list.

    A Pending line for the same menu item absorbs the quantity; otherwise a
    new Pending line is appended with the menu price captured now. Lines
    already preparing or served are never touched.
    """
    merged = [item.model_copy() for item in items]
    for index, line in enumerate(merged):
        if line.item_id == menu_item.id and line.status == ItemStatus.PENDING:
            merged[index] = line.model_copy(update={"quantity": line.quantity + quantity})
            return merged

    merged.append(
        OrderItem(
            item_id=menu_item.id,
            name=menu_item.name,
            price=menu_item.price,
            quantity=quantity,
            status=ItemStatus.PENDING,
        )
    )
    return merged


def locate_line(
    items: Sequence[OrderItem],
    ref: str,
    prefer: Optional[Callable[[OrderItem], bool]] = None,
) -> Optional[OrderItem]:
    """
    Find a line by its ``line_id``, falling back to the menu ``item_id``.

    When several lines share the menu item, the first one satisfying
    ``prefer`` wins, else the first match.
    """
    for line in items:
        if line.line_id == ref:
            return line

    matches = [line for line in items if line.item_id == ref]
    if prefer is not None:
        for line in matches:
            if prefer(line):
                return line
    return matches[0] if matches else None


def replace_line(items: Sequence[OrderItem], updated: OrderItem) -> list[OrderItem]:
    return [updated if line.line_id == updated.line_id else line for line in items]
