"""
Menu lookup and filtering for the voice assistant and the menu API.
"""

from typing import Iterable, Optional

from tableside.schemas import MenuItem


def find_menu_item(menu: Iterable[MenuItem], name: str) -> Optional[MenuItem]:
    """
    Resolve a spoken item name to a menu item.

    Exact (case-insensitive) name matches win over substring matches, so
    "tea" does not resolve to "Iced Tea" when "Tea" exists.
    """
    wanted = (name or "").strip().lower()
    if not wanted:
        return None

    candidates = list(menu)
    for item in candidates:
        if item.name.lower() == wanted:
            return item
    for item in candidates:
        if wanted in item.name.lower():
            return item
    return None


def filter_menu(
    menu: Iterable[MenuItem],
    name: Optional[str] = None,
    category: Optional[str] = None,
    meal_type: Optional[str] = None,
    attribute: Optional[str] = None,
) -> list[MenuItem]:
    """
    Narrow the menu by any combination of filters (all case-insensitive
    substring matches). ``attribute`` ("spicy", "gluten-free") is looked up
    in the description and the name.
    """
    items = list(menu)
    if category:
        items = [i for i in items if category.lower() in i.category.value.lower()]
    if meal_type:
        wanted = meal_type.lower()
        items = [i for i in items if i.type.value.lower() == wanted]
    if name:
        items = [i for i in items if name.lower() in i.name.lower()]
    if attribute:
        wanted = attribute.lower()
        items = [
            i for i in items
            if wanted in i.description.lower() or wanted in i.name.lower()
        ]
    return items
