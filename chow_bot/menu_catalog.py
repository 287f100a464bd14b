"""
Menu catalog: read-mostly lookups over the seeded menu.

Items are immutable after seeding except for their availability flag.
Cart lines snapshot name and price at add time, so catalog edits never
change historical orders.
"""

import logging
from typing import List, Optional, Sequence, Set

from .errors import NotFound
from .storage.base import MenuItemRecord, StorageBackend

logger = logging.getLogger(__name__)


DEFAULT_MENU = [
    {
        "name": "Jollof Rice with Chicken",
        "description": "Traditional Nigerian jollof rice served with grilled chicken",
        "price": 2500,
        "category": "Main Course",
    },
    {
        "name": "Pounded Yam with Egusi Soup",
        "description": "Soft pounded yam with melon seed soup",
        "price": 2200,
        "category": "Main Course",
    },
    {
        "name": "Fried Rice with Beef",
        "description": "Special fried rice with tender beef pieces",
        "price": 2300,
        "category": "Main Course",
    },
    {
        "name": "Pepper Soup",
        "description": "Spicy assorted meat pepper soup",
        "price": 1500,
        "category": "Starter",
    },
    {
        "name": "Chapman Drink",
        "description": "Refreshing Nigerian cocktail",
        "price": 800,
        "category": "Drinks",
    },
    {
        "name": "Chocolate Cake",
        "description": "Rich chocolate cake slice",
        "price": 1200,
        "category": "Dessert",
    },
]


def seed_menu(storage: StorageBackend, items: Sequence[dict] = DEFAULT_MENU) -> int:
    """
    Insert ``items`` if the catalog is empty.

    Returns the number of inserted items; 0 when the catalog was already
    populated.
    """
    existing = storage.count_menu_items()
    if existing > 0:
        logger.info("Menu already has %d items, skipping seed", existing)
        return 0

    created = storage.add_menu_items(items)
    logger.info("Seeded %d menu items", len(created))
    return len(created)


class MenuCatalog:
    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def list_categories(self) -> Set[str]:
        return set(self.storage.list_categories())

    def sorted_categories(self) -> List[str]:
        return sorted(self.list_categories())

    def list_items(self, category: Optional[str] = None) -> List[MenuItemRecord]:
        """Available items, ordered by name then id."""
        return self.storage.list_menu_items(category=category, available_only=True)

    def get_item(self, item_id: int) -> MenuItemRecord:
        item = self.storage.get_menu_item(item_id)
        if item is None:
            raise NotFound("Menu item", item_id)
        return item

    def set_availability(self, item_id: int, available: bool) -> MenuItemRecord:
        item = self.storage.set_menu_item_availability(item_id, available)
        if item is None:
            raise NotFound("Menu item", item_id)
        logger.info("Menu item #%d availability set to %s", item_id, available)
        return item
