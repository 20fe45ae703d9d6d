"""
Category taxonomy accessor.

The taxonomy is shared, read-mostly reference data. It is loaded once
per session and served from memory until invalidated.
"""

from typing import Optional

import structlog

from familyspend.errors import LoadError
from familyspend.models.finance import Category
from familyspend.services.storage import CategoryStorageInterface, StorageError


logger = structlog.get_logger(__name__)


def match_category(text: Optional[str], categories: list[Category]) -> Optional[Category]:
    """
    Resolve free category text to a taxonomy entry.

    Case-insensitive containment in either direction: the category name
    inside the text ("Food" in "Fast food") or the text inside the name
    ("groceries" in "Groceries & Household"). The first match in taxonomy
    order wins.
    """
    if not text:
        return None
    needle = text.strip().lower()
    if not needle:
        return None

    for category in categories:
        name = category.name.lower()
        if name in needle or needle in name:
            return category
    return None


class CategoryTaxonomy:
    """Session cache in front of category storage."""

    def __init__(self, storage: CategoryStorageInterface):
        self._storage = storage
        self._categories: Optional[list[Category]] = None

    async def get_categories(self, force_refresh: bool = False) -> list[Category]:
        """
        All categories, broad levels first.

        Raises:
            LoadError: The taxonomy could not be loaded
        """
        if self._categories is not None and not force_refresh:
            return list(self._categories)

        try:
            categories = await self._storage.list_categories()
        except StorageError as e:
            logger.warning("category_load_failed", error=str(e))
            raise LoadError(f"Could not load categories: {e}")

        self._categories = categories
        logger.debug("categories_loaded", count=len(categories))
        return list(categories)

    def invalidate(self) -> None:
        self._categories = None

    async def match(self, text: Optional[str]) -> Optional[Category]:
        return match_category(text, await self.get_categories())
