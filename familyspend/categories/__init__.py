"""Category taxonomy package."""

from familyspend.categories.taxonomy import CategoryTaxonomy, match_category

__all__ = ["CategoryTaxonomy", "match_category"]
