"""
Family Spend Tracker - Core Package

The data core of a personal/family receipt tracker: account scoping,
family membership, AI receipt ingestion, spending aggregation and
receipt/item mutation over a hosted Supabase backend.

DESIGN PRINCIPLES:
1. AI suggests → Human reviews → Core persists
2. Fail early, fail visibly
3. No silent corrections, no "$0 spent" for a failed load
4. Every query is scoped to an explicit account
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Family Spend Tracker Team"
