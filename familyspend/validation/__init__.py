"""
Validation Package

Parse contract (free model text -> JSON) and validation contract
(JSON -> trusted structure, draft -> review warnings).
"""

from familyspend.validation.parser import (
    NO_PARSE,
    ParseStage,
    find_balanced_object,
    parse_brace_scan,
    parse_defenced,
    parse_model_output,
    parse_strict,
)
from familyspend.validation.validator import ExtractionValidator

__all__ = [
    "NO_PARSE",
    "ParseStage",
    "find_balanced_object",
    "parse_brace_scan",
    "parse_defenced",
    "parse_model_output",
    "parse_strict",
    "ExtractionValidator",
]
