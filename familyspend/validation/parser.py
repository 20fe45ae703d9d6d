"""
Recovering JSON from free model text.

The vision model is asked for a JSON object but answers in free text, so
the answer is run through a small state machine:

    STRICT -> DEFENCED -> BRACE_SCAN -> FAILED

Each stage is a plain function returning the parsed value or NO_PARSE,
and each can be exercised on its own with literal fixture strings.
Nothing is guessed: when all stages fail the caller gets an
ExtractionParseError carrying the raw text.
"""

import json
import re
from enum import Enum
from typing import Any, Callable, Optional

from familyspend.services.extraction import ExtractionParseError


class ParseStage(str, Enum):
    STRICT = "strict"
    DEFENCED = "defenced"
    BRACE_SCAN = "brace_scan"
    FAILED = "failed"


NO_PARSE = object()

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return NO_PARSE


def parse_strict(text: str) -> Any:
    """Stage 1: the whole response is JSON."""
    return _loads(text.strip())


def parse_defenced(text: str) -> Any:
    """Stage 2: JSON inside the first fenced code block."""
    match = _FENCE_RE.search(text)
    if match is None:
        return NO_PARSE
    return _loads(match.group(1).strip())


def find_balanced_object(text: str) -> Optional[str]:
    """
    First balanced {...} span, or None.

    Braces inside JSON string literals do not count toward depth.
    """
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def parse_brace_scan(text: str) -> Any:
    """Stage 3: the first balanced object embedded in prose."""
    span = find_balanced_object(text)
    if span is None:
        return NO_PARSE
    return _loads(span)


_STAGES: list[tuple[ParseStage, Callable[[str], Any]]] = [
    (ParseStage.STRICT, parse_strict),
    (ParseStage.DEFENCED, parse_defenced),
    (ParseStage.BRACE_SCAN, parse_brace_scan),
]


def parse_model_output(text: str) -> tuple[Any, ParseStage]:
    """
    Run the stages in order and return (value, stage_that_succeeded).

    The value is whatever JSON the stage recovered; checking that it is
    an object is the validator's job.

    Raises:
        ExtractionParseError: No stage recovered JSON
    """
    for stage, parse in _STAGES:
        value = parse(text)
        if value is not NO_PARSE:
            return value, stage

    preview = text.strip()[:80]
    raise ExtractionParseError(
        f"Could not find JSON in the model response: {preview!r}",
        raw_text=text,
    )
