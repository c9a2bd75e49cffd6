"""Structured-payload extraction from free-form backend text.

Models are asked to return a single JSON object, but they often wrap it in
markdown fences or surround it with prose. extract_json() scans the text for
every top-level JSON object and returns the first one that validates against
the requested pydantic model. Objects nested inside another are never tried
alone, so a partly valid payload cannot pass as one of its own fragments.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from social_npc.errors import ParseError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_decoder = json.JSONDecoder()


def _skip_braced(text: str, pos: int) -> int:
    """Index just past the brace group opening at pos, or len(text) if unclosed."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(pos, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return len(text)


def iter_json_objects(text: str) -> Iterator[Any]:
    """Yield every top-level JSON object embedded in text, in order.

    Scanning resumes after the end of each brace group, decoded or not, so
    objects nested inside another one are never candidates on their own. A
    truncated object swallows the rest of the text.
    """
    pos = text.find("{")
    while pos != -1:
        try:
            obj, end = _decoder.raw_decode(text, pos)
        except json.JSONDecodeError:
            end = _skip_braced(text, pos)
        else:
            yield obj
        pos = text.find("{", end)


def extract_json(text: str, model: type[M]) -> M:
    """Return the first JSON object in text that validates as model.

    Raises ParseError when the text holds no JSON object at all, or when
    none of the objects found match the schema.
    """
    if not isinstance(text, str):
        raise ParseError(f"Expected text for {model.__name__}, got {type(text).__name__}")
    last_error: ValidationError | None = None
    found = 0
    for obj in iter_json_objects(text):
        found += 1
        try:
            return model.model_validate(obj)
        except ValidationError as e:
            last_error = e

    if not found:
        logger.debug("no JSON object in response: %r", text[:200])
        raise ParseError(f"No JSON object found for {model.__name__}")
    raise ParseError(
        f"No JSON object matched {model.__name__} "
        f"({found} candidate(s)): {last_error}"
    ) from last_error
