"""Single entry point for parsing structured (JSON) output from model responses."""

from __future__ import annotations

import json
import logging
import re
from typing import Callable, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .error_handler import ParseError

LOGGER = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json_block(text: str) -> Optional[str]:
    """Return the JSON payload embedded in free text, if any.

    Prefers a fenced ```json block; otherwise takes the span from the first
    ``{`` to the last ``}``.
    """
    if not text:
        return None

    fenced = _FENCE_RE.search(text)
    if fenced:
        candidate = fenced.group(1).strip()
        if candidate:
            return candidate

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def parse_structured(text: str, model: Type[M]) -> M:
    """Decode ``text`` and validate it against ``model``.

    Raises:
        ParseError: when no JSON is present, it does not decode, or it fails
            schema validation
    """
    block = extract_json_block(text)
    if block is None:
        raise ParseError("No JSON object found in response", raw=text)

    try:
        payload = json.loads(block)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in response: {e}", raw=text) from e

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ParseError(f"Response does not match {model.__name__}: {e}", raw=text) from e


def parse_with_fallback(text: str, model: Type[M], fallback: Callable[[], M]) -> Tuple[M, bool]:
    """Parse ``text`` or fall back to ``fallback()``.

    Returns:
        Tuple of (value, used_fallback)
    """
    try:
        return parse_structured(text, model), False
    except ParseError as e:
        LOGGER.warning(f"Structured parse failed, using fallback: {e}")
        return fallback(), True
