"""
Structured Response Parser
==========================
Coerces free-text model output into a validated record. The only recovery
applied is trimming to the outermost braces, which strips code fences and
chatter around the JSON. Anything else is reported, never guessed at.
"""

import json
import logging
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import ParseError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def extract_json_object(raw_text: str) -> Dict[str, Any]:
    """Decode the text between the first '{' and the last '}' (inclusive)."""
    if raw_text is None:
        raise ParseError("Empty model output", "")

    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise ParseError("No JSON object found in model output", raw_text)

    candidate = raw_text[start:end + 1]
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in model output: {e}", raw_text) from e

    if not isinstance(data, dict):
        raise ParseError("Model output is not a JSON object", raw_text)
    return data


def parse_structured(raw_text: str, response_model: Type[T]) -> T:
    """Extract and validate a record against `response_model`. Missing required fields are a ParseError."""
    data = extract_json_object(raw_text)
    try:
        return response_model.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Raw response: {raw_text}")
        raise ParseError(f"Model output does not match {response_model.__name__}: {e.error_count()} error(s)", raw_text) from e
