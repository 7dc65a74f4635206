"""Parsing of JSON answers from the completion provider.

Models asked for "strict JSON" still wrap it in Markdown fences, add a
sentence before it, or leave LaTeX backslashes unescaped.  Parsing is a
two-stage strategy:

1. ``json.loads`` on the whole answer.
2. The substring from the first ``{`` to the last ``}``, parsed as is and
   then once more after repairing invalid escape sequences.

Anything else raises :class:`OutputParseError`; no structure is guessed.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from errors import OutputParseError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _fix_invalid_json_escapes(s: str) -> str:
    r"""Fix invalid JSON escape sequences produced by LLMs.

    LaTeX like ``\(x^2\)`` or ``\frac{}{}`` inside JSON strings is not a
    valid JSON escape.  Lone backslashes before non-escape characters are
    doubled.  ``\f``, ``\b``, ``\n``, ``\r`` and ``\t`` followed by 2+
    letters are LaTeX commands (``\frac``, ``\begin``, ``\nabla``,
    ``\right``, ``\theta``), not control characters.
    """
    placeholder = "\x00\x01"
    s = s.replace("\\\\", placeholder)
    s = re.sub(r'\\(?!["\\/bfnrtu])', r"\\\\", s)
    s = re.sub(r"\\([bfnrt])([a-zA-Z]{2,})", r"\\\\\1\2", s)
    return s.replace(placeholder, "\\\\")


def parse_strict_json_or_extract(text: str) -> Any:
    """Parse *text* as JSON, falling back to the outermost ``{...}`` block.

    Raises:
        OutputParseError: If neither stage yields valid JSON.
    """
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        pass

    start = text.find("{") if text else -1
    end = text.rfind("}") if text else -1
    if start == -1 or end <= start:
        raise OutputParseError("No JSON object found in model output", raw_output=text or "")

    candidate = text[start:end + 1]
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(_fix_invalid_json_escapes(candidate))
    except json.JSONDecodeError as exc:
        logger.warning("Unparseable JSON block (len=%d): %.300r", len(candidate), candidate)
        raise OutputParseError(f"Model output is not valid JSON: {exc}", raw_output=text) from exc


def parse_model_output(text: str, model_type: type[ModelT]) -> ModelT:
    """Parse and validate a JSON answer against *model_type*.

    Raises:
        OutputParseError: On unparseable JSON or a shape mismatch.
    """
    data = parse_strict_json_or_extract(text)
    try:
        return model_type.model_validate(data)
    except ValidationError as exc:
        raise OutputParseError(
            f"Model output does not match {model_type.__name__}: {exc.error_count()} error(s)",
            raw_output=text,
        ) from exc
