"""
call_parser.py

Turns raw backend text into a CapabilityCall, or None.

The backend is asked to answer with a bare JSON object, but models wrap it in
prose, <think> blocks and code fences. Extraction runs in this order:

1. drop every <think>...</think> block (an unclosed <think> drops the rest)
2. take the interior of a ```json fence, else of any fence, else the full text
3. cut from the first "{" to the last "}"
4. "NONE" / "null" / empty means no call
5. json.loads
6. the object must carry the name of a known capability

Anything ambiguous resolves to None. parse_capability_call() never raises.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from kpc_assistant.core.capability import CapabilityCall
from kpc_assistant.core.capability_registry import CapabilityCatalog
from kpc_assistant.core.errors import ParseError

logger = logging.getLogger(__name__)

NO_CALL_TOKENS = ("none", "null")

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.S | re.I)
_THINK_OPEN = re.compile(r"<think>", re.I)
_JSON_FENCE = re.compile(r"```json\s*(.*?)```", re.S | re.I)
_ANY_FENCE = re.compile(r"```[\w-]*\s*(.*?)```", re.S)


def strip_think_blocks(text: str) -> str:
    text = _THINK_BLOCK.sub("", text)
    unclosed = _THINK_OPEN.search(text)
    if unclosed:
        text = text[:unclosed.start()]
    return text


def extract_fenced(text: str) -> str:
    match = _JSON_FENCE.search(text) or _ANY_FENCE.search(text)
    if match:
        return match.group(1)
    return text


def extract_candidate(text: str) -> str:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        return text.strip()
    return text[start:end + 1].strip()


def _decode_call(raw_text: Any, catalog: CapabilityCatalog) -> Optional[CapabilityCall]:
    if not isinstance(raw_text, str):
        raise ParseError(f"expected text, got {type(raw_text).__name__}")

    candidate = extract_candidate(extract_fenced(strip_think_blocks(raw_text)))
    if not candidate or candidate.lower() in NO_CALL_TOKENS:
        return None

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ParseError(f"candidate is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ParseError("candidate is not a JSON object")

    descriptor = catalog.resolve(data.get("name"))
    if descriptor is None:
        raise ParseError(f"unknown capability name: {data.get('name')!r}")

    arguments = data.get("arguments")
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise ParseError("arguments is not a JSON object")

    return CapabilityCall(name=descriptor.name, arguments=arguments)


def parse_capability_call(raw_text: Any, catalog: CapabilityCatalog) -> Optional[CapabilityCall]:
    try:
        return _decode_call(raw_text, catalog)
    except ParseError as exc:
        logger.debug("No capability call in backend output: %s", exc.details)
        return None
