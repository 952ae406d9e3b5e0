"""
io_guards.py

Shared input/output size guardrails for prompts.

- Utterances are clamped before they are embedded in a backend prompt.
- Capability output is clamped before it is embedded in a synthesis prompt.

Raw capability output handed back to the user is never clamped.
"""

from __future__ import annotations

from typing import Any


MAX_CHAT_INPUT_CHARS = 6000
MAX_TOOL_OUTPUT_CHARS = 8000


def _to_str(text: Any) -> str:
    if isinstance(text, str):
        return text
    return str(text or "")


def clamp_text(text: Any, limit: int, label: str) -> str:
    """
    Clamp text to `limit` characters.

    When clamping happens a short note is appended so the model knows the
    text was cut.
    """
    s = _to_str(text)
    if limit <= 0:
        return s
    if len(s) <= limit:
        return s
    head = s[:limit]
    return head + f"\n\n[{label} truncated]"


def sanitize_chat_input(text: Any) -> str:
    """
    Guardrail for incoming utterances before they reach a prompt.

    - Converts non-strings to string
    - Strips surrounding whitespace
    - Shortens very large inputs
    """
    return clamp_text(_to_str(text).strip(), MAX_CHAT_INPUT_CHARS, "Chat input")


def clamp_tool_output(text: Any) -> str:
    """
    Guardrail for capability results before they go into a synthesis prompt.
    """
    return clamp_text(text, MAX_TOOL_OUTPUT_CHARS, "Tool output")
