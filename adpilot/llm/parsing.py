"""Parsing helpers for JSON replies from the reasoning service."""

from __future__ import annotations

from typing import Any

import orjson

from adpilot.exceptions import ReasoningUnavailableError


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding ```json ... ``` block if present."""
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_json(raw: str | None) -> Any:
    """Decode a model reply as JSON.

    Falls back to the outermost {...} or [...] span when the model wraps
    the payload in prose. Raises ReasoningUnavailableError on anything
    that still does not decode (including truncated output).
    """
    if not raw:
        raise ReasoningUnavailableError("Empty response")

    text = strip_code_fences(raw)
    try:
        return orjson.loads(text)
    except orjson.JSONDecodeError:
        pass

    for open_ch, close_ch in (("{", "}"), ("[", "]")):
        start = text.find(open_ch)
        end = text.rfind(close_ch)
        if start != -1 and end > start:
            try:
                return orjson.loads(text[start:end + 1])
            except orjson.JSONDecodeError:
                continue

    raise ReasoningUnavailableError(f"Unparseable response: {text[:120]!r}")


def parse_json_list(raw: str | None, key: str) -> list[dict[str, Any]]:
    """Decode a reply that is either a bare list or an object holding one under `key`."""
    data = parse_json(raw)
    if isinstance(data, dict):
        data = data.get(key, [])
    if not isinstance(data, list):
        raise ReasoningUnavailableError(f"Expected a list under {key!r}")
    return [item for item in data if isinstance(item, dict)]
