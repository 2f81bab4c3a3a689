"""Shared utilities for parsing LLM responses."""

from __future__ import annotations

import json
from typing import Any, Optional


def _strip_fences(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = [l for l in lines if not l.strip().startswith("```")]
        text = "\n".join(lines)
    return text


def _loads_between(raw: str, open_char: str, close_char: str) -> Optional[Any]:
    start = raw.find(open_char)
    end = raw.rfind(close_char) + 1
    if start >= 0 and end > start:
        try:
            return json.loads(raw[start:end])
        except json.JSONDecodeError:
            pass
    return None


def parse_llm_json(raw: str) -> dict:
    """Parse a JSON object from an LLM response, handling code fences and preamble text.

    Tries in order:
    1. Strip markdown code fences, then json.loads
    2. Extract substring between first '{' and last '}', then json.loads
    3. Return empty dict
    """
    if not raw:
        return {}

    try:
        data = json.loads(_strip_fences(raw))
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    data = _loads_between(raw, "{", "}")
    return data if isinstance(data, dict) else {}


def parse_llm_json_array(raw: str) -> Optional[list]:
    """Parse a JSON array from an LLM response.

    A bare object is treated as a one-element array, and an object wrapping a
    single list value (``{"speech_acts": [...]}``) is unwrapped. Returns None
    when nothing parseable is found, so callers can tell "no items" from
    "garbage".
    """
    if not raw:
        return None

    text = _strip_fences(raw)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = _loads_between(raw, "[", "]")
        if data is None:
            data = _loads_between(raw, "{", "}")

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        lists = [v for v in data.values() if isinstance(v, list)]
        if len(lists) == 1:
            return lists[0]
        return [data]
    return None
