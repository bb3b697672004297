"""Helpers for reading structured output out of LLM responses."""

from __future__ import annotations

import json
import re
from typing import Any, Dict

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\s*$")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def parse_llm_json(raw: str) -> Dict[str, Any]:
    """Parse a JSON object from an LLM response.

    Tries the text with markdown code fences removed, then the outermost
    ``{...}`` span of the raw response. Anything that does not decode to a
    JSON object yields an empty dict.
    """
    if not raw:
        return {}

    unfenced = "\n".join(line for line in raw.splitlines() if not _FENCE_RE.match(line))
    candidates = [unfenced]
    match = _OBJECT_RE.search(raw)
    if match:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    return {}
