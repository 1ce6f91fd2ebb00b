import json
import re
from typing import Any, Dict, Optional

from shared.errors import MalformedModelOutput

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_YES = re.compile(r"\byes\b", re.IGNORECASE)
_NO = re.compile(r"\bno\b", re.IGNORECASE)


def _first_object(text: str) -> Optional[str]:
    """Return the first balanced {...} block, ignoring braces inside strings."""
    start = text.find("{")
    if start == -1:
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


def extract_json(text: str) -> Dict[str, Any]:
    """Pull a JSON object out of model output that may wrap it in prose or code fences."""
    candidates = [m.group(1) for m in _FENCE.finditer(text or "")]
    candidates.append(text or "")

    for candidate in candidates:
        block = _first_object(candidate)
        if block is None:
            continue
        for attempt in (block, _TRAILING_COMMA.sub(r"\1", block)):
            try:
                value = json.loads(attempt)
            except json.JSONDecodeError:
                continue
            if isinstance(value, dict):
                return value

    raise MalformedModelOutput(
        "response is not a JSON object",
        issues=["Response must be a single valid JSON object"],
    )


def parse_yes_no(text: str) -> Optional[bool]:
    """True for an unambiguous yes, False for an unambiguous no, None otherwise."""
    has_yes = bool(_YES.search(text or ""))
    has_no = bool(_NO.search(text or ""))
    if has_yes and not has_no:
        return True
    if has_no and not has_yes:
        return False
    return None
