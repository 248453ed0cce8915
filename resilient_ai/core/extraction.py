"""
JSON object extraction from free-form model output.

Models wrap the requested JSON in prose or code fences, and sometimes stop
mid-object. The scanner walks the text tracking brace depth, skipping braces
inside string literals, and only accepts a block whose braces balance and
which decodes as a JSON object.
"""

import json
from typing import Any, Dict, Iterator, Optional, Tuple


def iter_balanced_blocks(text: str) -> Iterator[Tuple[int, int]]:
    """Yield ``(start, end)`` spans of balanced top-level ``{...}`` blocks.

    A block that never closes ends the scan; a truncated object is not
    returned as a shorter one.
    """
    i = 0
    length = len(text)
    while i < length:
        start = text.find("{", i)
        if start < 0:
            return
        depth = 0
        in_string = False
        escaped = False
        end = None
        for j in range(start, length):
            ch = text[j]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = j + 1
                    break
        if end is None:
            return
        yield start, end
        i = end


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return the first balanced block in text that decodes to a JSON object.

    Args:
        text: Raw model output

    Returns:
        The decoded object, or None when no balanced, valid object exists
    """
    if not text:
        return None
    for start, end in iter_balanced_blocks(text):
        try:
            value = json.loads(text[start:end])
        except ValueError:
            # prose like "{note}" before the payload; try the next block
            continue
        if isinstance(value, dict):
            return value
    return None
