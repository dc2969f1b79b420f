"""Validators for parsing and validating generative oracle outputs.

Provides utilities for:
- Extracting JSON from oracle responses (with markdown code blocks)
- Repairing truncated or sloppy JSON
- Validating against Pydantic schemas with an explicit fallback value
"""

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F-\x9F]")


# =============================================================================
# JSON Extraction
# =============================================================================


def extract_json_from_response(response: str) -> str | None:
    """Extract JSON from a response that may contain markdown code blocks.

    Handles:
    - ```json ... ``` blocks
    - ``` ... ``` blocks (no language specified)
    - Raw JSON, possibly surrounded by prose
    - Truncated JSON (returned as-is from the opening bracket onward)

    Returns:
        Extracted JSON string, or None if no JSON found.
    """
    if not response:
        return None

    # Code blocks first, so braces in a conversational preamble are ignored
    patterns = [
        r"```json\s*([\s\S]*?)\s*```",  # ```json ... ```
        r"```\s*([\s\S]*?)\s*```",  # ``` ... ```
    ]

    for pattern in patterns:
        matches = re.findall(pattern, response, re.IGNORECASE)
        for match in matches:
            cleaned = match.strip()
            if cleaned.startswith("{"):
                return _extract_balanced_braces(cleaned, "{", "}") or cleaned
            if cleaned.startswith("["):
                return _extract_balanced_braces(cleaned, "[", "]") or cleaned

    # Raw JSON: find the first { or [ and scan to its closing bracket
    starts = [i for i in (response.find("{"), response.find("[")) if i != -1]
    if not starts:
        return None

    start = min(starts)
    text = response[start:]
    if text.startswith("{"):
        return _extract_balanced_braces(text, "{", "}") or text.strip()
    return _extract_balanced_braces(text, "[", "]") or text.strip()


def _extract_balanced_braces(text: str, open_char: str, close_char: str) -> str | None:
    """Extract content with balanced braces from the start of text."""
    if not text.startswith(open_char):
        return None

    depth = 0
    in_string = False
    escape_next = False

    for i, char in enumerate(text):
        if escape_next:
            escape_next = False
            continue

        if char == "\\":
            escape_next = True
            continue

        if char == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return text[: i + 1]

    return None


# =============================================================================
# Repair
# =============================================================================


def escape_control_characters(text: str) -> str:
    """Escape literal newlines/tabs inside JSON strings and drop other control chars."""
    text = _CONTROL_CHARS.sub("", text)

    out: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if escaped:
            out.append(char)
            escaped = False
            continue
        if char == "\\":
            out.append(char)
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            out.append(char)
            continue
        if in_string and char == "\n":
            out.append("\\n")
        elif in_string and char == "\r":
            out.append("\\r")
        elif in_string and char == "\t":
            out.append("\\t")
        else:
            out.append(char)
    return "".join(out)


def repair_truncated_json(text: str) -> str:
    """Close an unterminated string and any open objects/arrays.

    Trailing commas before a closer are dropped.
    """
    repaired = text.strip().rstrip(",").strip()

    stack: list[str] = []
    in_string = False
    escaped = False
    for char in repaired:
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            stack.append("}")
        elif char == "[":
            stack.append("]")
        elif char in "}]" and stack and stack[-1] == char:
            stack.pop()

    if in_string:
        repaired += '"'

    while stack:
        repaired = repaired.rstrip().rstrip(",").rstrip()
        repaired += stack.pop()

    return repaired


def load_json_lenient(response: str) -> tuple[Any | None, list[str]]:
    """Extract and decode JSON, attempting a repair pass on failure.

    Returns:
        Tuple of (decoded value or None, list of error messages)
    """
    json_str = extract_json_from_response(response)
    if json_str is None:
        return None, ["No JSON found in response"]

    cleaned = escape_control_characters(json_str)
    try:
        return json.loads(cleaned), []
    except json.JSONDecodeError as e:
        first_error = f"JSON parse error: {e}"

    try:
        return json.loads(repair_truncated_json(cleaned)), []
    except json.JSONDecodeError as e:
        return None, [first_error, f"JSON repair failed: {e}"]


# =============================================================================
# Schema Validation
# =============================================================================


def parse_and_validate(
    response: str,
    schema: type[T],
) -> tuple[T | None, list[str]]:
    """Parse an oracle response and validate against a Pydantic schema.

    Args:
        response: Raw oracle response text
        schema: Pydantic model class to validate against

    Returns:
        Tuple of (parsed model or None, list of error messages)
    """
    data, errors = load_json_lenient(response)
    if data is None:
        return None, errors

    # A single-element array where an object was expected
    if isinstance(data, list):
        if data and isinstance(data[0], dict):
            data = data[0]
        else:
            return None, ["Expected a JSON object"]

    try:
        return schema.model_validate(data), []
    except ValidationError as e:
        for err in e.errors():
            loc = ".".join(str(x) for x in err["loc"])
            errors.append(f"{loc}: {err['msg']}")
        return None, errors


def parse_oracle_json(response: str | None, schema: type[T], fallback: T) -> tuple[T, bool]:
    """Parse oracle output into ``schema`` or return the caller's fallback.

    Never raises. The boolean is False whenever the fallback was used.

    Args:
        response: Raw oracle response text (None if the call failed)
        schema: Pydantic model class to validate against
        fallback: Conservative default supplied by the caller

    Returns:
        Tuple of (parsed model or fallback, ok flag)
    """
    if not response:
        return fallback, False

    model, errors = parse_and_validate(response, schema)
    if model is None:
        snippet = response[:100].replace("\n", " ")
        print(f"[WARN] Oracle output rejected ({'; '.join(errors[:2])}). Snippet: {snippet!r}")
        return fallback, False
    return model, True


def parse_list_of(
    response: str | None,
    item_schema: type[T],
    key: str | None = None,
) -> tuple[list[T], list[str]]:
    """Parse an oracle response as a list of items.

    Args:
        response: Raw oracle response text
        item_schema: Pydantic model class for list items
        key: Optional key holding the list when the response is an object

    Returns:
        Tuple of (list of parsed models, list of error messages)
    """
    items: list[T] = []
    if not response:
        return items, ["Empty response"]

    data, errors = load_json_lenient(response)
    if data is None:
        return items, errors

    if key and isinstance(data, dict):
        data = data.get(key, [])

    # Maybe it's a single item?
    if not isinstance(data, list):
        data = [data]

    for i, item_data in enumerate(data):
        try:
            items.append(item_schema.model_validate(item_data))
        except ValidationError as e:
            for err in e.errors():
                loc = ".".join(str(x) for x in err["loc"])
                errors.append(f"Item {i}.{loc}: {err['msg']}")

    return items, errors


# =============================================================================
# Output Formatting
# =============================================================================


def create_output_instruction(fields: dict[str, str], example: BaseModel | None = None) -> str:
    """Create an output instruction block for prompts.

    Args:
        fields: Mapping of JSON key to a short description of its value
        example: Optional example instance

    Returns:
        Formatted instruction string
    """
    body = ",\n".join(f'  "{name}": {desc}' for name, desc in fields.items())
    lines = [
        "<output_format>",
        "Respond with valid JSON only:",
        "```json",
        "{",
        body,
        "}",
        "```",
    ]

    if example:
        lines.extend([
            "",
            "Example:",
            "```json",
            example.model_dump_json(indent=2),
            "```",
        ])

    lines.append("</output_format>")
    return "\n".join(lines)
