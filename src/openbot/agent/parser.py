"""
Recovery of tool calls that models emit as plain text.

Smaller models (especially local ones) often answer with the JSON of a tool
call in the content field instead of the structured tool_calls field, wrap
it in a code fence, prefix it with a role marker or some prose, or put
invalid escapes like `\\%` in it. extract_tool_calls() undoes all of that.
"""

import json
import re
import time
from typing import Any

import structlog

from ..llm.base import ToolCall

logger = structlog.get_logger()

# Characters that may follow a backslash in a JSON string.
VALID_JSON_ESCAPES = frozenset('"\\/bfnrtu')

# Keys are lower-cased with '-' and '_' removed.
TOOL_NAME_ALIASES: dict[str, str] = {
    "webfetch": "web_fetch",
    "fetch": "web_fetch",
    "fetchurl": "web_fetch",
    "websearch": "web_search",
    "search": "web_search",
    "readfile": "read_file",
    "writefile": "write_file",
    "listfiles": "list_files",
    "listdir": "list_files",
    "systeminfo": "system_info",
    "sysinfo": "system_info",
    "executecode": "execute_code",
    "runcommand": "shell",
    "bash": "shell",
}

_ROLE_PREFIX = re.compile(r"^\s*assistant\s*(:\s*|\n)", re.IGNORECASE)


def normalize_tool_name(name: str) -> str:
    """Map hyphenated, camel-case and run-together variants to the registered name."""
    key = name.strip().lower().replace("-", "").replace("_", "")
    return TOOL_NAME_ALIASES.get(key, name.strip())


def strip_role_prefix(content: str) -> str:
    """Remove a leading `assistant\\n` or `Assistant:` marker."""
    match = _ROLE_PREFIX.match(content)
    if match is None:
        return content
    return content[match.end():].strip()


def strip_code_fence(content: str) -> str:
    """Unwrap text that is entirely one fenced code block."""
    if not content.startswith("```"):
        return content
    lines = content.split("\n")
    if len(lines) >= 3 and lines[-1].strip().startswith("```"):
        return "\n".join(lines[1:-1]).strip()
    return content


def sanitize_json_escapes(text: str) -> str:
    """Drop the backslash of every invalid escape sequence inside a string.

    Valid escapes are copied as complete pairs, so `\\\\%` stays a literal
    backslash followed by '%' and an escaped quote never ends a string.
    Text outside quoted strings is copied unchanged.
    """
    out: list[str] = []
    in_string = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if in_string and ch == "\\" and i + 1 < n:
            nxt = text[i + 1]
            if nxt in VALID_JSON_ESCAPES:
                out.append(ch)
                out.append(nxt)
                i += 2
            else:
                i += 1
            continue
        if ch == '"':
            in_string = not in_string
        out.append(ch)
        i += 1

    return "".join(out)


def find_json_bounds(text: str) -> tuple[int, int]:
    """Locate the first balanced top-level `{...}` or `[...]` span.

    Brackets inside quoted strings are ignored. Returns (start, end) with
    `end` exclusive, or (-1, -1) when there is none.
    """
    start = -1
    depth = 0
    in_string = False
    escaped = False

    for i, ch in enumerate(text):
        if start < 0:
            if ch in "{[":
                start = i
                depth = 1
            continue

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
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return start, i + 1

    return -1, -1


def _decode(text: str) -> Any:
    """json.loads, retried once after escape sanitization. None on failure."""
    for candidate in (text, sanitize_json_escapes(text)):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None


def _first_object(*values: Any) -> dict[str, Any]:
    for value in values:
        if value is not None:
            return value if isinstance(value, dict) else {}
    return {}


def _to_tool_calls(decoded: Any) -> list[ToolCall]:
    if isinstance(decoded, dict):
        entries = [decoded]
    elif isinstance(decoded, list):
        entries = [e for e in decoded if isinstance(e, dict)]
    else:
        return []

    stamp = time.time_ns()
    calls = []
    for i, entry in enumerate(entries):
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        calls.append(ToolCall(
            id=f"extracted_{stamp}_{i}",
            name=normalize_tool_name(name),
            arguments=_first_object(entry.get("parameters"), entry.get("arguments")),
        ))
    return calls


def extract_tool_calls(content: str) -> list[ToolCall]:
    """Parse tool calls out of assistant text.

    An empty list means the text is not a tool call and should be treated
    as ordinary content.
    """
    text = strip_role_prefix(content.strip())
    text = strip_code_fence(text)
    if not text:
        return []

    calls = _to_tool_calls(_decode(text))
    if calls:
        return calls

    start, end = find_json_bounds(text)
    if start < 0:
        return []

    calls = _to_tool_calls(_decode(text[start:end]))
    if calls:
        logger.debug("Recovered tool calls from surrounding text", count=len(calls))
    return calls
