"""
Server-sent events framing.

Both streaming dialects send `data: {json}` lines separated by blank lines;
the block-content dialect also prefixes each frame with `event: <name>`.
"""

from dataclasses import dataclass
from typing import AsyncIterator


@dataclass
class ServerSentEvent:
    """One SSE frame."""

    event: str = ""
    data: str = ""


def _field_value(line: str, prefix: str) -> str:
    value = line[len(prefix):]
    return value[1:] if value.startswith(" ") else value


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[ServerSentEvent]:
    """Group raw lines into frames.

    A frame ends at a blank line. Multiple data lines in one frame are
    joined with newlines. Comment lines (starting with ':') are skipped.
    A trailing frame without a closing blank line is still yielded.
    """
    event = ""
    data_lines: list[str] = []

    async for raw in lines:
        line = raw.rstrip("\r\n")

        if not line:
            if data_lines:
                yield ServerSentEvent(event=event, data="\n".join(data_lines))
            event = ""
            data_lines = []
            continue

        if line.startswith(":"):
            continue
        if line.startswith("event:"):
            event = _field_value(line, "event:")
        elif line.startswith("data:"):
            data_lines.append(_field_value(line, "data:"))

    if data_lines:
        yield ServerSentEvent(event=event, data="\n".join(data_lines))
