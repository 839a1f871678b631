"""Normalization of agent CLI output into incremental chat content.

Agent CLIs print either line-delimited JSON events or plain text. A
StreamNormalizer is fed raw stdout chunks, splits them into lines, hands
each line to a dialect parser and writes the accumulated content to a
message sink after every recognized chunk.
"""

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

MessageSink = Callable[[str], None]

PATH_KEYS = ("path", "file_path", "filepath", "filePath", "target_file")
COMMAND_KEYS = ("command", "cmd")
PATTERN_KEYS = ("pattern", "glob_pattern", "globPattern", "query")

# Copilot draws boxes around its banner and tool output
BOX_DRAWING = re.compile(r"[╭╰│─═╮╯]")
COPILOT_ACTION_PREFIXES = ("●", "✓")


@dataclass
class StreamEvent:
    """What a dialect recognized in one line of output."""

    segments: list[str] = field(default_factory=list)
    session_id: str | None = None
    completed: bool = False


def _first(data: dict[str, Any], keys: tuple[str, ...], default: str) -> str:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return default


def truncate(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


def status_segment(status: str) -> str:
    return f"\n\n{status}\n\n"


# Tool name -> status line template
CLAUDE_TOOL_STATUS: dict[str, Callable[[dict[str, Any]], str]] = {
    "Write": lambda i: f"Editing {_first(i, PATH_KEYS, 'file')}",
    "Edit": lambda i: f"Editing {_first(i, PATH_KEYS, 'file')}",
    "MultiEdit": lambda i: f"Editing {_first(i, PATH_KEYS, 'file')}",
    "Read": lambda i: f"Reading {_first(i, PATH_KEYS, 'file')}",
    "Glob": lambda i: f"Searching files: {_first(i, PATTERN_KEYS, '*')}",
    "Grep": lambda i: f"Grep: {_first(i, PATTERN_KEYS, 'pattern')}",
    "Bash": lambda i: f"Running: {truncate(_first(i, COMMAND_KEYS, 'command'))}",
    "LS": lambda i: f"Listing {_first(i, PATH_KEYS, 'directory')}",
    "WebFetch": lambda i: f"Fetching {_first(i, ('url',), 'url')}",
    "TodoWrite": lambda i: "Updating todo list",
}

CURSOR_TOOL_STATUS: dict[str, Callable[[dict[str, Any]], str]] = {
    "editToolCall": lambda a: f"Editing {_first(a, PATH_KEYS, 'file')}",
    "readToolCall": lambda a: f"Reading {_first(a, PATH_KEYS, 'file')}",
    "runCommandToolCall": lambda a: f"Running: {truncate(_first(a, COMMAND_KEYS, 'command'))}",
    "shellToolCall": lambda a: f"Running: {truncate(_first(a, COMMAND_KEYS, 'command'))}",
    "listDirectoryToolCall": lambda a: f"Listing {_first(a, PATH_KEYS, 'directory')}",
    "grepToolCall": lambda a: f"Grep: {_first(a, PATTERN_KEYS, 'pattern')}",
    "semSearchToolCall": lambda a: f"Searching: {_first(a, PATTERN_KEYS, 'code')}",
    "globToolCall": lambda a: f"Searching files: {_first(a, PATTERN_KEYS, '*')}",
}


def _load_event(line: str) -> dict[str, Any] | None:
    stripped = line.strip()
    if not stripped or stripped.startswith("//"):
        return None
    try:
        event = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    return event if isinstance(event, dict) else None


def claude_stream_line(line: str, content: str) -> StreamEvent | None:
    """Parse one line of ``--output-format stream-json`` (Claude, Cline, Kilo)."""
    data = _load_event(line)
    if data is None:
        return None

    event_type = data.get("type")
    if event_type == "assistant":
        blocks = (data.get("message") or {}).get("content") or []
        event = StreamEvent()
        for block in blocks:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and block.get("text"):
                event.segments.append(block["text"])
            elif block.get("type") == "tool_use":
                name = block.get("name") or "tool"
                tool_input = block.get("input") or {}
                template = CLAUDE_TOOL_STATUS.get(name)
                status = template(tool_input) if template else f"Executing {name}"
                event.segments.append(status_segment(status))
        return event if event.segments else None

    if event_type == "result":
        return StreamEvent(session_id=data.get("session_id"), completed=True)

    return None


def cursor_stream_line(line: str, content: str) -> StreamEvent | None:
    """Parse one line of ``cursor-agent --output-format stream-json``."""
    data = _load_event(line)
    if data is None:
        return None

    event_type = data.get("type")
    if event_type == "tool_call" and data.get("subtype") == "started":
        tool_call = data.get("tool_call") or {}
        for key, call in tool_call.items():
            args = (call or {}).get("args") or {}
            template = CURSOR_TOOL_STATUS.get(key)
            if template:
                status = template(args)
            else:
                status = f"Executing {key.removesuffix('ToolCall')}"
            return StreamEvent(segments=[f"\n\n{status}"])
        return None

    if event_type == "assistant":
        blocks = (data.get("message") or {}).get("content") or []
        texts = [
            b["text"]
            for b in blocks
            if isinstance(b, dict) and b.get("type") == "text" and b.get("text")
        ]
        return StreamEvent(segments=[f"\n\n{t}" for t in texts]) if texts else None

    if event_type == "result":
        return StreamEvent(session_id=data.get("session_id"), completed=True)

    return None


def copilot_text_line(line: str, content: str) -> StreamEvent | None:
    """Keep readable Copilot output, dropping box-drawing decoration."""
    if BOX_DRAWING.search(line):
        return None

    text = line.rstrip()
    if text.lstrip().startswith(COPILOT_ACTION_PREFIXES) and content and not content.endswith("\n\n"):
        return StreamEvent(segments=[f"\n{text}\n"])
    return StreamEvent(segments=[f"{text}\n"])


LineParser = Callable[[str, str], StreamEvent | None]


class StreamNormalizer:
    """Accumulates chat content from an agent's stdout.

    ``completed`` and ``session_id`` are set once the dialect sees the
    result event; the command runner polls ``completed`` to stop waiting.
    Sink failures are logged and never interrupt the stream.
    """

    def __init__(self, parse_line: LineParser, sink: MessageSink | None = None):
        self.parse_line = parse_line
        self.sink = sink
        self.content = ""
        self.raw_output = ""
        self.session_id: str | None = None
        self.completed = False
        self.sink_writes = 0
        self._buffer = ""

    def feed(self, chunk: str) -> None:
        """Consume a chunk of stdout; complete lines are processed immediately."""
        self.raw_output += chunk
        self._buffer += chunk
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self._process_line(line)

    def flush(self) -> None:
        """Process a trailing line that never got its newline."""
        if self._buffer:
            line, self._buffer = self._buffer, ""
            self._process_line(line)

    def is_completed(self) -> bool:
        return self.completed

    def _process_line(self, line: str) -> None:
        event = self.parse_line(line, self.content)
        if event is None:
            return

        for segment in event.segments:
            self.content += segment
            self._write_sink()

        if event.session_id:
            self.session_id = event.session_id
        if event.completed:
            self.completed = True

    def _write_sink(self) -> None:
        if self.sink is None:
            return
        try:
            self.sink(self.content)
            self.sink_writes += 1
        except Exception as e:
            logger.warning(f"Failed to update streamed message: {e}")
