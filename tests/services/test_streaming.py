"""Tests for the streaming output normalizer."""

import json

from agentbox.services.streaming import (
    StreamNormalizer,
    claude_stream_line,
    copilot_text_line,
    cursor_stream_line,
    truncate,
)


def assistant_text(text: str) -> str:
    return json.dumps(
        {"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}}
    )


def tool_use(name: str, tool_input: dict) -> str:
    return json.dumps(
        {
            "type": "assistant",
            "message": {"content": [{"type": "tool_use", "name": name, "input": tool_input}]},
        }
    )


def test_claude_stream_accumulates_text_and_tool_status():
    writes = []
    normalizer = StreamNormalizer(claude_stream_line, sink=writes.append)

    for line in (
        assistant_text("Hello "),
        tool_use("Write", {"path": "a.txt"}),
        assistant_text("done"),
    ):
        normalizer.feed(line + "\n")

    assert normalizer.content == "Hello \n\nEditing a.txt\n\ndone"
    assert len(writes) >= 3
    for previous, current in zip(writes, writes[1:]):
        assert current.startswith(previous)
        assert len(current) > len(previous)


def test_claude_stream_result_sets_session_and_completion():
    normalizer = StreamNormalizer(claude_stream_line)

    normalizer.feed(json.dumps({"type": "result", "session_id": "abc-123"}) + "\n")

    assert normalizer.completed is True
    assert normalizer.session_id == "abc-123"


def test_unparseable_lines_are_ignored():
    writes = []
    normalizer = StreamNormalizer(claude_stream_line, sink=writes.append)

    normalizer.feed("npm WARN deprecated something\n")
    normalizer.feed("// comment\n{not json}\n")
    normalizer.feed(json.dumps(["a", "list"]) + "\n")

    assert normalizer.content == ""
    assert writes == []


def test_lines_split_across_chunks():
    normalizer = StreamNormalizer(claude_stream_line)
    line = assistant_text("joined")

    normalizer.feed(line[:10])
    assert normalizer.content == ""
    normalizer.feed(line[10:] + "\n")

    assert normalizer.content == "joined"


def test_flush_processes_trailing_line():
    normalizer = StreamNormalizer(claude_stream_line)

    normalizer.feed(assistant_text("tail"))
    normalizer.flush()

    assert normalizer.content == "tail"


def test_unknown_tool_gets_generic_status():
    normalizer = StreamNormalizer(claude_stream_line)

    normalizer.feed(tool_use("SomeNewTool", {"secret": {"nested": 1}}) + "\n")

    assert normalizer.content == "\n\nExecuting SomeNewTool\n\n"


def test_bash_command_is_truncated():
    command = "x" * 80
    normalizer = StreamNormalizer(claude_stream_line)

    normalizer.feed(tool_use("Bash", {"command": command}) + "\n")

    assert f"Running: {truncate(command)}" in normalizer.content
    assert command not in normalizer.content


def test_sink_failure_does_not_interrupt_stream():
    def broken_sink(content):
        raise RuntimeError("database unavailable")

    normalizer = StreamNormalizer(claude_stream_line, sink=broken_sink)

    normalizer.feed(assistant_text("still here") + "\n")

    assert normalizer.content == "still here"


def test_cursor_tool_call_events():
    normalizer = StreamNormalizer(cursor_stream_line)

    normalizer.feed(
        json.dumps(
            {
                "type": "tool_call",
                "subtype": "started",
                "tool_call": {"editToolCall": {"args": {"path": "src/app.ts"}}},
            }
        )
        + "\n"
    )
    normalizer.feed(
        json.dumps(
            {
                "type": "tool_call",
                "subtype": "started",
                "tool_call": {"fancyToolCall": {"args": {}}},
            }
        )
        + "\n"
    )
    normalizer.feed(json.dumps({"type": "result", "session_id": "cur-1"}) + "\n")

    assert normalizer.content == "\n\nEditing src/app.ts\n\nExecuting fancy"
    assert normalizer.session_id == "cur-1"
    assert normalizer.completed is True


def test_cursor_ignores_completed_tool_calls():
    event = cursor_stream_line(
        json.dumps(
            {"type": "tool_call", "subtype": "completed", "tool_call": {"editToolCall": {}}}
        ),
        "",
    )

    assert event is None


def test_copilot_drops_box_drawing_and_spaces_actions():
    normalizer = StreamNormalizer(copilot_text_line)

    normalizer.feed("╭──────────╮\n")
    normalizer.feed("Looking at the code\n")
    normalizer.feed("● Edited README.md\n")

    assert normalizer.content == "Looking at the code\n\n● Edited README.md\n"
