"""
Tests for the Anthropic messages client.
"""

import json
from unittest.mock import patch

import httpx
import pytest

from openbot.errors import UpstreamError
from openbot.llm import AnthropicLLM, ChatRequest, Message, StreamEventType, ToolCall, ToolDefinition


def make_llm(handler, api_key: str = "sk-ant-test") -> AnthropicLLM:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AnthropicLLM(api_key, http_client=client, max_retries=1, retry_base_delay=0)


def sse_body(*frames: tuple[str, dict]) -> bytes:
    return "".join(f"event: {name}\ndata: {json.dumps(data)}\n\n" for name, data in frames).encode()


@pytest.mark.asyncio
async def test_chat_text_and_tool_use():
    """Test parsing of text and tool_use blocks and the request shape."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={
            "model": "claude-sonnet-4-20250514",
            "stop_reason": "tool_use",
            "content": [
                {"type": "text", "text": "Searching."},
                {"type": "tool_use", "id": "toolu_1", "name": "web_search", "input": {"query": "news"}},
            ],
            "usage": {"input_tokens": 20, "output_tokens": 8},
        })

    llm = make_llm(handler)
    response = await llm.chat(ChatRequest(
        messages=[
            Message(role="system", content="Be brief."),
            Message(role="system", content="[Conversation Summary]\nEarlier stuff."),
            Message(role="user", content="news?"),
        ],
        tools=[ToolDefinition(name="web_search", description="Search", parameters={"type": "object"})],
    ))

    assert response.content == "Searching."
    assert response.tool_calls == [ToolCall(id="toolu_1", name="web_search", arguments={"query": "news"})]
    assert response.finish_reason == "tool_use"
    assert response.usage.total_tokens == 28

    request = seen[0]
    assert request.url == "https://api.anthropic.com/v1/messages"
    assert request.headers["x-api-key"] == "sk-ant-test"
    assert request.headers["anthropic-version"] == "2023-06-01"
    body = json.loads(request.content)
    assert body["system"] == "Be brief.\n\n[Conversation Summary]\nEarlier stuff."
    assert body["messages"] == [{"role": "user", "content": "news?"}]
    assert body["tools"][0]["input_schema"] == {"type": "object"}
    assert "stream" not in body


@pytest.mark.asyncio
async def test_tool_results_grouped_into_one_user_turn():
    """Test that consecutive tool results share a user message."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"content": [{"type": "text", "text": "ok"}]})

    calls = [
        ToolCall(id="t1", name="read_file", arguments={"path": "a"}),
        ToolCall(id="t2", name="read_file", arguments={"path": "b"}),
    ]
    llm = make_llm(handler)
    await llm.chat(ChatRequest(messages=[
        Message(role="user", content="read both"),
        Message(role="assistant", content="Reading.", tool_calls=calls),
        Message(role="tool", content="A", tool_call_id="t1"),
        Message(role="tool", content="B", tool_call_id="t2"),
    ]))

    messages = seen[0]["messages"]
    assert len(messages) == 3
    assert messages[1]["content"][0] == {"type": "text", "text": "Reading."}
    assert messages[1]["content"][1]["type"] == "tool_use"
    assert messages[1]["content"][2]["input"] == {"path": "b"}
    assert messages[2] == {
        "role": "user",
        "content": [
            {"type": "tool_result", "tool_use_id": "t1", "content": "A"},
            {"type": "tool_result", "tool_use_id": "t2", "content": "B"},
        ],
    }


@pytest.mark.asyncio
async def test_stream_events():
    """Test text, thinking and tool input assembly from a stream."""
    body = sse_body(
        ("message_start", {"type": "message_start", "message": {}}),
        ("content_block_start", {"type": "content_block_start", "index": 0, "content_block": {"type": "text"}}),
        ("content_block_delta", {"index": 0, "delta": {"type": "thinking_delta", "thinking": "hmm"}}),
        ("content_block_delta", {"index": 0, "delta": {"type": "text_delta", "text": "Hi "}}),
        ("content_block_delta", {"index": 0, "delta": {"type": "text_delta", "text": "there"}}),
        ("content_block_start", {
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_2", "name": "shell", "input": {}},
        }),
        ("content_block_delta", {"index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"command"'}}),
        ("content_block_delta", {"index": 1, "delta": {"type": "input_json_delta", "partial_json": ': "pwd"}'}}),
        ("content_block_stop", {"index": 1}),
        ("message_stop", {"type": "message_stop"}),
    )
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    llm = make_llm(handler)
    events = [e async for e in llm.chat_stream(ChatRequest(messages=[Message(role="user", content="hi")]))]

    assert seen[0]["stream"] is True
    assert [e.type for e in events] == [
        StreamEventType.THINKING,
        StreamEventType.TOKEN,
        StreamEventType.TOKEN,
        StreamEventType.TOOL_START,
        StreamEventType.DONE,
    ]
    assert events[3].tool == "shell"
    assert events[-1].content == "Hi there"
    assert events[-1].tool_calls == [ToolCall(id="toolu_2", name="shell", arguments={"command": "pwd"})]


@pytest.mark.asyncio
async def test_stream_interleaved_tool_blocks():
    """Test that input fragments of two tool_use blocks are kept apart by index."""
    body = sse_body(
        ("message_start", {"type": "message_start", "message": {"usage": {"input_tokens": 30}}}),
        ("content_block_start", {
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_a", "name": "shell", "input": {}},
        }),
        ("content_block_start", {
            "index": 2,
            "content_block": {"type": "tool_use", "id": "toolu_b", "name": "read_file", "input": {}},
        }),
        ("ping", {"type": "ping"}),
        ("content_block_delta", {"index": 2, "delta": {"type": "input_json_delta", "partial_json": '{"path": '}}),
        ("content_block_delta", {"index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"command": '}}),
        ("content_block_delta", {"index": 1, "delta": {"type": "input_json_delta", "partial_json": '"ls"}'}}),
        ("content_block_delta", {"index": 2, "delta": {"type": "input_json_delta", "partial_json": '"notes.md"}'}}),
        ("content_block_stop", {"index": 1}),
        ("content_block_stop", {"index": 2}),
        ("message_delta", {"delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 12}}),
        ("message_stop", {"type": "message_stop"}),
    )
    llm = make_llm(lambda request: httpx.Response(200, content=body, headers={"content-type": "text/event-stream"}))

    events = [e async for e in llm.chat_stream(ChatRequest(messages=[Message(role="user", content="go")]))]

    assert [e.type for e in events] == [StreamEventType.TOOL_START, StreamEventType.TOOL_START, StreamEventType.DONE]
    assert events[-1].tool_calls == [
        ToolCall(id="toolu_a", name="shell", arguments={"command": "ls"}),
        ToolCall(id="toolu_b", name="read_file", arguments={"path": "notes.md"}),
    ]


@pytest.mark.asyncio
async def test_stream_malformed_tool_input():
    """Test that unparseable tool input yields empty arguments and a warning."""
    body = sse_body(
        ("content_block_start", {
            "index": 0,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "shell", "input": {}},
        }),
        ("content_block_delta", {"index": 0, "delta": {"type": "input_json_delta", "partial_json": '{"command": '}}),
        ("content_block_stop", {"index": 0}),
        ("message_stop", {"type": "message_stop"}),
    )
    llm = make_llm(lambda request: httpx.Response(200, content=body, headers={"content-type": "text/event-stream"}))

    with patch("openbot.llm.base.logger") as mock_logger:
        events = [e async for e in llm.chat_stream(ChatRequest(messages=[Message(role="user", content="ls")]))]

    assert events[-1].type == StreamEventType.DONE
    assert events[-1].tool_calls == [ToolCall(id="toolu_1", name="shell", arguments={})]
    mock_logger.warning.assert_called_once()


@pytest.mark.asyncio
async def test_stream_error_event():
    """Test that an error frame raises UpstreamError."""
    body = sse_body(("error", {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}))
    llm = make_llm(lambda request: httpx.Response(200, content=body))

    with pytest.raises(UpstreamError) as exc_info:
        async for _ in llm.chat_stream(ChatRequest(messages=[Message(role="user", content="hi")])):
            pass

    assert "overloaded_error" in str(exc_info.value)


@pytest.mark.asyncio
async def test_healthy_requires_key():
    """Test the key-presence health check."""
    assert await make_llm(lambda r: httpx.Response(200), api_key="key").healthy()
    assert not await make_llm(lambda r: httpx.Response(200), api_key="").healthy()
