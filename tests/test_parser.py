"""
Tests for recovering tool calls written as plain text.
"""

from openbot.agent.parser import (
    extract_tool_calls,
    find_json_bounds,
    normalize_tool_name,
    sanitize_json_escapes,
    strip_code_fence,
    strip_role_prefix,
)


def test_plain_object():
    """Test a bare JSON tool call."""
    calls = extract_tool_calls('{"name":"shell","arguments":{"command":"ls -la"}}')

    assert len(calls) == 1
    assert calls[0].name == "shell"
    assert calls[0].arguments == {"command": "ls -la"}
    assert calls[0].id.startswith("extracted_")


def test_fenced_object_matches_plain():
    """Test that a fenced code block yields the same call."""
    text = '```json\n{"name":"shell","arguments":{"command":"ls -la"}}\n```'
    calls = extract_tool_calls(text)

    assert len(calls) == 1
    assert calls[0].name == "shell"
    assert calls[0].arguments == {"command": "ls -la"}


def test_prose_prefix_ignored():
    """Test that leading prose is skipped."""
    calls = extract_tool_calls('I\'ll check.\n{"name":"web_search","parameters":{"query":"x"}}')

    assert len(calls) == 1
    assert calls[0].name == "web_search"
    assert calls[0].arguments == {"query": "x"}


def test_trailing_prose_and_alias():
    """Test trailing prose together with name normalization."""
    calls = extract_tool_calls('{"name":"webfetch","parameters":{"url":"https://x"}} Let me know if that helps.')

    assert len(calls) == 1
    assert calls[0].name == "web_fetch"
    assert calls[0].arguments == {"url": "https://x"}


def test_plain_prose_is_not_a_call():
    """Test that text without JSON yields nothing."""
    assert extract_tool_calls("The weather in Paris is sunny today.") == []
    assert extract_tool_calls("") == []


def test_empty_name_discarded():
    """Test that entries without a name are dropped."""
    assert extract_tool_calls('{"name":"","arguments":{}}') == []


def test_json_without_name_is_not_a_call():
    """Test that unrelated JSON is treated as content."""
    assert extract_tool_calls('{"temperature": 21, "unit": "C"}') == []


def test_array_of_calls():
    """Test an array with several calls and one nameless entry."""
    text = '[{"name":"read_file","arguments":{"path":"a.txt"}},{"name":""},{"name":"list_files"}]'
    calls = extract_tool_calls(text)

    assert [c.name for c in calls] == ["read_file", "list_files"]
    assert calls[1].arguments == {}
    assert calls[0].id != calls[1].id


def test_parameters_null_falls_back_to_arguments():
    """Test that the first non-null of parameters/arguments wins."""
    calls = extract_tool_calls('{"name":"shell","parameters":null,"arguments":{"command":"pwd"}}')

    assert calls[0].arguments == {"command": "pwd"}


def test_invalid_escape_repaired():
    """Test that an invalid escape inside a string does not lose the call."""
    calls = extract_tool_calls('{"name":"shell","arguments":{"command":"echo 100\\% done"}}')

    assert len(calls) == 1
    assert calls[0].arguments == {"command": "echo 100% done"}


def test_role_prefix_stripped():
    """Test both role-marker forms."""
    body = '{"name":"shell","arguments":{"command":"ls"}}'

    assert extract_tool_calls("assistant\n" + body)[0].name == "shell"
    assert extract_tool_calls("Assistant: " + body)[0].name == "shell"
    assert strip_role_prefix("Assistant: Hello") == "Hello"
    assert strip_role_prefix("Assistants are helpful") == "Assistants are helpful"


def test_strip_code_fence():
    """Test fence removal only for fully fenced text."""
    assert strip_code_fence("```\nabc\n```") == "abc"
    assert strip_code_fence("```python\nprint(1)\n```") == "print(1)"
    assert strip_code_fence("text ```x```") == "text ```x```"


def test_sanitize_json_escapes():
    """Test that only escapes inside strings are repaired."""
    assert sanitize_json_escapes('"100\\% done"') == '"100% done"'
    assert sanitize_json_escapes("100\\% done") == "100\\% done"
    assert sanitize_json_escapes('\\% "a\\%"') == '\\% "a%"'
    assert sanitize_json_escapes('{"p": "C:\\Users"} \\q') == '{"p": "C:Users"} \\q'
    assert sanitize_json_escapes('"a\\nb"') == '"a\\nb"'
    assert sanitize_json_escapes('"say \\"hi\\""') == '"say \\"hi\\""'
    assert sanitize_json_escapes('"C:\\\\temp"') == '"C:\\\\temp"'
    assert sanitize_json_escapes('"\\\\%"') == '"\\\\%"'
    assert sanitize_json_escapes('"\\u00e9"') == '"\\u00e9"'
    assert sanitize_json_escapes("") == ""


def test_find_json_bounds():
    """Test span detection with brackets inside strings."""
    text = 'abc {"a": "}"} tail'
    start, end = find_json_bounds(text)
    assert text[start:end] == '{"a": "}"}'

    text = 'x [1, {"b": "\\"]"}] y'
    start, end = find_json_bounds(text)
    assert text[start:end] == '[1, {"b": "\\"]"}]'


def test_find_json_bounds_none():
    """Test texts without a balanced span."""
    assert find_json_bounds("no json here") == (-1, -1)
    assert find_json_bounds('{"a": 1') == (-1, -1)
    assert find_json_bounds("") == (-1, -1)


def test_normalize_tool_name():
    """Test the alias table."""
    assert normalize_tool_name("webfetch") == "web_fetch"
    assert normalize_tool_name("WebFetch") == "web_fetch"
    assert normalize_tool_name("web-fetch") == "web_fetch"
    assert normalize_tool_name("WEBSEARCH") == "web_search"
    assert normalize_tool_name("readFile") == "read_file"
    assert normalize_tool_name("read_file") == "read_file"
    assert normalize_tool_name("custom_tool") == "custom_tool"
