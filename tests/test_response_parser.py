from __future__ import annotations

import pytest

from core.exceptions import ResponseParseError
from core.response_parser import (
    ResponseParser, extract_json_value, parse_action_token, strip_code_fence
)
from core.schemas import ContinuationAction


@pytest.fixture
def parser() -> ResponseParser:
    return ResponseParser()


def test_clean_json(parser: ResponseParser) -> None:
    result = parser.parse('{"action": "new_scene", "title": "Into the Forest", "content": "  Trees.", "summary": "They enter."}')
    assert result.action == ContinuationAction.NEW_SCENE
    assert result.title == "Into the Forest"
    assert result.content == "  Trees."
    assert result.summary == "They enter."


def test_fenced_json_decodes_escapes(parser: ResponseParser) -> None:
    raw = '```json\n{"action":"continue","content":"Hello\\nWorld"}\n```'
    result = parser.parse(raw)
    assert result.action == ContinuationAction.CONTINUE
    assert result.content == "Hello\nWorld"


def test_json_surrounded_by_prose(parser: ResponseParser) -> None:
    raw = 'Sure! Here it is: {"action": "new_chapter", "title": "Chapter 2: Ash", "content": "It began."} Enjoy.'
    result = parser.parse(raw)
    assert result.action == ContinuationAction.NEW_CHAPTER
    assert result.title == "Chapter 2: Ash"


def test_braces_inside_strings_do_not_break_span_scan(parser: ResponseParser) -> None:
    raw = 'Note: {"action": "continue", "content": "He drew {a circle} and [waited]."} done'
    assert parser.parse(raw).content == "He drew {a circle} and [waited]."


def test_array_yields_first_object(parser: ResponseParser) -> None:
    raw = '[{"action": "new_scene", "content": "first"}, {"action": "continue", "content": "second"}]'
    result = parser.parse(raw)
    assert result.content == "first"
    assert result.action == ContinuationAction.NEW_SCENE


def test_truncated_json_recovers_fields(parser: ResponseParser) -> None:
    raw = '{"action": "new_scene", "title": "The Storm", "content": "  Rain fell.\\n\\n  Thunder rol'
    result = parser.parse(raw)
    assert result.action == ContinuationAction.NEW_SCENE
    assert result.title == "The Storm"
    assert result.content == "  Rain fell.\n\n  Thunder rol"


def test_truncated_escape_uses_manual_unescape(parser: ResponseParser) -> None:
    raw = '{"content": "line\\none \\u12'
    result = parser.parse(raw)
    assert result.action == ContinuationAction.CONTINUE
    assert result.content == "line\none \\u12"


def test_unknown_action_normalizes_to_continue(parser: ResponseParser) -> None:
    result = parser.parse('{"action": "new_book", "content": "text", "title": "  "}')
    assert result.action == ContinuationAction.CONTINUE
    assert result.title is None


def test_plain_prose_is_taken_verbatim(parser: ResponseParser) -> None:
    result = parser.parse("It was a dark night.")
    assert result.action == ContinuationAction.CONTINUE
    assert result.content == "It was a dark night."


def test_plain_prose_keeps_first_paragraph_indent(parser: ResponseParser) -> None:
    assert parser.parse("\n  Indented start.\n\n  Next.\n").content == "  Indented start.\n\n  Next."


def test_think_tags_are_removed(parser: ResponseParser) -> None:
    raw = '<think>should I?</think>{"action": "continue", "content": "ok"}'
    assert parser.parse(raw).content == "ok"


@pytest.mark.parametrize("raw", ['{"action": "continue"}', '{"action": "continue", "content": ""}', "", "   "])
def test_unrecoverable_responses_raise(parser: ResponseParser, raw: str) -> None:
    with pytest.raises(ResponseParseError):
        parser.parse(raw)


def test_strip_code_fence_variants() -> None:
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('```\n[1]\n```') == "[1]"
    assert strip_code_fence('```JSON {"a": 1}```') == '{"a": 1}'
    assert strip_code_fence("plain") == "plain"


def test_extract_json_value() -> None:
    assert extract_json_value('noise [{"name": "Aria"}] tail') == [{"name": "Aria"}]
    assert extract_json_value("no json here") is None


@pytest.mark.parametrize(
    "text, expected",
    [
        (" New_Scene \n", ContinuationAction.NEW_SCENE),
        ("continue", ContinuationAction.CONTINUE),
        ("new_chapter.", None),
        ("I think new_scene", None),
        ("", None),
    ],
)
def test_parse_action_token(text: str, expected) -> None:  # type: ignore[no-untyped-def]
    assert parse_action_token(text) == expected
