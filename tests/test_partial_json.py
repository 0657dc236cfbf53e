import json

import pytest

from responses_chat.errors import ArgumentParseError
from responses_chat.partial_json import decode


def test_complete_documents_match_json_loads() -> None:
    docs = [
        '{"location": "Paris", "unit": "celsius"}',
        '[1, 2.5, -3, 1e3, true, false, null]',
        '{"nested": {"list": [{"a": "b"}], "empty": {}}, "x": []}',
        '"just a string"',
        '{"escaped": "line\\nbreak \\"quoted\\" \\u00e9"}',
    ]
    for doc in docs:
        assert decode(doc) == json.loads(doc)


def test_truncated_string_value_is_kept() -> None:
    assert decode('{"location": "Par') == {"location": "Par"}


def test_truncated_key_is_dropped() -> None:
    assert decode('{"location": "Paris", "un') == {"location": "Paris"}


def test_key_without_value_is_dropped() -> None:
    assert decode('{"location": "Paris", "unit":') == {"location": "Paris"}
    assert decode('{"location": "Paris", "unit"') == {"location": "Paris"}


def test_open_containers_are_closed() -> None:
    assert decode('{"items": [1, 2, {"a": [') == {"items": [1, 2, {"a": []}]}
    assert decode("[") == []
    assert decode("{") == {}


def test_literal_prefix_completes_to_its_value() -> None:
    assert decode('{"flag": tr') == {"flag": True}
    assert decode('[nu') == [None]
    assert decode("fals") is False


def test_number_cut_off_inside_container_is_dropped() -> None:
    assert decode('{"count": 12') == {}
    assert decode('{"count": 12,') == {"count": 12}
    assert decode("[1, 2.") == [1]


def test_top_level_number_needs_a_terminator() -> None:
    # "12" may still become "123"
    for fragment in ("12", "-0.5", "1e3"):
        with pytest.raises(ArgumentParseError, match="Incomplete number"):
            decode(fragment)
    assert decode("12 ") == 12
    assert decode("-0.5\n") == -0.5
    with pytest.raises(ArgumentParseError):
        decode("-")
    with pytest.raises(ArgumentParseError):
        decode("1.")


def test_escape_cut_off_keeps_decoded_prefix() -> None:
    assert decode('{"path": "C:\\') == {"path": "C:"}
    assert decode('{"name": "caf\\u00') == {"name": "caf"}


def test_surrogate_pair() -> None:
    assert decode('"\\ud83d\\ude00"') == "\U0001F600"
    # low surrogate still in flight
    assert decode('"a\\ud83d\\ude') == "a"


@pytest.mark.parametrize(
    "fragment",
    ["", "   ", "}", "[1,,2]", '{"a" 1}', '{a: 1}', "tx", '{"a": 1} x', "01", '"\\q"'],
)
def test_invalid_fragments_raise(fragment) -> None:
    with pytest.raises(ArgumentParseError):
        decode(fragment)


PREFIX_DOCS = [
    '{"query": "weather in Paris", "days": [1, 22, 333], "metric": true, "extra": {"k": null}}',
    '[1, 22, "abc", [true, null], {"x": -3.5e2, "y": [false]}, 0]',
    '{"unicode": "caf\\u00e9 \\ud83d\\ude00 ok", "path": "C:\\\\tmp", "n": 0}',
    '"a \\"quoted\\" string"',
    "true",
    "null",
    "12345",
    "-0.25e-3",
]


def _is_structural_prefix(partial, final) -> bool:
    if isinstance(final, dict):
        return isinstance(partial, dict) and all(
            key in final and _is_structural_prefix(value, final[key]) for key, value in partial.items()
        )
    if isinstance(final, list):
        return (
            isinstance(partial, list)
            and len(partial) <= len(final)
            and all(_is_structural_prefix(p, f) for p, f in zip(partial, final))
        )
    if isinstance(final, str):
        return isinstance(partial, str) and final.startswith(partial)
    return type(partial) is type(final) and partial == final


@pytest.mark.parametrize("doc", PREFIX_DOCS)
def test_every_prefix_decodes_to_a_structural_prefix(doc) -> None:
    final = json.loads(doc)
    for end in range(1, len(doc) + 1):
        try:
            value = decode(doc[:end])
        except ArgumentParseError:
            continue
        assert _is_structural_prefix(value, final), (doc[:end], value)


def test_complete_containers_decode_to_the_final_value() -> None:
    for doc in PREFIX_DOCS:
        if isinstance(json.loads(doc), (dict, list)):
            assert decode(doc) == json.loads(doc)


def test_bare_number_prefixes_never_decode() -> None:
    doc = "12345"
    for end in range(1, len(doc) + 1):
        with pytest.raises(ArgumentParseError):
            decode(doc[:end])


def test_error_is_a_value_error_with_position() -> None:
    with pytest.raises(ValueError) as excinfo:
        decode('{"a": 1 "b": 2}')
    assert excinfo.value.position == 8
