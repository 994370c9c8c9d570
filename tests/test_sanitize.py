import pytest

from bonzid.constants import CC_IDENT, CC_URL
from bonzid.sanitize import sanitize


def test_strips_tags_and_quotes() -> None:
    assert sanitize("<b>hi</b> there") == "hi there"
    assert sanitize("he said \"yo\" 'ok' `x`") == "he said yo ok x"


def test_unclosed_tag_consumes_rest() -> None:
    assert sanitize("hello<script alert(1)") == "hello"


def test_allowed_class_filters_characters() -> None:
    assert sanitize("Al!ce", CC_IDENT) == "Alice"
    assert sanitize("room name_1-2", CC_IDENT) == "roomname_1-2"


def test_allowed_class_is_case_insensitive() -> None:
    assert sanitize("ABCdef", "a-f") == "ABCdef"


def test_url_class_keeps_url_punctuation() -> None:
    assert sanitize("https://example.com/a_b-c.png?x=1", CC_URL) == (
        "https://example.com/a_b-c.pngx1"
    )


@pytest.mark.parametrize("value", [None, "", 0, False])
def test_empty_input_yields_empty_string(value) -> None:
    assert sanitize(value) == ""
    assert sanitize(value, CC_IDENT) == ""


def test_non_string_input_is_stringified() -> None:
    assert sanitize(123) == "123"
    assert sanitize(["a"], CC_IDENT) == "a"


@pytest.mark.parametrize(
    "value",
    [
        "<<a>b>",
        "<'>x<\"",
        "plain text",
        "<<<>>>''\"\"",
        "Al!ce <i>and</i> `bob`",
        "x<y>z>w",
    ],
)
@pytest.mark.parametrize("allowed", [None, CC_IDENT, CC_URL])
def test_sanitize_is_idempotent(value, allowed) -> None:
    once = sanitize(value, allowed)
    assert sanitize(once, allowed) == once
    assert "<" not in once
