"""Tests for text preprocessing helpers."""

import base64

import pytest

from artifact_sync.services.preprocessing.text import (
    clean_text,
    decode_base64url,
    html_to_text,
    strip_null_bytes_from_dict,
    truncate,
)


def test_decode_base64url_without_padding():
    encoded = base64.urlsafe_b64encode("Héllo ~~ wörld??".encode()).decode().rstrip("=")

    assert decode_base64url(encoded) == "Héllo ~~ wörld??"


def test_decode_base64url_rejects_garbage():
    with pytest.raises(ValueError):
        decode_base64url("a")


def test_clean_text_repairs_mojibake_and_whitespace():
    text = "Itâ€™s   here\r\n\r\n\r\n\r\nNext &amp; last"

    assert clean_text(text) == "It's here\n\nNext & last"


def test_html_to_text_drops_scripts_and_keeps_lists():
    markup = "<style>p{}</style><ul><li>One</li><li>Two</li></ul><br>End"

    assert html_to_text(markup) == "• One\n• Two\n\nEnd"


def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("a longer sentence", 8) == "a longer..."


def test_strip_null_bytes_recursively():
    data = {"a": "x\x00y", "b": ["\x00z", 1], "c": {"d": "ok"}}

    assert strip_null_bytes_from_dict(data) == {"a": "xy", "b": ["z", 1], "c": {"d": "ok"}}
