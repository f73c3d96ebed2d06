"""
Text preprocessing for provider payloads
Base64url decoding, mojibake repair, HTML-to-text and storage-safe strings
"""
import base64
import binascii
import html
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

# UTF-8 read as cp1252, the usual shape of mangled smart punctuation
MOJIBAKE_REPLACEMENTS = [
    ("â€™", "'"),
    ("â€˜", "'"),
    ("â€œ", '"'),
    ("â€\x9d", '"'),
    ("â€¦", "..."),
    ("â€”", "—"),
    ("â€“", "–"),
    ("â€¢", "•"),
    ("Â ", " "),
    ("Â", ""),
]

_BLOCK_BREAKS = [
    (re.compile(r"<(script|style|head)\b.*?</\1>", re.IGNORECASE | re.DOTALL), ""),
    (re.compile(r"</p\s*>", re.IGNORECASE), "\n\n"),
    (re.compile(r"<br\s*/?>", re.IGNORECASE), "\n"),
    (re.compile(r"</(div|h[1-6]|tr|li)\s*>", re.IGNORECASE), "\n"),
    (re.compile(r"<li\b[^>]*>", re.IGNORECASE), "• "),
    (re.compile(r"<[^>]+>"), ""),
]


def decode_base64url(data: str) -> str:
    """
    Decode Gmail's base64url body data to UTF-8 text.

    Gmail omits padding; invalid UTF-8 bytes are replaced rather than failing
    the whole message.
    """
    if not data:
        return ""
    data = data.replace("-", "+").replace("_", "/")
    padding = len(data) % 4
    if padding:
        data += "=" * (4 - padding)
    try:
        raw = base64.b64decode(data)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid base64url body: {e}") from e
    return raw.decode("utf-8", errors="replace")


def clean_text(text: str) -> str:
    """Repair mojibake, decode HTML entities and normalize whitespace, keeping paragraph breaks."""
    if not text:
        return ""
    for bad, good in MOJIBAKE_REPLACEMENTS:
        text = text.replace(bad, good)
    text = html.unescape(text)
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\xa0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def html_to_text(markup: str) -> str:
    """Readable text from an HTML body; used only when no text/plain part exists."""
    if not markup:
        return ""
    for pattern, replacement in _BLOCK_BREAKS:
        markup = pattern.sub(replacement, markup)
    return clean_text(markup)


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip() + "..."


def strip_null_bytes_from_dict(data: Any) -> Any:
    """
    Recursively strip null bytes from all strings in a dictionary/list.
    PostgreSQL doesn't allow \\u0000 in TEXT/JSONB fields.
    """
    if isinstance(data, dict):
        return {k: strip_null_bytes_from_dict(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [strip_null_bytes_from_dict(item) for item in data]
    elif isinstance(data, str):
        return data.replace('\x00', '')
    else:
        return data
