"""Text helpers for MIME decoding: charsets, encoded words and snippets."""

import base64
import binascii
import codecs
import html
import mimetypes
import quopri
import re
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from email.utils import collapse_rfc2231_value, decode_rfc2231
from typing import List, Optional
from urllib.parse import unquote

from src.utils.logging import get_logger

logger = get_logger(__name__)

_WHITESPACE = re.compile(rb"\s+")
_MESSAGE_ID = re.compile(r"<([^<>\s]+)>")
_SCRIPT_STYLE = re.compile(r"<(script|style)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]+>")

_EXTENSIONS = {
    "application/pdf": "pdf",
    "application/zip": "zip",
    "application/x-zip-compressed": "zip",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-excel": "xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "application/octet-stream": "bin",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "text/plain": "txt",
    "text/csv": "csv",
}


def sanitize_text(value: str) -> str:
    """Return valid UTF-8 text, dropping undecodable bytes and NULs."""
    if not value:
        return ""
    try:
        raw = value.encode("utf-8", errors="surrogateescape")
    except UnicodeEncodeError:
        raw = value.encode("utf-8", errors="ignore")
    return raw.decode("utf-8", errors="ignore").replace("\x00", "")


def decode_bytes(data: bytes, charset: Optional[str] = None) -> str:
    """Decode bytes with a declared charset, falling back to UTF-8."""
    charset = (charset or "utf-8").strip().strip('"').lower()
    try:
        codecs.lookup(charset)
    except LookupError:
        logger.debug(f"Unknown charset {charset!r}, decoding as utf-8")
        charset = "utf-8"
    return sanitize_text(data.decode(charset, errors="ignore"))


def decode_transfer(data: bytes, encoding: Optional[str]) -> bytes:
    """Undo a Content-Transfer-Encoding.

    Malformed base64 is retried once with all whitespace removed; if that also
    fails the raw bytes are returned unchanged.
    """
    encoding = (encoding or "").strip().lower()
    if encoding == "base64":
        try:
            return base64.b64decode(data.strip(), validate=True)
        except (binascii.Error, ValueError):
            pass
        try:
            return base64.b64decode(_WHITESPACE.sub(b"", data), validate=True)
        except (binascii.Error, ValueError):
            logger.debug("Malformed base64 payload, keeping raw bytes")
            return data
    if encoding == "quoted-printable":
        return quopri.decodestring(data)
    return data


def decode_header_value(value) -> str:
    """Decode RFC 2047 encoded words into sanitized text."""
    if value is None:
        return ""
    text = str(value)
    try:
        return sanitize_text(str(make_header(decode_header(text))))
    except (HeaderParseError, LookupError, UnicodeError):
        pass

    try:
        chunks = decode_header(text)
    except HeaderParseError:
        return sanitize_text(text)
    return sanitize_text(
        "".join(
            decode_bytes(chunk, charset) if isinstance(chunk, bytes) else chunk
            for chunk, charset in chunks
        )
    )


def decode_param(value) -> str:
    """Decode a Content-Type/Disposition parameter (RFC 2231 or RFC 2047)."""
    if value is None:
        return ""
    if isinstance(value, tuple):
        return sanitize_text(collapse_rfc2231_value(value))
    return decode_header_value(value)


def decode_extended_param(value: str) -> str:
    """Decode a ``charset''percent-encoded`` parameter as found in BODYSTRUCTURE."""
    if value.count("'") < 2:
        return decode_header_value(unquote(value))
    charset, _, encoded = decode_rfc2231(value)
    try:
        return sanitize_text(unquote(encoded, encoding=charset or "utf-8", errors="ignore"))
    except LookupError:
        return sanitize_text(unquote(encoded, errors="ignore"))


def normalize_message_id(value: Optional[str]) -> str:
    """Strip angle brackets and whitespace from a Message-ID."""
    if not value:
        return ""
    match = _MESSAGE_ID.search(value)
    if match:
        return match.group(1)
    return value.strip().strip("<>").strip()


def parse_references(value: Optional[str]) -> List[str]:
    """Message-ids of a References header, oldest first."""
    if not value:
        return []
    found = _MESSAGE_ID.findall(value)
    if found:
        return found
    return [token.strip("<>") for token in value.split() if token.strip("<>")]


def generate_filename(content_type: str) -> str:
    """Name a part that arrived without one, e.g. ``noname.pdf``."""
    ext = _EXTENSIONS.get(content_type)
    if ext is None:
        guessed = mimetypes.guess_extension(content_type)
        if guessed:
            ext = guessed.lstrip(".")
        elif "/" in content_type:
            ext = content_type.split("/", 1)[1]
    return f"noname.{ext}" if ext else "noname"


def html_to_text(markup: str) -> str:
    without_blocks = _SCRIPT_STYLE.sub(" ", markup)
    return html.unescape(_TAG.sub(" ", without_blocks))


def make_snippet(text: str, html_body: str = "", length: int = 150) -> str:
    """First ``length`` characters of the body with whitespace collapsed."""
    source = text or (html_to_text(html_body) if html_body else "")
    collapsed = " ".join(source.split())
    if len(collapsed) <= length:
        return collapsed
    return collapsed[:length] + "..."
