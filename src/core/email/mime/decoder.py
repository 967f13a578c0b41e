"""Decoding of RFC 822 headers and full messages into storable fields."""

import email
from dataclasses import dataclass, field
from datetime import datetime
from email.message import Message as EmailMessage
from email.utils import getaddresses
from typing import List, Optional, Tuple

from src.core.models import Attachment, EmailAddress
from src.utils.dates import parse_header_date
from src.utils.errors import MailSyncError, ParseError
from src.utils.logging import get_logger

from .parts import Leaf, Multipart, Part, classify
from .structure import dedupe_attachments, detect_attachments
from .text import (
    decode_bytes,
    decode_header_value,
    decode_param,
    decode_transfer,
    generate_filename,
    make_snippet,
    normalize_message_id,
    parse_references,
    sanitize_text,
)

logger = get_logger(__name__)


@dataclass
class ParsedHeaders:
    message_id: str = ""
    subject: str = ""
    sender: EmailAddress = field(default_factory=lambda: EmailAddress(""))
    to: List[EmailAddress] = field(default_factory=list)
    cc: List[EmailAddress] = field(default_factory=list)
    reply_to: str = ""
    in_reply_to: str = ""
    references: List[str] = field(default_factory=list)
    date: Optional[datetime] = None


@dataclass
class DecodedMessage:
    """Result of decoding one message, with or without its body."""

    headers: ParsedHeaders
    text_body: str = ""
    html_body: str = ""
    snippet: str = ""
    attachments: List[Attachment] = field(default_factory=list)

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)


def _addresses(msg: EmailMessage, name: str) -> List[EmailAddress]:
    values = [str(v) for v in msg.get_all(name, [])]
    result = []
    for display, address in getaddresses(values):
        address = sanitize_text(address).strip()
        if address:
            result.append(EmailAddress(address=address, name=decode_header_value(display).strip()))
    return result


def _raw_payload(part: EmailMessage) -> Tuple[bytes, str]:
    """Payload bytes and the transfer encoding still applied to them.

    Base64 stays encoded so malformed data can be retried. Every other
    encoding is undone by the email package, which returns the original
    bytes; its str view would have replaced undecodable bytes with U+FFFD.
    """
    encoding = str(part.get("Content-Transfer-Encoding", "")).strip().lower()
    if encoding == "base64":
        payload = part.get_payload(decode=False)
        if isinstance(payload, str):
            # base64 is ASCII; anything else is noise
            return payload.encode("ascii", errors="ignore"), encoding
        return (payload if isinstance(payload, bytes) else b""), encoding
    return part.get_payload(decode=True) or b"", ""


def _to_part(msg: EmailMessage) -> Part:
    content_type = msg.get_content_type()
    if msg.is_multipart() and content_type != "message/rfc822":
        return Multipart(
            subtype=msg.get_content_subtype(),
            children=[_to_part(child) for child in msg.get_payload()],
        )

    if content_type == "message/rfc822":
        inner = msg.get_payload(0) if msg.is_multipart() else None
        payload, encoding = (inner.as_bytes(), "") if inner is not None else _raw_payload(msg)
    else:
        payload, encoding = _raw_payload(msg)

    disposition = msg.get_content_disposition()
    filename = decode_param(msg.get_param("filename", header="content-disposition"))
    name = decode_param(msg.get_param("name"))

    return Leaf(
        content_type=content_type,
        params={k: v for k, v in (("charset", msg.get_content_charset()), ("name", name)) if v},
        disposition=disposition,
        disposition_params={"filename": filename} if filename else {},
        content_id=str(msg.get("Content-ID", "")).strip().strip("<>"),
        encoding=encoding,
        size=len(payload),
        payload=payload,
    )


class MimeDecoder:
    """Turns header blocks, BODYSTRUCTURE trees and raw messages into fields.

    Every public method raises ParseError for input it cannot make sense of;
    callers skip that one message.
    """

    def __init__(self, snippet_length: int = 150):
        self.snippet_length = snippet_length

    def parse_headers(self, raw: bytes) -> ParsedHeaders:
        """Parse a header block (or whole message) into threading and address fields."""
        try:
            return self._headers(email.message_from_bytes(raw))
        except MailSyncError:
            raise
        except Exception as e:
            raise ParseError("Failed to parse message headers") from e

    def decode_metadata(self, header: bytes, body_structure: Optional[list]) -> DecodedMessage:
        """Decode the metadata-only view fetched during sync."""
        headers = self.parse_headers(header)
        try:
            attachments = detect_attachments(body_structure)
        except MailSyncError:
            raise
        except Exception as e:
            raise ParseError("Failed to read BODYSTRUCTURE") from e
        return DecodedMessage(headers=headers, attachments=attachments)

    def decode(self, raw: bytes) -> DecodedMessage:
        """Decode a complete RFC 822 message.

        Args:
            raw: Message bytes as fetched with BODY[].

        Returns:
            DecodedMessage: Headers, first text and HTML bodies, snippet and
            deduplicated attachments with their content.

        Raises:
            ParseError: If the message cannot be parsed
        """
        try:
            msg = email.message_from_bytes(raw)
            headers = self._headers(msg)
            parts = classify(_to_part(msg))

            text_body = self._body_text(parts.bodies.get("text/plain"))
            html_body = self._body_text(parts.bodies.get("text/html"))
            attachments = dedupe_attachments([self._attachment(leaf) for leaf in parts.attachments])

        except MailSyncError:
            raise
        except Exception as e:
            raise ParseError("Failed to decode message") from e

        return DecodedMessage(
            headers=headers,
            text_body=text_body,
            html_body=html_body,
            snippet=make_snippet(text_body, html_body, self.snippet_length),
            attachments=attachments,
        )

    ## Helpers

    def _headers(self, msg: EmailMessage) -> ParsedHeaders:
        senders = _addresses(msg, "From")
        reply_to = _addresses(msg, "Reply-To")
        return ParsedHeaders(
            message_id=normalize_message_id(str(msg.get("Message-ID", ""))),
            subject=decode_header_value(msg.get("Subject")).strip(),
            sender=senders[0] if senders else EmailAddress(""),
            to=_addresses(msg, "To"),
            cc=_addresses(msg, "Cc"),
            reply_to=reply_to[0].address if reply_to else "",
            in_reply_to=normalize_message_id(str(msg.get("In-Reply-To", ""))),
            references=parse_references(str(msg.get("References", ""))),
            date=parse_header_date(str(msg.get("Date", ""))),
        )

    def _body_text(self, leaf: Optional[Leaf]) -> str:
        if leaf is None or leaf.payload is None:
            return ""
        return decode_bytes(decode_transfer(leaf.payload, leaf.encoding), leaf.charset)

    def _attachment(self, leaf: Leaf) -> Attachment:
        content = decode_transfer(leaf.payload or b"", leaf.encoding)
        return Attachment(
            filename=leaf.filename or generate_filename(leaf.content_type),
            content_type=leaf.content_type,
            size=len(content),
            content_id=leaf.content_id,
            is_inline=leaf.disposition == "inline",
            content=content,
        )
