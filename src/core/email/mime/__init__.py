"""MIME decoding for metadata-only and full-body message views."""

from .decoder import DecodedMessage, MimeDecoder, ParsedHeaders
from .parts import Leaf, Multipart, Part, PartVisitor, classify, is_attachment
from .structure import dedupe_attachments, detect_attachments, parse_body_structure
from .text import decode_transfer, generate_filename, make_snippet, normalize_message_id, sanitize_text

__all__ = [
    "DecodedMessage",
    "Leaf",
    "MimeDecoder",
    "Multipart",
    "ParsedHeaders",
    "Part",
    "PartVisitor",
    "classify",
    "decode_transfer",
    "dedupe_attachments",
    "detect_attachments",
    "generate_filename",
    "is_attachment",
    "make_snippet",
    "normalize_message_id",
    "parse_body_structure",
    "sanitize_text",
]
