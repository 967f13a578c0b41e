"""Attachment detection from an IMAP BODYSTRUCTURE tree.

Runs during the metadata-only sync pass, so it only has media types, sizes,
dispositions, filenames and content ids to go on.
"""

from typing import Any, Dict, List, Optional

from src.core.models import Attachment
from src.utils.errors import ParseError

from .parts import Leaf, Multipart, Part, classify
from .text import decode_extended_param, decode_header_value, generate_filename


def _params(value: Any) -> Dict[str, str]:
    if not isinstance(value, list):
        return {}
    params: Dict[str, str] = {}
    for key, raw in zip(value[::2], value[1::2]):
        if key is None or raw is None:
            continue
        key = str(key).lower()
        if key.endswith("*"):
            params[key.rstrip("*")] = decode_extended_param(str(raw))
        else:
            params.setdefault(key, decode_header_value(raw))
    return params


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _disposition(value: Any) -> tuple:
    if isinstance(value, list) and value and isinstance(value[0], str):
        return value[0].lower(), _params(value[1] if len(value) > 1 else None)
    return None, {}


def parse_body_structure(node: Any) -> Part:
    """Convert a parsed BODYSTRUCTURE list into a Part tree.

    Raises:
        ParseError: If the structure is not a well-formed body list
    """
    if not isinstance(node, list) or not node:
        raise ParseError("BODYSTRUCTURE is not a list")

    if isinstance(node[0], list):
        children = []
        index = 0
        while index < len(node) and isinstance(node[index], list):
            children.append(parse_body_structure(node[index]))
            index += 1
        subtype = str(node[index]).lower() if index < len(node) and node[index] else "mixed"
        return Multipart(subtype=subtype, children=children)

    if len(node) < 7:
        raise ParseError("BODYSTRUCTURE part has too few fields", details={"fields": len(node)})

    main_type = str(node[0] or "application").lower()
    sub_type = str(node[1] or "octet-stream").lower()
    content_type = f"{main_type}/{sub_type}"

    # Extension data starts after the type-specific fields
    if main_type == "text":
        ext_index = 8
    elif content_type == "message/rfc822":
        ext_index = 10
    else:
        ext_index = 7
    disposition, disposition_params = _disposition(node[ext_index + 1] if len(node) > ext_index + 1 else None)

    return Leaf(
        content_type=content_type,
        params=_params(node[2]),
        disposition=disposition,
        disposition_params=disposition_params,
        content_id=str(node[3] or "").strip().strip("<>"),
        encoding=str(node[5] or "").lower(),
        size=_int(node[6]),
    )


def dedupe_attachments(attachments: List[Attachment]) -> List[Attachment]:
    """Drop attachments repeating an earlier (filename, size, content prefix)."""
    seen = set()
    unique = []
    for attachment in attachments:
        if attachment.dedup_key in seen:
            continue
        seen.add(attachment.dedup_key)
        unique.append(attachment)
    return unique


def detect_attachments(body_structure: Optional[list]) -> List[Attachment]:
    """List the attachments a message carries without downloading it."""
    if not body_structure:
        return []

    root = parse_body_structure(body_structure)
    found = [
        Attachment(
            filename=leaf.filename or generate_filename(leaf.content_type),
            content_type=leaf.content_type,
            size=leaf.size,
            content_id=leaf.content_id,
            is_inline=leaf.disposition == "inline",
        )
        for leaf in classify(root).attachments
    ]
    return dedupe_attachments(found)
