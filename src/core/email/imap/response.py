"""Parsing of aioimaplib response lines.

aioimaplib hands back a flat list of lines where each literal (``{n}``) is a
separate ``bytearray`` element following the text that announced it. The
helpers here stitch those back together and read the parenthesised data with a
small s-expression reader.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from src.utils.errors import ParseError
from src.utils.logging import get_logger

logger = get_logger(__name__)

Line = Union[bytes, bytearray, str]

_FETCH_START = re.compile(r"^(?:\* )?(\d+) FETCH (.*)$", re.DOTALL | re.IGNORECASE)
_LITERAL_MARKER = re.compile(r"\{(\d+)\}\s*$")
_BODY_SECTION = re.compile(r"(BODY\[[^\]]*\](?:<\d+>)?)\s*\{\d+\}\s*$", re.IGNORECASE)
_STATUS_PATTERNS = {
    "uid_validity": re.compile(r"UIDVALIDITY (\d+)", re.IGNORECASE),
    "uid_next": re.compile(r"UIDNEXT (\d+)", re.IGNORECASE),
    "exists": re.compile(r"^(?:\* )?(\d+) EXISTS", re.IGNORECASE),
    "messages": re.compile(r"MESSAGES (\d+)", re.IGNORECASE),
}


def quote(value: str) -> str:
    """Render a string as an IMAP quoted string."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _text(line: Line) -> str:
    if isinstance(line, str):
        return line
    return bytes(line).decode("utf-8", errors="replace")


## S-expression reader


class SExprParser:
    """Reads IMAP parenthesised lists into nested Python lists.

    Quoted strings become ``str``, ``NIL`` becomes ``None`` and every other atom
    is kept as its literal text (numbers included).
    """

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def _skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos] in " \t\r\n":
            self.pos += 1

    def parse_list(self) -> List[Any]:
        self._skip_ws()
        if self.pos >= len(self.text) or self.text[self.pos] != "(":
            raise ParseError("Expected '('", details={"position": self.pos})
        self.pos += 1

        items: List[Any] = []
        while True:
            self._skip_ws()
            if self.pos >= len(self.text):
                raise ParseError("Unterminated list", details={"position": self.pos})
            if self.text[self.pos] == ")":
                self.pos += 1
                return items
            items.append(self.parse_value())

    def parse_value(self) -> Any:
        self._skip_ws()
        if self.pos >= len(self.text):
            raise ParseError("Unexpected end of data")
        char = self.text[self.pos]
        if char == "(":
            return self.parse_list()
        if char == '"':
            return self._parse_quoted()
        atom = self._parse_atom()
        return None if atom.upper() == "NIL" else atom

    def parse_all(self) -> List[Any]:
        """Parse every top-level value in the text."""
        values = []
        while True:
            self._skip_ws()
            if self.pos >= len(self.text):
                return values
            values.append(self.parse_value())

    def _parse_quoted(self) -> str:
        self.pos += 1
        chars = []
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char == "\\" and self.pos + 1 < len(self.text):
                chars.append(self.text[self.pos + 1])
                self.pos += 2
                continue
            if char == '"':
                self.pos += 1
                return "".join(chars)
            chars.append(char)
            self.pos += 1
        raise ParseError("Unterminated quoted string")

    def _parse_atom(self) -> str:
        start = self.pos
        depth = 0
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char == "[":
                depth += 1
            elif char == "]":
                depth -= 1
            elif depth == 0 and char in ' ()"\r\n':
                break
            self.pos += 1
        if self.pos == start:
            raise ParseError(f"Unexpected character {self.text[self.pos]!r}", details={"position": self.pos})
        return self.text[start:self.pos]


## FETCH responses


@dataclass
class FetchRecord:
    """One ``* n FETCH (...)`` response."""

    sequence: int
    uid: Optional[int] = None
    flags: List[str] = field(default_factory=list)
    internal_date: str = ""
    size: int = 0
    body_structure: Optional[list] = None
    header: bytes = b""
    body: Optional[bytes] = None


def _build_record(sequence: int, text: str, payloads: Dict[str, bytes]) -> FetchRecord:
    try:
        return _fill_record(FetchRecord(sequence=sequence), text, payloads)
    except (ValueError, TypeError) as e:
        raise ParseError(f"Malformed FETCH item: {e}", details={"sequence": sequence}) from e


def _fill_record(record: FetchRecord, text: str, payloads: Dict[str, bytes]) -> FetchRecord:
    items = SExprParser(text).parse_list()

    for key, value in zip(items[::2], items[1::2]):
        key = str(key).upper()
        if key == "UID":
            record.uid = int(value)
        elif key == "FLAGS":
            record.flags = [str(f) for f in (value or [])]
        elif key == "INTERNALDATE":
            record.internal_date = value or ""
        elif key == "RFC822.SIZE":
            record.size = int(value or 0)
        elif key in ("BODYSTRUCTURE", "BODY"):
            record.body_structure = value
        elif key.startswith("BODY["):
            section = key.replace(".PEEK", "")
            data = payloads.get(section)
            if data is None and isinstance(value, str):
                data = value.encode("utf-8", errors="surrogateescape")
            if section.startswith("BODY[HEADER"):
                record.header = data or b""
            else:
                record.body = data or b""

    return record


def parse_fetch_response(lines: Sequence[Line]) -> Tuple[List[FetchRecord], int]:
    """Turn aioimaplib FETCH output into records.

    Body section literals are kept as raw bytes, any other literal is folded
    back into the text as a quoted string. A record that cannot be parsed is
    logged and skipped.

    Returns:
        Tuple[List[FetchRecord], int]: Parsed records and the number skipped.
    """
    records: List[FetchRecord] = []
    failures = 0
    sequence: Optional[int] = None
    text = ""
    payloads: Dict[str, bytes] = {}

    def flush() -> None:
        nonlocal failures
        if sequence is None:
            return
        try:
            records.append(_build_record(sequence, text, payloads))
        except ParseError as e:
            failures += 1
            logger.warning(f"Skipping unparseable FETCH response {sequence}: {e.message}")

    for line in lines:
        if isinstance(line, bytearray):
            if sequence is None:
                continue
            marker = _LITERAL_MARKER.search(text)
            if marker is None:
                continue
            section = _BODY_SECTION.search(text)
            if section:
                payloads[section.group(1).upper().replace(".PEEK", "")] = bytes(line)
                text = text[: marker.start()] + '""'
            else:
                text = text[: marker.start()] + quote(_text(line))
            continue

        decoded = _text(line)
        match = _FETCH_START.match(decoded)
        if match:
            flush()
            sequence = int(match.group(1))
            text = match.group(2)
            payloads = {}
        elif sequence is not None:
            text += " " + decoded

    flush()
    return records, failures


## LIST / SELECT responses


@dataclass
class MailboxInfo:
    name: str
    delimiter: Optional[str]
    attributes: List[str]


def parse_list_response(lines: Sequence[Line]) -> List[MailboxInfo]:
    """Parse ``LIST`` output; lines that do not look like mailboxes are ignored."""
    mailboxes: List[MailboxInfo] = []
    pending = ""

    for line in list(lines) + [""]:
        if isinstance(line, bytearray) and pending:
            marker = _LITERAL_MARKER.search(pending)
            if marker:
                pending = pending[: marker.start()] + quote(_text(line))
            continue

        if pending:
            try:
                attributes, delimiter, name = SExprParser(pending).parse_all()[:3]
                mailboxes.append(
                    MailboxInfo(
                        name=str(name),
                        delimiter=delimiter,
                        attributes=[str(a) for a in attributes or []],
                    )
                )
            except (ParseError, ValueError, TypeError) as e:
                logger.debug(f"Ignoring unparseable LIST line {pending!r}: {e}")
            pending = ""

        decoded = _text(line).strip()
        if decoded.upper().startswith(("* LIST ", "LIST ")):
            decoded = decoded.split(" ", 2 if decoded.startswith("*") else 1)[-1]
        if decoded.startswith("("):
            pending = decoded

    return mailboxes


def parse_status_lines(lines: Sequence[Line]) -> Dict[str, int]:
    """Extract EXISTS, UIDVALIDITY and UIDNEXT from SELECT or STATUS output."""
    status: Dict[str, int] = {}
    for line in lines:
        if isinstance(line, bytearray):
            continue
        decoded = _text(line).strip()
        for key, pattern in _STATUS_PATTERNS.items():
            match = pattern.search(decoded)
            if match and key not in status:
                status[key] = int(match.group(1))
    return status
