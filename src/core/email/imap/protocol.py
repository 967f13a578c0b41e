"""IMAP protocol operations used by the sync and body-fetch paths."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Dict, Iterable, List

from src.utils.errors import IMAPError, NetworkTimeoutError, ProtocolSelectError
from src.utils.logging import get_logger

from .connection import IMAPConnection
from .constants import FetchItems, IMAPResponse, Timeouts
from .response import (
    FetchRecord,
    MailboxInfo,
    parse_fetch_response,
    parse_list_response,
    parse_status_lines,
    quote,
)

logger = get_logger(__name__)


@dataclass
class MailboxStatus:
    """Server-side state of a selected mailbox."""

    name: str
    exists: int = 0
    uid_validity: int = 0
    uid_next: int = 0


@dataclass
class FetchBatch:
    records: List[FetchRecord] = field(default_factory=list)
    failures: int = 0


def format_uid_set(uids: Iterable[int]) -> str:
    """Compress UIDs into an IMAP sequence set, e.g. ``1:3,7,9:10``."""
    ordered = sorted(set(uids))
    if not ordered:
        return ""

    ranges = []
    start = prev = ordered[0]
    for uid in ordered[1:]:
        if uid == prev + 1:
            prev = uid
            continue
        ranges.append(f"{start}:{prev}" if start != prev else str(start))
        start = prev = uid
    ranges.append(f"{start}:{prev}" if start != prev else str(start))
    return ",".join(ranges)


class IMAPProtocol:
    """Low-level IMAP commands on one pooled connection."""

    def __init__(self, connection: IMAPConnection):
        self.connection = connection

    @property
    def client(self):
        if self.connection.client is None:
            raise IMAPError("IMAP connection is not open")
        return self.connection.client

    async def _run(self, command: Awaitable, timeout: float, operation: str):
        try:
            return await asyncio.wait_for(command, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(
                f"IMAP {operation} timed out", details={"server": self.connection.host}
            ) from e
        except IMAPError:
            raise
        except Exception as e:
            raise IMAPError(
                f"IMAP {operation} failed: {e}", details={"server": self.connection.host}
            ) from e

    async def select(self, mailbox: str) -> MailboxStatus:
        """Select a mailbox and read its UIDVALIDITY, UIDNEXT and EXISTS.

        Raises:
            ProtocolSelectError: If the server refuses the mailbox
        """
        response = await self._run(self.client.select(quote(mailbox)), Timeouts.IMAP_SELECT, "SELECT")
        if response.result != IMAPResponse.OK:
            raise ProtocolSelectError(
                f"Mailbox {mailbox} could not be selected",
                details={"mailbox": mailbox, "response": response.result},
            )

        status = parse_status_lines(response.lines)
        if "uid_next" not in status or "uid_validity" not in status:
            status = {**await self._status(mailbox), **status}

        self.connection.selected_mailbox = mailbox
        self.connection.stats.record_operation()

        result = MailboxStatus(
            name=mailbox,
            exists=status.get("exists", status.get("messages", 0)),
            uid_validity=status.get("uid_validity", 0),
            uid_next=status.get("uid_next", 0),
        )
        logger.debug(
            f"Selected mailbox {mailbox}",
            extra={"exists": result.exists, "uid_validity": result.uid_validity, "uid_next": result.uid_next},
        )
        return result

    async def select_first(self, candidates: Iterable[str]) -> MailboxStatus:
        """Select the first candidate mailbox the server accepts.

        Args:
            candidates: Mailbox names in order of preference.

        Raises:
            ProtocolSelectError: If none of the candidates exist
        """
        tried = []
        for name in dict.fromkeys(candidates):
            try:
                return await self.select(name)
            except ProtocolSelectError:
                tried.append(name)
                logger.debug(f"Mailbox {name} not available, trying next candidate")

        raise ProtocolSelectError(
            f"None of the mailboxes {', '.join(tried)} exist on the server",
            details={"candidates": tried, "server": self.connection.host},
        )

    async def _status(self, mailbox: str) -> Dict[str, int]:
        response = await self._run(
            self.client.status(quote(mailbox), "(MESSAGES UIDNEXT UIDVALIDITY)"),
            Timeouts.IMAP_STATUS,
            "STATUS",
        )
        if response.result != IMAPResponse.OK:
            return {}
        return parse_status_lines(response.lines)

    async def list_mailboxes(self) -> List[MailboxInfo]:
        """List every mailbox with its delimiter and attributes."""
        response = await self._run(self.client.list('""', "*"), Timeouts.IMAP_LIST, "LIST")
        self.connection.check_response(response, "list")
        return parse_list_response(response.lines)

    async def fetch_metadata(self, uid_range: str) -> FetchBatch:
        """Fetch flags, dates, structure and headers for a UID range.

        Bodies are not downloaded; attachments are later detected from the
        BODYSTRUCTURE tree.
        """
        response = await self._run(
            self.client.uid("fetch", uid_range, FetchItems.METADATA),
            Timeouts.IMAP_FETCH,
            "FETCH",
        )
        self.connection.check_response(response, f"fetch metadata {uid_range}")

        records, failures = parse_fetch_response(response.lines)
        records = [r for r in records if r.uid is not None]
        logger.debug(
            "Fetched message metadata",
            extra={"uid_range": uid_range, "count": len(records), "failures": failures},
        )
        return FetchBatch(records=records, failures=failures)

    async def fetch_bodies(self, uids: Iterable[int]) -> Dict[int, bytes]:
        """Fetch full RFC 822 messages for the given UIDs in one command.

        Returns:
            Dict[int, bytes]: UID to raw message; UIDs the server no longer has are absent.
        """
        uids = list(uids)
        uid_set = format_uid_set(uids)
        if not uid_set:
            return {}

        response = await self._run(
            self.client.uid("fetch", uid_set, FetchItems.FULL),
            Timeouts.IMAP_FETCH,
            "FETCH",
        )
        self.connection.check_response(response, f"fetch bodies {uid_set}")

        records, _ = parse_fetch_response(response.lines)
        bodies = {r.uid: r.body for r in records if r.uid is not None and r.body is not None}

        missing = set(uids) - set(bodies)
        if missing:
            logger.warning("Some messages could not be fetched", extra={"missing_uids": sorted(missing)})
        return bodies
