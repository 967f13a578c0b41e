"""Bounded per-account pool of authenticated IMAP connections."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, List, Optional

from src.core.models import Account
from src.security.vault import CredentialVault
from src.utils.errors import (
    AuthenticationError,
    ConnectError,
    NetworkError,
)
from src.utils.logging import get_logger, log_event

from .connection import IMAPConnection

logger = get_logger(__name__)

ConnectionFactory = Callable[..., IMAPConnection]


@dataclass
class _AccountSlots:
    """Idle connections plus a semaphore bounding connections in use."""

    slots: asyncio.Semaphore
    idle: List[IMAPConnection] = field(default_factory=list)


class ConnectionPool:
    """Hands out authenticated connections keyed by account id.

    At most ``max_size`` connections per account are checked out at once;
    further callers wait for a release. Idle connections older than
    ``max_age`` seconds, or failing a NOOP, are closed instead of reused.
    Opening a connection is attempted ``connect_attempts`` times back to back
    before ConnectError is raised.
    """

    def __init__(
        self,
        vault: CredentialVault,
        max_size: int = 3,
        max_age: float = 300.0,
        connect_attempts: int = 3,
        timeout: float = 30.0,
        acquire_timeout: Optional[float] = 120.0,
        connection_factory: ConnectionFactory = IMAPConnection,
    ):
        self.vault = vault
        self.max_size = max_size
        self.max_age = max_age
        self.connect_attempts = connect_attempts
        self.timeout = timeout
        self.acquire_timeout = acquire_timeout
        self._factory = connection_factory

        self._accounts: Dict[str, _AccountSlots] = {}
        self._closed = False

    def _slots_for(self, account_id: str) -> _AccountSlots:
        slots = self._accounts.get(account_id)
        if slots is None:
            slots = _AccountSlots(slots=asyncio.Semaphore(self.max_size))
            self._accounts[account_id] = slots
        return slots

    async def acquire(self, account: Account) -> IMAPConnection:
        """Get a healthy connection for an account, opening one if needed.

        Args:
            account: Account whose stored credentials are used to log in.

        Returns:
            IMAPConnection: Connection owned by the caller until release().

        Raises:
            ConnectError: If every connection attempt failed or the pool is exhausted.
            DecryptionError: If the stored password cannot be decrypted.
        """
        if self._closed:
            raise ConnectError("Connection pool is closed")

        account_slots = self._slots_for(account.id)
        try:
            await asyncio.wait_for(account_slots.slots.acquire(), timeout=self.acquire_timeout)
        except asyncio.TimeoutError as e:
            raise ConnectError(
                "Timed out waiting for a free IMAP connection",
                details={"account_id": account.id, "max_size": self.max_size},
            ) from e

        try:
            connection = await self._take_idle(account_slots)
            if connection is None:
                connection = await self._open(account)
            return connection

        except BaseException:
            account_slots.slots.release()
            raise

    async def release(self, account_id: str, connection: IMAPConnection, discard: bool = False) -> None:
        """Return a connection; broken or expired ones are closed instead."""
        account_slots = self._slots_for(account_id)
        try:
            if discard or self._closed or connection.is_expired(self.max_age):
                await connection.close()
            else:
                account_slots.idle.append(connection)
        finally:
            account_slots.slots.release()

    @asynccontextmanager
    async def connection(self, account: Account) -> AsyncIterator[IMAPConnection]:
        """Acquire a connection for the duration of a block.

        A network or protocol failure inside the block discards the connection.
        """
        conn = await self.acquire(account)
        discard = False
        try:
            yield conn
        except (NetworkError, asyncio.TimeoutError, OSError):
            discard = True
            raise
        finally:
            await self.release(account.id, conn, discard=discard)

    async def _take_idle(self, account_slots: _AccountSlots) -> Optional[IMAPConnection]:
        while account_slots.idle:
            connection = account_slots.idle.pop()
            if connection.is_expired(self.max_age):
                logger.debug("Discarding expired IMAP connection", extra={"age": round(connection.age, 1)})
                await connection.close()
                continue
            if not await connection.is_healthy():
                logger.debug("Discarding unhealthy IMAP connection")
                await connection.close()
                continue
            return connection
        return None

    async def _open(self, account: Account) -> IMAPConnection:
        password = self.vault.decrypt(account.imap_password)
        last_error: Optional[Exception] = None

        for attempt in range(1, self.connect_attempts + 1):
            connection = self._factory(
                host=account.imap_host,
                port=account.imap_port,
                username=account.imap_username,
                password=password,
                use_tls=account.imap_use_tls,
                timeout=self.timeout,
            )
            try:
                await connection.connect()
                return connection

            except (NetworkError, AuthenticationError) as e:
                last_error = e
                logger.warning(
                    f"IMAP connect attempt {attempt}/{self.connect_attempts} failed: {e}",
                    extra={"account_id": account.id, "server": account.imap_host},
                )

        log_event(
            "imap_connect_failed",
            f"Could not connect to {account.imap_host}",
            account_id=account.id,
            attempts=self.connect_attempts,
        )
        raise ConnectError(
            f"Could not connect to {account.imap_host} after {self.connect_attempts} attempts: {last_error}",
            details={"account_id": account.id, "server": account.imap_host},
        ) from last_error

    async def close_account(self, account_id: str) -> None:
        """Close every idle connection held for one account."""
        account_slots = self._accounts.get(account_id)
        if not account_slots:
            return
        while account_slots.idle:
            await account_slots.idle.pop().close()

    async def close_all(self) -> None:
        """Close idle connections and refuse new acquisitions."""
        self._closed = True
        for account_id in list(self._accounts):
            await self.close_account(account_id)
        logger.info("IMAP connection pool closed")

    def idle_count(self, account_id: str) -> int:
        account_slots = self._accounts.get(account_id)
        return len(account_slots.idle) if account_slots else 0
