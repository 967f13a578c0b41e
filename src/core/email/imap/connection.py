"""Single authenticated IMAP connection."""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import aioimaplib

from src.utils.errors import (
    IMAPError,
    InvalidCredentialsError,
    NetworkError,
    NetworkTimeoutError,
)
from src.utils.logging import get_logger

from .constants import IMAPResponse, Timeouts

logger = get_logger(__name__)


@dataclass
class ConnectionStats:
    """Tracks IMAP connection metrics."""

    operations_count: int = 0
    health_checks_passed: int = 0
    health_checks_failed: int = 0
    last_operation_time: Optional[float] = None

    def record_operation(self) -> None:
        self.operations_count += 1
        self.last_operation_time = time.time()


class IMAPConnection:
    """Owns one aioimaplib client for one account.

    Connections are created by the pool, which handles retries and reuse; this
    class only knows how to log in, check health and log out.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        use_tls: bool = True,
        timeout: float = Timeouts.IMAP_CONNECT,
    ):
        self.host = host
        self.port = port
        self.username = username
        self._password = password
        self.use_tls = use_tls
        self.timeout = timeout

        self.client: Optional[aioimaplib.IMAP4] = None
        self.created_at: Optional[float] = None
        self.selected_mailbox: Optional[str] = None
        self.stats = ConnectionStats()

    @property
    def age(self) -> float:
        return time.time() - self.created_at if self.created_at else 0.0

    def is_expired(self, max_age: float) -> bool:
        """True when the connection is older than ``max_age`` seconds."""
        return self.client is None or self.age > max_age

    def check_response(self, response, operation: str) -> None:
        """Raise IMAPError unless the server answered OK.

        Args:
            response: aioimaplib Response
            operation: Description of the operation performed
        """
        if response.result != IMAPResponse.OK:
            error_msg = response.lines[0] if response.lines else "No response"
            if isinstance(error_msg, (bytes, bytearray)):
                error_msg = bytes(error_msg).decode("utf-8", errors="replace")

            raise IMAPError(
                f"IMAP operation failed: {operation}",
                details={"response": str(error_msg), "operation": operation, "server": self.host},
            )

        self.stats.record_operation()

    async def connect(self) -> None:
        """Open the socket, wait for the greeting and log in.

        Raises:
            NetworkTimeoutError: If the server does not answer in time
            InvalidCredentialsError: If the server rejects the login
            NetworkError: If the socket or TLS handshake fails
        """
        start_time = time.time()
        client_cls = aioimaplib.IMAP4_SSL if self.use_tls else aioimaplib.IMAP4

        try:
            client = client_cls(host=self.host, port=self.port, timeout=self.timeout)
            await asyncio.wait_for(client.wait_hello_from_server(), timeout=Timeouts.IMAP_CONNECT)

            response = await asyncio.wait_for(
                client.login(self.username, self._password), timeout=Timeouts.IMAP_LOGIN
            )
            if response.result != IMAPResponse.OK:
                raise InvalidCredentialsError(
                    "IMAP authentication failed",
                    details={"server": self.host, "username": self.username},
                )

        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(
                "IMAP connection timeout", details={"server": self.host}
            ) from e

        except InvalidCredentialsError:
            raise

        except Exception as e:
            error_msg = str(e).lower()
            if "authentication" in error_msg or "login" in error_msg:
                raise InvalidCredentialsError(
                    "IMAP authentication failed",
                    details={"server": self.host, "username": self.username},
                ) from e
            raise NetworkError(
                f"Failed to connect to IMAP server: {e}", details={"server": self.host}
            ) from e

        self.client = client
        self.created_at = time.time()
        logger.info(
            "IMAP connection established",
            extra={
                "server": self.host,
                "duration_seconds": round(self.created_at - start_time, 2),
            },
        )

    async def is_healthy(self) -> bool:
        """NOOP round-trip; False when the connection has gone away."""
        if self.client is None:
            return False
        try:
            response = await asyncio.wait_for(self.client.noop(), timeout=Timeouts.IMAP_NOOP)
            healthy = response.result == IMAPResponse.OK
        except Exception as e:
            logger.debug(f"IMAP health check failed: {e}")
            healthy = False

        if healthy:
            self.stats.health_checks_passed += 1
        else:
            self.stats.health_checks_failed += 1
        return healthy

    async def close(self) -> None:
        """Log out, tolerating a connection that is already gone."""
        if self.client is None:
            return
        try:
            await asyncio.wait_for(self.client.logout(), timeout=Timeouts.IMAP_LOGOUT)
        except Exception as e:
            logger.debug(f"Error closing IMAP connection: {e}")
        finally:
            self.client = None
            self.selected_mailbox = None
