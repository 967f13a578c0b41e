"""SMTP transmission for one account per send."""

import asyncio
import time
from dataclasses import dataclass
from email.message import Message as EmailMessage
from typing import Callable, List, Optional

import aiosmtplib

from src.core.models import Account, ComposeRequest
from src.security.vault import CredentialVault
from src.utils.errors import (
    InvalidCredentialsError,
    MailSyncError,
    NetworkError,
    NetworkTimeoutError,
    SMTPError,
)
from src.utils.logging import async_log_call, get_logger

from .builder import build_message
from .constants import TLSMode, Timeouts

logger = get_logger(__name__)


@dataclass
class SMTPSendStats:
    """Tracks SMTP send metrics."""

    emails_sent: int = 0
    send_failures: int = 0
    total_send_time: float = 0.0

    def record_send(self, duration: float, success: bool = True) -> None:
        self.total_send_time += duration
        if success:
            self.emails_sent += 1
        else:
            self.send_failures += 1

    @property
    def avg_send_time(self) -> float:
        if self.emails_sent == 0:
            return 0.0
        return self.total_send_time / self.emails_sent


class SMTPSender:
    """Builds and transmits messages over a fresh SMTP session per send.

    The transport follows the account: implicit TLS on port 465, STARTTLS on
    any other port when TLS is enabled, plaintext otherwise.
    """

    def __init__(
        self,
        vault: CredentialVault,
        timeout: float = Timeouts.SMTP_CONNECT,
        client_factory: Callable[..., aiosmtplib.SMTP] = aiosmtplib.SMTP,
    ):
        self.vault = vault
        self.timeout = timeout
        self._client_factory = client_factory
        self.stats = SMTPSendStats()

    @async_log_call
    async def send(self, account: Account, compose: ComposeRequest) -> str:
        """Send a compose request from an account.

        Returns:
            str: The Message-ID header of the sent message.

        Raises:
            DecryptionError: If the stored SMTP password cannot be decrypted
            InvalidCredentialsError: If the server rejects the login
            NetworkError: If the server cannot be reached
            SMTPError: If the server rejects the message
        """
        message = build_message(account, compose)
        await self.send_message(account, message, compose.recipients)
        return message["Message-ID"]

    async def send_message(self, account: Account, message: EmailMessage, recipients: List[str]) -> None:
        password = self.vault.decrypt(account.smtp_password) if account.smtp_password else ""
        send_start = time.time()

        client = await self._connect(account, password)
        try:
            await asyncio.wait_for(
                client.send_message(message, recipients=recipients),
                timeout=Timeouts.SMTP_SEND,
            )
            self.stats.record_send(time.time() - send_start)
            logger.info(
                "Email sent successfully",
                extra={
                    "account_id": account.id,
                    "recipients": len(recipients),
                    "duration_seconds": round(time.time() - send_start, 2),
                },
            )

        except asyncio.TimeoutError as e:
            self.stats.record_send(time.time() - send_start, success=False)
            raise NetworkTimeoutError(
                "SMTP send operation timed out", details={"server": account.smtp_host}
            ) from e

        except aiosmtplib.SMTPException as e:
            self.stats.record_send(time.time() - send_start, success=False)
            raise SMTPError(
                f"Failed to send email: {e}",
                details={"server": account.smtp_host, "recipients": len(recipients)},
            ) from e

        finally:
            await self._quit(client)

    async def _connect(self, account: Account, password: str) -> aiosmtplib.SMTP:
        mode = TLSMode.for_account(account.smtp_use_tls, account.smtp_port)
        logger.info(
            "Connecting to SMTP server",
            extra={"server": account.smtp_host, "port": account.smtp_port, "ssl_mode": mode},
        )

        client = self._client_factory(
            hostname=account.smtp_host,
            port=account.smtp_port,
            timeout=self.timeout,
            use_tls=mode == TLSMode.IMPLICIT,
            start_tls=False,
        )

        ready = False
        try:
            await self._open(client, account, mode, password)
            ready = True
            return client
        finally:
            if not ready:
                await self._quit(client)

    async def _open(self, client: aiosmtplib.SMTP, account: Account, mode: str, password: str) -> None:
        """Connect, upgrade and log in, mapping failures onto the error hierarchy."""
        try:
            await asyncio.wait_for(client.connect(), timeout=Timeouts.SMTP_CONNECT)

            if mode == TLSMode.STARTTLS:
                await asyncio.wait_for(client.starttls(), timeout=Timeouts.SMTP_STARTTLS)

            if account.smtp_username and password:
                await asyncio.wait_for(
                    client.login(account.smtp_username, password),
                    timeout=Timeouts.SMTP_LOGIN,
                )

        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(
                "SMTP connection timeout", details={"server": account.smtp_host}
            ) from e

        except aiosmtplib.SMTPAuthenticationError as e:
            logger.warning(
                "SMTP authentication failed",
                extra={"server": account.smtp_host, "username": account.smtp_username},
            )
            raise InvalidCredentialsError(
                "SMTP authentication failed. Please verify your credentials.",
                details={"server": account.smtp_host, "username": account.smtp_username},
            ) from e

        except aiosmtplib.SMTPConnectError as e:
            raise NetworkError(
                f"Failed to connect to SMTP server: {e}",
                details={"server": account.smtp_host, "port": account.smtp_port},
            ) from e

        except aiosmtplib.SMTPException as e:
            raise SMTPError(
                f"SMTP connection error: {e}", details={"server": account.smtp_host}
            ) from e

        except MailSyncError:
            raise

        except Exception as e:
            raise NetworkError(
                f"Failed to connect to SMTP server: {e}", details={"server": account.smtp_host}
            ) from e

    async def _quit(self, client: Optional[aiosmtplib.SMTP]) -> None:
        if client is None:
            return
        try:
            await asyncio.wait_for(client.quit(), timeout=Timeouts.SMTP_QUIT)
        except Exception as e:
            logger.debug(f"Error closing SMTP connection: {e}")
