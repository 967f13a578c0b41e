"""Symmetric encryption of stored IMAP/SMTP credentials."""

import base64
import binascii
import os
import re
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from src.utils.errors import DecryptionError, EncryptionError
from src.utils.logging import get_logger, log_event

logger = get_logger(__name__)

# version byte + timestamp + IV + one AES block + HMAC
_MIN_TOKEN_BYTES = 1 + 8 + 16 + 16 + 32
_TOKEN_VERSION = 0x80
_URLSAFE_B64 = re.compile(r"^[A-Za-z0-9_\-]+={0,2}$")


class CredentialVault:
    """Encrypts credentials with a Fernet master key.

    Without a key the vault is a pass-through so that an unconfigured install
    keeps working. A value that does not look like a Fernet token is treated as
    legacy plaintext on read; anything that does look like one must decrypt
    cleanly or DecryptionError is raised.
    """

    def __init__(self, key: Optional[bytes] = None):
        self._fernet = Fernet(key) if key else None

    @classmethod
    def from_key_file(
        cls, key_path: Path, env_var: Optional[str] = None, create: bool = False
    ) -> "CredentialVault":
        """Build a vault from an environment variable or a key file.

        Args:
            key_path: Location of the master key file.
            env_var: Environment variable checked before the file.
            create: Generate and store a new key when none exists.

        Returns:
            CredentialVault: Configured vault (pass-through when no key found).
        """
        if env_var and os.getenv(env_var):
            return cls(os.environ[env_var].encode())

        key_path = Path(key_path)
        if key_path.exists():
            return cls(key_path.read_bytes().strip())

        if not create:
            logger.warning("No master key configured, credentials stored unencrypted")
            return cls(None)

        key = Fernet.generate_key()
        key_path.parent.mkdir(parents=True, exist_ok=True)
        key_path.write_bytes(key)
        key_path.chmod(0o600)
        log_event("master_key_created", "Generated new master key", path=str(key_path))
        return cls(key)

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    @staticmethod
    def is_ciphertext(value: str) -> bool:
        """Check whether a stored value has the shape of a Fernet token."""
        if not value or not _URLSAFE_B64.match(value):
            return False
        try:
            raw = base64.urlsafe_b64decode(value.encode("ascii"))
        except (binascii.Error, ValueError):
            return False
        return len(raw) >= _MIN_TOKEN_BYTES and raw[0] == _TOKEN_VERSION

    def needs_migration(self, value: str) -> bool:
        """True when a key is configured but the stored value is still plaintext."""
        return self.enabled and bool(value) and not self.is_ciphertext(value)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a credential; returns it unchanged when no key is configured."""
        if not plaintext or self._fernet is None:
            return plaintext
        try:
            return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Failed to encrypt credential: {e}") from e

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored credential.

        Args:
            ciphertext: Value read from the accounts table.

        Returns:
            str: The plaintext credential.

        Raises:
            DecryptionError: The value is a token but the key is missing or wrong.
        """
        if not ciphertext:
            return ciphertext

        if not self.is_ciphertext(ciphertext):
            logger.warning("Stored credential is not encrypted, treating as legacy plaintext")
            return ciphertext

        if self._fernet is None:
            raise DecryptionError("Credential is encrypted but no master key is configured")

        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeDecodeError) as e:
            raise DecryptionError("Credential could not be decrypted with the configured key") from e
