"""SMTP constants and configuration values."""


class Timeouts:
    """Timeout values for SMTP operations (in seconds)."""

    SMTP_CONNECT = 30.0  # Initial connection timeout
    SMTP_LOGIN = 30.0
    SMTP_SEND = 60.0  # large attachments are slow to upload
    SMTP_QUIT = 5.0
    SMTP_STARTTLS = 30.0


class SMTPPorts:
    """Standard SMTP port numbers."""

    SUBMISSION = 587  # STARTTLS
    SUBMISSION_SSL = 465  # Implicit TLS
    SMTP = 25

    @classmethod
    def is_implicit_ssl(cls, port: int) -> bool:
        return port == cls.SUBMISSION_SSL


class TLSMode:
    """How the transport is secured for one account."""

    IMPLICIT = "implicit"
    STARTTLS = "starttls"
    PLAIN = "plain"

    @classmethod
    def for_account(cls, use_tls: bool, port: int) -> str:
        if not use_tls:
            return cls.PLAIN
        if SMTPPorts.is_implicit_ssl(port):
            return cls.IMPLICIT
        return cls.STARTTLS
