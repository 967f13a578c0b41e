"""Outgoing mail: MIME construction and SMTP transmission."""

from .builder import build_message
from .sender import SMTPSender, SMTPSendStats

__all__ = [
    "SMTPSendStats",
    "SMTPSender",
    "build_message",
]
