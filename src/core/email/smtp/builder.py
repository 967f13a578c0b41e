"""RFC 5322 message construction for outgoing mail."""

import uuid
from email import encoders
from email.charset import QP, Charset
from email.header import Header
from email.message import Message as EmailMessage
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.nonmultipart import MIMENonMultipart
from email.utils import formataddr, formatdate
from typing import Optional

from src.core.models import Account, ComposeRequest, OutgoingAttachment
from src.utils.errors import MissingRequiredFieldError


def _utf8_qp() -> Charset:
    charset = Charset("utf-8")
    charset.body_encoding = QP
    return charset


def _header(value: str):
    return value if value.isascii() else Header(value, "utf-8")


def _body_part(compose: ComposeRequest) -> MIMENonMultipart:
    part = MIMENonMultipart("text", "html" if compose.is_html else "plain")
    part.set_payload(compose.body, charset=_utf8_qp())
    return part


def _attachment_part(attachment: OutgoingAttachment) -> MIMEBase:
    maintype, _, subtype = attachment.content_type.partition("/")
    part = MIMEBase(maintype or "application", subtype or "octet-stream")
    part.set_param("name", attachment.filename)
    part.set_payload(attachment.content)
    encoders.encode_base64(part)
    part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
    return part


def build_message(account: Account, compose: ComposeRequest, message_id: Optional[str] = None) -> EmailMessage:
    """Build the MIME message for a compose request.

    Plain messages are a single quoted-printable text part; with attachments
    the message becomes multipart/mixed with base64 attachment parts. Bcc
    recipients never appear in the headers.

    Raises:
        MissingRequiredFieldError: If there is no recipient at all
    """
    if not compose.recipients:
        raise MissingRequiredFieldError("At least one recipient is required")

    if compose.attachments:
        msg = MIMEMultipart("mixed")
        msg.attach(_body_part(compose))
        for attachment in compose.attachments:
            msg.attach(_attachment_part(attachment))
    else:
        msg = _body_part(compose)

    msg["From"] = formataddr((account.name, account.email_address)) if account.name else account.email_address
    if compose.to:
        msg["To"] = ", ".join(compose.to)
    if compose.cc:
        msg["Cc"] = ", ".join(compose.cc)
    msg["Subject"] = _header(compose.subject)
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = message_id or f"<{uuid.uuid4()}@{account.smtp_host}>"
    if compose.in_reply_to:
        msg["In-Reply-To"] = compose.in_reply_to
    if compose.references:
        msg["References"] = compose.references
    return msg
