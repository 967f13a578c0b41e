"""IMAP constants and configuration values."""


class IMAPResponse:
    """Standard IMAP response codes."""

    OK = "OK"
    NO = "NO"
    BAD = "BAD"


class Timeouts:
    """Timeout values for IMAP operations (in seconds)."""

    IMAP_CONNECT = 30.0
    IMAP_LOGIN = 30.0
    IMAP_SELECT = 15.0
    IMAP_FETCH = 120.0  # whole-range metadata fetches can be large
    IMAP_LIST = 15.0
    IMAP_STATUS = 10.0
    IMAP_NOOP = 5.0
    IMAP_LOGOUT = 5.0


class FetchItems:
    """FETCH data item lists."""

    # Headers are fetched whole because References is not part of ENVELOPE
    METADATA = "(UID FLAGS INTERNALDATE RFC822.SIZE BODYSTRUCTURE BODY.PEEK[HEADER])"
    FULL = "(UID FLAGS BODY.PEEK[])"


class IMAPFolders:
    """Mailbox names tried, in order, when a folder has to be selected."""

    INBOX = "INBOX"

    ALL_MAIL_CANDIDATES = (
        "[Gmail]/All Mail",
        "[Google Mail]/All Mail",
        "All Mail",
    )
    SENT_CANDIDATES = (
        "[Gmail]/Sent Mail",
        "[Google Mail]/Sent Mail",
        "Sent",
        "Sent Messages",
        "INBOX.Sent",
    )
    DRAFTS_CANDIDATES = ("[Gmail]/Drafts", "Drafts", "INBOX.Drafts")
    TRASH_CANDIDATES = ("[Gmail]/Trash", "Trash", "Deleted Messages", "INBOX.Trash")
    SPAM_CANDIDATES = ("[Gmail]/Spam", "Spam", "Junk")
    ARCHIVE_CANDIDATES = ("Archive", "INBOX.Archive")

    # Local system folders created for every account: (display name, remote name)
    SYSTEM_FOLDERS = {
        "inbox": ("Inbox", "INBOX"),
        "sent": ("Sent", "[Gmail]/Sent Mail"),
        "drafts": ("Drafts", "[Gmail]/Drafts"),
        "trash": ("Trash", "[Gmail]/Trash"),
    }


class IMAPFlags:
    """Standard IMAP flags."""

    SEEN = "\\Seen"
    FLAGGED = "\\Flagged"
    DELETED = "\\Deleted"
    ANSWERED = "\\Answered"
    DRAFT = "\\Draft"

    ALL_MAIL_ATTRIBUTE = "\\All"
