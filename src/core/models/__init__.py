"""Domain models for accounts, folders, messages, rules and outgoing mail."""

from .account import Account
from .compose import ComposeRequest, Draft, OutgoingAttachment, PendingSend
from .folder import Folder, FolderNode, FolderType
from .message import Attachment, EmailAddress, Label, Message
from .rule import ActionType, ConditionField, MatchMode, Operator, Rule, RuleAction, RuleCondition
from .thread import ThreadSummary

__all__ = [
    "Account",
    "ActionType",
    "Attachment",
    "ComposeRequest",
    "ConditionField",
    "Draft",
    "EmailAddress",
    "Folder",
    "FolderNode",
    "FolderType",
    "Label",
    "MatchMode",
    "Message",
    "Operator",
    "OutgoingAttachment",
    "PendingSend",
    "Rule",
    "RuleAction",
    "RuleCondition",
    "ThreadSummary",
]
