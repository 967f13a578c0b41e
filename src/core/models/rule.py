"""Filter rule domain model."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Mapping

from src.utils.dates import utc_now


class ConditionField(Enum):
    FROM = "from"
    TO = "to"
    SUBJECT = "subject"
    BODY = "body"


class Operator(Enum):
    """Comparison operators; accepts the un-underscored spellings too."""

    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalised = value.lower().replace("-", "_")
            aliases = {"startswith": "starts_with", "endswith": "ends_with"}
            normalised = aliases.get(normalised, normalised)
            for member in cls:
                if member.value == normalised:
                    return member
        return None


class MatchMode(Enum):
    ALL = "all"
    ANY = "any"


class ActionType(Enum):
    LABEL = "label"
    MOVE = "move"
    STAR = "star"
    MARK_READ = "mark_read"
    DELETE = "delete"


@dataclass
class RuleCondition:
    field: ConditionField
    operator: Operator
    value: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuleCondition":
        return cls(
            field=ConditionField(data["field"]),
            operator=Operator(data["operator"]),
            value=str(data.get("value", "")),
        )

    def to_dict(self) -> dict:
        return {"field": self.field.value, "operator": self.operator.value, "value": self.value}


@dataclass
class RuleAction:
    type: ActionType
    value: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuleAction":
        return cls(type=ActionType(data["type"]), value=str(data.get("value") or ""))

    def to_dict(self) -> dict:
        return {"type": self.type.value, "value": self.value}


@dataclass
class Rule:
    """An ordered set of conditions and the actions applied on a match."""

    account_id: str
    name: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    is_enabled: bool = True
    priority: int = 0
    match_type: MatchMode = MatchMode.ALL
    conditions: List[RuleCondition] = field(default_factory=list)
    actions: List[RuleAction] = field(default_factory=list)
    stop_processing: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Rule":
        data = dict(row)
        data["match_type"] = MatchMode(data["match_type"])
        data["conditions"] = [RuleCondition.from_dict(c) for c in data.get("conditions") or []]
        data["actions"] = [RuleAction.from_dict(a) for a in data.get("actions") or []]
        return cls(**data)

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "name": self.name,
            "is_enabled": self.is_enabled,
            "priority": self.priority,
            "match_type": self.match_type.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "stop_processing": self.stop_processing,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
