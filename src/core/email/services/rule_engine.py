"""Filter rule evaluation and action application."""

import re
from typing import Optional

from src.core.database.repositories import LabelRepository, MessageRepository, RuleRepository
from src.core.models import ActionType, ConditionField, MatchMode, Message, Operator, Rule, RuleAction, RuleCondition
from src.utils.errors import MailSyncError
from src.utils.logging import get_logger, log_event

logger = get_logger(__name__)


def field_value(message: Message, field: ConditionField) -> str:
    if field is ConditionField.FROM:
        return f"{message.from_address} {message.from_name}"
    if field is ConditionField.TO:
        return ", ".join(a.address for a in message.to_addresses)
    if field is ConditionField.SUBJECT:
        return message.subject
    return message.text_body


def condition_matches(condition: RuleCondition, message: Message) -> bool:
    """Test one condition; comparisons ignore case except for regex."""
    value = field_value(message, condition.field)

    if condition.operator is Operator.REGEX:
        try:
            return re.search(condition.value, value) is not None
        except re.error:
            logger.warning(f"Invalid rule regex {condition.value!r}")
            return False

    haystack = value.lower()
    needle = condition.value.lower()
    if condition.operator is Operator.CONTAINS:
        return needle in haystack
    if condition.operator is Operator.EQUALS:
        return haystack == needle
    if condition.operator is Operator.STARTS_WITH:
        return haystack.startswith(needle)
    if condition.operator is Operator.ENDS_WITH:
        return haystack.endswith(needle)
    return False


def rule_matches(rule: Rule, message: Message) -> bool:
    """A rule without conditions never matches."""
    if not rule.conditions:
        return False
    if rule.match_type is MatchMode.ANY:
        return any(condition_matches(c, message) for c in rule.conditions)
    return all(condition_matches(c, message) for c in rule.conditions)


class RuleEngine:
    """Runs an account's rules against messages as they are ingested."""

    def __init__(
        self,
        rules: RuleRepository,
        messages: MessageRepository,
        labels: LabelRepository,
    ):
        self.rules = rules
        self.messages = messages
        self.labels = labels

    async def apply(self, message: Message) -> int:
        """Apply enabled rules in priority order to one message.

        Returns:
            int: Number of rules that matched.
        """
        matched = 0
        for rule in await self.rules.list_for_account(message.account_id, enabled_only=True):
            if not rule_matches(rule, message):
                continue

            matched += 1
            deleted = await self._run_actions(rule, message)
            if deleted or rule.stop_processing:
                break
        return matched

    async def run_rule_now(self, rule_id: str) -> int:
        """Apply one rule to every stored message of its account.

        The rule's enabled flag is ignored.

        Returns:
            int: Number of messages the rule matched.

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        rule = await self.rules.get(rule_id)
        affected = 0
        for message in await self.messages.list_by_account(rule.account_id):
            if rule_matches(rule, message):
                await self._run_actions(rule, message)
                affected += 1

        log_event(
            "rule_applied",
            f"Rule '{rule.name}' applied to existing messages",
            rule_id=rule.id,
            account_id=rule.account_id,
            affected=affected,
        )
        return affected

    async def _run_actions(self, rule: Rule, message: Message) -> bool:
        """Apply a rule's actions in order; returns True once the message is deleted."""
        for action in rule.actions:
            try:
                if await self._apply_action(action, message):
                    return True
            except MailSyncError as e:
                logger.error(
                    f"Rule action {action.type.value} failed: {e.message}",
                    extra={"rule_id": rule.id, "email_id": message.id},
                )
        return False

    async def _apply_action(self, action: RuleAction, message: Message) -> Optional[bool]:
        if action.type is ActionType.LABEL and action.value:
            await self.labels.assign(message.id, action.value)
        elif action.type is ActionType.MOVE and action.value:
            await self.messages.move(message.id, action.value)
            message.folder_id = action.value
        elif action.type is ActionType.STAR:
            await self.messages.update_flags(message.id, is_starred=True)
            message.star()
        elif action.type is ActionType.MARK_READ:
            await self.messages.update_flags(message.id, is_read=True)
            message.mark_as_read()
        elif action.type is ActionType.DELETE:
            await self.messages.delete(message.id)
            return True
        return None
