"""
Rule-based action item extraction.

Extracts:
1. Commitments ("I'll send the deck")
2. Requests ("Can you review the PR")
3. Collaborative tasks ("Let's sync on the rollout")
4. Task markers ("TODO: rotate keys")

Each match yields one candidate. Assignee (@handle) and due hint
("by Friday") are read from the full message, not just the clause.
"""
import re
import structlog
from typing import List, Optional

from insight_core.evidence.rules import (
    ACTION_RULES,
    TEMPORAL_KEYWORDS,
    RuleTable,
    clean_clause,
    iter_matches,
    normalize_text,
    should_skip,
    truncate,
)
from insight_core.models import ExtractedAction, Message

logger = structlog.get_logger()


class ActionExtractor:
    """Extract action items from conversation messages."""

    ASSIGNEE_PATTERN = r"@(\w+)"
    DUE_PATTERN = r"\b(?:by|before|until)\s+(" + TEMPORAL_KEYWORDS + r")\b"

    def __init__(self, rules: RuleTable = ACTION_RULES):
        self.rules = rules
        self.assignee_pattern = re.compile(self.ASSIGNEE_PATTERN)
        self.due_pattern = re.compile(self.DUE_PATTERN, re.IGNORECASE)

    def extract_from_message(self, message: Message) -> List[ExtractedAction]:
        """
        Extract action candidates from a single message.

        Args:
            message: Source message (text kind)

        Returns:
            Candidates in rule-table order; empty for short or excluded text
        """
        text = normalize_text(message.text or "")
        if should_skip(text, self.rules):
            return []

        assignee = self._extract_assignee(text)
        due_hint = self._extract_due_hint(text)

        actions = []
        for match in iter_matches(text, self.rules):
            title = truncate(clean_clause(match.clause), self.rules.max_length)
            if not title:
                continue

            actions.append(ExtractedAction(
                title=title,
                source_message_id=message.id,
                timestamp=message.timestamp,
                sender_id=message.sender_id,
                assignee=assignee,
                due_hint=due_hint,
                confidence=match.confidence,
            ))

        if actions:
            logger.debug("Extracted action candidates",
                         msg_id=message.id,
                         candidates=len(actions))

        return actions

    def _extract_assignee(self, text: str) -> Optional[str]:
        """First @handle in the message."""
        match = self.assignee_pattern.search(text)
        if match:
            return match.group(1)
        return None

    def _extract_due_hint(self, text: str) -> Optional[str]:
        """First temporal phrase, without its preposition."""
        match = self.due_pattern.search(text)
        if match:
            return match.group(1)
        return None


_default_extractor = ActionExtractor()


def extract_actions_from_message(message: Message) -> List[ExtractedAction]:
    """Module-level shortcut using the default action rule table."""
    return _default_extractor.extract_from_message(message)
