"""
Rule-based decision extraction.

A decision is rendered as ``"<marker>: <Clause>."`` where the marker label
comes from ``DECISION_MARKER_LABELS`` (e.g. "we're going with" ->
"We're going with").
"""
import re
import structlog
from typing import List

from insight_core.evidence.rules import (
    DECISION_RULES,
    RuleTable,
    canonical_marker,
    clean_clause,
    iter_matches,
    normalize_text,
    should_skip,
    truncate,
)
from insight_core.models import ExtractedDecision, Message

logger = structlog.get_logger()

_LEADING_TO = re.compile(r"^to\s+", re.IGNORECASE)
_TERMINAL = re.compile(r"[.!?]$")


def format_decision(marker: str, clause: str, max_length: int) -> str:
    """Build the normalized decision statement from marker and clause."""
    body = _LEADING_TO.sub("", clean_clause(clause))
    body = body[:1].upper() + body[1:]
    if not _TERMINAL.search(body):
        body += "."
    return truncate(f"{canonical_marker(marker)}: {body}", max_length)


class DecisionExtractor:
    """Extract decisions from conversation messages."""

    def __init__(self, rules: RuleTable = DECISION_RULES):
        self.rules = rules

    def extract_from_message(self, message: Message) -> List[ExtractedDecision]:
        """Extract decision candidates from a single message."""
        text = normalize_text(message.text or "")
        if should_skip(text, self.rules):
            return []

        decisions = []
        for match in iter_matches(text, self.rules):
            if not clean_clause(match.clause):
                continue
            decisions.append(ExtractedDecision(
                content=format_decision(match.marker, match.clause, self.rules.max_length),
                source_message_id=message.id,
                timestamp=message.timestamp,
                sender_id=message.sender_id,
                confidence=match.confidence,
            ))

        if decisions:
            logger.debug("Extracted decision candidates",
                         msg_id=message.id,
                         candidates=len(decisions))

        return decisions


_default_extractor = DecisionExtractor()


def extract_decisions_from_message(message: Message) -> List[ExtractedDecision]:
    """Module-level shortcut using the default decision rule table."""
    return _default_extractor.extract_from_message(message)
