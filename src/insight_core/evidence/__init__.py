"""
Rule-based insight extraction: actions, decisions, priority signals.
"""
from .actions import ActionExtractor, extract_actions_from_message
from .decisions import DecisionExtractor, extract_decisions_from_message
from .priority import score_priority, is_priority_message

__all__ = [
    'ActionExtractor',
    'DecisionExtractor',
    'extract_actions_from_message',
    'extract_decisions_from_message',
    'score_priority',
    'is_priority_message',
]
