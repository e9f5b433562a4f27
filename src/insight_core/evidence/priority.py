"""
Additive priority scoring for a single message.

Eight independent rules contribute points; the level is a pure threshold
function of the total. Reasons are listed in rule order.
"""
import re
from typing import List

from insight_core.models import PriorityResult

LEVEL_URGENT = "urgent"
LEVEL_HIGH = "high"
LEVEL_NORMAL = "normal"

URGENT_THRESHOLD = 10
HIGH_THRESHOLD = 5

URGENT_KEYWORDS = [
    "urgent", "emergency", "critical", "asap", "immediately", "right now", "911",
]
URGENT_KEYWORD_POINTS = 10

IMPORTANT_KEYWORDS = [
    "important", "priority", "deadline", "must", "need", "required", "crucial", "vital",
]
IMPORTANT_KEYWORD_POINTS = 5

TIME_SENSITIVE_PHRASES = [
    "by eod", "end of day", "by tomorrow", "by today",
    "this morning", "this afternoon", "this evening",
    "in 5 minutes", "in 10 minutes", "in an hour", "within an hour",
]
TIME_SENSITIVE_POINTS = 7

EXCLAMATION_MIN_COUNT = 2
EXCLAMATION_POINTS_EACH = 2
EXCLAMATION_POINTS_CAP = 10

CAPS_RATIO_THRESHOLD = 0.5
CAPS_MIN_LETTERS = 10
CAPS_POINTS = 8

URGENT_QUESTION_WORDS = ["when", "where", "who", "asap"]
URGENT_QUESTION_POINTS = 3

PROBLEM_KEYWORDS = [
    "broken", "error", "failed", "failing", "down",
    "issue", "problem", "blocked", "blocker", "stuck",
]
PROBLEM_POINTS = 6

ACTION_REQUIRED_PHRASES = [
    "need you to", "can you", "please", "could you", "would you",
    "action required", "action needed",
]
ACTION_REQUIRED_POINTS = 5

_UPPER = re.compile(r"[A-Z]")
_LETTER = re.compile(r"[A-Za-z]")


def level_for_score(score: int) -> str:
    """Map a score to its priority level."""
    if score >= URGENT_THRESHOLD:
        return LEVEL_URGENT
    if score >= HIGH_THRESHOLD:
        return LEVEL_HIGH
    return LEVEL_NORMAL


def _distinct_hits(text: str, keywords: List[str]) -> List[str]:
    hits = []
    for keyword in keywords:
        if keyword in text and keyword not in hits:
            hits.append(keyword)
    return hits


def _first_hit(text: str, keywords: List[str]):
    return next((keyword for keyword in keywords if keyword in text), None)


def score_priority(message_text: str) -> PriorityResult:
    """
    Score the priority of a message text.

    Args:
        message_text: Raw message text (original case)

    Returns:
        PriorityResult with level, non-negative score and ordered reasons
    """
    if not message_text or not message_text.strip():
        return PriorityResult(level=LEVEL_NORMAL, score=0, reasons=[])

    text = message_text.lower()
    score = 0
    reasons: List[str] = []

    for keyword in _distinct_hits(text, URGENT_KEYWORDS):
        score += URGENT_KEYWORD_POINTS
        reasons.append(f'Contains "{keyword}"')

    for keyword in _distinct_hits(text, IMPORTANT_KEYWORDS):
        score += IMPORTANT_KEYWORD_POINTS
        reasons.append(f'Contains "{keyword}"')

    for phrase in _distinct_hits(text, TIME_SENSITIVE_PHRASES):
        score += TIME_SENSITIVE_POINTS
        reasons.append(f'Time-sensitive: "{phrase}"')

    exclamations = text.count("!")
    if exclamations >= EXCLAMATION_MIN_COUNT:
        score += min(exclamations * EXCLAMATION_POINTS_EACH, EXCLAMATION_POINTS_CAP)
        reasons.append(f"{exclamations} exclamation marks")

    # Caps check needs the original casing
    total_letters = len(_LETTER.findall(message_text))
    if total_letters > CAPS_MIN_LETTERS:
        caps_ratio = len(_UPPER.findall(message_text)) / total_letters
        if caps_ratio > CAPS_RATIO_THRESHOLD:
            score += CAPS_POINTS
            reasons.append("Mostly uppercase")

    if "?" in text and any(word in text for word in URGENT_QUESTION_WORDS):
        score += URGENT_QUESTION_POINTS
        reasons.append("Urgent question")

    problem = _first_hit(text, PROBLEM_KEYWORDS)
    if problem:
        score += PROBLEM_POINTS
        reasons.append(f'Problem indicator: "{problem}"')

    action_phrase = _first_hit(text, ACTION_REQUIRED_PHRASES)
    if action_phrase:
        score += ACTION_REQUIRED_POINTS
        reasons.append(f'Action required: "{action_phrase}"')

    return PriorityResult(level=level_for_score(score), score=score, reasons=reasons)


def is_priority_message(message_text: str) -> bool:
    """True when the message scores high or urgent."""
    return score_priority(message_text).level in (LEVEL_URGENT, LEVEL_HIGH)


def priority_badge(level: str) -> str:
    """Short display badge for a priority level."""
    return {
        LEVEL_URGENT: "URGENT",
        LEVEL_HIGH: "HIGH",
    }.get(level, "")
