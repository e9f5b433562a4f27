"""
Pattern rule tables for action and decision extraction.

Each table is plain data: ordered match patterns (group 1 = marker,
group 2 = clause), message-level exclusion patterns, length limits and an
ordered list of confidence tiers. Extractors never branch on marker text
directly; adding a marker or a tier is a table edit.
"""
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Pattern, Sequence, Tuple

_FLAGS = re.IGNORECASE

# Clause body runs to the next sentence terminator
_CLAUSE = r"([^.!?]+)"

TEMPORAL_KEYWORDS = (
    r"EOD|end of day|today|tomorrow|this week|next week|"
    r"Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday"
)


@dataclass(frozen=True)
class ConfidenceTier:
    """Marker predicate and the confidence it assigns."""
    name: str
    pattern: Pattern
    confidence: float


@dataclass(frozen=True)
class RuleTable:
    """Ordered rule set for one insight category."""
    category: str
    patterns: Sequence[Pattern]
    exclusions: Sequence[Pattern]
    tiers: Sequence[ConfidenceTier]
    default_confidence: float
    min_message_length: int
    min_clause_length: int = 5
    max_length: int = 200

    def is_excluded(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.exclusions)

    def confidence_for(self, matched_text: str) -> float:
        """First tier whose predicate matches wins; otherwise the default."""
        for tier in self.tiers:
            if tier.pattern.search(matched_text):
                return tier.confidence
        return self.default_confidence


@dataclass(frozen=True)
class RuleMatch:
    """One accepted pattern match inside a message."""
    marker: str
    clause: str
    matched_text: str
    span: Tuple[int, int]
    confidence: float


def _compile(patterns: Sequence[str], flags: int = _FLAGS) -> List[Pattern]:
    return [re.compile(p, flags) for p in patterns]


def _tiers(spec: Sequence[Tuple[str, str, float]]) -> List[ConfidenceTier]:
    return [ConfidenceTier(name, re.compile(p, _FLAGS), c) for name, p, c in spec]


ACTION_RULES = RuleTable(
    category="actions",
    patterns=_compile([
        # Commitments
        r"\b(I will|I'll|I'm going to|I need to|I should|I have to|I must)\s+" + _CLAUSE,
        # Requests
        r"\b(Can you|Could you|Would you|Please|Will you)\s+" + _CLAUSE,
        # Collaborative suggestions
        r"\b(Let's|Let us|We should|We need to|We have to|We must)\s+" + _CLAUSE,
        # Time-bound tasks
        r"\b(by|before|until)\s+(" + TEMPORAL_KEYWORDS + r")",
        # Direct assignments
        r"\b(assigned to|assign to|owned by|@\w+)\s+" + _CLAUSE,
        # Task markers
        r"\b(TODO|TO-DO|TASK|ACTION|FIXME):\s*" + _CLAUSE,
        # Promises
        r"\b(I can|I'll have|I'll create|I'll prepare|I'll add|I'll implement|I'll send)\s+" + _CLAUSE,
        # Named assignment ("Sam, can you ...")
        r"\b([A-Z][a-z]+),?\s+(?:can you|will you|please)\s+" + _CLAUSE,
        # Timeline commitments
        r"\b(ready by|deliver by|finish by|complete by)\s+" + _CLAUSE,
    ]),
    exclusions=_compile([
        r"\b(I think|I believe|I feel|Maybe|Perhaps|Probably|Possibly)\b",
        r"\b(What if|How about|Should we|Could we)\b",
        r"^\s*(Hi|Hey|Hello|Thanks|Thank you)\b",
    ]),
    tiers=_tiers([
        ("commitment", r"\b(I will|I'll|TODO|TASK|ACTION)\b", 0.9),
        ("collaborative", r"\b(Let's|We should|by EOD|by today)\b", 0.8),
        ("request", r"\b(Can you|Could you|Please)\b", 0.7),
    ]),
    default_confidence=0.5,
    min_message_length=5,
    max_length=200,
)


_AFFIRMATION = r"(?:should|will|can|need to)"

DECISION_RULES = RuleTable(
    category="decisions",
    patterns=_compile([
        # Agreement
        r"\b(We agreed|We've agreed|We decided|We've decided|We're going with|We'll go with)\s+(?:to\s+)?" + _CLAUSE,
        # Consensus
        r"\b(Final decision|Final choice|Chosen|Selected|Decided on|Going with)\s*:?\s*(?:to\s+)?" + _CLAUSE,
        # Commitment
        r"\b(Let's go with|Let's use|Let's do|We're doing|We're using)\s+(?:to\s+)?" + _CLAUSE,
        # Confirmation
        r"\b(Confirmed|Approved|Finalized|Settled on|Locked in)\s*:?\s*(?:to\s+)?" + _CLAUSE,
        # Resolution
        r"\b(Resolved to|Resolution is|Conclusion is|The plan is)\s+(?:to\s+)?" + _CLAUSE,
        # "final" with typos ("finals decision")
        r"\b(Finals?\s+decisions?)\s*:?\s*(?:to\s+)?" + _CLAUSE,
        # Forward-looking plans
        r"\b(We should|We'll|We will|We need to|We're going to)\s+" + _CLAUSE,
        # Affirmations
        r"\b(Yes,?\s+(?:we\s+)?" + _AFFIRMATION + r"|Absolutely!?\s+(?:we\s+)?" + _AFFIRMATION + r")\s*" + _CLAUSE,
        r"\b(Perfect!?\s+(?:we\s+)?" + _AFFIRMATION + r"|Great!?\s+(?:we\s+)?" + _AFFIRMATION + r")\s*" + _CLAUSE,
        # Scheduling
        r"\b(Let's schedule|We'll schedule|Schedule for|Demo for|Meeting for)\s+" + _CLAUSE,
    ]),
    exclusions=_compile([
        r"\b(Should we|Could we|What if|Maybe|Perhaps|Possibly|Might)\b",
        r"\b(I think|I believe|I feel|In my opinion)\b",
        r"\?\s*$",
    ]),
    tiers=_tiers([
        ("final", r"\b(Final decision|Confirmed|Approved|Finalized|Locked in)\b", 0.95),
        ("final_variant", r"\bFinals?\s+decisions?\b", 0.9),
        ("agreement", r"\b(We agreed|We've agreed|We decided|We've decided|Resolved to)\b", 0.85),
        ("adoption", r"\b(Let's go with|We're going with)\b", 0.75),
        ("plan", r"\b(We should|We'll|We will|We need to)\b", 0.7),
        ("schedule", r"\b(Let's schedule|We'll schedule|Schedule for|Demo for|Meeting for)\b", 0.8),
        ("affirmation", r"\b(Yes|Absolutely|Perfect|Great)\b,?!?\s+(?:we\s+)?" + _AFFIRMATION + r"\b", 0.75),
    ]),
    default_confidence=0.6,
    min_message_length=10,
    max_length=300,
)


def _affirmation_labels():
    labels = {}
    for lead in ("Yes", "Absolutely", "Perfect", "Great"):
        for verb in ("should", "will", "can", "need to"):
            labels[f"{lead.lower()} we {verb}"] = f"{lead}, we {verb}"
            labels[f"{lead.lower()} {verb}"] = f"{lead}, {verb}"
    return labels


# Normalized marker -> display label
DECISION_MARKER_LABELS = {
    "we agreed": "We agreed",
    "we've agreed": "We've agreed",
    "we decided": "We decided",
    "we've decided": "We've decided",
    "we're going with": "We're going with",
    "we'll go with": "We'll go with",
    "final decision": "Final decision",
    "final decisions": "Final decision",
    "finals decision": "Final decision",
    "finals decisions": "Final decision",
    "final choice": "Final choice",
    "chosen": "Chosen",
    "selected": "Selected",
    "decided on": "Decided on",
    "going with": "Going with",
    "let's go with": "Let's go with",
    "let's use": "Let's use",
    "let's do": "Let's do",
    "we're doing": "We're doing",
    "we're using": "We're using",
    "confirmed": "Confirmed",
    "approved": "Approved",
    "finalized": "Finalized",
    "settled on": "Settled on",
    "locked in": "Locked in",
    "resolved to": "Resolved to",
    "resolution is": "Resolution is",
    "conclusion is": "Conclusion is",
    "the plan is": "The plan is",
    "we should": "We should",
    "we'll": "We'll",
    "we will": "We will",
    "we need to": "We need to",
    "we're going to": "We're going to",
    "let's schedule": "Let's schedule",
    "we'll schedule": "We'll schedule",
    "schedule for": "Schedule for",
    "demo for": "Demo for",
    "meeting for": "Meeting for",
    **_affirmation_labels(),
}


def normalize_marker(marker: str) -> str:
    """Lowercase, straighten apostrophes, drop ``!,:`` and collapse spaces."""
    marker = marker.replace("’", "'").lower()
    marker = re.sub(r"[!,:]", " ", marker)
    return " ".join(marker.split())


def canonical_marker(marker: str) -> str:
    """Display label for a decision marker; unknown markers keep their wording."""
    label = DECISION_MARKER_LABELS.get(normalize_marker(marker))
    if label:
        return label
    marker = " ".join(marker.split()).rstrip(":")
    return marker[:1].upper() + marker[1:]


def truncate(text: str, max_length: int) -> str:
    if len(text) > max_length:
        return text[:max_length - 3] + "..."
    return text


def clean_clause(clause: str) -> str:
    """Trim and strip trailing soft punctuation."""
    return re.sub(r"[,;:!?]+$", "", clause.strip()).strip()


def iter_matches(text: str, table: RuleTable) -> Iterator[RuleMatch]:
    """
    Yield accepted matches for a message in table order.

    Callers are expected to have applied the length and exclusion checks.
    A match whose span lies inside an already accepted span is skipped, so
    nested rules do not report the same utterance twice. Partial overlaps
    are kept and left to same-message dedup.
    """
    accepted: List[Tuple[int, int]] = []
    for pattern in table.patterns:
        for match in pattern.finditer(text):
            start, end = match.span()
            if any(a_start <= start and end <= a_end for a_start, a_end in accepted):
                continue

            marker = match.group(1) or ""
            clause = match.group(2) if match.lastindex and match.lastindex >= 2 else None
            clause = clause or marker
            if len(clause.strip()) < table.min_clause_length:
                continue

            accepted.append((start, end))
            yield RuleMatch(
                marker=marker,
                clause=clause,
                matched_text=match.group(0),
                span=(start, end),
                confidence=table.confidence_for(match.group(0)),
            )


def should_skip(text: Optional[str], table: RuleTable) -> bool:
    """Length guard and global exclusion short-circuit."""
    if not text or len(text.strip()) < table.min_message_length:
        return True
    return table.is_excluded(text)


def normalize_text(text: str) -> str:
    """Straighten typographic apostrophes so contractions match the tables."""
    return text.replace("’", "'").replace("‘", "'")
