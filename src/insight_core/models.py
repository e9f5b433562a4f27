"""
Value objects shared across the extraction pipeline.

All insight entities are immutable and built fresh on every extraction run.
The ``to_dict``/``from_dict`` pairs define the JSON shape used for cache
payloads.
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


MESSAGE_KIND_TEXT = "text"


@dataclass(frozen=True)
class Message:
    """A single conversation message as supplied by a message source."""
    id: str
    sender_id: str
    text: str
    timestamp: int  # epoch milliseconds
    kind: str = MESSAGE_KIND_TEXT

    @property
    def is_text(self) -> bool:
        return self.kind == MESSAGE_KIND_TEXT and bool(self.text and self.text.strip())


@dataclass(frozen=True)
class ExtractedAction:
    """Action item derived from one pattern match in one message."""
    title: str
    source_message_id: str
    timestamp: int
    sender_id: str
    assignee: Optional[str] = None
    due_hint: Optional[str] = None
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedAction":
        return cls(
            title=data["title"],
            source_message_id=data["source_message_id"],
            timestamp=int(data["timestamp"]),
            sender_id=data["sender_id"],
            assignee=data.get("assignee"),
            due_hint=data.get("due_hint"),
            confidence=float(data["confidence"]),
        )


@dataclass(frozen=True)
class ExtractedDecision:
    """Decision statement in ``"<marker>: <Clause>."`` form."""
    content: str
    source_message_id: str
    timestamp: int
    sender_id: str
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedDecision":
        return cls(
            content=data["content"],
            source_message_id=data["source_message_id"],
            timestamp=int(data["timestamp"]),
            sender_id=data["sender_id"],
            confidence=float(data["confidence"]),
        )


@dataclass(frozen=True)
class PriorityResult:
    """Additive priority score for a single message text."""
    level: str  # "urgent" | "high" | "normal"
    score: int
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level, "score": self.score, "reasons": list(self.reasons)}


@dataclass(frozen=True)
class PriorityMessage:
    """
    Message that scored high or urgent, enriched with its sender name.

    ``conversation_name`` and ``conversation_type`` are filled by the
    user-wide scan only.
    """
    conversation_id: str
    message_id: str
    text: str
    sender_id: str
    sender_name: str
    timestamp: int
    level: str
    score: int
    reasons: List[str] = field(default_factory=list)
    conversation_name: Optional[str] = None
    conversation_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["reasons"] = list(self.reasons)
        return data
