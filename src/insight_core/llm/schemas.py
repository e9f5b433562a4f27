from pydantic import BaseModel, Field
from typing import List, Optional


# Request items
class ActionRefineItem(BaseModel):
    title: str
    assignee: Optional[str] = None
    due: Optional[str] = None


class DecisionRefineItem(BaseModel):
    content: str


# Response
class RefinedItem(BaseModel):
    """One rewritten item; empty fields mean "keep the original"."""
    refined: Optional[str] = Field(default=None, description="Rewritten title or content")
    assignee: Optional[str] = None
    due: Optional[str] = None


class RefineResponse(BaseModel):
    """Refinement service reply, positionally aligned with the request items."""
    success: bool
    refined: List[RefinedItem] = Field(default_factory=list)
