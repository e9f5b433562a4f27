"""
Optional LLM refinement of extracted insights.

The bridge is a pass-through decorator over extractor output: it always
returns a list of the same length and order as its input and never raises.
Refinement is an enhancement, so any failure falls back to the original
items.
"""
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog
import tenacity
from pydantic import ValidationError

from insight_core.config import RefineConfig
from insight_core.llm.schemas import ActionRefineItem, DecisionRefineItem, RefineResponse
from insight_core.models import ExtractedAction, ExtractedDecision

logger = structlog.get_logger()


class RefinementError(RuntimeError):
    """Raised internally when the service reply cannot be used."""


class RefinementBridge:
    """Client for the refinement service with pass-through fallback."""

    def __init__(
        self,
        config: RefineConfig,
        client: Optional[httpx.AsyncClient] = None,
        metrics=None,
    ):
        self.config = config
        self.metrics = metrics
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.config.enabled and self.config.endpoint)

    async def refine_actions(self, actions: Sequence[ExtractedAction]) -> List[ExtractedAction]:
        """Rewrite action titles; assignee/due are replaced only when returned."""
        actions = list(actions)
        if not self.enabled or not actions:
            return actions

        items = [
            ActionRefineItem(title=a.title, assignee=a.assignee, due=a.due_hint).model_dump(exclude_none=True)
            for a in actions
        ]
        reply = await self._refine("actions", self.config.actions_path, items)
        if reply is None:
            return actions

        merged = []
        for index, action in enumerate(actions):
            item = reply.refined[index] if index < len(reply.refined) else None
            if item is None:
                merged.append(action)
                continue
            merged.append(replace(
                action,
                title=item.refined or action.title,
                assignee=item.assignee or action.assignee,
                due_hint=item.due or action.due_hint,
            ))
        return merged

    async def refine_decisions(self, decisions: Sequence[ExtractedDecision]) -> List[ExtractedDecision]:
        """Rewrite decision content."""
        decisions = list(decisions)
        if not self.enabled or not decisions:
            return decisions

        items = [DecisionRefineItem(content=d.content).model_dump() for d in decisions]
        reply = await self._refine("decisions", self.config.decisions_path, items)
        if reply is None:
            return decisions

        merged = []
        for index, decision in enumerate(decisions):
            item = reply.refined[index] if index < len(reply.refined) else None
            if item is None or not item.refined:
                merged.append(decision)
            else:
                merged.append(replace(decision, content=item.refined))
        return merged

    async def _refine(self, category: str, path: str, items: List[Dict[str, Any]]) -> Optional[RefineResponse]:
        """One batched call; None means "use the originals"."""
        try:
            reply = await self._post(path, {"items": items})
            if not reply.success:
                raise RefinementError("service reported success=false")
            if len(reply.refined) != len(items):
                logger.warning("Refinement reply length mismatch",
                               category=category,
                               sent=len(items),
                               received=len(reply.refined))
            logger.info("Refined insights", category=category, items=len(items))
            return reply
        except (httpx.HTTPError, ValidationError, ValueError, RefinementError) as e:
            logger.warning("LLM refinement failed, returning original items",
                           category=category,
                           error=str(e))
        except Exception as e:
            logger.error("Unexpected refinement error, returning original items",
                         category=category,
                         error=str(e),
                         exc_info=True)

        if self.metrics:
            self.metrics.record_refine_fallback(category)
        return None

    @tenacity.retry(
        stop=tenacity.stop_after_attempt(2),  # Retry once on transport errors
        wait=tenacity.wait_exponential(multiplier=0.2, max=2),
        retry=tenacity.retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, path: str, payload: Dict[str, Any]) -> RefineResponse:
        url = self.config.endpoint.rstrip("/") + path
        headers = dict(self.config.headers)
        token = self.config.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        if self._client is not None:
            response = await self._client.post(url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout_s)) as client:
                response = await client.post(url, json=payload, headers=headers)

        response.raise_for_status()
        return RefineResponse.model_validate(response.json())
