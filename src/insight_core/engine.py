"""
Insight extraction engine.

Wires the message source, extractors, aggregator, cache and optional
refinement into the per-conversation and per-user operations.
"""
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from insight_core.config import Config
from insight_core.evidence.actions import ActionExtractor
from insight_core.evidence.decisions import DecisionExtractor
from insight_core.evidence.priority import LEVEL_URGENT, LEVEL_HIGH, score_priority
from insight_core.ingest.source import (
    CONVERSATION_GROUP,
    HttpMessageSource,
    MessageSource,
    MessageSourceError,
    SenderDirectory,
    StaticMessageSource,
    resolve_sender_names,
)
from insight_core.llm.refine import RefinementBridge
from insight_core.models import (
    ExtractedAction,
    ExtractedDecision,
    Message,
    PriorityMessage,
    PriorityResult,
)
from insight_core.select.aggregate import ACTION_STRATEGY, DECISION_STRATEGY, AggregationStrategy, aggregate
from insight_core.storage.cache import CacheManager, InMemoryCacheStore, JsonFileCacheStore

logger = structlog.get_logger()

CATEGORY_ACTIONS = "actions"
CATEGORY_DECISIONS = "decisions"
GLOBAL_SCOPE_PREFIX = "global:"
UNNAMED_GROUP = "Unnamed Conversation"

_PRIORITY_LEVELS = (LEVEL_URGENT, LEVEL_HIGH)


class InsightEngine:
    """Rule-based extraction of actions, decisions and priority messages."""

    def __init__(
        self,
        source: MessageSource,
        cache: CacheManager,
        config: Optional[Config] = None,
        directory: Optional[SenderDirectory] = None,
        refiner: Optional[RefinementBridge] = None,
        metrics=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.source = source
        self.cache = cache
        self.config = config or Config()
        self.directory = directory
        self.refiner = refiner
        self.metrics = metrics
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.action_extractor = ActionExtractor()
        self.decision_extractor = DecisionExtractor()

        threshold = self.config.extraction.confidence_threshold
        self.action_strategy = replace(ACTION_STRATEGY, confidence_threshold=threshold)
        self.decision_strategy = replace(DECISION_STRATEGY, confidence_threshold=threshold)

    # Per-conversation extraction

    async def extract_actions(self, conversation_id: str, force_refresh: bool = False) -> List[ExtractedAction]:
        """Action items for one conversation, cached per day."""
        actions = await self._extract(
            conversation_id,
            CATEGORY_ACTIONS,
            force_refresh,
            load=lambda: self._candidates([conversation_id], self.action_extractor.extract_from_message),
            strategy=self.action_strategy,
            from_dict=ExtractedAction.from_dict,
        )
        if self.refiner:
            actions = await self.refiner.refine_actions(actions)
        return actions

    async def extract_decisions(self, conversation_id: str, force_refresh: bool = False) -> List[ExtractedDecision]:
        """Decisions for one conversation, cached per day."""
        decisions = await self._extract(
            conversation_id,
            CATEGORY_DECISIONS,
            force_refresh,
            load=lambda: self._candidates([conversation_id], self.decision_extractor.extract_from_message),
            strategy=self.decision_strategy,
            from_dict=ExtractedDecision.from_dict,
        )
        if self.refiner:
            decisions = await self.refiner.refine_decisions(decisions)
        return decisions

    # Cross-conversation extraction

    async def extract_actions_global(self, user_id: str, force_refresh: bool = False) -> List[ExtractedAction]:
        """Action items across the user's most recent conversations."""
        scope = f"{GLOBAL_SCOPE_PREFIX}{user_id}"

        async def load():
            conversation_ids = await self._recent_conversations(user_id)
            return await self._candidates(conversation_ids, self.action_extractor.extract_from_message,
                                          skip_failures=True)

        actions = await self._extract(scope, CATEGORY_ACTIONS, force_refresh, load,
                                      self.action_strategy, ExtractedAction.from_dict)
        if self.refiner:
            actions = await self.refiner.refine_actions(actions)
        return actions

    async def extract_decisions_global(self, user_id: str, force_refresh: bool = False) -> List[ExtractedDecision]:
        """Decisions across the user's most recent conversations."""
        scope = f"{GLOBAL_SCOPE_PREFIX}{user_id}"

        async def load():
            conversation_ids = await self._recent_conversations(user_id)
            return await self._candidates(conversation_ids, self.decision_extractor.extract_from_message,
                                          skip_failures=True)

        decisions = await self._extract(scope, CATEGORY_DECISIONS, force_refresh, load,
                                        self.decision_strategy, ExtractedDecision.from_dict)
        if self.refiner:
            decisions = await self.refiner.refine_decisions(decisions)
        return decisions

    # Priority

    def score_priority(self, text: str) -> PriorityResult:
        return score_priority(text)

    async def extract_priority_messages(
        self,
        conversation_id: str,
        viewer_id: Optional[str] = None,
    ) -> List[PriorityMessage]:
        """
        High and urgent messages from the recent window of a conversation.

        Messages older than ``priority.days_back`` days, sent by the viewer,
        or without text are ignored. Results are ordered by score, then by
        recency.
        """
        messages = await self.source.fetch_messages(conversation_id, self.config.priority.window_limit)
        scored = [(conversation_id, message, result) for message, result in self._score_window(messages, viewer_id)]

        priority_messages = await self._priority_view(scored)

        logger.info("Priority messages extracted",
                    conversation_id=conversation_id,
                    scanned=len(messages),
                    found=len(priority_messages))
        return priority_messages

    async def extract_priority_messages_for_user(
        self,
        user_id: str,
        conversation_id: Optional[str] = None,
    ) -> List[PriorityMessage]:
        """
        High and urgent messages across the user's recent conversations.

        Scans the user's ``extraction.global_conversation_limit`` most recent
        conversations, or only ``conversation_id`` when given. The user's own
        messages are skipped. While scanning, a conversation that fails to
        load is logged and skipped. Each result is labelled with the other
        member's display name for a direct message, or the group name.
        """
        if conversation_id is None:
            conversation_ids = await self._recent_conversations(user_id)
        else:
            conversation_ids = [conversation_id]

        scored: List[Tuple[str, Message, PriorityResult]] = []
        for cid in conversation_ids:
            try:
                messages = await self.source.fetch_messages(cid, self.config.priority.window_limit)
            except MessageSourceError as e:
                if conversation_id is not None:
                    raise
                logger.warning("Skipping conversation", conversation_id=cid, error=str(e))
                continue
            scored.extend((cid, message, result) for message, result in self._score_window(messages, user_id))

        conversations = {}
        for cid in dict.fromkeys(cid for cid, _, _ in scored):
            conversations[cid] = await self._conversation_info(cid)

        priority_messages = await self._priority_view(scored, conversations, viewer_id=user_id)

        logger.info("Priority messages extracted",
                    user_id=user_id,
                    conversations=len(conversation_ids),
                    found=len(priority_messages))
        return priority_messages

    # Cache

    async def clear_cache(self, conversation_id: Optional[str] = None) -> int:
        """Invalidate today's entries for one conversation, or every entry."""
        return await clear_insights(self.cache, conversation_id)

    # Lifecycle

    async def aclose(self) -> None:
        """Close the message source's connections, if it holds any."""
        close = getattr(self.source, "aclose", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "InsightEngine":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # Internals

    async def _extract(
        self,
        scope: str,
        category: str,
        force_refresh: bool,
        load: Callable,
        strategy: AggregationStrategy,
        from_dict: Callable,
    ) -> List:
        started = time.perf_counter()

        if not force_refresh:
            cached = await self.cache.get(scope, category)
            if cached is not None:
                try:
                    items = [from_dict(entry) for entry in cached]
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("Discarding malformed cache entry",
                                   conversation_id=scope,
                                   category=category,
                                   error=str(e))
                else:
                    logger.debug("Insights served from cache",
                                 conversation_id=scope,
                                 category=category,
                                 count=len(items))
                    self._record(category, "cache", len(items), started)
                    return items

        per_message = await load()
        items = aggregate(per_message, strategy)
        await self.cache.put(scope, category, [item.to_dict() for item in items])

        logger.info("Insights extracted",
                    conversation_id=scope,
                    category=category,
                    messages=len(per_message),
                    count=len(items))
        self._record(category, "fresh", len(items), started)
        return items

    async def _candidates(
        self,
        conversation_ids: Sequence[str],
        extract: Callable[[Message], List],
        skip_failures: bool = False,
    ) -> List[List]:
        """Per-message candidate lists, oldest message first per conversation."""
        per_message: List[List] = []
        for conversation_id in conversation_ids:
            try:
                messages = await self.source.fetch_messages(conversation_id, self.config.extraction.max_messages)
            except MessageSourceError as e:
                if not skip_failures:
                    raise
                logger.warning("Skipping conversation",
                               conversation_id=conversation_id,
                               error=str(e))
                continue

            per_message.extend(extract(message) for message in messages if message.is_text)
        return per_message

    def _score_window(
        self,
        messages: Sequence[Message],
        viewer_id: Optional[str],
    ) -> List[Tuple[Message, PriorityResult]]:
        """Recent text messages from others that score high or urgent."""
        cutoff = self.clock() - timedelta(days=self.config.priority.days_back)
        cutoff_ms = int(cutoff.timestamp() * 1000)

        scored = []
        for message in messages:
            if message.timestamp < cutoff_ms or not message.is_text:
                continue
            if viewer_id and message.sender_id == viewer_id:
                continue
            result = score_priority(message.text)
            if result.level in _PRIORITY_LEVELS:
                scored.append((message, result))
        return scored

    async def _conversation_info(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.source.get_conversation(conversation_id)
        except MessageSourceError as e:
            logger.warning("Error fetching conversation details",
                           conversation_id=conversation_id,
                           error=str(e))
            return None

    async def _priority_view(
        self,
        scored: Sequence[Tuple[str, Message, PriorityResult]],
        conversations: Optional[Dict[str, Optional[Dict[str, Any]]]] = None,
        viewer_id: Optional[str] = None,
    ) -> List[PriorityMessage]:
        """Resolve sender and partner names in one pass, then build the sorted view."""
        placeholder = self.config.source.placeholder_name
        conversations = conversations or {}
        partners = {cid: _dm_partner(info, viewer_id) for cid, info in conversations.items()}

        names = await resolve_sender_names(
            self.directory,
            [message.sender_id for _, message, _ in scored] + [p for p in partners.values() if p],
            concurrency=self.config.source.lookup_concurrency,
            placeholder=placeholder,
        )

        labels = {}
        for cid, info in conversations.items():
            if info is None:
                labels[cid] = (placeholder, None)
            elif info["type"] == CONVERSATION_GROUP:
                labels[cid] = (info.get("name") or UNNAMED_GROUP, info["type"])
            else:
                labels[cid] = (names.get(partners[cid], placeholder), info["type"])

        priority_messages = []
        for cid, message, result in scored:
            name, kind = labels.get(cid, (None, None))
            priority_messages.append(PriorityMessage(
                conversation_id=cid,
                message_id=message.id,
                text=message.text,
                sender_id=message.sender_id,
                sender_name=names.get(message.sender_id, placeholder),
                timestamp=message.timestamp,
                level=result.level,
                score=result.score,
                reasons=list(result.reasons),
                conversation_name=name,
                conversation_type=kind,
            ))
        priority_messages.sort(key=lambda pm: (pm.score, pm.timestamp), reverse=True)

        if self.metrics:
            for pm in priority_messages:
                self.metrics.record_priority_message(pm.level)
        return priority_messages

    async def _recent_conversations(self, user_id: str) -> List[str]:
        return await self.source.list_conversations(user_id, self.config.extraction.global_conversation_limit)

    def _record(self, category: str, source: str, returned: int, started: float) -> None:
        if self.metrics:
            self.metrics.record_extraction(category, source, returned, time.perf_counter() - started)


def _dm_partner(info: Optional[Dict[str, Any]], viewer_id: Optional[str]) -> Optional[str]:
    """The other member of a direct conversation."""
    if not info or info["type"] == CONVERSATION_GROUP:
        return None
    return next((member for member in info["members"] if member != viewer_id), None)


async def clear_insights(cache: CacheManager, conversation_id: Optional[str] = None) -> int:
    """
    Invalidate cached insights and return how many entries were removed.

    With a conversation id only today's action and decision entries for it
    are removed; without one every key under the cache prefix goes.
    """
    if conversation_id is None:
        removed = await cache.clear_all()
        logger.info("Cleared all insight caches", removed=removed)
        return removed

    removed = 0
    for category in (CATEGORY_ACTIONS, CATEGORY_DECISIONS):
        if await cache.invalidate(conversation_id, category):
            removed += 1
    logger.info("Cleared insight cache", conversation_id=conversation_id, removed=removed)
    return removed


def build_engine(config: Config, metrics=None) -> InsightEngine:
    """Assemble an engine from configuration."""
    if config.source.data_path:
        source = StaticMessageSource.from_file(config.source.data_path)
    elif config.source.base_url:
        source = HttpMessageSource(config.source.base_url, timeout_s=config.source.timeout_s)
    else:
        raise MessageSourceError("No message source configured: set source.data_path or source.base_url")

    cache = build_cache(config, metrics=metrics)
    refiner = RefinementBridge(config.refine, metrics=metrics) if config.refine.enabled else None

    return InsightEngine(
        source=source,
        cache=cache,
        config=config,
        directory=source,
        refiner=refiner,
        metrics=metrics,
    )


def build_cache(config: Config, metrics=None) -> CacheManager:
    if config.cache.backend == "memory":
        store = InMemoryCacheStore()
    else:
        store = JsonFileCacheStore(config.cache.path)
    return CacheManager(store, prefix=config.cache.prefix, timezone=config.cache.timezone, metrics=metrics)
