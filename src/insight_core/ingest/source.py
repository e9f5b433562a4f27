"""Message source adapters and batched sender name lookup."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx
import structlog
import tenacity

from insight_core.models import MESSAGE_KIND_TEXT, Message

logger = structlog.get_logger()

CONVERSATION_DM = "dm"
CONVERSATION_GROUP = "group"


class MessageSourceError(RuntimeError):
    """Raised when a message window cannot be loaded."""


class MessageSource(Protocol):
    """Supplies oldest-first message windows per conversation."""

    async def fetch_messages(self, conversation_id: str, limit: int) -> List[Message]:
        ...

    async def list_conversations(self, user_id: str, limit: int) -> List[str]:
        ...

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        ...


class SenderDirectory(Protocol):
    """Resolves a sender id to a display name."""

    async def get_display_name(self, sender_id: str) -> Optional[str]:
        ...


def message_from_dict(data: Dict[str, Any]) -> Message:
    """Build a Message from a stored record (snake_case or camelCase keys)."""
    try:
        return Message(
            id=str(data["id"]),
            sender_id=str(data.get("sender_id", data.get("senderId", ""))),
            text=data.get("text") or "",
            timestamp=int(data.get("timestamp", 0)),
            kind=data.get("kind", data.get("type", MESSAGE_KIND_TEXT)) or MESSAGE_KIND_TEXT,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MessageSourceError(f"Malformed message record: {e}") from e


def conversation_from_dict(conversation_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize conversation metadata: id, type (dm or group), name, members."""
    return {
        "id": conversation_id,
        "type": data.get("type") or CONVERSATION_DM,
        "name": data.get("name") or data.get("group_name") or data.get("groupName"),
        "members": [str(m) for m in data.get("members") or []],
    }


def newest_window(messages: Iterable[Message], limit: int) -> List[Message]:
    """Keep the newest ``limit`` messages, returned oldest first."""
    ordered = sorted(messages, key=lambda m: m.timestamp)
    if limit is not None and limit >= 0:
        ordered = ordered[-limit:] if limit else []
    return ordered


async def resolve_sender_names(
    directory: Optional[SenderDirectory],
    sender_ids: Iterable[str],
    concurrency: int = 8,
    placeholder: str = "Unknown",
) -> Dict[str, str]:
    """
    Resolve the distinct sender ids in one concurrent pre-pass.

    Lookups run under a semaphore cap. A failed or empty lookup maps to
    ``placeholder`` and never aborts the batch.
    """
    distinct = list(dict.fromkeys(sid for sid in sender_ids if sid))
    if directory is None or not distinct:
        return {sid: placeholder for sid in distinct}

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def lookup(sender_id: str) -> str:
        async with semaphore:
            try:
                name = await directory.get_display_name(sender_id)
            except Exception as e:
                logger.warning("Error fetching sender name", sender_id=sender_id, error=str(e))
                return placeholder
        return name or placeholder

    names = await asyncio.gather(*(lookup(sid) for sid in distinct))
    return dict(zip(distinct, names))


class StaticMessageSource:
    """
    In-memory source and sender directory over a JSON document.

    Document shape::

        {"users": {"u1": {"display_name": "Ana"}},
         "conversations": {"c1": {"members": ["u1"], "updated_at": 0,
                                  "type": "group", "name": "Launch",
                                  "messages": [{"id": "m1", "sender_id": "u1",
                                                "text": "...", "timestamp": 0}]}}}
    """

    def __init__(self, document: Dict[str, Any]):
        self.users: Dict[str, Dict[str, Any]] = document.get("users", {}) or {}
        self.conversations: Dict[str, Dict[str, Any]] = {}
        for cid, raw in (document.get("conversations", {}) or {}).items():
            messages = [message_from_dict(m) for m in raw.get("messages", [])]
            self.conversations[cid] = {
                **conversation_from_dict(cid, raw),
                "updated_at": int(raw.get("updated_at", max((m.timestamp for m in messages), default=0))),
                "messages": messages,
            }

    @classmethod
    def from_file(cls, path: str) -> "StaticMessageSource":
        try:
            with Path(path).open("r", encoding="utf-8") as handle:
                document = json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            raise MessageSourceError(f"Cannot load message data from {path}: {e}") from e
        if not isinstance(document, dict):
            raise MessageSourceError(f"Message data in {path} must be a JSON object")
        return cls(document)

    async def fetch_messages(self, conversation_id: str, limit: int) -> List[Message]:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return []
        return newest_window(conversation["messages"], limit)

    async def list_conversations(self, user_id: str, limit: int) -> List[str]:
        owned = [
            (cid, conv["updated_at"]) for cid, conv in self.conversations.items()
            if user_id in conv["members"]
        ]
        owned.sort(key=lambda item: item[1], reverse=True)
        return [cid for cid, _ in owned[:limit]]

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return None
        return conversation_from_dict(conversation_id, conversation)

    async def get_display_name(self, sender_id: str) -> Optional[str]:
        user = self.users.get(sender_id)
        if not user:
            return None
        return user.get("display_name") or user.get("displayName")


_RETRY = dict(
    stop=tenacity.stop_after_attempt(3),
    wait=tenacity.wait_exponential(multiplier=0.2, max=2),
    retry=tenacity.retry_if_exception_type(httpx.TransportError),
    reraise=True,
)


class HttpMessageSource:
    """Message source and sender directory backed by a REST API."""

    def __init__(self, base_url: str, timeout_s: int = 15, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s))

    async def aclose(self) -> None:
        await self._client.aclose()

    @tenacity.retry(**_RETRY)
    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        return await self._client.get(f"{self.base_url}{path}", params=params)

    async def fetch_messages(self, conversation_id: str, limit: int) -> List[Message]:
        try:
            response = await self._get(f"/conversations/{conversation_id}/messages", {"limit": limit})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise MessageSourceError(f"Could not load messages for {conversation_id}: {e}") from e

        records = payload.get("messages", []) if isinstance(payload, dict) else payload
        return newest_window((message_from_dict(r) for r in records), limit)

    async def list_conversations(self, user_id: str, limit: int) -> List[str]:
        try:
            response = await self._get(f"/users/{user_id}/conversations", {"limit": limit})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise MessageSourceError(f"Could not list conversations for {user_id}: {e}") from e

        records = payload.get("conversations", []) if isinstance(payload, dict) else payload
        ids = [r["id"] if isinstance(r, dict) else r for r in records]
        return [str(cid) for cid in ids][:limit]

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = await self._get(f"/conversations/{conversation_id}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise MessageSourceError(f"Could not load conversation {conversation_id}: {e}") from e

        if not isinstance(payload, dict):
            raise MessageSourceError(f"Malformed conversation record for {conversation_id}")
        return conversation_from_dict(conversation_id, payload)

    async def get_display_name(self, sender_id: str) -> Optional[str]:
        response = await self._get(f"/users/{sender_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()
        return data.get("display_name") or data.get("displayName")
