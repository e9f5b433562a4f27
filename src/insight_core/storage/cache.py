"""
Day-scoped insight cache.

Keys look like ``insights:actions:<conversation_id>:2025-01-15``. A new
calendar day simply produces a new key; old entries are left in place and
are never evicted here. Stores that need bounded growth can evict on
their own.
"""
import asyncio
import json
from datetime import date, datetime, timezone as dt_timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol
from zoneinfo import ZoneInfo

import structlog

logger = structlog.get_logger()


class CacheStore(Protocol):
    """Async key-value store holding JSON strings."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def remove(self, key: str) -> None:
        ...

    async def keys(self) -> List[str]:
        ...


class InMemoryCacheStore:
    """Process-local dict store."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> List[str]:
        return list(self._data)


class JsonFileCacheStore:
    """
    JSON file backed store; every write rewrites the file atomically.

    The file is read once, off the event loop. An unparsable file is moved
    aside to ``<name>.corrupt`` and the store starts empty.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._data: Optional[Dict[str, str]] = None

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            backup = self.path.with_name(self.path.name + ".corrupt")
            self.path.replace(backup)
            logger.warning("Cache file unreadable, starting empty",
                           path=str(self.path),
                           backup=str(backup),
                           error=str(e))
            return {}
        if not isinstance(raw, dict):
            logger.warning("Cache file is not a JSON object, starting empty", path=str(self.path))
            return {}
        return {k: v for k, v in raw.items() if isinstance(v, str)}

    async def _load(self) -> Dict[str, str]:
        if self._data is None:
            self._data = await asyncio.to_thread(self._read)
        return self._data

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(self._data, handle, ensure_ascii=False, indent=2)
        tmp_path.replace(self.path)

    async def get(self, key: str) -> Optional[str]:
        return (await self._load()).get(key)

    async def set(self, key: str, value: str) -> None:
        (await self._load())[key] = value
        await asyncio.to_thread(self._save)

    async def remove(self, key: str) -> None:
        if (await self._load()).pop(key, None) is not None:
            await asyncio.to_thread(self._save)

    async def keys(self) -> List[str]:
        return list(await self._load())


class CacheManager:
    """Read/write insight lists under day-scoped keys; never raises on store errors."""

    def __init__(
        self,
        store: CacheStore,
        prefix: str = "insights",
        timezone: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
        metrics=None,
    ):
        self.store = store
        self.prefix = prefix
        self.tz = dt_timezone.utc if timezone.upper() == "UTC" else ZoneInfo(timezone)
        self.clock = clock or (lambda: datetime.now(self.tz))
        self.metrics = metrics

    def today(self) -> date:
        now = self.clock()
        if now.tzinfo is not None:
            now = now.astimezone(self.tz)
        return now.date()

    def key_for(self, conversation_id: str, category: str) -> str:
        return f"{self.prefix}:{category}:{conversation_id}:{self.today().isoformat()}"

    async def get(self, conversation_id: str, category: str) -> Optional[List[Dict[str, Any]]]:
        """
        Return today's cached list, or None on a miss.

        Store errors and undecodable payloads are logged and count as a miss.
        """
        key = self.key_for(conversation_id, category)
        try:
            raw = await self.store.get(key)
            if raw is None:
                return None
            payload = json.loads(raw)
            if not isinstance(payload, list):
                raise ValueError(f"cached payload is {type(payload).__name__}, expected list")
            return payload
        except Exception as e:
            logger.warning("Error loading insights from cache", key=key, error=str(e))
            self._record_error("get")
            return None

    async def put(self, conversation_id: str, category: str, items: List[Dict[str, Any]]) -> None:
        """Overwrite today's entry; failures are logged and dropped."""
        key = self.key_for(conversation_id, category)
        try:
            await self.store.set(key, json.dumps(items, ensure_ascii=False))
        except Exception as e:
            logger.warning("Error saving insights to cache", key=key, error=str(e))
            self._record_error("set")

    async def invalidate(self, conversation_id: str, category: str) -> bool:
        """Remove today's entry; returns whether one existed."""
        key = self.key_for(conversation_id, category)
        try:
            existed = await self.store.get(key) is not None
            if existed:
                await self.store.remove(key)
        except Exception as e:
            logger.warning("Error clearing insights cache", key=key, error=str(e))
            self._record_error("remove")
            return False
        return existed

    async def clear_all(self) -> int:
        """Remove every entry under this manager's prefix, any day."""
        try:
            keys = [k for k in await self.store.keys() if k.startswith(f"{self.prefix}:")]
            for key in keys:
                await self.store.remove(key)
        except Exception as e:
            logger.warning("Error clearing insight caches", prefix=self.prefix, error=str(e))
            self._record_error("keys")
            return 0
        return len(keys)

    def _record_error(self, operation: str) -> None:
        if self.metrics:
            self.metrics.record_cache_error(operation)
