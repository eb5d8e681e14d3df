from typing import Any, Dict, Optional
import redis.asyncio as redis
from atelier.cache.utils import KEY_PREFIX, build_key, deserialize, serialize
from atelier.common.logging_setup import get_logger
from atelier.common.utils import now

logger = get_logger("atelier.cache.sessions")

SESSION_NAMESPACE = "session"


class SessionStore:
    """Server side session records in redis, one per user.

    The record's presence is the only thing that keeps an otherwise valid
    bearer token usable: deleting it revokes every token issued to the user.
    The TTL is fixed at login; activity updates never extend it.
    """

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int):
        self.redis = redis_client
        self.ttl = int(ttl_seconds)

    @staticmethod
    def key(user_id: int) -> str:
        return build_key(KEY_PREFIX, SESSION_NAMESPACE, str(user_id))

    async def create(self, user_id: int, user_agent: Optional[str] = None,
                     client_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        issued = now().isoformat()
        record = {
            "user_id": int(user_id),
            "issued_at": issued,
            "last_activity_at": issued,
            "user_agent": user_agent,
            "client_data": client_data or {},
        }
        # a fresh login replaces any previous record and restarts the ttl
        await self.redis.set(self.key(user_id), serialize(record), ex=self.ttl)
        logger.info("session.created", extra={"user_id": user_id, "ttl": self.ttl})
        return record

    async def get(self, user_id: int) -> Optional[Dict[str, Any]]:
        raw = await self.redis.get(self.key(user_id))
        return deserialize(raw)

    async def exists(self, user_id: int) -> bool:
        return bool(await self.redis.exists(self.key(user_id)))

    async def _rewrite(self, user_id: int, record: Dict[str, Any]) -> bool:
        # xx: never resurrect a record that expired or was revoked meanwhile
        res = await self.redis.set(self.key(user_id), serialize(record), keepttl=True, xx=True)
        return bool(res)

    async def touch(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Stamp last activity. Returns the updated record or None when the session is gone."""
        record = await self.get(user_id)
        if record is None:
            return None
        record["last_activity_at"] = now().isoformat()
        if not await self._rewrite(user_id, record):
            return None
        return record

    async def update_client_data(self, user_id: int, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        record = await self.get(user_id)
        if record is None:
            return None
        merged = dict(record.get("client_data") or {})
        merged.update(data)
        record["client_data"] = merged
        record["last_activity_at"] = now().isoformat()
        if not await self._rewrite(user_id, record):
            return None
        return record

    async def remaining_ttl(self, user_id: int) -> int:
        return int(await self.redis.ttl(self.key(user_id)))

    async def delete(self, user_id: int) -> bool:
        deleted = await self.redis.delete(self.key(user_id))
        logger.info("session.deleted", extra={"user_id": user_id, "existed": bool(deleted)})
        return bool(deleted)

    async def clear_all(self) -> int:
        pattern = build_key(KEY_PREFIX, SESSION_NAMESPACE, "*")
        removed = 0
        batch = []
        async for k in self.redis.scan_iter(match=pattern, count=500):
            batch.append(k)
            if len(batch) >= 500:
                removed += await self.redis.delete(*batch)
                batch = []
        if batch:
            removed += await self.redis.delete(*batch)
        logger.warning("session.clear_all", extra={"removed": removed})
        return int(removed)

    async def count(self) -> int:
        pattern = build_key(KEY_PREFIX, SESSION_NAMESPACE, "*")
        total = 0
        async for _ in self.redis.scan_iter(match=pattern, count=500):
            total += 1
        return total
