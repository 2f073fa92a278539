from typing import Optional
from uuid import uuid4
from redis.asyncio import Redis
from config.cache import get_redis
from repository.namespaces import PROVIDERS


class ProviderRepository:
    """
    Invoice issuers, matched case-insensitively by name.

    - {PROVIDERS}:{id}       hash {id, name}
    - {PROVIDERS}:by_name    hash lowercased name -> id
    """

    @staticmethod
    async def _client() -> Redis:
        return await get_redis()

    @staticmethod
    def _key(provider_id: str) -> str:
        return f"{PROVIDERS}:{provider_id}"

    @staticmethod
    def _names_key() -> str:
        return f"{PROVIDERS}:by_name"

    async def find_or_create(self, name: Optional[str]) -> Optional[str]:
        """Return the provider id for `name`, creating it on first sight."""
        clean = (name or "").strip()
        if not clean:
            return None
        lookup = clean.lower()
        r = await self._client()
        existing = await r.hget(self._names_key(), lookup)
        if existing:
            return existing.decode("utf-8") if isinstance(existing, bytes) else str(existing)

        provider_id = str(uuid4())
        # Another request may register the same name concurrently.
        if not await r.hsetnx(self._names_key(), lookup, provider_id):
            winner = await r.hget(self._names_key(), lookup)
            return winner.decode("utf-8") if isinstance(winner, bytes) else str(winner)
        await r.hset(self._key(provider_id), mapping={"id": provider_id, "name": clean})
        return provider_id
