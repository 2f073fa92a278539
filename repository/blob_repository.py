from typing import Optional
from redis.asyncio import Redis
from config.cache import get_redis
from config.settings import settings
from repository.namespaces import BLOBS


class BlobRepository:
    """
    Redis-backed byte storage for the uploaded invoice document keyed by
    invoice id. Kept for re-processing; expires with the invoice.
    """

    def __init__(self, ttl_seconds: int = settings.PERSISTENCE_TTL_SECONDS) -> None:
        self._ttl = int(ttl_seconds)

    @staticmethod
    async def _client() -> Redis:
        return await get_redis()

    @staticmethod
    def _key(invoice_id: str) -> str:
        return f"{BLOBS}:{invoice_id}"

    async def put_document(self, invoice_id: str, data: bytes) -> None:
        r = await self._client()
        await r.set(self._key(invoice_id), data, ex=self._ttl)

    async def get_document(self, invoice_id: str) -> Optional[bytes]:
        r = await self._client()
        raw = await r.get(self._key(invoice_id))
        if raw is not None:
            await r.expire(self._key(invoice_id), self._ttl)
        return raw
