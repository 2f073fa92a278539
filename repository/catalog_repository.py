from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence
from redis.asyncio import Redis
from config.cache import get_redis
from model.ncm import CatalogEntry
from repository.namespaces import CATALOG


def _s(v) -> str:
    if v is None:
        return ""
    return v.decode("utf-8") if isinstance(v, (bytes, bytearray)) else str(v)


def _entry_from_hash(h: Dict) -> Optional[CatalogEntry]:
    if not h:
        return None
    data = {_s(k): _s(v) for k, v in h.items()}
    return CatalogEntry(
        provider_id=data.get("provider_id", ""),
        sku=data.get("sku", ""),
        provider_description=data.get("provider_description", ""),
        customs_description=data.get("customs_description", ""),
        ncm_code=data.get("ncm_code") or None,
        times_used=int(data.get("times_used") or 0),
        last_used_at=data.get("last_used_at") or None,
    )


class CatalogRepository:
    """
    Learned product catalog: (provider, sku) -> customs description + NCM code.

    Layout (no TTL, this is learned data):
    - {CATALOG}:{provider_id}:{sku}   hash with the entry fields
    - {CATALOG}:{provider_id}:skus    set of skus for the provider
    - {CATALOG}:providers             set of provider ids with entries
    """

    @staticmethod
    async def _client() -> Redis:
        return await get_redis()

    @staticmethod
    def _key(provider_id: str, sku: str) -> str:
        return f"{CATALOG}:{provider_id}:{sku}"

    @staticmethod
    def _skus_key(provider_id: str) -> str:
        return f"{CATALOG}:{provider_id}:skus"

    @staticmethod
    def _providers_key() -> str:
        return f"{CATALOG}:providers"

    async def get_many(self, provider_id: str, skus: Iterable[str]) -> Dict[str, CatalogEntry]:
        """
        Fetch all requested skus for one provider in a single round-trip.
        Only entries that exist and carry an NCM code are returned.
        """
        wanted = sorted({s for s in skus if s})
        if not provider_id or not wanted:
            return {}
        r = await self._client()
        pipe = r.pipeline(transaction=False)
        for sku in wanted:
            pipe.hgetall(self._key(provider_id, sku))
        rows = await pipe.execute()

        out: Dict[str, CatalogEntry] = {}
        for sku, h in zip(wanted, rows):
            entry = _entry_from_hash(h)
            if entry is not None and entry.ncm_code:
                out[sku] = entry
        return out

    async def _all_for(self, r: Redis, provider_ids: Sequence[str]) -> List[CatalogEntry]:
        pipe = r.pipeline(transaction=False)
        for pid in provider_ids:
            pipe.smembers(self._skus_key(pid))
        sku_sets = await pipe.execute()

        pipe = r.pipeline(transaction=False)
        for pid, skus in zip(provider_ids, sku_sets):
            for sku in sorted(_s(x) for x in skus or ()):
                pipe.hgetall(self._key(pid, sku))
        rows = await pipe.execute()
        return [e for e in (_entry_from_hash(h) for h in rows) if e is not None]

    async def search(
        self, query: str, provider_id: Optional[str] = None, limit: int = 5
    ) -> List[CatalogEntry]:
        """
        Case-insensitive substring match over sku, provider description and
        customs description. Entries without an NCM code are skipped.
        """
        needle = (query or "").strip().lower()
        if not needle:
            return []
        r = await self._client()
        if provider_id:
            providers = [provider_id]
        else:
            providers = sorted(_s(p) for p in await r.smembers(self._providers_key()))
        if not providers:
            return []

        out: List[CatalogEntry] = []
        for entry in await self._all_for(r, providers):
            if not entry.ncm_code:
                continue
            haystack = (entry.sku, entry.provider_description, entry.customs_description)
            if any(needle in (h or "").lower() for h in haystack):
                out.append(entry)
                if len(out) >= limit:
                    break
        return out

    async def increment_usage(self, provider_id: str, sku: str) -> None:
        r = await self._client()
        key = self._key(provider_id, sku)
        pipe = r.pipeline(transaction=False)
        pipe.hincrby(key, "times_used", 1)
        pipe.hset(key, mapping={"last_used_at": datetime.now(timezone.utc).isoformat()})
        await pipe.execute()

    async def upsert_many(self, entries: Iterable[CatalogEntry]) -> int:
        """
        Insert or overwrite entries; times_used is preserved for existing skus.
        Returns how many entries were written.
        """
        batch = [e for e in entries if e.provider_id and e.sku]
        if not batch:
            return 0
        r = await self._client()
        now = datetime.now(timezone.utc).isoformat()
        pipe = r.pipeline(transaction=True)
        for e in batch:
            pipe.hset(
                self._key(e.provider_id, e.sku),
                mapping={
                    "provider_id": e.provider_id,
                    "sku": e.sku,
                    "provider_description": e.provider_description or "",
                    "customs_description": e.customs_description or "",
                    "ncm_code": e.ncm_code or "",
                    "last_used_at": now,
                },
            )
            pipe.hsetnx(self._key(e.provider_id, e.sku), "times_used", 0)
            pipe.sadd(self._skus_key(e.provider_id), e.sku)
            pipe.sadd(self._providers_key(), e.provider_id)
        await pipe.execute()
        return len(batch)
