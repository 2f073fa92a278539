from typing import Final, Optional
from uuid import uuid4
from redis.asyncio import Redis
from config.cache import get_redis
from config.settings import settings
from model.job import InvoiceJob, InvoiceResult, InvoiceStatus
from repository.namespaces import INVOICES, RESULTS

KEY_PREFIX: Final[str] = INVOICES


class InvoiceRepository:
    """
    Invoice lifecycle state (hash) and its latest extraction/classification
    result (JSON string). Both keys share the invoice TTL.
    """

    def __init__(self, ttl_seconds: int = settings.PERSISTENCE_TTL_SECONDS) -> None:
        self._ttl = int(ttl_seconds)

    @staticmethod
    async def _client() -> Redis:
        return await get_redis()

    @staticmethod
    def _key(invoice_id: str) -> str:
        return f"{KEY_PREFIX}:{invoice_id}"

    @staticmethod
    def _result_key(invoice_id: str) -> str:
        return f"{RESULTS}:{invoice_id}"

    # ---------------- Core CRUD ----------------

    async def create(self, *, file_name: str, media_type: str) -> InvoiceJob:
        job = InvoiceJob(
            id=str(uuid4()), status="uploaded", file_name=file_name, media_type=media_type
        )
        await self.put(job)
        return job

    async def put(self, job: InvoiceJob) -> None:
        r = await self._client()
        mapping = {
            "id": job.id,
            "status": job.status,
            "file_name": job.file_name,
            "media_type": job.media_type,
            "provider_id": job.provider_id or "",
            "processing_error": job.processing_error or "",
            "total_items": str(job.total_items or 0),
            "items_auto_classified": str(job.items_auto_classified or 0),
        }
        await r.hset(self._key(job.id), mapping=mapping)
        await r.expire(self._key(job.id), self._ttl)

    async def get(self, invoice_id: str) -> Optional[InvoiceJob]:
        if not invoice_id:
            return None
        r = await self._client()
        h = await r.hgetall(self._key(invoice_id))
        if not h:
            return None

        def _s(key: str, default: str = "") -> str:
            v = h.get(key.encode("utf-8"), h.get(key))
            if v is None:
                return default
            return v.decode("utf-8") if isinstance(v, (bytes, bytearray)) else str(v)

        return InvoiceJob(
            id=_s("id"),
            status=_s("status") or "uploaded",
            file_name=_s("file_name"),
            media_type=_s("media_type"),
            provider_id=_s("provider_id") or None,
            processing_error=_s("processing_error") or None,
            total_items=int(_s("total_items", "0") or 0),
            items_auto_classified=int(_s("items_auto_classified", "0") or 0),
        )

    # ---------------- Status helpers ----------------

    async def set_status(
        self,
        invoice_id: str,
        status: InvoiceStatus,
        *,
        processing_error: Optional[str] = None,
    ) -> None:
        r = await self._client()
        await r.hset(
            self._key(invoice_id),
            mapping={"status": status, "processing_error": processing_error or ""},
        )
        await r.expire(self._key(invoice_id), self._ttl)

    async def set_summary(
        self,
        invoice_id: str,
        *,
        provider_id: Optional[str],
        total_items: int,
        items_auto_classified: int,
    ) -> None:
        r = await self._client()
        await r.hset(
            self._key(invoice_id),
            mapping={
                "provider_id": provider_id or "",
                "total_items": str(total_items),
                "items_auto_classified": str(items_auto_classified),
            },
        )
        await r.expire(self._key(invoice_id), self._ttl)

    # ---------------- Results ----------------

    async def save_result(self, invoice_id: str, result: InvoiceResult) -> None:
        r = await self._client()
        payload = result.model_dump_json().encode("utf-8")
        await r.set(self._result_key(invoice_id), payload, ex=self._ttl)

    async def get_result(self, invoice_id: str) -> Optional[InvoiceResult]:
        r = await self._client()
        raw = await r.get(self._result_key(invoice_id))
        if raw is None:
            return None
        return InvoiceResult.model_validate_json(raw)

    async def reset(self, invoice_id: str) -> None:
        """Drop previous results and summary so a re-run starts clean."""
        r = await self._client()
        await r.delete(self._result_key(invoice_id))
        await self.set_summary(
            invoice_id, provider_id=None, total_items=0, items_auto_classified=0
        )
