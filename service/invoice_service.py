import logging
from typing import Dict, List
from fastapi import UploadFile
from core.classification_pipeline import InvoiceClassifier
from core.extraction import InvoiceExtractor
from model.api import (
    ApproveInvoiceResponse,
    CorrectItemRequest,
    InvoiceResponse,
    ProcessInvoiceResponse,
)
from model.classification import (
    ClassificationResult,
    ClassificationSource,
    ClassifiedItem,
    ConfidenceLevel,
)
from model.invoice import ExtractionResult
from model.job import InvoiceJob, InvoiceResult
from model.ncm import CatalogEntry
from repository.blob_repository import BlobRepository
from repository.catalog_repository import CatalogRepository
from repository.invoice_repository import InvoiceRepository
from repository.provider_repository import ProviderRepository
from util.enums import ErrorMessage
from util.errors import AppError
from util.functions import resolve_media_type
from util.timing import timed

logger = logging.getLogger(__name__)

_AUTO_SOURCES = {ClassificationSource.exact_match, ClassificationSource.semantic}


def _raise(err: ErrorMessage) -> None:
    raise AppError(err.value.message, err.value.http_status)


def merge_classification(
    extraction: ExtractionResult, classifications: List[ClassificationResult]
) -> List[ClassifiedItem]:
    out: List[ClassifiedItem] = []
    for item, c in zip(extraction.items, classifications):
        out.append(
            ClassifiedItem(
                line_number=item.line_number,
                sku=item.sku,
                original_description=item.original_description,
                customs_description=c.customs_description
                or item.suggested_customs_description,
                ncm_code=c.ncm_code,
                quantity=item.quantity,
                unit_of_measure=item.unit_of_measure,
                unit_price=item.unit_price,
                total_price=item.total_price,
                currency=item.currency or extraction.header.currency,
                country_of_origin=item.country_of_origin,
                confidence_level=c.confidence_level,
                classification_source=c.classification_source,
                original_ncm_suggestion=item.suggested_ncm_code,
            )
        )
    return out


class InvoiceService:
    def __init__(
        self,
        invoices: InvoiceRepository,
        blobs: BlobRepository,
        providers: ProviderRepository,
        catalog: CatalogRepository,
        extractor: InvoiceExtractor,
        classifier: InvoiceClassifier,
    ) -> None:
        self._invoices = invoices
        self._blobs = blobs
        self._providers = providers
        self._catalog = catalog
        self._extractor = extractor
        self._classifier = classifier

    async def _require(self, invoice_id: str) -> InvoiceJob:
        job = await self._invoices.get(invoice_id)
        if job is None:
            _raise(ErrorMessage.INVOICE_NOT_FOUND)
        return job

    async def create_invoice(self, file: UploadFile) -> str:
        """
        Persist the uploaded document and register the invoice as 'uploaded'.
        Logs: invoice id, media type and byte size (no payloads).
        """
        media_type = resolve_media_type(file.filename, file.content_type)
        if media_type is None:
            _raise(ErrorMessage.UNSUPPORTED_MEDIA_TYPE)
        data = await file.read()
        await file.seek(0)

        job = await self._invoices.create(
            file_name=file.filename or "invoice", media_type=media_type
        )
        try:
            await self._blobs.put_document(job.id, data)
        except Exception:
            logger.error("upload.persist.error invoice=%s", job.id)
            raise
        logger.info(
            "upload.ok invoice=%s media=%s bytes=%d", job.id, media_type, len(data)
        )
        return job.id

    async def start_processing(self, invoice_id: str) -> ProcessInvoiceResponse:
        job = await self._require(invoice_id)
        if job.status == "processing":
            _raise(ErrorMessage.ALREADY_PROCESSING)
        await self._invoices.set_status(invoice_id, "processing")
        return ProcessInvoiceResponse(invoiceId=invoice_id, status="processing")

    async def process(self, invoice_id: str) -> None:
        """
        Full pipeline for one invoice: extract -> provider -> classify -> store.
        Runs detached from the request; every failure ends in status 'error'
        with a readable message so the invoice can be re-processed.
        """
        try:
            job = await self._require(invoice_id)
            await self._invoices.reset(invoice_id)
            data = await self._blobs.get_document(invoice_id)
            if not data:
                _raise(ErrorMessage.DOCUMENT_MISSING)

            with timed(logger, "invoice.process", invoice=invoice_id):
                extraction = await self._extractor.extract(data, job.media_type)
                provider_id = await self._providers.find_or_create(
                    extraction.header.provider_name
                )
                classifications = await self._classifier.classify(
                    extraction.items, provider_id
                )

            items = merge_classification(extraction, classifications)
            auto = sum(1 for i in items if i.classification_source in _AUTO_SOURCES)
            await self._invoices.save_result(
                invoice_id,
                InvoiceResult(
                    header=extraction.header,
                    items=items,
                    page_count=extraction.page_count,
                    strategy=extraction.strategy,
                ),
            )
            await self._invoices.set_summary(
                invoice_id,
                provider_id=provider_id,
                total_items=len(items),
                items_auto_classified=auto,
            )
            await self._invoices.set_status(invoice_id, "review")
            logger.info(
                "invoice.process.ok invoice=%s items=%d auto=%d",
                invoice_id,
                len(items),
                auto,
            )
        except Exception as e:
            message = getattr(e, "detail", None) or str(e) or type(e).__name__
            logger.error(
                "invoice.process.error invoice=%s err=%s",
                invoice_id,
                type(e).__name__,
                exc_info=True,
            )
            await self._invoices.set_status(
                invoice_id, "error", processing_error=f"Processing failed: {message}"
            )

    async def get(self, invoice_id: str) -> InvoiceResponse:
        job = await self._require(invoice_id)
        result = await self._invoices.get_result(invoice_id)
        return InvoiceResponse(
            invoiceId=job.id,
            status=job.status,
            fileName=job.file_name,
            providerId=job.provider_id,
            processingError=job.processing_error,
            totalItems=job.total_items,
            itemsAutoClassified=job.items_auto_classified,
            header=result.header if result else None,
            items=result.items if result else [],
        )

    async def correct_item(
        self, invoice_id: str, line_number: int, payload: CorrectItemRequest
    ) -> ClassifiedItem:
        """Human correction: the reviewer's code is final (manual, high)."""
        await self._require(invoice_id)
        result = await self._invoices.get_result(invoice_id)
        if result is None:
            _raise(ErrorMessage.ITEM_NOT_FOUND)

        for idx, item in enumerate(result.items):
            if item.line_number != line_number:
                continue
            updated = item.model_copy(
                update={
                    "ncm_code": payload.ncm_code.strip(),
                    "customs_description": payload.customs_description
                    or item.customs_description,
                    "confidence_level": ConfidenceLevel.high,
                    "classification_source": ClassificationSource.manual,
                    "was_corrected": True,
                }
            )
            result.items[idx] = updated
            await self._invoices.save_result(invoice_id, result)
            logger.info("invoice.item.corrected invoice=%s line=%d", invoice_id, line_number)
            return updated

        _raise(ErrorMessage.ITEM_NOT_FOUND)

    async def approve(self, invoice_id: str) -> ApproveInvoiceResponse:
        """
        Feed reviewed items back into the provider's catalog so the next
        invoice from the same provider matches by sku.
        """
        job = await self._require(invoice_id)
        if job.status not in ("review", "approved"):
            _raise(ErrorMessage.NOT_READY_FOR_APPROVAL)
        result = await self._invoices.get_result(invoice_id)
        items = result.items if result else []

        synced = 0
        if job.provider_id:
            by_sku: Dict[str, CatalogEntry] = {}
            for item in items:
                if not (item.sku and item.customs_description and item.ncm_code):
                    continue
                by_sku[item.sku] = CatalogEntry(
                    provider_id=job.provider_id,
                    sku=item.sku,
                    provider_description=item.original_description,
                    customs_description=item.customs_description,
                    ncm_code=item.ncm_code,
                )
            synced = await self._catalog.upsert_many(by_sku.values())

        await self._invoices.set_status(invoice_id, "approved")
        corrected = sum(1 for i in items if i.was_corrected)
        logger.info(
            "invoice.approve.ok invoice=%s synced=%d corrected=%d",
            invoice_id,
            synced,
            corrected,
        )
        return ApproveInvoiceResponse(
            invoiceId=invoice_id,
            catalogSynced=synced,
            totalItems=len(items),
            corrected=corrected,
        )
