from core.ncm_search import NcmSearchEngine
from repository.blob_repository import BlobRepository
from repository.catalog_repository import CatalogRepository
from repository.invoice_repository import InvoiceRepository
from repository.provider_repository import ProviderRepository
from service.invoice_service import InvoiceService
from fastapi import File, HTTPException, Request, UploadFile
from config.settings import settings


def get_invoice_service(request: Request) -> InvoiceService:
    # Long-lived pipeline pieces are built once in the lifespan.
    state = request.app.state
    _invoices = InvoiceRepository()
    _blobs = BlobRepository()
    _providers = ProviderRepository()
    _catalog = CatalogRepository()
    _service = InvoiceService(
        _invoices, _blobs, _providers, _catalog, state.extractor, state.classifier
    )
    return _service


def get_search_engine(request: Request) -> NcmSearchEngine:
    return request.app.state.search_engine


async def enforce_max_upload_size(
    request: Request, file: UploadFile = File(...)
) -> UploadFile:
    # Fast pre-check via Content-Length if present
    MAX_BYTES = settings.MAX_FILE_MB * 1024 * 1024
    cl = request.headers.get("content-length")
    if cl and int(cl) > MAX_BYTES:
        raise HTTPException(
            status_code=413,
            detail={
                "ok": False,
                "error": "file_too_large",
                "maxMb": settings.MAX_FILE_MB,
            },
        )

    # Hard cap while reading initial bytes (works even if no Content-Length)
    blob = await file.read(MAX_BYTES + 1)
    if len(blob) > MAX_BYTES:
        raise HTTPException(
            status_code=413,
            detail={
                "ok": False,
                "error": "file_too_large",
                "maxMb": settings.MAX_FILE_MB,
            },
        )

    # Reset so downstream can re-read file stream
    await file.seek(0)
    return file
