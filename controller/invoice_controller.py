from fastapi import APIRouter, BackgroundTasks, File, UploadFile, status, Depends
from fastapi_limiter.depends import RateLimiter
from config.settings import settings
from service.invoice_service import InvoiceService
from model.api import (
    ApproveInvoiceResponse,
    CorrectItemRequest,
    InvoiceResponse,
    ProcessInvoiceResponse,
    UploadInvoiceResponse,
)
from model.classification import ClassifiedItem
from util.constants import InternalURIs
from controller.controller_dependencies import (
    get_invoice_service,
    enforce_max_upload_size,
)

invoice_router = APIRouter(
    dependencies=[
        Depends(
            RateLimiter(
                times=settings.RATE_LIMIT_TIMES, seconds=settings.RATE_LIMIT_SECONDS
            )
        )
    ]
)


@invoice_router.post(
    InternalURIs.INVOICES,
    response_model=UploadInvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(enforce_max_upload_size)],
)
async def upload_invoice(
    file: UploadFile = File(...),
    service: InvoiceService = Depends(get_invoice_service),
) -> UploadInvoiceResponse:
    invoice_id = await service.create_invoice(file)
    return UploadInvoiceResponse(invoiceId=invoice_id)


@invoice_router.post(
    InternalURIs.PROCESS_INVOICE,
    response_model=ProcessInvoiceResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def process_invoice(
    invoice_id: str,
    background: BackgroundTasks,
    service: InvoiceService = Depends(get_invoice_service),
) -> ProcessInvoiceResponse:
    accepted = await service.start_processing(invoice_id)
    background.add_task(service.process, invoice_id)
    return accepted


@invoice_router.get(InternalURIs.INVOICE, response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceResponse:
    return await service.get(invoice_id)


@invoice_router.put(InternalURIs.INVOICE_ITEM, response_model=ClassifiedItem)
async def correct_item(
    invoice_id: str,
    line_number: int,
    payload: CorrectItemRequest,
    service: InvoiceService = Depends(get_invoice_service),
) -> ClassifiedItem:
    return await service.correct_item(invoice_id, line_number, payload)


@invoice_router.post(InternalURIs.APPROVE_INVOICE, response_model=ApproveInvoiceResponse)
async def approve_invoice(
    invoice_id: str,
    service: InvoiceService = Depends(get_invoice_service),
) -> ApproveInvoiceResponse:
    return await service.approve(invoice_id)
