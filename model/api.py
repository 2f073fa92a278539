from typing import Optional
from pydantic import BaseModel, Field
from model.classification import ClassifiedItem
from model.invoice import DocumentHeader
from model.job import InvoiceStatus


class UploadInvoiceResponse(BaseModel):
    invoiceId: str


class ProcessInvoiceResponse(BaseModel):
    invoiceId: str
    status: InvoiceStatus


class InvoiceResponse(BaseModel):
    invoiceId: str
    status: InvoiceStatus
    fileName: str
    providerId: Optional[str] = None
    processingError: Optional[str] = None
    totalItems: int = 0
    itemsAutoClassified: int = 0
    header: Optional[DocumentHeader] = None
    items: list[ClassifiedItem] = []


class CorrectItemRequest(BaseModel):
    ncm_code: str = Field(min_length=2)
    customs_description: Optional[str] = None


class ApproveInvoiceResponse(BaseModel):
    invoiceId: str
    catalogSynced: int
    totalItems: int
    corrected: int


class NcmSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=50)
    threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    skipExpansion: bool = False
    providerId: Optional[str] = None
