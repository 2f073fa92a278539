from typing import Literal, Optional
from pydantic import BaseModel
from model.classification import ClassifiedItem
from model.invoice import DocumentHeader

InvoiceStatus = Literal[
    "uploaded",
    "processing",
    "review",
    "approved",
    "error",
]


class InvoiceJob(BaseModel):
    id: str
    status: InvoiceStatus
    file_name: str = ""
    media_type: str = ""
    provider_id: Optional[str] = None
    processing_error: Optional[str] = None
    total_items: int = 0
    items_auto_classified: int = 0


class InvoiceResult(BaseModel):
    header: DocumentHeader
    items: list[ClassifiedItem]
    page_count: int = 1
    strategy: str = "single_call"
