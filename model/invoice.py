from typing import Any, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from util.functions import parse_amount

ExtractionStrategy = Literal["image", "single_call", "per_page"]


def _clean_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    if not s or s.lower() in {"null", "none", "n/a"}:
        return None
    return s


class DocumentHeader(BaseModel):
    provider_name: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    currency: str = "USD"

    @field_validator("provider_name", "invoice_number", "invoice_date", mode="before")
    @classmethod
    def _strings(cls, v: Any) -> Optional[str]:
        return _clean_str(v)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, v: Any) -> str:
        return (_clean_str(v) or "USD").upper()


class RawItem(BaseModel):
    """One invoice line as read by the vision model. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    line_number: int = Field(ge=1)
    sku: Optional[str] = None
    original_description: str = ""
    suggested_customs_description: Optional[str] = None
    suggested_ncm_code: Optional[str] = None
    quantity: Optional[float] = None
    unit_of_measure: Optional[str] = None
    unit_price: Optional[float] = None
    total_price: Optional[float] = None
    currency: str = "USD"
    country_of_origin: Optional[str] = None

    @field_validator(
        "sku",
        "suggested_customs_description",
        "suggested_ncm_code",
        "unit_of_measure",
        "country_of_origin",
        mode="before",
    )
    @classmethod
    def _strings(cls, v: Any) -> Optional[str]:
        return _clean_str(v)

    @field_validator("original_description", mode="before")
    @classmethod
    def _description(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("quantity", "unit_price", "total_price", mode="before")
    @classmethod
    def _amounts(cls, v: Any) -> Optional[float]:
        return parse_amount(v)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, v: Any) -> str:
        return (_clean_str(v) or "USD").upper()


class ExtractionResult(BaseModel):
    header: DocumentHeader
    items: list[RawItem]
    page_count: int = 1
    encrypted: bool = False
    strategy: ExtractionStrategy = "single_call"
