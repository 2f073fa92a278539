from enum import Enum
from typing import Optional
from pydantic import BaseModel


class ConfidenceLevel(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class ClassificationSource(str, Enum):
    exact_match = "exact_match"
    semantic = "semantic"
    llm_rag = "llm_rag"
    manual = "manual"


class ClassificationResult(BaseModel):
    ncm_code: Optional[str] = None
    customs_description: Optional[str] = None
    confidence_level: ConfidenceLevel = ConfidenceLevel.low
    classification_source: ClassificationSource = ClassificationSource.llm_rag


class ClassifiedItem(BaseModel):
    """A RawItem with its classification, as persisted and served."""

    line_number: int
    sku: Optional[str] = None
    original_description: str
    customs_description: Optional[str] = None
    ncm_code: Optional[str] = None
    quantity: Optional[float] = None
    unit_of_measure: Optional[str] = None
    unit_price: Optional[float] = None
    total_price: Optional[float] = None
    currency: str = "USD"
    country_of_origin: Optional[str] = None
    confidence_level: ConfidenceLevel
    classification_source: ClassificationSource
    original_ncm_suggestion: Optional[str] = None
    was_corrected: bool = False
