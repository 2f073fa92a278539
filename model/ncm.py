from typing import Literal, Optional
from pydantic import BaseModel, field_validator

MatchType = Literal["catalog", "fulltext", "trigram", "semantic", "exact"]
SearchMethod = Literal["exact_code", "multi"]


class NomenclatureEntry(BaseModel):
    ncm_code: str
    description: str
    section: str = ""
    chapter: str = ""


class CatalogEntry(BaseModel):
    provider_id: str
    sku: str
    provider_description: str = ""
    customs_description: str = ""
    ncm_code: Optional[str] = None
    times_used: int = 0
    last_used_at: Optional[str] = None


class SearchResult(BaseModel):
    ncm_code: str
    description: str = ""
    section: str = ""
    chapter: str = ""
    similarity: float
    match_type: MatchType
    source: str
    sku: Optional[str] = None
    provider_description: Optional[str] = None
    customs_description: Optional[str] = None

    # Layers score on different scales; fusion assumes [0, 1].
    @field_validator("similarity", mode="before")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return max(0.0, min(1.0, float(v)))


class LayerCounts(BaseModel):
    catalog: int = 0
    fulltext: int = 0
    trigram: int = 0
    semantic: int = 0


class NcmSearchResponse(BaseModel):
    results: list[SearchResult]
    query: str
    expanded_query: str
    method: SearchMethod
    sources: LayerCounts
