from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi_limiter.depends import RateLimiter
from config.settings import settings
from core.ncm_search import NcmSearchEngine
from model.api import NcmSearchRequest
from model.ncm import NcmSearchResponse
from util.constants import InternalURIs
from controller.controller_dependencies import get_search_engine

ncm_router = APIRouter(
    dependencies=[
        Depends(
            RateLimiter(
                times=settings.RATE_LIMIT_TIMES, seconds=settings.RATE_LIMIT_SECONDS
            )
        )
    ]
)


@ncm_router.post(InternalURIs.NCM_SEARCH, response_model=NcmSearchResponse)
async def search_ncm(
    payload: NcmSearchRequest,
    engine: NcmSearchEngine = Depends(get_search_engine),
) -> NcmSearchResponse:
    return await engine.search(
        payload.query,
        limit=payload.limit,
        threshold=payload.threshold,
        skip_expansion=payload.skipExpansion,
        provider_id=payload.providerId,
    )


@ncm_router.get(InternalURIs.NCM_SEARCH, response_model=NcmSearchResponse)
async def search_ncm_get(
    q: str = Query(..., min_length=1),
    limit: int = Query(settings.SEARCH_DEFAULT_LIMIT, ge=1, le=50),
    providerId: Optional[str] = None,
    engine: NcmSearchEngine = Depends(get_search_engine),
) -> NcmSearchResponse:
    return await engine.search(
        q,
        limit=limit,
        threshold=settings.SEARCH_DEFAULT_THRESHOLD,
        provider_id=providerId,
    )
