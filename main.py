import httpx
from fastapi_limiter import FastAPILimiter
import routes
from contextlib import asynccontextmanager
from util.enums import Environment, Color
from fastapi import FastAPI, Request
from starlette.middleware.cors import CORSMiddleware
from config.settings import settings
from config.cache import close_redis, get_redis
from fastapi.responses import JSONResponse
from core.anthropic_client import AnthropicClient
from core.classification_pipeline import InvoiceClassifier
from core.embeddings_retriever import EmbeddingService
from core.entities import DecisionPolicy, ExtractionConfig, RetryPolicy, SearchTuning
from core.extraction import InvoiceExtractor
from core.ncm_search import NcmSearchEngine
from core.query_expansion import QueryExpander
from repository.catalog_repository import CatalogRepository
from repository.nomenclature_repository import NomenclatureRepository
from util.background import drain
from util.logger import init_logger


async def _real_ip(request: Request) -> str:
    if settings.TRUST_PROXY:
        fwd = request.headers.get("x-forwarded-for")
        if fwd:
            return fwd.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def build_pipeline(app: FastAPI, http: httpx.AsyncClient) -> None:
    """Wire the long-lived pipeline components onto app.state."""
    llm = AnthropicClient(
        http=http,
        api_key=settings.ANTHROPIC_API_KEY,
        model=settings.ANTHROPIC_MODEL,
        api_url=settings.ANTHROPIC_API_URL,
        version=settings.ANTHROPIC_VERSION,
        timeout=settings.ANTHROPIC_TIMEOUT_SECONDS,
    )
    retry = RetryPolicy(
        max_attempts=settings.RATE_LIMIT_MAX_ATTEMPTS,
        base_delay=settings.RATE_LIMIT_BACKOFF_SECONDS,
        max_delay=settings.RATE_LIMIT_BACKOFF_CAP_SECONDS,
    )
    embedder = EmbeddingService(
        settings.EMBEDDING_MODEL_NAME, batch_size=settings.EMBEDDING_BATCH_SIZE
    )
    nomenclature = NomenclatureRepository.load(
        settings.NCM_CSV_PATH, embedder, settings.NCM_EMBEDDINGS_PATH
    )
    catalog = CatalogRepository()
    expander = QueryExpander(
        llm,
        single_prompt=settings.EXPAND_QUERY_PROMPT,
        batch_prompt=settings.EXPAND_BATCH_PROMPT,
        max_tokens=settings.EXPAND_MAX_TOKENS,
        batch_max_tokens=settings.EXPAND_BATCH_MAX_TOKENS,
    )
    engine = NcmSearchEngine(nomenclature, catalog, embedder, expander, SearchTuning())

    app.state.search_engine = engine
    app.state.extractor = InvoiceExtractor(
        llm,
        items_prompt=settings.EXTRACT_ITEMS_PROMPT,
        header_prompt=settings.EXTRACT_HEADER_PROMPT,
        config=ExtractionConfig(
            single_call_max_pages=settings.SINGLE_CALL_MAX_PAGES,
            page_delay_seconds=settings.PAGE_DELAY_SECONDS,
            page_line_offset=settings.PAGE_LINE_OFFSET,
            items_max_tokens=settings.EXTRACT_MAX_TOKENS,
            header_max_tokens=settings.HEADER_MAX_TOKENS,
        ),
        retry=retry,
    )
    app.state.classifier = InvoiceClassifier(
        engine,
        catalog,
        expander,
        embedder,
        DecisionPolicy(semantic_threshold=settings.CLASSIFY_SEMANTIC_THRESHOLD),
    )


@asynccontextmanager
async def lifespan(fastApi: FastAPI):
    http = httpx.AsyncClient()
    try:
        # Warm Redis
        init_logger()
        print(f"{Color.GREEN}Initializing...{Color.RESET}")
        redis = await get_redis()
        await FastAPILimiter.init(redis, identifier=_real_ip)
        build_pipeline(fastApi, http)
        print(f"{Color.BLUE}Server Started{Color.RESET}")
    except Exception as e:
        print("Startup failed:", e)
        await http.aclose()
        raise

    try:
        yield
    finally:
        await drain()
        await http.aclose()
        try:
            await close_redis()
        except Exception as e:
            print("Error closing Redis:", e)

        print(f"{Color.RED}Server Shutdown{Color.RESET}")


app: FastAPI = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.ALLOWED_ORIGIN],
    allow_credentials=True,  # Allow cookies and other credentials
    allow_methods=["GET", "POST", "PUT"],  # Allowed HTTP Methods
    allow_headers=["Authorization", "Content-Type", "Accept"],  # Allowed HTTP Headers
)


@app.get("/healthz")
async def healthz():
    return {"ok": True}


@app.exception_handler(429)
async def ratelimit_handler(request: Request, exc):
    return JSONResponse(
        status_code=429,
        content={
            "ok": False,
            "error": "rate_limited",
            "message": f"Too many requests. Try again in {settings.RATE_LIMIT_SECONDS}s.",
        },
        headers={"Retry-After": str(settings.RATE_LIMIT_SECONDS)},
    )


routes.register_routes(app)

if __name__ == "__main__":
    import uvicorn

    reload = settings.APP_ENV == Environment.DEV
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=reload)
