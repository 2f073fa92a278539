import asyncio
import logging
from typing import List, Optional, Sequence, Tuple
from pydantic import ValidationError
from core.anthropic_client import AnthropicClient
from core.batching import BatchExecutor, Sleep
from core.entities import ExtractionConfig, PdfInfo, RetryPolicy
from core.json_repair import parse_header, parse_items
from core.pdf_split import inspect_pdf, split_pdf_pages
from model.invoice import DocumentHeader, ExtractionResult, RawItem
from util.constants import PDF_MEDIA_TYPE
from util.timing import timed

logger = logging.getLogger(__name__)


def build_items(raw: Sequence[dict], default_currency: str = "USD") -> List[RawItem]:
    """
    Validate model rows into RawItems numbered 1..n in the given order.
    Every object row is kept, even one without a description; only
    non-object rows are skipped.
    """
    items: List[RawItem] = []
    for row in raw:
        if not isinstance(row, dict):
            continue
        data = dict(row)
        data["line_number"] = len(items) + 1
        if not data.get("currency"):
            data["currency"] = default_currency
        items.append(RawItem.model_validate(data))
    empty = sum(1 for i in items if not i.original_description.strip())
    if empty:
        logger.warning("extract.item.no_description count=%d", empty)
    return items


class InvoiceExtractor:
    """
    Turns a raw invoice (image or PDF) into a header and ordered line items.

    Three strategies:
      - image: header and items requested in parallel.
      - PDF up to `single_call_max_pages` pages, or encrypted: the whole file
        in one items call plus one header call, in parallel.
      - longer PDFs: split per page, header from page 1 only, pages sent one at
        a time with `page_delay_seconds` between them so a single call never
        has to emit a whole long invoice.
    Line numbers are always rewritten to 1..n after merging.
    """

    def __init__(
        self,
        llm: AnthropicClient,
        *,
        items_prompt: str,
        header_prompt: str,
        config: Optional[ExtractionConfig] = None,
        retry: Optional[RetryPolicy] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self._llm = llm
        self._items_prompt = items_prompt
        self._header_prompt = header_prompt
        self._cfg = config or ExtractionConfig()
        self._parallel = BatchExecutor(batch_size=2, retry=retry, sleep=sleep)
        self._sequential = BatchExecutor(
            batch_size=1,
            delay_seconds=self._cfg.page_delay_seconds,
            retry=retry,
            sleep=sleep,
        )

    # ---------------- Upstream calls ----------------

    async def _items_call(
        self, file_bytes: bytes, media_type: str, start_line: int
    ) -> List[dict]:
        prompt = self._items_prompt.replace("{start_line}", str(start_line))
        text = await self._llm.complete_with_document(
            file_bytes,
            media_type,
            prompt,
            max_tokens=self._cfg.items_max_tokens,
            label="ai.extract.items",
        )
        return parse_items(text)

    async def _header_call(self, file_bytes: bytes, media_type: str) -> DocumentHeader:
        text = await self._llm.complete_with_document(
            file_bytes,
            media_type,
            self._header_prompt,
            max_tokens=self._cfg.header_max_tokens,
            label="ai.extract.header",
        )
        parsed = parse_header(text)
        if not parsed:
            logger.warning("extract.header.unparsed")
            return DocumentHeader()
        try:
            return DocumentHeader.model_validate(parsed)
        except ValidationError:
            logger.warning("extract.header.invalid")
            return DocumentHeader()

    # ---------------- Strategies ----------------

    async def _whole_document(
        self, file_bytes: bytes, media_type: str
    ) -> Tuple[DocumentHeader, List[dict]]:
        header, items = await self._parallel.run(
            [
                lambda: self._header_call(file_bytes, media_type),
                lambda: self._items_call(file_bytes, media_type, 1),
            ],
            return_exceptions=True,
        )
        if isinstance(items, BaseException):
            raise items
        if isinstance(header, BaseException):
            logger.error("extract.header.error err=%s", type(header).__name__)
            header = DocumentHeader()
        return header, items

    async def _per_page(self, pages: List[bytes]) -> Tuple[DocumentHeader, List[dict]]:
        try:
            header = await self._sequential.call_with_backoff(
                lambda: self._header_call(pages[0], PDF_MEDIA_TYPE), label="header"
            )
        except Exception as e:
            logger.error("extract.header.error err=%s", type(e).__name__)
            header = DocumentHeader()

        offset = self._cfg.page_line_offset
        factories = [
            (lambda p=page, i=idx: self._items_call(p, PDF_MEDIA_TYPE, i * offset + 1))
            for idx, page in enumerate(pages)
        ]
        outcomes = await self._sequential.run(factories, return_exceptions=True)

        merged: List[dict] = []
        for idx, outcome in enumerate(outcomes, start=1):
            if isinstance(outcome, BaseException):
                logger.error(
                    "extract.page.error page=%d err=%s", idx, type(outcome).__name__
                )
                continue
            logger.info("extract.page.done page=%d items=%d", idx, len(outcome))
            merged.extend(outcome)
        return header, merged

    # ---------------- Entry point ----------------

    async def extract(self, file_bytes: bytes, media_type: str) -> ExtractionResult:
        """
        extract(document bytes, media type) -> header + items numbered 1..n.
        """
        if media_type != PDF_MEDIA_TYPE:
            with timed(logger, "extract.image"):
                header, raw = await self._whole_document(file_bytes, media_type)
            items = build_items(raw, header.currency)
            return ExtractionResult(header=header, items=items, strategy="image")

        info: PdfInfo = await asyncio.to_thread(inspect_pdf, file_bytes)
        strategy = "single_call"
        if info.page_count > self._cfg.single_call_max_pages and not info.encrypted:
            pages = await asyncio.to_thread(split_pdf_pages, file_bytes)
            if pages:
                strategy = "per_page"
            else:
                logger.warning("extract.split.fallback pages=%d", info.page_count)

        with timed(logger, "extract.pdf", pages=info.page_count, strategy=strategy):
            if strategy == "per_page":
                header, raw = await self._per_page(pages)
            else:
                header, raw = await self._whole_document(file_bytes, PDF_MEDIA_TYPE)

        items = build_items(raw, header.currency)
        logger.info(
            "extract.done pages=%d items=%d encrypted=%s strategy=%s",
            info.page_count,
            len(items),
            info.encrypted,
            strategy,
        )
        return ExtractionResult(
            header=header,
            items=items,
            page_count=info.page_count,
            encrypted=info.encrypted,
            strategy=strategy,
        )
