"""
Unit tests for core/extraction.py
"""

import json
import re
from unittest.mock import AsyncMock
import fitz
import pytest
from conftest import FakeLLM, make_pdf
from core import extraction as extraction_module
from core.entities import ExtractionConfig, PdfInfo
from core.extraction import InvoiceExtractor, build_items
from util.errors import RateLimitedError

ITEMS_PROMPT = "Extract items. line_number starting at {start_line}."
HEADER_PROMPT = "Extract header."
HEADER_JSON = json.dumps(
    {"provider_name": "ACME Trading", "invoice_number": "F-1", "currency": "usd"}
)


def page_text(file_bytes: bytes) -> str:
    with fitz.open(stream=file_bytes, filetype="pdf") as doc:
        return "".join(p.get_text() for p in doc)


def items_json(n: int, start: int, tag: str) -> str:
    return json.dumps(
        [
            {"line_number": start + i, "original_description": f"{tag} item {i}", "sku": f"{tag}{i}"}
            for i in range(n)
        ]
    )


def make_extractor(llm, **config) -> InvoiceExtractor:
    return InvoiceExtractor(
        llm,
        items_prompt=ITEMS_PROMPT,
        header_prompt=HEADER_PROMPT,
        config=ExtractionConfig(**config),
        sleep=AsyncMock(),
    )


class TestBuildItems:
    def test_renumbers_every_line(self):
        raw = [
            {"line_number": 101, "original_description": "A"},
            {"line_number": 102, "original_description": ""},
            {"line_number": 201, "original_description": "B", "currency": "eur"},
        ]
        items = build_items(raw, "USD")
        assert [i.line_number for i in items] == [1, 2, 3]
        assert [i.currency for i in items] == ["USD", "USD", "EUR"]

    def test_line_without_description_is_kept(self):
        raw = [
            {"original_description": "Cable"},
            {"sku": "ZX-9", "original_description": None, "quantity": 3},
            {"original_description": "Mouse"},
        ]
        items = build_items(raw)
        assert [(i.line_number, i.original_description) for i in items] == [
            (1, "Cable"),
            (2, ""),
            (3, "Mouse"),
        ]
        assert items[1].sku == "ZX-9"
        assert items[1].quantity == 3

    def test_non_object_rows_skipped(self):
        items = build_items([{"original_description": "A"}, "junk", 7])
        assert [i.line_number for i in items] == [1]


class TestPerPage:
    """Long PDFs are split and read page by page."""

    async def test_three_pages_renumbered_header_from_first_page(self):
        pdf = make_pdf(["PAGE ONE", "PAGE TWO", "PAGE THREE"])
        per_page = {1: 2, 101: 1, 201: 0}

        def respond(prompt, file_bytes):
            if prompt == HEADER_PROMPT:
                return HEADER_JSON
            start = int(re.search(r"starting at (\d+)", prompt).group(1))
            return items_json(per_page[start], start, f"p{start}-")

        llm = FakeLLM(respond)
        result = await make_extractor(llm, single_call_max_pages=2).extract(
            pdf, "application/pdf"
        )

        assert result.strategy == "per_page"
        assert result.page_count == 3
        assert [i.line_number for i in result.items] == [1, 2, 3]
        assert [i.sku for i in result.items] == ["p1-0", "p1-1", "p101-0"]
        assert result.header.provider_name == "ACME Trading"
        assert result.header.currency == "USD"

        header_calls = [c for c in llm.calls if c["prompt"] == HEADER_PROMPT]
        assert len(header_calls) == 1
        assert "PAGE ONE" in page_text(header_calls[0]["file"])
        assert "PAGE TWO" not in page_text(header_calls[0]["file"])

    async def test_failing_page_contributes_nothing(self):
        pdf = make_pdf(["A", "B", "C"])

        def respond(prompt, file_bytes):
            if prompt == HEADER_PROMPT:
                raise RuntimeError("header down")
            if "starting at 101" in prompt:
                raise RuntimeError("page down")
            start = int(re.search(r"starting at (\d+)", prompt).group(1))
            return items_json(1, start, "x")

        result = await make_extractor(FakeLLM(respond), single_call_max_pages=1).extract(
            pdf, "application/pdf"
        )
        assert [i.line_number for i in result.items] == [1, 2]
        assert result.header.provider_name is None
        assert result.header.currency == "USD"

    async def test_pages_are_spaced_by_delay(self):
        pdf = make_pdf(["A", "B", "C"])
        sleep = AsyncMock()
        extractor = InvoiceExtractor(
            FakeLLM(lambda p, f: "[]" if p != HEADER_PROMPT else HEADER_JSON),
            items_prompt=ITEMS_PROMPT,
            header_prompt=HEADER_PROMPT,
            config=ExtractionConfig(single_call_max_pages=1, page_delay_seconds=30.0),
            sleep=sleep,
        )
        await extractor.extract(pdf, "application/pdf")
        assert [c.args[0] for c in sleep.await_args_list] == [30.0, 30.0]

    async def test_exhausted_rate_limit_drops_page(self):
        pdf = make_pdf(["A", "B"])

        def respond(prompt, file_bytes):
            if prompt == HEADER_PROMPT:
                return HEADER_JSON
            if "starting at 1." in prompt:
                raise RateLimitedError()
            return items_json(1, 101, "b")

        result = await make_extractor(FakeLLM(respond), single_call_max_pages=1).extract(
            pdf, "application/pdf"
        )
        assert [i.sku for i in result.items] == ["b0"]


class TestSingleCall:
    async def test_short_pdf_sent_whole(self):
        pdf = make_pdf(["A", "B"])

        def respond(prompt, file_bytes):
            if prompt == HEADER_PROMPT:
                return HEADER_JSON
            return "```json\n" + items_json(3, 1, "w")

        llm = FakeLLM(respond)
        result = await make_extractor(llm).extract(pdf, "application/pdf")
        assert result.strategy == "single_call"
        assert len(result.items) == 3
        assert all(c["file"] == pdf for c in llm.calls)

    async def test_encrypted_pdf_never_split(self, monkeypatch):
        monkeypatch.setattr(
            extraction_module, "inspect_pdf", lambda data: PdfInfo(page_count=9, encrypted=True)
        )
        split = AsyncMock()
        monkeypatch.setattr(extraction_module, "split_pdf_pages", split)

        llm = FakeLLM(lambda p, f: HEADER_JSON if p == HEADER_PROMPT else items_json(1, 1, "e"))
        result = await make_extractor(llm).extract(b"%PDF-fake", "application/pdf")
        assert result.strategy == "single_call"
        assert result.encrypted is True
        split.assert_not_called()

    async def test_split_failure_falls_back_to_whole(self, monkeypatch):
        monkeypatch.setattr(
            extraction_module, "inspect_pdf", lambda data: PdfInfo(page_count=8, encrypted=False)
        )
        monkeypatch.setattr(extraction_module, "split_pdf_pages", lambda data: [])

        llm = FakeLLM(lambda p, f: HEADER_JSON if p == HEADER_PROMPT else items_json(2, 1, "f"))
        result = await make_extractor(llm).extract(b"%PDF-fake", "application/pdf")
        assert result.strategy == "single_call"
        assert len(result.items) == 2

    async def test_items_failure_propagates(self):
        def respond(prompt, file_bytes):
            if prompt == HEADER_PROMPT:
                return HEADER_JSON
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError):
            await make_extractor(FakeLLM(respond)).extract(make_pdf(["A"]), "application/pdf")


class TestImage:
    async def test_image_header_and_items(self):
        def respond(prompt, file_bytes):
            if prompt == HEADER_PROMPT:
                return "not json at all"
            return '[{"original_description": "Mouse", "unit_price": "$1,234.50"}, {"original_description": "Key'

        llm = FakeLLM(respond)
        result = await make_extractor(llm).extract(b"\x89PNG", "image/png")
        assert result.strategy == "image"
        assert len(llm.calls) == 2
        assert all(c["media_type"] == "image/png" for c in llm.calls)
        assert [i.original_description for i in result.items] == ["Mouse", "Key"]
        assert result.items[0].unit_price == 1234.5
        assert result.header.provider_name is None
