"""
Unit tests for service/invoice_service.py with mocked repositories.
"""

from unittest.mock import AsyncMock
import pytest
from conftest import FakeCatalog
from model.api import CorrectItemRequest
from model.classification import (
    ClassificationResult,
    ClassificationSource,
    ClassifiedItem,
    ConfidenceLevel,
)
from model.invoice import DocumentHeader, ExtractionResult, RawItem
from model.job import InvoiceJob, InvoiceResult
from service.invoice_service import InvoiceService
from util.errors import AppError


def classified(line: int, sku, code, corrected=False) -> ClassifiedItem:
    return ClassifiedItem(
        line_number=line,
        sku=sku,
        original_description=f"item {line}",
        customs_description=f"customs {line}",
        ncm_code=code,
        confidence_level=ConfidenceLevel.medium,
        classification_source=ClassificationSource.semantic,
        was_corrected=corrected,
    )


@pytest.fixture
def repos():
    invoices = AsyncMock()
    invoices.get.return_value = InvoiceJob(
        id="inv-1", status="uploaded", file_name="f.pdf", media_type="application/pdf"
    )
    blobs = AsyncMock()
    blobs.get_document.return_value = b"%PDF"
    providers = AsyncMock()
    providers.find_or_create.return_value = "prov-1"
    return invoices, blobs, providers


def make_service(repos, extractor=None, classifier=None, catalog=None) -> InvoiceService:
    invoices, blobs, providers = repos
    return InvoiceService(
        invoices,
        blobs,
        providers,
        catalog or FakeCatalog(),
        extractor or AsyncMock(),
        classifier or AsyncMock(),
    )


class TestProcess:
    async def test_success_stores_review(self, repos):
        invoices, _, providers = repos
        extractor = AsyncMock()
        extractor.extract.return_value = ExtractionResult(
            header=DocumentHeader(provider_name="ACME"),
            items=[
                RawItem(line_number=1, original_description="a", suggested_ncm_code="1111"),
                RawItem(line_number=2, original_description="b"),
            ],
        )
        classifier = AsyncMock()
        classifier.classify.return_value = [
            ClassificationResult(
                ncm_code="8471.60.53",
                confidence_level=ConfidenceLevel.high,
                classification_source=ClassificationSource.exact_match,
            ),
            ClassificationResult(),
        ]

        await make_service(repos, extractor, classifier).process("inv-1")

        invoices.reset.assert_awaited_once_with("inv-1")
        providers.find_or_create.assert_awaited_once_with("ACME")
        saved: InvoiceResult = invoices.save_result.await_args.args[1]
        assert [i.ncm_code for i in saved.items] == ["8471.60.53", None]
        assert saved.items[0].original_ncm_suggestion == "1111"
        invoices.set_summary.assert_awaited_once_with(
            "inv-1", provider_id="prov-1", total_items=2, items_auto_classified=1
        )
        invoices.set_status.assert_awaited_with("inv-1", "review")

    async def test_failure_sets_error(self, repos):
        invoices, _, _ = repos
        extractor = AsyncMock()
        extractor.extract.side_effect = RuntimeError("vision api down")

        await make_service(repos, extractor).process("inv-1")

        args, kwargs = invoices.set_status.await_args
        assert args == ("inv-1", "error")
        assert "vision api down" in kwargs["processing_error"]

    async def test_missing_document(self, repos):
        invoices, blobs, _ = repos
        blobs.get_document.return_value = None
        await make_service(repos).process("inv-1")
        args, kwargs = invoices.set_status.await_args
        assert args == ("inv-1", "error")
        assert "Stored document not found" in kwargs["processing_error"]


class TestRequests:
    async def test_start_rejects_running(self, repos):
        invoices, _, _ = repos
        invoices.get.return_value = InvoiceJob(id="inv-1", status="processing")
        with pytest.raises(AppError) as exc:
            await make_service(repos).start_processing("inv-1")
        assert exc.value.status_code == 409

    async def test_unknown_invoice(self, repos):
        invoices, _, _ = repos
        invoices.get.return_value = None
        with pytest.raises(AppError) as exc:
            await make_service(repos).get("nope")
        assert exc.value.status_code == 404

    async def test_correct_item(self, repos):
        invoices, _, _ = repos
        invoices.get_result.return_value = InvoiceResult(
            header=DocumentHeader(), items=[classified(1, "A", "1111"), classified(2, "B", "2222")]
        )
        out = await make_service(repos).correct_item(
            "inv-1", 2, CorrectItemRequest(ncm_code="8471.60.52")
        )
        assert out.ncm_code == "8471.60.52"
        assert out.classification_source == ClassificationSource.manual
        assert out.confidence_level == ConfidenceLevel.high
        assert out.was_corrected is True
        saved = invoices.save_result.await_args.args[1]
        assert saved.items[1].ncm_code == "8471.60.52"

    async def test_approve_requires_review(self, repos):
        with pytest.raises(AppError) as exc:
            await make_service(repos).approve("inv-1")
        assert exc.value.status_code == 400

    async def test_approve_syncs_catalog(self, repos):
        invoices, _, _ = repos
        invoices.get.return_value = InvoiceJob(id="inv-1", status="review", provider_id="prov-1")
        invoices.get_result.return_value = InvoiceResult(
            header=DocumentHeader(),
            items=[
                classified(1, "A", "1111"),
                classified(2, "A", "2222", corrected=True),
                classified(3, None, "3333"),
                classified(4, "C", None),
            ],
        )
        catalog = FakeCatalog()
        resp = await make_service(repos, catalog=catalog).approve("inv-1")

        assert resp.catalogSynced == 1
        assert resp.totalItems == 4
        assert resp.corrected == 1
        assert [(e.sku, e.ncm_code) for e in catalog.upserted] == [("A", "2222")]
        invoices.set_status.assert_awaited_with("inv-1", "approved")
