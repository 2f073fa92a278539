"""
Unit tests for core/classification_pipeline.py
"""

from unittest.mock import AsyncMock
import pytest
from conftest import FakeEmbedder
from core.classification_pipeline import InvoiceClassifier, decide
from core.entities import DecisionPolicy, SearchTuning
from core.ncm_search import NcmSearchEngine
from model.classification import ClassificationResult, ClassificationSource, ConfidenceLevel
from model.invoice import RawItem
from model.ncm import SearchResult
from util.background import drain

TV = [0.0, 0.0, 1.0, 0.0]


def item(line: int, description: str, sku=None, code=None, customs=None) -> RawItem:
    return RawItem(
        line_number=line,
        original_description=description,
        sku=sku,
        suggested_ncm_code=code,
        suggested_customs_description=customs,
    )


def hit(code: str, sim: float) -> SearchResult:
    return SearchResult(ncm_code=code, description="desc", similarity=sim, match_type="semantic", source="Semántica")


@pytest.fixture
def expander():
    mock = AsyncMock()
    mock.expand_batch.side_effect = lambda descs: [
        "Aparatos receptores de televisión" if "TV" in d else d for d in descs
    ]
    return mock


def build(nomenclature, catalog, expander, embedder):
    engine = NcmSearchEngine(nomenclature, catalog, embedder, expander, SearchTuning())
    return InvoiceClassifier(engine, catalog, expander, embedder, DecisionPolicy())


class TestDecide:
    policy = DecisionPolicy()

    def test_strong_hit_adopted(self):
        current = ClassificationResult(ncm_code="9999.99.99", customs_description="Mine")
        out = decide(current, [hit("8528.72.00", 0.9)], self.policy)
        assert out.ncm_code == "8528.72.00"
        assert out.confidence_level == ConfidenceLevel.high
        assert out.classification_source == ClassificationSource.semantic
        assert out.customs_description == "Mine"

    def test_medium_band(self):
        out = decide(ClassificationResult(), [hit("8528.72.00", 0.7)], self.policy)
        assert out.confidence_level == ConfidenceLevel.medium
        assert out.customs_description == "desc"

    def test_weak_hit_adopted_without_suggestion(self):
        out = decide(ClassificationResult(), [hit("8528.72.00", 0.5)], self.policy)
        assert out.ncm_code == "8528.72.00"
        assert out.confidence_level == ConfidenceLevel.low
        assert out.classification_source == ClassificationSource.semantic

    def test_chapter_confirmation_keeps_suggestion(self):
        current = ClassificationResult(ncm_code="8471.60.52")
        out = decide(current, [hit("8528.72.00", 0.5), hit("8471.30.12", 0.45)], self.policy)
        assert out.ncm_code == "8471.60.52"
        assert out.classification_source == ClassificationSource.llm_rag
        assert out.confidence_level == ConfidenceLevel.medium

    def test_suggestion_without_evidence_is_medium(self):
        out = decide(ClassificationResult(ncm_code="8471.60.52"), [], self.policy)
        assert out.confidence_level == ConfidenceLevel.medium

    def test_nothing_at_all_stays_low(self):
        out = decide(ClassificationResult(), [], self.policy)
        assert out.ncm_code is None
        assert out.confidence_level == ConfidenceLevel.low


class TestClassify:
    async def test_catalog_hit_skips_search(self, nomenclature, fake_catalog, expander):
        embedder = FakeEmbedder()
        classifier = build(nomenclature, fake_catalog, expander, embedder)

        out = await classifier.classify([item(1, "Wireless mouse", sku="X1")], "prov-1")
        await drain()

        assert out[0].ncm_code == "8471.60.53"
        assert out[0].classification_source == ClassificationSource.exact_match
        assert out[0].confidence_level == ConfidenceLevel.high
        expander.expand_batch.assert_not_awaited()
        assert embedder.calls == 0
        assert fake_catalog.search_calls == 0
        assert fake_catalog.get_many_calls == 1
        assert fake_catalog.incremented == [("prov-1", "X1")]

    async def test_mixed_items_keep_order(self, nomenclature, fake_catalog, expander):
        embedder = FakeEmbedder({"Aparatos receptores de televisión": TV})
        classifier = build(nomenclature, fake_catalog, expander, embedder)

        items = [
            item(1, "Smart TV 50in", code="8528.72.00"),
            item(2, "Mouse", sku="X1"),
            item(3, "Unknown gizmo", code="8471.60.52"),
            item(4, "Unknown widget"),
        ]
        out = await classifier.classify(items, "prov-1")
        await drain()

        assert len(out) == 4
        assert out[0].ncm_code == "8528.72.00"
        assert out[0].classification_source == ClassificationSource.semantic
        assert out[0].confidence_level == ConfidenceLevel.high
        assert out[1].classification_source == ClassificationSource.exact_match
        assert out[2].ncm_code == "8471.60.52"
        assert out[2].classification_source == ClassificationSource.llm_rag
        assert out[2].confidence_level == ConfidenceLevel.medium
        assert out[3].ncm_code is None
        assert out[3].confidence_level == ConfidenceLevel.low

        expander.expand_batch.assert_awaited_once()
        assert expander.expand_batch.await_args.args[0] == ["Smart TV 50in", "Unknown gizmo", "Unknown widget"]
        assert embedder.calls == 1

    async def test_no_provider_skips_catalog(self, nomenclature, fake_catalog, expander):
        classifier = build(nomenclature, fake_catalog, expander, FakeEmbedder())
        out = await classifier.classify([item(1, "Mouse", sku="X1")], None)
        assert fake_catalog.get_many_calls == 0
        assert out[0].classification_source != ClassificationSource.exact_match

    async def test_embedding_failure_still_classifies(self, nomenclature, fake_catalog, expander):
        embedder = AsyncMock()
        embedder.embed_many.side_effect = RuntimeError("down")
        classifier = build(nomenclature, fake_catalog, expander, embedder)
        out = await classifier.classify([item(1, "televisión", code="8528.72.00")], None)
        assert out[0].ncm_code == "8528.72.00"
        assert out[0].classification_source == ClassificationSource.semantic

    async def test_search_failure_keeps_suggestion_at_medium(
        self, nomenclature, fake_catalog, expander
    ):
        classifier = build(nomenclature, fake_catalog, expander, FakeEmbedder())
        classifier._search_one = AsyncMock(side_effect=RuntimeError("search down"))

        out = await classifier.classify(
            [item(1, "Gizmo", code="8471.60.52"), item(2, "Widget")], None
        )

        assert classifier._search_one.await_count == 2
        assert out[0].ncm_code == "8471.60.52"
        assert out[0].classification_source == ClassificationSource.llm_rag
        assert out[0].confidence_level == ConfidenceLevel.medium
        assert out[1].ncm_code is None
        assert out[1].confidence_level == ConfidenceLevel.low

    async def test_query_is_stripped_description(self, nomenclature, fake_catalog, expander):
        classifier = build(nomenclature, fake_catalog, expander, FakeEmbedder())
        items = [item(1, "  Unknown widget \n"), item(2, "   ", customs=" Cable eléctrico ")]
        await classifier.classify(items, None)
        assert expander.expand_batch.await_args.args[0] == ["Unknown widget", "Cable eléctrico"]
        assert items[0].original_description == "  Unknown widget \n"

    async def test_empty_input(self, nomenclature, fake_catalog, expander):
        classifier = build(nomenclature, fake_catalog, expander, FakeEmbedder())
        assert await classifier.classify([], "prov-1") == []
