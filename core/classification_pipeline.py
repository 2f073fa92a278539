import asyncio
import logging
from typing import List, Optional, Sequence
from core.embeddings_retriever import EmbeddingService
from core.entities import DecisionPolicy
from core.ncm_search import NcmSearchEngine, combine_results
from core.query_expansion import QueryExpander
from model.classification import ClassificationResult, ClassificationSource, ConfidenceLevel
from model.invoice import RawItem
from model.ncm import SearchResult
from repository.catalog_repository import CatalogRepository
from util.background import spawn
from util.functions import ncm_digits
from util.timing import timed

logger = logging.getLogger(__name__)


def confidence_for(similarity: float, policy: DecisionPolicy) -> ConfidenceLevel:
    if similarity >= policy.high_threshold:
        return ConfidenceLevel.high
    if similarity >= policy.adopt_threshold:
        return ConfidenceLevel.medium
    return ConfidenceLevel.low


def decide(
    current: ClassificationResult,
    combined: Sequence[SearchResult],
    policy: DecisionPolicy,
) -> ClassificationResult:
    """
    Apply the search evidence to one item's default (model-suggested) result.

    - Strong top hit, or nothing suggested: adopt the top hit.
    - Otherwise the suggestion stands; it is medium when any hit shares its
      chapter prefix.
    - A suggested code that nothing improved on is still medium, not low.
    """
    result = current.model_copy()
    if combined:
        top = combined[0]
        if top.similarity >= policy.adopt_threshold or not result.ncm_code:
            result = ClassificationResult(
                ncm_code=top.ncm_code,
                customs_description=result.customs_description or top.description,
                confidence_level=confidence_for(top.similarity, policy),
                classification_source=ClassificationSource.semantic,
            )
        else:
            prefix = ncm_digits(result.ncm_code)[: policy.chapter_prefix_digits]
            confirmed = bool(prefix) and any(
                ncm_digits(r.ncm_code).startswith(prefix) for r in combined
            )
            result.confidence_level = (
                ConfidenceLevel.medium if confirmed else ConfidenceLevel.low
            )

    if (
        result.classification_source == ClassificationSource.llm_rag
        and result.ncm_code
        and result.confidence_level == ConfidenceLevel.low
    ):
        result.confidence_level = ConfidenceLevel.medium
    return result


class InvoiceClassifier:
    """
    Batch classification of one invoice's items.

    Flow:
    1) Every item starts from the model's own suggestion (low, llm_rag).
    2) One catalog round-trip for all skus of the provider; hits are final.
    3) For the rest: one batch expansion call, one batch embedding call.
    4) Per item, concurrently: full-text + trigram + semantic (pre-computed
       embedding), fused without the catalog layer, then `decide`.
    Results keep input order.
    """

    def __init__(
        self,
        engine: NcmSearchEngine,
        catalog: CatalogRepository,
        expander: QueryExpander,
        embedder: EmbeddingService,
        policy: Optional[DecisionPolicy] = None,
    ) -> None:
        self._engine = engine
        self._catalog = catalog
        self._expander = expander
        self._embedder = embedder
        self._policy = policy or DecisionPolicy()

    async def _catalog_shortcut(
        self,
        items: Sequence[RawItem],
        provider_id: Optional[str],
        results: List[ClassificationResult],
    ) -> None:
        skus = [i.sku for i in items if i.sku]
        if not provider_id or not skus:
            return
        matches = await self._catalog.get_many(provider_id, skus)
        for idx, item in enumerate(items):
            entry = matches.get(item.sku) if item.sku else None
            if entry is None:
                continue
            results[idx] = ClassificationResult(
                ncm_code=entry.ncm_code,
                customs_description=entry.customs_description or None,
                confidence_level=ConfidenceLevel.high,
                classification_source=ClassificationSource.exact_match,
            )
            spawn(
                self._catalog.increment_usage(provider_id, entry.sku),
                name=f"catalog.usage:{entry.sku}",
            )

    async def _embed_all(self, texts: Sequence[str]) -> List[List[float]]:
        try:
            return await self._embedder.embed_many(texts)
        except Exception as e:
            logger.warning("classify.embed.error n=%d err=%s", len(texts), type(e).__name__)
            return []

    async def _search_one(
        self, query: str, expanded: str, embedding: Optional[List[float]]
    ) -> List[SearchResult]:
        engine = self._engine
        fulltext, trigram = await asyncio.gather(
            engine.guarded("fulltext", engine.search_fulltext(query, expanded)),
            engine.guarded("trigram", engine.search_trigram(query)),
        )
        semantic: List[SearchResult] = []
        if embedding:
            semantic = await engine.guarded(
                "semantic",
                engine.search_semantic(
                    expanded,
                    self._policy.semantic_threshold,
                    embedding=embedding,
                    candidates=self._policy.semantic_limit,
                ),
            )
        return combine_results([fulltext, trigram, semantic], engine.tuning)

    async def classify(
        self, items: Sequence[RawItem], provider_id: Optional[str]
    ) -> List[ClassificationResult]:
        results = [
            ClassificationResult(
                ncm_code=i.suggested_ncm_code,
                customs_description=i.suggested_customs_description,
            )
            for i in items
        ]
        if not items:
            return results

        await self._catalog_shortcut(items, provider_id, results)

        pending = [
            idx
            for idx, r in enumerate(results)
            if r.classification_source != ClassificationSource.exact_match
        ]
        logger.info(
            "classify.catalog matched=%d pending=%d", len(items) - len(pending), len(pending)
        )
        if not pending:
            return results

        queries = [
            items[idx].original_description.strip()
            or (items[idx].suggested_customs_description or "").strip()
            for idx in pending
        ]
        expanded = await self._expander.expand_batch(queries)
        embeddings = await self._embed_all(expanded)

        async def run(slot: int, idx: int) -> None:
            query = queries[slot]
            combined: List[SearchResult] = []
            if query:
                try:
                    combined = await self._search_one(
                        query,
                        expanded[slot] or query,
                        embeddings[slot] if slot < len(embeddings) else None,
                    )
                except Exception as e:
                    logger.error(
                        "classify.item.error line=%d err=%s",
                        items[idx].line_number,
                        type(e).__name__,
                    )
            results[idx] = decide(results[idx], combined, self._policy)

        with timed(logger, "classify.search", items=len(pending)):
            await asyncio.gather(*(run(slot, idx) for slot, idx in enumerate(pending)))
        return results
