import asyncio
import logging
import re
from typing import Awaitable, Dict, Iterable, List, Optional, Sequence
from core.embeddings_retriever import EmbeddingService
from core.entities import SearchTuning
from core.query_expansion import QueryExpander
from model.ncm import LayerCounts, NcmSearchResponse, NomenclatureEntry, SearchResult
from repository.catalog_repository import CatalogRepository
from repository.nomenclature_repository import NomenclatureRepository
from util.functions import ncm_digits
from util.timing import timed

logger = logging.getLogger(__name__)

SOURCE_LABELS: Dict[str, str] = {
    "catalog": "Catálogo",
    "fulltext": "Full-text",
    "trigram": "Soft match",
    "semantic": "Semántica",
    "exact": "Código NCM",
}


def _from_entry(entry: NomenclatureEntry, similarity: float, match_type: str) -> SearchResult:
    return SearchResult(
        ncm_code=entry.ncm_code,
        description=entry.description,
        section=entry.section,
        chapter=entry.chapter,
        similarity=similarity,
        match_type=match_type,
        source=SOURCE_LABELS[match_type],
    )


def combine_results(
    layers: Iterable[Sequence[SearchResult]],
    tuning: Optional[SearchTuning] = None,
    limit: Optional[int] = None,
) -> List[SearchResult]:
    """
    Fuse per-layer results into one ranking.

    - Drop results under their layer's minimum score.
    - Effective score = similarity + source bonus.
    - One result per NCM code: the one with the higher effective score; on a
      tie, the more trusted layer.
    - Sorted by effective score desc, then trust, then code, so the output
      does not depend on the order in which layers are passed.
    """
    tuning = tuning or SearchTuning()

    def sort_key(r: SearchResult):
        return (-tuning.effective(r.match_type, r.similarity), tuning.trust_rank(r.match_type), r.ncm_code)

    best: Dict[str, SearchResult] = {}
    for layer in layers:
        for r in layer:
            if r.similarity < tuning.min_scores.get(r.match_type, 0.0):
                continue
            current = best.get(r.ncm_code)
            if current is None or sort_key(r) < sort_key(current):
                best[r.ncm_code] = r

    ranked = sorted(best.values(), key=sort_key)
    return ranked[:limit] if limit is not None else ranked


class NcmSearchEngine:
    """
    Four-layer NCM lookup: learned catalog, stemmed full-text, trigram soft
    match and embedding similarity, plus an exact-code shortcut.
    A failing layer is logged and contributes nothing.
    """

    def __init__(
        self,
        nomenclature: NomenclatureRepository,
        catalog: CatalogRepository,
        embedder: EmbeddingService,
        expander: QueryExpander,
        tuning: Optional[SearchTuning] = None,
    ) -> None:
        self._nomenclature = nomenclature
        self._catalog = catalog
        self._embedder = embedder
        self._expander = expander
        self.tuning = tuning or SearchTuning()
        self._exact_code = re.compile(self.tuning.exact_code_pattern)

    # ---------------- Layers ----------------

    async def search_catalog(
        self, query: str, provider_id: Optional[str] = None
    ) -> List[SearchResult]:
        entries = await self._catalog.search(query, provider_id, limit=self.tuning.layer_limit)
        out: List[SearchResult] = []
        for e in entries:
            if not e.ncm_code:
                continue
            out.append(
                SearchResult(
                    ncm_code=e.ncm_code,
                    description=e.customs_description or e.provider_description,
                    chapter=ncm_digits(e.ncm_code)[:2],
                    similarity=1.0,
                    match_type="catalog",
                    source=SOURCE_LABELS["catalog"],
                    sku=e.sku,
                    provider_description=e.provider_description,
                    customs_description=e.customs_description,
                )
            )
        return out

    async def search_fulltext(
        self, query: str, expanded: Optional[str] = None
    ) -> List[SearchResult]:
        limit = self.tuning.layer_limit
        hits = await self._nomenclature.fulltext(query, limit)
        if expanded and expanded != query:
            merged: Dict[str, tuple] = {e.ncm_code: (e, rank) for e, rank in hits}
            for e, rank in await self._nomenclature.fulltext(expanded, limit):
                if e.ncm_code not in merged or rank > merged[e.ncm_code][1]:
                    merged[e.ncm_code] = (e, rank)
            hits = list(merged.values())
        if not hits:
            return []

        max_rank = max(rank for _, rank in hits)
        floor = self.tuning.fulltext_floor
        out = []
        for entry, rank in hits:
            if max_rank > 0:
                sim = floor + (1.0 - floor) * (rank / max_rank)
            else:
                sim = self.tuning.fulltext_default
            out.append(_from_entry(entry, sim, "fulltext"))
        return out

    async def search_trigram(self, query: str) -> List[SearchResult]:
        hits = await self._nomenclature.trigram(
            query, self.tuning.min_scores["trigram"], self.tuning.layer_limit
        )
        return [_from_entry(e, sim, "trigram") for e, sim in hits]

    async def search_semantic(
        self,
        expanded: str,
        threshold: float,
        embedding: Optional[Sequence[float]] = None,
        candidates: Optional[int] = None,
    ) -> List[SearchResult]:
        if embedding is None:
            embedding = await self._embedder.embed(expanded)
        hits = await self._nomenclature.nearest(
            embedding, threshold, candidates or self.tuning.semantic_candidates
        )
        # Keep only the cluster of near-equal best matches.
        if len(hits) >= 2:
            top = hits[0][1]
            window = self.tuning.semantic_cluster_window
            hits = [h for h in hits if top - h[1] <= window] or hits[:1]
            hits = hits[: self.tuning.semantic_cluster_cap]
        return [_from_entry(e, sim, "semantic") for e, sim in hits]

    @staticmethod
    async def guarded(layer: str, call: Awaitable[List[SearchResult]]) -> List[SearchResult]:
        try:
            return await call
        except Exception as e:
            logger.error("ncm.layer.error layer=%s err=%s", layer, type(e).__name__)
            return []

    # ---------------- Entry point ----------------

    async def _exact(self, query: str, limit: int) -> List[SearchResult]:
        if not self._exact_code.match(query):
            return []
        rows = await self._nomenclature.by_code_prefix(query, limit)
        return [_from_entry(e, 1.0, "exact") for e in rows]

    async def search(
        self,
        query: str,
        limit: int = 10,
        threshold: float = 0.5,
        skip_expansion: bool = False,
        provider_id: Optional[str] = None,
    ) -> NcmSearchResponse:
        q = (query or "").strip()

        exact = await self._exact(q, limit)
        if exact:
            logger.info("ncm.search.exact results=%d", len(exact))
            return NcmSearchResponse(
                results=exact,
                query=q,
                expanded_query=q,
                method="exact_code",
                sources=LayerCounts(),
            )

        expanded = q if skip_expansion else await self._expander.expand(q)

        with timed(logger, "ncm.search", limit=limit):
            catalog, fulltext, trigram, semantic = await asyncio.gather(
                self.guarded("catalog", self.search_catalog(q, provider_id)),
                self.guarded("fulltext", self.search_fulltext(q, expanded)),
                self.guarded("trigram", self.search_trigram(q)),
                self.guarded("semantic", self.search_semantic(expanded, threshold)),
            )

        results = combine_results(
            [catalog, fulltext, trigram, semantic], self.tuning, limit
        )
        logger.info(
            "ncm.search.done catalog=%d fulltext=%d trigram=%d semantic=%d results=%d",
            len(catalog),
            len(fulltext),
            len(trigram),
            len(semantic),
            len(results),
        )
        return NcmSearchResponse(
            results=results,
            query=q,
            expanded_query=expanded,
            method="multi",
            sources=LayerCounts(
                catalog=len(catalog),
                fulltext=len(fulltext),
                trigram=len(trigram),
                semantic=len(semantic),
            ),
        )
