import asyncio
import csv
import math
import os
from collections import defaultdict
from typing import Dict, FrozenSet, List, Optional, Sequence, Set, Tuple
import numpy as np
from core.embeddings_retriever import EmbeddingService, top_k
from core.entities import EmbeddingIndex
from core.text_search import stems, trigram_similarity, trigrams
from model.ncm import NomenclatureEntry
from util.functions import ncm_digits
from util.timing import timed
import logging

logger = logging.getLogger(__name__)

Hit = Tuple[NomenclatureEntry, float]


class NomenclatureRepository:
    """
    Read-only NCM nomenclature held in process.

    Flow:
    - Rows come from a CSV (ncm_code, description, section, chapter; an
      optional full_description column is preferred for embeddings).
    - Three indexes are built once: stemmed inverted index (full-text),
      trigram postings (soft match) and an embedding matrix (semantic).
    - The embedding matrix is cached next to the CSV as .npy and rebuilt when
      the row count no longer matches.
    """

    def __init__(
        self,
        entries: Sequence[NomenclatureEntry],
        index: Optional[EmbeddingIndex] = None,
    ) -> None:
        self._entries: List[NomenclatureEntry] = list(entries)
        self._index = index
        self._stems: List[FrozenSet[str]] = []
        self._postings: Dict[str, Set[int]] = defaultdict(set)
        self._trigrams: List[FrozenSet[str]] = []
        self._trgm_postings: Dict[str, Set[int]] = defaultdict(set)
        self._build_text_indexes()

    # ---------------- Loading ----------------

    @staticmethod
    def read_csv(path: str) -> List[NomenclatureEntry]:
        out: List[NomenclatureEntry] = []
        with open(path, newline="", encoding="utf-8") as fh:
            for row in csv.DictReader(fh):
                code = (row.get("ncm_code") or "").strip()
                desc = (row.get("description") or "").strip()
                if not code or not desc:
                    continue
                out.append(
                    NomenclatureEntry(
                        ncm_code=code,
                        description=desc,
                        section=(row.get("section") or "").strip(),
                        chapter=(row.get("chapter") or "").strip() or ncm_digits(code)[:2],
                    )
                )
        logger.info("ncm.csv.loaded rows=%d path=%s", len(out), path)
        return out

    @classmethod
    def load(
        cls,
        csv_path: str,
        embedder: EmbeddingService,
        embeddings_path: Optional[str] = None,
    ) -> "NomenclatureRepository":
        with timed(logger, "ncm.index.load"):
            entries = cls.read_csv(csv_path)
            index = cls._load_or_build_embeddings(entries, embedder, embeddings_path)
            return cls(entries, index)

    @staticmethod
    def _load_or_build_embeddings(
        entries: Sequence[NomenclatureEntry],
        embedder: EmbeddingService,
        embeddings_path: Optional[str],
    ) -> EmbeddingIndex:
        if embeddings_path and os.path.exists(embeddings_path):
            cached = np.load(embeddings_path)
            if cached.ndim == 2 and cached.shape[0] == len(entries):
                logger.info("ncm.embeddings.cached rows=%d", cached.shape[0])
                return EmbeddingIndex(embeddings=cached.astype(np.float32, copy=False))
            logger.warning(
                "ncm.embeddings.stale cached=%d rows=%d", cached.shape[0], len(entries)
            )

        index = embedder.build_index([e.description for e in entries])
        if embeddings_path:
            os.makedirs(os.path.dirname(embeddings_path) or ".", exist_ok=True)
            np.save(embeddings_path, index.embeddings)
        return index

    def _build_text_indexes(self) -> None:
        for i, entry in enumerate(self._entries):
            s = frozenset(stems(entry.description))
            self._stems.append(s)
            for term in s:
                self._postings[term].add(i)
            t = trigrams(entry.description)
            self._trigrams.append(t)
            for g in t:
                self._trgm_postings[g].add(i)

    # ---------------- Queries ----------------

    @property
    def size(self) -> int:
        return len(self._entries)

    def _idf(self, term: str) -> float:
        df = len(self._postings.get(term, ()))
        return math.log(1.0 + (len(self._entries) - df + 0.5) / (df + 0.5))

    def _fulltext(self, query: str, limit: int) -> List[Hit]:
        terms = set(stems(query))
        if not terms:
            return []
        # Every query term must be present (plainto_tsquery semantics).
        candidates: Optional[Set[int]] = None
        for term in terms:
            docs = self._postings.get(term, set())
            candidates = set(docs) if candidates is None else candidates & docs
            if not candidates:
                return []
        weight = sum(self._idf(t) for t in terms)
        scored = [
            (i, weight / (1.0 + math.log(len(self._stems[i]) or 1)))
            for i in candidates or ()
        ]
        scored.sort(key=lambda t: (-t[1], self._entries[t[0]].ncm_code))
        return [(self._entries[i], rank) for i, rank in scored[:limit]]

    async def fulltext(self, query: str, limit: int = 5) -> List[Hit]:
        """Stemmed Spanish search; returns (entry, rank) with rank > 0."""
        return self._fulltext(query, limit)

    def _trigram(self, query: str, threshold: float, limit: int) -> List[Hit]:
        q = trigrams(query)
        if not q:
            return []
        candidates: Set[int] = set()
        for g in q:
            candidates |= self._trgm_postings.get(g, set())
        scored = []
        for i in candidates:
            sim = trigram_similarity(q, self._trigrams[i])
            if sim > threshold:
                scored.append((i, sim))
        scored.sort(key=lambda t: (-t[1], self._entries[t[0]].ncm_code))
        return [(self._entries[i], sim) for i, sim in scored[:limit]]

    async def trigram(self, query: str, threshold: float = 0.4, limit: int = 5) -> List[Hit]:
        return await asyncio.to_thread(self._trigram, query, threshold, limit)

    async def nearest(
        self, embedding: Sequence[float], threshold: float, limit: int = 10
    ) -> List[Hit]:
        """Cosine nearest neighbours above `threshold`, best first."""
        if self._index is None or self._index.size == 0:
            return []
        hits = top_k(self._index, embedding, k=limit)
        return [(self._entries[i], sim) for i, sim in hits if sim > threshold]

    async def by_code_prefix(self, prefix: str, limit: int = 10) -> List[NomenclatureEntry]:
        """Entries whose code starts with `prefix`; dots are ignored on both sides."""
        digits = ncm_digits(prefix)
        if not digits:
            return []
        out = [e for e in self._entries if ncm_digits(e.ncm_code).startswith(digits)]
        out.sort(key=lambda e: e.ncm_code)
        return out[:limit]
