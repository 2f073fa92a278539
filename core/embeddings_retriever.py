import asyncio
from typing import List, Optional, Sequence, Tuple
import numpy as np
from sentence_transformers import SentenceTransformer
from core.entities import EmbeddingIndex
from util.timing import timed
import logging

logger = logging.getLogger(__name__)


class EmbeddingService:
    """
    Sentence-transformers wrapper shared by the nomenclature index and the
    classification pipeline.

    The model is loaded lazily on first use and kept CPU-friendly. All
    vectors are L2-normalized so cosine similarity is a plain dot product.
    """

    def __init__(self, model_name: str, batch_size: int = 64) -> None:
        self._model_name = model_name
        self._batch_size = batch_size
        self._model: Optional[SentenceTransformer] = None

    def _load_model(self) -> SentenceTransformer:
        if self._model is None:
            with timed(logger, "embed.model.load", model=self._model_name):
                self._model = SentenceTransformer(self._model_name, device="cpu")
        return self._model

    def encode(self, texts: Sequence[str]) -> np.ndarray:
        """
        Encode `texts` into an (n, d) float32 matrix of unit vectors.
        """
        model = self._load_model()
        with timed(logger, "embed.encode", n=len(texts), batch=self._batch_size):
            vecs = model.encode(
                list(texts),
                batch_size=self._batch_size,
                convert_to_numpy=True,
                normalize_embeddings=True,
            )
        return np.asarray(vecs, dtype=np.float32)

    def build_index(self, texts: Sequence[str]) -> EmbeddingIndex:
        emb = self.encode(texts)
        logger.info("embed.index n=%d d=%d", emb.shape[0], emb.shape[1] if emb.size else 0)
        return EmbeddingIndex(embeddings=emb)

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Order-preserving batch embedding; one vector per input text.
        """
        if not texts:
            return []
        emb = await asyncio.to_thread(self.encode, list(texts))
        return emb.tolist()

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_many([text])
        return vectors[0]


def top_k(
    index: EmbeddingIndex, query: Sequence[float], k: int = 5
) -> List[Tuple[int, float]]:
    """
    Return top-k (row, cosine_sim) for a query vector against the index.
    """
    if index.size == 0:
        return []
    q = np.asarray(query, dtype=np.float32)
    sims = (index.embeddings @ q).astype(float)
    kk = max(1, min(k, sims.shape[0]))
    top_idx = np.argpartition(sims, -kk)[-kk:]
    return sorted(
        ((int(i), float(sims[int(i)])) for i in top_idx),
        key=lambda t: (-t[1], t[0]),
    )
