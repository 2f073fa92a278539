"""
Shared fixtures. Required settings are seeded before any app module is
imported, since config.settings validates the environment at import time.
"""

import os

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("ALLOWED_ORIGIN", "http://localhost:3000")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-key")
os.environ.setdefault("ANTHROPIC_MODEL", "test-model")

from typing import Callable, Dict, Iterable, List, Optional
import fitz
import numpy as np
import pytest
from core.entities import EmbeddingIndex
from model.ncm import CatalogEntry, NomenclatureEntry
from repository.nomenclature_repository import NomenclatureRepository


def make_pdf(pages: List[str]) -> bytes:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


class FakeLLM:
    """
    Stand-in for AnthropicClient. `responder(prompt, file_bytes)` returns the
    text reply or raises; every call is recorded.
    """

    def __init__(self, responder: Callable[[str, Optional[bytes]], str]) -> None:
        self._responder = responder
        self.calls: List[Dict] = []

    async def complete(self, content, *, max_tokens: int, label: str = "ai.call") -> str:
        self.calls.append({"prompt": content, "file": None, "label": label})
        return self._responder(content, None)

    async def complete_with_document(
        self, file_bytes, media_type, prompt, *, max_tokens: int, label: str = "ai.vision"
    ) -> str:
        self.calls.append(
            {"prompt": prompt, "file": file_bytes, "media_type": media_type, "label": label}
        )
        return self._responder(prompt, file_bytes)


class FakeEmbedder:
    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, dim: int = 4) -> None:
        self._vectors = vectors or {}
        self._dim = dim
        self.calls = 0

    def _vec(self, text: str) -> List[float]:
        return self._vectors.get(text, [0.0] * self._dim)

    async def embed(self, text: str) -> List[float]:
        self.calls += 1
        return self._vec(text)

    async def embed_many(self, texts) -> List[List[float]]:
        self.calls += 1
        return [self._vec(t) for t in texts]


class FakeCatalog:
    def __init__(self, entries: Iterable[CatalogEntry] = ()) -> None:
        self.entries = {(e.provider_id, e.sku): e for e in entries}
        self.get_many_calls = 0
        self.search_calls = 0
        self.incremented: List[tuple] = []
        self.upserted: List[CatalogEntry] = []

    async def get_many(self, provider_id, skus):
        self.get_many_calls += 1
        out = {}
        for sku in skus:
            e = self.entries.get((provider_id, sku))
            if e is not None and e.ncm_code:
                out[sku] = e
        return out

    async def search(self, query, provider_id=None, limit=5):
        self.search_calls += 1
        needle = query.lower()
        out = []
        for e in self.entries.values():
            if provider_id and e.provider_id != provider_id:
                continue
            hay = (e.sku, e.provider_description, e.customs_description)
            if e.ncm_code and any(needle in (h or "").lower() for h in hay):
                out.append(e)
        return out[:limit]

    async def increment_usage(self, provider_id, sku):
        self.incremented.append((provider_id, sku))

    async def upsert_many(self, entries):
        batch = list(entries)
        self.upserted.extend(batch)
        return len(batch)


NCM_ROWS = [
    ("8471.30.12", "Máquinas automáticas para procesamiento de datos, portátiles", "XVI", "84"),
    ("8471.60.52", "Teclados y ratones, unidades de entrada para máquinas de procesamiento de datos", "XVI", "84"),
    ("8528.72.00", "Aparatos receptores de televisión en colores", "XVI", "85"),
    ("9503.00.10", "Muñecas que representen solamente seres humanos", "XX", "95"),
]


@pytest.fixture
def ncm_entries() -> List[NomenclatureEntry]:
    return [
        NomenclatureEntry(ncm_code=c, description=d, section=s, chapter=ch)
        for c, d, s, ch in NCM_ROWS
    ]


@pytest.fixture
def nomenclature(ncm_entries) -> NomenclatureRepository:
    # One axis per entry keeps nearest-neighbour results predictable.
    index = EmbeddingIndex(embeddings=np.eye(len(ncm_entries), dtype=np.float32))
    return NomenclatureRepository(ncm_entries, index)


@pytest.fixture
def fake_catalog() -> FakeCatalog:
    return FakeCatalog(
        [
            CatalogEntry(
                provider_id="prov-1",
                sku="X1",
                provider_description="Wireless mouse M185",
                customs_description="Ratón inalámbrico para computadora",
                ncm_code="8471.60.53",
            ),
            CatalogEntry(
                provider_id="prov-1",
                sku="NOCODE",
                provider_description="Sample without code",
            ),
        ]
    )
