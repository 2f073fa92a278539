from dataclasses import dataclass, field
from typing import Dict, Optional
import numpy as np


@dataclass
class EmbeddingIndex:
    """
    L2-normalized embedding matrix for cosine similarity search.
    Row i belongs to the i-th entry of whatever list the index was built from.
    """

    embeddings: np.ndarray  # (n, d) float32

    @property
    def size(self) -> int:
        return int(self.embeddings.shape[0]) if self.embeddings.size else 0


@dataclass(frozen=True)
class PdfInfo:
    page_count: int
    encrypted: bool


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff for throttled upstream calls: wait min(base * attempt, cap)."""

    max_attempts: int = 5
    base_delay: float = 15.0
    max_delay: float = 60.0

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        delay = min(self.base_delay * attempt, self.max_delay)
        if retry_after is not None:
            delay = min(max(delay, retry_after), self.max_delay)
        return delay


@dataclass(frozen=True)
class ExtractionConfig:
    single_call_max_pages: int = 5
    page_delay_seconds: float = 30.0
    page_line_offset: int = 100
    items_max_tokens: int = 8192
    header_max_tokens: int = 500


@dataclass(frozen=True)
class SearchTuning:
    """
    Every threshold and bonus used by the search layers and by result fusion.

    source_bonus encodes the trust order catalog > fulltext > semantic > trigram;
    it only matters when several layers surface the same code or scores are close.
    """

    min_scores: Dict[str, float] = field(
        default_factory=lambda: {
            "catalog": 0.0,
            "fulltext": 0.0,
            "trigram": 0.40,
            "semantic": 0.30,
        }
    )
    source_bonus: Dict[str, float] = field(
        default_factory=lambda: {
            "catalog": 0.10,
            "fulltext": 0.03,
            "semantic": 0.01,
            "trigram": 0.00,
        }
    )
    layer_limit: int = 5
    semantic_candidates: int = 10
    semantic_cluster_window: float = 0.02
    semantic_cluster_cap: int = 5
    fulltext_floor: float = 0.85
    fulltext_default: float = 0.9
    exact_code_pattern: str = r"^\d{2,4}[.\d]*$"

    def effective(self, match_type: str, similarity: float) -> float:
        return similarity + self.source_bonus.get(match_type, 0.0)

    def trust_rank(self, match_type: str) -> int:
        # Lower rank = more trusted; used to break exact score ties.
        order = sorted(self.source_bonus, key=lambda k: -self.source_bonus[k])
        return order.index(match_type) if match_type in order else len(order)


@dataclass(frozen=True)
class DecisionPolicy:
    """
    Confidence policy for the per-item decision.

    chapter_prefix_digits is a heuristic: a model-suggested code is considered
    confirmed when any search hit shares its first N digits.
    """

    adopt_threshold: float = 0.65
    high_threshold: float = 0.85
    chapter_prefix_digits: int = 4
    semantic_threshold: float = 0.30
    semantic_limit: int = 5
