"""
Spanish text primitives for the nomenclature index.

- `stems`: lowercase, accent-fold, drop stop words, Snowball-stem (the same
  pipeline Postgres applies with the 'spanish' text search config).
- `trigrams` / `trigram_similarity`: pg_trgm semantics. Each word is padded
  with two leading blanks and one trailing blank; similarity is
  |shared| / |union| over the two trigram sets.
"""

import re
import unicodedata
from functools import lru_cache
from typing import FrozenSet, List
import snowballstemmer

_WORD = re.compile(r"[a-z0-9]+")
# pg_trgm treats every non-alphanumeric char as a word break
_TRGM_WORD = re.compile(r"[^\W_]+", re.UNICODE)

SPANISH_STOP_WORDS: FrozenSet[str] = frozenset(
    """
    a al algo algunas algunos ante antes como con contra cual cuando de del
    desde donde durante e el ella ellas ellos en entre era es esa esas ese eso
    esos esta estas este esto estos fue ha hasta hay la las le les lo los mas
    me mi mis mucho muy ni no nos o os otra otras otro otros para pero poco
    por porque que quien se sea ser si sin sobre son su sus tambien te tiene
    todo todos tu un una uno unos y ya
    """.split()
)

_stemmer = snowballstemmer.stemmer("spanish")


def fold(text: str) -> str:
    """'Máquinas de Café' -> 'maquinas de cafe'"""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def tokenize(text: str) -> List[str]:
    return [w for w in _WORD.findall(fold(text or "")) if w not in SPANISH_STOP_WORDS]


@lru_cache(maxsize=65536)
def _stem(word: str) -> str:
    return _stemmer.stemWord(word)


def stems(text: str) -> List[str]:
    return [_stem(w) for w in tokenize(text)]


def trigrams(text: str) -> FrozenSet[str]:
    out = set()
    for word in _TRGM_WORD.findall((text or "").lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            out.add(padded[i : i + 3])
    return frozenset(out)


def trigram_similarity(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    if not a or not b:
        return 0.0
    shared = len(a & b)
    return shared / float(len(a) + len(b) - shared)
