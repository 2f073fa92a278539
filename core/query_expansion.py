import logging
import re
from typing import Dict, List, Sequence
from core.anthropic_client import AnthropicClient

logger = logging.getLogger(__name__)

_NUMBERED = re.compile(r"^\s*(\d+)[.)]\s*(.*)$")
_QUOTES = "\"'“”«»‘’`"


def _unquote(text: str) -> str:
    return text.strip().strip(_QUOTES).strip()


def parse_numbered(text: str, count: int) -> Dict[int, str]:
    """
    Map 0-based index -> phrase from lines like `3. "..."` or `3) ...`.
    Numbers outside 1..count and empty phrases are ignored; first one wins.
    """
    out: Dict[int, str] = {}
    for line in (text or "").splitlines():
        m = _NUMBERED.match(line)
        if not m:
            continue
        idx = int(m.group(1)) - 1
        phrase = _unquote(m.group(2))
        if 0 <= idx < count and phrase and idx not in out:
            out[idx] = phrase
    return out


class QueryExpander:
    """
    Rewrites free-form product text into nomenclature-style Spanish phrasing.
    Never fails: on any upstream error the input comes back unchanged.
    """

    def __init__(
        self,
        llm: AnthropicClient,
        *,
        single_prompt: str,
        batch_prompt: str,
        max_tokens: int = 200,
        batch_max_tokens: int = 2000,
    ) -> None:
        self._llm = llm
        self._single_prompt = single_prompt
        self._batch_prompt = batch_prompt
        self._max_tokens = max_tokens
        self._batch_max_tokens = batch_max_tokens

    async def expand(self, query: str) -> str:
        try:
            text = await self._llm.complete(
                self._single_prompt.replace("{query}", query),
                max_tokens=self._max_tokens,
                label="ai.expand",
            )
        except Exception as e:
            logger.warning("expand.error err=%s", type(e).__name__)
            return query
        expanded = _unquote(text.splitlines()[0] if text.strip() else "")
        if not expanded:
            return query
        logger.info("expand.done in_words=%d out_words=%d", len(query.split()), len(expanded.split()))
        return expanded

    async def expand_batch(self, descriptions: Sequence[str]) -> List[str]:
        """
        One upstream call for N descriptions. Always returns N strings; any
        index the model skipped keeps its original text.
        """
        originals = list(descriptions)
        if not originals:
            return []
        if len(originals) == 1:
            return [await self.expand(originals[0])]

        numbered = "\n".join(f'{i}. "{d}"' for i, d in enumerate(originals, start=1))
        try:
            text = await self._llm.complete(
                self._batch_prompt.replace("{numbered}", numbered),
                max_tokens=self._batch_max_tokens,
                label="ai.expand.batch",
            )
        except Exception as e:
            logger.warning("expand.batch.error n=%d err=%s", len(originals), type(e).__name__)
            return originals

        parsed = parse_numbered(text, len(originals))
        if len(parsed) < len(originals):
            logger.warning(
                "expand.batch.partial got=%d want=%d", len(parsed), len(originals)
            )
        return [parsed.get(i, original) for i, original in enumerate(originals)]
