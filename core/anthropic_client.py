import base64
from typing import Any, Dict, List, Optional, Union
import httpx
import logging
from util.constants import PDF_MEDIA_TYPE
from util.errors import RateLimitedError
from util.timing import timed

logger = logging.getLogger(__name__)

# 529 is Anthropic's "overloaded"; treated like a throttle.
_THROTTLE_STATUSES = {429, 529}

Content = Union[str, List[Dict[str, Any]]]


def document_block(file_bytes: bytes, media_type: str) -> Dict[str, Any]:
    """
    Build the content block for a PDF (`document`) or an image (`image`).
    """
    data = base64.b64encode(file_bytes).decode("ascii")
    kind = "document" if media_type == PDF_MEDIA_TYPE else "image"
    return {
        "type": kind,
        "source": {"type": "base64", "media_type": media_type, "data": data},
    }


def _retry_after(resp: httpx.Response) -> Optional[float]:
    raw = resp.headers.get("retry-after")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _first_text(data: Dict[str, Any]) -> str:
    content = data.get("content") or []
    if not isinstance(content, list):
        return ""
    for node in content:
        if isinstance(node, dict) and node.get("type") == "text":
            return node.get("text") or ""
    return ""


class AnthropicClient:
    """
    Thin Messages API client shared by extraction and query expansion.

    Built once at startup around a shared httpx.AsyncClient. Throttling
    responses raise RateLimitedError so BatchExecutor can back off; other
    non-2xx responses raise httpx.HTTPStatusError.
    """

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        api_key: str,
        model: str,
        api_url: str,
        version: str,
        timeout: float = 120.0,
    ) -> None:
        self._http = http
        self._url = api_url
        self._model = model
        self._timeout = timeout
        self._headers = {
            "x-api-key": api_key,
            "anthropic-version": version,
            "content-type": "application/json",
        }

    async def complete(
        self, content: Content, *, max_tokens: int, label: str = "ai.call"
    ) -> str:
        """
        Send one user turn and return the first text block ('' if none).
        """
        payload = {
            "model": self._model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": content}],
            "temperature": 0.0,
        }
        with timed(logger, label, model=self._model):
            resp = await self._http.post(
                self._url, headers=self._headers, json=payload, timeout=self._timeout
            )
            if resp.status_code in _THROTTLE_STATUSES:
                raise RateLimitedError(
                    f"upstream throttled status={resp.status_code}",
                    retry_after=_retry_after(resp),
                )
            resp.raise_for_status()
            try:
                data = resp.json()
            except ValueError:
                data = {}

        if data.get("stop_reason") == "max_tokens":
            logger.warning("%s.truncated max_tokens=%d", label, max_tokens)
        return _first_text(data)

    async def complete_with_document(
        self,
        file_bytes: bytes,
        media_type: str,
        prompt: str,
        *,
        max_tokens: int,
        label: str = "ai.vision",
    ) -> str:
        content = [document_block(file_bytes, media_type), {"type": "text", "text": prompt}]
        return await self.complete(content, max_tokens=max_tokens, label=label)
