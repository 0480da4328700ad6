from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional
import httpx

from .errors import NetworkError, RequestTimeout, error_for_status
from .translator_base import BatchTranslator


def _collect_translated_map(data: Any, size: int) -> Dict[int, str]:
    if not isinstance(data, dict):
        return {}
    raw = data.get("translatedMap")
    if not isinstance(raw, dict):
        return {}
    out: Dict[int, str] = {}
    for k, v in raw.items():
        try:
            i = int(k)
        except (TypeError, ValueError):
            continue
        if 0 <= i < size and isinstance(v, str) and v.strip():
            out[i] = v.strip()
    return out


class EndpointTranslator(BatchTranslator):
    """Client of the app's own translation route: ``POST {items, targetLang}``."""

    def __init__(
        self,
        url: str,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        logger: logging.Logger | None = None,
    ):
        self.url = url
        self.logger = logger or logging.getLogger("plugin-hub")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def translate_batch(self, src_texts: List[str], target_lang: str) -> Dict[int, str]:
        if not src_texts:
            return {}
        try:
            resp = await self.client.post(self.url, json={"items": src_texts, "targetLang": target_lang})
        except httpx.TimeoutException as e:
            raise RequestTimeout(f"Translation request timed out: {e}") from e
        except httpx.RequestError as e:
            raise NetworkError(f"Fetch failed for {self.url}: {e}") from e
        if resp.status_code // 100 != 2:
            raise error_for_status(resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError:
            self.logger.warning(f"Translation endpoint returned a non-JSON body: {resp.text[:200]}")
            return {}
        return _collect_translated_map(data, len(src_texts))

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
