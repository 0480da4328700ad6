from __future__ import annotations
import asyncio
import json
import logging
from typing import Dict, Mapping, Optional

from .storage import CACHE_KEY, KeyValueStore


def cache_key(item_id: int, lang: str) -> str:
    return f"{item_id}_{lang}"


class TranslationCache:
    """Translated descriptions keyed by ``"{id}_{lang}"``.

    The in-memory mapping is only ever replaced by a merged copy, never mutated
    in place, so a reader holding ``snapshot()`` sees a consistent view.
    Entries are first-write-wins.
    """

    def __init__(self, store: KeyValueStore, logger: logging.Logger | None = None) -> None:
        self.store = store
        self.logger = logger or logging.getLogger("plugin-hub")
        self._entries: Dict[str, str] = {}
        self.hydrated = False

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, item_id: int, lang: str) -> Optional[str]:
        return self._entries.get(cache_key(item_id, lang))

    def has(self, item_id: int, lang: str) -> bool:
        return bool(self._entries.get(cache_key(item_id, lang)))

    def put(self, item_id: int, lang: str, text: str) -> bool:
        return self.merge({cache_key(item_id, lang): text}) == 1

    def merge(self, entries: Mapping[str, str]) -> int:
        added = {k: v for k, v in entries.items() if v and k not in self._entries}
        if added:
            merged = dict(self._entries)
            merged.update(added)
            self._entries = merged
        return len(added)

    def snapshot(self) -> Dict[str, str]:
        return self._entries

    def load_all(self) -> Dict[str, str]:
        raw = self.store.get(CACHE_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError as e:
            self.logger.warning(f"Failed to parse translation cache, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            self.logger.warning("Persisted translation cache is not a mapping, starting empty")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str) and v}

    def hydrate(self) -> int:
        loaded = self.load_all()
        added = self.merge(loaded)
        self.hydrated = True
        self.logger.info(f"Hydrated translation cache with {added} entries")
        return added

    def persist(self, mapping: Mapping[str, str] | None = None) -> None:
        data = self._entries if mapping is None else mapping
        self.store.set(CACHE_KEY, json.dumps(data, ensure_ascii=False))

    async def persist_async(self) -> None:
        if not self._entries:
            return
        await asyncio.to_thread(self.persist, self._entries)

    def clear(self) -> None:
        self._entries = {}
        self.store.delete(CACHE_KEY)
