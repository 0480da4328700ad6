from __future__ import annotations
import asyncio
import logging
from typing import List, Optional

from .cache import TranslationCache
from .config import SUPPORTED_LANGUAGES, HubConfig
from .github import Repo, RepoPager, build_listing_query
from .monitor import Monitor
from .queue_worker import QueueWorker
from .storage import LANGUAGE_KEY, KeyValueStore
from .translator_base import BatchTranslator


def load_language(store: KeyValueStore, default: str = "zh") -> str:
    saved = store.get(LANGUAGE_KEY)
    return saved if saved in SUPPORTED_LANGUAGES else default


def save_language(store: KeyValueStore, lang: str) -> None:
    if lang not in SUPPORTED_LANGUAGES:
        raise ValueError(f"Unsupported language {lang!r}; expected one of {', '.join(SUPPORTED_LANGUAGES)}")
    store.set(LANGUAGE_KEY, lang)


class HubSession:
    """One browsing session: the listing, the active language and its translation worker."""

    def __init__(
        self,
        cfg: HubConfig,
        translator: BatchTranslator,
        store: KeyValueStore,
        *,
        monitor: Monitor | None = None,
        logger: logging.Logger | None = None,
        fetch=None,
    ) -> None:
        self.cfg = cfg
        self.store = store
        self.translator = translator
        self.logger = logger or logging.getLogger("plugin-hub")
        self.monitor = monitor or Monitor(self.logger)
        self._fetch = fetch

        # hydrate before any discovery so cached items are never re-requested
        self.cache = TranslationCache(store, self.logger)
        self.cache.hydrate()

        self.worker = QueueWorker(
            translator,
            self.cache,
            language=load_language(store, cfg.default_language),
            source_language=cfg.source_language,
            batch_size=cfg.batch_size,
            inter_batch_delay=cfg.inter_batch_delay,
            max_retries=cfg.max_retries,
            backoff_base=cfg.backoff_base,
            monitor=self.monitor,
            logger=self.logger,
        )
        self.monitor.watch(self.worker)
        self.pager: Optional[RepoPager] = None

    @property
    def language(self) -> str:
        return self.worker.language

    @property
    def repos(self) -> List[Repo]:
        return self.worker.items

    def set_language(self, lang: str) -> None:
        save_language(self.store, lang)
        self.worker.set_language(lang)

    async def show(self, category: Optional[str] = None, q: str = "", sort: str = "stars") -> List[Repo]:
        query, sort = build_listing_query(category, q, sort)
        pager = self.pager = RepoPager(
            query, sort, token=self.cfg.github_token, timeout=self.cfg.search_timeout,
            monitor=self.monitor, fetch=self._fetch,
        )
        # blocking search call runs in a thread so in-flight translation keeps going
        repos = await asyncio.to_thread(pager.first_page)
        if self.pager is not pager:
            # superseded by a newer listing while fetching
            return []
        self.worker.set_items(repos)
        return repos

    async def load_more(self) -> List[Repo]:
        if self.pager is None:
            return []
        pager = self.pager
        repos = await asyncio.to_thread(pager.load_more)
        if repos and self.pager is pager:
            self.worker.extend_items(repos)
        return repos

    @property
    def has_more(self) -> bool:
        return self.pager is not None and self.pager.has_more

    def description_for(self, repo: Repo) -> Optional[str]:
        if self.language == self.cfg.source_language:
            return repo.description
        return self.cache.get(repo.id, self.language) or repo.description

    async def wait_idle(self) -> None:
        await self.worker.join()

    async def aclose(self) -> None:
        await self.worker.aclose()
        self.monitor.unwatch_all()
        await self.translator.aclose()
