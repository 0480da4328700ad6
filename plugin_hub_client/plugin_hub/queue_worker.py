"""Background translation of item descriptions.

One :class:`QueueWorker` exists per UI session. It owns the pending queue, the
set of ids inside the active batch call, and an epoch counter. Changing the
item list or the target language starts a new epoch: the active call is
aborted, the queue is flushed, and anything the old epoch produces afterwards
is discarded.
"""
from __future__ import annotations
import asyncio
import logging
import sqlite3
import time
from collections import deque
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set

from .cache import TranslationCache, cache_key
from .cancel import CancelToken
from .errors import Cancelled, RateLimited
from .monitor import Monitor, QueueStatus
from .translator_base import BatchTranslator

BATCH_SIZE = 10
INTER_BATCH_DELAY = 0.5
MAX_RETRIES = 2
BACKOFF_BASE = 2.0
SOURCE_LANGUAGE = "en"

StatusCallback = Callable[[QueueStatus], None]


class WorkerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


def _text(item: Any) -> str:
    return (getattr(item, "description", None) or "").strip()


class QueueWorker:
    def __init__(
        self,
        translator: BatchTranslator,
        cache: TranslationCache,
        *,
        language: str = SOURCE_LANGUAGE,
        source_language: str = SOURCE_LANGUAGE,
        batch_size: int = BATCH_SIZE,
        inter_batch_delay: float = INTER_BATCH_DELAY,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = BACKOFF_BASE,
        monitor: Monitor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.translator = translator
        self.cache = cache
        self.source_language = source_language
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.logger = logger or logging.getLogger("plugin-hub")
        self.monitor = monitor or Monitor(self.logger)

        self._language = language
        self._items: Dict[int, Any] = {}
        self._queue: Deque[int] = deque()
        self._queued: Set[int] = set()
        self._in_flight: Set[int] = set()
        self._failed: Set[int] = set()

        self._status = QueueStatus()
        self._observers: List[StatusCallback] = []

        self._epoch = 0
        self._epoch_token: Optional[CancelToken] = None
        self._active_token: Optional[CancelToken] = None
        self._task: Optional[asyncio.Task] = None
        self._detached: Set[asyncio.Task] = set()
        self._stopped = False

    # ---------------- observation ----------------

    @property
    def language(self) -> str:
        return self._language

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def items(self) -> List[Any]:
        return list(self._items.values())

    @property
    def state(self) -> WorkerState:
        if self._task is not None and not self._task.done():
            return WorkerState.RUNNING
        if any(not t.done() for t in self._detached):
            return WorkerState.DRAINING
        if self._stopped:
            return WorkerState.STOPPED
        return WorkerState.IDLE

    def queued_ids(self) -> List[int]:
        return list(self._queue)

    def in_flight_ids(self) -> Set[int]:
        return set(self._in_flight)

    def status(self) -> QueueStatus:
        return replace(self._status)

    def on_status_change(self, callback: StatusCallback) -> Callable[[], None]:
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _set_status(self, **changes: int) -> None:
        clamped = {k: max(0, v) for k, v in changes.items()}
        self._status = replace(self._status, **clamped)
        snapshot = self.status()
        for cb in list(self._observers):
            try:
                cb(snapshot)
            except Exception as e:
                self.logger.warning(f"Queue status observer failed: {e}")

    # ---------------- triggers ----------------

    def set_items(self, items: Iterable[Any]) -> List[int]:
        """Replace the item list (navigation/reset). Starts a new epoch."""
        self.cancel("item list reset")
        self._items = {}
        for it in items:
            self._items.setdefault(it.id, it)
        self.monitor.add_log("system", "grid", f"Reset item list: {len(self._items)} items")
        return self.discover()

    def extend_items(self, items: Iterable[Any]) -> List[int]:
        for it in items:
            self._items.setdefault(it.id, it)
        return self.discover()

    def set_language(self, language: str) -> List[int]:
        if language == self._language:
            return []
        self.cancel(f"language switched to {language}")
        self._language = language
        return self.discover()

    def cancel(self, reason: str = "cancelled") -> None:
        """Abort the active call, flush the queue and start a new epoch.

        The old task is detached rather than awaited, so a worker for the new
        epoch can start immediately.
        """
        self._epoch += 1
        if self._epoch_token is not None:
            self._epoch_token.cancel(reason)
            self._epoch_token = None
        if self._active_token is not None:
            self._active_token.cancel(reason)
            self._active_token = None
        if self._task is not None and not self._task.done():
            self._detached.add(self._task)
            self._task.add_done_callback(self._detached.discard)
            self._stopped = True
        self._task = None
        self._queue.clear()
        self._queued.clear()
        self._in_flight.clear()
        self._failed.clear()
        self._set_status(pending=0, processing=0)

    # ---------------- discovery ----------------

    def discover(self) -> List[int]:
        lang = self._language
        if lang == self.source_language:
            if self._queue:
                self._queue.clear()
                self._queued.clear()
                self._set_status(pending=0)
            return []
        return self.enqueue(it.id for it in self._items.values())

    def enqueue(self, ids: Iterable[int]) -> List[int]:
        lang = self._language
        if lang == self.source_language:
            return []
        added: List[int] = []
        for i in ids:
            item = self._items.get(i)
            if item is None or not _text(item):
                continue
            if self.cache.has(i, lang) or i in self._in_flight or i in self._queued or i in self._failed:
                continue
            self._queue.append(i)
            self._queued.add(i)
            added.append(i)
        if added:
            self._set_status(pending=len(self._queue))
            self.monitor.add_log("queue", "translate", f"Queued {len(added)} item(s) for '{lang}'", details={"ids": added})
            self._ensure_running()
        return added

    # ---------------- worker loop ----------------

    def _is_current(self, lang: str, epoch: int) -> bool:
        return epoch == self._epoch and lang == self._language

    def _ensure_running(self) -> None:
        if self._task is not None and not self._task.done():
            return
        if not self._queue or self._language == self.source_language:
            return
        if self._epoch_token is None:
            self._epoch_token = CancelToken()
        self._stopped = False
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(self._language, self._epoch, self._epoch_token))

    def _take_batch(self, lang: str) -> List[int]:
        ids: List[int] = []
        for _ in range(min(self.batch_size, len(self._queue))):
            i = self._queue.popleft()
            self._queued.discard(i)
            item = self._items.get(i)
            # hydration may have filled it in since admission
            if item is None or not _text(item) or self.cache.has(i, lang):
                continue
            ids.append(i)
        self._in_flight.update(ids)
        self._set_status(pending=len(self._queue))
        return ids

    async def _run(self, lang: str, epoch: int, token: CancelToken) -> None:
        me = asyncio.current_task()
        self.logger.debug(f"Translation worker started for '{lang}' (epoch {epoch})")
        try:
            while self._queue and self._is_current(lang, epoch):
                batch = self._take_batch(lang)
                if not batch:
                    continue
                added = await self._process_batch(batch, lang, epoch, token)
                if not self._is_current(lang, epoch):
                    break
                if added:
                    self.discover()
                await token.sleep(self.inter_batch_delay)
        except Cancelled:
            self.monitor.add_log("system", "translate", "Translation request cancelled (category or language switched)")
        finally:
            if self._task is me:
                self._task = None
                # ids admitted for the same language after the loop condition was checked
                if self._queue and self._language != self.source_language:
                    self._ensure_running()

    async def _process_batch(self, ids: List[int], lang: str, epoch: int, token: CancelToken) -> int:
        texts = [_text(self._items[i]) for i in ids]
        self._set_status(pending=len(self._queue), processing=len(ids))
        self.monitor.add_log("api", "translate", f"Requesting batch translation ({len(ids)} items)", details={"batchIds": ids})

        batch_token = CancelToken(parent=token)
        self._active_token = batch_token
        started = time.monotonic()
        try:
            translated = await self._translate_with_retry(texts, lang, batch_token)
        except Cancelled:
            raise
        except Exception as e:
            if self._is_current(lang, epoch):
                self._failed.update(ids)
                self._set_status(failed=self._status.failed + len(ids), processing=0)
                self.monitor.add_log("error", "translate", f"Translation failed: {e}", status=getattr(e, "status", None))
            return 0
        finally:
            if self._active_token is batch_token:
                self._active_token = None
            if epoch == self._epoch:
                self._in_flight.difference_update(ids)

        if not self._is_current(lang, epoch):
            self.logger.debug(f"Discarding stale batch for '{lang}' (epoch {epoch})")
            return 0

        entries = {cache_key(ids[i], lang): text for i, text in translated.items() if 0 <= i < len(ids)}
        added = self.cache.merge(entries)
        self._set_status(completed=self._status.completed + len(ids), processing=0)
        self.monitor.add_log(
            "api", "translate", f"Batch translation succeeded ({len(entries)}/{len(ids)} mapped)",
            status=200, duration=(time.monotonic() - started) * 1000,
        )
        if added:
            try:
                await self.cache.persist_async()
            except (sqlite3.Error, OSError) as e:
                # in-memory cache stays valid; the next successful write carries these entries
                self.monitor.add_log("error", "translate", f"Failed to persist translation cache: {e}")
        return added

    async def _translate_with_retry(self, texts: List[str], lang: str, token: CancelToken) -> Dict[int, str]:
        attempt = 0
        while True:
            try:
                return await token.run(self.translator.translate_batch(texts, lang))
            except RateLimited:
                if attempt >= self.max_retries:
                    raise
                attempt += 1
                wait = self.backoff_base * (2 ** attempt)
                self.monitor.add_log(
                    "error", "translate",
                    f"Rate limited (429), retrying ({attempt}/{self.max_retries}) in {wait:.1f}s",
                    status=429,
                )
                await token.sleep(wait)

    # ---------------- lifecycle ----------------

    async def join(self) -> None:
        """Wait until no worker task (current or detached) is running."""
        while True:
            tasks = [t for t in [self._task, *self._detached] if t is not None and not t.done()]
            if not tasks:
                return
            done, _ = await asyncio.wait(tasks)
            for t in done:
                if not t.cancelled() and t.exception() is not None:
                    raise t.exception()

    async def aclose(self) -> None:
        self.cancel("worker closed")
        await self.join()
