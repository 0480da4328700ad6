"""Tests for the translation queue worker."""
import asyncio

import pytest

from fakes import FakeTranslator, items
from plugin_hub.cache import TranslationCache
from plugin_hub.errors import NetworkError, RateLimited, RequestTimeout, ServerError
from plugin_hub.queue_worker import QueueWorker, WorkerState


def make_worker(translator, cache, monitor, **kw):
    kw.setdefault("language", "zh")
    kw.setdefault("inter_batch_delay", 0)
    kw.setdefault("backoff_base", 0)
    return QueueWorker(translator, cache, monitor=monitor, **kw)


class TestTranslationScenarios:
    @pytest.mark.asyncio
    async def test_two_items_translated_and_cached(self, cache, monitor):
        translator = FakeTranslator(script=[{0: "甲", 1: "乙"}])
        worker = make_worker(translator, cache, monitor)

        worker.set_items(items((1, "A"), (2, "B")))
        await worker.join()

        assert cache.snapshot() == {"1_zh": "甲", "2_zh": "乙"}
        assert worker.status().completed == 2
        assert worker.status().failed == 0
        assert translator.calls == [(["A", "B"], "zh")]

    @pytest.mark.asyncio
    async def test_cache_is_persisted_after_merge(self, cache, monitor, store):
        worker = make_worker(FakeTranslator(table={"A": "甲"}), cache, monitor)
        worker.set_items(items((1, "A")))
        await worker.join()

        reloaded = TranslationCache(store)
        assert reloaded.load_all() == {"1_zh": "甲"}

    @pytest.mark.asyncio
    async def test_rate_limited_twice_then_success(self, cache, monitor):
        translator = FakeTranslator(script=[RateLimited(), RateLimited(), {0: "甲", 1: "乙"}])
        worker = make_worker(translator, cache, monitor)

        worker.set_items(items((1, "A"), (2, "B")))
        await worker.join()

        assert len(translator.calls) == 3
        backoffs = [e for e in monitor.logs if e.status == 429]
        assert len(backoffs) == 2
        assert worker.status().completed == 2
        assert worker.status().failed == 0
        assert cache.get(2, "zh") == "乙"

    @pytest.mark.asyncio
    async def test_rate_limit_exhaustion_counts_as_failure(self, cache, monitor):
        translator = FakeTranslator(script=[RateLimited(), RateLimited(), RateLimited()])
        worker = make_worker(translator, cache, monitor)

        worker.set_items(items((1, "A"), (2, "B")))
        await worker.join()

        assert len(translator.calls) == 3
        assert worker.status().failed == 2
        assert worker.status().completed == 0
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self, cache, monitor):
        translator = FakeTranslator(script=[RequestTimeout()])
        worker = make_worker(translator, cache, monitor)

        worker.set_items(items((1, "A")))
        await worker.join()

        assert len(translator.calls) == 1
        assert worker.status().failed == 1

    @pytest.mark.asyncio
    async def test_unparsed_index_stays_eligible(self, cache, monitor):
        translator = FakeTranslator(table={"A": "甲"})
        worker = make_worker(translator, cache, monitor)

        worker.set_items(items((1, "A"), (2, "B")))
        await worker.join()

        assert cache.snapshot() == {"1_zh": "甲"}
        assert worker.status().failed == 0
        # re-discovered once after the cache changed, then left alone
        assert [c[0] for c in translator.calls] == [["A", "B"], ["B"]]

        assert worker.discover() == [2]
        await worker.join()

    @pytest.mark.asyncio
    async def test_failed_batch_does_not_stop_worker(self, cache, monitor):
        translator = FakeTranslator(table={"C": "丙", "D": "丁"}, script=[ServerError("HTTP 500", 500)])
        worker = make_worker(translator, cache, monitor, batch_size=2)

        worker.set_items(items((1, "A"), (2, "B"), (3, "C"), (4, "D")))
        await worker.join()

        st = worker.status()
        assert st.failed == 2
        assert st.completed == 2
        assert st.processing == 0
        assert cache.snapshot() == {"3_zh": "丙", "4_zh": "丁"}

    @pytest.mark.asyncio
    async def test_failed_items_wait_for_reset(self, cache, monitor):
        translator = FakeTranslator(table={"A": "甲"}, script=[NetworkError("offline")])
        worker = make_worker(translator, cache, monitor)

        batch = items((1, "A"))
        worker.set_items(batch)
        await worker.join()
        assert worker.status().failed == 1

        # same epoch: not re-admitted
        assert worker.discover() == []

        # fresh navigation: eligible again
        assert worker.set_items(batch) == [1]
        await worker.join()
        assert cache.get(1, "zh") == "甲"

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_stop_worker(self, cache, monitor, monkeypatch):
        def disk_full(mapping=None):
            raise OSError("disk full")

        monkeypatch.setattr(cache, "persist", disk_full)
        translator = FakeTranslator(table={"A": "甲", "B": "乙"})
        worker = make_worker(translator, cache, monitor, batch_size=1)

        worker.set_items(items((1, "A"), (2, "B")))
        await worker.join()

        assert [c[0] for c in translator.calls] == [["A"], ["B"]]
        assert cache.snapshot() == {"1_zh": "甲", "2_zh": "乙"}
        assert worker.status().completed == 2
        assert worker.status().failed == 0
        assert any("disk full" in e.message for e in monitor.logs if e.type == "error")


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_cached_items_are_never_enqueued(self, cache, monitor):
        cache.put(1, "zh", "甲")
        translator = FakeTranslator(table={"B": "乙"})
        worker = make_worker(translator, cache, monitor)

        assert worker.set_items(items((1, "A"), (2, "B"))) == [2]
        await worker.join()
        assert translator.calls == [(["B"], "zh")]

    @pytest.mark.asyncio
    async def test_entries_cached_after_queueing_clear_pending(self, cache, monitor):
        translator = FakeTranslator()
        worker = make_worker(translator, cache, monitor)

        worker.set_items(items((1, "A")))
        assert worker.status().pending == 1
        # filled in (e.g. by hydration) before the worker takes the batch
        cache.put(1, "zh", "甲")
        await worker.join()

        assert translator.calls == []
        assert worker.queued_ids() == []
        assert worker.status().pending == 0
        assert worker.status().processing == 0

    @pytest.mark.asyncio
    async def test_items_without_description_are_skipped(self, cache, monitor):
        worker = make_worker(FakeTranslator(), cache, monitor)
        assert worker.set_items(items((1, None), (2, "  "), (3, "C"))) == [3]
        await worker.aclose()

    @pytest.mark.asyncio
    async def test_source_language_is_never_a_target(self, cache, monitor):
        translator = FakeTranslator()
        worker = make_worker(translator, cache, monitor, language="en")

        assert worker.set_items(items((1, "A"))) == []
        await worker.join()
        assert translator.calls == []
        assert worker.state is WorkerState.IDLE

    @pytest.mark.asyncio
    async def test_discovery_is_idempotent_and_sets_are_disjoint(self, cache, monitor):
        translator = FakeTranslator(table={f"t{i}": f"x{i}" for i in range(15)})
        translator.gate = asyncio.Event()
        translator.started = asyncio.Event()
        worker = make_worker(translator, cache, monitor)

        first = worker.set_items(items(*[(i, f"t{i}") for i in range(15)]))
        assert first == list(range(15))
        await translator.started.wait()

        assert worker.discover() == []
        assert worker.discover() == []
        queued = worker.queued_ids()
        in_flight = worker.in_flight_ids()
        assert len(queued) == len(set(queued)) == 5
        assert len(in_flight) == 10
        assert not set(queued) & in_flight
        assert worker.status().pending == 5
        assert worker.status().processing == 10

        translator.gate.set()
        await worker.join()
        assert len(cache) == 15

    @pytest.mark.asyncio
    async def test_batches_never_exceed_batch_size(self, cache, monitor):
        translator = FakeTranslator(table={f"t{i}": f"x{i}" for i in range(25)})
        worker = make_worker(translator, cache, monitor)

        worker.set_items(items(*[(i, f"t{i}") for i in range(25)]))
        await worker.join()

        sizes = [len(texts) for texts, _ in translator.calls]
        assert sizes == [10, 10, 5]
        assert all(1 <= n <= 10 for n in sizes)
        # FIFO discovery order
        assert translator.calls[0][0] == [f"t{i}" for i in range(10)]

    @pytest.mark.asyncio
    async def test_items_added_while_running_are_processed(self, cache, monitor):
        translator = FakeTranslator(table={"A": "甲", "B": "乙"})
        translator.gate = asyncio.Event()
        translator.started = asyncio.Event()
        worker = make_worker(translator, cache, monitor)

        worker.set_items(items((1, "A")))
        await translator.started.wait()
        assert worker.extend_items(items((2, "B"))) == [2]
        translator.gate.set()
        await worker.join()

        assert cache.snapshot() == {"1_zh": "甲", "2_zh": "乙"}
        assert worker.status().completed == 2


class TestCancellation:
    @pytest.mark.asyncio
    async def test_language_switch_to_source_aborts_in_flight_batch(self, cache, monitor):
        translator = FakeTranslator(table={"A": "甲", "B": "乙"})
        translator.gate = asyncio.Event()
        translator.started = asyncio.Event()
        worker = make_worker(translator, cache, monitor)

        worker.set_items(items((1, "A"), (2, "B")))
        await translator.started.wait()

        worker.set_language("en")
        assert worker.queued_ids() == []
        assert worker.in_flight_ids() == set()
        assert worker.status().processing == 0
        assert worker.state is WorkerState.DRAINING

        await worker.join()
        assert translator.cancelled == 1
        assert worker.state is WorkerState.STOPPED

        # a response released after the switch changes nothing
        translator.gate.set()
        await asyncio.sleep(0)

        assert len(cache) == 0
        assert all(lang == "zh" for _, lang in translator.calls)
        assert worker.status().failed == 0
        assert any("cancelled" in e.message for e in monitor.logs)

    @pytest.mark.asyncio
    async def test_result_arriving_with_the_switch_is_discarded(self, cache, monitor):
        holder = {}

        class SwitchingTranslator(FakeTranslator):
            async def translate_batch(self, src_texts, target_lang):
                self.calls.append((list(src_texts), target_lang))
                if target_lang == "zh":
                    # the user switches while this response is being delivered
                    holder["worker"].set_language("jp")
                return {i: f"{target_lang}:{t}" for i, t in enumerate(src_texts)}

        translator = SwitchingTranslator()
        worker = make_worker(translator, cache, monitor)
        holder["worker"] = worker

        worker.set_items(items((1, "A")))
        await worker.join()

        assert cache.get(1, "zh") is None
        assert cache.get(1, "jp") == "jp:A"
        assert worker.status().completed == 1

    @pytest.mark.asyncio
    async def test_new_language_worker_starts_without_waiting(self, cache, monitor):
        translator = FakeTranslator(table={"A": "甲"})
        translator.gate = asyncio.Event()
        translator.started = asyncio.Event()
        worker = make_worker(translator, cache, monitor)

        worker.set_items(items((1, "A")))
        await translator.started.wait()
        epoch = worker.epoch
        translator.started.clear()

        worker.set_language("kr")
        assert worker.queued_ids() == [1]
        assert worker.state is WorkerState.RUNNING
        await translator.started.wait()
        assert translator.calls[-1] == (["A"], "kr")

        translator.gate.set()
        await worker.join()
        assert worker.epoch == epoch + 1

    @pytest.mark.asyncio
    async def test_item_reset_flushes_queue(self, cache, monitor):
        translator = FakeTranslator(table={"A": "甲", "Z": "子"})
        translator.gate = asyncio.Event()
        translator.started = asyncio.Event()
        worker = make_worker(translator, cache, monitor, batch_size=1)

        worker.set_items(items((1, "A"), (2, "B"), (3, "C")))
        await translator.started.wait()
        assert worker.queued_ids() == [2, 3]

        worker.set_items(items((9, "Z")))
        assert worker.queued_ids() == [9]
        translator.gate.set()
        await worker.join()

        assert cache.snapshot() == {"9_zh": "子"}


class TestStatus:
    @pytest.mark.asyncio
    async def test_observer_sees_every_transition(self, cache, monitor):
        seen = []
        worker = make_worker(FakeTranslator(table={"A": "甲", "B": "乙"}), cache, monitor)
        unsubscribe = worker.on_status_change(seen.append)

        worker.set_items(items((1, "A"), (2, "B")))
        await worker.join()
        unsubscribe()

        assert seen, "observer was never notified"
        for st in seen:
            assert min(st.pending, st.processing, st.completed, st.failed) >= 0
        assert any(st.processing == 2 for st in seen)
        assert seen[-1].completed == 2
        assert seen[-1].processing == 0
        assert seen[-1].pending == 0

        count = len(seen)
        worker.cancel()
        assert len(seen) == count

    @pytest.mark.asyncio
    async def test_monitor_mirrors_worker_status(self, cache, monitor):
        worker = make_worker(FakeTranslator(table={"A": "甲"}), cache, monitor)
        monitor.watch(worker)

        worker.set_items(items((1, "A")))
        await worker.join()

        assert monitor.queue_status == worker.status()
        assert monitor.queue_status.completed == 1

    @pytest.mark.asyncio
    async def test_state_starts_idle_and_returns_idle(self, cache, monitor):
        worker = make_worker(FakeTranslator(table={"A": "甲"}), cache, monitor)
        assert worker.state is WorkerState.IDLE
        worker.set_items(items((1, "A")))
        assert worker.state is WorkerState.RUNNING
        await worker.join()
        assert worker.state is WorkerState.IDLE

    def test_batch_size_must_be_positive(self, cache):
        with pytest.raises(ValueError):
            QueueWorker(FakeTranslator(), cache, batch_size=0)
