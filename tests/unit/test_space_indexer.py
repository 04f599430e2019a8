# SpaceIndexer ユニットテスト
"""
同期パス（ウォーターマーク取得ループ、同一タイムスタンプ処理、結果レコード）のテスト
"""

import asyncio
import logging
from datetime import datetime, timedelta

import pytest

from tests.mock_remote import (
    FakeRemoteClient,
    RecordingListener,
    ScriptedRemoteClient,
    make_doc,
    ts,
)
from tidemark.errors import ConfigurationError, ErrorHandler, ErrorHandlerConfig
from tidemark.index.memory import InMemoryIndexStore
from tidemark.index.state import IndexStateStore
from tidemark.mapper.config import IndexStructureConfig
from tidemark.mapper.structure import DocumentWithCommentsMapper
from tidemark.observability import Observability
from tidemark.sync.cancellation import CancellationToken
from tidemark.sync.indexer import TIE_ADVANCE, SpaceIndexer
from tidemark.sync.types import ChangedDocumentsPage

INDEX = "tidemark_documents"


class Clock:
    """テスト用の時計"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# ============================================================
# Fixtures
# ============================================================


@pytest.fixture
def clock():
    return Clock(ts(1000))


@pytest.fixture
def store():
    return InMemoryIndexStore()


@pytest.fixture
def state(store):
    return IndexStateStore(store)


@pytest.fixture
def mapper(clock):
    config = IndexStructureConfig.from_dict({
        "remote_field_document_id": "id",
        "remote_field_updated": "updated",
        "fields": {"title": {"remote_field": "title"}},
    })
    return DocumentWithCommentsMapper(config, clock=clock)


@pytest.fixture
def observability():
    obs, _ = Observability.create_for_testing()
    return obs


@pytest.fixture
def make_indexer(store, state, mapper, clock, observability):
    def _make(remote, full_update=False, **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("observability", observability)
        kwargs.setdefault(
            "error_handler", ErrorHandler(ErrorHandlerConfig(log_errors=False))
        )
        return SpaceIndexer(
            "DOC",
            full_update=full_update,
            remote_client=remote,
            index_store=store,
            state_store=state,
            mapper=mapper,
            **kwargs,
        )
    return _make


# ============================================================
# Construction
# ============================================================


class TestConstruction:
    """生成時の検証"""

    @pytest.mark.parametrize("space_key", ["", "   ", None])
    def test_blank_space_key_rejected(self, store, state, mapper, space_key):
        with pytest.raises(ConfigurationError):
            SpaceIndexer(
                space_key,
                full_update=False,
                remote_client=FakeRemoteClient(),
                index_store=store,
                state_store=state,
                mapper=mapper,
            )

    def test_indexing_info_none_before_run(self, make_indexer):
        indexer = make_indexer(FakeRemoteClient())
        assert indexer.indexing_info is None

    @pytest.mark.asyncio
    async def test_run_only_once(self, make_indexer):
        indexer = make_indexer(FakeRemoteClient())
        await indexer.run()

        with pytest.raises(ConfigurationError):
            await indexer.run()


# ============================================================
# Watermark fetch loop
# ============================================================


class TestWatermarkLoop:
    """ウォーターマークに基づく取得ループ"""

    @pytest.mark.asyncio
    async def test_missing_watermark_forces_full_update(self, make_indexer, state):
        remote = FakeRemoteClient([
            make_doc("A", ts(0)),
            make_doc("B", ts(5)),
            make_doc("C", ts(9)),
        ])
        info = await make_indexer(remote, full_update=False).run()

        assert info.full_update is True
        assert info.finished_ok is True
        assert info.documents_updated >= 3
        assert remote.calls[0] == ("DOC", 0, None)
        assert await state.read_watermark("DOC") == ts(9)

    @pytest.mark.asyncio
    async def test_incremental_resumes_from_watermark(self, make_indexer, state, store):
        await state.store_watermark("DOC", ts(10))
        remote = FakeRemoteClient([
            make_doc("OLD", ts(5)),
            make_doc("A", ts(10)),
            make_doc("B", ts(20)),
        ])

        info = await make_indexer(remote).run()

        assert info.full_update is False
        assert remote.calls[0] == ("DOC", 0, ts(10))
        assert info.documents_updated == 2
        assert store.ids(INDEX, "document") == {"A", "B"}
        assert await state.read_watermark("DOC") == ts(20)

    @pytest.mark.asyncio
    async def test_empty_first_page_finishes_cleanly(self, make_indexer, state):
        await state.store_watermark("DOC", ts(10))
        remote = FakeRemoteClient([])

        info = await make_indexer(remote).run()

        assert info.finished_ok is True
        assert info.documents_updated == 0
        assert len(remote.calls) == 1
        assert await state.read_watermark("DOC") == ts(10)

    @pytest.mark.asyncio
    async def test_watermark_written_in_same_bulk_as_page(self, make_indexer, store):
        remote = FakeRemoteClient(
            [make_doc("A", ts(0)), make_doc("B", ts(1))],
            page_size=10,
        )
        await make_indexer(remote, full_update=True).run()

        # 1 page: 2 documents + watermark
        assert store.bulk_history[0] == 3

    @pytest.mark.asyncio
    async def test_distinct_timestamps_advance_watermark(self, make_indexer):
        pages = [
            ChangedDocumentsPage(
                documents=[make_doc("A", ts(0)), make_doc("B", ts(3))],
                start_at=0,
                total=4,
            ),
            ChangedDocumentsPage(
                documents=[make_doc("B", ts(3)), make_doc("C", ts(7))],
                start_at=0,
                total=2,
            ),
        ]
        remote = ScriptedRemoteClient(pages)

        info = await make_indexer(remote, full_update=True).run()

        assert remote.calls == [("DOC", 0, None), ("DOC", 0, ts(3))]
        assert info.documents_updated == 4

    @pytest.mark.asyncio
    async def test_unknown_total_continues_until_empty_page(self, make_indexer, state):
        remote = FakeRemoteClient(
            [make_doc("A", ts(0)), make_doc("B", ts(1)), make_doc("C", ts(2))],
            report_total=False,
        )

        info = await make_indexer(remote, full_update=True).run()

        assert remote.calls == [
            ("DOC", 0, None),
            ("DOC", 0, ts(1)),
            ("DOC", 0, ts(2)),
            ("DOC", 0, ts(2) + TIE_ADVANCE),
        ]
        assert info.finished_ok is True
        assert await state.read_watermark("DOC") == ts(2)


# ============================================================
# Tie-break policy
# ============================================================


class TestTieBreak:
    """同一タイムスタンプのページ処理"""

    @pytest.mark.asyncio
    async def test_tie_with_total_paginates_by_offset(self, make_indexer, store):
        remote = FakeRemoteClient(
            [make_doc("A", ts(0)), make_doc("B", ts(0)), make_doc("C", ts(0))],
            page_size=2,
        )

        info = await make_indexer(remote, full_update=True).run()

        assert remote.calls == [("DOC", 0, None), ("DOC", 2, None)]
        assert info.documents_updated == 3
        assert store.ids(INDEX, "document") == {"A", "B", "C"}

    @pytest.mark.asyncio
    async def test_tie_without_total_advances_one_second(
        self, make_indexer, state, caplog
    ):
        remote = FakeRemoteClient(
            [make_doc("A", ts(0)), make_doc("B", ts(0)), make_doc("C", ts(0))],
            page_size=2,
            report_total=False,
        )

        with caplog.at_level(logging.WARNING, logger="tidemark.sync.indexer"):
            info = await make_indexer(remote, full_update=True).run()

        assert remote.calls == [("DOC", 0, None), ("DOC", 0, ts(0) + TIE_ADVANCE)]
        # C shares the tied instant and is skipped by the lossy fallback
        assert info.documents_updated == 2
        assert await state.read_watermark("DOC") == ts(0)
        assert "share update timestamp" in caplog.text

    @pytest.mark.asyncio
    async def test_boundary_document_advances_persisted_watermark(
        self, make_indexer, state
    ):
        await state.store_watermark("DOC", ts(10))
        remote = FakeRemoteClient([make_doc("A", ts(10))])

        info = await make_indexer(remote).run()

        assert info.documents_updated == 1
        assert await state.read_watermark("DOC") == ts(10) + timedelta(seconds=1)

    @pytest.mark.asyncio
    async def test_boundary_document_not_refetched_next_pass(
        self, make_indexer, state
    ):
        await state.store_watermark("DOC", ts(10))
        remote = FakeRemoteClient([make_doc("A", ts(10))])

        await make_indexer(remote).run()
        second = await make_indexer(remote).run()

        assert remote.calls[-1] == ("DOC", 0, ts(11))
        assert second.documents_updated == 0
        assert second.finished_ok is True

    @pytest.mark.asyncio
    async def test_no_correction_when_progress_beyond_watermark(
        self, make_indexer, state
    ):
        await state.store_watermark("DOC", ts(10))
        remote = FakeRemoteClient([make_doc("A", ts(10)), make_doc("B", ts(12))])

        await make_indexer(remote).run()

        assert await state.read_watermark("DOC") == ts(12)

    @pytest.mark.asyncio
    async def test_sub_millisecond_boundary_document_indexed_once(
        self, make_indexer, state
    ):
        updated = ts(10) + timedelta(microseconds=123456)
        await state.store_watermark("DOC", updated)
        remote = FakeRemoteClient([make_doc("A", updated)])

        counts = []
        for _ in range(3):
            info = await make_indexer(remote).run()
            counts.append(info.documents_updated)

        assert counts == [1, 0, 0]
        assert await state.read_watermark("DOC") == updated + TIE_ADVANCE


# ============================================================
# Failures
# ============================================================


class TestFailures:
    """失敗時の結果レコード"""

    @pytest.mark.asyncio
    async def test_missing_document_id(self, make_indexer):
        remote = FakeRemoteClient([{"updated": ts(0).isoformat(), "title": "x"}])
        listener = RecordingListener()

        info = await make_indexer(remote, listener=listener).run()

        assert info.finished_ok is False
        assert "Document ID not found" in info.error_message
        assert listener.snapshots == [info]

    @pytest.mark.asyncio
    async def test_missing_updated_timestamp(self, make_indexer):
        pages = [ChangedDocumentsPage(documents=[{"id": "A"}], start_at=0, total=1)]

        info = await make_indexer(ScriptedRemoteClient(pages)).run()

        assert info.finished_ok is False
        assert "Last update timestamp not found" in info.error_message

    @pytest.mark.asyncio
    async def test_source_failure_keeps_committed_pages(self, make_indexer, state):
        remote = FakeRemoteClient([
            make_doc("A", ts(0)),
            make_doc("B", ts(1)),
            make_doc("C", ts(2)),
            make_doc("D", ts(3)),
        ])
        remote.fail_on_call = 2

        info = await make_indexer(remote, full_update=True).run()

        assert info.finished_ok is False
        assert info.documents_updated == 2
        assert "remote system unavailable" in info.error_message
        assert await state.read_watermark("DOC") == ts(1)

    @pytest.mark.asyncio
    async def test_failed_full_update_does_not_reap(self, make_indexer, store):
        remote = FakeRemoteClient([make_doc("A", ts(0))])
        remote.fail_on_call = 1

        await make_indexer(remote, full_update=True).run()

        assert store.refreshed == []

    @pytest.mark.asyncio
    async def test_listener_errors_are_not_propagated(self, make_indexer):
        class BrokenListener:
            def on_indexing_finished(self, snapshot):
                raise RuntimeError("listener down")

        info = await make_indexer(
            FakeRemoteClient([]), listener=BrokenListener()
        ).run()

        assert info.finished_ok is True


# ============================================================
# Cancellation
# ============================================================


class TestCancellation:
    """キャンセル処理"""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, make_indexer):
        token = CancellationToken()
        token.cancel("shutdown")
        remote = FakeRemoteClient([make_doc("A", ts(0))])

        info = await make_indexer(remote, cancellation=token).run()

        assert info.finished_ok is False
        assert info.error_message == "Interrupted because sync was cancelled"
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_cancelled_after_fetch_writes_nothing(self, make_indexer, store):
        token = CancellationToken()

        class CancellingRemote(FakeRemoteClient):
            async def get_changed_documents(self, space_key, start_at, updated_after):
                page = await super().get_changed_documents(
                    space_key, start_at, updated_after
                )
                token.cancel("stop")
                return page

        remote = CancellingRemote([make_doc("A", ts(0))])
        info = await make_indexer(remote, cancellation=token).run()

        assert info.finished_ok is False
        assert info.documents_updated == 0
        assert store.bulk_history == []

    @pytest.mark.asyncio
    async def test_cancelled_between_documents_keeps_watermark(
        self, make_indexer, state, store, mapper, monkeypatch
    ):
        await state.store_watermark("DOC", ts(5))
        bulks_before = len(store.bulk_history)
        token = CancellationToken()
        index_document = mapper.index_document

        def index_and_cancel(bulk, space_key, document):
            index_document(bulk, space_key, document)
            token.cancel("shutdown")

        monkeypatch.setattr(mapper, "index_document", index_and_cancel)
        remote = FakeRemoteClient([make_doc("A", ts(6)), make_doc("B", ts(7))])

        info = await make_indexer(remote, cancellation=token).run()

        assert info.finished_ok is False
        assert info.error_message == "Interrupted because sync was cancelled"
        assert info.documents_updated == 1
        assert len(store.bulk_history) == bulks_before
        assert store.ids(INDEX, "document") == set()
        assert await state.read_watermark("DOC") == ts(5)

    @pytest.mark.asyncio
    async def test_task_cancellation_is_reraised_after_notification(
        self, make_indexer
    ):
        class HangingRemote(FakeRemoteClient):
            async def get_changed_documents(self, space_key, start_at, updated_after):
                await asyncio.sleep(3600)

        listener = RecordingListener()
        indexer = make_indexer(HangingRemote(), listener=listener)
        task = asyncio.create_task(indexer.run())
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(listener.snapshots) == 1
        assert listener.snapshots[0].finished_ok is False


# ============================================================
# Stale document removal
# ============================================================


class TestReapBoundary:
    """古いレコード削除の境界"""

    @pytest.mark.asyncio
    async def test_incremental_pass_never_reaps(self, make_indexer, state, store):
        await state.store_watermark("DOC", ts(0))
        obs, exporter = Observability.create_for_testing()
        remote = FakeRemoteClient([make_doc("A", ts(1)), make_doc("B", ts(2))])

        info = await make_indexer(remote, observability=obs).run()
        obs.flush()

        assert info.finished_ok is True
        assert info.full_update is False
        assert store.refreshed == []
        assert "sync.delete" not in exporter.span_names()

    @pytest.mark.asyncio
    async def test_boundary_is_pass_start(self, make_indexer, store, monkeypatch):
        class TickingClock:
            def __init__(self):
                self.now = ts(900)

            def __call__(self):
                value = self.now
                self.now += timedelta(minutes=1)
                return value

        requests = []
        open_scroll = store.open_scroll

        async def recording_open_scroll(request):
            requests.append(request)
            return await open_scroll(request)

        monkeypatch.setattr(store, "open_scroll", recording_open_scroll)
        remote = FakeRemoteClient([make_doc("A", ts(0))])

        info = await make_indexer(remote, full_update=True, clock=TickingClock()).run()

        assert info.start_date == ts(900)
        assert len(requests) == 1
        assert requests[0].indexed_before == info.start_date

    @pytest.mark.asyncio
    async def test_document_written_in_start_millisecond_kept(
        self, make_indexer, store, mapper, clock, monkeypatch
    ):
        start = ts(1000) + timedelta(microseconds=123456)
        clock.now = start
        monkeypatch.setattr(mapper, "clock", lambda: start + timedelta(microseconds=300))
        remote = FakeRemoteClient([make_doc("A", ts(0))])

        info = await make_indexer(remote, full_update=True).run()

        assert info.documents_updated == 1
        assert info.documents_deleted == 0
        assert store.ids(INDEX, "document") == {"A"}


# ============================================================
# Observability
# ============================================================


class TestObservability:
    """メトリクスとスパン"""

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, make_indexer, observability):
        remote = FakeRemoteClient([make_doc("A", ts(0)), make_doc("B", ts(1))])

        await make_indexer(remote, full_update=True).run()

        assert observability.metrics.get_counter("sync.documents_updated") == 2
        assert observability.metrics.get_counter("sync.pass_failed") == 0

    @pytest.mark.asyncio
    async def test_failure_counted(self, make_indexer, observability):
        remote = FakeRemoteClient([make_doc("A", ts(0))])
        remote.fail_on_call = 1

        await make_indexer(remote).run()

        assert observability.metrics.get_counter("sync.pass_failed") == 1

    @pytest.mark.asyncio
    async def test_spans_for_full_update(self, store, state, mapper, clock):
        obs, exporter = Observability.create_for_testing()
        indexer = SpaceIndexer(
            "DOC",
            full_update=True,
            remote_client=FakeRemoteClient([make_doc("A", ts(0))]),
            index_store=store,
            state_store=state,
            mapper=mapper,
            clock=clock,
            observability=obs,
        )

        await indexer.run()
        obs.flush()

        assert exporter.span_names() == ["sync.update", "sync.delete", "sync.pass"]
