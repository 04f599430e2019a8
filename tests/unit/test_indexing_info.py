# SpaceIndexingInfo ユニットテスト
"""
同期パスの結果レコードのテスト
"""

from dataclasses import FrozenInstanceError

import pytest

from tests.mock_remote import ts
from tidemark.sync.types import ChangedDocumentsPage, SpaceIndexingInfo


class TestSpaceIndexingInfo:
    """SpaceIndexingInfo のテスト"""

    def test_initial_state(self):
        info = SpaceIndexingInfo(space_key="DOC", full_update=False, start_date=ts(0))

        assert info.documents_updated == 0
        assert info.documents_deleted == 0
        assert info.comments_deleted == 0
        assert info.finished_ok is None
        assert info.snapshot().is_running is True

    def test_counters_increment(self):
        info = SpaceIndexingInfo(space_key="DOC", full_update=False, start_date=ts(0))
        info.increment_documents_updated()
        info.increment_documents_updated(2)
        info.increment_documents_deleted()
        info.increment_comments_deleted(3)

        assert info.documents_updated == 3
        assert info.documents_deleted == 1
        assert info.comments_deleted == 3

    def test_force_full_update(self):
        info = SpaceIndexingInfo(space_key="DOC", full_update=False, start_date=ts(0))
        info.force_full_update()
        assert info.full_update is True

    def test_finish_ok_clears_error(self):
        info = SpaceIndexingInfo(space_key="DOC", full_update=True, start_date=ts(0))
        info.finish(True, 1.5, error_message="ignored")

        assert info.finished_ok is True
        assert info.time_elapsed == 1.5
        assert info.error_message is None

    def test_finish_failed(self):
        info = SpaceIndexingInfo(space_key="DOC", full_update=True, start_date=ts(0))
        info.finish(False, 0.2, error_message="boom")

        assert info.finished_ok is False
        assert info.error_message == "boom"

    def test_finish_only_once(self):
        info = SpaceIndexingInfo(space_key="DOC", full_update=True, start_date=ts(0))
        info.finish(True, 0.1)

        with pytest.raises(RuntimeError):
            info.finish(False, 0.1, "again")

    def test_no_mutation_after_finish(self):
        info = SpaceIndexingInfo(space_key="DOC", full_update=False, start_date=ts(0))
        info.finish(True, 0.1)

        with pytest.raises(RuntimeError):
            info.increment_documents_updated()
        with pytest.raises(RuntimeError):
            info.force_full_update()

    def test_snapshot_is_frozen_copy(self):
        info = SpaceIndexingInfo(space_key="DOC", full_update=False, start_date=ts(0))
        snapshot = info.snapshot()
        info.increment_documents_updated()

        assert snapshot.documents_updated == 0
        with pytest.raises(FrozenInstanceError):
            snapshot.documents_updated = 5

    def test_snapshot_to_dict(self):
        info = SpaceIndexingInfo(space_key="DOC", full_update=True, start_date=ts(0))
        info.increment_documents_updated(4)
        info.finish(True, 1.23456)

        data = info.snapshot().to_dict()

        assert data["space_key"] == "DOC"
        assert data["documents_updated"] == 4
        assert data["time_elapsed"] == 1.235
        assert data["finished_ok"] is True
        assert data["start_date"].startswith("2024-03-01T12:00:00")


class TestChangedDocumentsPage:
    """ChangedDocumentsPage のテスト"""

    def test_documents_count(self):
        page = ChangedDocumentsPage(documents=[{"id": "A"}, {"id": "B"}], start_at=4)
        assert page.documents_count == 2
        assert page.total is None
