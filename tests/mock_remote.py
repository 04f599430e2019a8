# Mock remote systems for testing
"""
Fake implementations of the remote document source used by sync tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from tidemark.errors import SourceCommunicationError
from tidemark.sync.types import ChangedDocumentsPage

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def ts(seconds: float) -> datetime:
    """Timestamp ``seconds`` after BASE_TIME."""
    return BASE_TIME + timedelta(seconds=seconds)


def make_doc(doc_id: str, updated: datetime, **fields: Any) -> dict[str, Any]:
    """Create a raw remote document."""
    return {"id": doc_id, "updated": updated.isoformat(), **fields}


class FakeRemoteClient:
    """In-memory remote system.

    Returns documents updated at or after ``updated_after`` ordered by update
    timestamp, paginated by offset like a typical REST search endpoint.
    """

    def __init__(
        self,
        documents: list[dict[str, Any]] | None = None,
        page_size: int = 2,
        report_total: bool = True,
    ) -> None:
        self.documents = list(documents or [])
        self.page_size = page_size
        self.report_total = report_total
        self.calls: list[tuple[str, int, datetime | None]] = []
        self.fail_on_call: int | None = None
        self.closed = False

    def add(self, *documents: dict[str, Any]) -> None:
        self.documents.extend(documents)

    async def get_changed_documents(
        self,
        space_key: str,
        start_at: int,
        updated_after: datetime | None,
    ) -> ChangedDocumentsPage:
        self.calls.append((space_key, start_at, updated_after))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise SourceCommunicationError("remote system unavailable", status_code=503)

        matching = sorted(
            (
                d for d in self.documents
                if updated_after is None
                or datetime.fromisoformat(d["updated"]) >= updated_after
            ),
            key=lambda d: datetime.fromisoformat(d["updated"]),
        )
        page = matching[start_at:start_at + self.page_size]
        return ChangedDocumentsPage(
            documents=[dict(d) for d in page],
            start_at=start_at,
            total=len(matching) if self.report_total else None,
        )

    async def close(self) -> None:
        self.closed = True


class ScriptedRemoteClient:
    """Returns a fixed sequence of pages regardless of the request."""

    def __init__(self, pages: list[ChangedDocumentsPage]) -> None:
        self.pages = list(pages)
        self.calls: list[tuple[str, int, datetime | None]] = []

    async def get_changed_documents(
        self,
        space_key: str,
        start_at: int,
        updated_after: datetime | None,
    ) -> ChangedDocumentsPage:
        self.calls.append((space_key, start_at, updated_after))
        if not self.pages:
            return ChangedDocumentsPage(documents=[], start_at=start_at, total=None)
        return self.pages.pop(0)

    async def close(self) -> None:
        return None


class RecordingListener:
    """Collects finished pass snapshots."""

    def __init__(self) -> None:
        self.snapshots = []

    def on_indexing_finished(self, snapshot) -> None:
        self.snapshots.append(snapshot)
