"""Fixtures for the backup pipeline: a scripted platform and a recording job store."""

import pytest

from dbvault.jobs.store import JobStore
from dbvault.remote.client import ExportStatus, ImportUpload, IngestStatus, QueryResult


class FakePlatform:
    """Scripted stand-in for PlatformClient.

    ``export_polls`` and ``import_polls`` are consumed in order; once a
    list runs out its last entry repeats.
    """

    def __init__(self):
        self.start_status = ExportStatus(bookmark="bm-1")
        self.export_polls: list[ExportStatus] = []
        self.dump = b"CREATE TABLE t (id INTEGER);\nINSERT INTO t VALUES (1);\n"
        self.etag = None  # None means echo the digest sent to init_import
        self.import_polls: list[IngestStatus] = [IngestStatus(done=True)]
        self.query_handlers: dict[str, object] = {}
        self.calls: list[tuple] = []
        self._digest = None
        self.live_database_ids: set[str] = set()

    async def start_export(self, database_id):
        self.calls.append(("start_export", database_id))
        return self.start_status

    async def poll_export(self, database_id, bookmark):
        self.calls.append(("poll_export", bookmark))
        if len(self.export_polls) > 1:
            return self.export_polls.pop(0)
        return self.export_polls[0] if self.export_polls else ExportStatus(bookmark=bookmark)

    async def download(self, signed_url):
        self.calls.append(("download", signed_url))
        return self.dump

    async def init_import(self, database_id, etag):
        self.calls.append(("init_import", etag))
        self._digest = etag
        return ImportUpload(upload_url="https://upload.test/x", filename="dump.sql")

    async def upload(self, upload_url, content):
        self.calls.append(("upload", len(content)))
        return self.etag if self.etag is not None else self._digest

    async def ingest(self, database_id, etag, filename):
        self.calls.append(("ingest", filename))
        return IngestStatus(bookmark="ingest-bm")

    async def poll_import(self, database_id, bookmark):
        self.calls.append(("poll_import", bookmark))
        if len(self.import_polls) > 1:
            return self.import_polls.pop(0)
        return self.import_polls[0]

    async def query(self, database_id, sql, params=None):
        self.calls.append(("query", sql, params))
        for prefix, handler in self.query_handlers.items():
            if sql.startswith(prefix):
                if isinstance(handler, Exception):
                    raise handler
                return QueryResult(rows=handler)
        return QueryResult()

    async def list_database_ids(self):
        self.calls.append(("list_database_ids",))
        return set(self.live_database_ids)

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


class FakeDispatcher:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def trigger(self, event_type, data):
        self.events.append((event_type, data))

    def names(self):
        return [name for name, _ in self.events]


class RecordingJobStore(JobStore):
    """JobStore that also keeps every stored progress value per job."""

    def __init__(self, db_session_factory):
        super().__init__(db_session_factory)
        self.progress: dict[str, list[float]] = {}

    async def update_progress(self, job_id, processed, total=None, error_count=None):
        stored = await super().update_progress(job_id, processed, total, error_count)
        if stored is not None:
            self.progress.setdefault(job_id, []).append(stored)
        return stored


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def job_store(session_factory):
    return RecordingJobStore(session_factory)
