"""Tests for the incremental sync engine."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from drive_rag.config import SyncSettings
from drive_rag.errors import StoreError, UpstreamAPIError
from drive_rag.rag.store import KnowledgeRecord
from drive_rag.rag.sync import (
    FileResult,
    FileState,
    SyncEngine,
    SyncRunStats,
    Throttle,
    parse_timestamp,
)

T0 = "2024-01-01T00:00:00.000Z"
T1 = "2024-02-01T00:00:00.000Z"


class FakeSource:
    """In-memory file source whose bytes are the UTF-8 text itself."""

    def __init__(self, files, contents=None, fetch_failures=()):
        self.files = files
        self.contents = contents or {}
        self.fetch_failures = set(fetch_failures)
        self.fetched = []

    def list_files_recursive(self, folder_id=None):
        return list(self.files)

    def fetch_bytes(self, file):
        if file.name in self.fetch_failures:
            raise UpstreamAPIError(f"download failed: {file.name}", service="drive")
        self.fetched.append(file.name)
        return self.contents.get(file.name, f"Text content of {file.name}").encode("utf-8")


def decode_extract(data, mime_type, file_name):
    return data.decode("utf-8")


def failing_extract(bad_names):
    def _extract(data, mime_type, file_name):
        if file_name in bad_names:
            raise ValueError("corrupt file")
        return data.decode("utf-8")

    return _extract


@pytest.fixture
def make_engine(mock_embedder, memory_store, fast_sync_settings):
    def _make(source, extract=decode_extract, store=None, settings=None):
        return SyncEngine(
            source,
            mock_embedder,
            store or memory_store,
            extract=extract,
            settings=settings or fast_sync_settings,
            teacher_id="teacher-1",
            user_id="user-1",
        )

    return _make


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_zulu_suffix(self):
        """Should parse RFC 3339 timestamps with a Z suffix as UTC."""
        assert parse_timestamp(T0) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        """Should treat timestamps without offset as UTC."""
        assert parse_timestamp("2024-01-01T00:00:00").tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_unreadable(self, value):
        """Should return None for missing or malformed values."""
        assert parse_timestamp(value) is None


class FakeClock:
    """Monotonic clock that only moves when slept on or advanced."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class SlowSource(FakeSource):
    """Source whose downloads take `duration` seconds on the fake clock."""

    def __init__(self, files, clock, duration):
        super().__init__(files)
        self.clock = clock
        self.duration = duration

    def fetch_bytes(self, file):
        self.clock.now += self.duration
        return super().fetch_bytes(file)


class TestThrottle:
    """Tests for the pacing throttle."""

    def test_spaces_consecutive_starts(self):
        """Should sleep for the remaining interval on back-to-back waits."""
        throttle = Throttle(0.5)

        with patch("drive_rag.rag.sync.time.monotonic", return_value=100.0), patch(
            "drive_rag.rag.sync.time.sleep"
        ) as mock_sleep:
            throttle.wait()
            throttle.wait()

        mock_sleep.assert_called_once()
        assert mock_sleep.call_args[0][0] == pytest.approx(0.5)

    def test_pauses_after_slow_file(self):
        """Should wait a full interval after a file that outlasted it."""
        clock = FakeClock()
        throttle = Throttle(0.5)

        with patch("drive_rag.rag.sync.time.monotonic", clock.monotonic), patch(
            "drive_rag.rag.sync.time.sleep", clock.sleep
        ):
            throttle.wait()
            clock.now += 2.0
            throttle.finished()
            throttle.wait()

        assert clock.sleeps == [pytest.approx(0.5)]

    def test_zero_interval_never_sleeps(self):
        """Should not sleep when the interval is zero."""
        throttle = Throttle(0)

        with patch("drive_rag.rag.sync.time.sleep") as mock_sleep:
            for _ in range(3):
                throttle.wait()
                throttle.finished()

        mock_sleep.assert_not_called()


class TestSyncRunStats:
    """Tests for SyncRunStats."""

    def test_record_outcomes(self):
        """Should count each terminal state once."""
        stats = SyncRunStats()
        done = FileResult("a")
        done.advance(FileState.DONE)
        skipped = FileResult("b", reason="unchanged")
        skipped.advance(FileState.SKIPPED)
        empty = FileResult("c", reason="empty")
        empty.advance(FileState.SKIPPED)
        failed = FileResult("d")
        failed.advance(FileState.FAILED)

        for result in (done, skipped, empty, failed):
            stats.record(result)

        assert (stats.processed, stats.skipped, stats.empty, stats.errors) == (1, 2, 1, 1)

    def test_skip_ratio(self):
        """Should compute skipped / (processed + skipped), or None."""
        assert SyncRunStats().skip_ratio is None
        assert SyncRunStats(processed=1, skipped=3).skip_ratio == pytest.approx(0.75)

    def test_summary_keys(self):
        """Should expose the run counters and duration."""
        summary = SyncRunStats(total=2).summary()

        assert set(summary) == {
            "processed", "skipped", "errors", "empty", "total", "durationMs", "skipRatio",
        }


class TestSyncEngine:
    """Tests for SyncEngine.run and process_file."""

    def test_new_file_is_processed(self, make_engine, make_file, memory_store):
        """Should embed and store a file not yet in the knowledge base."""
        file = make_file("Report.pdf", modified_time=T0)
        engine = make_engine(FakeSource([file]))

        summary = engine.run()

        assert summary["processed"] == 1
        assert summary["total"] == 1
        record = memory_store.find_by_key("Report.pdf")
        assert record.title == "Report"
        assert record.file_type == "pdf"
        assert record.file_url == file.url
        assert record.teacher_id == "teacher-1"
        assert record.metadata == {
            "driveFileId": file.id,
            "size": 1024,
            "mimeType": "application/pdf",
            "textLength": len("Text content of Report.pdf"),
            "modifiedTime": T0,
        }

    def test_unchanged_file_is_skipped(self, make_engine, make_file, mock_embedder):
        """Should not fetch or embed a file whose modification time did not move."""
        file = make_file("a.pdf", modified_time=T0)
        make_engine(FakeSource([file])).run()
        mock_embedder.embed.reset_mock()
        source = FakeSource([file])

        summary = make_engine(source).run()

        assert summary["processed"] == 0
        assert summary["skipped"] == 1
        assert summary["skipRatio"] == 1.0
        assert source.fetched == []
        mock_embedder.embed.assert_not_called()

    def test_modified_file_is_updated(self, make_engine, make_file, memory_store):
        """Should replace the record when the source is newer than the stored copy."""
        make_engine(FakeSource([make_file("a.pdf", modified_time=T0)])).run()
        engine = make_engine(
            FakeSource([make_file("a.pdf", modified_time=T1)], {"a.pdf": "Revised content here"})
        )

        result = engine.process_file(make_file("a.pdf", modified_time=T1))

        assert FileState.PERSISTING in result.transitions
        assert result.state == FileState.DONE
        record = memory_store.find_by_key("a.pdf")
        assert record.content == "Revised content here"
        assert record.metadata["modifiedTime"] == T1
        assert memory_store.count() == 1

    def test_older_source_is_skipped(self, make_engine, make_file):
        """Should skip when the source time is not strictly newer."""
        make_engine(FakeSource([make_file("a.pdf", modified_time=T1)])).run()

        result = make_engine(FakeSource([])).process_file(make_file("a.pdf", modified_time=T0))

        assert result.state == FileState.SKIPPED
        assert result.reason == "unchanged"

    def test_state_transitions(self, make_engine, make_file):
        """Should walk the pipeline states in order for a new file."""
        result = make_engine(FakeSource([])).process_file(make_file("a.pdf"))

        assert result.transitions == [
            FileState.DISCOVERED,
            FileState.FETCHING,
            FileState.EXTRACTING,
            FileState.EMBEDDING,
            FileState.PERSISTING,
            FileState.DONE,
        ]

    def test_one_failing_file_does_not_stop_run(self, make_engine, make_file, memory_store):
        """Should count a failed extraction and keep going."""
        files = [make_file(f"{i}.pdf") for i in range(4)]
        engine = make_engine(FakeSource(files), extract=failing_extract({"2.pdf"}))

        summary = engine.run()

        assert summary["errors"] == 1
        assert summary["processed"] == 3
        assert memory_store.find_by_key("2.pdf") is None
        assert memory_store.count() == 3

    def test_fetch_failure_is_counted(self, make_engine, make_file):
        """Should count a failed download as an error."""
        files = [make_file("ok.pdf"), make_file("bad.pdf")]
        engine = make_engine(FakeSource(files, fetch_failures={"bad.pdf"}))

        summary = engine.run()

        assert summary["errors"] == 1
        assert summary["processed"] == 1

    def test_extraction_error_is_wrapped(self, make_engine, make_file):
        """Should record the failure reason on the file result."""
        engine = make_engine(FakeSource([]), extract=failing_extract({"a.pdf"}))

        result = engine.process_file(make_file("a.pdf"))

        assert result.state == FileState.FAILED
        assert "Failed to extract text from a.pdf" in result.error

    def test_empty_text_is_skipped(self, make_engine, make_file, mock_embedder, memory_store):
        """Should skip files with too little text without counting an error."""
        engine = make_engine(FakeSource([make_file("blank.pdf")], {"blank.pdf": "  \n\t "}))

        summary = engine.run()

        assert summary["skipped"] == 1
        assert summary["empty"] == 1
        assert summary["errors"] == 0
        mock_embedder.embed.assert_not_called()
        assert memory_store.find_by_key("blank.pdf") is None

    def test_cleaned_text_is_embedded(self, make_engine, make_file, mock_embedder, memory_store):
        """Should embed the whitespace-normalised text, leaving length limits to the embedder."""
        settings = SyncSettings(rate_limit_delay=0, min_text_length=10, max_text_length=50)
        engine = make_engine(
            FakeSource([make_file("long.pdf")], {"long.pdf": "word\n\n" * 100}),
            settings=settings,
        )

        engine.run()

        embedded = mock_embedder.embed.call_args[0][0]
        assert embedded == " ".join(["word"] * 100)
        assert memory_store.find_by_key("long.pdf").content.startswith("word word")

    def test_embedding_failure_is_counted(self, make_engine, make_file, mock_embedder):
        """Should count an embedding failure as an error."""
        mock_embedder.embed.side_effect = UpstreamAPIError("quota", service="embedding")

        summary = make_engine(FakeSource([make_file("a.pdf")])).run()

        assert summary["errors"] == 1
        assert summary["processed"] == 0

    def test_listing_failure_raises(self, make_engine):
        """Should propagate a listing failure without processing any file."""
        source = MagicMock()
        source.list_files_recursive.side_effect = UpstreamAPIError("no access", service="drive")
        engine = make_engine(source)

        with pytest.raises(UpstreamAPIError):
            engine.run()

        source.fetch_bytes.assert_not_called()

    def test_empty_listing(self, make_engine):
        """Should finish with zero counters when no file is listed."""
        summary = make_engine(FakeSource([])).run()

        assert summary["total"] == 0
        assert summary["processed"] == summary["skipped"] == summary["errors"] == 0
        assert summary["skipRatio"] is None

    def test_lookup_failure_assumes_changed(self, make_engine, make_file):
        """Should reprocess a file when the stored copy cannot be looked up."""
        store = MagicMock()
        store.find_by_key.side_effect = StoreError("down")
        engine = make_engine(FakeSource([]), store=store)

        assert engine.needs_update(make_file("a.pdf")) is True

    def test_unreadable_timestamp_assumes_changed(self, make_engine, make_file):
        """Should reprocess when the stored modification time cannot be read."""
        store = MagicMock()
        store.find_by_key.return_value = KnowledgeRecord(
            file_name="a.pdf", content="x", metadata={"modifiedTime": "garbage"}
        )
        engine = make_engine(FakeSource([]), store=store)

        assert engine.needs_update(make_file("a.pdf", modified_time=T0)) is True

    def test_falls_back_to_updated_at(self, make_engine, make_file):
        """Should compare against updated_at when no source time was stored."""
        store = MagicMock()
        store.find_by_key.return_value = KnowledgeRecord(
            file_name="a.pdf", content="x", metadata={}, updated_at="2024-01-15T00:00:00+00:00"
        )
        engine = make_engine(FakeSource([]), store=store)

        assert engine.needs_update(make_file("a.pdf", modified_time=T0)) is False
        assert engine.needs_update(make_file("a.pdf", modified_time=T1)) is True

    def test_progress_callback(self, make_engine, make_file):
        """Should report progress once per file."""
        callback = MagicMock()
        files = [make_file(f"{i}.pdf") for i in range(3)]

        make_engine(FakeSource(files)).run(progress_callback=callback)

        assert callback.call_count == 3
        last = callback.call_args[0][0]
        assert last["processed"] == 3
        assert last["total"] == 3

    def test_multiple_workers(self, make_engine, make_file):
        """Should produce the same counters with a worker pool."""
        store = MagicMock()
        store.find_by_key.return_value = None
        files = [make_file(f"{i}.pdf") for i in range(6)]
        settings = SyncSettings(rate_limit_delay=0, sync_workers=3)
        engine = make_engine(
            FakeSource(files), extract=failing_extract({"4.pdf"}), store=store, settings=settings
        )

        summary = engine.run()

        assert summary["processed"] == 5
        assert summary["errors"] == 1
        stored = sorted(call.args[0].file_name for call in store.upsert.call_args_list)
        assert stored == ["0.pdf", "1.pdf", "2.pdf", "3.pdf", "5.pdf"]

    def test_duplicate_names_share_one_record(self, make_engine, make_file, memory_store):
        """Should keep a single record when two listed files share a name."""
        files = [
            make_file("same.pdf", file_id="first", modified_time=T0),
            make_file("same.pdf", file_id="second", modified_time=T1),
        ]

        make_engine(FakeSource(files)).run()

        assert memory_store.count() == 1
        assert memory_store.find_by_key("same.pdf").metadata["driveFileId"] == "second"

    def test_single_worker_pauses_between_slow_files(self, make_engine, make_file):
        """Should pause for the full delay after each file, even when files are slow."""
        clock = FakeClock()
        store = MagicMock()
        store.find_by_key.return_value = None
        files = [make_file(f"{i}.pdf") for i in range(3)]
        settings = SyncSettings(rate_limit_delay=0.5, sync_workers=1)
        engine = make_engine(SlowSource(files, clock, duration=0.6), store=store, settings=settings)

        with patch("drive_rag.rag.sync.time.monotonic", clock.monotonic), patch(
            "drive_rag.rag.sync.time.sleep", clock.sleep
        ):
            summary = engine.run()

        assert summary["processed"] == 3
        assert clock.sleeps == [pytest.approx(0.5), pytest.approx(0.5)]
