"""
Document synchronization logic.

Walks the Drive folder tree, then decides per file whether to skip, insert
or update its knowledge-base record. One file failing never stops the run;
failures are counted in the run statistics instead.
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from queue import Empty, Queue
from typing import Callable, Optional

from ..config import SEPARATOR, SyncSettings
from ..errors import FileProcessingError
from ..logging_config import logger
from .embeddings import Embedder
from .parser import clean_text, extract_text, get_file_type, title_from_file_name
from .store import KnowledgeRecord, KnowledgeStore


class FileState(str, Enum):
    DISCOVERED = "discovered"
    SKIPPED = "skipped"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    EMBEDDING = "embedding"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class FileResult:
    """Outcome of one file's pass through the pipeline."""

    file_name: str
    state: FileState = FileState.DISCOVERED
    transitions: list[FileState] = field(default_factory=lambda: [FileState.DISCOVERED])
    reason: str | None = None
    error: str | None = None

    def advance(self, state: FileState):
        self.state = state
        self.transitions.append(state)


@dataclass
class SyncRunStats:
    """Counters for a single sync run."""

    processed: int = 0
    skipped: int = 0
    errors: int = 0
    empty: int = 0
    total: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None

    def record(self, result: FileResult):
        if result.state == FileState.DONE:
            self.processed += 1
        elif result.state == FileState.SKIPPED:
            self.skipped += 1
            if result.reason == "empty":
                self.empty += 1
        elif result.state == FileState.FAILED:
            self.errors += 1

    @property
    def duration_ms(self) -> int:
        if not self.start_time:
            return 0
        end = self.end_time or datetime.now(timezone.utc)
        return round((end - self.start_time).total_seconds() * 1000)

    @property
    def skip_ratio(self) -> float | None:
        handled = self.processed + self.skipped
        return self.skipped / handled if handled else None

    def summary(self) -> dict:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
            "empty": self.empty,
            "total": self.total,
            "durationMs": self.duration_ms,
            "skipRatio": self.skip_ratio,
        }


class Throttle:
    """
    Paces file processing across all workers.

    A file starts at least `interval` seconds after the previous start and at
    least `interval` seconds after the most recent finish, so a slow file is
    still followed by a pause.
    """

    def __init__(self, interval: float):
        self.interval = interval
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def wait(self):
        """Block until the next file may start."""
        with self._lock:
            now = time.monotonic()
            start = max(now, self._next_slot)
            self._next_slot = start + self.interval

        delay = start - now
        if delay > 0:
            time.sleep(delay)

    def finished(self):
        """Record that a file finished processing."""
        with self._lock:
            self._next_slot = max(self._next_slot, time.monotonic() + self.interval)


def parse_timestamp(value) -> datetime | None:
    """Parse an RFC 3339 / ISO 8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SyncEngine:
    """Incremental synchronizer from a file source into the knowledge store."""

    def __init__(
        self,
        source,
        embedder: Embedder,
        store: KnowledgeStore,
        extract: Callable[[bytes, str, str], str] = extract_text,
        settings: SyncSettings | None = None,
        folder_id: str | None = None,
        teacher_id: str | None = None,
        user_id: str | None = None,
    ):
        self.source = source
        self.embedder = embedder
        self.store = store
        self.extract = extract
        self.settings = settings or SyncSettings()
        self.folder_id = folder_id
        self.teacher_id = teacher_id
        self.user_id = user_id

    def run(
        self, progress_callback: Optional[Callable[[dict], None]] = None
    ) -> dict:
        """
        Synchronize every file under the configured folder.

        Args:
            progress_callback: Optional callback to report progress updates.

        Returns:
            Run summary (processed, skipped, errors, durationMs, ...).

        Raises:
            UpstreamAPIError: If the listing phase fails; no file is touched then.
        """
        stats = SyncRunStats(start_time=datetime.now(timezone.utc))

        logger.info(SEPARATOR)
        logger.info("📊 Starting sync process...")
        logger.info(SEPARATOR)

        try:
            files = self.source.list_files_recursive(self.folder_id)
            stats.total = len(files)

            if files:
                logger.info(f"📁 Found {len(files)} files, checking which need processing...")
                self._warn_duplicate_names(files)
                self._process_all(files, stats, progress_callback)
            else:
                logger.info("📂 No files found to sync")
        except Exception as e:
            logger.error(f"❌ Sync process failed: {e}")
            raise
        finally:
            stats.end_time = datetime.now(timezone.utc)
            self._log_summary(stats)

        return stats.summary()

    def _process_all(self, files: list, stats: SyncRunStats, progress_callback):
        queue = Queue()
        for i, file in enumerate(files, 1):
            queue.put((i, file))

        total = len(files)
        lock = threading.Lock()
        throttle = Throttle(self.settings.rate_limit_delay)

        def worker():
            while True:
                try:
                    index, file = queue.get_nowait()
                except Empty:
                    return

                throttle.wait()
                logger.info(f"[{index}/{total}] Processing: {file.name}")
                result = self.process_file(file)
                throttle.finished()

                with lock:
                    stats.record(result)
                    done = stats.processed + stats.skipped + stats.errors
                    if progress_callback:
                        progress_callback({
                            "status": result.state.value,
                            "current_file": file.name,
                            "processed": done,
                            "total": total,
                        })

        num_workers = min(self.settings.sync_workers, total)
        if num_workers <= 1:
            worker()
            return

        logger.info(f"🚀 Processing with {num_workers} workers")
        threads = [threading.Thread(target=worker, daemon=True) for _ in range(num_workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    def process_file(self, file) -> FileResult:
        """
        Run one file through change detection, fetch, extract, embed and persist.

        Never raises; a failure at any stage ends in FileState.FAILED.
        """
        result = FileResult(file_name=file.name)

        try:
            if not self.needs_update(file):
                logger.info(f"⏭️ Skipping (already up to date): {file.name}")
                result.reason = "unchanged"
                result.advance(FileState.SKIPPED)
                return result

            result.advance(FileState.FETCHING)
            data = self.source.fetch_bytes(file)

            result.advance(FileState.EXTRACTING)
            text = clean_text(self._extract(data, file))

            if len(text) < self.settings.min_text_length:
                logger.warning(f"⚠️ File {file.name} has no extractable text content")
                result.reason = "empty"
                result.advance(FileState.SKIPPED)
                return result

            result.advance(FileState.EMBEDDING)
            embedding = self.embedder.embed(text)

            result.advance(FileState.PERSISTING)
            self.store.upsert(self._build_record(file, text, embedding))

            result.advance(FileState.DONE)
            logger.info(f"✅ Successfully processed: {file.name}")
        except Exception as e:
            logger.error(f"❌ Error processing file {file.name}: {e}")
            result.error = str(e)
            result.advance(FileState.FAILED)

        return result

    def needs_update(self, file) -> bool:
        """
        Decide whether a file must be (re)processed.

        New files always are. Existing ones only when the source modification
        time is strictly newer than the stored one. Any doubt (lookup error,
        unreadable timestamp) means yes.
        """
        try:
            existing = self.store.find_by_key(file.name)
        except Exception as e:
            logger.warning(f"Error checking update status for {file.name}, assuming changed: {e}")
            return True

        if existing is None:
            logger.info(f"📝 New file detected: {file.name}")
            return True

        stored_id = existing.metadata.get("driveFileId")
        if stored_id and stored_id != file.id:
            logger.warning(
                f"⚠️ Name collision: {file.name} is stored for file {stored_id}, "
                f"now listed as {file.id}"
            )

        source_time = parse_timestamp(file.modified_time)
        stored_time = parse_timestamp(existing.metadata.get("modifiedTime")) or parse_timestamp(
            existing.updated_at
        )

        if source_time is None or stored_time is None:
            return True

        if source_time > stored_time:
            logger.info(f"🔄 File modified: {file.name}")
            logger.info(f"   Source: {source_time.isoformat()}")
            logger.info(f"   Stored: {stored_time.isoformat()}")
            return True

        return False

    def _extract(self, data: bytes, file) -> str:
        try:
            return self.extract(data, file.mime_type, file.name)
        except FileProcessingError:
            raise
        except Exception as e:
            raise FileProcessingError(
                f"Failed to extract text from {file.name}",
                file_name=file.name,
                details={"mimeType": file.mime_type, "originalError": str(e)},
            ) from e

    def _build_record(self, file, text: str, embedding: list[float]) -> KnowledgeRecord:
        return KnowledgeRecord(
            title=title_from_file_name(file.name),
            file_name=file.name,
            file_url=file.url,
            file_type=get_file_type(file.mime_type),
            content=text,
            embedding=embedding,
            metadata={
                "driveFileId": file.id,
                "size": file.size,
                "mimeType": file.mime_type,
                "textLength": len(text),
                "modifiedTime": file.modified_time,
            },
            chunk_index=0,
            teacher_id=self.teacher_id,
            user_id=self.user_id,
        )

    @staticmethod
    def _warn_duplicate_names(files: list):
        seen = {}
        for file in files:
            if file.name in seen and seen[file.name] != file.id:
                logger.warning(
                    f"⚠️ Duplicate file name {file.name} ({seen[file.name]}, {file.id}); "
                    "both map to the same record"
                )
            seen.setdefault(file.name, file.id)

    @staticmethod
    def _log_summary(stats: SyncRunStats):
        duration = stats.duration_ms / 1000
        minutes, seconds = divmod(int(duration), 60)
        ratio = stats.skip_ratio
        efficiency = f"{ratio * 100:.1f}% skipped" if ratio is not None else "N/A"

        logger.info(SEPARATOR)
        logger.info("📊 SYNC SUMMARY")
        logger.info(SEPARATOR)
        logger.info(f"⏱️ Duration: {minutes}m {seconds}s")
        logger.info(f"✅ Processed (new/updated): {stats.processed}")
        logger.info(f"⏭️ Skipped (no changes): {stats.skipped} ({stats.empty} without text)")
        logger.info(f"❌ Errors: {stats.errors}")
        logger.info(f"📈 Total efficiency: {efficiency}")
        logger.info(SEPARATOR)

        if stats.processed == 0 and stats.skipped > 0 and stats.errors == 0:
            logger.info("✨ All files are up to date! No processing needed.")
        elif stats.processed > 0:
            logger.info(f"✨ Successfully updated {stats.processed} file(s).")
