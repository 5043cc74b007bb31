"""
Session-sharded trace writer with size-based retention.

Layout under the trace root:

    <root>/<project>/<rootSessionId>.ndjson   one file per root session
    <root>/<project>/_capture.ndjson          capture_start / capture_end

Records other than the capture brackets must carry a rootSessionId; records
without one are logged and dropped, never written.

After each completed write, when max_project_bytes > 0, a maintenance run is
queued behind the previous one. It deletes the oldest inactive .ndjson files
(by mtime) until the project directory fits the budget. Files with an open
writer are never deleted. Maintenance errors are logged and swallowed.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .constants import (
    CAPTURE_FILE_NAME,
    CAPTURE_RECORD_TYPES,
    DEFAULT_MAX_PROJECT_BYTES,
    TRACE_FILE_SUFFIX,
)
from .schemas import dump_record
from .trace_utils import safe_name
from .writer import NDJSONWriter, RecordLike, TraceWriter

logger = logging.getLogger(__name__)


@dataclass
class TraceFileStat:
    """Size and age of one trace file in the project directory."""
    path: Path
    size: int
    mtime: float
    active: bool


class SessionTraceWriter(TraceWriter):
    """Routes records to one NDJSON file per root session."""

    def __init__(
        self,
        root_dir: Union[str, Path],
        project_id: str,
        max_project_bytes: int = DEFAULT_MAX_PROJECT_BYTES,
    ) -> None:
        self.root_dir = Path(root_dir).expanduser().resolve()
        self.project_id = project_id
        self.project_dir = self.root_dir / safe_name(project_id)
        self.max_project_bytes = max(0, int(max_project_bytes))
        self._writers: dict[str, NDJSONWriter] = {}
        self._capture_writer: Optional[NDJSONWriter] = None
        self._active_paths: set[Path] = set()
        self._maintenance: Optional[asyncio.Task] = None
        self._maintenance_queued = False
        self.dropped_records = 0

    def path_for_root(self, root_session_id: str) -> Path:
        return self.project_dir / f"{safe_name(root_session_id)}{TRACE_FILE_SUFFIX}"

    def write(self, record: RecordLike) -> asyncio.Future:
        payload = dump_record(record)
        record_type = payload.get("type")

        if record_type in CAPTURE_RECORD_TYPES:
            writer = self._get_capture_writer()
        else:
            root_session_id = payload.get("rootSessionId")
            if not isinstance(root_session_id, str) or not root_session_id:
                self.dropped_records += 1
                logger.error(
                    f"Dropping {record_type} record without rootSessionId "
                    f"(sessionId={payload.get('sessionId')})"
                )
                future = asyncio.get_running_loop().create_future()
                future.set_result(None)
                return future
            writer = self._get_root_writer(root_session_id)

        future = writer.write(payload)
        future.add_done_callback(self._on_write_done)
        return future

    async def flush(self) -> None:
        writers = self._all_writers()
        results = await asyncio.gather(*(w.flush() for w in writers), return_exceptions=True)
        await self.wait_for_maintenance()
        self._raise_first(results)

    async def close(self) -> None:
        writers = self._all_writers()
        results = await asyncio.gather(*(w.close() for w in writers), return_exceptions=True)
        await self.wait_for_maintenance()
        self._writers.clear()
        self._capture_writer = None
        self._active_paths.clear()
        self._raise_first(results)

    async def wait_for_maintenance(self) -> None:
        """Wait until no retention run is queued or in progress."""
        while self._maintenance is not None and not self._maintenance.done():
            await self._maintenance

    # =========================================================================
    # Routing
    # =========================================================================

    def _get_root_writer(self, root_session_id: str) -> NDJSONWriter:
        key = safe_name(root_session_id)
        writer = self._writers.get(key)
        if writer is None:
            path = self.path_for_root(root_session_id)
            writer = NDJSONWriter(path)
            self._writers[key] = writer
            self._active_paths.add(path)
            logger.debug(f"Opened trace shard {path}")
        return writer

    def _get_capture_writer(self) -> NDJSONWriter:
        if self._capture_writer is None:
            path = self.project_dir / CAPTURE_FILE_NAME
            self._capture_writer = NDJSONWriter(path)
            self._active_paths.add(path)
        return self._capture_writer

    def _all_writers(self) -> list[NDJSONWriter]:
        writers = list(self._writers.values())
        if self._capture_writer is not None:
            writers.append(self._capture_writer)
        return writers

    @staticmethod
    def _raise_first(results: list) -> None:
        for result in results:
            if isinstance(result, BaseException):
                raise result

    # =========================================================================
    # Retention
    # =========================================================================

    def _on_write_done(self, future: asyncio.Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        if self.max_project_bytes <= 0 or self._maintenance_queued:
            return
        self._maintenance_queued = True
        self._maintenance = asyncio.ensure_future(self._run_maintenance(self._maintenance))

    async def _run_maintenance(self, previous: Optional[asyncio.Task]) -> None:
        if previous is not None and not previous.done():
            await previous
        self._maintenance_queued = False
        try:
            deleted = await asyncio.to_thread(self.enforce_project_size_limit)
        except OSError as e:
            logger.error(f"Failed to enforce project size limit for {self.project_dir}: {e}")
            return
        if deleted:
            logger.info(f"Retention removed {len(deleted)} trace files from {self.project_dir}")

    def list_trace_files(self) -> list[TraceFileStat]:
        """Stat every .ndjson file in the project directory."""
        try:
            entries = list(os.scandir(self.project_dir))
        except FileNotFoundError:
            return []

        files: list[TraceFileStat] = []
        for entry in entries:
            if not entry.name.endswith(TRACE_FILE_SUFFIX):
                continue
            try:
                if not entry.is_file():
                    continue
                stat = entry.stat()
            except OSError:
                continue
            path = Path(entry.path)
            files.append(
                TraceFileStat(
                    path=path,
                    size=stat.st_size,
                    mtime=stat.st_mtime,
                    active=path in self._active_paths,
                )
            )
        return files

    def enforce_project_size_limit(self) -> list[Path]:
        """
        Delete oldest inactive trace files until the project fits the budget.

        Returns:
            Paths that were deleted, oldest first.
        """
        if self.max_project_bytes <= 0:
            return []

        files = self.list_trace_files()
        total = sum(f.size for f in files)
        if total <= self.max_project_bytes:
            return []

        deleted: list[Path] = []
        deletable = sorted((f for f in files if not f.active), key=lambda f: f.mtime)
        for item in deletable:
            if total <= self.max_project_bytes:
                break
            try:
                item.path.unlink()
            except FileNotFoundError:
                total -= item.size
                continue
            except OSError as e:
                logger.warning(f"Could not delete {item.path}: {e}")
                continue
            total -= item.size
            deleted.append(item.path)

        if total > self.max_project_bytes:
            logger.warning(
                f"Project {self.project_dir} still over budget "
                f"({total} > {self.max_project_bytes} bytes); only active files remain"
            )
        return deleted
