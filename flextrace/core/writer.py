"""
Append-only NDJSON trace writer.

NDJSONWriter is a single-writer actor: one asyncio worker task owns the file
handle and drains a queue of serialized lines in order, so concurrent callers
never interleave partial lines. File I/O runs in a thread via asyncio.to_thread.

write() returns a future that resolves once the line is on disk. Callers may
await it or fire and forget; a failed append is always surfaced again by
flush() and close() as TraceWriterError.

Usage:
    writer = NDJSONWriter(Path("trace.ndjson"))
    writer.write(record)          # queued
    await writer.write(other)     # queued and awaited
    await writer.close()          # flush, stop the worker, release the handle
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping, Optional, TextIO, Union

from .exceptions import TraceWriterError
from .schemas import TraceRecordBase, dump_record

logger = logging.getLogger(__name__)

RecordLike = Union[TraceRecordBase, Mapping[str, Any]]

_STOP = object()


def encode_line(record: RecordLike) -> str:
    """One NDJSON line (with trailing newline) for a record."""
    return json.dumps(dump_record(record), ensure_ascii=False, separators=(",", ":")) + "\n"


def _reject(future: asyncio.Future, error: BaseException) -> None:
    if future.done():
        return
    future.set_exception(error)
    # Mark retrieved: fire-and-forget callers learn about it from flush()/close()
    future.exception()


class TraceWriter(ABC):
    """Contract shared by the single-file and session-sharded writers."""

    @abstractmethod
    def write(self, record: RecordLike) -> asyncio.Future:
        """Queue one record; the returned future resolves when it is persisted."""

    @abstractmethod
    async def flush(self) -> None:
        """Wait for every queued write. Raises TraceWriterError if one failed."""

    @abstractmethod
    async def close(self) -> None:
        """Flush, then release file handles."""


class NDJSONWriter(TraceWriter):
    """Serializes appends to one NDJSON file through a single worker task."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._handle: Optional[TextIO] = None
        self._error: Optional[BaseException] = None
        self._closed = False
        self.lines_written = 0

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    def write(self, record: RecordLike) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        if self._closed:
            _reject(future, TraceWriterError(f"Writer for {self.path} is closed"))
            return future

        line = encode_line(record)
        self._ensure_worker()
        self._queue.put_nowait((line, future))
        return future

    async def flush(self) -> None:
        if self._queue is not None:
            await self._queue.join()
        self._raise_if_failed()

    async def close(self) -> None:
        if self._closed:
            self._raise_if_failed()
            return
        try:
            if self._queue is not None:
                await self._queue.join()
        finally:
            self._closed = True
            await self._stop_worker()
            if self._handle is not None:
                await asyncio.to_thread(self._handle.close)
                self._handle = None
        self._raise_if_failed()

    # =========================================================================
    # Worker
    # =========================================================================

    def _ensure_worker(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name=f"ndjson-writer:{self.path.name}")

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                line, future = item
                if self._error is not None:
                    # The file is in an unknown state after a failed append
                    _reject(future, self._wrap_error())
                    continue
                try:
                    await asyncio.to_thread(self._append, line)
                except (OSError, ValueError) as e:
                    self._error = e
                    logger.error(f"Failed to append to {self.path}: {e}")
                    _reject(future, self._wrap_error())
                else:
                    self.lines_written += 1
                    if not future.done():
                        future.set_result(None)
            finally:
                self._queue.task_done()

    async def _stop_worker(self) -> None:
        if self._worker is None or self._queue is None:
            return
        if not self._worker.done():
            self._queue.put_nowait(_STOP)
            await self._worker
        self._worker = None

    def _append(self, line: str) -> None:
        if self._handle is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = self.path.open("a", encoding="utf-8")
        self._handle.write(line)
        self._handle.flush()

    def _wrap_error(self) -> TraceWriterError:
        error = TraceWriterError(f"Failed to append to {self.path}: {self._error}")
        error.__cause__ = self._error
        return error

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise self._wrap_error()
