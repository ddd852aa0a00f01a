"""
Composable wrappers around readable byte streams.

Each decorator wraps one file-like object exposing ``read(size=-1)`` and
``close()`` and is itself one, so they nest. ``StreamPipeline`` fixes the
nesting order per transfer direction.
"""

import base64
import logging
import threading
import time
import zlib
from typing import BinaryIO, Callable, Optional, Protocol, Tuple

import xxhash

from .config import IO_CHUNK_SIZE, PROGRESS_FLUSH_THRESHOLD
from .models import DataTransferStatus, DataTransferType

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def acquire(self, want: int) -> Tuple[bool, float]:
        """Return (True, 0) if ``want`` bytes may be transferred now, else (False, seconds to wait)."""


class TokenBucketRateLimiter:
    """Thread-safe token bucket: ``rate`` bytes per second, bursting up to ``capacity``."""

    def __init__(self, rate: int, capacity: Optional[int] = None, clock=time.monotonic) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.capacity = capacity or rate
        self._clock = clock
        self._tokens = float(self.capacity)
        self._last = clock()
        self._lock = threading.Lock()

    def acquire(self, want: int) -> Tuple[bool, float]:
        # Requests larger than the bucket are granted once it is full
        want = min(want, self.capacity)
        with self._lock:
            now = self._clock()
            self._tokens = min(self.capacity, self._tokens + (now - self._last) * self.rate)
            self._last = now
            if self._tokens >= want:
                self._tokens -= want
                return True, 0.0
            return False, (want - self._tokens) / self.rate


def _post(listener: Optional[Callable[[DataTransferStatus], None]], status: DataTransferStatus) -> None:
    if listener is None:
        return
    try:
        listener(status)
    except Exception as e:
        logger.warning(f"Progress listener error: {e}")


class StreamDecorator:
    """Base wrapper forwarding reads and close to ``base``."""

    def __init__(self, base: BinaryIO) -> None:
        self.base = base

    def read(self, size: int = -1) -> bytes:
        return self.base.read(size)

    def close(self) -> None:
        self.base.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class FileSliceReader:
    """Read ``length`` bytes of ``path`` starting at ``offset``."""

    def __init__(self, path: str, offset: int, length: int) -> None:
        self._file = open(path, "rb")
        self._file.seek(offset)
        self._remaining = length

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        data = self._file.read(size)
        self._remaining -= len(data)
        return data

    def close(self) -> None:
        self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class RateLimitedReader(StreamDecorator):
    """Wait for the rate limiter to grant each read before delegating it."""

    def __init__(self, base: BinaryIO, limiter: RateLimiter, sleep=time.sleep) -> None:
        super().__init__(base)
        self.limiter = limiter
        self._sleep = sleep

    def _acquire(self, want: int) -> None:
        while True:
            ok, wait = self.limiter.acquire(want)
            if ok:
                return
            self._sleep(wait)

    def read(self, size: int = -1) -> bytes:
        if size is not None and size >= 0:
            self._acquire(size)
            return self.base.read(size)

        chunks = []
        while True:
            self._acquire(IO_CHUNK_SIZE)
            chunk = self.base.read(IO_CHUNK_SIZE)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)


class ProgressReader(StreamDecorator):
    """Report progress of a single stream to a data transfer listener."""

    def __init__(self, base: BinaryIO, listener, total: int) -> None:
        super().__init__(base)
        self.listener = listener
        self.total = total
        self.consumed = 0
        self._started = False

    def read(self, size: int = -1) -> bytes:
        if not self._started:
            self._started = True
            _post(self.listener, DataTransferStatus(type=DataTransferType.STARTED, total_bytes=self.total))
        try:
            data = self.base.read(size)
        except Exception:
            _post(self.listener, DataTransferStatus(type=DataTransferType.FAILED, total_bytes=self.total))
            raise
        if not data:
            return data

        self.consumed += len(data)
        _post(
            self.listener,
            DataTransferStatus(
                type=DataTransferType.RW,
                rw_once_bytes=len(data),
                consumed_bytes=self.consumed,
                total_bytes=self.total,
            ),
        )
        if self.consumed == self.total:
            _post(
                self.listener,
                DataTransferStatus(
                    type=DataTransferType.SUCCEEDED,
                    consumed_bytes=self.consumed,
                    total_bytes=self.total,
                ),
            )
        return data


class ParallelProgress:
    """Progress shared by the part streams of one transfer."""

    def __init__(
        self,
        listener,
        total: int,
        consumed: int = 0,
        flush_threshold: int = PROGRESS_FLUSH_THRESHOLD,
    ) -> None:
        self.listener = listener
        self.total = total
        self.consumed = consumed
        self.subtotal = 0
        self.flush_threshold = flush_threshold
        self._succeeded = False
        self._lock = threading.Lock()

    def add(self, n: int) -> None:
        """Account for ``n`` bytes and emit any events that crossing a boundary triggers."""
        events = []
        with self._lock:
            self.consumed += n
            self.subtotal += n
            if self.subtotal >= self.flush_threshold:
                events.append(self._rw_event())
                self.subtotal = 0
            if self.consumed == self.total and not self._succeeded:
                self._succeeded = True
                if self.subtotal > 0:
                    events.append(self._rw_event())
                    self.subtotal = 0
                events.append(
                    DataTransferStatus(
                        type=DataTransferType.SUCCEEDED,
                        consumed_bytes=self.consumed,
                        total_bytes=self.total,
                    )
                )
            # Listener calls are ordered by the lock so RW never follows SUCCEEDED
            for event in events:
                _post(self.listener, event)

    def finish(self) -> None:
        """Emit SUCCEEDED for a transfer that had nothing left to read."""
        self.add(0)

    def rollback(self, n: int) -> None:
        """Forget ``n`` bytes of an attempt that failed and will be retried."""
        with self._lock:
            self.consumed -= n
            self.subtotal = max(0, self.subtotal - n)

    def started(self) -> None:
        _post(self.listener, DataTransferStatus(type=DataTransferType.STARTED, total_bytes=self.total))

    def failed(self) -> None:
        _post(self.listener, DataTransferStatus(type=DataTransferType.FAILED, total_bytes=self.total))

    def _rw_event(self) -> DataTransferStatus:
        return DataTransferStatus(
            type=DataTransferType.RW,
            rw_once_bytes=self.subtotal,
            consumed_bytes=self.consumed,
            total_bytes=self.total,
        )


class ParallelProgressReader(StreamDecorator):
    """Report one part stream's bytes into a shared :class:`ParallelProgress`."""

    def __init__(self, base: BinaryIO, progress: ParallelProgress) -> None:
        super().__init__(base)
        self.progress = progress
        self.consumed = 0

    def read(self, size: int = -1) -> bytes:
        try:
            data = self.base.read(size)
        except Exception:
            self.progress.failed()
            raise
        if data:
            self.consumed += len(data)
            self.progress.add(len(data))
        return data

    def rollback(self) -> None:
        if self.consumed:
            self.progress.rollback(self.consumed)
            self.consumed = 0


class ChecksumReader(StreamDecorator):
    """Accumulate an xxh64 digest of everything read."""

    def __init__(self, base: BinaryIO) -> None:
        super().__init__(base)
        self._hasher = xxhash.xxh64()

    def read(self, size: int = -1) -> bytes:
        data = self.base.read(size)
        if data:
            self._hasher.update(data)
        return data

    @property
    def checksum(self) -> int:
        return self._hasher.intdigest()


def crc32_base64(value: int) -> str:
    """Encode a CRC32 the way S3 reports it: base64 of the 4 big-endian bytes."""
    return base64.b64encode(value.to_bytes(4, "big")).decode("ascii")


class CRC32Reader(StreamDecorator):
    """Accumulate the CRC32 of everything read, for comparison with the server's value."""

    def __init__(self, base: BinaryIO) -> None:
        super().__init__(base)
        self._crc = 0

    def read(self, size: int = -1) -> bytes:
        data = self.base.read(size)
        if data:
            self._crc = zlib.crc32(data, self._crc)
        return data

    @property
    def value(self) -> int:
        return self._crc & 0xFFFFFFFF

    @property
    def encoded(self) -> str:
        return crc32_base64(self.value)


def file_checksum(path: str, chunk_size: int = IO_CHUNK_SIZE) -> int:
    """Return the xxh64 digest of a local file."""
    hasher = xxhash.xxh64()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.intdigest()


class PipelineStreams:
    """The outermost stream of a pipeline plus handles on the stages callers inspect."""

    def __init__(
        self,
        stream,
        checksum: ChecksumReader,
        progress: Optional[ParallelProgressReader],
        crc32: Optional[CRC32Reader] = None,
    ) -> None:
        self.stream = stream
        self.checksum = checksum
        self.progress = progress
        self.crc32 = crc32

    def read(self, size: int = -1) -> bytes:
        return self.stream.read(size)

    def close(self) -> None:
        self.stream.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class StreamPipeline:
    """Wrap part streams in a fixed order: checksum, then progress, then rate limit.

    Upload parts wrap a file slice; download parts wrap the response body. In
    both directions the checksum sees raw bytes and the limiter is outermost.
    Upload parts also get a CRC32 stage under the xxh64 one.
    """

    UPLOAD = "upload"
    DOWNLOAD = "download"

    def __init__(
        self,
        direction: str,
        progress: Optional[ParallelProgress] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        if direction not in (self.UPLOAD, self.DOWNLOAD):
            raise ValueError(f"Unknown transfer direction: {direction}")
        self.direction = direction
        self.progress = progress
        self.rate_limiter = rate_limiter

    def wrap(self, base: BinaryIO) -> PipelineStreams:
        crc32 = None
        if self.direction == self.UPLOAD:
            crc32 = CRC32Reader(base)
            base = crc32
        checksum = ChecksumReader(base)
        stream = checksum
        progress_reader = None
        if self.progress is not None:
            progress_reader = ParallelProgressReader(stream, self.progress)
            stream = progress_reader
        if self.rate_limiter is not None:
            stream = RateLimitedReader(stream, self.rate_limiter)
        return PipelineStreams(stream, checksum, progress_reader, crc32)
