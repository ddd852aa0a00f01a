"""
Shared fixtures: an in-memory object store standing in for S3.
"""

import hashlib
import io
import os
import threading
import zlib
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import pytest
import xxhash

from partwise.core.config import CHECKSUM_METADATA_KEY, TransferConfig
from partwise.core.exceptions import ServerError
from partwise.core.models import ObjectMetadata, UploadedPart
from partwise.core.planner import PartLimits
from partwise.core.streams import crc32_base64

KB = 1024

# Lets tests use part sizes of a few KB
SMALL_LIMITS = PartLimits(min_part_size=1, max_part_size=1 << 30, max_part_count=10000)


class FakeTransport:
    """Thread-safe in-memory implementation of the Transport capabilities.

    Failures are injected per (operation, part_number) and consumed in order.
    Every call is recorded in ``calls`` as ``(operation, part_number)``.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.objects: Dict[tuple, dict] = {}
        self.uploads: Dict[str, dict] = {}
        self.calls: List[tuple] = []
        self.completed_parts: List[List[int]] = []
        self.aborted: List[str] = []
        self.short_reads: Dict[int, int] = {}
        self.merge_then_fail = False
        self.on_upload_part: Optional[Callable[[int], None]] = None
        self.on_get_object: Optional[Callable[[int], None]] = None
        self._failures: Dict[tuple, list] = defaultdict(list)
        self._next_upload = 0

    # test helpers

    def put_object(self, bucket: str, key: str, data: bytes, checksum: Optional[int] = None) -> None:
        metadata = {}
        if checksum is None:
            checksum = xxhash.xxh64(data).intdigest()
        if checksum is not False:
            metadata[CHECKSUM_METADATA_KEY] = str(checksum)
        with self._lock:
            self.objects[(bucket, key)] = {
                "data": data,
                "etag": hashlib.md5(data).hexdigest(),
                "metadata": metadata,
                "last_modified": datetime(2024, 1, 1, tzinfo=timezone.utc),
            }

    def fail(self, operation: str, error: Exception, part_number: Optional[int] = None, times: int = 1) -> None:
        with self._lock:
            self._failures[(operation, part_number)].extend([error] * times)

    def calls_for(self, operation: str) -> List[Optional[int]]:
        with self._lock:
            return [n for op, n in self.calls if op == operation]

    def reset_calls(self) -> None:
        with self._lock:
            self.calls.clear()

    def _record(self, operation: str, part_number: Optional[int] = None) -> None:
        with self._lock:
            self.calls.append((operation, part_number))
            pending = self._failures.get((operation, part_number))
            if pending:
                raise pending.pop(0)

    # Transport

    def fetch_object_metadata(self, bucket, key, version_id=None, conditions=None, sse=None):
        self._record("head_object")
        with self._lock:
            obj = self.objects.get((bucket, key))
            if obj is None:
                raise ServerError("head_object: Not Found", 404, code="NoSuchKey")
            raw = obj["metadata"].get(CHECKSUM_METADATA_KEY)
            return ObjectMetadata(
                etag=obj["etag"],
                size=len(obj["data"]),
                last_modified=obj["last_modified"],
                checksum=int(raw) if raw else None,
            )

    def create_multipart_upload(
        self, bucket, key, metadata=None, content_type=None, sse=None, checksum_algorithm=None
    ):
        self._record("create_multipart_upload")
        with self._lock:
            self._next_upload += 1
            upload_id = f"upload-{self._next_upload}"
            self.uploads[upload_id] = {
                "bucket": bucket,
                "key": key,
                "metadata": dict(metadata or {}),
                "checksum_algorithm": checksum_algorithm,
                "parts": {},
            }
            return upload_id

    def store_part(self, part_number: int, data: bytes) -> bytes:
        """Bytes the store keeps for a part; subclasses may alter them."""
        return data

    def upload_part(
        self, bucket, key, upload_id, part_number, stream, length, sse=None, checksum_algorithm=None
    ):
        chunks = []
        while True:
            chunk = stream.read(4 * KB)
            if not chunk:
                break
            chunks.append(chunk)
        data = b"".join(chunks)
        if self.on_upload_part is not None:
            self.on_upload_part(part_number)
        self._record("upload_part", part_number)
        with self._lock:
            upload = self.uploads.get(upload_id)
            if upload is None:
                raise ServerError("upload_part: upload not found", 404, code="NoSuchUpload")
            data = self.store_part(part_number, data)
            etag = hashlib.md5(data).hexdigest()
            upload["parts"][part_number] = (etag, data)
            crc32 = crc32_base64(zlib.crc32(data)) if checksum_algorithm else None
            return UploadedPart(part_number=part_number, etag=etag, crc32=crc32)

    def get_object_range(self, bucket, key, range_start, range_end, version_id=None, conditions=None, sse=None):
        # Download calls are recorded by range start
        if self.on_get_object is not None:
            self.on_get_object(range_start)
        self._record("get_object", range_start)
        with self._lock:
            obj = self.objects.get((bucket, key))
            if obj is None:
                raise ServerError("get_object: Not Found", 404, code="NoSuchKey")
            data = obj["data"][range_start:range_end + 1]
            short = self.short_reads.pop(range_start, None)
        if short is not None:
            data = data[:short]
        return io.BytesIO(data)

    def complete_multipart_upload(self, bucket, key, upload_id, parts):
        self._record("complete_multipart_upload")
        with self._lock:
            upload = self.uploads.get(upload_id)
            if upload is None:
                raise ServerError("complete_multipart_upload: upload not found", 404, code="NoSuchUpload")
            if upload["checksum_algorithm"] and any(p.crc32 is None for p in parts):
                raise ServerError("complete_multipart_upload: part checksum missing", 400, code="InvalidRequest")
            numbers = [p.part_number for p in parts]
            self.completed_parts.append(numbers)
            data = b""
            for p in parts:
                etag, chunk = upload["parts"][p.part_number]
                if etag != p.etag:
                    raise ServerError("complete_multipart_upload: invalid part", 400, code="InvalidPart")
                data += chunk
            self.objects[(bucket, key)] = {
                "data": data,
                "etag": f"{hashlib.md5(data).hexdigest()}-{len(parts)}",
                "metadata": upload["metadata"],
                "last_modified": datetime(2024, 1, 2, tzinfo=timezone.utc),
            }
            del self.uploads[upload_id]
            if self.merge_then_fail:
                raise ServerError("complete_multipart_upload: upload not found", 404, code="NoSuchUpload")
            return {"etag": self.objects[(bucket, key)]["etag"], "version_id": None}

    def abort_multipart_upload(self, bucket, key, upload_id):
        self._record("abort_multipart_upload")
        with self._lock:
            if upload_id not in self.uploads:
                raise ServerError("abort_multipart_upload: upload not found", 404, code="NoSuchUpload")
            del self.uploads[upload_id]
            self.aborted.append(upload_id)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def config():
    return TransferConfig(part_size=10 * KB, task_num=1, max_retries=2, retry_backoff_base=0, retry_jitter=0)


@pytest.fixture
def limits():
    return SMALL_LIMITS


@pytest.fixture
def payload():
    """25KB of non-repeating bytes: parts of 10KB, 10KB and 5KB."""
    return os.urandom(25 * KB)


@pytest.fixture
def source_file(tmp_path, payload):
    path = tmp_path / "data.bin"
    path.write_bytes(payload)
    return path
