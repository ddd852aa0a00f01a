"""
Pydantic models for partwise.

Covers the transfer inputs and outputs, the progress and lifecycle events
delivered to listeners, and the checkpoint records persisted between runs.
Checkpoint models serialize with their aliases so the file layout stays stable
across versions.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DataTransferType(str, Enum):
    """Kinds of byte-level progress events."""

    STARTED = "started"
    RW = "rw"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DataTransferStatus(BaseModel):
    """Progress event delivered to a data transfer listener."""

    type: DataTransferType
    rw_once_bytes: int = Field(0, description="Bytes read or written by this event")
    consumed_bytes: int = Field(0, description="Cumulative bytes consumed")
    total_bytes: int = Field(0, description="Declared total bytes of the transfer")


class TransferEventType(str, Enum):
    """Lifecycle events of a multipart transfer."""

    CREATE_MULTIPART_UPLOAD_SUCCEEDED = "create_multipart_upload_succeeded"
    CREATE_MULTIPART_UPLOAD_FAILED = "create_multipart_upload_failed"
    UPLOAD_PART_SUCCEEDED = "upload_part_succeeded"
    UPLOAD_PART_FAILED = "upload_part_failed"
    UPLOAD_PART_ABORTED = "upload_part_aborted"
    COMPLETE_MULTIPART_UPLOAD_SUCCEEDED = "complete_multipart_upload_succeeded"
    COMPLETE_MULTIPART_UPLOAD_FAILED = "complete_multipart_upload_failed"
    CREATE_TEMP_FILE_SUCCEEDED = "create_temp_file_succeeded"
    CREATE_TEMP_FILE_FAILED = "create_temp_file_failed"
    DOWNLOAD_PART_SUCCEEDED = "download_part_succeeded"
    DOWNLOAD_PART_FAILED = "download_part_failed"
    DOWNLOAD_PART_ABORTED = "download_part_aborted"
    RENAME_TEMP_FILE_SUCCEEDED = "rename_temp_file_succeeded"
    RENAME_TEMP_FILE_FAILED = "rename_temp_file_failed"


class TransferEvent(BaseModel):
    """Lifecycle event delivered to an event listener."""

    type: TransferEventType
    bucket: str
    key: str
    upload_id: Optional[str] = None
    part_number: Optional[int] = None
    file_path: Optional[str] = None
    checkpoint_path: Optional[str] = None
    error: Optional[str] = None


DataTransferListener = Callable[[DataTransferStatus], None]
EventListener = Callable[[TransferEvent], None]


class ObjectMetadata(BaseModel):
    """Snapshot of remote object metadata."""

    etag: str
    size: int
    last_modified: Optional[datetime] = None
    checksum: Optional[int] = Field(None, description="xxh64 digest of the whole object")
    version_id: Optional[str] = None
    content_type: Optional[str] = None


class UploadedPart(BaseModel):
    """Result of uploading one part."""

    part_number: int
    etag: str
    checksum: Optional[int] = None
    crc32: Optional[str] = Field(None, description="Base64 CRC32 of the part as reported by the server")


# Checkpoint records


class _CheckpointModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class UploadPartRecord(_CheckpointModel):
    """Progress of one upload part."""

    part_number: int = Field(..., alias="PartNumber", ge=1)
    part_size: int = Field(..., alias="PartSize", ge=0)
    offset: int = Field(..., alias="Offset", ge=0)
    etag: Optional[str] = Field(None, alias="ETag")
    checksum: Optional[int] = Field(None, alias="HashXxh64")
    crc32: Optional[str] = Field(None, alias="ChecksumCRC32")
    is_completed: bool = Field(False, alias="IsCompleted")


class DownloadPartRecord(_CheckpointModel):
    """Progress of one download part; the range is inclusive."""

    part_number: int = Field(..., alias="PartNumber", ge=1)
    range_start: int = Field(..., alias="RangeStart", ge=0)
    range_end: int = Field(..., alias="RangeEnd")
    checksum: Optional[int] = Field(None, alias="HashXxh64")
    is_completed: bool = Field(False, alias="IsCompleted")

    @property
    def size(self) -> int:
        return self.range_end - self.range_start + 1


class UploadFileInfo(_CheckpointModel):
    last_modified: Optional[int] = Field(None, alias="LastModified")
    size: int = Field(..., alias="Size")


class UploadCheckpoint(_CheckpointModel):
    """Persisted state of a resumable multipart upload."""

    bucket: Optional[str] = Field(None, alias="Bucket")
    key: Optional[str] = Field(None, alias="Key")
    upload_id: Optional[str] = Field(None, alias="UploadID")
    part_size: int = Field(..., alias="PartSize")
    ssec_algorithm: Optional[str] = Field(None, alias="SSECAlgorithm")
    ssec_key_md5: Optional[str] = Field(None, alias="SSECKeyMD5")
    encoding_type: Optional[str] = Field(None, alias="EncodingType")
    checksum_algorithm: Optional[str] = Field(None, alias="ChecksumAlgorithm")
    file_path: Optional[str] = Field(None, alias="FilePath")
    file_info: UploadFileInfo = Field(..., alias="FileInfo")
    parts_info: List[UploadPartRecord] = Field(default_factory=list, alias="PartsInfo")

    def valid(
        self,
        input: "UploadFileInput",
        file_size: int,
        file_mtime: int,
        checksum_algorithm: Optional[str] = None,
    ) -> bool:
        if not self.upload_id:
            return False
        if self.checksum_algorithm != checksum_algorithm:
            return False
        if (
            self.bucket != input.bucket
            or self.key != input.key
            or self.part_size != input.part_size
            or self.ssec_algorithm != input.ssec_algorithm
            or self.ssec_key_md5 != input.ssec_key_md5
            or self.encoding_type != input.encoding_type
            or self.file_path != input.file_path
        ):
            return False
        if self.file_info.size != file_size or self.file_info.last_modified != file_mtime:
            return False
        return True

    def uploaded_parts(self) -> List[UploadedPart]:
        """Parts in part-number order, ready for the completion call."""
        return [
            UploadedPart(part_number=p.part_number, etag=p.etag or "", checksum=p.checksum, crc32=p.crc32)
            for p in self.parts_info
        ]


class DownloadObjectInfo(_CheckpointModel):
    etag: Optional[str] = Field(None, alias="Etag")
    checksum: Optional[int] = Field(None, alias="HashXxh64")
    last_modified: Optional[datetime] = Field(None, alias="LastModified")
    object_size: int = Field(0, alias="ObjectSize")


class DownloadFileInfo(_CheckpointModel):
    file_path: Optional[str] = Field(None, alias="FilePath")
    temp_file_path: Optional[str] = Field(None, alias="TempFilePath")


class DownloadCheckpoint(_CheckpointModel):
    """Persisted state of a resumable ranged download."""

    bucket: Optional[str] = Field(None, alias="Bucket")
    key: Optional[str] = Field(None, alias="Key")
    version_id: Optional[str] = Field(None, alias="VersionID")
    part_size: int = Field(..., alias="PartSize")
    if_match: Optional[str] = Field(None, alias="IfMatch")
    if_modified_since: Optional[datetime] = Field(None, alias="IfModifiedSince")
    if_none_match: Optional[str] = Field(None, alias="IfNoneMatch")
    if_unmodified_since: Optional[datetime] = Field(None, alias="IfUnmodifiedSince")
    ssec_algorithm: Optional[str] = Field(None, alias="SSECAlgorithm")
    ssec_key_md5: Optional[str] = Field(None, alias="SSECKeyMD5")
    object_info: DownloadObjectInfo = Field(default_factory=DownloadObjectInfo, alias="ObjectInfo")
    file_info: DownloadFileInfo = Field(default_factory=DownloadFileInfo, alias="FileInfo")
    parts_info: List[DownloadPartRecord] = Field(default_factory=list, alias="PartsInfo")

    def valid(self, input: "DownloadFileInput", head: ObjectMetadata) -> bool:
        if (
            self.bucket != input.bucket
            or self.key != input.key
            or self.version_id != input.version_id
            or self.part_size != input.part_size
            or self.if_match != input.if_match
            or self.if_modified_since != input.if_modified_since
            or self.if_none_match != input.if_none_match
            or self.if_unmodified_since != input.if_unmodified_since
            or self.ssec_algorithm != input.ssec_algorithm
            or self.ssec_key_md5 != input.ssec_key_md5
        ):
            return False
        info = self.object_info
        if (
            info.etag != head.etag
            or info.checksum != head.checksum
            or info.last_modified != head.last_modified
            or info.object_size != head.size
        ):
            return False
        if self.file_info.file_path != input.file_path:
            return False
        return True


# Transfer inputs and outputs


class _TransferInput(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    bucket: str = Field(..., min_length=1, description="Target bucket")
    key: str = Field(..., min_length=1, description="Object key")
    file_path: str = Field(..., min_length=1, description="Local file path")
    part_size: Optional[int] = Field(None, gt=0, description="Part size in bytes")
    task_num: Optional[int] = Field(None, ge=1, le=1000, description="Concurrent parts")
    enable_checkpoint: bool = Field(True, description="Persist progress for resume")
    checkpoint_file: Optional[str] = Field(
        None, description="Checkpoint file or directory (defaults beside the local file)"
    )
    ssec_algorithm: Optional[str] = None
    ssec_key: Optional[str] = None
    ssec_key_md5: Optional[str] = None
    enable_checksum: bool = Field(
        True, description="Record the xxh64 digest of the object and verify uploaded parts against the server CRC32"
    )
    data_transfer_listener: Optional[Callable[[DataTransferStatus], None]] = None
    event_listener: Optional[Callable[[TransferEvent], None]] = None
    rate_limiter: Optional[Any] = Field(None, description="Object with acquire(want) -> (ok, wait)")
    cancel_hook: Optional[Any] = Field(None, description="CancelHook shared with the caller")


class UploadFileInput(_TransferInput):
    """Parameters of a resumable multipart upload."""

    encoding_type: Optional[str] = None
    server_side_encryption: Optional[str] = None
    content_type: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class DownloadFileInput(_TransferInput):
    """Parameters of a resumable ranged download."""

    version_id: Optional[str] = None
    if_match: Optional[str] = None
    if_modified_since: Optional[datetime] = None
    if_none_match: Optional[str] = None
    if_unmodified_since: Optional[datetime] = None


class TransferMetrics(BaseModel):
    """Metrics for one transfer run."""

    total_bytes: int = 0
    bytes_transferred: int = 0
    parts_total: int = 0
    parts_skipped: int = 0
    elapsed: float = 0.0

    @property
    def speed_mbps(self) -> float:
        """Transfer speed in MB/s for the bytes moved in this run."""
        if self.elapsed <= 0:
            return 0.0
        return (self.bytes_transferred / (1024 * 1024)) / self.elapsed


class UploadFileOutput(BaseModel):
    """Result of a completed upload."""

    bucket: str
    key: str
    upload_id: str
    etag: Optional[str] = None
    version_id: Optional[str] = None
    checksum: Optional[int] = None
    metrics: TransferMetrics = Field(default_factory=TransferMetrics)


class DownloadFileOutput(BaseModel):
    """Result of a completed download."""

    bucket: str
    key: str
    file_path: str
    size: int
    etag: Optional[str] = None
    version_id: Optional[str] = None
    checksum: Optional[int] = None
    metrics: TransferMetrics = Field(default_factory=TransferMetrics)
