"""
Checkpoint persistence for resumable transfers.

A checkpoint holds one record per part, indexed by ``part_number - 1``.
Workers write their own slots; writing the file is serialized by the store.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Generic, List, Optional, Type, TypeVar, Union

from pydantic import ValidationError

from .exceptions import TransferClientError
from .models import (
    DownloadCheckpoint,
    DownloadFileInfo,
    DownloadFileInput,
    DownloadObjectInfo,
    DownloadPartRecord,
    ObjectMetadata,
    UploadCheckpoint,
    UploadFileInfo,
    UploadFileInput,
    UploadPartRecord,
)
from .planner import DownloadPart, UploadPart

logger = logging.getLogger(__name__)

CheckpointT = TypeVar("CheckpointT", UploadCheckpoint, DownloadCheckpoint)
PartRecordT = Union[UploadPartRecord, DownloadPartRecord]


def checkpoint_path_for(
    file_path: str, bucket: str, key: str, suffix: str, checkpoint_file: Optional[str] = None
) -> str:
    """Resolve where a transfer's checkpoint lives.

    An explicit file path is used as-is. A directory, or no path at all, gets a
    file named after the local file, bucket and key, placed in that directory
    or beside the local file.
    """
    if checkpoint_file and not os.path.isdir(checkpoint_file):
        return checkpoint_file

    name = f"{Path(file_path).name}.{bucket}.{key.replace('/', '_')}.{suffix}"
    directory = checkpoint_file or str(Path(file_path).parent)
    return os.path.join(directory, name)


class CheckpointStore(Generic[CheckpointT]):
    """Load, validate, update and persist one checkpoint file."""

    def __init__(self, path: Optional[str], model: Type[CheckpointT]) -> None:
        self.path = path
        self.model = model
        self.checkpoint: Optional[CheckpointT] = None
        self._lock = threading.Lock()
        self._discarded = False

    def load(self) -> Optional[CheckpointT]:
        """Read the checkpoint file; absent or unreadable files yield None."""
        if self.path is None:
            return None
        try:
            with open(self.path, "rb") as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read checkpoint {self.path}: {e}")
            return None

        try:
            checkpoint = self.model.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed checkpoint {self.path}: {e.error_count()} errors")
            return None

        self.checkpoint = checkpoint
        return checkpoint

    def use(self, checkpoint: CheckpointT) -> CheckpointT:
        self.checkpoint = checkpoint
        self._discarded = False
        return checkpoint

    def record_part(self, record: PartRecordT) -> None:
        """Store a finished part in slot ``part_number - 1``."""
        checkpoint = self._require()
        index = record.part_number - 1
        if index < 0 or index >= len(checkpoint.parts_info):
            raise TransferClientError(
                f"Part number {record.part_number} outside checkpoint of "
                f"{len(checkpoint.parts_info)} parts"
            )
        current = checkpoint.parts_info[index]
        if current.is_completed and current != record:
            raise TransferClientError(f"Part {record.part_number} is already complete")
        checkpoint.parts_info[index] = record

    def persist(self) -> None:
        """Overwrite the checkpoint file with the current state."""
        checkpoint = self._require()
        with self._lock:
            if self._discarded or self.path is None:
                return
            try:
                data = checkpoint.model_dump_json(by_alias=True, exclude_none=True)
            except (ValueError, TypeError) as e:
                raise TransferClientError(f"Failed to serialize checkpoint: {e}", e) from e
            try:
                parent = os.path.dirname(self.path)
                if parent:
                    os.makedirs(parent, exist_ok=True)
                with open(self.path, "w", encoding="utf-8") as f:
                    f.write(data)
            except OSError as e:
                raise TransferClientError(f"Failed to write checkpoint {self.path}: {e}", e) from e

    def record_and_persist(self, record: PartRecordT) -> None:
        self.record_part(record)
        self.persist()

    def delete(self) -> None:
        """Remove the checkpoint file; later persists become no-ops."""
        with self._lock:
            self._discarded = True
            if self.path is None:
                return
            try:
                os.remove(self.path)
                logger.debug(f"Deleted checkpoint {self.path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                raise TransferClientError(f"Failed to delete checkpoint {self.path}: {e}", e) from e

    def _require(self) -> CheckpointT:
        if self.checkpoint is None:
            raise TransferClientError("No checkpoint loaded")
        return self.checkpoint


def new_upload_checkpoint(
    input: UploadFileInput,
    file_size: int,
    file_mtime: int,
    upload_id: str,
    parts: List[UploadPart],
    checksum_algorithm: Optional[str] = None,
) -> UploadCheckpoint:
    return UploadCheckpoint(
        bucket=input.bucket,
        key=input.key,
        upload_id=upload_id,
        part_size=input.part_size,
        ssec_algorithm=input.ssec_algorithm,
        ssec_key_md5=input.ssec_key_md5,
        encoding_type=input.encoding_type,
        checksum_algorithm=checksum_algorithm,
        file_path=input.file_path,
        file_info=UploadFileInfo(last_modified=file_mtime, size=file_size),
        parts_info=[
            UploadPartRecord(part_number=p.part_number, part_size=p.size, offset=p.offset)
            for p in parts
        ],
    )


def new_download_checkpoint(
    input: DownloadFileInput, head: ObjectMetadata, temp_file_path: str, parts: List[DownloadPart]
) -> DownloadCheckpoint:
    return DownloadCheckpoint(
        bucket=input.bucket,
        key=input.key,
        version_id=input.version_id,
        part_size=input.part_size,
        if_match=input.if_match,
        if_modified_since=input.if_modified_since,
        if_none_match=input.if_none_match,
        if_unmodified_since=input.if_unmodified_since,
        ssec_algorithm=input.ssec_algorithm,
        ssec_key_md5=input.ssec_key_md5,
        object_info=DownloadObjectInfo(
            etag=head.etag,
            checksum=head.checksum,
            last_modified=head.last_modified,
            object_size=head.size,
        ),
        file_info=DownloadFileInfo(file_path=input.file_path, temp_file_path=temp_file_path),
        parts_info=[
            DownloadPartRecord(part_number=p.part_number, range_start=p.range_start, range_end=p.range_end)
            for p in parts
        ],
    )
