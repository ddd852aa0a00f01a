"""
Resumable multipart upload and ranged download.

Each transfer plans its parts, loads or creates a checkpoint, runs one task
per pending part on a :class:`TaskScheduler`, and finalizes once every part is
complete. A failed or cancelled transfer keeps its checkpoint so the next run
resumes where this one stopped; an aborted one removes it.
"""

import logging
import os
import threading
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .cancel import CancelHook
from .checkpoint import (
    CheckpointStore,
    checkpoint_path_for,
    new_download_checkpoint,
    new_upload_checkpoint,
)
from .config import (
    CHECKSUM_METADATA_KEY,
    DOWNLOAD_CHECKPOINT_SUFFIX,
    IO_CHUNK_SIZE,
    PART_CHECKSUM_ALGORITHM,
    TEMP_FILE_SUFFIX,
    UPLOAD_CHECKPOINT_SUFFIX,
    TransferConfig,
)
from .exceptions import (
    ChecksumMismatchError,
    NetworkError,
    PartTransferError,
    ServerError,
    TransferCancelledError,
    TransferClientError,
)
from .models import (
    DownloadCheckpoint,
    DownloadFileInput,
    DownloadFileOutput,
    DownloadPartRecord,
    TransferEvent,
    TransferEventType,
    TransferMetrics,
    UploadCheckpoint,
    UploadFileInput,
    UploadFileOutput,
    UploadPartRecord,
)
from .planner import DEFAULT_LIMITS, PartLimits, plan_download_parts, plan_upload_parts
from .retry import RetryContext, RetryPolicy, StatusCodeClassifier, exponential_backoff
from .scheduler import SchedulerOutcome, TaskScheduler, TransferTask
from .streams import FileSliceReader, ParallelProgress, StreamPipeline, file_checksum
from .transport import Transport

logger = logging.getLogger(__name__)


class TransferState(str, Enum):
    PLANNING = "planning"
    FRESH = "fresh"
    RESUMING = "resuming"
    SCHEDULING = "scheduling"
    PARTS_IN_FLIGHT = "parts_in_flight"
    ALL_PARTS_COMPLETE = "all_parts_complete"
    FINALIZING = "finalizing"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"


def human_mb_per_s(num_bytes: int, seconds: float) -> float:
    """Return MB/s as float, avoiding divide-by-zero."""
    return (num_bytes / (1024 * 1024)) / seconds if seconds > 0 else float("inf")


class _Transfer:
    """Machinery shared by uploads and downloads."""

    direction = ""

    def __init__(
        self,
        transport: Transport,
        input: Union[UploadFileInput, DownloadFileInput],
        config: Optional[TransferConfig] = None,
        limits: PartLimits = DEFAULT_LIMITS,
    ) -> None:
        self.transport = transport
        self.config = config or TransferConfig()
        self.input = input.model_copy(
            update={
                "part_size": input.part_size or self.config.part_size,
                "task_num": input.task_num or self.config.task_num,
            }
        )
        self.limits = limits
        self.cancel_hook: CancelHook = input.cancel_hook or CancelHook()
        self.retry_policy = RetryPolicy(
            exponential_backoff(self.config.max_retries, self.config.retry_backoff_base),
            jitter=self.config.retry_jitter,
        )
        self.classifier = StatusCodeClassifier()
        self.rate_limiter = input.rate_limiter
        self.state = TransferState.PLANNING
        self.store: Optional[CheckpointStore] = None
        self.metrics = TransferMetrics()
        self._metrics_lock = threading.Lock()
        self._parts_done = 0
        self._start_time = 0.0

    def cancel(self, abort: bool = False) -> bool:
        """Stop dispatching parts; with ``abort`` also clean up local and remote state."""
        return self.cancel_hook.cancel(abort)

    def _set_state(self, state: TransferState) -> None:
        logger.debug(f"{self.direction} {self.input.bucket}/{self.input.key}: {self.state.value} -> {state.value}")
        self.state = state

    def _emit(self, event_type: TransferEventType, **fields) -> None:
        listener = self.input.event_listener
        if listener is None:
            return
        event = TransferEvent(
            type=event_type,
            bucket=self.input.bucket,
            key=self.input.key,
            file_path=self.input.file_path,
            checkpoint_path=self.store.path if self.store else None,
            **fields,
        )
        try:
            listener(event)
        except Exception as e:
            logger.warning(f"Event listener error: {e}")

    def _checkpoint_path(self, suffix: str) -> Optional[str]:
        if not self.input.enable_checkpoint:
            return None
        return checkpoint_path_for(
            self.input.file_path,
            self.input.bucket,
            self.input.key,
            suffix,
            self.input.checkpoint_file,
        )

    def _sse_params(self) -> Dict[str, str]:
        params = {}
        if self.input.ssec_algorithm:
            params["SSECustomerAlgorithm"] = self.input.ssec_algorithm
        if self.input.ssec_key:
            params["SSECustomerKey"] = self.input.ssec_key
        if self.input.ssec_key_md5:
            params["SSECustomerKeyMD5"] = self.input.ssec_key_md5
        return params

    def _retry_context(self) -> RetryContext:
        return RetryContext.with_timeout(self.config.part_timeout, self.cancel_hook.event)

    def _call_with_retry(self, description: str, func, timeout: Optional[float] = None):
        result = {}

        def work():
            result["value"] = func()

        ctx = RetryContext.with_timeout(timeout, self.cancel_hook.event)
        self.retry_policy.call(ctx, work, self.classifier, description)
        return result["value"]

    def _progress(self, completed_bytes: int, total: int) -> Optional[ParallelProgress]:
        if self.input.data_transfer_listener is None:
            return None
        progress = ParallelProgress(self.input.data_transfer_listener, total, consumed=completed_bytes)
        progress.started()
        return progress

    def _run_tasks(self, tasks: List[TransferTask], on_result, on_error) -> SchedulerOutcome:
        self._set_state(TransferState.SCHEDULING)
        scheduler = TaskScheduler(
            self.input.task_num,
            cancelled=self.cancel_hook.event,
            on_result=on_result,
            on_error=on_error,
        )
        scheduler.run()
        self._set_state(TransferState.PARTS_IN_FLIGHT)
        for task in tasks:
            scheduler.add_task(task)
        return scheduler.finish_add()

    def _check_outcome(self, outcome: SchedulerOutcome, operation: str) -> None:
        """Raise if the parts did not all finish; the checkpoint is left for resume."""
        checkpoint_path = self.store.path if self.store else None
        if self.cancel_hook.is_cancelled():
            self._set_state(TransferState.ABORTED)
            if self.cancel_hook.aborted:
                raise TransferCancelledError("Transfer aborted", aborted=True)
            message = "Transfer cancelled"
            if checkpoint_path:
                message += f"; checkpoint retained at {checkpoint_path}"
            raise TransferCancelledError(message, aborted=False)
        if outcome.error is not None:
            self._set_state(TransferState.FAILED)
            task = outcome.failed_task
            raise PartTransferError(
                task.part_number if task else 0,
                operation,
                checkpoint_path,
                outcome.error,
            ) from outcome.error
        self._set_state(TransferState.ALL_PARTS_COMPLETE)

    def _count_part(self, part_number: int, size: int) -> None:
        with self._metrics_lock:
            self.metrics.bytes_transferred += size
            self._parts_done += 1
            done = self._parts_done
        self._log_part_done(part_number, done, self.metrics.parts_total)

    def _log_part_done(self, part_number: int, done: int, total: int) -> None:
        elapsed = time.time() - self._start_time
        progress = 100.0 * done / total if total else 100.0
        fraction = done / total if total else 1.0
        remaining = max(0, elapsed * (1 / fraction - 1)) if fraction > 0 else 0
        eta = time.strftime("%Hh %Mm %Ss", time.gmtime(remaining))
        logger.info(
            f"Part {part_number}: {self.direction}ed, progress: {progress:.1f}%, "
            f"est time remaining: {eta}"
        )

    def _finish_metrics(self) -> None:
        self.metrics.elapsed = time.time() - self._start_time
        speed = human_mb_per_s(self.metrics.bytes_transferred, self.metrics.elapsed)
        duration = time.strftime("%Hh %Mm %Ss", time.gmtime(self.metrics.elapsed))
        logger.info(f"{self.direction.capitalize()} Speed {speed:.2f} MB/s, Duration {duration}")


class Uploader(_Transfer):
    """Resumable multipart upload of a local file."""

    direction = "upload"

    def start(self) -> UploadFileOutput:
        self._start_time = time.time()
        inp = self.input
        try:
            stat = os.stat(inp.file_path)
        except OSError as e:
            raise TransferClientError(f"Cannot stat local file {inp.file_path}: {e}", e) from e
        if not os.path.isfile(inp.file_path):
            raise TransferClientError(f"Not a regular file: {inp.file_path}")
        file_size = stat.st_size
        file_mtime = int(stat.st_mtime)

        logger.info(
            f"Uploading {inp.file_path} to {inp.bucket}/{inp.key}: {file_size} bytes, "
            f"part size {inp.part_size}"
        )
        parts = plan_upload_parts(file_size, inp.part_size, self.limits)
        self.store = CheckpointStore(self._checkpoint_path(UPLOAD_CHECKPOINT_SUFFIX), UploadCheckpoint)

        checksum_algorithm = PART_CHECKSUM_ALGORITHM if inp.enable_checksum else None
        file_hash = None
        checkpoint = self.store.load()
        if checkpoint is not None and checkpoint.valid(inp, file_size, file_mtime, checksum_algorithm):
            self._set_state(TransferState.RESUMING)
            logger.info(f"Resuming upload {checkpoint.upload_id} from {self.store.path}")
            if inp.enable_checksum:
                file_hash = file_checksum(inp.file_path)
        else:
            if checkpoint is not None:
                logger.info(f"Checkpoint {self.store.path} does not match this upload; starting over")
                self._abort_stale_upload(checkpoint)
            self._set_state(TransferState.FRESH)
            if inp.enable_checksum:
                logger.info("Calculating file hash for upload verification...")
                file_hash = file_checksum(inp.file_path)
            checkpoint = self._initiate(file_size, file_mtime, parts, file_hash, checksum_algorithm)

        upload_id = checkpoint.upload_id
        self.cancel_hook.set_cleaner(self.store.delete)
        self.cancel_hook.set_aborter(
            lambda: self.transport.abort_multipart_upload(inp.bucket, inp.key, upload_id)
        )

        pending = [p for p in checkpoint.parts_info if not p.is_completed]
        completed_bytes = sum(p.part_size for p in checkpoint.parts_info if p.is_completed)
        self.metrics = TransferMetrics(
            total_bytes=file_size,
            parts_total=len(checkpoint.parts_info),
            parts_skipped=len(checkpoint.parts_info) - len(pending),
        )
        self._parts_done = self.metrics.parts_skipped
        if self.metrics.parts_skipped:
            logger.info(
                f"Resuming from {self.metrics.parts_skipped} of {self.metrics.parts_total} parts"
            )

        progress = self._progress(completed_bytes, file_size)
        pipeline = StreamPipeline(StreamPipeline.UPLOAD, progress, self.rate_limiter)

        def on_result(task: TransferTask, record: UploadPartRecord) -> None:
            self.store.record_and_persist(record)
            self._count_part(record.part_number, record.part_size)
            self._emit(TransferEventType.UPLOAD_PART_SUCCEEDED, upload_id=upload_id, part_number=record.part_number)

        def on_error(task: TransferTask, error: BaseException) -> None:
            event = (
                TransferEventType.UPLOAD_PART_ABORTED
                if self.cancel_hook.is_cancelled()
                else TransferEventType.UPLOAD_PART_FAILED
            )
            self._emit(event, upload_id=upload_id, part_number=task.part_number, error=str(error))

        tasks = [
            TransferTask(p.part_number, self._part_work(checkpoint, p, pipeline)) for p in pending
        ]
        outcome = self._run_tasks(tasks, on_result, on_error)
        self._check_outcome(outcome, "upload_part")

        if progress is not None:
            progress.finish()
        result = self._complete(checkpoint, file_size, file_hash)
        self._set_state(TransferState.DONE)
        self._finish_metrics()
        return result

    def _initiate(self, file_size, file_mtime, parts, file_hash, checksum_algorithm) -> UploadCheckpoint:
        inp = self.input
        metadata = dict(inp.metadata)
        if file_hash is not None:
            metadata[CHECKSUM_METADATA_KEY] = str(file_hash)
        sse = self._sse_params()
        if inp.server_side_encryption:
            sse["ServerSideEncryption"] = inp.server_side_encryption
        try:
            upload_id = self._call_with_retry(
                "create_multipart_upload",
                lambda: self.transport.create_multipart_upload(
                    inp.bucket,
                    inp.key,
                    metadata=metadata,
                    content_type=inp.content_type,
                    sse=sse,
                    checksum_algorithm=checksum_algorithm,
                ),
            )
        except Exception as e:
            self._set_state(TransferState.FAILED)
            self._emit(TransferEventType.CREATE_MULTIPART_UPLOAD_FAILED, error=str(e))
            raise
        logger.info(f"Initiated new multipart upload: UploadId={upload_id}")

        checkpoint = self.store.use(
            new_upload_checkpoint(inp, file_size, file_mtime, upload_id, parts, checksum_algorithm)
        )
        self.store.persist()
        self._emit(TransferEventType.CREATE_MULTIPART_UPLOAD_SUCCEEDED, upload_id=upload_id)
        return checkpoint

    def _abort_stale_upload(self, checkpoint: UploadCheckpoint) -> None:
        if not checkpoint.upload_id or not checkpoint.bucket or not checkpoint.key:
            return
        try:
            self.transport.abort_multipart_upload(checkpoint.bucket, checkpoint.key, checkpoint.upload_id)
        except Exception as e:
            logger.warning(f"Could not abort abandoned upload {checkpoint.upload_id}: {e}")

    def _part_work(self, checkpoint: UploadCheckpoint, part: UploadPartRecord, pipeline: StreamPipeline):
        inp = self.input
        sse = self._sse_params()
        upload_id = checkpoint.upload_id
        checksum_algorithm = checkpoint.checksum_algorithm

        def work() -> UploadPartRecord:
            result = {}

            def attempt() -> None:
                try:
                    source = FileSliceReader(inp.file_path, part.offset, part.part_size)
                except OSError as e:
                    raise TransferClientError(f"Cannot read {inp.file_path}: {e}", e) from e
                with pipeline.wrap(source) as streams:
                    try:
                        uploaded = self.transport.upload_part(
                            inp.bucket,
                            inp.key,
                            upload_id,
                            part.part_number,
                            streams,
                            part.part_size,
                            sse=sse,
                            checksum_algorithm=checksum_algorithm,
                        )
                        self._verify_part(part.part_number, streams, uploaded)
                    except Exception:
                        if streams.progress is not None:
                            streams.progress.rollback()
                        raise
                result["record"] = UploadPartRecord(
                    part_number=part.part_number,
                    part_size=part.part_size,
                    offset=part.offset,
                    etag=uploaded.etag,
                    checksum=streams.checksum.checksum,
                    crc32=uploaded.crc32,
                    is_completed=True,
                )

            self.retry_policy.call(self._retry_context(), attempt, self.classifier, f"Part {part.part_number}")
            return result["record"]

        return work

    def _verify_part(self, part_number: int, streams, uploaded) -> None:
        """Compare the CRC32 of the bytes read for a part with the one the server computed."""
        if streams.crc32 is None or uploaded.crc32 is None:
            return
        local = streams.crc32.encoded
        if uploaded.crc32 != local:
            logger.error(f"Part {part_number}: server CRC32 {uploaded.crc32} does not match local {local}")
            raise ChecksumMismatchError(
                f"Part {part_number} failed checksum verification", local, uploaded.crc32
            )

    def _complete(self, checkpoint: UploadCheckpoint, file_size: int, file_hash: Optional[int]) -> UploadFileOutput:
        inp = self.input
        self._set_state(TransferState.FINALIZING)
        parts = sorted(checkpoint.uploaded_parts(), key=lambda p: p.part_number)
        logger.info("Sending complete_multipart_upload request")
        try:
            completed = self._call_with_retry(
                "complete_multipart_upload",
                lambda: self.transport.complete_multipart_upload(
                    inp.bucket, inp.key, checkpoint.upload_id, parts
                ),
            )
        except ServerError as e:
            completed = self._confirm_merged(e, file_size)
        except Exception as e:
            self._set_state(TransferState.FAILED)
            self._emit(TransferEventType.COMPLETE_MULTIPART_UPLOAD_FAILED, upload_id=checkpoint.upload_id, error=str(e))
            raise
        self._emit(TransferEventType.COMPLETE_MULTIPART_UPLOAD_SUCCEEDED, upload_id=checkpoint.upload_id)
        self.store.delete()

        head = self._call_with_retry(
            "head_object", lambda: self.transport.fetch_object_metadata(inp.bucket, inp.key, sse=self._sse_params())
        )
        if head.size != file_size:
            self._set_state(TransferState.FAILED)
            logger.error(
                f"Size mismatch: remote object is {head.size} bytes, but local file is {file_size} bytes"
            )
            raise ChecksumMismatchError("Multipart upload verification failed: size mismatch", file_size, head.size)
        logger.info(f"Verified upload: remote object size {head.size} bytes matches local file size")

        return UploadFileOutput(
            bucket=inp.bucket,
            key=inp.key,
            upload_id=checkpoint.upload_id,
            etag=completed.get("etag") or head.etag,
            version_id=completed.get("version_id") or head.version_id,
            checksum=file_hash,
            metrics=self.metrics,
        )

    def _confirm_merged(self, error: ServerError, file_size: int) -> Dict[str, Any]:
        """A completion that reports a missing upload may already have merged; check the object."""
        inp = self.input
        if error.code != "NoSuchUpload":
            self._set_state(TransferState.FAILED)
            self._emit(TransferEventType.COMPLETE_MULTIPART_UPLOAD_FAILED, error=str(error))
            raise error
        logger.info("Upload session missing; checking object state")
        try:
            head = self.transport.fetch_object_metadata(inp.bucket, inp.key, sse=self._sse_params())
        except Exception as head_exc:
            logger.info(f"head_object failed after error: {head_exc}")
            head = None
        if head is None or head.size != file_size:
            self._set_state(TransferState.FAILED)
            self._emit(TransferEventType.COMPLETE_MULTIPART_UPLOAD_FAILED, error=str(error))
            raise error
        logger.info("HeadObject confirms multipart upload merge has completed")
        return {"etag": head.etag, "version_id": head.version_id}


class Downloader(_Transfer):
    """Resumable ranged download into a local file."""

    direction = "download"

    def _conditions(self) -> Dict[str, Any]:
        inp = self.input
        conditions = {
            "IfMatch": inp.if_match,
            "IfModifiedSince": inp.if_modified_since,
            "IfNoneMatch": inp.if_none_match,
            "IfUnmodifiedSince": inp.if_unmodified_since,
        }
        return {k: v for k, v in conditions.items() if v is not None}

    def start(self) -> DownloadFileOutput:
        self._start_time = time.time()
        inp = self.input
        if os.path.isdir(inp.file_path):
            raise TransferClientError(f"Download target is a directory: {inp.file_path}")

        head = self._call_with_retry(
            "head_object",
            lambda: self.transport.fetch_object_metadata(
                inp.bucket, inp.key, inp.version_id, self._conditions(), self._sse_params()
            ),
        )
        logger.info(f"Downloading {inp.bucket}/{inp.key} ({head.size} bytes) to {inp.file_path}")
        parts = plan_download_parts(head.size, inp.part_size, self.limits)

        parent = os.path.dirname(os.path.abspath(inp.file_path))
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as e:
            self._set_state(TransferState.FAILED)
            raise TransferClientError(f"Cannot create download directory {parent}: {e}", e) from e
        self.store = CheckpointStore(self._checkpoint_path(DOWNLOAD_CHECKPOINT_SUFFIX), DownloadCheckpoint)

        checkpoint = self.store.load()
        if (
            checkpoint is not None
            and checkpoint.valid(inp, head)
            and checkpoint.file_info.temp_file_path
            and os.path.exists(checkpoint.file_info.temp_file_path)
        ):
            self._set_state(TransferState.RESUMING)
            logger.info(f"Resuming download from {self.store.path}")
        else:
            if checkpoint is not None:
                logger.info(f"Checkpoint {self.store.path} does not match this download; starting over")
            self._set_state(TransferState.FRESH)
            temp_path = inp.file_path + TEMP_FILE_SUFFIX
            self._create_temp_file(temp_path, head.size)
            checkpoint = self.store.use(new_download_checkpoint(inp, head, temp_path, parts))
            self.store.persist()

        temp_path = checkpoint.file_info.temp_file_path
        self.cancel_hook.set_cleaner(lambda: self._cleanup(temp_path))

        pending = [p for p in checkpoint.parts_info if not p.is_completed]
        completed_bytes = sum(p.size for p in checkpoint.parts_info if p.is_completed)
        self.metrics = TransferMetrics(
            total_bytes=head.size,
            parts_total=len(checkpoint.parts_info),
            parts_skipped=len(checkpoint.parts_info) - len(pending),
        )
        self._parts_done = self.metrics.parts_skipped

        progress = self._progress(completed_bytes, head.size)
        pipeline = StreamPipeline(StreamPipeline.DOWNLOAD, progress, self.rate_limiter)

        def on_result(task: TransferTask, record: DownloadPartRecord) -> None:
            self.store.record_and_persist(record)
            self._count_part(record.part_number, record.size)
            self._emit(TransferEventType.DOWNLOAD_PART_SUCCEEDED, part_number=record.part_number)

        def on_error(task: TransferTask, error: BaseException) -> None:
            event = (
                TransferEventType.DOWNLOAD_PART_ABORTED
                if self.cancel_hook.is_cancelled()
                else TransferEventType.DOWNLOAD_PART_FAILED
            )
            self._emit(event, part_number=task.part_number, error=str(error))

        tasks = [TransferTask(p.part_number, self._part_work(temp_path, p, pipeline)) for p in pending]
        outcome = self._run_tasks(tasks, on_result, on_error)
        self._check_outcome(outcome, "get_object")

        if progress is not None:
            progress.finish()
        self._set_state(TransferState.FINALIZING)
        if inp.enable_checksum and head.checksum is not None:
            actual = file_checksum(temp_path)
            if actual != head.checksum:
                self._set_state(TransferState.FAILED)
                logger.error(
                    f"Checksum mismatch for {inp.bucket}/{inp.key}: expected {head.checksum}, got {actual}; "
                    f"checkpoint retained at {self.store.path}"
                )
                raise ChecksumMismatchError("Downloaded object failed checksum verification", head.checksum, actual)

        try:
            os.replace(temp_path, inp.file_path)
        except OSError as e:
            self._set_state(TransferState.FAILED)
            self._emit(TransferEventType.RENAME_TEMP_FILE_FAILED, error=str(e))
            raise TransferClientError(f"Failed to rename {temp_path} to {inp.file_path}: {e}", e) from e
        self._emit(TransferEventType.RENAME_TEMP_FILE_SUCCEEDED)
        self.store.delete()
        self._set_state(TransferState.DONE)
        self._finish_metrics()

        return DownloadFileOutput(
            bucket=inp.bucket,
            key=inp.key,
            file_path=inp.file_path,
            size=head.size,
            etag=head.etag,
            version_id=head.version_id,
            checksum=head.checksum,
            metrics=self.metrics,
        )

    def _create_temp_file(self, temp_path: str, size: int) -> None:
        try:
            with open(temp_path, "wb") as f:
                f.truncate(size)
        except OSError as e:
            self._set_state(TransferState.FAILED)
            self._emit(TransferEventType.CREATE_TEMP_FILE_FAILED, error=str(e))
            raise TransferClientError(f"Failed to create temp file {temp_path}: {e}", e) from e
        self._emit(TransferEventType.CREATE_TEMP_FILE_SUCCEEDED)

    def _cleanup(self, temp_path: str) -> None:
        try:
            os.remove(temp_path)
        except FileNotFoundError:
            pass
        self.store.delete()

    def _part_work(self, temp_path: str, part: DownloadPartRecord, pipeline: StreamPipeline):
        inp = self.input

        def work() -> DownloadPartRecord:
            if part.size <= 0:
                return part.model_copy(update={"is_completed": True})
            result = {}

            def attempt() -> None:
                body = self.transport.get_object_range(
                    inp.bucket,
                    inp.key,
                    part.range_start,
                    part.range_end,
                    version_id=inp.version_id,
                    conditions=self._conditions(),
                    sse=self._sse_params(),
                )
                with pipeline.wrap(body) as streams:
                    try:
                        written = _write_range(streams, temp_path, part.range_start, part.size)
                    except Exception:
                        if streams.progress is not None:
                            streams.progress.rollback()
                        raise
                if written != part.size:
                    if streams.progress is not None:
                        streams.progress.rollback()
                    raise NetworkError(
                        f"Part {part.part_number}: expected {part.size} bytes, received {written}"
                    )
                result["record"] = part.model_copy(
                    update={"checksum": streams.checksum.checksum, "is_completed": True}
                )

            self.retry_policy.call(self._retry_context(), attempt, self.classifier, f"Part {part.part_number}")
            return result["record"]

        return work


def _write_range(stream, temp_path: str, offset: int, limit: int) -> int:
    """Copy at most ``limit`` bytes from ``stream`` into ``temp_path`` at ``offset``."""
    try:
        f = open(temp_path, "r+b")
    except OSError as e:
        raise TransferClientError(f"Cannot open temp file {temp_path}: {e}", e) from e
    written = 0
    with f:
        f.seek(offset)
        while written < limit:
            chunk = stream.read(min(IO_CHUNK_SIZE, limit - written))
            if not chunk:
                break
            try:
                f.write(chunk)
            except OSError as e:
                raise TransferClientError(f"Cannot write temp file {temp_path}: {e}", e) from e
            written += len(chunk)
    return written


def start_upload(
    transport: Transport,
    input: UploadFileInput,
    config: Optional[TransferConfig] = None,
    limits: PartLimits = DEFAULT_LIMITS,
) -> UploadFileOutput:
    """Upload ``input.file_path`` as a resumable multipart upload."""
    return Uploader(transport, input, config, limits).start()


def start_download(
    transport: Transport,
    input: DownloadFileInput,
    config: Optional[TransferConfig] = None,
    limits: PartLimits = DEFAULT_LIMITS,
) -> DownloadFileOutput:
    """Download an object into ``input.file_path`` with resumable ranged reads."""
    return Downloader(transport, input, config, limits).start()
