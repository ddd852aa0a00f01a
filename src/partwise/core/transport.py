"""S3-compatible transport used by the transfer engine."""

import logging
from typing import Any, BinaryIO, Dict, List, Optional, Protocol

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
    ResponseStreamingError,
)

from .config import CHECKSUM_METADATA_KEY, IO_CHUNK_SIZE
from .exceptions import NetworkError, ServerError, TransferClientError
from .models import ObjectMetadata, UploadedPart

logger = logging.getLogger(__name__)

_NETWORK_ERRORS = (
    ConnectTimeoutError,
    ReadTimeoutError,
    EndpointConnectionError,
    ConnectionClosedError,
    ResponseStreamingError,
)


class Transport(Protocol):
    """Capabilities the engine needs from the object store."""

    def fetch_object_metadata(
        self,
        bucket: str,
        key: str,
        version_id: Optional[str] = None,
        conditions: Optional[Dict[str, Any]] = None,
        sse: Optional[Dict[str, str]] = None,
    ) -> ObjectMetadata: ...

    def create_multipart_upload(
        self,
        bucket: str,
        key: str,
        metadata: Optional[Dict[str, str]] = None,
        content_type: Optional[str] = None,
        sse: Optional[Dict[str, str]] = None,
        checksum_algorithm: Optional[str] = None,
    ) -> str: ...

    def upload_part(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number: int,
        stream: BinaryIO,
        length: int,
        sse: Optional[Dict[str, str]] = None,
        checksum_algorithm: Optional[str] = None,
    ) -> UploadedPart: ...

    def get_object_range(
        self,
        bucket: str,
        key: str,
        range_start: int,
        range_end: int,
        version_id: Optional[str] = None,
        conditions: Optional[Dict[str, Any]] = None,
        sse: Optional[Dict[str, str]] = None,
    ) -> BinaryIO: ...

    def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: List[UploadedPart]
    ) -> Dict[str, Optional[str]]: ...

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None: ...


def is_insufficient_storage_error(exc: Exception) -> bool:
    """Return True if the exception wraps a 507 Insufficient Storage response."""
    if isinstance(exc, ClientError):
        meta = exc.response.get("ResponseMetadata", {})
        return meta.get("HTTPStatusCode") == 507
    return False


def is_524_error(exc: Exception) -> bool:
    """Return True if the exception wraps a 524 timeout response."""
    if isinstance(exc, ClientError):
        meta = exc.response.get("ResponseMetadata", {})
        return meta.get("HTTPStatusCode") == 524
    return False


def translate_error(exc: Exception, description: str) -> Exception:
    """Map a botocore exception onto the partwise error taxonomy."""
    if isinstance(exc, ClientError):
        meta = exc.response.get("ResponseMetadata", {})
        err = exc.response.get("Error", {})
        status = meta.get("HTTPStatusCode") or 0
        if is_insufficient_storage_error(exc):
            message = f"{description}: server reported insufficient storage"
        elif is_524_error(exc):
            message = f"{description}: server timed out (524)"
        else:
            message = f"{description}: {err.get('Message') or exc}"
        return ServerError(
            message,
            status_code=int(status),
            code=err.get("Code"),
            request_id=meta.get("RequestId"),
        )
    if isinstance(exc, _NETWORK_ERRORS):
        return NetworkError(f"{description}: {exc}", exc)
    if isinstance(exc, BotoCoreError):
        return TransferClientError(f"{description}: {exc}", exc)
    return exc


class S3Transport:
    """Adapter from the :class:`Transport` capabilities onto a boto3 S3 client."""

    def __init__(self, s3_client) -> None:
        self.s3 = s3_client

    def _call(self, description: str, func, **params):
        try:
            return func(**params)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, description) from e

    def fetch_object_metadata(self, bucket, key, version_id=None, conditions=None, sse=None):
        params = {"Bucket": bucket, "Key": key}
        if version_id:
            params["VersionId"] = version_id
        params.update(conditions or {})
        params.update(sse or {})
        head = self._call("head_object", self.s3.head_object, **params)

        checksum = None
        raw = head.get("Metadata", {}).get(CHECKSUM_METADATA_KEY)
        if raw:
            try:
                checksum = int(raw)
            except ValueError:
                logger.warning(f"Ignoring malformed {CHECKSUM_METADATA_KEY} metadata on {key}: {raw!r}")
        return ObjectMetadata(
            etag=head.get("ETag", "").strip('"'),
            size=head.get("ContentLength", 0),
            last_modified=head.get("LastModified"),
            checksum=checksum,
            version_id=head.get("VersionId"),
            content_type=head.get("ContentType"),
        )

    def create_multipart_upload(
        self, bucket, key, metadata=None, content_type=None, sse=None, checksum_algorithm=None
    ):
        params = {"Bucket": bucket, "Key": key}
        if metadata:
            params["Metadata"] = metadata
        if content_type:
            params["ContentType"] = content_type
        if checksum_algorithm:
            params["ChecksumAlgorithm"] = checksum_algorithm
        params.update(sse or {})
        resp = self._call("create_multipart_upload", self.s3.create_multipart_upload, **params)
        return resp["UploadId"]

    def upload_part(
        self, bucket, key, upload_id, part_number, stream, length, sse=None, checksum_algorithm=None
    ):
        # The body is read up front, in chunks, so every decorator on the stream sees the bytes
        chunks = []
        remaining = length
        while remaining > 0:
            chunk = stream.read(min(IO_CHUNK_SIZE, remaining))
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        data = b"".join(chunks)
        if len(data) != length:
            raise TransferClientError(
                f"Part {part_number}: expected {length} bytes from local file, read {len(data)}"
            )
        params = {
            "Bucket": bucket,
            "Key": key,
            "UploadId": upload_id,
            "PartNumber": part_number,
            "Body": data,
            "ContentLength": length,
        }
        if checksum_algorithm:
            # botocore computes the checksum and the server verifies it and echoes it back
            params["ChecksumAlgorithm"] = checksum_algorithm
        params.update(sse or {})
        resp = self._call(f"upload_part {part_number}", self.s3.upload_part, **params)
        return UploadedPart(part_number=part_number, etag=resp["ETag"], crc32=resp.get("ChecksumCRC32"))

    def get_object_range(
        self, bucket, key, range_start, range_end, version_id=None, conditions=None, sse=None
    ):
        params = {"Bucket": bucket, "Key": key, "Range": f"bytes={range_start}-{range_end}"}
        if version_id:
            params["VersionId"] = version_id
        params.update(conditions or {})
        params.update(sse or {})
        resp = self._call("get_object", self.s3.get_object, **params)
        return _TranslatingBody(resp["Body"], f"get_object {key} bytes={range_start}-{range_end}")

    def complete_multipart_upload(self, bucket, key, upload_id, parts):
        resp = self._call(
            "complete_multipart_upload",
            self.s3.complete_multipart_upload,
            Bucket=bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={"Parts": [_completed_part(p) for p in parts]},
        )
        return {"etag": (resp.get("ETag") or "").strip('"') or None, "version_id": resp.get("VersionId")}

    def abort_multipart_upload(self, bucket, key, upload_id):
        self._call(
            "abort_multipart_upload",
            self.s3.abort_multipart_upload,
            Bucket=bucket,
            Key=key,
            UploadId=upload_id,
        )
        logger.info(f"Aborted multipart upload {upload_id} for {bucket}/{key}")


def _completed_part(part: UploadedPart) -> Dict[str, Any]:
    entry = {"PartNumber": part.part_number, "ETag": part.etag}
    if part.crc32:
        entry["ChecksumCRC32"] = part.crc32
    return entry


class _TranslatingBody:
    """Response body whose read errors surface as partwise errors."""

    def __init__(self, body, description: str) -> None:
        self._body = body
        self._description = description

    def read(self, size: int = -1) -> bytes:
        try:
            return self._body.read(None if size is None or size < 0 else size)
        except (BotoCoreError, OSError) as e:
            raise NetworkError(f"{self._description}: {e}", e) from e

    def close(self) -> None:
        self._body.close()
