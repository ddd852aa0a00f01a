"""
partwise - resumable, parallel multipart transfers for S3-compatible storage.

This package provides:
- Multipart uploads and ranged downloads that resume from a checkpoint file
- Bounded-concurrency part scheduling with deadline-aware retries
- Rate limiting, progress reporting and xxh64 integrity checks on part streams
- A CLI for uploading, downloading and aborting transfers
"""

__version__ = "1.0.0"

from .core.cancel import CancelHook
from .core.client import TransferClient
from .core.config import TransferConfig
from .core.exceptions import (
    ChecksumMismatchError,
    ConfigurationError,
    InvalidPartSizeError,
    NetworkError,
    PartTransferError,
    PartwiseError,
    SchedulerStateError,
    ServerError,
    TransferCancelledError,
    TransferClientError,
)
from .core.models import (
    DataTransferStatus,
    DataTransferType,
    DownloadFileInput,
    DownloadFileOutput,
    TransferEvent,
    TransferEventType,
    UploadFileInput,
    UploadFileOutput,
)
from .core.streams import TokenBucketRateLimiter
from .core.transfer import Downloader, TransferState, Uploader, start_download, start_upload
from .core.transport import S3Transport, Transport

__all__ = [
    # Core classes
    "TransferClient",
    "Uploader",
    "Downloader",
    "CancelHook",
    "TransferConfig",
    "TransferState",
    "TokenBucketRateLimiter",
    "S3Transport",
    "Transport",
    # Models
    "UploadFileInput",
    "UploadFileOutput",
    "DownloadFileInput",
    "DownloadFileOutput",
    "DataTransferStatus",
    "DataTransferType",
    "TransferEvent",
    "TransferEventType",
    # Exceptions
    "PartwiseError",
    "TransferClientError",
    "ConfigurationError",
    "InvalidPartSizeError",
    "NetworkError",
    "ServerError",
    "TransferCancelledError",
    "ChecksumMismatchError",
    "PartTransferError",
    "SchedulerStateError",
    # Convenience functions
    "start_upload",
    "start_download",
    # Metadata
    "__version__",
]
