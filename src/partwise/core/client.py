"""S3-compatible client exposing resumable uploads and downloads."""

import logging
import os
from typing import Any, Optional

import boto3
from botocore.config import Config

from .cancel import CancelHook
from .config import TransferConfig
from .models import (
    DownloadFileInput,
    DownloadFileOutput,
    UploadFileInput,
    UploadFileOutput,
)
from .planner import DEFAULT_LIMITS, PartLimits
from .streams import TokenBucketRateLimiter
from .transfer import Downloader, Uploader
from .transport import S3Transport, Transport

logger = logging.getLogger(__name__)


class TransferClient:
    """Client for resumable multipart transfers against an S3-compatible store."""

    def __init__(
        self,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        config: Optional[TransferConfig] = None,
        connect_timeout: float = 10,
        read_timeout: float = 60,
        transport: Optional[Transport] = None,
        limits: PartLimits = DEFAULT_LIMITS,
    ):
        """Initialize the client.

        Args:
            access_key: S3 access key. Falls back to PARTWISE_ACCESS_KEY, then to
                the boto3 default credential chain.
            secret_key: S3 secret key. Falls back to PARTWISE_SECRET_KEY.
            region: Region name. Falls back to PARTWISE_REGION.
            endpoint_url: Endpoint of an S3-compatible store. Falls back to
                PARTWISE_ENDPOINT_URL.
            config: Transfer tunables; loaded from the environment when omitted.
            connect_timeout: Per-request connect timeout in seconds.
            read_timeout: Per-request read timeout in seconds.
            transport: Use this transport instead of building a boto3 one.
            limits: Part size and count limits of the store.
        """
        self.config = config or TransferConfig.from_env()
        self.limits = limits

        if transport is not None:
            self.transport = transport
            return

        self.access_key = access_key or os.getenv("PARTWISE_ACCESS_KEY")
        self.secret_key = secret_key or os.getenv("PARTWISE_SECRET_KEY")
        self.region = region or os.getenv("PARTWISE_REGION")
        self.endpoint_url = endpoint_url or os.getenv("PARTWISE_ENDPOINT_URL")

        self.session = boto3.Session(
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
            region_name=self.region,
        )
        # Retries are governed by the transfer's RetryPolicy, not botocore
        self.botocore_cfg = Config(
            region_name=self.region,
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"total_max_attempts": 1, "mode": "standard"},
            max_pool_connections=max(10, self.config.task_num * 2),
        )
        self.s3 = self.session.client("s3", config=self.botocore_cfg, endpoint_url=self.endpoint_url)
        self.transport = S3Transport(self.s3)

    def _rate_limiter(self, explicit: Any):
        if explicit is not None:
            return explicit
        if self.config.rate_limit:
            return TokenBucketRateLimiter(self.config.rate_limit)
        return None

    def uploader(self, input: UploadFileInput) -> Uploader:
        """Build an upload that can be started and cancelled separately."""
        input = input.model_copy(update={"rate_limiter": self._rate_limiter(input.rate_limiter)})
        return Uploader(self.transport, input, self.config, self.limits)

    def downloader(self, input: DownloadFileInput) -> Downloader:
        """Build a download that can be started and cancelled separately."""
        input = input.model_copy(update={"rate_limiter": self._rate_limiter(input.rate_limiter)})
        return Downloader(self.transport, input, self.config, self.limits)

    def upload_file(
        self, local_path: str, bucket: str, key: str, **options: Any
    ) -> UploadFileOutput:
        """Upload a local file with resume support.

        Args:
            local_path: Local file path
            bucket: Target bucket
            key: Object key
            **options: Any other :class:`UploadFileInput` field

        Returns:
            UploadFileOutput describing the completed object
        """
        input = UploadFileInput(bucket=bucket, key=key, file_path=local_path, **options)
        return self.uploader(input).start()

    def download_file(
        self, bucket: str, key: str, local_path: str, **options: Any
    ) -> DownloadFileOutput:
        """Download an object to a local file with resume support.

        Args:
            bucket: Source bucket
            key: Object key
            local_path: Local file path to save to
            **options: Any other :class:`DownloadFileInput` field

        Returns:
            DownloadFileOutput describing the written file
        """
        input = DownloadFileInput(bucket=bucket, key=key, file_path=local_path, **options)
        return self.downloader(input).start()

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        """Abort a multipart upload left behind by an interrupted transfer."""
        self.transport.abort_multipart_upload(bucket, key, upload_id)

    @staticmethod
    def new_cancel_hook() -> CancelHook:
        return CancelHook()
