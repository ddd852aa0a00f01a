#!/usr/bin/env python3
"""
Basic usage examples for partwise.

This script demonstrates the most common operations:
- Uploading a large file with resume support
- Downloading it back with ranged, parallel reads
- Progress reporting and cancellation
- Error handling

Set PARTWISE_ACCESS_KEY, PARTWISE_SECRET_KEY and PARTWISE_ENDPOINT_URL (or use
the default AWS credential chain) and PARTWISE_BUCKET before running.
"""

import os
import tempfile
import threading
from pathlib import Path

from partwise import (
    DataTransferType,
    PartTransferError,
    TransferCancelledError,
    TransferClient,
    TransferConfig,
    UploadFileInput,
)


def print_progress(status):
    if status.type == DataTransferType.RW and status.total_bytes:
        percent = 100.0 * status.consumed_bytes / status.total_bytes
        print(f"   {percent:5.1f}% ({status.consumed_bytes}/{status.total_bytes} bytes)")
    elif status.type == DataTransferType.SUCCEEDED:
        print("   done")


def main():
    """Demonstrate basic partwise operations."""
    bucket = os.getenv("PARTWISE_BUCKET")
    if not bucket:
        print("❌ Please set PARTWISE_BUCKET")
        return

    client = TransferClient(config=TransferConfig(part_size=8 * 1024 * 1024, task_num=4))

    with tempfile.TemporaryDirectory() as tmp:
        source = Path(tmp) / "sample.bin"
        source.write_bytes(os.urandom(40 * 1024 * 1024))
        key = "partwise-demo/sample.bin"

        # 1. Upload with progress
        print("\n1. Uploading 40MB in 8MB parts...")
        try:
            result = client.upload_file(str(source), bucket, key, data_transfer_listener=print_progress)
            print(f"   ✅ Uploaded {key} (upload id {result.upload_id}, {result.metrics.speed_mbps:.1f} MB/s)")
        except PartTransferError as e:
            # The checkpoint stays on disk; running the upload again resumes it
            print(f"   ❌ {e}")
            return

        # 2. Download it back
        print("\n2. Downloading...")
        target = Path(tmp) / "copy.bin"
        result = client.download_file(bucket, key, str(target), data_transfer_listener=print_progress)
        print(f"   ✅ Downloaded {result.size} bytes, checksum {result.checksum}")
        assert target.read_bytes() == source.read_bytes()

        # 3. Cancel an upload from another thread, then resume it
        print("\n3. Cancelling and resuming an upload...")
        uploader = client.uploader(UploadFileInput(bucket=bucket, key=key + ".2", file_path=str(source)))
        threading.Timer(0.5, uploader.cancel).start()
        try:
            uploader.start()
        except TransferCancelledError as e:
            print(f"   ⏸  {e.message}")
        result = client.upload_file(str(source), bucket, key + ".2")
        print(f"   ✅ Resumed: {result.metrics.parts_skipped} of {result.metrics.parts_total} parts skipped")


if __name__ == "__main__":
    main()
