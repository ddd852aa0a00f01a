"""
Tests for the boto3-backed transport.
"""

import io
from datetime import datetime, timezone
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError
from botocore.response import StreamingBody
from botocore.stub import Stubber

from partwise.core.exceptions import NetworkError, ServerError, TransferClientError
from partwise.core.models import UploadedPart
from partwise.core.transport import (
    S3Transport,
    is_524_error,
    is_insufficient_storage_error,
    translate_error,
)


@pytest.fixture
def s3():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(s3):
    with Stubber(s3) as stub:
        yield stub
        stub.assert_no_pending_responses()


def _client_error(status, code="InternalError", operation="UploadPart"):
    return ClientError(
        {
            "Error": {"Code": code, "Message": "boom"},
            "ResponseMetadata": {"HTTPStatusCode": status, "RequestId": "req-1"},
        },
        operation,
    )


class TestErrorHelpers:
    """Test botocore error detection and translation."""

    def test_status_helpers(self):
        assert is_insufficient_storage_error(_client_error(507))
        assert is_524_error(_client_error(524))
        assert not is_524_error(ValueError("x"))

    def test_client_error_becomes_server_error(self):
        error = translate_error(_client_error(503, "SlowDown"), "upload_part 2")
        assert isinstance(error, ServerError)
        assert error.status_code == 503
        assert error.code == "SlowDown"
        assert error.request_id == "req-1"

    def test_connection_error_becomes_network_error(self):
        error = translate_error(EndpointConnectionError(endpoint_url="http://x"), "head_object")
        assert isinstance(error, NetworkError)

    def test_read_timeout_becomes_network_error(self):
        error = translate_error(ReadTimeoutError(endpoint_url="http://x"), "get_object")
        assert isinstance(error, NetworkError)

    def test_unrelated_errors_pass_through(self):
        error = ValueError("x")
        assert translate_error(error, "op") is error


class TestS3TransportStubbed:
    """Test response handling against stubbed S3 responses."""

    def test_head_object(self, s3, stubber):
        modified = datetime(2024, 1, 1, tzinfo=timezone.utc)
        stubber.add_response(
            "head_object",
            {
                "ContentLength": 1234,
                "ETag": '"abc123"',
                "LastModified": modified,
                "Metadata": {"xxh64": "42"},
                "VersionId": "v1",
            },
        )
        head = S3Transport(s3).fetch_object_metadata("bucket", "key")

        assert head.size == 1234
        assert head.etag == "abc123"
        assert head.checksum == 42
        assert head.version_id == "v1"
        assert head.last_modified == modified

    def test_head_object_bad_checksum_metadata(self, s3, stubber):
        stubber.add_response(
            "head_object", {"ContentLength": 1, "ETag": '"e"', "Metadata": {"xxh64": "nope"}}
        )
        assert S3Transport(s3).fetch_object_metadata("bucket", "key").checksum is None

    def test_head_object_not_found(self, s3, stubber):
        stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
        with pytest.raises(ServerError) as exc_info:
            S3Transport(s3).fetch_object_metadata("bucket", "key")
        assert exc_info.value.status_code == 404

    def test_create_multipart_upload(self, s3, stubber):
        stubber.add_response(
            "create_multipart_upload", {"Bucket": "bucket", "Key": "key", "UploadId": "u-1"}
        )
        assert S3Transport(s3).create_multipart_upload("bucket", "key") == "u-1"

    def test_upload_part(self, s3, stubber):
        stubber.add_response("upload_part", {"ETag": '"part-etag"'})
        part = S3Transport(s3).upload_part("bucket", "key", "u-1", 1, io.BytesIO(b"hello"), 5)
        assert part.part_number == 1
        assert part.etag == '"part-etag"'

    def test_upload_part_reports_server_crc32(self, s3, stubber):
        stubber.add_response("upload_part", {"ETag": '"part-etag"', "ChecksumCRC32": "NhCmhg=="})
        part = S3Transport(s3).upload_part(
            "bucket", "key", "u-1", 1, io.BytesIO(b"hello"), 5, checksum_algorithm="CRC32"
        )
        assert part.crc32 == "NhCmhg=="

    def test_upload_part_throttled(self, s3, stubber):
        stubber.add_client_error("upload_part", service_error_code="SlowDown", http_status_code=503)
        with pytest.raises(ServerError) as exc_info:
            S3Transport(s3).upload_part("bucket", "key", "u-1", 1, io.BytesIO(b"hello"), 5)
        assert exc_info.value.status_code == 503
        assert exc_info.value.code == "SlowDown"

    def test_get_object_range(self, s3, stubber):
        stubber.add_response(
            "get_object", {"Body": StreamingBody(io.BytesIO(b"world"), 5), "ContentLength": 5}
        )
        body = S3Transport(s3).get_object_range("bucket", "key", 6, 10)
        assert body.read(3) == b"wor"
        assert body.read() == b"ld"

    def test_complete_no_such_upload(self, s3, stubber):
        stubber.add_client_error(
            "complete_multipart_upload", service_error_code="NoSuchUpload", http_status_code=404
        )
        with pytest.raises(ServerError) as exc_info:
            S3Transport(s3).complete_multipart_upload(
                "bucket", "key", "u-1", [UploadedPart(part_number=1, etag='"e"')]
            )
        assert exc_info.value.code == "NoSuchUpload"

    def test_complete(self, s3, stubber):
        stubber.add_response(
            "complete_multipart_upload", {"ETag": '"merged-2"', "VersionId": "v2"}
        )
        result = S3Transport(s3).complete_multipart_upload(
            "bucket", "key", "u-1", [UploadedPart(part_number=1, etag='"e"')]
        )
        assert result == {"etag": "merged-2", "version_id": "v2"}


class TestS3TransportParams:
    """Test request parameters sent to the client."""

    def test_head_passes_version_conditions_and_sse(self):
        client = MagicMock()
        client.head_object.return_value = {"ContentLength": 0, "ETag": '"e"'}
        S3Transport(client).fetch_object_metadata(
            "bucket",
            "key",
            version_id="v1",
            conditions={"IfMatch": "e"},
            sse={"SSECustomerAlgorithm": "AES256"},
        )
        client.head_object.assert_called_once_with(
            Bucket="bucket", Key="key", VersionId="v1", IfMatch="e", SSECustomerAlgorithm="AES256"
        )

    def test_create_passes_metadata(self):
        client = MagicMock()
        client.create_multipart_upload.return_value = {"UploadId": "u-1"}
        S3Transport(client).create_multipart_upload(
            "bucket", "key", metadata={"xxh64": "1"}, content_type="text/plain"
        )
        client.create_multipart_upload.assert_called_once_with(
            Bucket="bucket", Key="key", Metadata={"xxh64": "1"}, ContentType="text/plain"
        )

    def test_upload_part_reads_exact_length(self):
        client = MagicMock()
        client.upload_part.return_value = {"ETag": '"e"'}
        S3Transport(client).upload_part("bucket", "key", "u-1", 3, io.BytesIO(b"abcdef"), 6)
        client.upload_part.assert_called_once_with(
            Bucket="bucket",
            Key="key",
            UploadId="u-1",
            PartNumber=3,
            Body=b"abcdef",
            ContentLength=6,
        )

    def test_upload_part_requests_checksum(self):
        client = MagicMock()
        client.upload_part.return_value = {"ETag": '"e"'}
        S3Transport(client).upload_part(
            "bucket", "key", "u-1", 1, io.BytesIO(b"ab"), 2, checksum_algorithm="CRC32"
        )
        assert client.upload_part.call_args.kwargs["ChecksumAlgorithm"] == "CRC32"

    def test_create_requests_checksum(self):
        client = MagicMock()
        client.create_multipart_upload.return_value = {"UploadId": "u-1"}
        S3Transport(client).create_multipart_upload("bucket", "key", checksum_algorithm="CRC32")
        client.create_multipart_upload.assert_called_once_with(
            Bucket="bucket", Key="key", ChecksumAlgorithm="CRC32"
        )

    def test_upload_part_short_source(self):
        client = MagicMock()
        with pytest.raises(TransferClientError):
            S3Transport(client).upload_part("bucket", "key", "u-1", 1, io.BytesIO(b"abc"), 6)
        client.upload_part.assert_not_called()

    def test_get_object_inclusive_range(self):
        client = MagicMock()
        client.get_object.return_value = {"Body": io.BytesIO(b"x")}
        S3Transport(client).get_object_range("bucket", "key", 10, 19, version_id="v1")
        client.get_object.assert_called_once_with(
            Bucket="bucket", Key="key", Range="bytes=10-19", VersionId="v1"
        )

    def test_body_read_error_becomes_network_error(self):
        broken = MagicMock()
        broken.read.side_effect = ReadTimeoutError(endpoint_url="http://x")
        client = MagicMock()
        client.get_object.return_value = {"Body": broken}

        body = S3Transport(client).get_object_range("bucket", "key", 0, 9)
        with pytest.raises(NetworkError):
            body.read(5)

    def test_complete_sends_parts(self):
        client = MagicMock()
        client.complete_multipart_upload.return_value = {}
        S3Transport(client).complete_multipart_upload(
            "bucket",
            "key",
            "u-1",
            [UploadedPart(part_number=1, etag="a"), UploadedPart(part_number=2, etag="b")],
        )
        client.complete_multipart_upload.assert_called_once_with(
            Bucket="bucket",
            Key="key",
            UploadId="u-1",
            MultipartUpload={"Parts": [{"PartNumber": 1, "ETag": "a"}, {"PartNumber": 2, "ETag": "b"}]},
        )

    def test_complete_sends_part_checksums(self):
        client = MagicMock()
        client.complete_multipart_upload.return_value = {}
        S3Transport(client).complete_multipart_upload(
            "bucket", "key", "u-1", [UploadedPart(part_number=1, etag="a", crc32="NhCmhg==")]
        )
        parts = client.complete_multipart_upload.call_args.kwargs["MultipartUpload"]["Parts"]
        assert parts == [{"PartNumber": 1, "ETag": "a", "ChecksumCRC32": "NhCmhg=="}]

    def test_abort(self):
        client = MagicMock()
        S3Transport(client).abort_multipart_upload("bucket", "key", "u-1")
        client.abort_multipart_upload.assert_called_once_with(Bucket="bucket", Key="key", UploadId="u-1")
