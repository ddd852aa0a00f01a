"""
Tests for checkpoint persistence and validation.
"""

import json
from datetime import datetime, timezone

import pytest

from partwise.core.checkpoint import (
    CheckpointStore,
    checkpoint_path_for,
    new_download_checkpoint,
    new_upload_checkpoint,
)
from partwise.core.exceptions import TransferClientError
from partwise.core.models import (
    DownloadCheckpoint,
    DownloadFileInput,
    ObjectMetadata,
    UploadCheckpoint,
    UploadFileInput,
    UploadPartRecord,
)
from partwise.core.planner import plan_download_parts, plan_upload_parts

from conftest import KB, SMALL_LIMITS


def _upload_input(**overrides):
    fields = dict(bucket="bucket", key="dir/obj.bin", file_path="/data/obj.bin", part_size=10 * KB)
    fields.update(overrides)
    return UploadFileInput(**fields)


def _upload_checkpoint(inp=None):
    inp = inp or _upload_input()
    parts = plan_upload_parts(25 * KB, 10 * KB, SMALL_LIMITS)
    return new_upload_checkpoint(inp, 25 * KB, 1700000000, "upload-1", parts)


HEAD = ObjectMetadata(
    etag="abc123",
    size=25 * KB,
    last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
    checksum=42,
)


def _download_input(**overrides):
    fields = dict(bucket="bucket", key="dir/obj.bin", file_path="/data/obj.bin", part_size=10 * KB)
    fields.update(overrides)
    return DownloadFileInput(**fields)


def _download_checkpoint(inp=None):
    inp = inp or _download_input()
    parts = plan_download_parts(HEAD.size, 10 * KB, SMALL_LIMITS)
    return new_download_checkpoint(inp, HEAD, "/data/obj.bin.temp", parts)


class TestCheckpointPath:
    """Test checkpoint path derivation."""

    def test_beside_local_file(self, tmp_path):
        file_path = str(tmp_path / "obj.bin")
        path = checkpoint_path_for(file_path, "bucket", "dir/obj.bin", "upload")
        assert path == str(tmp_path / "obj.bin.bucket.dir_obj.bin.upload")

    def test_in_directory(self, tmp_path):
        cp_dir = tmp_path / "checkpoints"
        cp_dir.mkdir()
        path = checkpoint_path_for("/data/obj.bin", "bucket", "key", "download", str(cp_dir))
        assert path == str(cp_dir / "obj.bin.bucket.key.download")

    def test_explicit_file(self, tmp_path):
        explicit = str(tmp_path / "my.checkpoint")
        assert checkpoint_path_for("/data/obj.bin", "bucket", "key", "upload", explicit) == explicit


class TestUploadCheckpoint:
    """Test upload checkpoint layout and validity."""

    def test_serialized_keys(self, tmp_path):
        store = CheckpointStore(str(tmp_path / "cp"), UploadCheckpoint)
        store.use(_upload_checkpoint())
        store.persist()

        raw = json.loads((tmp_path / "cp").read_text())
        assert raw["Bucket"] == "bucket"
        assert raw["UploadID"] == "upload-1"
        assert raw["PartSize"] == 10 * KB
        assert raw["FileInfo"] == {"LastModified": 1700000000, "Size": 25 * KB}
        assert raw["PartsInfo"][2] == {
            "PartNumber": 3,
            "PartSize": 5 * KB,
            "Offset": 20 * KB,
            "IsCompleted": False,
        }

    def test_round_trip(self, tmp_path):
        path = str(tmp_path / "cp")
        store = CheckpointStore(path, UploadCheckpoint)
        original = store.use(_upload_checkpoint())
        store.record_and_persist(
            UploadPartRecord(part_number=1, part_size=10 * KB, offset=0, etag="e1", checksum=7, is_completed=True)
        )

        loaded = CheckpointStore(path, UploadCheckpoint).load()
        assert loaded == original
        assert loaded.parts_info[0].etag == "e1"
        assert loaded.parts_info[0].checksum == 7

    def test_valid_for_same_upload(self):
        inp = _upload_input()
        assert _upload_checkpoint(inp).valid(inp, 25 * KB, 1700000000)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"bucket": "other"},
            {"key": "other"},
            {"part_size": 5 * KB},
            {"ssec_algorithm": "AES256"},
            {"ssec_key_md5": "md5"},
            {"encoding_type": "url"},
            {"file_path": "/data/other.bin"},
        ],
    )
    def test_invalid_when_input_differs(self, overrides):
        checkpoint = _upload_checkpoint()
        assert not checkpoint.valid(_upload_input(**overrides), 25 * KB, 1700000000)

    def test_invalid_when_file_changed(self):
        inp = _upload_input()
        checkpoint = _upload_checkpoint(inp)
        assert not checkpoint.valid(inp, 26 * KB, 1700000000)
        assert not checkpoint.valid(inp, 25 * KB, 1700000001)

    def test_invalid_when_part_checksum_setting_differs(self):
        inp = _upload_input()
        parts = plan_upload_parts(25 * KB, 10 * KB, SMALL_LIMITS)
        checkpoint = new_upload_checkpoint(inp, 25 * KB, 1700000000, "upload-1", parts, "CRC32")
        assert checkpoint.valid(inp, 25 * KB, 1700000000, "CRC32")
        assert not checkpoint.valid(inp, 25 * KB, 1700000000)

    def test_invalid_without_upload_id(self):
        inp = _upload_input()
        checkpoint = _upload_checkpoint(inp).model_copy(update={"upload_id": None})
        assert not checkpoint.valid(inp, 25 * KB, 1700000000)


class TestDownloadCheckpoint:
    """Test download checkpoint validity."""

    def test_valid_for_same_download(self):
        inp = _download_input()
        assert _download_checkpoint(inp).valid(inp, HEAD)

    def test_ranges_serialized_inclusive(self, tmp_path):
        store = CheckpointStore(str(tmp_path / "cp"), DownloadCheckpoint)
        store.use(_download_checkpoint())
        store.persist()

        raw = json.loads((tmp_path / "cp").read_text())
        assert raw["ObjectInfo"]["Etag"] == "abc123"
        assert raw["FileInfo"]["TempFilePath"] == "/data/obj.bin.temp"
        assert [(p["RangeStart"], p["RangeEnd"]) for p in raw["PartsInfo"]] == [
            (0, 10 * KB - 1),
            (10 * KB, 20 * KB - 1),
            (20 * KB, 25 * KB - 1),
        ]

    @pytest.mark.parametrize(
        "change",
        [
            {"etag": "changed"},
            {"size": 26 * KB},
            {"checksum": 43},
            {"last_modified": datetime(2024, 2, 1, tzinfo=timezone.utc)},
        ],
    )
    def test_invalid_when_object_changed(self, change):
        inp = _download_input()
        assert not _download_checkpoint(inp).valid(inp, HEAD.model_copy(update=change))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"version_id": "v2"},
            {"if_match": "abc123"},
            {"part_size": 5 * KB},
            {"file_path": "/data/other.bin"},
        ],
    )
    def test_invalid_when_input_differs(self, overrides):
        checkpoint = _download_checkpoint()
        assert not checkpoint.valid(_download_input(**overrides), HEAD)


class TestCheckpointStore:
    """Test store bookkeeping and file handling."""

    def test_load_missing_file(self, tmp_path):
        assert CheckpointStore(str(tmp_path / "absent"), UploadCheckpoint).load() is None

    def test_load_malformed_file(self, tmp_path):
        path = tmp_path / "cp"
        path.write_text("{not json")
        assert CheckpointStore(str(path), UploadCheckpoint).load() is None

    def test_record_out_of_range(self):
        store = CheckpointStore(None, UploadCheckpoint)
        store.use(_upload_checkpoint())
        with pytest.raises(TransferClientError):
            store.record_part(UploadPartRecord(part_number=4, part_size=1, offset=0, is_completed=True))

    def test_completed_slot_is_final(self):
        store = CheckpointStore(None, UploadCheckpoint)
        store.use(_upload_checkpoint())
        store.record_part(UploadPartRecord(part_number=1, part_size=10 * KB, offset=0, etag="a", is_completed=True))
        with pytest.raises(TransferClientError):
            store.record_part(
                UploadPartRecord(part_number=1, part_size=10 * KB, offset=0, etag="b", is_completed=True)
            )

    def test_persist_failure_raises_client_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = CheckpointStore(str(blocker / "cp"), UploadCheckpoint)
        store.use(_upload_checkpoint())
        with pytest.raises(TransferClientError):
            store.persist()

    def test_delete_then_persist_is_noop(self, tmp_path):
        path = tmp_path / "cp"
        store = CheckpointStore(str(path), UploadCheckpoint)
        store.use(_upload_checkpoint())
        store.persist()
        assert path.exists()

        store.delete()
        store.persist()
        assert not path.exists()

    def test_in_memory_store(self):
        store = CheckpointStore(None, UploadCheckpoint)
        store.use(_upload_checkpoint())
        store.persist()
        store.delete()
        assert store.load() is None
