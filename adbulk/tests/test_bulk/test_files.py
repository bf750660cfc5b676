"""Tests for bulk file writing and reading."""
import json

import pytest

from adbulk.bulk.builder import BulkEntityBuilder
from adbulk.bulk.errors import BulkError, BulkErrorKind
from adbulk.bulk.models import (
    BulkCampaign, BulkCampaignDayTimeTarget, BulkCampaignLocationTarget, Campaign, IntentOption
)
from adbulk.bulk.reader import BulkFileReader, read_batch
from adbulk.bulk.writer import BulkFileWriter, write_batch

@pytest.fixture
def batch(campaign, day_time_bids, location_bids, radius_bids):
    return BulkEntityBuilder().prepare_campaign_with_targets(
        campaign,
        day_time_bids=day_time_bids,
        location_bids=location_bids,
        intent_option=IntentOption.PEOPLE_IN,
        radius_bids=radius_bids,
        campaign_key=-123,
        target_key=-1,
        client_id="YourClientIdGoesHere"
    )

class TestBulkFileWriter:
    """Test cases for BulkFileWriter."""

    def test_write_and_read_back(self, tmp_path, batch):
        path = tmp_path / "upload.jsonl"
        with BulkFileWriter(path) as writer:
            assert writer.write_entities(batch) == 4

        records = read_batch(path)
        assert records == batch.records
        assert isinstance(records[2], BulkCampaignLocationTarget)

    def test_header_line(self, tmp_path, batch):
        path = write_batch(tmp_path / "upload.jsonl", batch)
        lines = path.read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[0]) == {"format": "adbulk", "version": 1}
        assert len(lines) == 5

    def test_child_before_parent_is_rejected(self, tmp_path):
        path = tmp_path / "upload.jsonl"
        with pytest.raises(BulkError) as exc_info:
            with BulkFileWriter(path) as writer:
                writer.write_entity(BulkCampaignDayTimeTarget(campaign_id=-123, target_id=-1))

        assert exc_info.value.kind == BulkErrorKind.VALIDATION
        assert writer._file is None
        assert not path.exists()

    def test_unvalidated_writer_keeps_order(self, tmp_path):
        path = tmp_path / "result.jsonl"
        with BulkFileWriter(path, validate=False) as writer:
            writer.write_entity(BulkCampaignDayTimeTarget(campaign_id=-123, target_id=-1))
        assert len(read_batch(path)) == 1

    def test_no_overwrite(self, tmp_path, batch):
        path = write_batch(tmp_path / "upload.jsonl", batch)
        with pytest.raises(BulkError) as exc_info:
            write_batch(path, batch, overwrite=False)
        assert exc_info.value.kind == BulkErrorKind.IO

    def test_unwritable_destination(self, tmp_path, batch):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(BulkError) as exc_info:
            write_batch(blocker / "upload.jsonl", batch)
        assert exc_info.value.kind == BulkErrorKind.IO

    def test_writer_opens_lazily(self, tmp_path):
        writer = BulkFileWriter(tmp_path / "lazy.jsonl")
        writer.write_entity(BulkCampaign(campaign=Campaign(id=-1, name="Lazy")))
        writer.close()
        assert writer.count == 1
        assert len(read_batch(tmp_path / "lazy.jsonl")) == 1

class TestBulkFileReader:
    """Test cases for BulkFileReader."""

    def test_missing_file(self, tmp_path):
        reader = BulkFileReader(tmp_path / "missing.jsonl")
        with pytest.raises(BulkError) as exc_info:
            list(reader.read_entities())
        assert exc_info.value.kind == BulkErrorKind.IO

    def test_bad_header(self, tmp_path):
        path = tmp_path / "bad.jsonl"
        path.write_text("Type,Status,Id\n", encoding="utf-8")
        with pytest.raises(BulkError) as exc_info:
            read_batch(path)
        assert exc_info.value.kind == BulkErrorKind.FORMAT

    def test_unsupported_version(self, tmp_path):
        path = tmp_path / "v2.jsonl"
        path.write_text(json.dumps({"format": "adbulk", "version": 2}) + "\n", encoding="utf-8")
        with pytest.raises(BulkError) as exc_info:
            read_batch(path)
        assert exc_info.value.kind == BulkErrorKind.FORMAT

    def test_malformed_line(self, tmp_path, batch):
        path = write_batch(tmp_path / "upload.jsonl", batch)
        with open(path, "a", encoding="utf-8") as handle:
            handle.write('{"kind": "Keyword", "text": "shoes"}\n')

        reader = BulkFileReader(path)
        records = []
        with pytest.raises(BulkError) as exc_info:
            for record in reader.read_entities():
                records.append(record)

        assert exc_info.value.kind == BulkErrorKind.FORMAT
        assert exc_info.value.details["line"] == 6
        assert len(records) == 4
        assert reader._file is None

    def test_early_exit_releases_file(self, tmp_path, batch):
        path = write_batch(tmp_path / "upload.jsonl", batch)
        with BulkFileReader(path) as reader:
            first = next(reader.read_entities())
        assert isinstance(first, BulkCampaign)
        assert reader._file is None

    def test_read_entities_of(self, tmp_path, batch):
        path = write_batch(tmp_path / "upload.jsonl", batch)
        targets = BulkFileReader(path).read_entities_of(BulkCampaignDayTimeTarget)
        assert len(targets) == 1
        assert len(targets[0].bids) == 2

    def test_blank_lines_are_skipped(self, tmp_path, batch):
        path = write_batch(tmp_path / "upload.jsonl", batch)
        with open(path, "a", encoding="utf-8") as handle:
            handle.write("\n\n")
        assert len(read_batch(path)) == 4

    def test_invalid_utf8_line(self, tmp_path, batch):
        path = write_batch(tmp_path / "upload.jsonl", batch)
        with open(path, "ab") as handle:
            handle.write(b'{"kind": "Campaign", "campaign": {"name": "\xff\xfe"}}\n')

        reader = BulkFileReader(path)
        with pytest.raises(BulkError) as exc_info:
            list(reader.read_entities())

        assert exc_info.value.kind == BulkErrorKind.FORMAT
        assert exc_info.value.details["line"] == 6
        assert reader._file is None

    def test_invalid_utf8_header(self, tmp_path):
        path = tmp_path / "result.jsonl"
        path.write_bytes(b'{"format": "\xff"}\n')

        with pytest.raises(BulkError) as exc_info:
            read_batch(path)

        assert exc_info.value.kind == BulkErrorKind.FORMAT
        assert exc_info.value.details["line"] == 1
