"""Tests for storage/record.py."""

from pathlib import Path

import pytest

from imagestack.storage.record import CheckoutRecord, CheckoutRecordStore


@pytest.fixture
def records(tmp_path: Path) -> CheckoutRecordStore:
    return CheckoutRecordStore(tmp_path / "checkout.tag", tmp_path / "checkout.digest")


class TestCheckoutRecordStore:
    """Tests for record persistence."""

    def test_absent(self, records):
        assert records.load() is None
        assert not records.is_present()
        assert not records.is_partial()
        assert not records.has_residue()

    def test_save_and_load(self, records):
        records.save(CheckoutRecord(tag="app", digest="abc"))

        assert records.is_present()
        assert records.load() == CheckoutRecord(tag="app", digest="abc")
        assert records.tag_file.read_text() == "app"
        assert not records.tag_file.with_name("checkout.tag.tmp").exists()

    def test_layerless_digest(self, records):
        """An image without layers is recorded with an empty digest file."""
        records.save(CheckoutRecord(tag="empty", digest=None))

        assert records.digest_file.read_text() == ""
        assert records.load() == CheckoutRecord(tag="empty", digest=None)

    def test_partial_record(self, records):
        """A lone tag file is residue, not a checkout."""
        records.tag_file.write_text("app")

        assert records.load() is None
        assert records.is_partial()
        assert records.has_residue()

    def test_clear(self, records):
        records.save(CheckoutRecord(tag="app", digest="abc"))
        records.clear()
        records.clear()

        assert not records.has_residue()
