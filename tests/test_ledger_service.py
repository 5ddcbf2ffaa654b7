"""Tests for the serial ledger."""

import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest

from caledger.exceptions import AlreadyRevoked, DuplicateSerial, LedgerIntegrityError, NotFound, SerialExhausted
from caledger.models.ledger import LedgerStatus, RevocationReason
from caledger.services.ledger_service import MAX_SERIAL, SerialLedger


def _dates(days=365):
    issued = datetime(2026, 1, 1, tzinfo=timezone.utc)
    return issued, issued + timedelta(days=days)


@pytest.mark.unit
class TestSerialAllocation:
    """Test serial number allocation."""

    def test_first_serial_is_initial_serial(self, ledger):
        assert ledger.allocate_serial() == 0x1000
        assert ledger.allocate_serial() == 0x1001

    def test_counter_is_persisted_before_return(self, ledger):
        serial = ledger.allocate_serial()

        assert ledger.serial_file.read_text().strip() == format(serial + 1, "X")

    def test_concurrent_allocations_are_unique(self, ledger):
        results = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                serial = ledger.allocate_serial()
                with lock:
                    results.append(serial)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 160
        assert len(set(results)) == 160
        assert ledger.next_serial == 0x1000 + 160

    def test_serial_space_exhausted(self, data_dir):
        ledger = SerialLedger(data_dir / "ledger", initial_serial=MAX_SERIAL).open()

        assert ledger.allocate_serial() == MAX_SERIAL
        with pytest.raises(SerialExhausted):
            ledger.allocate_serial()

    def test_closed_ledger_refuses_work(self, data_dir):
        ledger = SerialLedger(data_dir / "ledger")

        with pytest.raises(LedgerIntegrityError):
            ledger.allocate_serial()


@pytest.mark.unit
class TestLedgerRecords:
    """Test recording, retiring and revoking serials."""

    def test_record_appends_index_line(self, ledger):
        serial = ledger.allocate_serial()
        issued, expires = _dates()

        entry = ledger.record(serial, "test.example.org", issued, expires)

        assert entry.status == LedgerStatus.VALID
        line = ledger.index_file.read_text().splitlines()[0]
        assert line.split("\t") == ["V", "1000", issued.isoformat(), expires.isoformat(), "", "test.example.org"]

    def test_duplicate_record_rejected(self, ledger):
        serial = ledger.allocate_serial()
        issued, expires = _dates()
        ledger.record(serial, "first", issued, expires)

        with pytest.raises(DuplicateSerial):
            ledger.record(serial, "second", issued, expires)

        assert len(ledger.index_file.read_text().splitlines()) == 1

    def test_retired_serial_cannot_be_recorded(self, ledger):
        serial = ledger.allocate_serial()
        ledger.retire(serial, "signing failed")

        assert ledger.is_retired(serial)
        with pytest.raises(DuplicateSerial):
            ledger.record(serial, "late", *_dates())

    def test_tab_in_common_name_is_flattened(self, ledger):
        serial = ledger.allocate_serial()

        entry = ledger.record(serial, "evil\tname", *_dates())

        assert entry.common_name == "evil name"
        assert len(ledger.index_file.read_text().splitlines()[0].split("\t")) == 6

    def test_revoke(self, ledger):
        serial = ledger.allocate_serial()
        ledger.record(serial, "revoke.example.org", *_dates())
        revoked_at = datetime(2026, 6, 1, tzinfo=timezone.utc)

        entry = ledger.mark_revoked(serial, RevocationReason.KEY_COMPROMISE, revoked_at)

        assert entry.status == LedgerStatus.REVOKED
        assert entry.revoked_at == revoked_at
        assert ledger.index_file.read_text().startswith("R\t1000\t")
        assert f"{revoked_at.isoformat()},keyCompromise" in ledger.index_file.read_text()

    def test_revoke_twice(self, ledger):
        serial = ledger.allocate_serial()
        ledger.record(serial, "twice.example.org", *_dates())
        ledger.mark_revoked(serial)

        with pytest.raises(AlreadyRevoked):
            ledger.mark_revoked(serial)

    def test_revoke_unknown_serial(self, ledger):
        with pytest.raises(NotFound):
            ledger.mark_revoked(0xDEAD)

    def test_lookup_reports_expired(self, ledger):
        serial = ledger.allocate_serial()
        issued = datetime.now(timezone.utc) - timedelta(days=10)
        ledger.record(serial, "old.example.org", issued, issued + timedelta(days=1))

        assert ledger.lookup(serial).status == LedgerStatus.EXPIRED
        assert ledger.lookup(0xFFFF) is None

    def test_update_expired_persists_flag(self, ledger):
        issued = datetime.now(timezone.utc) - timedelta(days=10)
        old = ledger.allocate_serial()
        ledger.record(old, "old.example.org", issued, issued + timedelta(days=1))
        fresh = ledger.allocate_serial()
        ledger.record(fresh, "fresh.example.org", issued, issued + timedelta(days=365))

        assert ledger.update_expired() == 1
        lines = ledger.index_file.read_text().splitlines()
        assert lines[0].startswith("E\t1000\t")
        assert lines[1].startswith("V\t1001\t")


@pytest.mark.unit
class TestLedgerRecovery:
    """Test reopening after clean shutdowns and crashes."""

    def test_reopen_preserves_entries(self, data_dir):
        ledger = SerialLedger(data_dir / "ledger").open()
        serial = ledger.allocate_serial()
        ledger.record(serial, "persist.example.org", *_dates())
        ledger.mark_revoked(serial, RevocationReason.SUPERSEDED)
        ledger.close()

        reopened = SerialLedger(data_dir / "ledger").open()

        entry = reopened.lookup(serial, now=datetime(2026, 2, 1, tzinfo=timezone.utc))
        assert entry.status == LedgerStatus.REVOKED
        assert entry.revocation_reason == RevocationReason.SUPERSEDED
        assert reopened.allocate_serial() == serial + 1

    def test_crash_between_allocate_and_record(self, data_dir, caplog):
        """A serial allocated but never recorded is retired, never handed out again."""
        ledger = SerialLedger(data_dir / "ledger").open()
        recorded = ledger.allocate_serial()
        ledger.record(recorded, "ok.example.org", *_dates())
        orphan = ledger.allocate_serial()
        # Simulated crash: no retire, no close

        with caplog.at_level(logging.WARNING, logger="caledger"):
            recovered = SerialLedger(data_dir / "ledger").open()

        assert recovered.is_retired(orphan)
        assert recovered.allocate_serial() == orphan + 1
        assert "orphaned" in recovered.retired_file.read_text()
        assert any("orphaned serial" in record.message for record in caplog.records)

    def test_reopen_with_lower_initial_serial_retires_nothing(self, data_dir, caplog):
        ledger = SerialLedger(data_dir / "ledger", initial_serial=0x100000).open()
        for _ in range(2):
            ledger.record(ledger.allocate_serial(), "high.example.org", *_dates())
        ledger.close()

        with caplog.at_level(logging.WARNING, logger="caledger"):
            reopened = SerialLedger(data_dir / "ledger").open()

        assert not reopened.retired_file.exists() or reopened.retired_file.read_text() == ""
        assert not reopened.is_retired(0x1000)
        assert reopened.allocate_serial() == 0x100002
        assert not any("orphaned serial" in record.message for record in caplog.records)

    def test_stale_counter_is_reconciled(self, data_dir, caplog):
        ledger = SerialLedger(data_dir / "ledger").open()
        for _ in range(3):
            ledger.record(ledger.allocate_serial(), "entry.example.org", *_dates())
        ledger.close()
        # Counter restored from an old backup
        (data_dir / "ledger" / "serial").write_text("1000\n")

        with caplog.at_level(logging.WARNING, logger="caledger"):
            reopened = SerialLedger(data_dir / "ledger").open()

        assert reopened.next_serial == 0x1003
        assert reopened.allocate_serial() == 0x1003
        assert any("behind the index" in record.message for record in caplog.records)

    def test_corrupt_index_line(self, data_dir):
        ledger_dir = data_dir / "ledger"
        ledger_dir.mkdir()
        (ledger_dir / "index.txt").write_text("V\tnot-hex\n")

        with pytest.raises(LedgerIntegrityError):
            SerialLedger(ledger_dir).open()

    def test_corrupt_counter(self, data_dir):
        ledger_dir = data_dir / "ledger"
        ledger_dir.mkdir()
        (ledger_dir / "serial").write_text("zz\n")

        with pytest.raises(LedgerIntegrityError):
            SerialLedger(ledger_dir).open()

    def test_duplicate_index_lines(self, data_dir):
        ledger = SerialLedger(data_dir / "ledger").open()
        ledger.record(ledger.allocate_serial(), "dup.example.org", *_dates())
        line = ledger.index_file.read_text()
        ledger.close()
        (data_dir / "ledger" / "index.txt").write_text(line + line)

        with pytest.raises(DuplicateSerial):
            SerialLedger(data_dir / "ledger").open()
