"""Serial number and index ledger."""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from caledger.exceptions import AlreadyRevoked, DuplicateSerial, LedgerIntegrityError, NotFound, SerialExhausted
from caledger.models.ledger import LedgerEntry, LedgerStatus, RevocationReason
from caledger.utils.file_utils import FileUtils

logger = logging.getLogger("caledger")

# RFC 5280: serials are positive and at most 20 octets
MAX_SERIAL = (1 << 159) - 1

SERIAL_FILE = "serial"
INDEX_FILE = "index.txt"
RETIRED_FILE = "serial.retired"


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clean_cn(value: str) -> str:
    return value.replace("\t", " ").replace("\n", " ").replace("\r", " ")


class SerialLedger:
    """
    Durable record of every serial number a CA instance has handed out.

    Mirrors the serial / index.txt pair of classical CA tooling:

    - ``serial`` holds the next serial to allocate, in hex.
    - ``index.txt`` is an append-only, tab-separated entry log:
      ``flag  serial  issued_at  expires_at  revoked_at[,reason]  common_name``
    - ``serial.retired`` lists serials that were allocated but will never be
      recorded (signing failed, cancelled, or orphaned by a crash).

    On open() the counter is reconciled with the log: the next serial is the
    maximum of the stored counter and one past the highest serial seen, and
    every serial below it with neither an entry nor a retirement is retired.
    """

    def __init__(self, ledger_dir: Path, initial_serial: int = 0x1000):
        self.ledger_dir = ledger_dir
        self.initial_serial = initial_serial
        self._serial_lock = threading.Lock()
        self._index_lock = threading.Lock()
        self._entries: Dict[int, LedgerEntry] = {}
        self._retired: Dict[int, str] = {}
        self._next_serial: Optional[int] = None

    @property
    def serial_file(self) -> Path:
        return self.ledger_dir / SERIAL_FILE

    @property
    def index_file(self) -> Path:
        return self.ledger_dir / INDEX_FILE

    @property
    def retired_file(self) -> Path:
        return self.ledger_dir / RETIRED_FILE

    @property
    def is_open(self) -> bool:
        return self._next_serial is not None

    @property
    def next_serial(self) -> int:
        """The serial the next allocate_serial() call will return."""
        self._require_open()
        return self._next_serial

    def open(self) -> "SerialLedger":
        """
        Load counter, index and retired list, and reconcile them.

        Returns:
            self, for chaining

        Raises:
            LedgerIntegrityError: If a persisted file is corrupt
        """
        FileUtils.ensure_directory(self.ledger_dir)

        counter = self._read_counter()
        self._entries = self._read_index()
        self._retired = self._read_retired()

        seen = set(self._entries) | set(self._retired)
        next_serial = max(counter, max(seen) + 1 if seen else self.initial_serial)

        if next_serial != counter:
            logger.warning(
                f"Ledger counter {counter:X} is behind the index; reconciled to {next_serial:X} in {self.ledger_dir}"
            )

        # Allocated above every known serial but never recorded or retired: crash orphans.
        # Gaps below the highest known serial are never handed out again either way.
        orphans = range(max(seen) + 1 if seen else self.initial_serial, next_serial)
        for serial in orphans:
            self._append_retired(serial, "orphaned")
            logger.warning(f"Retired orphaned serial {serial:X} (allocated but never recorded)")

        self._write_counter(next_serial)
        self._next_serial = next_serial

        logger.info(
            f"Opened ledger {self.ledger_dir}: {len(self._entries)} entries, "
            f"{len(self._retired)} retired, next serial {next_serial:X}"
        )
        return self

    def close(self) -> None:
        """Release the in-memory state. Every commit is already durable."""
        with self._serial_lock, self._index_lock:
            self._next_serial = None
            self._entries = {}
            self._retired = {}
        logger.info(f"Closed ledger {self.ledger_dir}")

    def allocate_serial(self) -> int:
        """
        Hand out a serial number that will never be handed out again.

        The incremented counter is durably written before the serial is
        returned, so a crash after this call can only orphan the serial,
        never reuse it.

        Returns:
            Newly allocated serial number

        Raises:
            SerialExhausted: If the serial space is used up
        """
        with self._serial_lock:
            self._require_open()
            serial = self._next_serial
            if serial > MAX_SERIAL:
                raise SerialExhausted(f"Serial number space exhausted in {self.ledger_dir}")
            self._write_counter(serial + 1)
            self._next_serial = serial + 1

        logger.debug(f"Allocated serial {serial:X}")
        return serial

    def record(self, serial: int, common_name: str, issued_at: datetime, expires_at: datetime) -> LedgerEntry:
        """
        Append a valid entry for serial and fsync it.

        Raises:
            DuplicateSerial: If the serial is already recorded or was retired
        """
        entry = LedgerEntry(
            serial_number=serial,
            common_name=_clean_cn(common_name),
            issued_at=_utc(issued_at),
            expires_at=_utc(expires_at),
        )
        with self._index_lock:
            self._require_open()
            if serial in self._entries or serial in self._retired:
                raise DuplicateSerial(serial)
            FileUtils.append_line(self.index_file, self._format_entry(entry))
            self._entries[serial] = entry

        logger.info(f"Recorded serial {serial:X} for '{entry.common_name}'")
        return entry

    def retire(self, serial: int, reason: str) -> None:
        """
        Durably mark an allocated serial as never to be recorded.

        Raises:
            DuplicateSerial: If the serial already has an entry
        """
        with self._index_lock:
            self._require_open()
            if serial in self._entries:
                raise DuplicateSerial(serial)
            if serial in self._retired:
                return
            self._append_retired(serial, reason)

        logger.warning(f"Retired serial {serial:X}: {reason}")

    def is_retired(self, serial: int) -> bool:
        return serial in self._retired

    def mark_revoked(
        self,
        serial: int,
        reason: RevocationReason = RevocationReason.UNSPECIFIED,
        revoked_at: Optional[datetime] = None,
    ) -> LedgerEntry:
        """
        Mark a recorded serial as revoked.

        Raises:
            NotFound: If the serial has no entry
            AlreadyRevoked: If it is already revoked
        """
        with self._index_lock:
            self._require_open()
            entry = self._entries.get(serial)
            if entry is None:
                raise NotFound(f"Serial {serial:X} not found in ledger")
            if entry.status == LedgerStatus.REVOKED:
                raise AlreadyRevoked(f"Serial {serial:X} is already revoked")

            updated = entry.model_copy(
                update={
                    "status": LedgerStatus.REVOKED,
                    "revoked_at": _utc(revoked_at or datetime.now(timezone.utc)),
                    "revocation_reason": reason,
                }
            )
            self._entries[serial] = updated
            self._rewrite_index()

        logger.info(f"Revoked serial {serial:X} ({reason.value})")
        return updated

    def lookup(self, serial: int, now: Optional[datetime] = None) -> Optional[LedgerEntry]:
        """
        Return the entry for serial, or None.

        A valid entry whose expiry has passed is reported as expired.
        """
        self._require_open()
        entry = self._entries.get(serial)
        if entry is None:
            return None
        return self._effective(entry, now or datetime.now(timezone.utc))

    def entries(self, now: Optional[datetime] = None) -> List[LedgerEntry]:
        """All entries in serial order, with effective status."""
        self._require_open()
        now = now or datetime.now(timezone.utc)
        with self._index_lock:
            snapshot = sorted(self._entries.values(), key=lambda e: e.serial_number)
        return [self._effective(entry, now) for entry in snapshot]

    def update_expired(self, now: Optional[datetime] = None) -> int:
        """
        Persist the expired status of valid entries past their expiry.

        Returns:
            Number of entries updated
        """
        now = _utc(now or datetime.now(timezone.utc))
        with self._index_lock:
            self._require_open()
            expired = [
                e for e in self._entries.values() if e.status == LedgerStatus.VALID and e.expires_at <= now
            ]
            for entry in expired:
                self._entries[entry.serial_number] = entry.model_copy(update={"status": LedgerStatus.EXPIRED})
            if expired:
                self._rewrite_index()

        if expired:
            logger.info(f"Marked {len(expired)} ledger entries expired")
        return len(expired)

    # ----- persistence -----

    def _require_open(self) -> None:
        if self._next_serial is None:
            raise LedgerIntegrityError(f"Ledger {self.ledger_dir} is not open")

    @staticmethod
    def _effective(entry: LedgerEntry, now: datetime) -> LedgerEntry:
        if entry.status == LedgerStatus.VALID and entry.expires_at <= _utc(now):
            return entry.model_copy(update={"status": LedgerStatus.EXPIRED})
        return entry

    def _read_counter(self) -> int:
        if not self.serial_file.exists():
            return self.initial_serial
        content = FileUtils.read_file(self.serial_file).strip()
        if not content:
            return self.initial_serial
        try:
            return int(content, 16)
        except ValueError:
            raise LedgerIntegrityError(f"Corrupt serial file {self.serial_file}: {content!r}")

    def _write_counter(self, value: int) -> None:
        FileUtils.write_file_atomic(self.serial_file, f"{value:X}\n")

    @staticmethod
    def _format_entry(entry: LedgerEntry) -> str:
        revoked = ""
        if entry.revoked_at is not None:
            revoked = entry.revoked_at.isoformat()
            if entry.revocation_reason is not None:
                revoked += f",{entry.revocation_reason.value}"
        return "\t".join(
            [
                entry.status.flag,
                entry.serial_hex,
                entry.issued_at.isoformat(),
                entry.expires_at.isoformat(),
                revoked,
                entry.common_name,
            ]
        )

    def _parse_entry(self, line: str, line_no: int) -> LedgerEntry:
        parts = line.split("\t")
        if len(parts) != 6:
            raise LedgerIntegrityError(f"Corrupt index line {line_no} in {self.index_file}")
        flag, serial_hex, issued, expires, revoked, common_name = parts
        try:
            revoked_at, reason = None, None
            if revoked:
                stamp, _, reason_value = revoked.partition(",")
                revoked_at = datetime.fromisoformat(stamp)
                reason = RevocationReason(reason_value) if reason_value else None
            return LedgerEntry(
                serial_number=int(serial_hex, 16),
                common_name=common_name,
                issued_at=datetime.fromisoformat(issued),
                expires_at=datetime.fromisoformat(expires),
                status=LedgerStatus.from_flag(flag),
                revoked_at=revoked_at,
                revocation_reason=reason,
            )
        except (KeyError, ValueError) as e:
            raise LedgerIntegrityError(f"Corrupt index line {line_no} in {self.index_file}: {e}")

    def _read_index(self) -> Dict[int, LedgerEntry]:
        entries = {}
        for line_no, line in enumerate(FileUtils.read_lines(self.index_file), start=1):
            entry = self._parse_entry(line, line_no)
            if entry.serial_number in entries:
                raise DuplicateSerial(entry.serial_number)
            entries[entry.serial_number] = entry
        return entries

    def _read_retired(self) -> Dict[int, str]:
        retired = {}
        for line in FileUtils.read_lines(self.retired_file):
            serial_hex, _, reason = line.partition("\t")
            try:
                retired[int(serial_hex, 16)] = reason
            except ValueError:
                raise LedgerIntegrityError(f"Corrupt retired serial line in {self.retired_file}: {line!r}")
        return retired

    def _append_retired(self, serial: int, reason: str) -> None:
        FileUtils.append_line(self.retired_file, f"{serial:X}\t{reason}")
        self._retired[serial] = reason

    def _rewrite_index(self) -> None:
        ordered = sorted(self._entries.values(), key=lambda e: e.serial_number)
        content = "".join(self._format_entry(entry) + "\n" for entry in ordered)
        FileUtils.write_file_atomic(self.index_file, content)
