"""Transfer record persistence.

Two implementations of :py:class:`TransferStore`:

- :py:class:`InMemoryTransferStore` for tests and single process scripts
- :py:class:`JsonFileTransferStore` keeps all records in one JSON file,
  guarded by a :py:class:`filelock.FileLock` so several processes can
  share it

Concurrent writers are detected with an optimistic version check.
Every :py:meth:`TransferStore.update` compares :py:attr:`TransferRecord.version`
against the stored copy and raises :py:class:`~cctp_bridge.cctp.errors.StaleRecordError`
on mismatch. The loser re-reads the record and decides again.
"""

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from filelock import FileLock

from cctp_bridge.cctp.errors import StaleRecordError, TransferNotFound
from cctp_bridge.cctp.record import TransferRecord, TransferStatus
from cctp_bridge.utils import native_datetime_utc_now

logger = logging.getLogger(__name__)


class TransferStore(ABC):
    """Durable storage of transfer records.

    Records returned by the store are copies. Mutate them and
    pass them back to :py:meth:`update`.
    """

    @abstractmethod
    def create(self, record: TransferRecord) -> TransferRecord:
        """Persist a new record.

        :raise ValueError:
            If a record with the same id already exists.
        """

    @abstractmethod
    def get(self, transfer_id: str) -> TransferRecord:
        """Get a record by its id.

        :raise TransferNotFound:
            If no such record.
        """

    @abstractmethod
    def update(self, record: TransferRecord) -> TransferRecord:
        """Write back a modified record.

        :return:
            The stored record with its version bumped.

        :raise StaleRecordError:
            Someone else updated the record after it was read.
        """

    @abstractmethod
    def list(
        self,
        status: TransferStatus | None = None,
        source_chain: int | None = None,
        destination_chain: int | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TransferRecord]:
        """List records, newest first."""

    def find_by_hash(self, ref: str, source_chain: int | None = None) -> TransferRecord | None:
        """Find a record by burn hash, mint hash or transfer id.

        :param source_chain:
            Only match records from this source chain.
        """
        for record in self.list(source_chain=source_chain):
            if record.matches(ref):
                return record
        return None

    def find_by_message(self, message: bytes) -> TransferRecord | None:
        """Find a record whose cached CCTP message equals ``message``."""
        for record in self.list():
            if record.message == message:
                return record
        return None


def _filter(records, status, source_chain, destination_chain, limit, offset) -> list[TransferRecord]:
    matched = [
        r
        for r in records
        if (status is None or r.status == status)
        and (source_chain is None or r.source_chain == source_chain)
        and (destination_chain is None or r.destination_chain == destination_chain)
    ]
    matched.sort(key=lambda r: r.created_at, reverse=True)
    end = None if limit is None else offset + limit
    return matched[offset:end]


class InMemoryTransferStore(TransferStore):
    """Records kept in a dict, safe to share between threads."""

    def __init__(self):
        self._records: dict[str, TransferRecord] = {}
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._records)

    def create(self, record: TransferRecord) -> TransferRecord:
        with self._lock:
            if record.transfer_id in self._records:
                raise ValueError(f"Transfer {record.transfer_id} already exists")
            self._records[record.transfer_id] = copy.deepcopy(record)
        logger.info("Created transfer %s", record)
        return copy.deepcopy(record)

    def get(self, transfer_id: str) -> TransferRecord:
        with self._lock:
            try:
                return copy.deepcopy(self._records[transfer_id])
            except KeyError:
                raise TransferNotFound(f"Transfer not found: {transfer_id}") from None

    def update(self, record: TransferRecord) -> TransferRecord:
        with self._lock:
            stored = self._records.get(record.transfer_id)
            if stored is None:
                raise TransferNotFound(f"Transfer not found: {record.transfer_id}")
            if stored.version != record.version:
                raise StaleRecordError(f"Transfer {record.transfer_id} is at version {stored.version}, update based on {record.version}")
            updated = copy.deepcopy(record)
            updated.version += 1
            updated.updated_at = native_datetime_utc_now()
            self._records[record.transfer_id] = updated
            return copy.deepcopy(updated)

    def list(self, status=None, source_chain=None, destination_chain=None, limit=None, offset=0) -> list[TransferRecord]:
        with self._lock:
            records = [copy.deepcopy(r) for r in self._records.values()]
        return _filter(records, status, source_chain, destination_chain, limit, offset)


class JsonFileTransferStore(TransferStore):
    """Records kept in a single JSON file.

    Each operation takes the file lock, reads the whole file and writes it back.
    Good for hundreds of transfers, not for millions.
    """

    def __init__(self, path: Path, lock_timeout: float = 30.0):
        assert isinstance(path, Path), f"Expected Path, got {type(path)}"
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = FileLock(str(path) + ".lock", timeout=lock_timeout)

    def __repr__(self):
        return f"<JsonFileTransferStore {self.path}>"

    def _read(self) -> dict[str, TransferRecord]:
        if not self.path.exists():
            return {}
        with self.path.open("rt", encoding="utf-8") as inp:
            data = json.load(inp)
        return {k: TransferRecord.from_dict(v) for k, v in data.items()}

    def _write(self, records: dict[str, TransferRecord]):
        tmp = self.path.with_suffix(".tmp")
        with tmp.open("wt", encoding="utf-8") as out:
            json.dump({k: v.to_dict() for k, v in records.items()}, out, indent=2)
        tmp.replace(self.path)

    def create(self, record: TransferRecord) -> TransferRecord:
        with self._lock:
            records = self._read()
            if record.transfer_id in records:
                raise ValueError(f"Transfer {record.transfer_id} already exists")
            records[record.transfer_id] = record
            self._write(records)
        logger.info("Created transfer %s in %s", record, self.path)
        return copy.deepcopy(record)

    def get(self, transfer_id: str) -> TransferRecord:
        with self._lock:
            records = self._read()
        try:
            return records[transfer_id]
        except KeyError:
            raise TransferNotFound(f"Transfer not found: {transfer_id}") from None

    def update(self, record: TransferRecord) -> TransferRecord:
        with self._lock:
            records = self._read()
            stored = records.get(record.transfer_id)
            if stored is None:
                raise TransferNotFound(f"Transfer not found: {record.transfer_id}")
            if stored.version != record.version:
                raise StaleRecordError(f"Transfer {record.transfer_id} is at version {stored.version}, update based on {record.version}")
            updated = copy.deepcopy(record)
            updated.version += 1
            updated.updated_at = native_datetime_utc_now()
            records[record.transfer_id] = updated
            self._write(records)
        return copy.deepcopy(updated)

    def list(self, status=None, source_chain=None, destination_chain=None, limit=None, offset=0) -> list[TransferRecord]:
        with self._lock:
            records = self._read()
        return _filter(records.values(), status, source_chain, destination_chain, limit, offset)
