"""Durable storage for bill records.

Stores deal only in JSON-compatible bill record dicts (see
:py:mod:`bridgepay.billing.instruction`), keyed by the record ``id``.
The ledger is the only writer.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from bridgepay.utils import wait_other_writers

logger = logging.getLogger(__name__)


class InstructionStore(Protocol):
    """Keyed storage of bill records."""

    def load(self, bill_id: str) -> dict | None:
        """Return the record, or ``None`` if there is none."""

    def save(self, record: dict):
        """Insert or replace the record with ``record["id"]``."""

    def load_all(self) -> list[dict]:
        """All records, in insertion order."""


class MemoryInstructionStore:
    """In-process store, for tests and short-lived tools."""

    def __init__(self):
        self._records: dict[str, dict] = {}
        self._lock = threading.Lock()

    def load(self, bill_id: str) -> dict | None:
        with self._lock:
            record = self._records.get(bill_id)
            # Copy through JSON so callers never share nested dicts with the store
            return json.loads(json.dumps(record)) if record is not None else None

    def save(self, record: dict):
        with self._lock:
            self._records[record["id"]] = json.loads(json.dumps(record))

    def load_all(self) -> list[dict]:
        with self._lock:
            return json.loads(json.dumps(list(self._records.values())))


class JSONFileInstructionStore:
    """All bill records in one JSON file.

    Writes hold a :py:class:`filelock.FileLock` next to the file and replace
    the file atomically, so several processes can share it and readers never
    see a half-written document.

    File layout::

        {"bills": {"BILL-1": {...bill record...}, ...}}
    """

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser().resolve()

    def __repr__(self) -> str:
        return f"<JSONFileInstructionStore {self.path}>"

    def _read(self) -> dict[str, dict]:
        if not self.path.exists():
            return {}
        with self.path.open("rt", encoding="utf-8") as inp:
            data = json.load(inp)
        return data.get("bills", {})

    def _write(self, bills: dict[str, dict]):
        fd, temp_name = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "wt", encoding="utf-8") as out:
                json.dump({"bills": bills}, out, indent=2)
            os.replace(temp_name, self.path)
        except BaseException:
            os.unlink(temp_name)
            raise

    def load(self, bill_id: str) -> dict | None:
        return self._read().get(bill_id)

    def save(self, record: dict):
        with wait_other_writers(self.path):
            bills = self._read()
            bills[record["id"]] = record
            self._write(bills)
        logger.debug("Saved bill %s to %s", record["id"], self.path)

    def load_all(self) -> list[dict]:
        return list(self._read().values())
