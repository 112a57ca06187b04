from pathlib import Path
from typing import List

from loguru import logger

from ..models import CycleRecord
from .interfaces import BaseCycleRecorder


class InMemoryCycleRecorder(BaseCycleRecorder):
    """In-memory recorder storing the most recent cycle records."""

    def __init__(self, history_limit: int = 200) -> None:
        self.records: List[CycleRecord] = []
        self.history_limit = history_limit

    def record(self, record: CycleRecord) -> None:
        self.records.append(record)
        if len(self.records) > self.history_limit:
            self.records = self.records[-self.history_limit :]

    def get_records(self) -> List[CycleRecord]:
        return self.records


class JsonFileCycleRecorder(BaseCycleRecorder):
    """Writes one JSON file per cycle under ``<base_dir>/<trader_id>/``.

    File names are ``cycle_<number>_<timestamp_ms>.json``. Write failures are
    logged and never interrupt the trading loop; a small in-memory tail is
    kept so the latest records can be read back without touching disk.
    """

    def __init__(self, base_dir: str, trader_id: str, history_limit: int = 200) -> None:
        self.directory = Path(base_dir) / trader_id
        self._memory = InMemoryCycleRecorder(history_limit=history_limit)

    def path_for(self, record: CycleRecord) -> Path:
        return self.directory / f"cycle_{record.cycle_number}_{record.timestamp}.json"

    def record(self, record: CycleRecord) -> None:
        self._memory.record(record)
        path = self.path_for(record)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
            logger.debug("Cycle record written to {}", path)
        except OSError as exc:
            logger.error("Failed to write cycle record {}: {}", path, exc)

    def get_records(self) -> List[CycleRecord]:
        return self._memory.get_records()

    def load_records(self) -> List[CycleRecord]:
        """Read every persisted record back from disk, oldest cycle first."""
        if not self.directory.exists():
            return []
        records: List[CycleRecord] = []
        for path in self.directory.glob("cycle_*.json"):
            try:
                records.append(CycleRecord.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable cycle record {}: {}", path, exc)
        records.sort(key=lambda r: (r.cycle_number, r.timestamp))
        return records
