from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from .errors import StoreCorrupt

logger = logging.getLogger(__name__)

DEFAULT_LABEL = "Alarm"
DEFAULT_STORE_KEY = "stored_alarms"


@dataclass(frozen=True)
class AlarmRecord:
    id: str
    trigger_time_millis: int
    label: str = DEFAULT_LABEL
    enabled: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "triggerTime": self.trigger_time_millis,
            "label": self.label,
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AlarmRecord":
        alarm_id = data.get("id")
        trigger_raw = data.get("triggerTime")
        if not alarm_id or trigger_raw is None:
            raise ValueError("Alarm payload missing id/triggerTime fields")
        enabled = data.get("enabled", True)
        if not isinstance(enabled, bool):
            raise ValueError(f"Alarm {alarm_id} has non-boolean enabled flag {enabled!r}")
        return cls(
            id=str(alarm_id),
            trigger_time_millis=int(trigger_raw),
            label=str(data.get("label") or DEFAULT_LABEL),
            enabled=enabled,
        )


class ScheduleStore:
    """Durable id -> AlarmRecord mapping kept as one JSON array under one key.

    The backing file is a small key/value document (``{key: "<json text>"}``)
    so other settings can live next to the alarm list.
    """

    def __init__(self, path: Path, key: str = DEFAULT_STORE_KEY):
        self.path = Path(path)
        self.key = key
        self._lock = Lock()

    def put(self, record: AlarmRecord) -> None:
        if not record.id:
            raise ValueError("Alarm id is required")
        with self._lock:
            records = [r for r in self._read_records() if r.id != record.id]
            records.append(record)
            self._write_records(records)
        logger.debug("Stored alarm %s (trigger=%s)", record.id, record.trigger_time_millis)

    def remove(self, alarm_id: str) -> bool:
        with self._lock:
            records = self._read_records()
            remaining = [r for r in records if r.id != alarm_id]
            if len(remaining) == len(records):
                return False
            self._write_records(remaining)
        logger.debug("Removed alarm %s from store", alarm_id)
        return True

    def get(self, alarm_id: str) -> Optional[AlarmRecord]:
        for record in self.list_all():
            if record.id == alarm_id:
                return record
        return None

    def list_all(self) -> List[AlarmRecord]:
        with self._lock:
            return self._read_records()

    def _read_records(self) -> List[AlarmRecord]:
        try:
            payload = self._decode(self._read_document().get(self.key))
        except StoreCorrupt as exc:
            logger.error("Alarm store %s is unreadable, treating as empty: %s", self.path, exc)
            return []
        records: List[AlarmRecord] = []
        for item in payload:
            try:
                records.append(AlarmRecord.from_dict(item))
            except (TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping alarm item due to parse error: %s", exc)
        return records

    def _read_document(self) -> Dict[str, object]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as exc:
            raise StoreCorrupt(str(exc)) from exc
        if not isinstance(document, dict):
            raise StoreCorrupt("store document is not an object")
        return document

    @staticmethod
    def _decode(raw) -> list:
        if raw is None or raw == "":
            return []
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError as exc:
                raise StoreCorrupt(f"stored alarm list is not JSON: {exc}") from exc
        if not isinstance(raw, list):
            raise StoreCorrupt("stored alarm list is not an array")
        return raw

    def _write_records(self, records: List[AlarmRecord]) -> None:
        try:
            document = self._read_document()
        except StoreCorrupt:
            logger.warning("Overwriting unreadable alarm store %s", self.path)
            document = {}
        document[self.key] = json.dumps([r.to_dict() for r in records], ensure_ascii=False)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".alarms-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
