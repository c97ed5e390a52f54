import json
import logging
import re
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from medintake.db.db_config import get_sqlite_connection
from medintake.schemas.models import MedicationCreate, MedicationDraft, MedicationRecord

logger = logging.getLogger(__name__)

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")

def parse_quantity(value: Optional[str]) -> Optional[int]:
    """'30' -> 30, '30 tablets' -> 30, '' / 'lots' -> None."""
    if value is None:
        return None
    m = _LEADING_INT_RE.match(str(value))
    return int(m.group(1)) if m else None

def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def build_medication_record(
    draft: Union[MedicationDraft, MedicationCreate],
    owner_id: str,
    now: Optional[str] = None,
) -> MedicationRecord:
    return MedicationRecord(
        owner_id=owner_id,
        medication_name=draft.medication_name,
        dosage=draft.dosage,
        dosage_unit=draft.dosage_unit,
        frequency=draft.frequency,
        times_per_frequency=int(draft.times_per_frequency),
        preferred_time=list(draft.preferred_time),
        remaining_quantity=parse_quantity(draft.remaining_quantity),
        notes=draft.notes or None,
        created_at=now or _utc_now_iso(),
    )

def _row_to_record(row: sqlite3.Row) -> MedicationRecord:
    return MedicationRecord(
        id=row["id"],
        owner_id=row["owner_id"],
        medication_name=row["medication_name"],
        dosage=row["dosage"],
        dosage_unit=row["dosage_unit"],
        frequency=row["frequency"],
        times_per_frequency=row["times_per_frequency"],
        preferred_time=json.loads(row["preferred_time"]),
        remaining_quantity=row["remaining_quantity"],
        notes=row["notes"],
        created_at=row["created_at"],
    )

class MedicationStore:
    def __init__(self, db_path: Optional[Path] = None):
        self._conn = get_sqlite_connection(db_path)
        self._lock = threading.Lock()

    def insert_medication(self, record: MedicationRecord) -> MedicationRecord:
        with self._lock, self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO medications (
                    owner_id, medication_name, dosage, dosage_unit, frequency,
                    times_per_frequency, preferred_time, remaining_quantity, notes, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.owner_id,
                    record.medication_name,
                    record.dosage,
                    record.dosage_unit,
                    record.frequency,
                    record.times_per_frequency,
                    json.dumps(record.preferred_time),
                    record.remaining_quantity,
                    record.notes,
                    record.created_at,
                ),
            )
        logger.info("Stored medication id=%s for owner %s", cur.lastrowid, record.owner_id)
        return record.model_copy(update={"id": cur.lastrowid})

    def list_medications(self, owner_id: str) -> List[MedicationRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM medications WHERE owner_id = ? ORDER BY created_at DESC, id DESC",
                (owner_id,),
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def close(self) -> None:
        self._conn.close()

_store: Optional[MedicationStore] = None

def get_medication_store() -> MedicationStore:
    global _store
    if _store is None:
        _store = MedicationStore()
    return _store
