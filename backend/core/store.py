"""
store.py — In-memory mark store and class roster.

Raw marks only: percentages, grades and positions are derived on every
read. One entry exists per (student, subject, term, academic year, exam
type); a later submission for the same key replaces the earlier one.

Reads for a report go through `snapshot`, which copies the class+term
entries under the same lock that writers hold, so a report never sees a
half-applied batch. `read_class_term` takes the roster and mark locks
together so members and marks come from the same moment.
"""

import itertools
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.aggregation import latest_academic_year, previous_term

logger = logging.getLogger(__name__)

EntryKey = Tuple[str, str, str, str, str]


def entry_key(entry: Dict[str, Any]) -> EntryKey:
    return (
        entry["student_id"],
        entry["subject_id"],
        entry["term_id"],
        entry["academic_year"],
        entry["exam_type"],
    )


class MarkStore:
    """Thread-safe upsert store for validated raw mark entries."""

    def __init__(self):
        self._entries: Dict[EntryKey, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _put(self, entry: Dict[str, Any]) -> bool:
        key = entry_key(entry)
        created = key not in self._entries
        stored = dict(entry)
        stored["entered_at"] = next(self._sequence)
        self._entries[key] = stored
        return created

    def upsert(self, entry: Dict[str, Any]) -> bool:
        """Store one validated entry. Returns True if it was new."""
        with self._lock:
            created = self._put(entry)
        logger.info(
            "%s mark %s/%s %s %s for student %s",
            "Created" if created else "Updated",
            entry["term_id"], entry["academic_year"], entry["subject_id"],
            entry["exam_type"], entry["student_id"],
        )
        return created

    def upsert_many(self, entries: Iterable[Dict[str, Any]]) -> Dict[str, int]:
        """Store a batch atomically with respect to snapshots."""
        created = updated = 0
        with self._lock:
            for entry in entries:
                if self._put(entry):
                    created += 1
                else:
                    updated += 1
        logger.info("Batch upsert: %d created, %d updated", created, updated)
        return {"created": created, "updated": updated}

    def get(self, key: EntryKey) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(key)
            return dict(entry) if entry is not None else None

    def snapshot(
        self,
        class_id: str,
        term_id: str,
        academic_year: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Copies of every entry for a class and term, in write order."""
        with self._lock:
            return self._rows(class_id, term_id, academic_year)

    def _rows(self, class_id: str, term_id: str, academic_year: Optional[str]) -> List[Dict[str, Any]]:
        rows = [
            dict(e)
            for e in self._entries.values()
            if e["class_id"] == class_id
            and e["term_id"] == term_id
            and (academic_year is None or e["academic_year"] == academic_year)
        ]
        rows.sort(key=lambda e: e["entered_at"])
        return rows

    def _term_ids(self, class_id: str, academic_year: str) -> List[str]:
        return sorted({
            e["term_id"] for e in self._entries.values()
            if e["class_id"] == class_id and e["academic_year"] == academic_year
        })

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


ENROLLMENT_FIELDS = ("student_id", "class_id")


class Roster:
    """Student enrollments: who is in which class and stream."""

    def __init__(self):
        self._students: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def enroll(self, record: Dict[str, Any]) -> Dict[str, Any]:
        missing = [f for f in ENROLLMENT_FIELDS if not str(record.get(f) or "").strip()]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")

        student = {
            "student_id": str(record["student_id"]).strip(),
            "first_name": str(record.get("first_name") or "").strip(),
            "last_name": str(record.get("last_name") or "").strip(),
            "admission_number": str(record.get("admission_number") or record["student_id"]).strip(),
            "class_id": str(record["class_id"]).strip(),
            "stream": str(record["stream"]).strip() if record.get("stream") else None,
            "academic_year": record.get("academic_year"),
        }
        with self._lock:
            self._students[student["student_id"]] = student
        return dict(student)

    def get(self, student_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            student = self._students.get(student_id)
            return dict(student) if student is not None else None

    def students_in(self, class_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return self._members(class_id)

    def _members(self, class_id: str) -> List[Dict[str, Any]]:
        members = [dict(s) for s in self._students.values() if s["class_id"] == class_id]
        return sorted(members, key=lambda s: (s["admission_number"], s["student_id"]))

    def clear(self) -> None:
        with self._lock:
            self._students.clear()


def read_class_term(
    store: MarkStore,
    roster: Roster,
    class_id: str,
    term_id: str,
    academic_year: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Class members, the term's marks and the previous term's marks, read in
    one critical section.

    Without an academic year the latest year holding marks for the term is
    used, so one report never mixes sittings from different years. Writers
    only ever hold one of the two locks, and this is the only place that
    takes both (roster first), so the pair cannot deadlock.
    """
    with roster._lock, store._lock:
        members = roster._members(class_id)
        if academic_year is None:
            academic_year = latest_academic_year(store._rows(class_id, term_id, None))
        entries = store._rows(class_id, term_id, academic_year) if academic_year else []

        prior_term = previous_term(store._term_ids(class_id, academic_year), term_id) if academic_year else None
        previous_entries = store._rows(class_id, prior_term, academic_year) if prior_term else []

    return {
        "roster": members,
        "entries": entries,
        "academic_year": academic_year,
        "previous_term": prior_term,
        "previous_entries": previous_entries,
    }
