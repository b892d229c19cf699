"""
marks.py — Raw mark validation (ingestion) and per-entry grading.

Validation happens once, when a teacher submits marks. Downstream code
trusts the entries it receives and only clamps percentages before grading.
"""

import math
import re
from typing import Any, Dict, List, Optional

from core.config import EXAM_TYPES
from core.grading_scale import GradingScale

ACADEMIC_YEAR_RE = re.compile(r"^\d{4}/\d{4}$")

REQUIRED_FIELDS = (
    "student_id",
    "subject_id",
    "class_id",
    "term_id",
    "academic_year",
    "exam_type",
    "marks_obtained",
    "out_of",
    "entered_by",
)

# camelCase names used by the mark entry pages
FIELD_ALIASES = {
    "studentId": "student_id",
    "subjectId": "subject_id",
    "classId": "class_id",
    "termId": "term_id",
    "academicYear": "academic_year",
    "examType": "exam_type",
    "marksObtained": "marks_obtained",
    "outOf": "out_of",
    "enteredBy": "entered_by",
    "subjectName": "subject_name",
}


class MarkValidationError(ValueError):
    """A submitted mark is malformed and was not stored."""


def canonical_exam_type(value: Any) -> Optional[str]:
    """Map 'opener', 'MIDTERM', 'End Term'... to the canonical exam type."""
    if value is None:
        return None
    key = re.sub(r"[\s_-]+", "", str(value)).lower()
    for exam_type in EXAM_TYPES:
        if exam_type.lower() == key:
            return exam_type
    return None


def _number(payload: Dict[str, Any], key: str) -> float:
    value = payload[key]
    if isinstance(value, bool):
        raise MarkValidationError(f"'{key}' must be a number.")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise MarkValidationError(f"'{key}' must be a number, got {value!r}.")
    if math.isnan(number) or math.isinf(number):
        raise MarkValidationError(f"'{key}' must be a finite number.")
    return number


def validate_mark_entry(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a submitted mark and return the normalised raw entry.

    Raises MarkValidationError for missing fields, unknown exam types,
    negative marks, non-positive out_of, marks above out_of and malformed
    academic years.
    """
    if not isinstance(payload, dict):
        raise MarkValidationError("Mark entry must be an object.")

    data = {FIELD_ALIASES.get(k, k): v for k, v in payload.items()}

    missing = [f for f in REQUIRED_FIELDS if data.get(f) in (None, "")]
    if missing:
        raise MarkValidationError(f"Missing required fields: {', '.join(missing)}")

    exam_type = canonical_exam_type(data["exam_type"])
    if exam_type is None:
        raise MarkValidationError(
            f"Unknown exam type '{data['exam_type']}'. Use one of {', '.join(EXAM_TYPES)}."
        )

    academic_year = str(data["academic_year"]).strip()
    if not ACADEMIC_YEAR_RE.match(academic_year):
        raise MarkValidationError(f"Academic year must look like 2024/2025, got '{academic_year}'.")

    marks = _number(data, "marks_obtained")
    out_of = _number(data, "out_of")
    if out_of <= 0:
        raise MarkValidationError("'out_of' must be greater than zero.")
    if marks < 0:
        raise MarkValidationError("'marks_obtained' cannot be negative.")
    if marks > out_of:
        raise MarkValidationError(f"'marks_obtained' ({marks:g}) cannot exceed 'out_of' ({out_of:g}).")

    comment = data.get("comment")
    entry = {
        "student_id": str(data["student_id"]).strip(),
        "subject_id": str(data["subject_id"]).strip(),
        "class_id": str(data["class_id"]).strip(),
        "term_id": str(data["term_id"]).strip(),
        "academic_year": academic_year,
        "exam_type": exam_type,
        "marks_obtained": marks,
        "out_of": out_of,
        "comment": str(comment).strip() if comment not in (None, "") else None,
        "entered_by": str(data["entered_by"]).strip(),
    }
    for optional in ("stream", "subject_name"):
        if data.get(optional) not in (None, ""):
            entry[optional] = str(data[optional]).strip()
    return entry


def entry_percentage(entry: Dict[str, Any]) -> float:
    """marks_obtained / out_of as a 0-100 percentage, rounded to 2 dp."""
    pct = entry["marks_obtained"] / entry["out_of"] * 100
    return round(max(0.0, min(100.0, pct)), 2)


def grade_entry(entry: Dict[str, Any], scale: GradingScale) -> Dict[str, Any]:
    """Return a copy of the raw entry with percentage, grade, points and passed."""
    pct = entry_percentage(entry)
    info = scale.for_subject(entry.get("subject_id")).grade(pct)
    graded = dict(entry)
    graded.update(
        {
            "percentage": pct,
            "grade": info["grade"],
            "points": info["points"],
            "passed": info["passed"],
        }
    )
    return graded


def grade_entries(entries: List[Dict[str, Any]], scale: GradingScale) -> List[Dict[str, Any]]:
    return [grade_entry(e, scale) for e in entries]
