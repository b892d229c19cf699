"""
parser.py — Bulk mark import from CSV and Excel sheets.

Supports:
- CSV files
- Excel (.xlsx), first non-empty sheet
- Fuzzy column name mapping onto mark entry fields

Every row goes through the same validation as a single submitted mark.
Valid rows are written as one batch; invalid rows come back with their
row number and the reason they were rejected.
"""

import io
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from core.marks import MarkValidationError, validate_mark_entry
from core.store import MarkStore, Roster

logger = logging.getLogger(__name__)

SAMPLE_DATA_DIR = Path(__file__).parent.parent / "sample_data"
SUPPORTED_EXTENSIONS = (".csv", ".xlsx")

# Common column name variations for auto-mapping
COLUMN_ALIASES = {
    "student_id": [
        "student_id", "studentid", "student id", "admission_no", "admission no",
        "adm_no", "adm no", "reg_no", "index_no", "index no",
    ],
    "subject_id": [
        "subject_id", "subjectid", "subject id", "subject_code", "subject code", "subject",
    ],
    "subject_name": [
        "subject_name", "subject name",
    ],
    "class_id": [
        "class_id", "classid", "class id", "class", "form",
    ],
    "stream": [
        "stream", "section", "arm",
    ],
    "term_id": [
        "term_id", "termid", "term id", "term",
    ],
    "academic_year": [
        "academic_year", "academic year", "academicyear", "year", "session",
    ],
    "exam_type": [
        "exam_type", "exam type", "examtype", "exam", "exam_name", "exam name", "assessment",
    ],
    "marks_obtained": [
        "marks_obtained", "marks obtained", "marksobtained", "marks", "mark", "score",
    ],
    "out_of": [
        "out_of", "out of", "outof", "max_marks", "max marks", "max_score", "max score", "maximum",
    ],
    "comment": [
        "comment", "comments", "remarks", "remark",
    ],
    "entered_by": [
        "entered_by", "entered by", "teacher", "teacher_id",
    ],
}


def read_sheet(source: Union[str, Path, bytes], filename: Optional[str] = None) -> pd.DataFrame:
    """
    Read a CSV/XLSX file (path or raw bytes) into a string-typed DataFrame.
    `filename` decides the format when raw bytes are given.
    """
    if filename:
        name = str(filename)
    else:
        name = "" if isinstance(source, bytes) else str(source)
    ext = Path(name).suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise ValueError(f"Unsupported file type: {ext or 'unknown'}. Use CSV or XLSX.")

    handle = io.BytesIO(source) if isinstance(source, bytes) else source

    if ext == ".csv":
        return pd.read_csv(handle, dtype=str, keep_default_na=False)

    xls = pd.ExcelFile(handle, engine="openpyxl")
    for sheet_name in xls.sheet_names:
        df = pd.read_excel(xls, sheet_name=sheet_name, dtype=str, keep_default_na=False)
        if not df.empty and len(df.columns) > 1:
            return df
    raise ValueError("No valid sheets found in the Excel file.")


def suggest_column_mapping(df: pd.DataFrame) -> Dict[str, Optional[str]]:
    """
    Suggest a mapping from mark entry fields to actual column names.
    Returns: { field: actual_column_name_or_None }
    """
    cols_lower = {str(c).lower().strip(): c for c in df.columns}
    mapping: Dict[str, Optional[str]] = {}
    used = set()

    for field, aliases in COLUMN_ALIASES.items():
        matched = None
        for alias in aliases:
            col = cols_lower.get(alias)
            if col is not None and col not in used:
                matched = col
                break
        if matched is not None:
            used.add(matched)
        mapping[field] = matched

    return mapping


def to_records(df: pd.DataFrame, defaults: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """
    Rename mapped columns to mark entry fields. `defaults` fills fields the
    sheet lacks (e.g. one class/term/exam for the whole upload).
    """
    mapping = suggest_column_mapping(df)
    renamed = df.rename(columns={col: field for field, col in mapping.items() if col is not None})
    fields = [f for f, col in mapping.items() if col is not None]

    records = []
    for row in renamed[fields].to_dict(orient="records"):
        record = {k: (v.strip() if isinstance(v, str) else v) for k, v in row.items()}
        record = {k: v for k, v in record.items() if v != ""}
        for key, value in (defaults or {}).items():
            if value not in (None, "") and record.get(key) in (None, ""):
                record[key] = value
        records.append(record)
    return records


def import_marks(
    records: List[Dict[str, Any]],
    store: MarkStore,
    entered_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Validate every row, write the valid ones as one batch."""
    valid = []
    errors = []
    for idx, record in enumerate(records):
        if entered_by and not record.get("entered_by"):
            record = {**record, "entered_by": entered_by}
        try:
            valid.append(validate_mark_entry(record))
        except MarkValidationError as exc:
            # header is row 1 in the sheet
            errors.append({"row": idx + 2, "error": str(exc)})

    for err in errors:
        logger.warning("Rejected import row %d: %s", err["row"], err["error"])

    counts = store.upsert_many(valid) if valid else {"created": 0, "updated": 0}
    return {
        "rows": len(records),
        "accepted": len(valid),
        "rejected": len(errors),
        "created": counts["created"],
        "updated": counts["updated"],
        "errors": errors,
    }


def load_roster(source: Union[str, Path, bytes], roster: Roster, filename: Optional[str] = None) -> int:
    """Enroll every row of a students sheet. Returns the number enrolled."""
    df = read_sheet(source, filename)
    count = 0
    for record in df.to_dict(orient="records"):
        roster.enroll({k: v for k, v in record.items() if v != ""})
        count += 1
    return count


def load_sample_data(store: MarkStore, roster: Roster) -> Dict[str, Any]:
    """Load the bundled sample class (students + one term of marks)."""
    enrolled = load_roster(SAMPLE_DATA_DIR / "sample_students.csv", roster)
    records = to_records(read_sheet(SAMPLE_DATA_DIR / "sample_marks.csv"))
    result = import_marks(records, store)
    logger.info("Loaded sample data: %d students, %d marks", enrolled, result["accepted"])
    return {"students": enrolled, **result}
