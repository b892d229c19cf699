"""
Tests for core/marks.py — ingestion validation and per-entry grading.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.grading_scale import kenyan_844_scale
from core.marks import (
    MarkValidationError,
    canonical_exam_type,
    entry_percentage,
    grade_entry,
    validate_mark_entry,
)


def _payload(**overrides):
    payload = {
        "studentId": "S001",
        "subjectId": "MAT",
        "classId": "F2",
        "termId": "T1",
        "academicYear": "2024/2025",
        "examType": "Opener",
        "marksObtained": 70,
        "outOf": 100,
        "enteredBy": "TCH01",
    }
    payload.update(overrides)
    return payload


class TestValidateMarkEntry:
    """Malformed marks are rejected before they reach the store."""

    def test_camel_case_payload_normalised(self):
        entry = validate_mark_entry(_payload(comment="  Good work "))
        assert entry["student_id"] == "S001"
        assert entry["exam_type"] == "Opener"
        assert entry["marks_obtained"] == 70.0
        assert entry["comment"] == "Good work"

    def test_snake_case_payload_accepted(self):
        entry = validate_mark_entry({
            "student_id": "S002", "subject_id": "ENG", "class_id": "F2", "term_id": "T1",
            "academic_year": "2024/2025", "exam_type": "endterm", "marks_obtained": "45",
            "out_of": "50", "entered_by": "TCH02", "stream": "East",
        })
        assert entry["exam_type"] == "Endterm"
        assert entry["out_of"] == 50.0
        assert entry["stream"] == "East"
        assert entry["comment"] is None

    def test_zero_marks_is_valid(self):
        assert validate_mark_entry(_payload(marksObtained=0))["marks_obtained"] == 0.0

    def test_full_marks_is_valid(self):
        assert validate_mark_entry(_payload(marksObtained=100))["marks_obtained"] == 100.0

    def test_marks_above_out_of(self):
        with pytest.raises(MarkValidationError, match="cannot exceed"):
            validate_mark_entry(_payload(marksObtained=101))

    def test_negative_marks(self):
        with pytest.raises(MarkValidationError, match="negative"):
            validate_mark_entry(_payload(marksObtained=-1))

    @pytest.mark.parametrize("out_of", [0, -10])
    def test_non_positive_out_of(self, out_of):
        with pytest.raises(MarkValidationError, match="greater than zero"):
            validate_mark_entry(_payload(outOf=out_of, marksObtained=0))

    def test_missing_fields(self):
        payload = _payload()
        del payload["termId"]
        payload["marksObtained"] = None
        with pytest.raises(MarkValidationError, match="term_id"):
            validate_mark_entry(payload)

    def test_unknown_exam_type(self):
        with pytest.raises(MarkValidationError, match="exam type"):
            validate_mark_entry(_payload(examType="Mock"))

    def test_bad_academic_year(self):
        with pytest.raises(MarkValidationError, match="Academic year"):
            validate_mark_entry(_payload(academicYear="2024"))

    @pytest.mark.parametrize("value", ["abc", True, float("nan")])
    def test_non_numeric_marks(self, value):
        with pytest.raises(MarkValidationError):
            validate_mark_entry(_payload(marksObtained=value))

    def test_not_an_object(self):
        with pytest.raises(MarkValidationError):
            validate_mark_entry(["S001"])


class TestCanonicalExamType:

    @pytest.mark.parametrize("raw", ["midterm", "MIDTERM", "Mid Term", "mid-term"])
    def test_variants(self, raw):
        assert canonical_exam_type(raw) == "Midterm"

    def test_unknown(self):
        assert canonical_exam_type("final") is None
        assert canonical_exam_type(None) is None


class TestGradeEntry:
    """Derived fields are recomputed from the marks every time."""

    def test_percentage_grade_points(self):
        entry = validate_mark_entry(_payload(marksObtained=45, outOf=50))
        graded = grade_entry(entry, kenyan_844_scale())
        assert graded["percentage"] == 90.0
        assert graded["grade"] == "A"
        assert graded["points"] == 12
        assert graded["passed"] is True

    def test_percentage_rounded_to_two_places(self):
        entry = validate_mark_entry(_payload(marksObtained=2, outOf=3))
        assert entry_percentage(entry) == 66.67

    def test_raw_entry_not_mutated(self):
        entry = validate_mark_entry(_payload())
        grade_entry(entry, kenyan_844_scale())
        assert "grade" not in entry
