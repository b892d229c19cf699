"""
Tests for core/reports.py — class marklists, final reports, student views.

Uses the bundled sample class F2 (term T1): four students with marks and
one (S005) enrolled without any.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.config import EngineConfig
from core.grading_scale import kenyan_844_scale
from core.parser import load_sample_data
from core.reports import (
    build_class_final_report,
    build_class_marklist,
    build_student_exam_report,
    build_student_final_report,
)
from core.store import MarkStore, Roster

GENERATED_ON = "2025-04-04T10:00:00+00:00"


@pytest.fixture
def engine():
    return EngineConfig(scale=kenyan_844_scale())


@pytest.fixture
def sample_class():
    store, roster = MarkStore(), Roster()
    load_sample_data(store, roster)
    return store.snapshot("F2", "T1"), roster.students_in("F2")


def _by_student(rows):
    return {r["student"]["_id"]: r for r in rows}


class TestClassFinalReport:

    @pytest.fixture
    def report(self, sample_class, engine):
        entries, roster = sample_class
        return build_class_final_report(entries, roster, "F2", "T1", engine, generated_on=GENERATED_ON)

    def test_positions(self, report):
        rows = _by_student(report["reports"])
        assert rows["S003"]["position"] == 1
        assert rows["S001"]["position"] == 2
        assert rows["S002"]["position"] == 3
        assert rows["S004"]["position"] == 4
        assert rows["S001"]["outOf"] == 4

    def test_rows_ordered_by_position(self, report):
        assert [r["student"]["_id"] for r in report["reports"]] == ["S003", "S001", "S002", "S004", "S005"]

    def test_student_totals(self, report):
        s001 = _by_student(report["reports"])["S001"]
        assert s001["totalPoints"] == 31
        assert s001["meanGradePoint"] == 10.33
        assert s001["overallGrade"] == "B+"
        assert s001["totalMarks"] == 219.01

    def test_subject_final_cells(self, report):
        s001 = _by_student(report["reports"])["S001"]
        maths = next(r for r in s001["finalResults"] if r["subject"]["_id"] == "MAT")
        assert maths["breakdown"] == {"opener": 70.0, "midterm": 65.0, "endterm": 80.0}
        assert maths["finalPercentage"] == 71.67
        assert maths["grade"] == "B+"
        assert maths["points"] == 10
        assert maths["subject"]["name"] == "Mathematics"
        assert maths["subjectPosition"] == 2

    def test_missing_midterm_is_null_not_zero(self, report):
        s002 = _by_student(report["reports"])["S002"]
        english = next(r for r in s002["finalResults"] if r["subject"]["_id"] == "ENG")
        assert english["breakdown"]["midterm"] is None
        assert english["finalPercentage"] == 67.0

    def test_student_without_results(self, report):
        s005 = _by_student(report["reports"])["S005"]
        assert s005["overallGrade"] is None
        assert s005["position"] is None
        assert s005["finalResults"] == []
        assert report["rankedCount"] == 4

    def test_stream_positions(self, report):
        rows = _by_student(report["reports"])
        assert rows["S001"]["streamPosition"] == 1
        assert rows["S002"]["streamPosition"] == 2
        assert rows["S003"]["streamPosition"] == 1
        assert rows["S004"]["streamPosition"] == 2

    def test_subject_summary(self, report):
        summary = {s["subject"]["_id"]: s for s in report["subjectSummary"]}
        assert summary["MAT"]["entries"] == 4
        assert summary["BIO"]["gradeDistribution"]["D-"]["count"] == 1
        assert sorted(s["position"] for s in summary.values()) == [1, 2, 3]

    def test_generated_on_is_the_only_clock_value(self, sample_class, engine, report):
        entries, roster = sample_class
        again = build_class_final_report(entries, roster, "F2", "T1", engine, generated_on=GENERATED_ON)
        assert again == report


class TestClassMarklist:

    @pytest.fixture
    def opener(self, sample_class, engine):
        entries, roster = sample_class
        return build_class_marklist(entries, roster, "F2", "T1", "Opener", engine, generated_on=GENERATED_ON)

    def test_positions_by_average(self, opener):
        rows = _by_student(opener["students"])
        assert rows["S003"]["position"] == 1
        assert rows["S001"]["position"] == 2
        assert rows["S002"]["position"] == 3
        assert rows["S004"]["position"] == 4

    def test_raw_marks_and_totals(self, opener):
        s001 = _by_student(opener["students"])["S001"]
        assert s001["totalMarks"] == 212.0
        assert s001["averagePercentage"] == 70.67
        assert s001["meanGradePoint"] == 10.0
        maths = next(r for r in s001["results"] if r["subject"]["_id"] == "MAT")
        assert maths["marksObtained"] == 70.0
        assert maths["outOf"] == 100.0
        assert maths["grade"] == "B+"

    def test_subject_summary_rows(self, opener):
        summary = {s["subject"]["_id"]: s for s in opener["subjectSummary"]}
        assert summary["MAT"]["total"] == 241.0
        assert summary["MAT"]["mean"] == 60.25
        assert summary["MAT"]["grade"] == "B-"
        assert summary["ENG"]["position"] == 1
        assert summary["MAT"]["position"] == 2
        assert summary["BIO"]["position"] == 3

    def test_missing_cell_is_placeholder(self, sample_class, engine):
        entries, roster = sample_class
        midterm = build_class_marklist(entries, roster, "F2", "T1", "Midterm", engine)
        s002 = _by_student(midterm["students"])["S002"]
        english = next(r for r in s002["results"] if r["subject"]["_id"] == "ENG")
        assert english["marksObtained"] is None
        assert english["grade"] is None
        assert s002["subjectCount"] == 2
        assert s002["averagePercentage"] == 55.0

    def test_unknown_exam_data_gives_empty_ranking(self, sample_class, engine):
        entries, roster = sample_class
        only_opener = [e for e in entries if e["exam_type"] == "Opener"]
        endterm = build_class_marklist(only_opener, roster, "F2", "T1", "Endterm", engine)
        assert endterm["subjects"] == []
        assert all(s["position"] is None for s in endterm["students"])


class TestStudentViews:

    def test_student_final_report(self, sample_class, engine):
        entries, roster = sample_class
        report = build_student_final_report("S001", entries, roster, "F2", "T1", engine)
        assert report["position"] == 2
        assert report["outOf"] == 4
        assert len(report["subjects"]) == 3

    def test_student_exam_report_lists_only_sat_subjects(self, sample_class, engine):
        entries, roster = sample_class
        report = build_student_exam_report("S004", entries, roster, "F2", "T1", "Midterm", engine)
        assert [r["subject"]["_id"] for r in report["results"]] == ["ENG", "MAT"]

    def test_unknown_student(self, sample_class, engine):
        entries, roster = sample_class
        assert build_student_final_report("S999", entries, roster, "F2", "T1", engine) is None


class TestRecomputation:
    """Reports follow the marks: no cached ranks survive an edit."""

    def test_mark_edit_changes_position(self, engine):
        store, roster = MarkStore(), Roster()
        load_sample_data(store, roster)
        for exam_type in ("Opener", "Midterm", "Endterm"):
            for subject in ("MAT", "ENG", "BIO"):
                store.upsert({
                    "student_id": "S004", "subject_id": subject, "class_id": "F2", "term_id": "T1",
                    "academic_year": "2024/2025", "exam_type": exam_type,
                    "marks_obtained": 99.0, "out_of": 100.0, "entered_by": "TCH01", "comment": None,
                })
        report = build_class_final_report(store.snapshot("F2", "T1"), roster.students_in("F2"), "F2", "T1", engine)
        assert _by_student(report["reports"])["S004"]["position"] == 1
