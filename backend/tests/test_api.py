"""
Tests for the HTTP layer — routes/results.py, routes/enrollment.py, main.py.
"""

import os
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import routes.results as results_routes
from core.config import EngineConfig
from core.grading_scale import GradingScaleError, kenyan_844_scale
from main import create_app


@pytest.fixture
def client():
    app = create_app(engine=EngineConfig(scale=kenyan_844_scale()), load_sample=True)
    return TestClient(app)


@pytest.fixture
def empty_client():
    app = create_app(engine=EngineConfig(scale=kenyan_844_scale()), load_sample=False)
    return TestClient(app)


def _mark(**overrides):
    payload = {
        "studentId": "S005",
        "subjectId": "MAT",
        "subjectName": "Mathematics",
        "classId": "F2",
        "termId": "T1",
        "academicYear": "2024/2025",
        "examType": "Opener",
        "marksObtained": 62,
        "outOf": 100,
        "enteredBy": "TCH01",
    }
    payload.update(overrides)
    return payload


class TestHealth:

    def test_health(self, client):
        res = client.get("/api/health")
        assert res.status_code == 200
        assert res.json()["marks_stored"] == 33

    def test_config(self, client):
        body = client.get("/api/config").json()
        assert body["grading_scale"] == "kenyan-844"
        assert body["ranking_method"] == "competition"


class TestEnterMarks:

    def test_create_then_update(self, client):
        first = client.post("/api/results/enter", json=_mark())
        assert first.status_code == 201
        second = client.post("/api/results/enter", json=_mark(marksObtained=70))
        assert second.status_code == 200
        assert second.json()["result"]["marksObtained"] == 70

    def test_invalid_mark_rejected(self, client):
        res = client.post("/api/results/enter", json=_mark(marksObtained=120))
        assert res.status_code == 422
        assert "cannot exceed" in res.json()["detail"]

    def test_entered_mark_joins_ranking(self, client):
        client.post("/api/results/enter", json=_mark())
        body = client.get("/api/class-final-reports/F2/T1").json()
        s005 = next(r for r in body["reports"] if r["student"]["_id"] == "S005")
        assert s005["position"] is not None
        assert s005["outOf"] == 5


class TestClassReports:

    def test_class_final_reports(self, client):
        res = client.get("/api/class-final-reports/F2/T1")
        assert res.status_code == 200
        body = res.json()
        assert body["reports"][0]["student"]["_id"] == "S003"
        assert body["reports"][0]["position"] == 1
        assert body["reports"][0]["outOf"] == 4

    def test_class_results_exam_type_case_insensitive(self, client):
        res = client.get("/api/class-results/F2/T1/opener")
        assert res.status_code == 200
        assert res.json()["examType"] == "Opener"

    def test_unknown_exam_type(self, client):
        assert client.get("/api/class-results/F2/T1/Mock").status_code == 400

    def test_unknown_class(self, client):
        assert client.get("/api/class-final-reports/F9/T1").status_code == 404

    def test_same_term_in_two_years_is_not_blended(self, empty_client):
        empty_client.post("/api/results/enter", json=_mark(
            studentId="S1", academicYear="2023/2024", examType="Opener", marksObtained=20,
        ))
        empty_client.post("/api/results/enter", json=_mark(
            studentId="S1", academicYear="2024/2025", examType="Endterm", marksObtained=80,
        ))

        latest = empty_client.get("/api/class-final-reports/F2/T1").json()
        assert latest["academicYear"] == "2024/2025"
        assert latest["reports"][0]["finalResults"][0]["finalPercentage"] == 80.0

        earlier = empty_client.get("/api/class-final-reports/F2/T1", params={"academic_year": "2023/2024"}).json()
        assert earlier["reports"][0]["finalResults"][0]["finalPercentage"] == 20.0

        opener = empty_client.get("/api/class-results/F2/T1/Opener").json()
        assert opener["subjects"] == []

    def test_trend_against_previous_term(self, client):
        for exam_type in ("Opener", "Midterm", "Endterm"):
            client.post("/api/results/enter", json=_mark(
                studentId="S001", termId="T2", examType=exam_type, marksObtained=80,
            ))
        body = client.get("/api/class-final-reports/F2/T2").json()
        s001 = next(r for r in body["reports"] if r["student"]["_id"] == "S001")
        maths = s001["finalResults"][0]
        assert maths["improvement"] == 8.33
        assert maths["trend"] == "improving"

    def test_academic_year_filter(self, client):
        body = client.get("/api/class-final-reports/F2/T1", params={"academic_year": "2023/2024"}).json()
        assert body["rankedCount"] == 0

    def test_scale_fault_is_a_server_error(self, client, monkeypatch):
        def broken(*args, **kwargs):
            raise GradingScaleError("No grade band matches 101%")

        monkeypatch.setattr(results_routes, "build_class_final_report", broken)
        res = client.get("/api/class-final-reports/F2/T1")
        assert res.status_code == 500
        assert "Grading configuration error" in res.json()["detail"]


class TestStudentReports:

    def test_final_report(self, client):
        res = client.get("/api/student/final-report/T1", headers={"X-Student-Id": "S001"})
        assert res.status_code == 200
        body = res.json()
        assert body["position"] == 2
        assert body["overallGrade"] == "B+"

    def test_exam_report(self, client):
        res = client.get("/api/student/results/T1/Endterm", headers={"X-Student-Id": "S003"})
        assert res.status_code == 200
        assert res.json()["position"] == 1

    def test_student_without_marks_gets_na(self, client):
        body = client.get("/api/student/final-report/T1", headers={"X-Student-Id": "S005"}).json()
        assert body["overallGrade"] is None
        assert body["position"] is None

    def test_missing_identity(self, client):
        assert client.get("/api/student/final-report/T1").status_code == 401

    def test_not_enrolled(self, client):
        res = client.get("/api/student/final-report/T1", headers={"X-Student-Id": "S999"})
        assert res.status_code == 404


class TestEnrollmentAndImport:

    def test_enroll(self, empty_client):
        res = empty_client.post("/api/enrollments", json={"studentId": "S100", "classId": "F1", "stream": "North"})
        assert res.status_code == 201
        students = empty_client.get("/api/classes/F1/students").json()["students"]
        assert students[0]["student_id"] == "S100"

    def test_enroll_missing_class(self, empty_client):
        assert empty_client.post("/api/enrollments", json={"studentId": "S100"}).status_code == 422

    def test_import_csv(self, empty_client):
        csv = (
            "adm_no,subject,score,out_of\n"
            "S100,MAT,40,50\n"
            "S101,MAT,70,50\n"
        )
        res = empty_client.post(
            "/api/results/import",
            files={"file": ("marks.csv", csv.encode(), "text/csv")},
            data={
                "class_id": "F1", "term_id": "T1", "academic_year": "2024/2025",
                "exam_type": "Opener", "entered_by": "TCH05",
            },
        )
        assert res.status_code == 200
        body = res.json()
        assert body["accepted"] == 1
        assert body["rejected"] == 1
        assert body["errors"][0]["row"] == 3

    def test_import_bad_file_type(self, empty_client):
        res = empty_client.post("/api/results/import", files={"file": ("marks.txt", b"x", "text/plain")})
        assert res.status_code == 400

    def test_grading_scale(self, client):
        body = client.get("/api/grading-scale").json()
        assert len(body["bands"]) == 12
        assert body["weights"] == {"Opener": 1.0, "Midterm": 1.0, "Endterm": 1.0}
