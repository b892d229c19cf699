"""
reports.py — Class marklists and final reports.

Both views are pure functions of a term snapshot (raw entries), the class
roster and the engine config:

- build_class_marklist: one exam sitting, raw marks per subject plus
  totals, average, mean grade point, overall grade and position
- build_class_final_report: the whole term, each subject's opener /
  midterm / endterm / final / grade / points plus class position

Missing subjects or sittings are null cells. A null is "not entered" and
is never folded into totals or means as a zero.

Each view covers one academic year: the one asked for, else the latest
year present in the entries.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np

from core.aggregation import aggregate_term, latest_academic_year, latest_per_exam
from core.config import EngineConfig
from core.marks import grade_entry
from core.ranking import rank_exam, rank_final, rank_streams, rank_subject_means, rank_subjects
from core.summary import summarize_exam, summarize_student


# ── Helpers ─────────────────────────────────────────────────────────

def _safe_float(val) -> Optional[float]:
    """Round to 2 dp for display, passing through missing values."""
    try:
        v = float(val)
        return None if np.isnan(v) or np.isinf(v) else round(v, 2)
    except (TypeError, ValueError):
        return None


def _generated_on(generated_on: Optional[str]) -> str:
    return generated_on or datetime.now(timezone.utc).isoformat(timespec="seconds")


def _student_info(student_id: str, roster_by_id: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    s = roster_by_id.get(student_id, {})
    return {
        "_id": student_id,
        "firstName": s.get("first_name", ""),
        "lastName": s.get("last_name", ""),
        "admissionNumber": s.get("admission_number", student_id),
        "stream": s.get("stream"),
    }


def _subject_names(entries: List[Dict[str, Any]]) -> Dict[str, str]:
    names: Dict[str, str] = {}
    for e in entries:
        names.setdefault(e["subject_id"], e.get("subject_name") or e["subject_id"])
        if e.get("subject_name"):
            names[e["subject_id"]] = e["subject_name"]
    return names


def _subject_ref(subject_id: str, names: Dict[str, str]) -> Dict[str, str]:
    return {"_id": subject_id, "name": names.get(subject_id, subject_id)}


def _student_ids(entries: List[Dict[str, Any]], roster: List[Dict[str, Any]]) -> List[str]:
    """Roster order first, then anyone with marks but no enrollment record."""
    ids = [s["student_id"] for s in roster]
    known = set(ids)
    for sid in sorted({e["student_id"] for e in entries}):
        if sid not in known:
            ids.append(sid)
            known.add(sid)
    return ids


def _one_year(entries: List[Dict[str, Any]], academic_year: Optional[str]):
    year = academic_year or latest_academic_year(entries)
    if year is None:
        return None, list(entries)
    return year, [e for e in entries if e.get("academic_year") == year]


def _position(ranks: Dict[str, Dict[str, Any]], student_id: str) -> Optional[int]:
    r = ranks.get(student_id)
    return r["position"] if r else None


def _subject_summary(
    subject_ids: List[str],
    names: Dict[str, str],
    rows: List[Dict[str, Any]],
    value_field: str,
    config: EngineConfig,
    marks_field: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Subject total / mean / grade / position rows under the student table."""
    by_subject: Dict[str, List[Dict[str, Any]]] = {sid: [] for sid in subject_ids}
    for row in rows:
        by_subject[row["subject_id"]].append(row)

    means = {
        sid: (float(np.mean([r[value_field] for r in members])) if members else None)
        for sid, members in by_subject.items()
    }
    positions = rank_subject_means(means, config.ranking_method)

    summary = []
    for sid in subject_ids:
        members = by_subject[sid]
        values = [r[value_field] for r in members]
        scale = config.scale.for_subject(sid)
        mean = means[sid]
        summary.append({
            "subject": _subject_ref(sid, names),
            "entries": len(members),
            "total": _safe_float(sum(r[marks_field or value_field] for r in members)) if members else None,
            "mean": _safe_float(mean),
            "grade": scale.grade(round(mean, 2))["grade"] if mean is not None else None,
            "position": positions.get(sid),
            "highest": _safe_float(max(values)) if values else None,
            "lowest": _safe_float(min(values)) if values else None,
            "passRate": _safe_float(sum(1 for r in members if r["passed"]) / len(members) * 100) if members else None,
            "gradeDistribution": scale.distribution(values),
        })
    return summary


# ── Class marklist (one exam sitting) ───────────────────────────────

def build_class_marklist(
    entries: List[Dict[str, Any]],
    roster: List[Dict[str, Any]],
    class_id: str,
    term_id: str,
    exam_type: str,
    config: EngineConfig,
    generated_on: Optional[str] = None,
    academic_year: Optional[str] = None,
) -> Dict[str, Any]:
    """Marklist for one exam type across the class."""
    roster_by_id = {s["student_id"]: s for s in roster}
    academic_year, entries = _one_year(entries, academic_year)
    exam_entries = [e for e in entries if e["exam_type"] == exam_type]
    names = _subject_names(exam_entries)
    subject_ids = sorted(names)

    # one cell per (student, subject): latest write wins
    cells: Dict[tuple, Dict[str, Any]] = {}
    for e in exam_entries:
        key = (e["student_id"], e["subject_id"])
        chosen = latest_per_exam([c for c in (cells.get(key), e) if c is not None])[exam_type]
        cells[key] = chosen
    graded = {k: grade_entry(v, config.scale) for k, v in cells.items()}
    graded_rows = list(graded.values())

    student_ids = _student_ids(exam_entries, roster)
    summaries = {
        sid: summarize_exam(
            sid, term_id, exam_type,
            [graded[(sid, sub)] for sub in subject_ids if (sid, sub) in graded],
            config.scale,
        )
        for sid in student_ids
    }
    streams = {sid: roster_by_id.get(sid, {}).get("stream") for sid in student_ids}

    overall = rank_exam(summaries.values(), config.ranking_method)
    by_stream = rank_streams(summaries.values(), streams, key="exam", method=config.ranking_method)
    by_subject = rank_subjects(graded_rows, value_field="percentage", method=config.ranking_method)
    out_of = len(overall)

    students = []
    for sid in student_ids:
        summary = summaries[sid]
        results = []
        for sub in subject_ids:
            g = graded.get((sid, sub))
            results.append({
                "subject": _subject_ref(sub, names),
                "marksObtained": g["marks_obtained"] if g else None,
                "outOf": g["out_of"] if g else None,
                "percentage": g["percentage"] if g else None,
                "grade": g["grade"] if g else None,
                "points": g["points"] if g else None,
                "comment": g.get("comment") if g else None,
                "subjectPosition": by_subject.get(sub, {}).get(sid, {}).get("position"),
            })
        students.append({
            "student": _student_info(sid, roster_by_id),
            "results": results,
            "subjectCount": summary["subject_count"],
            "totalMarks": _safe_float(summary["total_marks"]),
            "totalOutOf": _safe_float(summary["total_out_of"]),
            "totalPoints": summary["total_points"],
            "averagePercentage": _safe_float(summary["average_percentage"]),
            "meanGradePoint": _safe_float(summary["mean_grade_point"]),
            "overallGrade": summary["overall_grade"],
            "position": _position(overall, sid),
            "streamPosition": _position(by_stream, sid),
            "outOf": out_of,
        })
    students.sort(key=lambda s: (s["position"] is None, s["position"] or 0, s["student"]["admissionNumber"]))

    return {
        "class": class_id,
        "term": term_id,
        "academicYear": academic_year,
        "examType": exam_type,
        "subjects": [_subject_ref(sid, names) for sid in subject_ids],
        "students": students,
        "subjectSummary": _subject_summary(
            subject_ids, names, graded_rows, "percentage", config, marks_field="marks_obtained"
        ),
        "rankedCount": out_of,
        "generatedOn": _generated_on(generated_on),
    }


# ── Class final report (whole term) ─────────────────────────────────

def _final_result_cell(result: Dict[str, Any], names: Dict[str, str], position: Optional[int]) -> Dict[str, Any]:
    return {
        "subject": _subject_ref(result["subject_id"], names),
        "breakdown": {k: _safe_float(v) for k, v in result["breakdown"].items()},
        "finalPercentage": _safe_float(result["final_percentage"]),
        "grade": result["grade"],
        "points": result["points"],
        "comment": result.get("comment"),
        "subjectPosition": position,
        "consistency": result["consistency"],
        "strongestExam": result["strongest_exam"],
        "weakestExam": result["weakest_exam"],
        "improvement": result["improvement"],
        "trend": result["trend"],
        "flags": {
            "requiresAttention": result["flags"]["requires_attention"],
            "isExceptional": result["flags"]["is_exceptional"],
            "hasDiscrepancy": result["flags"]["has_discrepancy"],
        },
    }


def build_class_final_report(
    entries: List[Dict[str, Any]],
    roster: List[Dict[str, Any]],
    class_id: str,
    term_id: str,
    config: EngineConfig,
    generated_on: Optional[str] = None,
    academic_year: Optional[str] = None,
    previous_entries: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Final term report for every student in the class. `previous_entries`
    (the previous term of the same year) feeds improvement and trend.
    """
    roster_by_id = {s["student_id"]: s for s in roster}
    academic_year, entries = _one_year(entries, academic_year)
    if previous_entries and academic_year:
        previous_entries = [e for e in previous_entries if e.get("academic_year") == academic_year]
    names = _subject_names(entries)
    subject_ids = sorted(names)

    finals = aggregate_term(entries, config.scale, config.weights, previous_entries)
    finals_by_student: Dict[str, List[Dict[str, Any]]] = {}
    for r in finals:
        finals_by_student.setdefault(r["student_id"], []).append(r)

    student_ids = _student_ids(entries, roster)
    summaries = {
        sid: summarize_student(sid, term_id, finals_by_student.get(sid, []), config.scale)
        for sid in student_ids
    }
    streams = {sid: roster_by_id.get(sid, {}).get("stream") for sid in student_ids}

    overall = rank_final(summaries.values(), config.ranking_method)
    by_stream = rank_streams(summaries.values(), streams, key="final", method=config.ranking_method)
    by_subject = rank_subjects(finals, value_field="final_percentage", method=config.ranking_method)
    out_of = len(overall)

    reports = []
    for sid in student_ids:
        summary = summaries[sid]
        final_results = [
            _final_result_cell(r, names, by_subject.get(r["subject_id"], {}).get(sid, {}).get("position"))
            for r in sorted(finals_by_student.get(sid, []), key=lambda r: r["subject_id"])
        ]
        reports.append({
            "student": _student_info(sid, roster_by_id),
            "finalResults": final_results,
            "subjectCount": summary["subject_count"],
            "totalMarks": _safe_float(summary["total_marks"]),
            "totalPoints": summary["total_points"],
            "overallAverage": _safe_float(summary["average_percentage"]),
            "meanGradePoint": _safe_float(summary["mean_grade_point"]),
            "overallGrade": summary["overall_grade"],
            "position": _position(overall, sid),
            "streamPosition": _position(by_stream, sid),
            "outOf": out_of,
        })
    reports.sort(key=lambda r: (r["position"] is None, r["position"] or 0, r["student"]["admissionNumber"]))

    return {
        "class": class_id,
        "term": term_id,
        "academicYear": academic_year,
        "weights": dict(config.weights),
        "subjects": [_subject_ref(sid, names) for sid in subject_ids],
        "reports": reports,
        "subjectSummary": _subject_summary(subject_ids, names, finals, "final_percentage", config),
        "rankedCount": out_of,
        "generatedOn": _generated_on(generated_on),
    }


# ── Single-student projections ──────────────────────────────────────

def build_student_exam_report(
    student_id: str,
    entries: List[Dict[str, Any]],
    roster: List[Dict[str, Any]],
    class_id: str,
    term_id: str,
    exam_type: str,
    config: EngineConfig,
    generated_on: Optional[str] = None,
    academic_year: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """One student's marks for a sitting, with class position. None if unknown."""
    marklist = build_class_marklist(
        entries, roster, class_id, term_id, exam_type, config, generated_on, academic_year
    )
    row = next((s for s in marklist["students"] if s["student"]["_id"] == student_id), None)
    if row is None:
        return None

    return {
        "student": row["student"],
        "class": class_id,
        "term": term_id,
        "academicYear": marklist["academicYear"],
        "examType": exam_type,
        "results": [r for r in row["results"] if r["marksObtained"] is not None],
        "totalMarks": row["totalMarks"],
        "totalOutOf": row["totalOutOf"],
        "totalPoints": row["totalPoints"],
        "averagePercentage": row["averagePercentage"],
        "meanGradePoint": row["meanGradePoint"],
        "overallGrade": row["overallGrade"],
        "position": row["position"],
        "streamPosition": row["streamPosition"],
        "outOf": row["outOf"],
        "generatedOn": marklist["generatedOn"],
    }


def build_student_final_report(
    student_id: str,
    entries: List[Dict[str, Any]],
    roster: List[Dict[str, Any]],
    class_id: str,
    term_id: str,
    config: EngineConfig,
    generated_on: Optional[str] = None,
    academic_year: Optional[str] = None,
    previous_entries: Optional[List[Dict[str, Any]]] = None,
) -> Optional[Dict[str, Any]]:
    """One student's final term report card. None if unknown."""
    report = build_class_final_report(
        entries, roster, class_id, term_id, config, generated_on, academic_year, previous_entries
    )
    row = next((r for r in report["reports"] if r["student"]["_id"] == student_id), None)
    if row is None:
        return None

    return {
        "student": row["student"],
        "class": class_id,
        "term": term_id,
        "academicYear": report["academicYear"],
        "subjects": row["finalResults"],
        "totalMarks": row["totalMarks"],
        "totalPoints": row["totalPoints"],
        "overallAverage": row["overallAverage"],
        "meanGradePoint": row["meanGradePoint"],
        "overallGrade": row["overallGrade"],
        "position": row["position"],
        "streamPosition": row["streamPosition"],
        "outOf": row["outOf"],
        "generatedOn": report["generatedOn"],
    }
