"""
summary.py — Fold a student's subject results into term totals.

The overall letter grade is read off the points axis (rounded mean grade
point), while each subject grade comes from its percentage. Reports built
on the existing scale depend on that split, so it is kept.
"""

import math
from typing import Any, Dict, List, Optional

from core.grading_scale import GradingScale


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _overall_grade(mean_grade_point: Optional[float], scale: GradingScale) -> Optional[str]:
    if mean_grade_point is None:
        return None
    return scale.grade_for_points(round_half_up(mean_grade_point))["grade"]


def summarize_student(
    student_id: str,
    term_id: str,
    results: List[Dict[str, Any]],
    scale: GradingScale,
) -> Dict[str, Any]:
    """
    StudentTermSummary for one student from their FinalSubjectResults.

    total_marks is the sum of final percentages, which is what the final
    report shows as "Total". mean_grade_point is left unrounded for ranking.
    """
    count = len(results)
    if count == 0:
        return {
            "student_id": student_id,
            "term_id": term_id,
            "total_marks": None,
            "total_points": None,
            "average_percentage": None,
            "mean_grade_point": None,
            "overall_grade": None,
            "subject_count": 0,
        }

    total_marks = sum(r["final_percentage"] for r in results)
    total_points = sum(r["points"] for r in results)
    mean_grade_point = total_points / count

    return {
        "student_id": student_id,
        "term_id": term_id,
        "total_marks": round(total_marks, 2),
        "total_points": total_points,
        "average_percentage": total_marks / count,
        "mean_grade_point": mean_grade_point,
        "overall_grade": _overall_grade(mean_grade_point, scale),
        "subject_count": count,
    }


def summarize_exam(
    student_id: str,
    term_id: str,
    exam_type: str,
    graded_entries: List[Dict[str, Any]],
    scale: GradingScale,
) -> Dict[str, Any]:
    """Same fold for a single sitting, from graded entries of that exam type."""
    count = len(graded_entries)
    summary = {
        "student_id": student_id,
        "term_id": term_id,
        "exam_type": exam_type,
        "total_marks": None,
        "total_out_of": None,
        "total_points": None,
        "average_percentage": None,
        "mean_grade_point": None,
        "overall_grade": None,
        "subject_count": count,
    }
    if count == 0:
        return summary

    total_points = sum(e["points"] for e in graded_entries)
    mean_grade_point = total_points / count
    summary.update(
        {
            "total_marks": sum(e["marks_obtained"] for e in graded_entries),
            "total_out_of": sum(e["out_of"] for e in graded_entries),
            "total_points": total_points,
            "average_percentage": sum(e["percentage"] for e in graded_entries) / count,
            "mean_grade_point": mean_grade_point,
            "overall_grade": _overall_grade(mean_grade_point, scale),
        }
    )
    return summary
