"""
aggregation.py — Blend a term's exam sittings into one result per subject.

For one student + subject + term:
- keep at most one entry per exam type (the latest write)
- final_percentage = weighted mean of the present exam percentages,
  weights renormalised over the present subset
- grade/points come from final_percentage, never from per-exam grades

Also computes the per-subject performance metrics shown on the final
report: spread across sittings, strongest/weakest sitting, change since
the previous term and review flags.

A term result belongs to one academic year. Term ids repeat every year
(T1, T2, T3), so callers pick a year before blending.
"""

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from core.config import EXAM_TYPES
from core.grading_scale import GradingScale
from core.marks import grade_entry

ATTENTION_BELOW = 40.0
EXCEPTIONAL_HIGH = 95.0
EXCEPTIONAL_LOW = 20.0
DISCREPANCY_SPREAD = 20.0
TREND_THRESHOLD = 5.0
INCONSISTENT_SPREAD = 15.0

TERM_NUMBER = re.compile(r"(\d+)\s*$")


def latest_per_exam(entries: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    One entry per exam type. The greatest `entered_at` wins; entries
    without it, or tied, resolve to the later position in the input.
    """
    latest: Dict[str, Dict[str, Any]] = {}
    for entry in entries:
        exam_type = entry["exam_type"]
        current = latest.get(exam_type)
        if current is None or entry.get("entered_at", 0) >= current.get("entered_at", 0):
            latest[exam_type] = entry
    return latest


def weighted_percentage(percentages: Mapping[str, float], weights: Mapping[str, float]) -> Optional[float]:
    """Weighted mean over the exam types present in `percentages`."""
    present = [e for e in EXAM_TYPES if percentages.get(e) is not None]
    if not present:
        return None

    w = np.array([float(weights.get(e, 0.0)) for e in present])
    if w.sum() <= 0:
        # Only zero-weight sittings were written; fall back to a plain mean.
        w = np.ones(len(present))
    values = np.array([float(percentages[e]) for e in present])
    return float(np.dot(values, w) / w.sum())


def latest_academic_year(entries: Iterable[Dict[str, Any]]) -> Optional[str]:
    """Most recent "YYYY/YYYY" year among the entries, or None."""
    years = [e["academic_year"] for e in entries if e.get("academic_year")]
    return max(years) if years else None


def term_number(term_id: str) -> Optional[int]:
    match = TERM_NUMBER.search(str(term_id))
    return int(match.group(1)) if match else None


def previous_term(term_ids: Iterable[str], term_id: str) -> Optional[str]:
    """
    The term just before `term_id` among `term_ids`, ordered by the trailing
    term number (T1 < T2 < T3). None when there is none or the ids carry no
    number.
    """
    current = term_number(term_id)
    if current is None:
        return None
    earlier = []
    for t in set(term_ids):
        n = term_number(t)
        if n is not None and n < current:
            earlier.append((n, t))
    return max(earlier)[1] if earlier else None


def _trend(improvement: Optional[float], consistency: Optional[float]) -> str:
    if improvement is not None and improvement > TREND_THRESHOLD:
        return "improving"
    if improvement is not None and improvement < -TREND_THRESHOLD:
        return "declining"
    if consistency is not None and consistency > INCONSISTENT_SPREAD:
        return "inconsistent"
    return "stable"


def _performance_metrics(
    percentages: Mapping[str, float],
    final_pct: float,
    previous_pct: Optional[float] = None,
) -> Dict[str, Any]:
    sat = [e for e in EXAM_TYPES if percentages.get(e) is not None]
    values = np.array([percentages[e] for e in sat], dtype=float)

    consistency = round(float(np.std(values)), 2) if len(values) > 1 else None
    # max/min keep the first exam type on ties, in sitting order
    strongest = max(sat, key=lambda e: percentages[e]) if len(sat) > 1 else None
    weakest = min(sat, key=lambda e: percentages[e]) if len(sat) > 1 else None
    improvement = round(final_pct - previous_pct, 2) if previous_pct is not None else None

    return {
        "consistency": consistency,
        "strongest_exam": strongest,
        "weakest_exam": weakest,
        "improvement": improvement,
        "trend": _trend(improvement, consistency),
        "flags": {
            "requires_attention": final_pct < ATTENTION_BELOW,
            "is_exceptional": final_pct >= EXCEPTIONAL_HIGH or final_pct <= EXCEPTIONAL_LOW,
            "has_discrepancy": consistency is not None and consistency > DISCREPANCY_SPREAD,
        },
    }


def aggregate_subject(
    entries: List[Dict[str, Any]],
    scale: GradingScale,
    weights: Mapping[str, float],
    previous_pct: Optional[float] = None,
) -> Optional[Dict[str, Any]]:
    """
    Combine one student's entries for one subject and term.

    Returns None when there are no entries. Entries may be raw or graded;
    percentages are always re-derived from the marks. `previous_pct` is the
    same subject's final percentage in the previous term, if any.
    """
    if not entries:
        return None

    first = entries[0]
    latest = latest_per_exam(entries)
    graded = {e: grade_entry(latest[e], scale) for e in EXAM_TYPES if e in latest}
    percentages = {e: g["percentage"] for e, g in graded.items()}

    final_pct = round(weighted_percentage(percentages, weights), 2)
    info = scale.for_subject(first["subject_id"]).grade(final_pct)

    result = {
        "student_id": first["student_id"],
        "subject_id": first["subject_id"],
        "class_id": first.get("class_id"),
        "term_id": first["term_id"],
        "academic_year": first.get("academic_year"),
        "breakdown": {e.lower(): percentages.get(e) for e in EXAM_TYPES},
        "exams": graded,
        "exams_sat": len(graded),
        "final_percentage": final_pct,
        "grade": info["grade"],
        "points": info["points"],
        "passed": info["passed"],
        "comment": next(
            (graded[e].get("comment") for e in reversed(EXAM_TYPES) if e in graded and graded[e].get("comment")),
            None,
        ),
    }
    result.update(_performance_metrics(percentages, final_pct, previous_pct))
    return result


def aggregate_term(
    entries: List[Dict[str, Any]],
    scale: GradingScale,
    weights: Mapping[str, float],
    previous_entries: Optional[List[Dict[str, Any]]] = None,
) -> List[Dict[str, Any]]:
    """
    FinalSubjectResults for every (student, subject, academic year) in a
    term snapshot. Sittings from different years are never blended.

    `previous_entries` is the previous term's snapshot; when given, each
    result carries its improvement and trend against that term.
    """
    if not entries:
        return []

    previous: Dict[Tuple[str, str], float] = {}
    if previous_entries:
        for r in aggregate_term(previous_entries, scale, weights):
            previous[(r["student_id"], r["subject_id"])] = r["final_percentage"]

    df = pd.DataFrame({
        "student_id": [e["student_id"] for e in entries],
        "subject_id": [e["subject_id"] for e in entries],
        "academic_year": [e.get("academic_year") or "" for e in entries],
        "idx": range(len(entries)),
    })
    results = []
    for (student_id, subject_id, _), group in df.groupby(["student_id", "subject_id", "academic_year"], sort=True):
        result = aggregate_subject(
            [entries[i] for i in group["idx"]], scale, weights,
            previous_pct=previous.get((student_id, subject_id)),
        )
        if result is not None:
            results.append(result)
    return results
