"""
ranking.py — Class, stream and subject positions.

Positions are a view over the current summaries: they are recomputed on
every request and never stored.

Ordering is by the metric key descending, then student_id ascending, so
equal inputs always give the same order. Students with equal keys share a
position. With competition ranking the next student skips ahead by the
number of ties (1, 1, 3); with dense ranking it does not (1, 1, 2).
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

KEY_PRECISION = 9


def _norm(value: Optional[float]) -> float:
    if value is None:
        return float("-inf")
    return round(float(value), KEY_PRECISION)


def assign_positions(
    items: Iterable[Dict[str, Any]],
    key: Callable[[Dict[str, Any]], Tuple],
    method: str = "competition",
    id_field: str = "student_id",
) -> List[Dict[str, Any]]:
    """
    Return [{<id_field>, position, out_of}] in rank order.

    `key` returns a tuple of numbers, higher is better. Ties on the key are
    ordered by `id_field` ascending.
    """
    if method not in ("competition", "dense"):
        raise ValueError(f"Unknown ranking method '{method}'")

    keyed = [(tuple(_norm(v) for v in key(item)), str(item[id_field])) for item in items]
    keyed.sort(key=lambda kv: tuple(-v for v in kv[0]) + (kv[1],))

    out_of = len(keyed)
    ranked = []
    position = 0
    prev_key = None
    for idx, (k, item_id) in enumerate(keyed):
        if k != prev_key:
            position = idx + 1 if method == "competition" else position + 1
            prev_key = k
        ranked.append({id_field: item_id, "position": position, "out_of": out_of})
    return ranked


def _final_key(summary: Dict[str, Any]) -> Tuple:
    return (summary["mean_grade_point"], summary["total_marks"])


def _exam_key(summary: Dict[str, Any]) -> Tuple:
    return (summary["average_percentage"], summary["total_marks"])


def _rankable(summaries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [s for s in summaries if s.get("subject_count", 0) > 0]


def rank_final(summaries: Iterable[Dict[str, Any]], method: str = "competition") -> Dict[str, Dict[str, Any]]:
    """Overall term positions keyed by student_id (mean grade point, then total marks)."""
    return {r["student_id"]: r for r in assign_positions(_rankable(summaries), _final_key, method)}


def rank_exam(summaries: Iterable[Dict[str, Any]], method: str = "competition") -> Dict[str, Dict[str, Any]]:
    """Positions for one exam sitting (average percentage, then total marks)."""
    return {r["student_id"]: r for r in assign_positions(_rankable(summaries), _exam_key, method)}


def rank_streams(
    summaries: Iterable[Dict[str, Any]],
    streams: Dict[str, Optional[str]],
    key: str = "final",
    method: str = "competition",
) -> Dict[str, Dict[str, Any]]:
    """
    Positions inside each stream of the class, keyed by student_id.
    Students without a stream are left out.
    """
    by_stream: Dict[str, List[Dict[str, Any]]] = {}
    for s in _rankable(summaries):
        stream = streams.get(s["student_id"])
        if stream:
            by_stream.setdefault(stream, []).append(s)

    key_fn = _final_key if key == "final" else _exam_key
    positions: Dict[str, Dict[str, Any]] = {}
    for stream, members in by_stream.items():
        for r in assign_positions(members, key_fn, method):
            positions[r["student_id"]] = {**r, "stream": stream}
    return positions


def rank_subjects(
    rows: Iterable[Dict[str, Any]],
    value_field: str = "final_percentage",
    method: str = "competition",
) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """
    Per-subject positions: {subject_id: {student_id: {position, out_of}}}.

    Only students with a value for that subject take part.
    """
    by_subject: Dict[str, List[Dict[str, Any]]] = {}
    for row in rows:
        if row.get(value_field) is None:
            continue
        by_subject.setdefault(row["subject_id"], []).append(row)

    return {
        subject_id: {
            r["student_id"]: r
            for r in assign_positions(members, lambda m: (m[value_field],), method)
        }
        for subject_id, members in by_subject.items()
    }


def rank_subject_means(subject_means: Dict[str, Optional[float]], method: str = "competition") -> Dict[str, int]:
    """Order subjects by class mean (the marklist's subject position row)."""
    items = [{"subject_id": sid, "mean": m} for sid, m in subject_means.items() if m is not None]
    ranked = assign_positions(items, lambda i: (i["mean"],), method, id_field="subject_id")
    return {r["subject_id"]: r["position"] for r in ranked}
