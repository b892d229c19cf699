"""
grading_scale.py — Configurable percentage → grade/points tables.

A GradingScale is an ordered list of bands that partition [0, 100]:
  - lower bound inclusive, upper bound exclusive
  - the top band is closed at 100

The scale is a value passed into every grading call; it is built once at
startup from a preset name or a JSON file and never mutated afterwards.
"""

import json
from bisect import bisect_right
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence


class GradingScaleError(RuntimeError):
    """Raised when a scale definition or lookup breaks the band partition."""


# Kenyan 8-4-4 secondary scale (min, max, grade, points, description, remarks)
KENYAN_844_BANDS = [
    (0.0, 30.0, "E", 1, "Fail", "Poor"),
    (30.0, 35.0, "D-", 2, "Pass Minus", "Needs Improvement"),
    (35.0, 40.0, "D", 3, "Pass", "Needs Improvement"),
    (40.0, 45.0, "D+", 4, "Pass Plus", "Needs Improvement"),
    (45.0, 50.0, "C-", 5, "Credit Minus", "Satisfactory"),
    (50.0, 55.0, "C", 6, "Credit", "Satisfactory"),
    (55.0, 60.0, "C+", 7, "Credit Plus", "Satisfactory"),
    (60.0, 65.0, "B-", 8, "Good Minus", "Good"),
    (65.0, 70.0, "B", 9, "Good", "Good"),
    (70.0, 75.0, "B+", 10, "Good Plus", "Good"),
    (75.0, 80.0, "A-", 11, "Very Good", "Very Good"),
    (80.0, 100.0, "A", 12, "Excellent", "Excellent"),
]

CBC_BANDS = [
    (0.0, 50.0, "D", 1, "Below Expectations", "Needs Improvement"),
    (50.0, 65.0, "C", 2, "Approaching Expectations", "Satisfactory"),
    (65.0, 80.0, "B", 3, "Meets Expectations", "Very Good"),
    (80.0, 100.0, "A", 4, "Exceeds Expectations", "Excellent"),
]

# Float noise tolerance when checking that bands touch.
_EPSILON = 1e-9


def _band(raw: Any) -> Dict[str, Any]:
    """Normalise a tuple or mapping into a band dict."""
    if isinstance(raw, dict):
        try:
            return {
                "min_percentage": float(raw.get("min_percentage", raw.get("min"))),
                "max_percentage": float(raw.get("max_percentage", raw.get("max"))),
                "grade": str(raw["grade"]).strip(),
                "points": int(raw["points"]),
                "description": str(raw.get("description", "")),
                "remarks": str(raw.get("remarks", "")),
            }
        except (KeyError, TypeError, ValueError) as exc:
            raise GradingScaleError(f"Invalid grading band {raw!r}: {exc}") from exc

    min_pct, max_pct, grade, points, *rest = raw
    return {
        "min_percentage": float(min_pct),
        "max_percentage": float(max_pct),
        "grade": str(grade),
        "points": int(points),
        "description": rest[0] if len(rest) > 0 else "",
        "remarks": rest[1] if len(rest) > 1 else "",
    }


def _validate_bands(bands: List[Dict[str, Any]]) -> None:
    if not bands:
        raise GradingScaleError("A grading scale needs at least one band.")

    if abs(bands[0]["min_percentage"]) > _EPSILON:
        raise GradingScaleError(
            f"Lowest band '{bands[0]['grade']}' must start at 0, not {bands[0]['min_percentage']}."
        )
    if abs(bands[-1]["max_percentage"] - 100.0) > _EPSILON:
        raise GradingScaleError(
            f"Highest band '{bands[-1]['grade']}' must end at 100, not {bands[-1]['max_percentage']}."
        )

    seen = set()
    for idx, band in enumerate(bands):
        if band["min_percentage"] >= band["max_percentage"]:
            raise GradingScaleError(
                f"Invalid range for grade {band['grade']}: "
                f"min ({band['min_percentage']}) >= max ({band['max_percentage']})"
            )
        if band["grade"] in seen:
            raise GradingScaleError(f"Duplicate grade '{band['grade']}' in scale.")
        seen.add(band["grade"])
        if idx == 0:
            continue
        prev = bands[idx - 1]
        gap = band["min_percentage"] - prev["max_percentage"]
        if gap > _EPSILON:
            raise GradingScaleError(f"Gap between grades {prev['grade']} and {band['grade']}.")
        if gap < -_EPSILON:
            raise GradingScaleError(f"Grade ranges overlap: {prev['grade']} and {band['grade']}")


class GradingScale:
    """
    An immutable, validated grading table.

    Bands are sorted ascending by lower bound on construction. Subject
    overrides are complete scales of their own, keyed by subject id.
    """

    def __init__(
        self,
        bands: Iterable[Any],
        name: str = "custom",
        passing_grade: Optional[str] = None,
        round_to_nearest: Optional[float] = None,
        subject_overrides: Optional[Dict[str, "GradingScale"]] = None,
    ):
        normalised = sorted((_band(b) for b in bands), key=lambda b: b["min_percentage"])
        _validate_bands(normalised)

        if passing_grade is not None and passing_grade not in {b["grade"] for b in normalised}:
            raise GradingScaleError(f"Passing grade '{passing_grade}' is not in the scale.")
        if round_to_nearest is not None and round_to_nearest <= 0:
            raise GradingScaleError("round_to_nearest must be positive.")

        self.name = name
        self.passing_grade = passing_grade
        self.round_to_nearest = round_to_nearest
        self._bands = tuple(normalised)
        self._lower_bounds = [b["min_percentage"] for b in self._bands]
        self._subject_overrides = dict(subject_overrides or {})

    @property
    def bands(self) -> Sequence[Dict[str, Any]]:
        return tuple(dict(b) for b in self._bands)

    @property
    def max_points(self) -> int:
        return max(b["points"] for b in self._bands)

    def __repr__(self) -> str:
        return f"GradingScale(name={self.name!r}, bands={len(self._bands)})"

    # ── Lookup ──────────────────────────────────────────────────────

    def _lookup_value(self, percentage: float) -> float:
        value = max(0.0, min(100.0, float(percentage)))
        if self.round_to_nearest:
            factor = 1.0 / self.round_to_nearest
            value = round(value * factor) / factor
            value = max(0.0, min(100.0, value))
        return value

    def _band_for(self, value: float) -> Dict[str, Any]:
        idx = bisect_right(self._lower_bounds, value) - 1
        if idx < 0:
            raise GradingScaleError(f"No grade band matches {value}% in scale '{self.name}'.")
        band = self._bands[idx]
        is_top = idx == len(self._bands) - 1
        if value > band["max_percentage"] or (value == band["max_percentage"] and not is_top):
            raise GradingScaleError(f"No grade band matches {value}% in scale '{self.name}'.")
        return band

    def grade(self, percentage: float) -> Dict[str, Any]:
        """Grade a percentage. Out-of-range input is clamped to [0, 100]."""
        if percentage is None:
            raise GradingScaleError("Cannot grade a missing percentage.")
        value = self._lookup_value(percentage)
        band = self._band_for(value)
        return {
            "grade": band["grade"],
            "points": band["points"],
            "description": band["description"],
            "remarks": band["remarks"],
            "percentage": value,
            "passed": self.is_passing(band["grade"]),
        }

    def grade_for_points(self, points: float) -> Dict[str, Any]:
        """Return the band whose point value is nearest to `points`."""
        best = min(self._bands, key=lambda b: (abs(b["points"] - points), -b["points"]))
        return {
            "grade": best["grade"],
            "points": best["points"],
            "description": best["description"],
            "remarks": best["remarks"],
        }

    def is_passing(self, grade: str) -> bool:
        if self.passing_grade is None:
            return True
        order = {b["grade"]: i for i, b in enumerate(self._bands)}
        if grade not in order:
            return False
        return order[grade] >= order[self.passing_grade]

    def for_subject(self, subject_id: Optional[str]) -> "GradingScale":
        """Subject-specific scale when one is configured, otherwise self."""
        if subject_id is None:
            return self
        return self._subject_overrides.get(str(subject_id), self)

    # ── Presentation helpers ────────────────────────────────────────

    def thresholds(self) -> List[Dict[str, Any]]:
        """Full scale (high to low) for legend/reference."""
        return [
            {
                "min": b["min_percentage"],
                "max": b["max_percentage"],
                "label": b["grade"],
                "points": b["points"],
                "description": b["description"],
                "remarks": b["remarks"],
            }
            for b in reversed(self._bands)
        ]

    def distribution(self, percentages: Iterable[Optional[float]]) -> Dict[str, Dict[str, Any]]:
        """Count of entries per grade, with each grade's share of the total."""
        counts = {b["grade"]: 0 for b in reversed(self._bands)}
        total = 0
        for pct in percentages:
            if pct is None:
                continue
            counts[self.grade(pct)["grade"]] += 1
            total += 1
        return {
            grade: {
                "count": count,
                "percentage": round(count / total * 100, 1) if total else 0.0,
            }
            for grade, count in counts.items()
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "passing_grade": self.passing_grade,
            "round_to_nearest": self.round_to_nearest,
            "max_points": self.max_points,
            "bands": self.thresholds(),
            "subject_overrides": sorted(self._subject_overrides),
        }


# ── Construction ────────────────────────────────────────────────────

def kenyan_844_scale() -> GradingScale:
    return GradingScale(KENYAN_844_BANDS, name="kenyan-844", passing_grade="D-")


def cbc_scale() -> GradingScale:
    return GradingScale(CBC_BANDS, name="cbc", passing_grade="C")


PRESETS = {
    "kenyan-844": kenyan_844_scale,
    "cbc": cbc_scale,
}


def scale_from_config(config: Dict[str, Any]) -> GradingScale:
    """
    Build a scale from a mapping such as:

        {"name": "...", "passing_grade": "D-", "round_to_nearest": null,
         "bands": [{"min": 0, "max": 30, "grade": "E", "points": 1}, ...],
         "subject_overrides": {"<subject_id>": {"bands": [...]}}}
    """
    if not isinstance(config, dict) or "bands" not in config:
        raise GradingScaleError("Grading scale config must be a mapping with a 'bands' list.")

    overrides = {
        str(subject_id): scale_from_config({"name": f"{config.get('name', 'custom')}:{subject_id}", **sub})
        for subject_id, sub in (config.get("subject_overrides") or {}).items()
    }
    return GradingScale(
        config["bands"],
        name=str(config.get("name", "custom")),
        passing_grade=config.get("passing_grade"),
        round_to_nearest=config.get("round_to_nearest"),
        subject_overrides=overrides,
    )


def load_grading_scale(source: str) -> GradingScale:
    """Load a scale from a preset name or a JSON file path."""
    key = str(source).strip()
    if key.lower() in PRESETS:
        return PRESETS[key.lower()]()

    path = Path(key)
    if not path.is_file():
        raise GradingScaleError(
            f"Unknown grading scale '{key}'. Use one of {sorted(PRESETS)} or a JSON file path."
        )
    try:
        config = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise GradingScaleError(f"Grading scale file {path} is not valid JSON: {exc}") from exc
    config.setdefault("name", path.stem)
    return scale_from_config(config)
