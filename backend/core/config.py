"""
config.py — Engine configuration built once from the environment.

The resulting EngineConfig is threaded explicitly through every grading,
aggregation and ranking call.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from core.grading_scale import GradingScale, load_grading_scale

EXAM_TYPES = ("Opener", "Midterm", "Endterm")
RANKING_METHODS = ("competition", "dense")

DEFAULT_WEIGHTS = {"Opener": 1.0, "Midterm": 1.0, "Endterm": 1.0}


class ConfigError(ValueError):
    """Raised for malformed engine settings."""


def parse_exam_weights(raw: Optional[str]) -> Dict[str, float]:
    """Parse 'Opener:1,Midterm:1,Endterm:2' into a weight per exam type."""
    if raw is None or not str(raw).strip():
        return dict(DEFAULT_WEIGHTS)

    lookup = {e.lower(): e for e in EXAM_TYPES}
    weights = {e: 0.0 for e in EXAM_TYPES}
    for part in str(raw).split(","):
        if not part.strip():
            continue
        name, sep, value = part.partition(":")
        exam_type = lookup.get(name.strip().lower())
        if not sep or exam_type is None:
            raise ConfigError(f"Invalid EXAM_WEIGHTS entry '{part.strip()}'.")
        try:
            weights[exam_type] = float(value)
        except ValueError as exc:
            raise ConfigError(f"Weight for {exam_type} is not a number: '{value.strip()}'.") from exc
    return validate_weights(weights)


def validate_weights(weights: Mapping[str, float]) -> Dict[str, float]:
    unknown = set(weights) - set(EXAM_TYPES)
    if unknown:
        raise ConfigError(f"Unknown exam types in weights: {sorted(unknown)}")
    cleaned = {e: float(weights.get(e, 0.0)) for e in EXAM_TYPES}
    if any(w < 0 for w in cleaned.values()):
        raise ConfigError("Exam weights cannot be negative.")
    if sum(cleaned.values()) <= 0:
        raise ConfigError("At least one exam weight must be positive.")
    return cleaned


@dataclass(frozen=True)
class EngineConfig:
    scale: GradingScale
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    ranking_method: str = "competition"

    def __post_init__(self):
        object.__setattr__(self, "weights", validate_weights(self.weights))
        if self.ranking_method not in RANKING_METHODS:
            raise ConfigError(
                f"Unknown ranking method '{self.ranking_method}'. Use one of {list(RANKING_METHODS)}."
            )


def load_engine_config(env: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """Read GRADING_SCALE, EXAM_WEIGHTS and RANKING_METHOD."""
    env = os.environ if env is None else env
    scale = load_grading_scale(env.get("GRADING_SCALE", "kenyan-844"))
    return EngineConfig(
        scale=scale,
        weights=parse_exam_weights(env.get("EXAM_WEIGHTS")),
        ranking_method=env.get("RANKING_METHOD", "competition").strip().lower(),
    )
