"""
grading.py — Configurable grade scales.

A GradeScale is a validated, versioned table of percentage bands. Lookups
round the percentage to the scale's unit (half-up) and return the first band
that contains it, consulting per-subject overrides first. Validation collects
every problem in one pass so an administrator sees them all at once.

Standard scales shipped with the engine:
  kenyan_844  KCSE 8-4-4, A..E, 12..1 points
  cbc         Competency Based Curriculum, A..D, 4..1 points
  universal   A-F bands at 0.1 resolution
"""

import logging
import math
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
from pydantic import Field, ValidationError, field_validator

from core.errors import ConfigurationError
from core.models import GradeInfo, GradeRange, ScaleValidation, _Frozen

LOG = logging.getLogger(__name__)

ALLOWED_ROUNDING_UNITS = (1.0, 0.5, 0.1)


# ── Helpers ─────────────────────────────────────────────────────────

def _coerce_percentage(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def round_to_unit(value: float, unit: float) -> float:
    """Round half-up to the nearest multiple of ``unit`` (84.5 -> 85 for unit 1)."""
    step = Decimal(str(unit))
    steps = (Decimal(str(value)) / step).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return float(steps * step)


def _fmt(value: float) -> str:
    return f"{value:g}"


def _sorted_desc(ranges: Iterable[GradeRange]) -> List[GradeRange]:
    return sorted(ranges, key=lambda r: r.max_percent, reverse=True)


def _grid_gap(lower_max: float, upper_min: float, unit: float) -> bool:
    """True when a value reachable after rounding lies strictly between two bands."""
    step = Decimal(str(unit))
    next_point = (Decimal(str(lower_max)) / step).to_integral_value(rounding=ROUND_FLOOR) * step + step
    return next_point < Decimal(str(upper_min))


# ── Validation ──────────────────────────────────────────────────────

RangeInput = Union[GradeRange, Mapping[str, Any]]


def validate_grade_ranges(ranges: Sequence[RangeInput], rounding_unit: float = 1.0) -> ScaleValidation:
    """
    Check a list of grade ranges and report every violation found.

    Rules: bounds within [0, 100], min <= max, non-negative points, unique
    grade labels, no overlaps, top band reaches 100, bottom band starts at 0,
    and no gap between neighbouring bands that a rounded percentage could
    fall into.
    """
    if not ranges:
        return ScaleValidation(is_valid=False, errors=["Scale must be a non-empty list of grade ranges"])

    errors: List[str] = []
    parsed: List[GradeRange] = []
    for index, raw in enumerate(ranges, 1):
        if isinstance(raw, GradeRange):
            parsed.append(raw)
            continue
        try:
            parsed.append(GradeRange.model_validate(raw))
        except ValidationError as exc:
            fields = sorted({str(e["loc"][0]) for e in exc.errors() if e.get("loc")})
            errors.append(f"Grade range {index}: missing or invalid fields ({', '.join(fields)})")

    for index, r in enumerate(parsed, 1):
        if not (0 <= r.min_percent <= 100 and 0 <= r.max_percent <= 100):
            errors.append(f"Grade range {index} ({r.grade}): bounds must be between 0 and 100")
        if r.min_percent > r.max_percent:
            errors.append(
                f"Grade range {index} ({r.grade}): minimum {_fmt(r.min_percent)} "
                f"is greater than maximum {_fmt(r.max_percent)}"
            )
        if r.points < 0:
            errors.append(f"Grade range {index} ({r.grade}): points cannot be negative")

    seen = set()
    for r in parsed:
        if r.grade in seen:
            errors.append(f"Duplicate grade label: {r.grade}")
        seen.add(r.grade)

    if not parsed:
        return ScaleValidation(is_valid=False, errors=errors)

    ordered = _sorted_desc(parsed)
    for upper, lower in zip(ordered, ordered[1:]):
        if upper.min_percent <= lower.max_percent:
            errors.append(
                f"Overlapping grade ranges: {upper.grade} ({_fmt(upper.min_percent)}-{_fmt(upper.max_percent)}) "
                f"and {lower.grade} ({_fmt(lower.min_percent)}-{_fmt(lower.max_percent)})"
            )
        elif _grid_gap(lower.max_percent, upper.min_percent, rounding_unit):
            errors.append(
                f"Gap in coverage between {lower.grade} (max {_fmt(lower.max_percent)}) "
                f"and {upper.grade} (min {_fmt(upper.min_percent)})"
            )

    if ordered[0].max_percent != 100:
        errors.append("Grade scale must cover up to 100%")
    if min(r.min_percent for r in ordered) != 0:
        errors.append("Grade scale must cover down to 0%")

    return ScaleValidation(is_valid=not errors, errors=errors)


# ── Grade Scale ─────────────────────────────────────────────────────

class GradeScale(_Frozen):
    """Named, versioned grade table with optional per-subject overrides."""
    name: str
    version: float = 1.0
    description: str = ""
    academic_level: str = "secondary"
    grading_system: str = "Custom"
    ranges: List[GradeRange]
    passing_grade: str
    passing_percentage: float = 50.0
    rounding_unit: float = 1.0
    max_points: Optional[int] = None
    subject_overrides: Dict[str, List[GradeRange]] = Field(default_factory=dict)

    @field_validator("ranges")
    @classmethod
    def _order_ranges(cls, value: List[GradeRange]) -> List[GradeRange]:
        return _sorted_desc(value)

    @field_validator("subject_overrides")
    @classmethod
    def _order_overrides(cls, value: Dict[str, List[GradeRange]]) -> Dict[str, List[GradeRange]]:
        return {str(subject): _sorted_desc(ranges) for subject, ranges in value.items()}

    @property
    def grades(self) -> List[str]:
        return [r.grade for r in self.ranges]

    def round_percentage(self, percentage: float) -> float:
        return round_to_unit(percentage, self.rounding_unit)

    def _ranges_for(self, subject_id: Optional[str]) -> List[GradeRange]:
        if subject_id is not None:
            override = self.subject_overrides.get(str(subject_id))
            if override:
                return override
        return self.ranges

    def lookup(self, percentage: Any, subject_id: Optional[str] = None) -> GradeInfo:
        """Grade a percentage. Never raises; unmatched values get the lowest grade, flagged."""
        table = self._ranges_for(subject_id)
        value = _coerce_percentage(percentage)
        rounded = self.round_percentage(value) if value is not None else 0.0

        if value is not None:
            for r in table:
                if r.min_percent <= rounded <= r.max_percent:
                    return GradeInfo(
                        grade=r.grade,
                        points=r.points,
                        label=r.label,
                        comment=r.comment,
                        percentage=rounded,
                        is_passing=self.is_passing(r.grade),
                    )

        fallback = table[-1]
        LOG.warning(
            "Percentage %r matched no band in scale %r (subject=%s); using %s",
            percentage, self.name, subject_id, fallback.grade,
        )
        return GradeInfo(
            grade=fallback.grade,
            points=fallback.points,
            label=fallback.label,
            comment=fallback.comment,
            percentage=rounded,
            is_passing=self.is_passing(fallback.grade),
            out_of_range=True,
        )

    def is_passing(self, grade: str) -> bool:
        grades = self.grades
        if grade not in grades or self.passing_grade not in grades:
            return False
        return grades.index(grade) <= grades.index(self.passing_grade)

    def grade_from_mean_points(self, mean_points: float) -> str:
        """Grade whose points equal the mean grade point rounded half-up."""
        target = int(round_to_unit(mean_points or 0.0, 1))
        for r in self.ranges:
            if r.points == target:
                return r.grade
        return self.ranges[-1].grade

    def distribution(self, percentages: Iterable[Any]) -> Dict[str, Any]:
        """Grade counts plus summary statistics for a list of percentages."""
        values = [v for v in (_coerce_percentage(p) for p in percentages) if v is not None]
        dist: Dict[str, Dict[str, Any]] = {
            r.grade: {"count": 0, "percentage_of_total": 0.0, "label": r.label}
            for r in self.ranges
        }
        for v in values:
            info = self.lookup(v)
            if info.grade in dist:
                dist[info.grade]["count"] += 1

        total = len(values)
        for entry in dist.values():
            entry["percentage_of_total"] = round(entry["count"] / total * 100, 1) if total else 0.0

        if total:
            arr = np.asarray(values, dtype=float)
            passing = int((arr >= self.passing_percentage).sum())
            statistics = {
                "total": total,
                "mean": round(float(arr.mean()), 2),
                "highest": float(arr.max()),
                "lowest": float(arr.min()),
                "passing_count": passing,
                "passing_rate": round(passing / total * 100, 2),
            }
        else:
            statistics = {
                "total": 0, "mean": None, "highest": None, "lowest": None,
                "passing_count": 0, "passing_rate": None,
            }

        return {"distribution": dist, "statistics": statistics}

    def thresholds(self) -> List[Dict[str, Any]]:
        """Scale legend for display."""
        return [
            {
                "grade": r.grade,
                "min": r.min_percent,
                "max": r.max_percent,
                "points": r.points,
                "label": r.label,
                "passing": self.is_passing(r.grade),
            }
            for r in self.ranges
        ]


def validate_grade_scale(scale: GradeScale) -> ScaleValidation:
    """Validate default ranges, every subject override, and the scale config."""
    errors = list(validate_grade_ranges(scale.ranges, scale.rounding_unit).errors)
    for subject_id, ranges in scale.subject_overrides.items():
        if not ranges:
            continue
        for message in validate_grade_ranges(ranges, scale.rounding_unit).errors:
            errors.append(f"Override for subject {subject_id}: {message}")
    if scale.passing_grade not in scale.grades:
        errors.append(f"Passing grade {scale.passing_grade!r} is not in the scale")
    if scale.rounding_unit not in ALLOWED_ROUNDING_UNITS:
        errors.append(
            f"Rounding unit must be one of {', '.join(_fmt(u) for u in ALLOWED_ROUNDING_UNITS)}"
        )
    if not 0 <= scale.passing_percentage <= 100:
        errors.append("Passing percentage must be between 0 and 100")
    return ScaleValidation(is_valid=not errors, errors=errors)


def build_grade_scale(definition: Mapping[str, Any]) -> GradeScale:
    """Create a scale from a plain definition; raise ConfigurationError if invalid."""
    try:
        scale = GradeScale.model_validate(definition)
    except ValidationError as exc:
        messages = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
        raise ConfigurationError("Invalid grading scale definition", messages) from exc

    result = validate_grade_scale(scale)
    if not result.is_valid:
        raise ConfigurationError(f"Grading scale {scale.name!r} failed validation", result.errors)
    return scale


# ── Standard Scales ─────────────────────────────────────────────────

# (min, max, grade, points, label, comment), high to low.
KENYAN_844_GRADES = [
    (80, 100, "A", 12, "Excellent", "Excellent!"),
    (75, 79, "A-", 11, "Very Good", "Very good!"),
    (70, 74, "B+", 10, "Good Plus", "Great work!"),
    (65, 69, "B", 9, "Good", "Well done!"),
    (60, 64, "B-", 8, "Good Minus", "Nice effort!"),
    (55, 59, "C+", 7, "Credit Plus", "Satisfactory!"),
    (50, 54, "C", 6, "Credit", "Fair, can improve!"),
    (45, 49, "C-", 5, "Credit Minus", "Keep working!"),
    (40, 44, "D+", 4, "Pass Plus", "Below average!"),
    (35, 39, "D", 3, "Pass", "Need improvement!"),
    (30, 34, "D-", 2, "Pass Minus", "Work harder!"),
    (0, 29, "E", 1, "Fail", "Try harder!"),
]

CBC_GRADES = [
    (80, 100, "A", 4, "Exceeds Expectations", "Excellent!"),
    (65, 79, "B", 3, "Meets Expectations", "Very good!"),
    (50, 64, "C", 2, "Approaching Expectations", "Keep working!"),
    (0, 49, "D", 1, "Below Expectations", "Needs improvement!"),
]

UNIVERSAL_GRADES = [
    (80.0, 100.0, "A", 6, "Excellent", "Excellent!"),
    (70.0, 79.9, "B", 5, "Very Good", "Very good!"),
    (60.0, 69.9, "C", 4, "Good", "Good work!"),
    (50.0, 59.9, "D", 3, "Satisfactory", "Satisfactory."),
    (40.0, 49.9, "E", 2, "Needs Improvement", "Needs improvement."),
    (0.0, 39.9, "F", 1, "Poor", "Try harder!"),
]


def _scale_from_table(table, **config) -> GradeScale:
    ranges = [
        GradeRange(
            grade=grade, min_percent=lo, max_percent=hi,
            points=points, label=label, comment=comment,
        )
        for lo, hi, grade, points, label, comment in table
    ]
    return build_grade_scale({"ranges": ranges, "max_points": max(r.points for r in ranges), **config})


STANDARD_SCALES: Dict[str, GradeScale] = {
    "kenyan_844": _scale_from_table(
        KENYAN_844_GRADES,
        name="Kenyan 8-4-4 System",
        description="Standard Kenyan secondary school grading system",
        academic_level="secondary",
        grading_system="8-4-4",
        passing_grade="D-",
        passing_percentage=30,
        rounding_unit=1,
    ),
    "cbc": _scale_from_table(
        CBC_GRADES,
        name="CBC System",
        description="Competency Based Curriculum grading system",
        academic_level="primary",
        grading_system="CBC",
        passing_grade="C",
        passing_percentage=50,
        rounding_unit=1,
    ),
    "universal": _scale_from_table(
        UNIVERSAL_GRADES,
        name="Universal (A-F)",
        description="Curriculum-agnostic A-F bands",
        academic_level="secondary",
        grading_system="Custom",
        passing_grade="D",
        passing_percentage=50,
        rounding_unit=0.1,
    ),
}


def list_standard_scales() -> List[str]:
    return sorted(STANDARD_SCALES)


def get_standard_scale(name: str) -> GradeScale:
    try:
        return STANDARD_SCALES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown grading scale {name!r}", [f"Available: {', '.join(list_standard_scales())}"]
        ) from None


def resolve_scale(value: Union[None, str, Mapping[str, Any], GradeScale], default: str = "kenyan_844") -> GradeScale:
    """A scale given by standard name, full definition, or omitted (use ``default``)."""
    if isinstance(value, GradeScale):
        return value
    if value is None or value == "":
        return get_standard_scale(default)
    if isinstance(value, str):
        return get_standard_scale(value)
    if isinstance(value, Mapping):
        return build_grade_scale(value)
    raise ConfigurationError("Scale must be a standard scale name or a scale definition")
