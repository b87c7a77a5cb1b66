"""
stats.py — Cohort statistics over term summaries.

Computes:
- Class progress summary (average, highest, lowest, performance bands, top performers)
- Per-subject performance (mean, median, std, pass rate, grade distribution)
- Pearson correlations between subjects (scipy.stats.pearsonr)
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats as sp_stats

from core.grading import GradeScale
from core.models import TermSummary

EXCELLENT_FROM = 80
GOOD_FROM = 60
AT_RISK_BELOW = 40


# ── Helpers ─────────────────────────────────────────────────────────

def _safe_float(val) -> Optional[float]:
    """Convert to float or return None."""
    try:
        v = float(val)
        return None if np.isnan(v) or np.isinf(v) else round(v, 2)
    except (TypeError, ValueError):
        return None


def _sanitize(obj):
    """Recursively coerce numpy/pandas scalars to JSON-safe Python types."""
    if isinstance(obj, dict):
        return {k: _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_sanitize(v) for v in obj]
    if isinstance(obj, (np.bool_,)):
        return bool(obj)
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (np.floating, float)):
        v = float(obj)
        return None if (np.isnan(v) or np.isinf(v)) else v
    return obj


def subject_frame(summaries: Sequence[TermSummary]) -> pd.DataFrame:
    """One row per (student, subject) result."""
    rows = [
        {
            "student_id": s.student_id,
            "subject_id": r.subject_id,
            "percentage": r.percentage,
            "grade": r.grade,
            "points": r.points,
        }
        for s in summaries
        for r in s.subject_results
    ]
    return pd.DataFrame(rows, columns=["student_id", "subject_id", "percentage", "grade", "points"])


# ── Class Progress ──────────────────────────────────────────────────

def compute_class_progress_summary(summaries: Sequence[TermSummary]) -> Dict[str, Any]:
    """Headline numbers for one class and term."""
    if not summaries:
        return {
            "total_students": 0,
            "average_percentage": None,
            "highest_percentage": None,
            "lowest_percentage": None,
            "excellent_count": 0,
            "good_count": 0,
            "at_risk_count": 0,
            "top_performers": [],
        }

    averages = pd.Series([s.average_percentage for s in summaries], dtype=float)

    top = [s for s in summaries if s.average_percentage >= EXCELLENT_FROM]
    top.sort(key=lambda s: (s.class_position is None, s.class_position or 0, -s.average_percentage))

    return _sanitize({
        "total_students": len(summaries),
        "average_percentage": _safe_float(averages.mean()),
        "highest_percentage": _safe_float(averages.max()),
        "lowest_percentage": _safe_float(averages.min()),
        "excellent_count": int((averages >= EXCELLENT_FROM).sum()),
        "good_count": int((averages >= GOOD_FROM).sum()),
        "at_risk_count": int((averages < AT_RISK_BELOW).sum()),
        "top_performers": [
            {
                "student_id": s.student_id,
                "average_percentage": _safe_float(s.average_percentage),
                "overall_grade": s.overall_grade,
                "position": s.class_position,
            }
            for s in top
        ],
    })


# ── Subject Performance ─────────────────────────────────────────────

def compute_subject_performance(summaries: Sequence[TermSummary], scale: GradeScale) -> Dict[str, Any]:
    """Per-subject statistics for a cohort, plus subject-to-subject correlations."""
    df = subject_frame(summaries)
    if df.empty:
        return {"subjects": [], "correlations": []}

    subjects_data: List[Dict[str, Any]] = []
    for subj, group in df.groupby("subject_id", sort=True):
        pct = group["percentage"].astype(float)
        passing = group["grade"].map(scale.is_passing)
        grade_counts = group["grade"].value_counts()

        subjects_data.append({
            "subject_id": str(subj),
            "count": len(pct),
            "mean": _safe_float(pct.mean()),
            "median": _safe_float(pct.median()),
            "std": _safe_float(pct.std()) if len(pct) > 1 else None,
            "highest": _safe_float(pct.max()),
            "lowest": _safe_float(pct.min()),
            "pass_count": int(passing.sum()),
            "pass_rate": _safe_float(passing.sum() / len(pct) * 100),
            "grade_distribution": {g: int(grade_counts.get(g, 0)) for g in scale.grades},
        })

    # Sort by mean descending
    subjects_data.sort(key=lambda x: x["mean"] or 0, reverse=True)

    pivot = df.pivot_table(index="student_id", columns="subject_id", values="percentage", aggfunc="mean")
    correlations = []
    cols = list(pivot.columns)
    for i in range(len(cols)):
        for j in range(i + 1, len(cols)):
            valid = pivot[[cols[i], cols[j]]].dropna()
            if len(valid) < 3 or valid[cols[i]].nunique() < 2 or valid[cols[j]].nunique() < 2:
                continue
            r, p = sp_stats.pearsonr(valid[cols[i]], valid[cols[j]])
            correlations.append({
                "subject_a": str(cols[i]),
                "subject_b": str(cols[j]),
                "r": _safe_float(r),
                "p_value": _safe_float(p),
            })

    return _sanitize({"subjects": subjects_data, "correlations": correlations})
