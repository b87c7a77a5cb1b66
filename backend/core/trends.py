"""
trends.py — Cross-term trend analysis and academic risk.

Subject trends (per student, per subject, over term_index 0..n-1):
- Fewer than 2 percentages: insufficient_data
- Sample std deviation (n - 1) > 15: inconsistent (checked first). The
  population estimator would call [70, 40, 68] consistent (13.7 vs 16.8)
- OLS slope > 2: improving, < -2: declining, otherwise stable

Risk from the latest term average:
- Below 40: high, intervention always
- 40 to 59.99: medium, intervention when average improvement rate < -5
- 60 and above: low
"""

from typing import List, Optional, Sequence

import numpy as np

from core.aggregator import subject_percentages
from core.models import (
    RiskAssessment,
    RiskLevel,
    StudentTrendReport,
    TermSummary,
    TrendClassification,
    TrendLabel,
    TrendPoint,
)

INCONSISTENT_STD = 15.0
SLOPE_THRESHOLD = 2.0
OVERALL_CHANGE_THRESHOLD = 5.0
HIGH_RISK_BELOW = 40.0
MEDIUM_RISK_BELOW = 60.0
DECLINE_INTERVENTION_RATE = -5.0
WEAK_SUBJECT_BELOW = 40.0


# ── Recommendation Library ──────────────────────────────────────────

RECOMMENDATIONS = {
    RiskLevel.HIGH: (
        "This student is at high risk of academic failure. Immediate intervention is recommended: "
        "involve the guidance counselor, parents, and class teacher in a support plan."
    ),
    RiskLevel.MEDIUM: (
        "This student shows signs of struggling. Monitor closely this term and consider "
        "additional support in weak subjects."
    ),
    RiskLevel.LOW: "Student is performing satisfactorily. Continue monitoring.",
    "declining": (
        "Performance has been falling term on term. Engage the parent or guardian "
        "to identify barriers to learning."
    ),
}


# ── Helpers ─────────────────────────────────────────────────────────

def ols_slope(values: Sequence[float]) -> float:
    """Least-squares slope of values over x = 0..n-1, closed form."""
    y = np.asarray(values, dtype=float)
    n = len(y)
    x = np.arange(n, dtype=float)
    denominator = n * (x * x).sum() - x.sum() ** 2
    if denominator == 0:
        return 0.0
    return float((n * (x * y).sum() - x.sum() * y.sum()) / denominator)


def _ordered(summaries: Sequence[TermSummary]) -> List[TermSummary]:
    return sorted(summaries, key=lambda t: (t.term_number is None, t.term_number or 0))


# ── Subject Trend ───────────────────────────────────────────────────

def classify_subject_trend(points: Sequence[TrendPoint], subject_id: str) -> TrendClassification:
    values = [
        p.percentage for p in sorted(points, key=lambda p: p.term_index)
        if p.percentage is not None
    ]
    if len(values) < 2:
        return TrendClassification(subject_id=subject_id, label=TrendLabel.INSUFFICIENT_DATA)

    slope = ols_slope(values)
    std_dev = float(np.std(values, ddof=1))

    if std_dev > INCONSISTENT_STD:
        label = TrendLabel.INCONSISTENT
    elif slope > SLOPE_THRESHOLD:
        label = TrendLabel.IMPROVING
    elif slope < -SLOPE_THRESHOLD:
        label = TrendLabel.DECLINING
    else:
        label = TrendLabel.STABLE
    return TrendClassification(subject_id=subject_id, label=label, slope=slope, std_dev=std_dev)


# ── Student-level Analytics ─────────────────────────────────────────

def average_improvement_rate(term_averages: Sequence[Optional[float]]) -> float:
    """Mean change between consecutive terms; pairs with a missing side are skipped."""
    deltas = [
        current - previous
        for previous, current in zip(term_averages, term_averages[1:])
        if previous is not None and current is not None
    ]
    return float(np.mean(deltas)) if deltas else 0.0


def consistency_score(term_averages: Sequence[Optional[float]]) -> Optional[float]:
    """Population std deviation of term averages; lower is steadier."""
    values = [v for v in term_averages if v is not None]
    if len(values) < 2:
        return None
    return float(np.std(values))


def overall_grade_trend(term_averages: Sequence[Optional[float]]) -> TrendLabel:
    values = [v for v in term_averages if v is not None]
    if len(values) < 2:
        return TrendLabel.INSUFFICIENT_DATA
    change = values[-1] - values[0]
    if change > OVERALL_CHANGE_THRESHOLD:
        return TrendLabel.IMPROVING
    if change < -OVERALL_CHANGE_THRESHOLD:
        return TrendLabel.DECLINING
    return TrendLabel.STABLE


def classify_risk(
    latest_average: float,
    improvement_rate: float,
    intervention_areas: Optional[List[str]] = None,
) -> RiskAssessment:
    if latest_average < HIGH_RISK_BELOW:
        level, needed = RiskLevel.HIGH, True
    elif latest_average < MEDIUM_RISK_BELOW:
        level, needed = RiskLevel.MEDIUM, improvement_rate < DECLINE_INTERVENTION_RATE
    else:
        level, needed = RiskLevel.LOW, False

    recommendation = RECOMMENDATIONS[level]
    if needed and improvement_rate < DECLINE_INTERVENTION_RATE:
        recommendation += " " + RECOMMENDATIONS["declining"]

    return RiskAssessment(
        level=level,
        intervention_needed=needed,
        intervention_areas=list(intervention_areas or []),
        recommendation=recommendation,
    )


def analyze_student_trends(term_summaries: Sequence[TermSummary]) -> StudentTrendReport:
    """Classify every subject and the student overall from chronologically ordered summaries."""
    terms = _ordered(term_summaries)
    if not terms:
        return StudentTrendReport()

    report = {
        TrendLabel.IMPROVING: [],
        TrendLabel.DECLINING: [],
        TrendLabel.STABLE: [],
        TrendLabel.INCONSISTENT: [],
    }
    classifications = []
    for subject_id, values in subject_percentages(terms).items():
        points = [TrendPoint(term_index=i, percentage=v) for i, v in enumerate(values)]
        trend = classify_subject_trend(points, subject_id)
        classifications.append(trend)
        if trend.label in report:
            report[trend.label].append(subject_id)

    averages = [t.average_percentage for t in terms]
    rate = average_improvement_rate(averages)

    latest = terms[-1]
    areas = list(report[TrendLabel.DECLINING])
    for result in latest.subject_results:
        if result.percentage < WEAK_SUBJECT_BELOW and result.subject_id not in areas:
            areas.append(result.subject_id)

    return StudentTrendReport(
        subject_trends=classifications,
        improving=report[TrendLabel.IMPROVING],
        declining=report[TrendLabel.DECLINING],
        stable=report[TrendLabel.STABLE],
        inconsistent=report[TrendLabel.INCONSISTENT],
        average_improvement_rate=rate,
        consistency_score=consistency_score(averages),
        overall_trend=overall_grade_trend(averages),
        risk=classify_risk(latest.average_percentage, rate, areas),
    )
