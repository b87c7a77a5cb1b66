"""
Tests for core/trends.py — subject trends, improvement rate and risk levels.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.models import RiskLevel, SubjectResult, TermSummary, TrendLabel, TrendPoint
from core.trends import (
    analyze_student_trends,
    average_improvement_rate,
    classify_risk,
    classify_subject_trend,
    consistency_score,
    ols_slope,
    overall_grade_trend,
)


def _points(values):
    return [TrendPoint(term_index=i, percentage=v) for i, v in enumerate(values)]


def _term(number, average, subjects):
    return TermSummary(
        student_id="S1",
        class_id="F1",
        term_id=f"2024/2025-{number}",
        term_number=number,
        average_percentage=average,
        overall_grade="C",
        subject_results=[
            SubjectResult(subject_id=sid, percentage=pct, grade="C", points=6)
            for sid, pct in subjects.items()
        ],
    )


class TestSlope:

    def test_closed_form(self):
        assert ols_slope([40, 55, 70]) == pytest.approx(15.0)
        assert ols_slope([70, 40, 68]) == pytest.approx(-1.0)
        assert ols_slope([50, 50]) == pytest.approx(0.0)


class TestClassifySubjectTrend:

    def test_improving(self):
        trend = classify_subject_trend(_points([40, 55, 70]), "MATH")
        assert trend.label == TrendLabel.IMPROVING
        assert trend.slope == pytest.approx(15.0)

    def test_inconsistent_checked_before_slope(self):
        trend = classify_subject_trend(_points([70, 40, 68]), "MATH")
        assert trend.label == TrendLabel.INCONSISTENT
        assert trend.std_dev > 15

    def test_declining(self):
        assert classify_subject_trend(_points([70, 65, 60]), "ENG").label == TrendLabel.DECLINING

    def test_stable(self):
        assert classify_subject_trend(_points([60, 61, 60]), "ENG").label == TrendLabel.STABLE

    def test_insufficient_data(self):
        assert classify_subject_trend(_points([60]), "ENG").label == TrendLabel.INSUFFICIENT_DATA
        assert classify_subject_trend([], "ENG").label == TrendLabel.INSUFFICIENT_DATA

    def test_nulls_dropped(self):
        trend = classify_subject_trend(_points([60, None]), "ENG")
        assert trend.label == TrendLabel.INSUFFICIENT_DATA
        trend = classify_subject_trend(_points([40, None, 55, 70]), "ENG")
        assert trend.label == TrendLabel.IMPROVING

    def test_ordered_by_term_index(self):
        points = [TrendPoint(term_index=2, percentage=70), TrendPoint(term_index=0, percentage=40),
                  TrendPoint(term_index=1, percentage=55)]
        assert classify_subject_trend(points, "MATH").label == TrendLabel.IMPROVING


class TestStudentAnalytics:

    def test_average_improvement_rate(self):
        assert average_improvement_rate([50, 60, 55]) == pytest.approx(2.5)
        assert average_improvement_rate([50]) == 0
        assert average_improvement_rate([]) == 0

    def test_consistency_score(self):
        assert consistency_score([50, 70]) == pytest.approx(10.0)
        assert consistency_score([50]) is None

    def test_overall_grade_trend(self):
        assert overall_grade_trend([50, 52, 60]) == TrendLabel.IMPROVING
        assert overall_grade_trend([60, 54]) == TrendLabel.DECLINING
        assert overall_grade_trend([60, 64]) == TrendLabel.STABLE
        assert overall_grade_trend([60]) == TrendLabel.INSUFFICIENT_DATA


class TestClassifyRisk:

    def test_high(self):
        risk = classify_risk(39.9, 10)
        assert risk.level == RiskLevel.HIGH
        assert risk.intervention_needed

    def test_medium_without_decline(self):
        risk = classify_risk(40, -5)
        assert risk.level == RiskLevel.MEDIUM
        assert not risk.intervention_needed

    def test_medium_with_decline(self):
        risk = classify_risk(59.9, -5.1)
        assert risk.level == RiskLevel.MEDIUM
        assert risk.intervention_needed

    def test_low(self):
        risk = classify_risk(60, -20)
        assert risk.level == RiskLevel.LOW
        assert not risk.intervention_needed
        assert risk.recommendation


class TestAnalyzeStudentTrends:

    def test_full_report(self):
        terms = [
            _term(1, 65, {"MATH": 40, "ENG": 70, "BIO": 60}),
            _term(2, 55, {"MATH": 55, "ENG": 40, "BIO": 50}),
            _term(3, 50, {"MATH": 70, "ENG": 68, "BIO": 35}),
        ]
        report = analyze_student_trends(terms)
        assert report.improving == ["MATH"]
        assert report.inconsistent == ["ENG"]
        assert report.declining == ["BIO"]
        assert report.average_improvement_rate == pytest.approx(-7.5)
        assert report.overall_trend == TrendLabel.DECLINING
        assert report.risk.level == RiskLevel.MEDIUM
        assert report.risk.intervention_needed
        assert report.risk.intervention_areas == ["BIO"]

    def test_terms_sorted_chronologically(self):
        terms = [_term(2, 60, {"MATH": 55}), _term(3, 70, {"MATH": 70}), _term(1, 50, {"MATH": 40})]
        report = analyze_student_trends(terms)
        assert report.improving == ["MATH"]
        assert report.average_improvement_rate == pytest.approx(10.0)

    def test_single_term(self):
        report = analyze_student_trends([_term(1, 35, {"MATH": 35})])
        assert report.subject_trends[0].label == TrendLabel.INSUFFICIENT_DATA
        assert report.overall_trend == TrendLabel.INSUFFICIENT_DATA
        assert report.risk.level == RiskLevel.HIGH
        assert report.risk.intervention_areas == ["MATH"]

    def test_no_terms(self):
        report = analyze_student_trends([])
        assert report.risk is None
        assert report.subject_trends == []
