"""
aggregator.py — Assessment scores → subject results → term and year summaries.

Pure functions. Floats are kept unrounded; display rounding belongs to callers.
Empty input always produces a well-formed zero result.
"""

from typing import Dict, List, Optional, Sequence

from core.grading import GradeScale
from core.models import (
    AssessmentResult,
    AssessmentScore,
    SubjectImprovement,
    SubjectResult,
    TermReference,
    TermSummary,
    YearSummary,
)
from core.ranking import scores_differ


def _percentage(marks: float, max_marks: float) -> float:
    return marks / max_marks * 100 if max_marks > 0 else 0.0


# ── Subject ─────────────────────────────────────────────────────────

def compute_subject_result(
    scores: Sequence[AssessmentScore],
    scale: GradeScale,
    subject_id: str,
) -> SubjectResult:
    """
    Sum a subject's components and grade the combined percentage.

    e.g. CAT1 25/30 + EndTerm 60/70 → 85/100 → 85% → A on the 8-4-4 scale.
    """
    total_marks = sum(s.marks_obtained for s in scores)
    total_max = sum(s.max_marks for s in scores)
    percentage = _percentage(total_marks, total_max)
    info = scale.lookup(percentage, subject_id)

    assessments = []
    for s in scores:
        component_pct = _percentage(s.marks_obtained, s.max_marks)
        component_info = scale.lookup(component_pct, subject_id)
        assessments.append(AssessmentResult(
            component=s.component,
            marks_obtained=s.marks_obtained,
            max_marks=s.max_marks,
            percentage=component_pct,
            grade=component_info.grade,
            points=component_info.points,
        ))

    return SubjectResult(
        subject_id=subject_id,
        total_marks=total_marks,
        total_max_marks=total_max,
        percentage=percentage,
        grade=info.grade,
        points=info.points,
        assessments=assessments,
    )


# ── Term ────────────────────────────────────────────────────────────

def compute_term_summary(
    subject_results: Sequence[SubjectResult],
    scale: GradeScale,
    student_id: str,
    class_id: Optional[str],
    term_id: str,
    term_number: Optional[int] = None,
    admission_number: Optional[str] = None,
    stream: Optional[str] = None,
) -> TermSummary:
    total_marks = sum(r.total_marks for r in subject_results)
    total_max = sum(r.total_max_marks for r in subject_results)
    total_points = sum(r.points for r in subject_results)
    average = _percentage(total_marks, total_max)
    mean_points = total_points / len(subject_results) if subject_results else 0.0

    return TermSummary(
        student_id=student_id,
        admission_number=admission_number,
        class_id=class_id,
        stream=stream,
        term_id=term_id,
        term_number=term_number,
        total_marks=total_marks,
        total_max_marks=total_max,
        total_points=total_points,
        average_percentage=average,
        mean_grade_point=mean_points,
        overall_grade=scale.lookup(average).grade,
        mean_grade=scale.grade_from_mean_points(mean_points),
        subject_results=list(subject_results),
    )


def compute_subject_improvements(current: TermSummary, previous: Optional[TermSummary]) -> TermSummary:
    """Attach per-subject change against the previous term's summary."""
    if previous is None:
        return current

    updated = []
    for result in current.subject_results:
        before = previous.subject(result.subject_id)
        if before is None:
            updated.append(result)
            continue
        position_delta = None
        if result.position is not None and before.position is not None:
            position_delta = result.position - before.position
        updated.append(result.model_copy(update={
            "improvement": SubjectImprovement(
                marks=result.total_marks - before.total_marks,
                percentage=result.percentage - before.percentage,
                position=position_delta,
            )
        }))
    return current.model_copy(update={"subject_results": updated})


# ── Year ────────────────────────────────────────────────────────────

def compute_year_summary(term_summaries: Sequence[TermSummary], scale: GradeScale) -> YearSummary:
    """Year totals plus best/worst term. Ties go to the earliest term."""
    if not term_summaries:
        return YearSummary()

    total_marks = sum(t.total_marks for t in term_summaries)
    total_max = sum(t.total_max_marks for t in term_summaries)
    mean_points = sum(t.mean_grade_point for t in term_summaries) / len(term_summaries)

    refs: List[TermReference] = [
        TermReference(term_id=t.term_id, term_number=t.term_number, average=t.average_percentage)
        for t in term_summaries
    ]
    best = refs[0]
    worst = refs[0]
    for ref in refs[1:]:
        if scores_differ(ref.average, best.average) and ref.average > best.average:
            best = ref
        if scores_differ(ref.average, worst.average) and ref.average < worst.average:
            worst = ref

    return YearSummary(
        total_marks=total_marks,
        total_max_marks=total_max,
        year_average_percentage=_percentage(total_marks, total_max),
        year_mean_points=mean_points,
        year_mean_grade=scale.grade_from_mean_points(mean_points),
        best_term=best,
        worst_term=worst,
    )


def subject_percentages(term_summaries: Sequence[TermSummary]) -> Dict[str, List[Optional[float]]]:
    """Per subject, one percentage per term in order (None where not taken)."""
    subjects: List[str] = []
    for t in term_summaries:
        for r in t.subject_results:
            if r.subject_id not in subjects:
                subjects.append(r.subject_id)

    series: Dict[str, List[Optional[float]]] = {}
    for subject_id in subjects:
        values = []
        for t in term_summaries:
            r = t.subject(subject_id)
            values.append(r.percentage if r is not None else None)
        series[subject_id] = values
    return series
