"""
Tests for core/orchestrator.py — batch regeneration, isolation, idempotency, cancellation.
"""

import os
import sys
import threading

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.calendar import build_calendar
from core.errors import ConfigurationError, MissingTermError, RosterError
from core.grading import get_standard_scale
from core.marks import MarksBook
from core.models import StudentRecord
from core.orchestrator import ProgressOrchestrator
from core.store import InMemoryProgressStore

YEAR = "2024/2025"


def _marks_for(student_id, term, subjects):
    return [
        {"student_id": student_id, "subject": sid, "term": term, "component": "EndTerm",
         "marks": marks, "max_marks": 100}
        for sid, marks in subjects.items()
    ]


@pytest.fixture
def roster():
    return [
        StudentRecord(student_id="S1", admission_number="ADM001", class_id="F1", stream="East"),
        StudentRecord(student_id="S2", admission_number="ADM002", class_id="F1", stream="West"),
        StudentRecord(student_id="S3", admission_number="ADM003", class_id="F1", stream="East"),
    ]


@pytest.fixture
def mark_rows():
    rows = []
    rows += _marks_for("S1", 1, {"MATH": 85, "ENG": 80})
    rows += _marks_for("S1", 2, {"MATH": 90, "ENG": 82})
    rows += _marks_for("S2", 1, {"MATH": 82, "ENG": 80})
    rows += _marks_for("S2", 2, {"MATH": 95, "ENG": 55})
    rows += _marks_for("S3", 1, {"MATH": 40, "ENG": 30})
    rows += _marks_for("S3", 2, {"MATH": 45, "ENG": 35})
    return rows


@pytest.fixture
def marks(mark_rows):
    return MarksBook(mark_rows)


@pytest.fixture
def store():
    return InMemoryProgressStore()


@pytest.fixture
def orchestrator(marks, store):
    return ProgressOrchestrator(
        get_standard_scale("kenyan_844"), build_calendar(YEAR, [1, 2]), marks, store,
    )


class TestBuildTermSummary:

    def test_summary(self, orchestrator, roster):
        summary = orchestrator.build_term_summary(roster[0], 1)
        assert summary.term_id == "2024/2025-1"
        assert summary.average_percentage == pytest.approx(82.5)
        assert summary.overall_grade == "A"
        assert [r.subject_id for r in summary.subject_results] == ["ENG", "MATH"]

    def test_missing_class(self, orchestrator):
        with pytest.raises(RosterError):
            orchestrator.build_term_summary(StudentRecord(student_id="S1"), 1)

    def test_unknown_term(self, orchestrator, roster):
        with pytest.raises(MissingTermError):
            orchestrator.build_term_summary(roster[0], 3)

    def test_no_calendar(self, marks, store):
        with pytest.raises(ConfigurationError):
            ProgressOrchestrator(get_standard_scale("kenyan_844"), None, marks, store)


class TestGenerateYear:

    def test_everyone_saved(self, orchestrator, roster, store):
        report = orchestrator.generate_year(roster)
        assert report.success_count == 3
        assert report.error_count == 0
        assert not report.cancelled
        assert len(store.list_year(YEAR)) == 3

    def test_positions_and_sizes(self, orchestrator, roster, store):
        orchestrator.generate_year(roster)
        term1 = {sid: store.get(sid, YEAR).terms[0] for sid in ("S1", "S2", "S3")}
        # S1 and S2 share mean grade point 12 in term 1; S1 has more marks
        assert term1["S1"].class_position == 1
        assert term1["S2"].class_position == 1
        assert term1["S3"].class_position == 3
        assert term1["S1"].class_size == 3
        assert term1["S1"].stream_position == 1
        assert term1["S3"].stream_position == 2
        assert term1["S3"].stream_size == 2
        assert term1["S2"].stream_size == 1

    def test_subject_positions_and_improvements(self, orchestrator, roster, store):
        orchestrator.generate_year(roster)
        progress = store.get("S2", YEAR)
        math1 = progress.terms[0].subject("MATH")
        math2 = progress.terms[1].subject("MATH")
        assert math1.position == 2
        assert math1.total_students == 3
        assert math2.position == 1
        assert math2.improvement.percentage == pytest.approx(13)
        assert math2.improvement.position == -1
        assert progress.terms[0].subject("ENG").improvement is None

    def test_year_summary_and_trends(self, orchestrator, roster, store):
        orchestrator.generate_year(roster)
        progress = store.get("S3", YEAR)
        assert progress.year_summary.best_term.term_number == 2
        # latest average is exactly 40: medium, improving by 5 so no intervention
        assert progress.trends.risk.level.value == "medium"
        assert not progress.trends.risk.intervention_needed
        assert progress.trends.overall_trend.value == "stable"

    def test_idempotent(self, orchestrator, roster, store):
        orchestrator.generate_year(roster)
        first = {p.student_id: p for p in store.list_year(YEAR)}
        orchestrator.generate_year(roster)
        second = {p.student_id: p for p in store.list_year(YEAR)}
        assert first == second

    def test_roster_order_does_not_matter(self, marks, roster):
        results = []
        for ordering in (roster, list(reversed(roster))):
            store = InMemoryProgressStore()
            ProgressOrchestrator(
                get_standard_scale("kenyan_844"), build_calendar(YEAR, [1, 2]), marks, store,
            ).generate_year(ordering)
            results.append({p.student_id: p for p in store.list_year(YEAR)})
        assert results[0] == results[1]

    def test_failure_is_isolated(self, mark_rows, roster, store):
        book = MarksBook(mark_rows + _marks_for("S4", 1, {"MATH": 120}))
        orchestrator = ProgressOrchestrator(
            get_standard_scale("kenyan_844"), build_calendar(YEAR, [1, 2]), book, store,
        )
        roster = roster + [
            StudentRecord(student_id="S4", class_id="F1"),
            StudentRecord(student_id="S5"),
        ]
        report = orchestrator.generate_year(roster)
        assert report.success_count == 3
        assert report.error_count == 2
        assert {e.student_id for e in report.errors} == {"S4", "S5"}
        assert store.get("S4", YEAR) is None
        # failed students are left out of the cohort
        assert store.get("S1", YEAR).terms[0].class_size == 3

    def test_student_without_marks_ranked_last(self, orchestrator, roster, store):
        roster = roster + [StudentRecord(student_id="S6", class_id="F1")]
        report = orchestrator.generate_year(roster)
        assert report.success_count == 4
        progress = store.get("S6", YEAR)
        assert progress.terms[0].total_marks == 0
        assert progress.terms[0].class_position == 4
        assert progress.terms[0].stream_position is None

    def test_term_subset(self, orchestrator, roster, store):
        orchestrator.generate_year(roster, term_numbers=[2])
        assert [t.term_number for t in store.get("S1", YEAR).terms] == [2]

    def test_unknown_term_aborts(self, orchestrator, roster, store):
        with pytest.raises(MissingTermError):
            orchestrator.generate_year(roster, term_numbers=[1, 4])
        assert len(store) == 0

    def test_empty_roster(self, orchestrator):
        report = orchestrator.generate_year([])
        assert report.success_count == 0
        assert report.error_count == 0

    def test_accepts_plain_roster_entries(self, orchestrator, store):
        report = orchestrator.generate_year([
            {"student_id": "S1", "class_id": "F1"},
            {"class_id": "F1"},
        ])
        assert report.success_count == 1
        assert report.errors[0].student_id == "?"

    def test_every_entry_without_id_counts(self, orchestrator):
        report = orchestrator.generate_year([
            {"class_id": "F1"},
            {"class_id": "F2"},
            {"student_id": "S1", "class_id": "F1"},
        ])
        assert report.success_count == 1
        assert report.error_count == 2
        assert [e.student_id for e in report.errors] == ["?", "?"]


class TestCancellation:

    def test_cancel_before_start(self, marks, roster, store):
        event = threading.Event()
        event.set()
        orchestrator = ProgressOrchestrator(
            get_standard_scale("kenyan_844"), build_calendar(YEAR, [1, 2]), marks, store, cancel_event=event,
        )
        report = orchestrator.generate_year(roster)
        assert report.cancelled
        assert report.success_count == 0
        assert len(store) == 0

    def test_cancel_midway(self, marks, roster):
        event = threading.Event()

        class CancellingStore(InMemoryProgressStore):
            def save(self, progress):
                super().save(progress)
                event.set()

        store = CancellingStore()
        orchestrator = ProgressOrchestrator(
            get_standard_scale("kenyan_844"), build_calendar(YEAR, [1, 2]), marks, store, cancel_event=event,
        )
        report = orchestrator.generate_year(roster)
        assert report.cancelled
        assert report.success_count == 1
        assert len(store) == 1


class TestGenerateStudent:

    def test_ranked_against_class(self, orchestrator, roster, store):
        report = orchestrator.generate_student(roster[2], roster)
        assert report.success_count == 1
        assert len(store) == 1
        assert store.get("S3", YEAR).terms[0].class_position == 3
        assert store.get("S3", YEAR).terms[0].class_size == 3

    def test_invalid_roster_entry_is_logged(self, orchestrator, roster, store, caplog):
        with caplog.at_level("WARNING", logger="core.orchestrator"):
            report = orchestrator.generate_student(roster[0], roster + [{"class_id": "F1"}])
        assert report.success_count == 1
        assert store.get("S1", YEAR).terms[0].class_size == 3
        assert any("invalid roster entry" in r.getMessage() for r in caplog.records)
