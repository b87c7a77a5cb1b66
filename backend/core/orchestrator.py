"""
orchestrator.py — Regenerate a cohort's progress for an academic year.

Three passes:
1. Build every student's term summary for every requested term. A failure
   (missing class, malformed marks) is recorded against that student only.
2. Per term, rank each class and stream once over the students that made it
   through pass 1, then attach subject positions.
3. Per student, attach term-on-term subject improvements, build the year
   summary and trends, and save the whole record.

Cancellation is checked between students; a cancelled run stops early and
reports what it finished.
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from pydantic import ValidationError

from core.aggregator import (
    compute_subject_improvements,
    compute_subject_result,
    compute_term_summary,
    compute_year_summary,
)
from core.calendar import AcademicCalendar
from core.errors import ConfigurationError, RosterError
from core.grading import GradeScale
from core.marks import MarksBook
from core.models import BatchError, BatchReport, StudentProgress, StudentRecord, TermSummary
from core.ranking import assign_positions, rank_all_subjects
from core.store import ProgressStore
from core.trends import analyze_student_trends

LOG = logging.getLogger(__name__)

UNKNOWN_STUDENT = "?"


class _Run:
    """Bookkeeping for one batch: failures and successes by student id."""

    def __init__(self):
        self.errors: List[BatchError] = []
        self.failed: Set[str] = set()
        self.saved: Set[str] = set()

    def fail(self, student_id: str, message: str) -> None:
        # roster entries without an id all share "?" and each one counts
        if student_id in self.failed and student_id != UNKNOWN_STUDENT:
            return
        self.failed.add(student_id)
        self.errors.append(BatchError(student_id=student_id, message=message))

    def report(self, cancelled: bool = False, only: Optional[Set[str]] = None) -> BatchReport:
        errors = [e for e in self.errors if only is None or e.student_id in only]
        return BatchReport(
            success_count=len(self.saved),
            error_count=len(errors),
            errors=errors,
            cancelled=cancelled,
        )


class ProgressOrchestrator:
    def __init__(
        self,
        scale: GradeScale,
        calendar: Optional[AcademicCalendar],
        marks: MarksBook,
        store: ProgressStore,
        cancel_event: Optional[threading.Event] = None,
    ):
        if calendar is None:
            raise ConfigurationError("No academic calendar configured")
        self.scale = scale
        self.calendar = calendar
        self.marks = marks
        self.store = store
        self.cancel_event = cancel_event

    @property
    def academic_year(self) -> str:
        return self.calendar.academic_year

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    # ── Single student, single term ─────────────────────────────────

    def build_term_summary(self, student: StudentRecord, term_number: int) -> TermSummary:
        if not student.class_id:
            raise RosterError(student.student_id, "Student has no class assigned")

        term_id = self.calendar.term_id(term_number)
        scores = self.marks.scores_for(student.student_id, term_number, self.academic_year)
        results = [
            compute_subject_result(subject_scores, self.scale, subject_id)
            for subject_id, subject_scores in sorted(scores.items())
        ]
        return compute_term_summary(
            results,
            self.scale,
            student_id=student.student_id,
            class_id=student.class_id,
            term_id=term_id,
            term_number=term_number,
            admission_number=student.admission_number,
            stream=student.stream,
        )

    # ── Batch ───────────────────────────────────────────────────────

    def _term_numbers(self, term_numbers: Optional[Iterable[int]]) -> List[int]:
        if term_numbers is None:
            return self.calendar.term_numbers
        numbers = sorted(set(int(n) for n in term_numbers))
        for n in numbers:
            self.calendar.term(n)
        return numbers

    def _roster(self, roster: Iterable[Any], run: _Run) -> List[StudentRecord]:
        students: List[StudentRecord] = []
        seen: Set[str] = set()
        for entry in roster:
            if isinstance(entry, StudentRecord):
                student = entry
            else:
                try:
                    student = StudentRecord.model_validate(entry)
                except ValidationError as exc:
                    sid = str(entry.get("student_id", UNKNOWN_STUDENT)) if isinstance(entry, dict) else UNKNOWN_STUDENT
                    LOG.warning("Invalid roster entry for %s: %s", sid, exc)
                    run.fail(sid, f"Invalid roster entry: {exc.error_count()} field error(s)")
                    continue
            if student.student_id in seen:
                LOG.warning("Duplicate roster entry for %s ignored", student.student_id)
                continue
            seen.add(student.student_id)
            students.append(student)
        return students

    def _execute(
        self,
        roster: Iterable[Any],
        term_numbers: Optional[Iterable[int]],
        save_only: Optional[Set[str]] = None,
    ) -> BatchReport:
        numbers = self._term_numbers(term_numbers)
        run = _Run()
        students = self._roster(roster, run)

        LOG.info(
            "Generating progress for %d students, year %s, terms %s",
            len(students), self.academic_year, numbers,
        )

        # Pass 1: term summaries
        computed: Dict[int, List[TermSummary]] = {n: [] for n in numbers}
        for student in students:
            if self._cancelled():
                return self._stop(run, save_only)
            for n in numbers:
                try:
                    computed[n].append(self.build_term_summary(student, n))
                except Exception as exc:
                    LOG.exception("Failed to build term %s summary for %s", n, student.student_id)
                    run.fail(student.student_id, str(exc))
                    break

        # Pass 2: cohort ranking, once per term
        by_student: Dict[str, List[TermSummary]] = {s.student_id: [] for s in students}
        for n in numbers:
            cohort = [s for s in computed[n] if s.student_id not in run.failed]
            for summary in rank_all_subjects(assign_positions(cohort)):
                by_student[summary.student_id].append(summary)

        # Pass 3: improvements, year summary, trends, save
        for student in students:
            sid = student.student_id
            if sid in run.failed or (save_only is not None and sid not in save_only):
                continue
            if self._cancelled():
                return self._stop(run, save_only)
            try:
                self.store.save(self._progress(student, by_student[sid]))
                run.saved.add(sid)
            except Exception as exc:
                LOG.exception("Failed to save progress for %s", sid)
                run.fail(sid, str(exc))

        report = run.report(only=save_only)
        LOG.info(
            "Progress generation for %s finished: %d succeeded, %d failed",
            self.academic_year, report.success_count, report.error_count,
        )
        return report

    def _progress(self, student: StudentRecord, terms: Sequence[TermSummary]) -> StudentProgress:
        chained: List[TermSummary] = []
        previous = None
        for summary in terms:
            summary = compute_subject_improvements(summary, previous)
            chained.append(summary)
            previous = summary

        return StudentProgress(
            student_id=student.student_id,
            academic_year=self.academic_year,
            class_id=student.class_id,
            terms=chained,
            year_summary=compute_year_summary(chained, self.scale),
            trends=analyze_student_trends(chained),
        )

    def _stop(self, run: _Run, save_only: Optional[Set[str]] = None) -> BatchReport:
        LOG.info("Progress generation for %s cancelled after %d saves", self.academic_year, len(run.saved))
        return run.report(cancelled=True, only=save_only)

    def generate_year(self, roster: Iterable[Any], term_numbers: Optional[Iterable[int]] = None) -> BatchReport:
        """Regenerate every student in the roster. Raises MissingTermError for unknown terms."""
        return self._execute(roster, term_numbers)

    def generate_student(
        self,
        student: StudentRecord,
        roster: Iterable[Any],
        term_numbers: Optional[Iterable[int]] = None,
    ) -> BatchReport:
        """Regenerate one student, still ranked against their whole class."""
        cohort = []
        for entry in roster:
            try:
                record = entry if isinstance(entry, StudentRecord) else StudentRecord.model_validate(entry)
            except ValidationError as exc:
                LOG.warning("Skipping invalid roster entry while ranking %s: %s", student.student_id, exc)
                continue
            if record.class_id == student.class_id and record.student_id != student.student_id:
                cohort.append(record)
        cohort.append(student)
        return self._execute(cohort, term_numbers, save_only={student.student_id})
