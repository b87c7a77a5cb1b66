"""
Progress routes — regeneration jobs, stored progress, ranking and trend queries.
"""

from typing import List

from fastapi import APIRouter, BackgroundTasks, HTTPException
from pydantic import ValidationError

from core.calendar import build_calendar
from core.errors import ConfigurationError
from core.jobs import JobRegistry
from core.marks import MarksBook
from core.models import TermSummary
from core.orchestrator import ProgressOrchestrator
from core.ranking import rank
from core.stats import compute_class_progress_summary, compute_subject_performance
from core.store import InMemoryProgressStore
from core.trends import analyze_student_trends
from routes.grading import scale_from_payload

router = APIRouter()

store = InMemoryProgressStore()
jobs = JobRegistry()


def _bad_config(exc: ConfigurationError) -> HTTPException:
    return HTTPException(400, {"message": str(exc), "errors": exc.errors})


def _summaries_from(payload: dict, key: str) -> List[TermSummary]:
    items = payload.get(key)
    if not isinstance(items, list):
        raise HTTPException(400, f"Provide '{key}' as a list.")
    try:
        return [TermSummary.model_validate(item) for item in items]
    except ValidationError as exc:
        raise HTTPException(400, f"Invalid term summary: {exc.error_count()} field error(s).")


@router.post("/generate", status_code=202)
async def generate(payload: dict, background_tasks: BackgroundTasks):
    """
    Queue regeneration of a year's progress for a roster.

    Payload: academic_year, roster, marks, optional terms, term_numbers and
    scale. Configuration problems are rejected here with 400; per-student
    problems show up in the finished job's report.
    """
    academic_year = payload.get("academic_year")
    roster = payload.get("roster")
    if not academic_year or not isinstance(roster, list):
        raise HTTPException(400, "Provide 'academic_year' and 'roster'.")

    scale = scale_from_payload(payload)
    try:
        calendar = build_calendar(str(academic_year), payload.get("terms"))
        marks = MarksBook(payload.get("marks") or [])
    except ConfigurationError as exc:
        raise _bad_config(exc)
    term_numbers = payload.get("term_numbers")

    record = jobs.submit(calendar.academic_year)

    def work(cancel_event):
        orchestrator = ProgressOrchestrator(scale, calendar, marks, store, cancel_event=cancel_event)
        return orchestrator.generate_year(roster, term_numbers)

    background_tasks.add_task(jobs.run, record.job_id, work)
    return {
        "job_id": record.job_id,
        "status": record.status.value,
        "message": f"Progress generation queued for {calendar.academic_year}.",
    }


@router.get("/jobs")
async def list_jobs():
    return [record.model_dump(mode="json") for record in jobs.list()]


@router.get("/jobs/{job_id}")
async def get_job(job_id: str):
    record = jobs.get(job_id)
    if record is None:
        raise HTTPException(404, f"Job '{job_id}' not found.")
    return record.model_dump(mode="json")


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str):
    record = jobs.cancel(job_id)
    if record is None:
        raise HTTPException(404, f"Job '{job_id}' not found.")
    return record.model_dump(mode="json")


@router.post("/rank")
async def rank_entries(payload: dict):
    """Competition positions for supplied entries (mean_grade_point, total_marks)."""
    entries = payload.get("entries")
    if not isinstance(entries, list):
        raise HTTPException(400, "Provide 'entries' as a list.")
    return {"positions": [{"student_id": sid, "position": pos} for sid, pos in rank(entries)]}


@router.post("/trends")
async def trends(payload: dict):
    """Trend and risk report for one student's term summaries."""
    return analyze_student_trends(_summaries_from(payload, "terms")).model_dump(mode="json")


@router.post("/class-summary")
async def class_summary(payload: dict):
    """Class progress headline numbers and per-subject performance for one term."""
    summaries = _summaries_from(payload, "summaries")
    scale = scale_from_payload(payload)
    return {
        "summary": compute_class_progress_summary(summaries),
        "subjects": compute_subject_performance(summaries, scale),
    }


@router.get("/{student_id}")
async def get_progress(student_id: str, academic_year: str):
    progress = store.get(student_id, academic_year)
    if progress is None:
        raise HTTPException(404, f"No progress for student '{student_id}' in {academic_year}.")
    return progress.model_dump(mode="json")
