"""
errors.py — Error taxonomy for the evaluation engine.

ConfigurationError is fatal to the operation that depends on it (bad grade
scale, missing calendar term). BatchItemError subclasses describe one
student's failure inside a batch; the orchestrator catches and records them
without stopping the run. Data gaps (no marks, empty cohort) are never raised:
they resolve to zero/empty results.
"""

from typing import List, Optional


class EngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(EngineError):
    """Invalid grading configuration or academic calendar."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class MissingTermError(ConfigurationError):
    """A requested term does not exist in the academic calendar."""

    def __init__(self, academic_year: str, term_number: int):
        super().__init__(f"Term {term_number} not found in academic year {academic_year}")
        self.academic_year = academic_year
        self.term_number = term_number


class DataGapError(EngineError):
    """
    Marker for recoverable data gaps (zero marks, empty cohort).

    Kept for callers that want to classify gaps; the engine itself resolves
    them to zero/empty defaults and never raises this.
    """


class BatchItemError(EngineError):
    """Failure scoped to a single student in a batch run."""

    def __init__(self, student_id: str, message: str):
        super().__init__(message)
        self.student_id = student_id


class RosterError(BatchItemError):
    """Roster entry is missing data needed for processing (e.g. class)."""


class MalformedMarksError(BatchItemError):
    """Raw marks for a student could not be turned into assessment scores."""
