"""
models.py — Pydantic models shared by the evaluation engine.

Every derived record is frozen. Positions, sizes and improvements are attached
by building a new object with ``model_copy(update=...)``, never by mutating an
existing one.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ── Grading ─────────────────────────────────────────────────────────

class GradeRange(_Frozen):
    """Contiguous percentage interval mapped to one grade."""
    grade: str = Field(description="Letter grade, e.g. 'A-'")
    min_percent: float = Field(description="Inclusive lower bound")
    max_percent: float = Field(description="Inclusive upper bound")
    points: int = Field(description="Grade points awarded")
    label: str = Field(default="", description="Descriptor, e.g. 'Very Good'")
    comment: str = Field(default="", description="Short report-card remark")


class GradeInfo(_Frozen):
    """Result of looking a percentage up in a grade scale."""
    grade: str
    points: int
    label: str = ""
    comment: str = ""
    percentage: float = Field(description="Percentage after rounding to the scale unit")
    is_passing: bool = False
    out_of_range: bool = Field(default=False, description="No range matched; fallback grade used")


class ScaleValidation(_Frozen):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)


# ── Raw input ───────────────────────────────────────────────────────

class AssessmentComponent(str, Enum):
    CAT1 = "CAT1"
    CAT2 = "CAT2"
    OPENER = "Opener"
    MIDTERM = "MidTerm"
    ENDTERM = "EndTerm"


class AssessmentScore(_Frozen):
    """One component score for a (student, subject, term)."""
    component: AssessmentComponent
    marks_obtained: float = Field(ge=0)
    max_marks: float = Field(ge=0)

    @model_validator(mode="after")
    def _marks_within_max(self):
        if self.marks_obtained > self.max_marks:
            raise ValueError(
                f"{self.component.value}: marks {self.marks_obtained} exceed max marks {self.max_marks}"
            )
        return self


class StudentRecord(_Frozen):
    """Roster entry supplied by the caller."""
    student_id: str
    admission_number: Optional[str] = None
    class_id: Optional[str] = None
    stream: Optional[str] = None
    name: Optional[str] = None

    @property
    def tiebreak_key(self) -> str:
        return self.admission_number or self.student_id


# ── Aggregates ──────────────────────────────────────────────────────

class AssessmentResult(_Frozen):
    component: AssessmentComponent
    marks_obtained: float
    max_marks: float
    percentage: float
    grade: str
    points: int


class SubjectImprovement(_Frozen):
    """Change against the previous term. Negative position = moved up."""
    marks: float
    percentage: float
    position: Optional[int] = None


class SubjectResult(_Frozen):
    subject_id: str
    total_marks: float = 0.0
    total_max_marks: float = 0.0
    percentage: float = 0.0
    grade: str
    points: int
    assessments: List[AssessmentResult] = Field(default_factory=list)
    position: Optional[int] = None
    total_students: Optional[int] = None
    improvement: Optional[SubjectImprovement] = None


class TermSummary(_Frozen):
    student_id: str
    admission_number: Optional[str] = None
    class_id: Optional[str] = None
    stream: Optional[str] = None
    term_id: str
    term_number: Optional[int] = None
    total_marks: float = 0.0
    total_max_marks: float = 0.0
    total_points: int = 0
    average_percentage: float = 0.0
    mean_grade_point: float = 0.0
    overall_grade: str
    mean_grade: Optional[str] = None
    subject_results: List[SubjectResult] = Field(default_factory=list)
    class_position: Optional[int] = None
    stream_position: Optional[int] = None
    class_size: Optional[int] = None
    stream_size: Optional[int] = None

    @property
    def tiebreak_key(self) -> str:
        return self.admission_number or self.student_id

    def subject(self, subject_id: str) -> Optional[SubjectResult]:
        for result in self.subject_results:
            if result.subject_id == subject_id:
                return result
        return None


class TermReference(_Frozen):
    term_id: str
    term_number: Optional[int] = None
    average: float


class YearSummary(_Frozen):
    total_marks: float = 0.0
    total_max_marks: float = 0.0
    year_average_percentage: float = 0.0
    year_mean_points: float = 0.0
    year_mean_grade: Optional[str] = None
    best_term: Optional[TermReference] = None
    worst_term: Optional[TermReference] = None


class RankingEntry(_Frozen):
    """Ephemeral sort record used during one ranking pass."""
    student_id: str
    mean_grade_point: float = 0.0
    total_marks: float = 0.0
    tiebreak_key: str


# ── Trends ──────────────────────────────────────────────────────────

class TrendLabel(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"
    INCONSISTENT = "inconsistent"
    INSUFFICIENT_DATA = "insufficient_data"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TrendPoint(_Frozen):
    term_index: int
    percentage: Optional[float] = None


class TrendClassification(_Frozen):
    subject_id: str
    label: TrendLabel
    slope: Optional[float] = None
    std_dev: Optional[float] = None


class RiskAssessment(_Frozen):
    level: RiskLevel
    intervention_needed: bool
    intervention_areas: List[str] = Field(default_factory=list)
    recommendation: str = ""


class StudentTrendReport(_Frozen):
    subject_trends: List[TrendClassification] = Field(default_factory=list)
    improving: List[str] = Field(default_factory=list)
    declining: List[str] = Field(default_factory=list)
    stable: List[str] = Field(default_factory=list)
    inconsistent: List[str] = Field(default_factory=list)
    average_improvement_rate: float = 0.0
    consistency_score: Optional[float] = None
    overall_trend: TrendLabel = TrendLabel.INSUFFICIENT_DATA
    risk: Optional[RiskAssessment] = None


# ── Persisted unit and batch reporting ──────────────────────────────

class StudentProgress(_Frozen):
    """Everything regenerated for one (student, academic year)."""
    student_id: str
    academic_year: str
    class_id: Optional[str] = None
    terms: List[TermSummary] = Field(default_factory=list)
    year_summary: YearSummary = Field(default_factory=YearSummary)
    trends: StudentTrendReport = Field(default_factory=StudentTrendReport)


class BatchError(_Frozen):
    student_id: str
    message: str


class BatchReport(_Frozen):
    success_count: int = 0
    error_count: int = 0
    errors: List[BatchError] = Field(default_factory=list)
    cancelled: bool = False

    def summary(self) -> Dict[str, int]:
        return {"success_count": self.success_count, "error_count": self.error_count}
