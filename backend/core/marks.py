"""
marks.py — Raw marks intake.

Marks arrive as long-format records: one row per student, subject, term and
assessment component. Column names are matched through an alias table, values
are coerced with pandas, and every row that cannot become an AssessmentScore
is flagged with the reason. Lookups for a student/term raise
MalformedMarksError when any of that student's rows for the term is flagged,
so one bad entry fails one student and nobody else.
"""

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import numpy as np
import pandas as pd

from core.calendar import term_number_from_label
from core.errors import ConfigurationError, MalformedMarksError
from core.models import AssessmentComponent, AssessmentScore

DEFAULT_MAX_MARKS = 100.0

# Common column name variations for auto-mapping
MARKS_ALIASES = {
    "student_id": [
        "student_id", "studentid", "student id", "student", "admission_no",
        "admission no", "adm_no", "adm no", "index_no", "index no",
    ],
    "subject_id": [
        "subject_id", "subject id", "subject", "subject_name", "subject name",
        "course", "paper",
    ],
    "term": [
        "term", "term_number", "term number", "term_no", "semester", "period",
    ],
    "academic_year": [
        "academic_year", "academic year", "acad_year", "year",
    ],
    "component": [
        "component", "assessment", "assessment_type", "assessment type",
        "exam_type", "exam type", "exam", "exam_name", "exam name",
    ],
    "marks_obtained": [
        "marks_obtained", "marks obtained", "marks", "mark", "score",
        "raw_score", "raw score",
    ],
    "max_marks": [
        "max_marks", "max marks", "max_score", "max score", "out_of",
        "out of", "max", "maximum",
    ],
}

REQUIRED_FIELDS = ["student_id", "subject_id", "term", "component", "marks_obtained"]

CANONICAL_COLUMNS = [
    "student_id", "subject_id", "term_number", "academic_year", "component",
    "marks_obtained", "max_marks", "issue", "malformed",
]


# ── Component Normalization ─────────────────────────────────────────

# Keys are lowercased with spaces, underscores and hyphens removed.
COMPONENT_MAP = {
    "cat1": AssessmentComponent.CAT1, "cati": AssessmentComponent.CAT1,
    "test1": AssessmentComponent.CAT1,
    "cat2": AssessmentComponent.CAT2, "catii": AssessmentComponent.CAT2,
    "test2": AssessmentComponent.CAT2,
    "opener": AssessmentComponent.OPENER, "openerexam": AssessmentComponent.OPENER,
    "opening": AssessmentComponent.OPENER,
    "midterm": AssessmentComponent.MIDTERM, "midtermexam": AssessmentComponent.MIDTERM,
    "mid": AssessmentComponent.MIDTERM,
    "endterm": AssessmentComponent.ENDTERM, "endtermexam": AssessmentComponent.ENDTERM,
    "endofterm": AssessmentComponent.ENDTERM, "final": AssessmentComponent.ENDTERM,
    "finalexam": AssessmentComponent.ENDTERM, "end": AssessmentComponent.ENDTERM,
}


def normalize_component(value: Any) -> Optional[AssessmentComponent]:
    """Map component label variants ('CAT 1', 'End-Term', 'endterm') to the enum."""
    if isinstance(value, AssessmentComponent):
        return value
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    key = re.sub(r"[\s_\-]", "", str(value).strip().lower())
    return COMPONENT_MAP.get(key)


# ── Helpers ─────────────────────────────────────────────────────────

def suggest_column_mapping(df: pd.DataFrame) -> Dict[str, Optional[str]]:
    """
    Suggest a mapping from expected field names to actual column names.
    Returns: { expected_field: actual_column_name_or_None }
    """
    cols_lower = {str(c).lower().strip(): c for c in df.columns}
    mapping: Dict[str, Optional[str]] = {}
    for field, aliases in MARKS_ALIASES.items():
        mapping[field] = next((cols_lower[a] for a in aliases if a in cols_lower), None)
    return mapping


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float):
        if np.isnan(value):
            return None
        # ids read into a float column: 1001.0 -> "1001"
        if value.is_integer():
            return str(int(value))
    text = str(value).strip()
    return text or None


def _normalize(raw: pd.DataFrame) -> pd.DataFrame:
    if raw.empty:
        return pd.DataFrame(columns=CANONICAL_COLUMNS)

    raw = raw.reset_index(drop=True)
    mapping = suggest_column_mapping(raw)
    missing = [f for f in REQUIRED_FIELDS if mapping.get(f) is None]
    if missing:
        raise ConfigurationError(
            "Marks data is missing required columns",
            [f"'{f}' (expected one of: {', '.join(MARKS_ALIASES[f])})" for f in missing],
        )

    year_col = mapping["academic_year"]
    max_col = mapping["max_marks"]
    df = pd.DataFrame({
        "student_id": raw[mapping["student_id"]].map(_clean_str),
        "subject_id": raw[mapping["subject_id"]].map(_clean_str),
        "term_number": raw[mapping["term"]].map(term_number_from_label),
        "academic_year": raw[year_col].map(_clean_str) if year_col else None,
        "component": raw[mapping["component"]].map(normalize_component),
        "marks_obtained": pd.to_numeric(raw[mapping["marks_obtained"]], errors="coerce"),
        "max_marks": (
            pd.to_numeric(raw[max_col], errors="coerce") if max_col else DEFAULT_MAX_MARKS
        ),
    })

    duplicated = df.duplicated(
        subset=["student_id", "subject_id", "term_number", "academic_year", "component"], keep=False
    )
    checks = [
        (df["student_id"].isna(), "missing student id"),
        (df["subject_id"].isna(), "missing subject"),
        (df["term_number"].isna(), "unrecognised term"),
        (df["component"].isna(), "unknown assessment component"),
        (df["marks_obtained"].isna(), "marks could not be parsed as a number"),
        (df["max_marks"].isna(), "max marks could not be parsed as a number"),
        (df["marks_obtained"] < 0, "negative marks"),
        (df["max_marks"] < 0, "negative max marks"),
        (df["marks_obtained"] > df["max_marks"], "marks exceed max marks"),
        (duplicated, "duplicate entry for the same component"),
    ]
    issues: List[List[str]] = [[] for _ in range(len(df))]
    for mask, message in checks:
        for i in np.flatnonzero(mask.to_numpy(dtype=bool)):
            issues[i].append(message)

    df["issue"] = ["; ".join(found) for found in issues]
    df["malformed"] = df["issue"] != ""
    return df


# ── Marks Book ──────────────────────────────────────────────────────

class MarksBook:
    """Queryable view over raw assessment marks."""

    def __init__(self, records: Union[pd.DataFrame, Iterable[Mapping[str, Any]], None] = None):
        if records is None:
            records = []
        raw = (
            records.astype(object) if isinstance(records, pd.DataFrame)
            else pd.DataFrame(list(records), dtype=object)
        )
        self._frame = _normalize(raw)

    def __len__(self) -> int:
        return len(self._frame)

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame.copy()

    def students(self) -> List[str]:
        return sorted(self._frame["student_id"].dropna().unique().tolist())

    def subjects(self) -> List[str]:
        return sorted(self._frame["subject_id"].dropna().unique().tolist())

    def issues(self) -> List[Dict[str, Any]]:
        """Malformed rows, in input order."""
        bad = self._frame[self._frame["malformed"]]
        return [
            {
                "row": int(idx),
                "student_id": row.student_id,
                "subject_id": row.subject_id,
                "message": row.issue,
            }
            for idx, row in zip(bad.index, bad.itertuples(index=False))
        ]

    def scores_for(
        self,
        student_id: str,
        term_number: int,
        academic_year: Optional[str] = None,
    ) -> Dict[str, List[AssessmentScore]]:
        """
        Assessment scores for one student and term, grouped by subject.

        Rows without an academic year match any year. No rows means an empty
        dict (a data gap, not an error).
        """
        df = self._frame
        mask = (df["student_id"] == str(student_id)) & (df["term_number"] == term_number)
        if academic_year is not None:
            mask &= df["academic_year"].isna() | (df["academic_year"] == academic_year)
        rows = df[mask]

        bad = rows[rows["malformed"]]
        if not bad.empty:
            details = "; ".join(f"{r.subject_id or '?'}: {r.issue}" for r in bad.itertuples(index=False))
            raise MalformedMarksError(str(student_id), f"Malformed marks for term {term_number}: {details}")

        scores: Dict[str, List[AssessmentScore]] = {}
        for row in rows.itertuples(index=False):
            scores.setdefault(row.subject_id, []).append(
                AssessmentScore(
                    component=row.component,
                    marks_obtained=float(row.marks_obtained),
                    max_marks=float(row.max_marks),
                )
            )
        return scores
