"""
Tests for core/marks.py — column mapping, component normalization, malformed rows.
"""

import os
import sys

import pandas as pd
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.errors import ConfigurationError, MalformedMarksError
from core.marks import MarksBook, normalize_component, suggest_column_mapping
from core.models import AssessmentComponent


@pytest.fixture
def records():
    return [
        {"student_id": "S1", "subject": "MATH", "term": "Term 1", "component": "CAT 1", "marks": 25, "max_marks": 30},
        {"student_id": "S1", "subject": "MATH", "term": "Term 1", "component": "End Term", "marks": 60, "max_marks": 70},
        {"student_id": "S1", "subject": "ENG", "term": "Term 1", "component": "endterm", "marks": 55, "max_marks": 100},
        {"student_id": "S1", "subject": "MATH", "term": "Term 2", "component": "EndTerm", "marks": 70, "max_marks": 100},
        {"student_id": "S2", "subject": "MATH", "term": "Term 1", "component": "EndTerm", "marks": "abc", "max_marks": 100},
    ]


class TestNormalizeComponent:

    @pytest.mark.parametrize("raw, expected", [
        ("CAT 1", AssessmentComponent.CAT1),
        ("cat1", AssessmentComponent.CAT1),
        ("CAT-2", AssessmentComponent.CAT2),
        ("Opener", AssessmentComponent.OPENER),
        ("Mid Term", AssessmentComponent.MIDTERM),
        ("mid_term", AssessmentComponent.MIDTERM),
        ("End-Term", AssessmentComponent.ENDTERM),
        ("End of Term", AssessmentComponent.ENDTERM),
        (AssessmentComponent.CAT2, AssessmentComponent.CAT2),
    ])
    def test_variants(self, raw, expected):
        assert normalize_component(raw) == expected

    def test_unknown(self):
        assert normalize_component("quiz") is None
        assert normalize_component(None) is None


class TestColumnMapping:

    def test_aliases(self):
        df = pd.DataFrame(columns=["Adm No", "Subject Name", "Term", "Exam Type", "Score", "Out Of"])
        mapping = suggest_column_mapping(df)
        assert mapping["student_id"] == "Adm No"
        assert mapping["subject_id"] == "Subject Name"
        assert mapping["component"] == "Exam Type"
        assert mapping["marks_obtained"] == "Score"
        assert mapping["max_marks"] == "Out Of"
        assert mapping["academic_year"] is None

    def test_missing_required_columns(self):
        with pytest.raises(ConfigurationError) as excinfo:
            MarksBook([{"student_id": "S1", "marks": 40}])
        assert len(excinfo.value.errors) == 3


class TestMarksBook:

    def test_scores_grouped_by_subject(self, records):
        book = MarksBook(records)
        scores = book.scores_for("S1", 1)
        assert set(scores) == {"MATH", "ENG"}
        assert [s.component for s in scores["MATH"]] == [AssessmentComponent.CAT1, AssessmentComponent.ENDTERM]
        assert sum(s.marks_obtained for s in scores["MATH"]) == 85
        assert sum(s.max_marks for s in scores["MATH"]) == 100

    def test_term_filter(self, records):
        scores = MarksBook(records).scores_for("S1", 2)
        assert list(scores) == ["MATH"]

    def test_no_rows_is_empty(self, records):
        assert MarksBook(records).scores_for("S9", 1) == {}
        assert MarksBook().scores_for("S1", 1) == {}

    def test_malformed_raises_for_that_student_only(self, records):
        book = MarksBook(records)
        with pytest.raises(MalformedMarksError) as excinfo:
            book.scores_for("S2", 1)
        assert excinfo.value.student_id == "S2"
        assert "could not be parsed" in str(excinfo.value)
        assert book.scores_for("S1", 1)

    def test_marks_over_max(self):
        book = MarksBook([
            {"student_id": "S1", "subject": "MATH", "term": 1, "component": "CAT1", "marks": 35, "max_marks": 30},
        ])
        with pytest.raises(MalformedMarksError):
            book.scores_for("S1", 1)

    def test_negative_and_unknown_component(self):
        book = MarksBook([
            {"student_id": "S1", "subject": "MATH", "term": 1, "component": "CAT1", "marks": -1, "max_marks": 30},
            {"student_id": "S1", "subject": "ENG", "term": 1, "component": "quiz", "marks": 10, "max_marks": 30},
        ])
        messages = [i["message"] for i in book.issues()]
        assert "negative marks" in messages[0]
        assert "unknown assessment component" in messages[1]

    def test_duplicate_component(self):
        book = MarksBook([
            {"student_id": "S1", "subject": "MATH", "term": 1, "component": "CAT1", "marks": 10, "max_marks": 30},
            {"student_id": "S1", "subject": "MATH", "term": 1, "component": "cat 1", "marks": 12, "max_marks": 30},
        ])
        assert len(book.issues()) == 2
        with pytest.raises(MalformedMarksError):
            book.scores_for("S1", 1)

    def test_default_max_marks(self):
        book = MarksBook([{"student_id": "S1", "subject": "MATH", "term": 1, "component": "EndTerm", "marks": 64}])
        score = book.scores_for("S1", 1)["MATH"][0]
        assert score.max_marks == 100

    def test_academic_year_filter(self):
        book = MarksBook([
            {"student_id": "S1", "subject": "MATH", "term": 1, "academic_year": "2024/2025",
             "component": "EndTerm", "marks": 64, "max_marks": 100},
            {"student_id": "S1", "subject": "MATH", "term": 1, "academic_year": "2023/2024",
             "component": "EndTerm", "marks": 40, "max_marks": 100},
        ])
        scores = book.scores_for("S1", 1, "2024/2025")
        assert [s.marks_obtained for s in scores["MATH"]] == [64]

    def test_accepts_dataframe_and_numeric_ids(self):
        df = pd.DataFrame([
            {"student_id": 7, "subject": "MATH", "term": "T1", "component": "Opener", "marks": "45", "max_marks": "50"},
        ])
        book = MarksBook(df)
        assert book.students() == ["7"]
        assert book.subjects() == ["MATH"]
        assert book.scores_for("7", 1)["MATH"][0].marks_obtained == 45

    def test_numeric_ids_survive_a_missing_id(self):
        rows = [
            {"student_id": 1001, "subject": 101, "term": 1, "component": "EndTerm", "marks": 64, "max_marks": 100},
            {"student_id": 1002, "subject": 101, "term": 1, "component": "EndTerm", "marks": 50, "max_marks": 100},
            {"student_id": None, "subject": 101, "term": 1, "component": "EndTerm", "marks": 30, "max_marks": 100},
        ]
        for book in (MarksBook(rows), MarksBook(pd.DataFrame(rows))):
            assert book.students() == ["1001", "1002"]
            assert book.subjects() == ["101"]
            scores = book.scores_for("1001", 1)
            assert [s.marks_obtained for s in scores["101"]] == [64]
            assert len(book.issues()) == 1
