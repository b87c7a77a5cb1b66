"""
calendar.py — Academic year and term ordering.

An academic year is labelled "YYYY/YYYY" and holds numbered terms. Term ids are
"<academic_year>-<term_number>", e.g. "2024/2025-1".
"""

import re
from datetime import date
from typing import Any, Iterable, List, Mapping, Optional

from pydantic import Field, ValidationError, field_validator

from core.errors import ConfigurationError, MissingTermError
from core.models import _Frozen

ACADEMIC_YEAR_PATTERN = re.compile(r"^\d{4}/\d{4}$")

TERM_NAMES = {1: "Term 1", 2: "Term 2", 3: "Term 3"}


def term_number_from_label(label: Any) -> Optional[int]:
    """'Term 2', 'T2', '2', 2 -> 2. Unparseable labels -> None."""
    if label is None:
        return None
    if isinstance(label, (int, float)) and not isinstance(label, bool):
        return int(label) if label == label else None
    nums = re.findall(r"\d+", str(label).strip())
    return int(nums[-1]) if nums else None


def sort_terms(term_list: Iterable[Any]) -> List[Any]:
    """Sort term labels in calendar order (Term 1, Term 2, Term 3)."""
    def key(term):
        number = term_number_from_label(term)
        return number if number is not None else 99

    return sorted(term_list, key=key)


def make_term_id(academic_year: str, term_number: int) -> str:
    return f"{academic_year}-{term_number}"


class AcademicTerm(_Frozen):
    term_number: int = Field(ge=1)
    name: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class AcademicCalendar(_Frozen):
    academic_year: str
    terms: List[AcademicTerm] = Field(default_factory=list)

    @field_validator("academic_year")
    @classmethod
    def _check_year(cls, value: str) -> str:
        if not ACADEMIC_YEAR_PATTERN.match(value):
            raise ValueError("academic year must look like YYYY/YYYY")
        start, end = (int(part) for part in value.split("/"))
        if end != start + 1:
            raise ValueError("academic year must span consecutive years")
        return value

    @field_validator("terms")
    @classmethod
    def _order_terms(cls, value: List[AcademicTerm]) -> List[AcademicTerm]:
        numbers = [t.term_number for t in value]
        if len(set(numbers)) != len(numbers):
            raise ValueError("term numbers must be unique")
        return sorted(value, key=lambda t: t.term_number)

    @property
    def term_numbers(self) -> List[int]:
        return [t.term_number for t in self.terms]

    def term(self, term_number: int) -> AcademicTerm:
        for t in self.terms:
            if t.term_number == term_number:
                return t
        raise MissingTermError(self.academic_year, term_number)

    def term_id(self, term_number: int) -> str:
        return make_term_id(self.academic_year, self.term(term_number).term_number)


def build_calendar(academic_year: str, terms: Optional[Iterable[Any]] = None) -> AcademicCalendar:
    """
    Build a calendar from loose input.

    ``terms`` may hold AcademicTerm objects, mappings, or bare term numbers;
    omitted means the usual three terms. Raises ConfigurationError when the
    year label or term list is invalid.
    """
    if terms is None:
        terms = [1, 2, 3]

    items = []
    for t in terms:
        if isinstance(t, (AcademicTerm, Mapping)):
            items.append(t)
        else:
            number = term_number_from_label(t)
            items.append({"term_number": number, "name": TERM_NAMES.get(number, f"Term {number}")})

    try:
        calendar = AcademicCalendar(academic_year=academic_year, terms=items)
    except ValidationError as exc:
        messages = [e["msg"] for e in exc.errors()]
        raise ConfigurationError(f"Invalid academic calendar {academic_year!r}", messages) from exc

    if not calendar.terms:
        raise ConfigurationError(f"Academic calendar {academic_year!r} has no terms")
    return calendar
