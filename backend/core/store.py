"""
store.py — Persistence boundary for regenerated progress records.

A record is keyed by (student_id, academic_year) and always replaced whole:
the last save wins.
"""

import threading
from typing import Dict, List, Optional, Protocol, Tuple

from core.models import StudentProgress


class ProgressStore(Protocol):
    def save(self, progress: StudentProgress) -> None: ...

    def get(self, student_id: str, academic_year: str) -> Optional[StudentProgress]: ...

    def list_year(self, academic_year: str) -> List[StudentProgress]: ...


class InMemoryProgressStore:
    """Thread-safe dict-backed store used by the HTTP app and tests."""

    def __init__(self):
        self._records: Dict[Tuple[str, str], StudentProgress] = {}
        self._lock = threading.Lock()

    def save(self, progress: StudentProgress) -> None:
        with self._lock:
            self._records[(progress.student_id, progress.academic_year)] = progress

    def get(self, student_id: str, academic_year: str) -> Optional[StudentProgress]:
        with self._lock:
            return self._records.get((student_id, academic_year))

    def list_year(self, academic_year: str) -> List[StudentProgress]:
        with self._lock:
            return [p for (_, year), p in sorted(self._records.items()) if year == academic_year]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
