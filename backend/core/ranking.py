"""
ranking.py — Deterministic competition ranking for a cohort.

Order: mean grade point desc, total marks desc, then tiebreak key asc
(admission number, else student id). Positions are shared on mean grade
point: a row within RANK_EPSILON of the previous row's mean grade point takes
the same position, and the next distinct row takes index + 1. Total marks and
the tiebreak key only order students inside a shared position.

    mean grade points [12, 12, 9], totals [85, 80, 70] → positions [1, 1, 3]

The result depends only on the set of entries, never on their input order.
"""

import math
from collections import defaultdict
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from core.models import RankingEntry, TermSummary

RANK_EPSILON = 0.01


def scores_differ(a: float, b: float, epsilon: float = RANK_EPSILON) -> bool:
    """The single tie rule: values within epsilon are equal."""
    return abs(a - b) > epsilon


def _number(value: Any) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    return v if math.isfinite(v) else 0.0


def _get(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def to_ranking_entry(item: Any) -> RankingEntry:
    """Accept a RankingEntry, TermSummary, or mapping; missing numbers become 0."""
    if isinstance(item, RankingEntry):
        return item
    student_id = str(_get(item, "student_id", ""))
    tiebreak = _get(item, "tiebreak_key") or _get(item, "admission_number") or student_id
    return RankingEntry(
        student_id=student_id,
        mean_grade_point=_number(_get(item, "mean_grade_point")),
        total_marks=_number(_get(item, "total_marks")),
        tiebreak_key=str(tiebreak),
    )


# ── Competition positions ───────────────────────────────────────────

# (student_id, metrics high-to-low, tiebreak_key)
_Row = Tuple[str, Tuple[float, ...], str]


def _compare(a: _Row, b: _Row) -> int:
    for x, y in zip(a[1], b[1]):
        if scores_differ(x, y):
            return -1 if x > y else 1
    key_a, key_b = (a[2], a[0]), (b[2], b[0])
    if key_a == key_b:
        return 0
    return -1 if key_a < key_b else 1


def _competition_positions(rows: Iterable[_Row]) -> List[Tuple[str, int]]:
    ordered = sorted(rows, key=lambda r: (r[2], r[0]))
    ordered.sort(key=cmp_to_key(_compare))

    positions: List[Tuple[str, int]] = []
    previous = None
    position = 0
    for index, row in enumerate(ordered):
        if previous is None or scores_differ(row[1][0], previous[1][0]):
            position = index + 1
        positions.append((row[0], position))
        previous = row
    return positions


def rank(entries: Iterable[Any]) -> List[Tuple[str, int]]:
    """
    Rank a cohort. Returns (student_id, position) in rank order.

    >>> rank([])
    []
    """
    rows = []
    for item in entries:
        e = to_ranking_entry(item)
        rows.append((e.student_id, (e.mean_grade_point, e.total_marks), e.tiebreak_key))
    return _competition_positions(rows)


# ── Cohort partitions ───────────────────────────────────────────────

def assign_positions(summaries: Sequence[TermSummary]) -> List[TermSummary]:
    """
    Attach class and stream positions and sizes.

    Ranks once per class and once per (class, stream). Students without a
    stream get no stream position. Output keeps the input order.
    """
    by_class: Dict[Any, List[TermSummary]] = defaultdict(list)
    by_stream: Dict[Tuple[Any, str], List[TermSummary]] = defaultdict(list)
    for s in summaries:
        by_class[s.class_id].append(s)
        if s.stream:
            by_stream[(s.class_id, s.stream)].append(s)

    class_pos: Dict[Tuple[Any, str], Tuple[int, int]] = {}
    for class_id, members in by_class.items():
        for student_id, pos in rank(members):
            class_pos[(class_id, student_id)] = (pos, len(members))

    stream_pos: Dict[Tuple[Any, str, str], Tuple[int, int]] = {}
    for (class_id, stream), members in by_stream.items():
        for student_id, pos in rank(members):
            stream_pos[(class_id, stream, student_id)] = (pos, len(members))

    ranked = []
    for s in summaries:
        pos, size = class_pos[(s.class_id, s.student_id)]
        update = {"class_position": pos, "class_size": size, "stream_position": None, "stream_size": None}
        if s.stream:
            update["stream_position"], update["stream_size"] = stream_pos[(s.class_id, s.stream, s.student_id)]
        ranked.append(s.model_copy(update=update))
    return ranked


def rank_subject(subject_id: str, summaries: Sequence[TermSummary]) -> List[TermSummary]:
    """Subject positions by percentage among students who took the subject."""
    rows = []
    for s in summaries:
        result = s.subject(subject_id)
        if result is not None:
            rows.append((s.student_id, (_number(result.percentage),), s.tiebreak_key))
    positions = dict(_competition_positions(rows))
    total = len(rows)

    ranked = []
    for s in summaries:
        if s.student_id not in positions:
            ranked.append(s)
            continue
        results = [
            r.model_copy(update={"position": positions[s.student_id], "total_students": total})
            if r.subject_id == subject_id else r
            for r in s.subject_results
        ]
        ranked.append(s.model_copy(update={"subject_results": results}))
    return ranked


def rank_all_subjects(summaries: Sequence[TermSummary]) -> List[TermSummary]:
    subjects = sorted({r.subject_id for s in summaries for r in s.subject_results})
    ranked = list(summaries)
    for subject_id in subjects:
        ranked = rank_subject(subject_id, ranked)
    return ranked
