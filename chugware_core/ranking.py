"""Per-discipline leaderboard over stored results.

Ordering:
- Pass rows first, fastest time first; equal times share a rank
- every other status afterwards with rank 0, NaN times last
- name (case-insensitive) keeps the order deterministic inside a group
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from . import timecodec
from .types import STATUS_PASS
from .validation import Participant, Result


@dataclass(frozen=True)
class RankingRow:
    rank: int
    name: str
    program: str
    team: str
    time: str
    base_time: str
    additional_time: str
    status: str
    comment: str


@dataclass(frozen=True)
class DisciplineRanking:
    discipline: str
    rows: tuple[RankingRow, ...]
    passed: int
    not_passed: int


def _time_sort_key(result: Result) -> tuple[int, int]:
    ticks = timecodec.to_comparable(result.time)
    # NaN (-1) goes after every real time.
    if ticks < 0:
        return (1, 0)
    return (0, ticks)


def _stable_sort_key(result: Result) -> tuple[tuple[int, int], str]:
    return (_time_sort_key(result), result.name.lower())


def _to_ranking_row(result: Result, rank: int, participant: Participant | None) -> RankingRow:
    return RankingRow(
        rank=rank,
        name=result.name,
        program=participant.program if participant else "",
        team=participant.team if participant else "",
        time=result.time,
        base_time=result.base_time,
        additional_time=result.additional_time,
        status=result.status,
        comment=result.comment,
    )


def _partition_by_time(ordered: Sequence[Result]) -> list[list[Result]]:
    partitions: list[list[Result]] = []
    i = 0
    while i < len(ordered):
        current = ordered[i]
        chunk = [current]
        j = i + 1
        while j < len(ordered) and _time_sort_key(ordered[j]) == _time_sort_key(current):
            chunk.append(ordered[j])
            j += 1
        partitions.append(chunk)
        i = j
    return partitions


def best_results(results: Sequence[Result], discipline: str) -> list[Result]:
    """One result per participant: the fastest Pass, else the latest attempt."""
    best: dict[str, Result] = {}
    for result in results:
        if result.discipline != discipline:
            continue
        kept = best.get(result.name)
        if kept is None:
            best[result.name] = result
            continue
        if result.status == STATUS_PASS:
            if kept.status != STATUS_PASS or _time_sort_key(result) < _time_sort_key(kept):
                best[result.name] = result
        elif kept.status != STATUS_PASS:
            best[result.name] = result
    return list(best.values())


def compute_discipline_ranking(
    results: Sequence[Result],
    discipline: str,
    participants: Sequence[Participant] | None = None,
) -> DisciplineRanking:
    """
    Rank every result of one discipline.

    Args:
      results: results of any discipline; other disciplines are ignored.
      discipline: discipline to rank.
      participants: optional roster used to fill program/team columns.
    """
    by_name = {p.name: p for p in participants or ()}
    rows_in = [r for r in results if r.discipline == discipline]
    passed = sorted((r for r in rows_in if r.status == STATUS_PASS), key=_stable_sort_key)
    others = sorted((r for r in rows_in if r.status != STATUS_PASS), key=_stable_sort_key)

    rows: list[RankingRow] = []
    pos = 1
    for chunk in _partition_by_time(passed):
        for result in chunk:
            rows.append(_to_ranking_row(result, pos, by_name.get(result.name)))
        pos += len(chunk)
    for result in others:
        rows.append(_to_ranking_row(result, 0, by_name.get(result.name)))

    return DisciplineRanking(
        discipline=discipline,
        rows=tuple(rows),
        passed=len(passed),
        not_passed=len(others),
    )
