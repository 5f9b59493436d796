"""
Score Aggregator.

Turns per-criterion scores into percentages for a section or a whole audit.

Policy:
  - ``None`` (unscored) and ``0`` (Not Applicable) are excluded from both
    numerator and denominator.
  - Included scores (1..5) are summed; the denominator is count × 5.
  - No scored criteria → 0%.  That 0 means "no data", so every result
    carries ``scored_count`` for callers to tell the two apart.
  - ``Criterion.weight`` is deliberately ignored (plain count averaging).

Inputs are iterables of AuditScore rows, or any object exposing
``criteria_id`` and ``score``; plain ``{criteria_id: value}`` mappings are
accepted too.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

NOT_APPLICABLE = 0
MIN_SCORE = 1
MAX_SCORE = 5


@dataclass(frozen=True)
class ScoreSummary:
    percentage: float
    scored_count: int
    na_count: int = 0
    unscored_count: int = 0

    @property
    def has_data(self) -> bool:
        return self.scored_count > 0

    def to_dict(self) -> dict:
        return {
            "percentage": round(self.percentage, 2),
            "scored_count": self.scored_count,
            "na_count": self.na_count,
            "unscored_count": self.unscored_count,
            "has_data": self.has_data,
        }


EMPTY_SUMMARY = ScoreSummary(percentage=0.0, scored_count=0)


def _score_map(scores) -> dict[int, int | None]:
    if scores is None:
        return {}
    if isinstance(scores, Mapping):
        return dict(scores)
    return {s.criteria_id: s.score for s in scores}


def aggregate(values) -> ScoreSummary:
    """Aggregate raw score values (None / 0 / 1..5)."""
    total = 0
    scored = na = unscored = 0
    for value in values:
        if value is None:
            unscored += 1
        elif value == NOT_APPLICABLE:
            na += 1
        elif value > 0:
            total += value
            scored += 1
    if scored == 0:
        return ScoreSummary(0.0, 0, na, unscored)
    return ScoreSummary(total / (scored * MAX_SCORE) * 100, scored, na, unscored)


def section_score(section, scores) -> ScoreSummary:
    """Percentage for one checklist section.

    Criteria of the section with no score row at all count as unscored.
    """
    by_criterion = _score_map(scores)
    values = [by_criterion.get(c.id) for c in section.criteria()]
    return aggregate(values)


def total_score(scores) -> ScoreSummary:
    """Percentage over every score row of the audit."""
    return aggregate(_score_map(scores).values())


def score_breakdown(checklist, scores) -> dict:
    """Per-section summaries plus the checklist-wide total, for report views."""
    by_criterion = _score_map(scores)
    sections = []
    all_values = []
    for section in checklist.sections:
        values = [by_criterion.get(c.id) for c in section.criteria()]
        all_values.extend(values)
        sections.append({
            "section_id": section.id,
            "name": section.name,
            **aggregate(values).to_dict(),
        })
    return {
        "checklist_id": checklist.id,
        "sections": sections,
        "total": aggregate(all_values).to_dict(),
    }


def is_valid_score(value) -> bool:
    if value is None:
        return True
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return NOT_APPLICABLE <= value <= MAX_SCORE


def missing_criteria(checklist, scores) -> list[int]:
    """Criteria ids with no value yet (neither rated nor marked N/A)."""
    by_criterion = _score_map(scores)
    return [
        c.id for _, _, c in checklist.iter_criteria()
        if by_criterion.get(c.id) is None
    ]
