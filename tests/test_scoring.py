"""
Score Aggregator Tests:
  - N/A and unscored values are excluded from numerator and denominator
  - "no data" is 0% with scored_count == 0
  - section and checklist breakdowns
"""

import pytest

from retail_audit.services.scoring import (
    ScoreSummary,
    aggregate,
    is_valid_score,
    missing_criteria,
    score_breakdown,
    section_score,
    total_score,
)


class TestAggregate:

    def test_na_criteria_do_not_dilute(self):
        summary = aggregate([5, 0, 0])
        assert summary.percentage == 100.0
        assert summary.scored_count == 1
        assert summary.na_count == 2

    def test_mixed_scores(self):
        # A=1, B=5, C=N/A → (1+5)/(2*5)
        assert aggregate([1, 5, 0]).percentage == pytest.approx(60.0)

    def test_unscored_are_ignored(self):
        summary = aggregate([3, None, None])
        assert summary.percentage == pytest.approx(60.0)
        assert summary.unscored_count == 2

    @pytest.mark.parametrize("values", [[], [0, 0], [None], [None, 0]])
    def test_no_data_is_zero(self, values):
        summary = aggregate(values)
        assert summary.percentage == 0.0
        assert not summary.has_data

    def test_to_dict_rounds(self):
        data = ScoreSummary(percentage=66.66666, scored_count=3).to_dict()
        assert data["percentage"] == 66.67
        assert data["has_data"] is True


class TestTotalScore:

    def test_mapping_input(self):
        assert total_score({1: 2, 2: 4}).percentage == pytest.approx(60.0)

    def test_row_input(self):
        class Row:
            def __init__(self, cid, score):
                self.criteria_id = cid
                self.score = score

        rows = [Row(1, 5), Row(2, 5), Row(3, 0)]
        assert total_score(rows).percentage == 100.0


class TestValidScore:

    @pytest.mark.parametrize("value", [None, 0, 1, 3, 5])
    def test_valid(self, value):
        assert is_valid_score(value)

    @pytest.mark.parametrize("value", [-1, 6, 2.5, "3", True])
    def test_invalid(self, value):
        assert not is_valid_score(value)


class TestChecklistBreakdown:

    def test_section_score_counts_missing_rows_as_unscored(self, checklist):
        section = checklist.sections[0]
        first, second = section.criteria()[:2]
        summary = section_score(section, {first.id: 4, second.id: 0})
        assert summary.percentage == pytest.approx(80.0)
        assert summary.na_count == 1
        assert summary.unscored_count == len(section.criteria()) - 2

    def test_breakdown_covers_every_section(self, checklist):
        ids = [c.id for _, _, c in checklist.iter_criteria()]
        scores = {cid: 5 for cid in ids}
        data = score_breakdown(checklist, scores)
        assert len(data["sections"]) == len(checklist.sections)
        assert data["total"]["percentage"] == 100.0
        assert all(s["percentage"] == 100.0 for s in data["sections"])

    def test_missing_criteria(self, checklist):
        ids = [c.id for _, _, c in checklist.iter_criteria()]
        scores = {ids[0]: 3, ids[1]: 0}
        assert missing_criteria(checklist, scores) == ids[2:]
