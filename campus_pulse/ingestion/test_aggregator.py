"""
Aggregator Test Suite

Rows are built directly as NormalizedRow so each rule is exercised in
isolation from header resolution.
"""

import math
from datetime import datetime

import pytest

from campus_pulse.ingestion.aggregator import (
    CAMPUS_ACTIVE,
    CAMPUS_RELOCATED,
    aggregate,
    campus_pocs,
    campus_status,
    has_poc_config,
    level_for_score,
    poc_competencies,
    poc_for_competency,
    round_score,
)
from campus_pulse.ingestion.normalizer import Competency, NormalizedRow, mean_score


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_row(
    campus: str = "Pune",
    resolver: str = "Asha Rao",
    email: str = "asha@navgurukul.org",
    when: str = "2025-03-14",
    scores: dict = None,
    row_index: int = 0,
) -> NormalizedRow:
    scores = scores if scores is not None else {"Gratitude": 5.0, "Academics": 6.0}
    competencies = [Competency(category, float(score)) for category, score in scores.items()]
    return NormalizedRow(
        row_index=row_index,
        campus_name=campus,
        resolver_name=resolver,
        resolver_email=email,
        email_derived=False,
        location=campus,
        evaluated_at=datetime.fromisoformat(when) if when else None,
        competencies=competencies,
        overall_score=mean_score(c.score for c in competencies),
    )


# ---------------------------------------------------------------------------
# RULE: one evaluation per row, sequential ids
# ---------------------------------------------------------------------------

class TestEvaluations:
    def test_one_evaluation_per_row(self):
        rows = [make_row(row_index=i) for i in range(4)]
        data = aggregate(rows)
        assert [e.id for e in data.evaluations] == ["1", "2", "3", "4"]

    def test_evaluation_links_campus_and_resolver(self):
        data = aggregate([make_row(), make_row(campus="Raipur", email="ravi@navgurukul.org", resolver="Ravi")])
        second = data.evaluations[1]
        assert second.campus_id == data.campus_by_name("Raipur").id
        assert second.resolver_id == data.resolver_by_email("ravi@navgurukul.org").id

    def test_empty_input(self):
        data = aggregate([])
        assert data.is_empty
        assert data.as_dict() == {"campuses": [], "resolvers": [], "evaluations": []}


# ---------------------------------------------------------------------------
# RULE: campus average uses only the most recent date
# ---------------------------------------------------------------------------

class TestCampusAverages:
    def test_latest_date_only(self):
        rows = [
            make_row(when="2025-01-10", scores={"Gratitude": 2.0}),
            make_row(when="2025-03-14", scores={"Gratitude": 6.0}),
        ]
        campus = aggregate(rows).campus_by_name("Pune")
        assert campus.average_score == 6.0
        assert campus.ranking == "Level 6"
        assert campus.last_evaluated.isoformat() == "2025-03-14"
        assert campus.evaluation_count == 2

    def test_same_day_evaluations_pooled(self):
        rows = [
            make_row(when="2025-03-14T09:00:00", scores={"Gratitude": 5.0}),
            make_row(when="2025-03-14T17:00:00", scores={"Gratitude": 6.0}, email="b@x.org", resolver="B"),
        ]
        campus = aggregate(rows).campus_by_name("Pune")
        assert campus.average_score == 5.5
        assert campus.competency_averages["Gratitude"] == 5.5
        assert campus.total_resolvers == 2

    def test_older_row_after_newer_does_not_move_date(self):
        rows = [
            make_row(when="2025-03-14", scores={"Gratitude": 6.0}),
            make_row(when="2025-01-10", scores={"Gratitude": 1.0}),
        ]
        campus = aggregate(rows).campus_by_name("Pune")
        assert campus.last_evaluated.isoformat() == "2025-03-14"
        assert campus.average_score == 6.0

    def test_undated_rows_lose_to_dated(self):
        rows = [
            make_row(when="2025-03-14", scores={"Gratitude": 6.0}),
            make_row(when=None, scores={"Gratitude": 1.0}),
        ]
        campus = aggregate(rows).campus_by_name("Pune")
        assert campus.average_score == 6.0

    def test_nan_scores_do_not_raise(self):
        rows = [make_row(scores={"Gratitude": float("nan")})]
        data = aggregate(rows)
        campus = data.campus_by_name("Pune")
        assert campus.average_score == 0.0
        assert campus.ranking == "Level 0"
        assert data.as_dict()["evaluations"][0]["overallScore"] is None


# ---------------------------------------------------------------------------
# RULE: resolver statistics keyed by email
# ---------------------------------------------------------------------------

class TestResolvers:
    def test_resolver_totals(self):
        rows = [
            make_row(campus="Pune", when="2025-01-10", scores={"Gratitude": 4.0}),
            make_row(campus="Raipur", when="2025-03-14", scores={"Gratitude": 6.0}),
            make_row(campus="Pune", when="2025-02-01", scores={"Gratitude": 5.0}),
        ]
        resolver = aggregate(rows).resolver_by_email("asha@navgurukul.org")
        assert resolver.total_evaluations == 3
        assert resolver.campuses_evaluated == 2
        assert resolver.average_score_given == pytest.approx(5.0)
        assert resolver.last_activity.isoformat() == "2025-03-14"

    def test_longer_name_variant_kept(self):
        rows = [make_row(resolver="Asha"), make_row(resolver="Asha Rao")]
        assert aggregate(rows).resolvers[0].name == "Asha Rao"

    def test_distinct_emails_are_distinct_resolvers(self):
        rows = [make_row(email="a@x.org"), make_row(email="b@x.org")]
        assert len(aggregate(rows).resolvers) == 2


# ---------------------------------------------------------------------------
# RULE: campus lifecycle
# ---------------------------------------------------------------------------

class TestCampusStatus:
    def test_closed_campus_omitted_but_evaluations_kept(self):
        rows = [make_row(campus="Udaipur"), make_row(campus="Pune")]
        data = aggregate(rows, closed_campuses={"Udaipur"})
        assert [c.name for c in data.campuses] == ["Pune"]
        assert len(data.evaluations) == 2

    def test_relocated_campus_marked(self):
        data = aggregate([make_row(campus="Sarjapur")], relocated_campuses={"Sarjapur": "Bangalore"})
        campus = data.campuses[0]
        assert campus.status == CAMPUS_RELOCATED
        assert campus.relocated_to == "Bangalore"

    def test_active_by_default(self):
        assert campus_status("Pune", closed=(), relocated={}) == (CAMPUS_ACTIVE, None)

    def test_default_tables_list_every_campus(self):
        rows = [make_row(campus="Dantewada Campus"), make_row(campus="Udaipur"), make_row(campus="Sarjapur")]
        data = aggregate(rows)
        assert [c.status for c in data.campuses] == [CAMPUS_ACTIVE] * 3


class TestLevelForScore:
    @pytest.mark.parametrize("score, level", [
        (0.0, "Level 0"),
        (0.99, "Level 0"),
        (1.0, "Level 1"),
        (5.5, "Level 5"),
        (6.99, "Level 6"),
        (7.0, "Level 7"),
        (9.0, "Level 7"),
        (-1.0, "Level 0"),
    ])
    def test_buckets(self, score, level):
        assert level_for_score(score) == level

    def test_nan(self):
        assert level_for_score(math.nan) == "Level 0"


class TestSerialization:
    def test_camel_case_keys(self):
        payload = aggregate([make_row()]).as_dict()
        campus = payload["campuses"][0]
        assert campus["averageScore"] == 5.5
        assert campus["lastEvaluated"] == "2025-03-14"
        assert payload["resolvers"][0]["averageScoreGiven"] == 5.5
        assert payload["evaluations"][0]["competencies"][0]["maxScore"] == 7

    def test_round_score(self):
        assert round_score(5.4567) == 5.46
        assert round_score(None) is None


# ---------------------------------------------------------------------------
# RULE: competency points of contact
# ---------------------------------------------------------------------------

class TestPointsOfContact:
    def test_configured_campus(self):
        assert has_poc_config("pune")
        assert not has_poc_config("Raipur")
        assert list(campus_pocs("Pune")) == ["Divya Sonla", "Sayna Singh", "Muktai Indraksha", "Bushra Khatun"]

    def test_competency_lookup_case_insensitive(self):
        assert poc_for_competency("PUNE", "gratitude") == "Muktai Indraksha"

    def test_short_name_matches_full_label(self):
        assert poc_for_competency("Pune", "Meditation") == "Bushra Khatun"

    def test_unassigned_competency(self):
        assert poc_for_competency("Pune", "Academics") is None
        assert poc_for_competency("Raipur", "Gratitude") is None

    def test_poc_competencies(self):
        assert poc_competencies("Pune", "divya sonla") == ["Learning Environment & Peer Support", "Hackathons"]
        assert poc_competencies("Pune", "Nobody") == []

    def test_custom_table(self):
        table = {"Raipur": {"Ravi": ["Academics"]}}
        assert poc_for_competency("Raipur", "Academics", pocs=table) == "Ravi"
        assert campus_pocs("Pune", pocs=table) == {}
