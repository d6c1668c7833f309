"""
Network Brief tests.
"""

from campus_brief import (
    build_brief,
    calculate_campus_stats,
    calculate_competency_followups,
    calculate_competency_gaps,
    determine_network_posture,
)
from campus_pulse.ingestion.column_mapper import ESCALATION_QUESTION, URGENT_QUESTION
from campus_pulse.ingestion.ingestion import run_sync


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_data(urgent="", escalation="", pune_level="Level 6", raipur_level="Level 2"):
    rows = [
        {"Name": "Asha Rao", "Campus Name": "Pune", "Timestamp": "2025-03-14",
         "Gratitude": pune_level, "Academics": pune_level, URGENT_QUESTION: urgent, ESCALATION_QUESTION: escalation},
        {"Name": "Ravi", "Campus Name": "Raipur", "Timestamp": "2025-03-15",
         "Gratitude": raipur_level, "Academics": "Level 1", URGENT_QUESTION: "", ESCALATION_QUESTION: ""},
    ]
    return run_sync(rows, filler=lambda seed: 5.0).data


class TestStats:
    def test_counts(self):
        stats = calculate_campus_stats(make_data())
        assert stats['total_campuses'] == 2
        assert stats['total_evaluations'] == 2
        assert stats['total_resolvers'] == 2
        assert stats['filled_count'] == 18

    def test_top_campus_first(self):
        stats = calculate_campus_stats(make_data())
        assert [row['Campus Name'] for row in stats['top_campuses']] == ["Pune", "Raipur"]

    def test_level_distribution_covers_all_levels(self):
        stats = calculate_campus_stats(make_data())
        assert list(stats['level_distribution']) == [f"Level {n}" for n in range(7, -1, -1)]
        assert sum(stats['level_distribution'].values()) == 2

    def test_placeholder_issues_not_counted(self):
        stats = calculate_campus_stats(make_data(urgent="no"))
        assert stats['urgent_count'] == 0

    def test_empty_data(self):
        stats = calculate_campus_stats(run_sync([]).data)
        assert stats['total_campuses'] == 0
        assert stats['network_average'] == 0.0


class TestCompetencyGaps:
    def test_weakest_first(self):
        gaps = calculate_competency_gaps(make_data())
        assert gaps[0] == ("Academics", 3.5)


class TestPosture:
    def test_escalation_forces_escalate(self):
        stats = calculate_campus_stats(make_data(escalation="Warden absent for a week"))
        assert determine_network_posture(stats)[0] == "ESCALATE"

    def test_urgent_forces_intervene(self):
        stats = calculate_campus_stats(make_data(urgent="Water shortage in block B"))
        assert determine_network_posture(stats)[0] == "INTERVENE"

    def test_stable(self):
        stats = calculate_campus_stats(make_data(raipur_level="Level 6"))
        stats['network_average'] = 5.5
        assert determine_network_posture(stats)[0] == "STABLE"


class TestBrief:
    def test_sections_present(self):
        _, posture, brief = build_brief(make_data(urgent="Water shortage in block B"), period_name="March 2025")
        assert "CAMPUS PULSE NETWORK BRIEF" in brief
        assert "Period: March 2025" in brief
        assert f"Decision Posture: {posture}" in brief
        assert "• Pune (Asha Rao): Water shortage in block B" in brief
        assert "Date Range: 2025-03-14 to 2025-03-15" in brief

    def test_empty_brief(self):
        _, _, brief = build_brief(run_sync([]).data)
        assert "No campuses evaluated." in brief
        assert "No dated evaluations" in brief


class TestCompetencyFollowups:
    def test_low_competencies_routed_to_poc(self):
        followups = calculate_competency_followups(make_data(pune_level="Level 2"))
        assert [(f['campus'], f['competency'], f['score'], f['poc']) for f in followups] == [
            ("Pune", "Gratitude", 2.0, "Muktai Indraksha"),
            ("Pune", "Academics", 2.0, None),
            ("Raipur", "Academics", 1.0, None),
            ("Raipur", "Gratitude", 2.0, None),
        ]

    def test_nothing_below_threshold(self):
        assert calculate_competency_followups(make_data(raipur_level="Level 6"), threshold=1.0) == []

    def test_brief_section(self):
        _, _, brief = build_brief(make_data(pune_level="Level 2"))
        assert "COMPETENCY FOLLOW-UP" in brief
        assert "• Pune / Gratitude: 2.00 (POC: Muktai Indraksha)" in brief
        assert "• Raipur / Academics: 1.00 (POC: no POC assigned)" in brief
