"""
Aggregator

Folds normalized rows, in input order, into the three dashboard
collections: campuses, resolvers and evaluations.

CONTRACT:
- One Evaluation per accepted row, sequential ids in row order.
- Campus averageScore uses only the evaluations on the campus's most
  recent date. Older evaluations stay in the evaluation list.
- Closed campuses are dropped from the campus list; their evaluations
  are kept.
- Input is assumed valid. Degenerate scores (NaN) are excluded from
  averages, never raised.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping, Optional

from campus_pulse.ingestion.normalizer import Competency, NormalizedRow, mean_score, round_score
from campus_pulse.ingestion.settings import (
    CAMPUS_POCS,
    CLOSED_CAMPUSES,
    MAX_LEVEL,
    MIN_LEVEL,
    RELOCATED_CAMPUSES,
)

logger = logging.getLogger(__name__)

CAMPUS_ACTIVE = "Active"
CAMPUS_CLOSED = "Closed"
CAMPUS_RELOCATED = "Relocated"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class Evaluation:
    id: str
    campus_id: str
    resolver_id: str
    resolver_name: str
    campus_name: str
    overall_score: float
    competencies: list[Competency]
    feedback: str
    competency_feedback: dict[str, str]
    urgent_campus_issue: str
    escalation_issue: str
    date_evaluated: Optional[date]
    status: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "campusId": self.campus_id,
            "resolverId": self.resolver_id,
            "resolverName": self.resolver_name,
            "campusName": self.campus_name,
            "overallScore": round_score(self.overall_score),
            "competencies": [c.as_dict() for c in self.competencies],
            "feedback": self.feedback,
            "competencyFeedback": dict(self.competency_feedback),
            "urgentCampusIssue": self.urgent_campus_issue,
            "escalationIssue": self.escalation_issue,
            "dateEvaluated": _iso(self.date_evaluated),
            "status": self.status,
        }


@dataclass
class Campus:
    id: str
    name: str
    location: str
    average_score: float = 0.0
    total_resolvers: int = 0
    ranking: str = "Level 0"
    last_evaluated: Optional[date] = None
    status: str = CAMPUS_ACTIVE
    relocated_to: Optional[str] = None
    competency_averages: dict[str, float] = field(default_factory=dict)
    evaluation_count: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "averageScore": round_score(self.average_score),
            "totalResolvers": self.total_resolvers,
            "ranking": self.ranking,
            "lastEvaluated": _iso(self.last_evaluated),
            "status": self.status,
            "relocatedTo": self.relocated_to,
            "competencyAverages": {k: round_score(v) for k, v in self.competency_averages.items()},
            "evaluationCount": self.evaluation_count,
        }


@dataclass
class Resolver:
    id: str
    name: str
    email: str
    campuses_evaluated: int = 0
    total_evaluations: int = 0
    average_score_given: float = 0.0
    last_activity: Optional[date] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "campusesEvaluated": self.campuses_evaluated,
            "totalEvaluations": self.total_evaluations,
            "averageScoreGiven": round_score(self.average_score_given),
            "lastActivity": _iso(self.last_activity),
        }


@dataclass
class DashboardData:
    campuses: list[Campus]
    resolvers: list[Resolver]
    evaluations: list[Evaluation]

    @property
    def is_empty(self) -> bool:
        return not self.evaluations

    def campus_by_name(self, name: str) -> Optional[Campus]:
        return next((c for c in self.campuses if c.name == name), None)

    def resolver_by_email(self, email: str) -> Optional[Resolver]:
        return next((r for r in self.resolvers if r.email == email), None)

    def as_dict(self) -> dict[str, Any]:
        return {
            "campuses": [c.as_dict() for c in self.campuses],
            "resolvers": [r.as_dict() for r in self.resolvers],
            "evaluations": [e.as_dict() for e in self.evaluations],
        }


# ---------------------------------------------------------------------------
# Internal utilities
# ---------------------------------------------------------------------------


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _date_key(value: Optional[date]) -> date:
    # Undated rows sort before every real date.
    return value if value is not None else date.min


def level_for_score(score: float) -> str:
    """Discretize a 0-7 score: floor, clamped to Level 0..Level 7."""
    if score is None or math.isnan(score):
        return f"Level {MIN_LEVEL}"
    level = int(math.floor(score))
    return f"Level {min(MAX_LEVEL, max(MIN_LEVEL, level))}"


def campus_status(
    name: str,
    closed: Iterable[str] = CLOSED_CAMPUSES,
    relocated: Mapping[str, str] = RELOCATED_CAMPUSES,
) -> tuple[str, Optional[str]]:
    """(status, relocated_to) for a campus name."""
    if name in closed:
        return CAMPUS_CLOSED, None
    if name in relocated:
        return CAMPUS_RELOCATED, relocated[name]
    return CAMPUS_ACTIVE, None


# ---------------------------------------------------------------------------
# Points of contact
# ---------------------------------------------------------------------------


def campus_pocs(
    campus_name: str,
    pocs: Mapping[str, Mapping[str, list[str]]] = CAMPUS_POCS,
) -> dict[str, list[str]]:
    """{contact name: competencies} for a campus; empty when none is configured."""
    wanted = campus_name.strip().lower()
    for campus, contacts in pocs.items():
        if campus.lower() == wanted:
            return {name: list(competencies) for name, competencies in contacts.items()}
    return {}


def has_poc_config(
    campus_name: str,
    pocs: Mapping[str, Mapping[str, list[str]]] = CAMPUS_POCS,
) -> bool:
    return bool(campus_pocs(campus_name, pocs))


def poc_for_competency(
    campus_name: str,
    competency: str,
    pocs: Mapping[str, Mapping[str, list[str]]] = CAMPUS_POCS,
) -> Optional[str]:
    """
    The contact following up ``competency`` at a campus, or None.

    A configured competency matches when either name contains the other,
    so "Meditation" finds the contact listed under the full form label.
    Contacts are checked in table order.
    """
    wanted = competency.strip().lower()
    if not wanted:
        return None
    for name, competencies in campus_pocs(campus_name, pocs).items():
        for configured in competencies:
            configured = configured.lower()
            if wanted in configured or configured in wanted:
                return name
    return None


def poc_competencies(
    campus_name: str,
    poc_name: str,
    pocs: Mapping[str, Mapping[str, list[str]]] = CAMPUS_POCS,
) -> list[str]:
    """Competencies one contact follows up at a campus."""
    wanted = poc_name.strip().lower()
    for name, competencies in campus_pocs(campus_name, pocs).items():
        if name.lower() == wanted:
            return competencies
    return []


@dataclass
class _CampusState:
    campus: Campus
    resolver_emails: set[str] = field(default_factory=set)
    evaluations: list[Evaluation] = field(default_factory=list)


@dataclass
class _ResolverState:
    resolver: Resolver
    campus_names: set[str] = field(default_factory=set)
    score_sum: float = 0.0
    scored_count: int = 0


def _latest_scores(state: _CampusState) -> tuple[float, dict[str, float]]:
    latest = state.campus.last_evaluated
    current = [e for e in state.evaluations if e.date_evaluated == latest]
    pooled: list[float] = []
    by_category: dict[str, list[float]] = {}
    for evaluation in current:
        for competency in evaluation.competencies:
            pooled.append(competency.score)
            by_category.setdefault(competency.category, []).append(competency.score)

    average = mean_score(pooled)
    average = 0.0 if math.isnan(average) else min(7.0, max(0.0, average))
    per_category = {}
    for category, scores in by_category.items():
        value = mean_score(scores)
        if not math.isnan(value):
            per_category[category] = value
    return average, per_category


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def aggregate(
    rows: Iterable[NormalizedRow],
    closed_campuses: Iterable[str] = CLOSED_CAMPUSES,
    relocated_campuses: Mapping[str, str] = RELOCATED_CAMPUSES,
) -> DashboardData:
    """
    Fold normalized rows into dashboard collections.

    Parameters
    ----------
    rows : iterable of NormalizedRow
        Accepted rows in original row order.
    closed_campuses : iterable of str
        Campus names excluded from the campus output.
    relocated_campuses : mapping
        {campus name: new campus name}; those campuses are marked Relocated.

    Returns
    -------
    DashboardData
        Campuses and resolvers in first-seen order, evaluations in input
        order.
    """
    closed = frozenset(closed_campuses)
    campuses: dict[str, _CampusState] = {}
    resolvers: dict[str, _ResolverState] = {}
    evaluations: list[Evaluation] = []

    for row in rows:
        row_date = row.date_evaluated

        campus_state = campuses.get(row.campus_name)
        if campus_state is None:
            status, relocated_to = campus_status(row.campus_name, closed, relocated_campuses)
            campus_state = _CampusState(Campus(
                id=str(len(campuses) + 1),
                name=row.campus_name,
                location=row.location,
                last_evaluated=row_date,
                status=status,
                relocated_to=relocated_to,
            ))
            campuses[row.campus_name] = campus_state
        campus = campus_state.campus
        if _date_key(row_date) >= _date_key(campus.last_evaluated):
            campus.last_evaluated = row_date
        campus_state.resolver_emails.add(row.resolver_email)

        resolver_state = resolvers.get(row.resolver_email)
        if resolver_state is None:
            resolver_state = _ResolverState(Resolver(
                id=str(len(resolvers) + 1),
                name=row.resolver_name,
                email=row.resolver_email,
                last_activity=row_date,
            ))
            resolvers[row.resolver_email] = resolver_state
        resolver = resolver_state.resolver
        if len(row.resolver_name) > len(resolver.name):
            logger.debug("[aggregator] resolver %s renamed %r → %r", resolver.email, resolver.name, row.resolver_name)
            resolver.name = row.resolver_name
        resolver.total_evaluations += 1
        if not math.isnan(row.overall_score):
            resolver_state.score_sum += row.overall_score
            resolver_state.scored_count += 1
        resolver_state.campus_names.add(row.campus_name)
        if _date_key(row_date) >= _date_key(resolver.last_activity):
            resolver.last_activity = row_date

        evaluation = Evaluation(
            id=str(len(evaluations) + 1),
            campus_id=campus.id,
            resolver_id=resolver.id,
            resolver_name=row.resolver_name,
            campus_name=row.campus_name,
            overall_score=row.overall_score,
            competencies=list(row.competencies),
            feedback=row.feedback,
            competency_feedback=dict(row.competency_feedback),
            urgent_campus_issue=row.urgent_campus_issue,
            escalation_issue=row.escalation_issue,
            date_evaluated=row_date,
            status=row.status,
        )
        evaluations.append(evaluation)
        campus_state.evaluations.append(evaluation)

    campus_list: list[Campus] = []
    for state in campuses.values():
        campus = state.campus
        campus.total_resolvers = len(state.resolver_emails)
        campus.evaluation_count = len(state.evaluations)
        campus.average_score, campus.competency_averages = _latest_scores(state)
        campus.ranking = level_for_score(campus.average_score)
        if campus.status == CAMPUS_CLOSED:
            logger.info("[aggregator] campus %s is closed; omitted from campus list", campus.name)
            continue
        campus_list.append(campus)

    resolver_list: list[Resolver] = []
    for state in resolvers.values():
        resolver = state.resolver
        resolver.campuses_evaluated = len(state.campus_names)
        if state.scored_count:
            resolver.average_score_given = state.score_sum / state.scored_count
        resolver_list.append(resolver)

    logger.info(
        "[aggregator] %d campuses, %d resolvers, %d evaluations",
        len(campus_list), len(resolver_list), len(evaluations),
    )
    return DashboardData(campuses=campus_list, resolvers=resolver_list, evaluations=evaluations)
