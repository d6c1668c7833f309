"""
Row Normalizer

Turns one raw form row into a normalized evaluation record, or rejects it.

POLICY:
- A row without a campus name or a resolver name is rejected outright.
  It contributes nothing downstream.
- Missing resolver email is derived from the name.
- An unparseable competency level gets a filler score from
  fill_missing_score(). The competency is flagged ``filled`` so the
  substitution stays visible in reports.
"""

from __future__ import annotations

import logging
import math
import random
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Union

import pandas as pd

from campus_pulse.ingestion.column_mapper import (
    COMPETENCY_COLUMNS,
    IssueColumns,
    cell_text,
    find_commentary_columns,
    find_level_columns,
    get_field,
    resolve_issue_columns,
)
from campus_pulse.ingestion.content_validator import is_meaningful_commentary
from campus_pulse.ingestion.settings import (
    FILLER_SCORE_RANGE,
    MAX_COMPETENCY_SCORE,
    RESOLVER_EMAIL_DOMAIN,
)

logger = logging.getLogger(__name__)

_LEVEL_PATTERN = re.compile(r"Level\s*(\d+)", re.IGNORECASE)

_TIMESTAMP_FORMATS: tuple[str, ...] = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
    "%d/%m/%Y %H:%M:%S",
    "%Y/%m/%d",
    "%m/%d/%y",
)

EVALUATION_STATUS_COMPLETED: str = "Completed"

FillScore = Callable[[str], float]


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class Competency:
    category: str
    score: float
    max_score: int = MAX_COMPETENCY_SCORE
    level_text: str = ""
    filled: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "score": round_score(self.score),
            "maxScore": self.max_score,
            "levelText": self.level_text,
            "filled": self.filled,
        }


@dataclass
class NormalizedRow:
    """One accepted row, keyed by campus/resolver identity strings."""
    row_index: int
    campus_name: str
    resolver_name: str
    resolver_email: str
    email_derived: bool
    location: str
    evaluated_at: Optional[datetime]
    competencies: list[Competency]
    overall_score: float
    feedback: str = ""
    competency_feedback: dict[str, str] = field(default_factory=dict)
    urgent_campus_issue: str = ""
    escalation_issue: str = ""
    status: str = EVALUATION_STATUS_COMPLETED

    @property
    def date_evaluated(self) -> Optional[date]:
        return self.evaluated_at.date() if self.evaluated_at is not None else None

    @property
    def filled_count(self) -> int:
        return sum(1 for c in self.competencies if c.filled)


@dataclass
class RowRejection:
    row_index: int
    reason: str


@dataclass
class NormalizationContext:
    """Per-batch header lookups shared by every row."""
    headers: list[str]
    issue_columns: IssueColumns
    commentary_columns: dict[str, list[str]]
    level_columns: dict[str, list[str]]
    filler: FillScore

    @classmethod
    def from_headers(
        cls,
        headers: Iterable[str],
        filler: Optional[FillScore] = None,
    ) -> "NormalizationContext":
        header_list = list(headers)
        issue_columns = resolve_issue_columns(header_list)
        issue_headers = [h for h in (issue_columns.urgent, issue_columns.escalation) if h is not None]
        return cls(
            headers=header_list,
            issue_columns=issue_columns,
            commentary_columns=find_commentary_columns(header_list),
            level_columns=find_level_columns(header_list, exclude=issue_headers),
            filler=filler or fill_missing_score,
        )


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def parse_level(level_text: Any) -> Optional[int]:
    """'Level 5' -> 5, capped at 7. None when no level number is present."""
    if not level_text or not isinstance(level_text, str):
        return None
    match = _LEVEL_PATTERN.search(level_text)
    if not match:
        return None
    return min(MAX_COMPETENCY_SCORE, int(match.group(1)))


def fill_missing_score(seed: str) -> float:
    """
    Filler score for an unparseable level cell, in FILLER_SCORE_RANGE.

    Pseudo-random but seeded from the row identity, so re-running a sync
    over the same export yields the same scores. This papers over missing
    data and should be revisited; it is kept because the dashboard has
    always shown a score for every competency.
    """
    low, high = FILLER_SCORE_RANGE
    value = math.floor(random.Random(seed).uniform(low, high) * 10) / 10
    if value >= high:
        value = high - 0.1
    return value


def derive_email(name: str, domain: str = RESOLVER_EMAIL_DOMAIN) -> str:
    """'Asha Rao' -> 'asha.rao@<domain>'."""
    local = re.sub(r"\s+", ".", name.strip().lower())
    return f"{local}@{domain}"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a spreadsheet timestamp tolerantly. Return None if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    s = str(value).strip()
    if not s:
        return None
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


def mean_score(scores: Iterable[float]) -> float:
    """Arithmetic mean ignoring NaN. NaN when nothing is left."""
    valid = [s for s in scores if s is not None and not math.isnan(s)]
    if not valid:
        return math.nan
    return sum(valid) / len(valid)


def round_score(value: Optional[float]) -> Optional[float]:
    """Two decimals for output; None for a missing or NaN score."""
    if value is None or math.isnan(value):
        return None
    return round(value, 2)


# ---------------------------------------------------------------------------
# Row normalization
# ---------------------------------------------------------------------------


def _first_cell(row: Mapping[str, Any], headers: Iterable[str]) -> str:
    for header in headers:
        text = cell_text(row.get(header))
        if text:
            return text
    return ""


def _competencies(
    row: Mapping[str, Any],
    context: NormalizationContext,
    seed_prefix: str,
) -> list[Competency]:
    competencies: list[Competency] = []
    for category in COMPETENCY_COLUMNS:
        level_text = _first_cell(row, context.level_columns.get(category, []))
        score = parse_level(level_text)
        if score is None:
            filler = context.filler(f"{seed_prefix}|{category}")
            logger.debug(
                "[normalizer] %s: unparseable level %r, filler %.1f",
                category, level_text, filler,
            )
            competencies.append(Competency(category, float(filler), level_text=level_text, filled=True))
        else:
            competencies.append(Competency(category, float(score), level_text=level_text))
    return competencies


def _competency_feedback(
    row: Mapping[str, Any],
    context: NormalizationContext,
) -> dict[str, str]:
    feedback: dict[str, str] = {}
    for category, headers in context.commentary_columns.items():
        parts = [cell_text(row.get(h)) for h in headers]
        parts = [p for p in parts if is_meaningful_commentary(p)]
        if parts:
            feedback[category] = "\n".join(parts)
    return feedback


def _issue_text(row: Mapping[str, Any], header: Optional[str]) -> str:
    if header is None:
        return ""
    return cell_text(row.get(header))


def normalize_row(
    row: Mapping[str, Any],
    context: NormalizationContext,
    row_index: int = 0,
) -> Union[NormalizedRow, RowRejection]:
    """
    Normalize one raw row.

    Returns
    -------
    NormalizedRow
        For rows carrying both a campus name and a resolver name.
    RowRejection
        Otherwise. Rejections are logged, never raised.
    """
    campus_name = get_field(row, "campus_name")
    if not campus_name:
        logger.info("[normalizer] row %d skipped: missing campus name", row_index)
        return RowRejection(row_index, "missing campus name")

    resolver_name = get_field(row, "resolver_name")
    if not resolver_name:
        logger.info("[normalizer] row %d skipped: missing resolver name (campus %s)", row_index, campus_name)
        return RowRejection(row_index, "missing resolver name")

    explicit_email = get_field(row, "resolver_email").lower()
    email = explicit_email or derive_email(resolver_name)

    timestamp_text = get_field(row, "timestamp")
    evaluated_at = parse_timestamp(timestamp_text)
    if timestamp_text and evaluated_at is None:
        logger.warning("[normalizer] row %d: unparseable timestamp %r", row_index, timestamp_text)

    seed_prefix = f"{campus_name}|{resolver_name}|{timestamp_text}"
    competencies = _competencies(row, context, seed_prefix)

    return NormalizedRow(
        row_index=row_index,
        campus_name=campus_name,
        resolver_name=resolver_name,
        resolver_email=email,
        email_derived=not explicit_email,
        location=get_field(row, "location") or campus_name,
        evaluated_at=evaluated_at,
        competencies=competencies,
        overall_score=mean_score(c.score for c in competencies),
        feedback=get_field(row, "feedback"),
        competency_feedback=_competency_feedback(row, context),
        urgent_campus_issue=_issue_text(row, context.issue_columns.urgent),
        escalation_issue=_issue_text(row, context.issue_columns.escalation),
    )
