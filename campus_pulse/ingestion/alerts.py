"""
Urgent issue detection and notification gating.

Each answer to the urgent or escalation question moves through:

    Detected -> Rejected                 (not meaningful)
    Detected -> Eligible -> Suppressed   (fingerprint already logged)
    Detected -> Eligible -> Notified     (sent, then logged)
    Detected -> Eligible -> Failed       (alert log or notifier error)

A failure on one candidate never stops the scan. Failed candidates are
not logged, so the next sync tries them again. Mail delivery belongs to
the notifier; this module only decides who gets notified.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from campus_pulse.ingestion.alert_log import AlertLog, AlertLogError, alert_fingerprint
from campus_pulse.ingestion.column_mapper import (
    IssueColumns,
    cell_text,
    get_field,
    resolve_issue_columns,
)
from campus_pulse.ingestion.content_validator import is_meaningful
from campus_pulse.ingestion.settings import (
    ESCALATION_ISSUE_TYPE,
    UNKNOWN_CAMPUS,
    UNKNOWN_RESOLVER,
    URGENT_ISSUE_TYPE,
)

logger = logging.getLogger(__name__)

ISSUE_TYPES: tuple[str, ...] = (URGENT_ISSUE_TYPE, ESCALATION_ISSUE_TYPE)


class AlertOutcome(str, Enum):
    REJECTED = "Rejected"
    SUPPRESSED = "Suppressed"
    NOTIFIED = "Notified"
    FAILED = "Failed"


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class IssueCandidate:
    row_index: int
    campus_name: str
    resolver_name: str
    timestamp: str
    field: str
    content: Any
    issue_type: str

    @property
    def text(self) -> str:
        return cell_text(self.content)

    @property
    def fingerprint(self) -> str:
        return alert_fingerprint(self.campus_name, self.issue_type, self.text)


@dataclass
class NotificationRequest:
    campus_name: str
    resolver_name: str
    timestamp: str
    field: str
    content: str
    type: str

    @classmethod
    def from_candidate(cls, candidate: IssueCandidate) -> "NotificationRequest":
        return cls(
            campus_name=candidate.campus_name,
            resolver_name=candidate.resolver_name,
            timestamp=candidate.timestamp,
            field=candidate.field,
            content=candidate.text,
            type=candidate.issue_type,
        )

    def as_dict(self) -> dict[str, str]:
        return {
            "campusName": self.campus_name,
            "resolverName": self.resolver_name,
            "timestamp": self.timestamp,
            "field": self.field,
            "content": self.content,
            "type": self.type,
        }


@dataclass
class AlertDecision:
    candidate: IssueCandidate
    outcome: AlertOutcome
    fingerprint: Optional[str] = None
    error: Optional[str] = None


@dataclass
class AlertRun:
    decisions: list[AlertDecision] = field(default_factory=list)
    degraded: bool = False
    flags: list[str] = field(default_factory=list)

    def count(self, outcome: AlertOutcome) -> int:
        return sum(1 for d in self.decisions if d.outcome == outcome)

    @property
    def notified(self) -> list[AlertDecision]:
        return [d for d in self.decisions if d.outcome == AlertOutcome.NOTIFIED]


# ---------------------------------------------------------------------------
# Notifiers
# ---------------------------------------------------------------------------


class Notifier(Protocol):
    def send(self, request: NotificationRequest) -> None:
        ...


class OutboxNotifier:
    """Collects notification requests in memory for a mail relay to pick up."""

    def __init__(self) -> None:
        self.sent: list[NotificationRequest] = []

    def send(self, request: NotificationRequest) -> None:
        logger.warning(
            "[alerts] %s at %s reported by %s: %s",
            request.type, request.campus_name, request.resolver_name, request.content,
        )
        self.sent.append(request)


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


def detect_issues(
    row: Mapping[str, Any],
    issue_columns: IssueColumns,
    row_index: int = 0,
) -> list[IssueCandidate]:
    """Every non-empty answer to the urgent/escalation questions in one row."""
    campus_name = get_field(row, "campus_name", UNKNOWN_CAMPUS)
    resolver_name = get_field(row, "resolver_name", UNKNOWN_RESOLVER)
    timestamp = get_field(row, "timestamp") or datetime.now().isoformat(timespec="seconds")

    candidates: list[IssueCandidate] = []
    for issue_type in ISSUE_TYPES:
        header = issue_columns.header_for(issue_type)
        if header is None:
            continue
        content = row.get(header)
        if not cell_text(content):
            continue
        candidates.append(IssueCandidate(
            row_index=row_index,
            campus_name=campus_name,
            resolver_name=resolver_name,
            timestamp=timestamp,
            field=header,
            content=content,
            issue_type=issue_type,
        ))
    return candidates


def _gate(
    candidate: IssueCandidate,
    alert_log: AlertLog,
    notifier: Notifier,
    run: AlertRun,
) -> AlertDecision:
    if not is_meaningful(candidate.content):
        logger.debug("[alerts] row %d %s rejected: %r", candidate.row_index, candidate.issue_type, candidate.content)
        return AlertDecision(candidate, AlertOutcome.REJECTED)

    fingerprint = candidate.fingerprint
    try:
        eligible = alert_log.should_notify(fingerprint)
    except AlertLogError as e:
        logger.error("[alerts] alert log unavailable: %s", e)
        run.degraded = True
        run.flags.append(f"Alert log unavailable; row {candidate.row_index} {candidate.issue_type} not sent")
        return AlertDecision(candidate, AlertOutcome.FAILED, fingerprint, str(e))

    if not eligible:
        logger.info("[alerts] duplicate suppressed: %s", fingerprint)
        return AlertDecision(candidate, AlertOutcome.SUPPRESSED, fingerprint)

    try:
        notifier.send(NotificationRequest.from_candidate(candidate))
    except Exception as e:
        logger.exception("[alerts] notifier failed for %s", fingerprint)
        run.degraded = True
        run.flags.append(f"Notification failed for {candidate.campus_name} ({candidate.issue_type}): {e}")
        return AlertDecision(candidate, AlertOutcome.FAILED, fingerprint, str(e))

    try:
        alert_log.record_notified(fingerprint)
    except AlertLogError as e:
        logger.error("[alerts] sent but not logged: %s", e)
        run.degraded = True
        run.flags.append(f"Notification for {candidate.campus_name} sent but not logged; it may repeat")
    return AlertDecision(candidate, AlertOutcome.NOTIFIED, fingerprint)


def process_alerts(
    rows: Sequence[Mapping[str, Any]],
    alert_log: AlertLog,
    notifier: Notifier,
    headers: Optional[Iterable[str]] = None,
    issue_columns: Optional[IssueColumns] = None,
    recent_rows: Optional[int] = None,
) -> AlertRun:
    """
    Scan rows for urgent/escalation answers and notify each new one once.

    Parameters
    ----------
    rows : sequence of mappings
        Raw rows in sheet order.
    alert_log : AlertLog
        Fingerprints already notified.
    notifier : Notifier
        Receives one NotificationRequest per new issue.
    headers : iterable of str, optional
        Header list; defaults to the keys of the first row.
    issue_columns : IssueColumns, optional
        Pre-resolved question columns; resolved from ``headers`` otherwise.
    recent_rows : int, optional
        Only scan the last N rows.
    """
    run = AlertRun()
    if not rows:
        return run
    if issue_columns is None:
        header_list = list(headers) if headers is not None else list(rows[0].keys())
        issue_columns = resolve_issue_columns(header_list)
    if not issue_columns.any_found:
        logger.info("[alerts] no urgent or escalation question columns found")
        run.flags.append("No urgent/escalation question columns found; alerting skipped")
        return run

    start = 0
    if recent_rows is not None:
        start = max(0, len(rows) - recent_rows)

    for index in range(start, len(rows)):
        for candidate in detect_issues(rows[index], issue_columns, row_index=index):
            run.decisions.append(_gate(candidate, alert_log, notifier, run))

    logger.info(
        "[alerts] %d notified, %d suppressed, %d rejected, %d failed",
        run.count(AlertOutcome.NOTIFIED), run.count(AlertOutcome.SUPPRESSED),
        run.count(AlertOutcome.REJECTED), run.count(AlertOutcome.FAILED),
    )
    return run
