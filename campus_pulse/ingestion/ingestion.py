"""
Campus Pulse Sync Pipeline

raw rows -> Row Normalizer (per row) -> Aggregator (fold) -> dashboard
collections. The same raw rows also pass through alert gating.

CONTRACT ANCHORS
----------------
- Required logical columns: campus name + resolver name. A header set
  that cannot supply either is a hard halt.
- Row problems are isolated: a bad row is excluded and logged, and
  never stops the rows after it.
- Empty batch or zero valid rows -> status "no_data", not an exception.
- Alert log, notifier and store failures mark the result degraded; they
  never undo in-memory aggregation or alerts already sent.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

import pandas as pd

from campus_pulse.ingestion.aggregator import DashboardData, aggregate
from campus_pulse.ingestion.alert_log import AlertLog
from campus_pulse.ingestion.alerts import AlertOutcome, AlertRun, Notifier, OutboxNotifier, process_alerts
from campus_pulse.ingestion.column_mapper import (
    get_unmatched_columns,
    missing_required_fields,
    resolve_columns,
)
from campus_pulse.ingestion.normalizer import (
    FillScore,
    NormalizationContext,
    NormalizedRow,
    RowRejection,
    normalize_row,
)
from campus_pulse.ingestion.settings import (
    ALERT_LOG_FILENAME,
    ALERT_RECENT_ROWS,
    CLOSED_CAMPUSES,
    RELOCATED_CAMPUSES,
    SNAPSHOT_FILENAME,
    STATE_DIR,
)
from campus_pulse.ingestion.snapshot_store import SnapshotStore, StoreError

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_NO_DATA = "no_data"

_INVISIBLE = r"[\u200b\u200c\u200d\ufeff]"


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class PipelineError(Exception):
    """Structured halt error. Raised only when the batch cannot be read at all."""
    reason: str
    affected_file: str
    missing_or_invalid_fields: list[str]
    operator_fix_steps: list[str]

    def __str__(self) -> str:
        lines = [
            "═" * 60,
            "CAMPUS PULSE SYNC HALT",
            "═" * 60,
            f"Reason          : {self.reason}",
            f"Affected File   : {self.affected_file}",
        ]
        if self.missing_or_invalid_fields:
            lines.append(f"Missing/Invalid : {', '.join(self.missing_or_invalid_fields)}")
        lines.append("Fix Steps:")
        for i, step in enumerate(self.operator_fix_steps, 1):
            lines.append(f"  {i}. {step}")
        lines.append("═" * 60)
        return "\n".join(lines)


@dataclass
class ExclusionLog:
    reason: str
    count: int
    row_indices: list[int] = field(default_factory=list)


@dataclass
class SyncReport:
    """Everything the operator needs to judge one sync. No suppressed flags."""
    timestamp: str
    source: str
    status: str
    total_rows: int
    valid_rows: int
    excluded_rows: list[ExclusionLog]
    filled_competencies: int
    campus_count: int
    resolver_count: int
    alerts_notified: int
    alerts_suppressed: int
    alerts_rejected: int
    alerts_failed: int
    issue_columns: dict[str, str]
    alias_map: dict[str, str]
    unmatched_columns: list[str]
    degraded: bool
    flags: list[str]

    def as_text(self) -> str:
        lines = [
            "═" * 60,
            "CAMPUS PULSE SYNC REPORT",
            "═" * 60,
            f"Generated       : {self.timestamp}",
            f"Source          : {self.source}",
            f"Status          : {self.status.upper()}{' (DEGRADED)' if self.degraded else ''}",
            "",
            "ROWS",
            f"  Received      : {self.total_rows}",
            f"  Valid         : {self.valid_rows}",
            "",
            "EXCLUDED ROWS",
        ]
        if not self.excluded_rows:
            lines.append("  None")
        for ex in self.excluded_rows:
            lines.append(f"  {ex.reason}: {ex.count} rows")
        lines += [
            "",
            "AGGREGATES",
            f"  Campuses      : {self.campus_count}",
            f"  Resolvers     : {self.resolver_count}",
            f"  Filler scores : {self.filled_competencies}",
            "",
            "ALERTS",
            f"  Notified      : {self.alerts_notified}",
            f"  Suppressed    : {self.alerts_suppressed}",
            f"  Rejected      : {self.alerts_rejected}",
            f"  Failed        : {self.alerts_failed}",
        ]
        for issue_type, header in self.issue_columns.items():
            lines.append(f"  {issue_type}: '{header}'")
        lines += ["", "COLUMN ALIAS MAP"]
        for raw, logical in self.alias_map.items():
            lines.append(f"  '{raw}' → '{logical}'")
        lines.append(f"  Unmatched columns: {len(self.unmatched_columns)}")
        if self.flags:
            lines += ["", "FLAGS (all surfaced)"]
            for flag in self.flags:
                lines.append(f"  ⚑ {flag}")
        lines.append("═" * 60)
        return "\n".join(lines)


@dataclass
class SyncResult:
    data: DashboardData
    report: SyncReport
    alerts: AlertRun

    @property
    def degraded(self) -> bool:
        return self.report.degraded

    def as_dict(self) -> dict[str, Any]:
        payload = self.data.as_dict()
        payload["status"] = self.report.status
        payload["degraded"] = self.report.degraded
        return payload


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _mechanical_normalize(df: pd.DataFrame) -> tuple[pd.DataFrame, list[str]]:
    """
    Allowed mechanical normalization:
    - remove BOM/invisible characters from headers and cells
    - trim whitespace in cells (headers keep theirs; the column mapper
      tolerates it)

    Returns normalized df and a log of transformations.
    """
    log: list[str] = []
    df = df.copy()

    cleaned_columns = [re.sub(_INVISIBLE, "", str(c)) for c in df.columns]
    if cleaned_columns != [str(c) for c in df.columns]:
        log.append("Invisible characters removed from column headers")
    df.columns = cleaned_columns

    for col in df.columns:
        original = df[col].astype(str)
        df[col] = (
            original
            .str.replace(_INVISIBLE, "", regex=True)
            .str.strip()
        )
        if not df[col].equals(original):
            log.append(f"Mechanical normalize applied to column '{col}'")

    return df, log


def load_rows(path: str) -> tuple[list[str], list[dict[str, str]]]:
    """
    Read a CSV or Excel form export as (headers, rows). Every cell is text.

    Raises
    ------
    PipelineError
        When the file is missing or cannot be parsed.
    """
    if not Path(path).exists():
        raise PipelineError(
            reason="Export file not found",
            affected_file=path,
            missing_or_invalid_fields=[],
            operator_fix_steps=[
                f"Verify the path is correct: {path}",
                "Export the form responses sheet before running the sync.",
            ],
        )

    try:
        if Path(path).suffix.lower() == ".xlsx":
            df = pd.read_excel(path, dtype=str, keep_default_na=False, engine="openpyxl")
        else:
            df = pd.read_csv(path, dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError:
        logger.info("[ingestion] %s is empty", path)
        return [], []
    except Exception as e:
        raise PipelineError(
            reason="Export file is not parseable",
            affected_file=path,
            missing_or_invalid_fields=[],
            operator_fix_steps=[
                "Verify the file is a valid CSV or Excel export.",
                f"Parse error: {e}",
            ],
        )

    df, norm_log = _mechanical_normalize(df)
    for entry in norm_log:
        logger.debug("[ingestion] %s", entry)
    return list(df.columns), df.to_dict(orient="records")


def rows_from_values(values: Sequence[Sequence[Any]]) -> tuple[list[str], list[dict[str, Any]]]:
    """Sheet values with the header in row 0 -> (headers, rows)."""
    if not values:
        return [], []
    headers = [str(h) for h in values[0]]
    rows = []
    for raw in values[1:]:
        cells = list(raw) + [""] * (len(headers) - len(raw))
        rows.append({h: ("" if v is None else v) for h, v in zip(headers, cells)})
    return headers, rows


def _collect_headers(rows: Iterable[Mapping[str, Any]]) -> list[str]:
    headers: list[str] = []
    seen: set[str] = set()
    for row in rows:
        for key in row.keys():
            if key not in seen:
                seen.add(key)
                headers.append(key)
    return headers


def _group_exclusions(rejections: list[RowRejection]) -> list[ExclusionLog]:
    grouped: dict[str, ExclusionLog] = {}
    for rejection in rejections:
        entry = grouped.setdefault(rejection.reason, ExclusionLog(rejection.reason, 0))
        entry.count += 1
        entry.row_indices.append(rejection.row_index)
    return list(grouped.values())


def _derived_email_collisions(rows: Iterable[NormalizedRow]) -> dict[str, list[str]]:
    """Derived emails shared by differently spelled resolver names."""
    names: dict[str, set[str]] = {}
    for row in rows:
        if row.email_derived:
            names.setdefault(row.resolver_email, set()).add(row.resolver_name)
    return {email: sorted(n) for email, n in names.items() if len(n) > 1}


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def run_sync(
    rows: Sequence[Mapping[str, Any]],
    headers: Optional[Sequence[str]] = None,
    *,
    alert_log: Optional[AlertLog] = None,
    notifier: Optional[Notifier] = None,
    store: Optional[SnapshotStore] = None,
    filler: Optional[FillScore] = None,
    recent_rows: Optional[int] = ALERT_RECENT_ROWS,
    closed_campuses: Iterable[str] = CLOSED_CAMPUSES,
    relocated_campuses: Mapping[str, str] = RELOCATED_CAMPUSES,
    source: str = "batch",
) -> SyncResult:
    """
    Run one sync over a batch of raw rows.

    Parameters
    ----------
    rows : sequence of mappings
        Raw rows, header -> cell, in sheet order.
    headers : sequence of str, optional
        Header list. Defaults to every key seen across ``rows``.
    alert_log : AlertLog, optional
        Notified fingerprints. An in-memory log is used when a notifier is
        given without one.
    notifier : Notifier, optional
        Alerting runs only when a notifier is supplied.
    store : SnapshotStore, optional
        Receives the dashboard payload when there is data.
    filler : callable, optional
        Replacement for fill_missing_score.
    recent_rows : int, optional
        Restrict alert scanning to the last N rows.

    Returns
    -------
    SyncResult

    Raises
    ------
    PipelineError
        When the header set cannot supply a campus or resolver column.
    """
    timestamp = datetime.now().isoformat(timespec="seconds")
    flags: list[str] = []
    degraded = False
    rows = list(rows)
    header_list = list(headers) if headers is not None else _collect_headers(rows)

    # ------------------------------------------------------------------
    # STEP 1: Validate required logical columns
    # ------------------------------------------------------------------
    if rows:
        missing = missing_required_fields(header_list)
        if missing:
            raise PipelineError(
                reason="Required columns missing",
                affected_file=source,
                missing_or_invalid_fields=missing,
                operator_fix_steps=[
                    f"Add or rename the column(s) for: {', '.join(missing)}",
                    "Use a known header such as 'Choose the campus you are referring to' or 'Name'.",
                ],
            )

    # ------------------------------------------------------------------
    # STEP 2: Resolve columns (logged)
    # ------------------------------------------------------------------
    alias_map = resolve_columns(header_list, source)
    context = NormalizationContext.from_headers(header_list, filler=filler)
    issue_columns = {}
    for issue_type, header, method in (
        ("urgent", context.issue_columns.urgent, context.issue_columns.urgent_method),
        ("escalation", context.issue_columns.escalation, context.issue_columns.escalation_method),
    ):
        if header is not None:
            issue_columns[issue_type] = header
            if method == "fuzzy":
                flags.append(f"{issue_type} question matched by keyword, not exact wording: '{header}'")
    commentary_headers = {h for hs in context.commentary_columns.values() for h in hs}
    matched = set(alias_map) | set(issue_columns.values()) | commentary_headers
    unmatched = get_unmatched_columns(header_list, {h: "" for h in matched})

    # ------------------------------------------------------------------
    # STEP 3: Normalize rows (isolated)
    # ------------------------------------------------------------------
    accepted: list[NormalizedRow] = []
    rejections: list[RowRejection] = []
    for index, row in enumerate(rows):
        try:
            outcome = normalize_row(row, context, row_index=index)
        except Exception as e:
            logger.exception("[ingestion] row %d failed to normalize", index)
            rejections.append(RowRejection(index, "row processing error"))
            flags.append(f"Row {index} could not be processed: {e}")
            continue
        if isinstance(outcome, RowRejection):
            rejections.append(outcome)
        else:
            accepted.append(outcome)

    exclusions = _group_exclusions(rejections)
    for ex in exclusions:
        flags.append(f"{ex.count} rows excluded: {ex.reason}")
    for email, names in _derived_email_collisions(accepted).items():
        flags.append(f"Resolvers {names} share derived email {email} and were merged")
    filled = sum(r.filled_count for r in accepted)
    if filled:
        flags.append(f"{filled} competency scores were unparseable and received filler values")

    # ------------------------------------------------------------------
    # STEP 4: Aggregate
    # ------------------------------------------------------------------
    data = aggregate(accepted, closed_campuses=closed_campuses, relocated_campuses=relocated_campuses)
    status = STATUS_OK if accepted else STATUS_NO_DATA
    if status == STATUS_NO_DATA:
        flags.append("No valid rows in batch" if rows else "Empty batch")

    # ------------------------------------------------------------------
    # STEP 5: Alert gating
    # ------------------------------------------------------------------
    alerts = AlertRun()
    if notifier is not None and rows:
        alerts = process_alerts(
            rows,
            alert_log if alert_log is not None else AlertLog(),
            notifier,
            issue_columns=context.issue_columns,
            recent_rows=recent_rows,
        )
        degraded = degraded or alerts.degraded
        flags.extend(alerts.flags)

    # ------------------------------------------------------------------
    # STEP 6: Persist snapshot
    # ------------------------------------------------------------------
    if store is not None and status == STATUS_OK:
        try:
            store.save(data.as_dict(), record_count=len(rows))
        except StoreError as e:
            logger.error("[ingestion] snapshot not saved: %s", e)
            degraded = True
            flags.append(f"Dashboard store unavailable: {e}")

    report = SyncReport(
        timestamp=timestamp,
        source=source,
        status=status,
        total_rows=len(rows),
        valid_rows=len(accepted),
        excluded_rows=exclusions,
        filled_competencies=filled,
        campus_count=len(data.campuses),
        resolver_count=len(data.resolvers),
        alerts_notified=alerts.count(AlertOutcome.NOTIFIED),
        alerts_suppressed=alerts.count(AlertOutcome.SUPPRESSED),
        alerts_rejected=alerts.count(AlertOutcome.REJECTED),
        alerts_failed=alerts.count(AlertOutcome.FAILED),
        issue_columns=issue_columns,
        alias_map=alias_map,
        unmatched_columns=unmatched,
        degraded=degraded,
        flags=flags,
    )
    logger.info(
        "[ingestion] %s: %d/%d rows valid, status=%s, degraded=%s",
        source, len(accepted), len(rows), status, degraded,
    )
    return SyncResult(data=data, report=report, alerts=alerts)


def sync_file(path: str, state_dir: Optional[str] = None) -> SyncResult:
    """Load an export and sync it with the on-disk alert log and snapshot."""
    state = Path(state_dir) if state_dir else STATE_DIR
    headers, rows = load_rows(path)
    return run_sync(
        rows,
        headers,
        alert_log=AlertLog(state / ALERT_LOG_FILENAME),
        notifier=OutboxNotifier(),
        store=SnapshotStore(state / SNAPSHOT_FILENAME),
        source=Path(path).name,
    )


# ---------------------------------------------------------------------------
# CLI / direct execution
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if len(sys.argv) not in (2, 3):
        print("Usage: python -m campus_pulse.ingestion.ingestion <export.csv|xlsx> [state_dir]")
        sys.exit(1)

    try:
        result = sync_file(sys.argv[1], sys.argv[2] if len(sys.argv) == 3 else None)
        print(result.report.as_text())
        print(f"\nEvaluations ready for dashboard: {len(result.data.evaluations)}")
    except PipelineError as e:
        print(str(e))
        sys.exit(2)
