"""
Tabular exports of the dashboard collections.

Column names are the ones operators see in the downloaded CSVs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import pandas as pd

from campus_pulse.ingestion.aggregator import DashboardData
from campus_pulse.ingestion.normalizer import round_score

logger = logging.getLogger(__name__)

CAMPUS_COLUMNS: list[str] = [
    "Campus Name", "Location", "Average Score", "Total Resolvers", "Ranking", "Last Evaluated", "Status",
]
RESOLVER_COLUMNS: list[str] = [
    "Resolver Name", "Email", "Campuses Evaluated", "Average Score Given", "Total Evaluations", "Last Activity",
]
EVALUATION_COLUMNS: list[str] = [
    "Campus", "Resolver", "Overall Score", "Date Evaluated", "Status", "Feedback",
]


def campus_frame(data: DashboardData) -> pd.DataFrame:
    records = [
        {
            "Campus Name": c.name,
            "Location": c.location,
            "Average Score": round_score(c.average_score),
            "Total Resolvers": c.total_resolvers,
            "Ranking": c.ranking,
            "Last Evaluated": c.last_evaluated,
            "Status": c.status,
        }
        for c in data.campuses
    ]
    return pd.DataFrame(records, columns=CAMPUS_COLUMNS)


def resolver_frame(data: DashboardData) -> pd.DataFrame:
    records = [
        {
            "Resolver Name": r.name,
            "Email": r.email,
            "Campuses Evaluated": r.campuses_evaluated,
            "Average Score Given": round_score(r.average_score_given),
            "Total Evaluations": r.total_evaluations,
            "Last Activity": r.last_activity,
        }
        for r in data.resolvers
    ]
    return pd.DataFrame(records, columns=RESOLVER_COLUMNS)


def evaluation_frame(data: DashboardData) -> pd.DataFrame:
    records = [
        {
            "Campus": e.campus_name,
            "Resolver": e.resolver_name,
            "Overall Score": round_score(e.overall_score),
            "Date Evaluated": e.date_evaluated,
            "Status": e.status,
            "Feedback": e.feedback,
        }
        for e in data.evaluations
    ]
    return pd.DataFrame(records, columns=EVALUATION_COLUMNS)


def competency_frame(data: DashboardData) -> pd.DataFrame:
    """One row per campus, one column per competency (latest-date averages)."""
    rows = {c.name: {k: round_score(v) for k, v in c.competency_averages.items()} for c in data.campuses}
    frame = pd.DataFrame.from_dict(rows, orient="index")
    frame.index.name = "Campus Name"
    return frame


def export_csv(frame: pd.DataFrame, path: Union[str, Path]) -> Path:
    """
    Write ``frame`` as UTF-8 CSV and return the path.

    A named index (the campus name of competency_frame) is written as the
    first column; an unnamed positional index is dropped.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(target, index=frame.index.name is not None)
    logger.info("[export] wrote %d rows to %s", len(frame), target)
    return target
