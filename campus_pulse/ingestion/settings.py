"""
Campus Pulse configuration.

Every tunable the pipeline depends on lives here as a module constant.
State paths may be redirected with CAMPUS_PULSE_STATE_DIR; nothing else
is read from the environment.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

MAX_COMPETENCY_SCORE: int = 7
MIN_LEVEL: int = 0
MAX_LEVEL: int = 7

# Filler range for unparseable level cells: [low, high)
FILLER_SCORE_RANGE: tuple[float, float] = (3.0, 7.0)

# Fixed competency order. Evaluations always list competencies in this order.
COMPETENCIES: list[str] = [
    "Learning Environment & Peer Support",
    "Hackathons",
    "Etiocracy, Co-Creation & Ownership",
    "Houses and Reward Systems",
    "Life Skills Implementation",
    "Gratitude",
    "Campus interactions",
    "Vipassana",
    "Meditation",
    "Process Principles Understanding & Implementation",
    "Academics",
]

# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

RESOLVER_EMAIL_DOMAIN: str = "navgurukul.org"

UNKNOWN_CAMPUS: str = "Unknown Campus"
UNKNOWN_RESOLVER: str = "Unknown Resolver"

# ---------------------------------------------------------------------------
# Campus lifecycle
# ---------------------------------------------------------------------------

# Operator-supplied. Names must match the campus answer in the form
# exactly (e.g. "Dantewada Campus").

# Closed campuses: evaluations stay visible, the campus itself is not listed.
CLOSED_CAMPUSES: frozenset[str] = frozenset()

# Relocated campuses: {old name: new name}
RELOCATED_CAMPUSES: dict[str, str] = {}

# ---------------------------------------------------------------------------
# Competency points of contact
# ---------------------------------------------------------------------------

# {campus: {contact name: [competencies they follow up]}}
# Campus names compare case-insensitive. A competency listed here may be
# the full form label; lookups also match on containment either way.
CAMPUS_POCS: dict[str, dict[str, list[str]]] = {
    "Pune": {
        "Divya Sonla": [
            "Learning Environment & Peer Support",
            "Hackathons",
        ],
        "Sayna Singh": [
            "Etiocracy, Co-Creation & Ownership",
            "Houses and Reward Systems",
            "Life Skills Implementation",
        ],
        "Muktai Indraksha": [
            "Gratitude",
            "Campus interactions",
        ],
        "Bushra Khatun": [
            "Vipassana",
            "Meditation (Ana Pana for most and students attending Vipassana Camps)",
            "Process Principles Understanding & Implementation",
        ],
    },
}

# ---------------------------------------------------------------------------
# Alerting
# ---------------------------------------------------------------------------

ALERT_LOG_KEY: str = "SENT_URGENT_EMAILS"
ALERT_LOG_LIMIT: int = 100
ALERT_FINGERPRINT_CONTENT_CHARS: int = 50

URGENT_ISSUE_TYPE: str = "Urgent Campus Issue"
ESCALATION_ISSUE_TYPE: str = "Escalation Required"

# Scan only the most recent N submissions for alerts (None = all rows).
ALERT_RECENT_ROWS: Optional[int] = None

# ---------------------------------------------------------------------------
# State paths
# ---------------------------------------------------------------------------

STATE_DIR: Path = Path(os.environ.get("CAMPUS_PULSE_STATE_DIR", ".campus_pulse"))
ALERT_LOG_FILENAME: str = "alert_log.json"
SNAPSHOT_FILENAME: str = "dashboard_snapshot.json"
