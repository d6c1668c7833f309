"""
Campus Pulse Column Mapping Engine

Header alias library for the campus evaluation form exports.

RULES:
- Headers are never addressed by position.
- Exact candidates are compared case-insensitive with surrounding
  whitespace stripped. Substring candidates are opt-in per field.
- All exact candidates are tried before any substring candidate.
  Candidate order defines precedence.
- Same input always produces same output.
- Unknown headers are reported, never silently dropped.

Public API:
  get_column_value(row, candidates, default) -> str
  get_field(row, field, default) -> str
  find_headers(headers, candidates) -> list[str]
  resolve_columns(headers, file_label) -> dict[str, str]
  get_unmatched_columns(headers, resolved_map) -> list[str]
  resolve_issue_columns(headers) -> IssueColumns
  find_commentary_columns(headers) -> dict[str, list[str]]
  find_level_columns(headers, exclude) -> dict[str, list[str]]
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from campus_pulse.ingestion.settings import (
    COMPETENCIES,
    ESCALATION_ISSUE_TYPE,
    URGENT_ISSUE_TYPE,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Logical field names
# ---------------------------------------------------------------------------

LOGICAL_FIELDS: frozenset[str] = frozenset({
    "campus_name",
    "resolver_name",
    "resolver_email",
    "timestamp",
    "location",
    "feedback",
})

REQUIRED_FIELDS: list[str] = ["campus_name", "resolver_name"]

# ---------------------------------------------------------------------------
# Form revision alias libraries
# ---------------------------------------------------------------------------
# Each section maps raw header variants seen in one revision of the
# evaluation form (or import path) to a logical field. Within a field,
# variants are tried in the order they first appear across sections.
#
# OVERLAP RULE: the same variant may appear in several sections provided
# it maps to the same field.
# ---------------------------------------------------------------------------

# ── Google Form, first revision ─────────────────────────────────────────────
_FORM_V1_VARIANTS: dict[str, str] = {
    "Choose the campus you are referring to": "campus_name",
    "Name":                                   "resolver_name",
    "Email Address":                          "resolver_email",
    "Timestamp":                              "timestamp",
    "Any other feedback":                     "feedback",
}

# ── Google Form, revised wording ────────────────────────────────────────────
_FORM_V2_VARIANTS: dict[str, str] = {
    "Choose the campus you are referring to": "campus_name",
    "Campus Name":                            "campus_name",
    "Name":                                   "resolver_name",
    "Your Name":                              "resolver_name",
    "Resolver Name":                          "resolver_name",
    "Email Address":                          "resolver_email",
    "Email":                                  "resolver_email",
    "Timestamp":                              "timestamp",
    "Campus Location":                        "location",
    "Overall Feedback":                       "feedback",
    "Any other feedback":                     "feedback",
}

# ── Legacy responses API / hand-built CSV ───────────────────────────────────
_MANUAL_IMPORT_VARIANTS: dict[str, str] = {
    "campus":         "campus_name",
    "name":           "resolver_name",
    "email":          "resolver_email",
    "timestamp":      "timestamp",
    "Date Evaluated": "timestamp",
    "Date":           "timestamp",
    "Location":       "location",
    "Feedback":       "feedback",
}

_ALL_SOURCES: list[tuple[str, dict[str, str]]] = [
    ("Form v1",       _FORM_V1_VARIANTS),
    ("Form v2",       _FORM_V2_VARIANTS),
    ("Manual import", _MANUAL_IMPORT_VARIANTS),
]

# Substring candidates, tried only after every exact variant has missed.
_SUBSTRING_VARIANTS: dict[str, list[str]] = {
    "campus_name": ["choose the campus"],
    "feedback":    ["overall feedback"],
}

# ---------------------------------------------------------------------------
# Competency columns
# ---------------------------------------------------------------------------
# Level cells arrive as a bare competency header, the full form label, or
# a grid question "Rate the campus [Gratitude]". Any other header naming a
# competency keyword is a level column too, unless it is a commentary or
# issue question. Commentary columns are found by keyword. A header
# mentioning several keywords belongs to the competency whose keyword
# appears first in it.

# Form labels longer than the category name.
_COMPETENCY_LABELS: dict[str, list[str]] = {
    "Meditation": ["Meditation (Ana Pana for most and students attending Vipassana Camps)"],
}

_COMPETENCY_KEYWORDS: dict[str, list[str]] = {
    "Learning Environment & Peer Support":               ["learning environment", "peer support"],
    "Hackathons":                                        ["hackathon"],
    "Etiocracy, Co-Creation & Ownership":                ["etiocracy", "co-creation", "ownership"],
    "Houses and Reward Systems":                         ["houses", "reward system"],
    "Life Skills Implementation":                        ["life skills"],
    "Gratitude":                                         ["gratitude"],
    "Campus interactions":                               ["campus interaction"],
    "Vipassana":                                         ["vipassana"],
    "Meditation":                                        ["meditation", "ana pana"],
    "Process Principles Understanding & Implementation": ["process principles"],
    "Academics":                                         ["academic"],
}

# ---------------------------------------------------------------------------
# Urgent / escalation questions
# ---------------------------------------------------------------------------

URGENT_QUESTION: str = (
    "Is there anything that you find pressing in the campus, that needs urgent attention?"
)
ESCALATION_QUESTION: str = (
    "Is there anything that you find in the campus, that directly needs escalation?"
)

_URGENT_PATTERNS: list[str] = ["pressing", "urgent", "attention", "campus.*urgent", "urgent.*campus"]
_ESCALATION_PATTERNS: list[str] = ["escalation", "escalate", "mailed.*senior", "senior.*team", "directly.*needs"]


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldCandidates:
    """Ordered header candidates for one logical field."""
    exact: tuple[str, ...]
    contains: tuple[str, ...] = ()


@dataclass(frozen=True)
class CompetencyColumns:
    category: str
    level: FieldCandidates
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class IssueColumns:
    """Headers holding the urgent and escalation answers for one batch."""
    urgent: Optional[str]
    escalation: Optional[str]
    urgent_method: str = "missing"
    escalation_method: str = "missing"

    def header_for(self, issue_type: str) -> Optional[str]:
        if issue_type == URGENT_ISSUE_TYPE:
            return self.urgent
        if issue_type == ESCALATION_ISSUE_TYPE:
            return self.escalation
        raise ValueError(f"Unknown issue type: {issue_type!r}")

    @property
    def any_found(self) -> bool:
        return self.urgent is not None or self.escalation is not None


# ---------------------------------------------------------------------------
# Build the candidate tables at module load time
# ---------------------------------------------------------------------------


def _normalize_header(raw: Any) -> str:
    """Lowercase + strip. Used for comparison only."""
    return str(raw).strip().lower()


def _build_field_candidates() -> dict[str, FieldCandidates]:
    """
    Merge all form revision dicts into per-field ordered candidate tuples.

    Raises ValueError if the same normalized variant maps to different
    fields in different sections (unresolvable conflict).
    """
    owner: dict[str, str] = {}
    ordered: dict[str, list[str]] = {name: [] for name in sorted(LOGICAL_FIELDS)}
    for source_name, variants in _ALL_SOURCES:
        for raw_variant, field_name in variants.items():
            if field_name not in LOGICAL_FIELDS:
                raise ValueError(
                    f"Alias library error in '{source_name}': variant '{raw_variant}' "
                    f"maps to unknown field '{field_name}'."
                )
            normalized_variant = _normalize_header(raw_variant)
            if normalized_variant in owner:
                if owner[normalized_variant] != field_name:
                    raise ValueError(
                        f"Alias library conflict detected in '{source_name}': "
                        f"variant '{raw_variant}' (normalized: '{normalized_variant}') "
                        f"maps to '{field_name}' but was already mapped to "
                        f"'{owner[normalized_variant]}'. Remove or reconcile the conflicting entry."
                    )
                continue
            owner[normalized_variant] = field_name
            ordered[field_name].append(normalized_variant)

    return {
        name: FieldCandidates(
            exact=tuple(variants),
            contains=tuple(v.lower() for v in _SUBSTRING_VARIANTS.get(name, [])),
        )
        for name, variants in ordered.items()
    }


def _build_competency_columns() -> dict[str, CompetencyColumns]:
    columns: dict[str, CompetencyColumns] = {}
    for category in COMPETENCIES:
        key = category.lower()
        labels = [_normalize_header(label) for label in _COMPETENCY_LABELS.get(category, [])]
        columns[category] = CompetencyColumns(
            category=category,
            level=FieldCandidates(exact=(key, *labels), contains=(f"[{key}]", f"[{key} ")),
            keywords=tuple(_COMPETENCY_KEYWORDS.get(category, [key])),
        )
    return columns


# Module-level tables, built once and never mutated.
FIELD_CANDIDATES: dict[str, FieldCandidates] = _build_field_candidates()
COMPETENCY_COLUMNS: dict[str, CompetencyColumns] = _build_competency_columns()


# ---------------------------------------------------------------------------
# Cell access
# ---------------------------------------------------------------------------


def cell_text(value: Any) -> str:
    """Cell value as trimmed text; None and NaN read as empty."""
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def _as_candidates(candidates: Union[FieldCandidates, Sequence[str]]) -> FieldCandidates:
    if isinstance(candidates, FieldCandidates):
        return candidates
    return FieldCandidates(exact=tuple(_normalize_header(c) for c in candidates))


def find_headers(
    headers: Iterable[str],
    candidates: Union[FieldCandidates, Sequence[str]],
) -> list[str]:
    """
    Return the headers matching ``candidates`` in precedence order.

    Every exact candidate is checked (in order) before any substring
    candidate. A header appears at most once in the result.
    """
    resolved = _as_candidates(candidates)
    header_list = list(headers)
    normalized = [(h, _normalize_header(h)) for h in header_list]
    found: list[str] = []

    for candidate in resolved.exact:
        wanted = _normalize_header(candidate)
        for header, norm in normalized:
            if norm == wanted and header not in found:
                found.append(header)

    for candidate in resolved.contains:
        fragment = candidate.lower()
        for header, norm in normalized:
            if fragment in norm and header not in found:
                found.append(header)

    return found


def get_column_value(
    row: Mapping[str, Any],
    candidates: Union[FieldCandidates, Sequence[str]],
    default: str = "",
) -> str:
    """
    Return the first non-empty cell among the headers matching ``candidates``.

    Parameters
    ----------
    row : Mapping[str, Any]
        One raw row, header -> cell.
    candidates : FieldCandidates or sequence of str
        Header candidates. A plain sequence is treated as exact candidates.
    default : str
        Returned when no matching header holds a non-empty value.
    """
    for header in find_headers(row.keys(), candidates):
        text = cell_text(row[header])
        if text:
            return text
    return default


def get_field(row: Mapping[str, Any], field_name: str, default: str = "") -> str:
    """Table-driven lookup of a logical field."""
    return get_column_value(row, FIELD_CANDIDATES[field_name], default)


# ---------------------------------------------------------------------------
# Header set inspection
# ---------------------------------------------------------------------------


def resolve_columns(headers: Iterable[str], file_label: str) -> dict[str, str]:
    """
    Resolve raw headers to logical field names.

    Competency level columns resolve to ``"competency:<category>"``.

    Returns
    -------
    dict[str, str]
        {raw_header: logical_key} for every header that matched. Preserves
        header order. Unmatched headers are NOT included.
    """
    header_list = list(headers)
    owners: dict[str, str] = {}
    for field_name, candidates in FIELD_CANDIDATES.items():
        for header in find_headers(header_list, candidates):
            owners.setdefault(header, field_name)
    for category, level_headers in find_level_columns(header_list).items():
        for header in level_headers:
            owners.setdefault(header, f"competency:{category}")

    resolved: dict[str, str] = {}
    for header in header_list:
        if header in owners:
            resolved[header] = owners[header]
            logger.info("[column_mapper] %s: '%s' → '%s'", file_label, header, owners[header])
    return resolved


def get_unmatched_columns(
    headers: Iterable[str],
    resolved_map: Mapping[str, str],
) -> list[str]:
    """Raw headers with no entry in ``resolved_map``, in original order."""
    return [h for h in headers if h not in resolved_map]


def missing_required_fields(headers: Iterable[str]) -> list[str]:
    """Required logical fields that no header can supply."""
    header_list = list(headers)
    return [
        name for name in REQUIRED_FIELDS
        if not find_headers(header_list, FIELD_CANDIDATES[name])
    ]


# ---------------------------------------------------------------------------
# Urgent / escalation columns
# ---------------------------------------------------------------------------


def _exact_question_header(headers: Sequence[str], question: str) -> Optional[str]:
    for header in headers:
        if question in str(header):
            return header
    return None


def _fuzzy_question_header(
    headers: Sequence[str],
    patterns: Sequence[str],
    exclude: Optional[str],
) -> Optional[str]:
    best_header: Optional[str] = None
    best_score = 0
    for header in headers:
        if header == exclude:
            continue
        score = sum(1 for p in patterns if re.search(p, str(header), re.IGNORECASE))
        if score > best_score:
            best_header, best_score = header, score
    return best_header


def resolve_issue_columns(headers: Iterable[str]) -> IssueColumns:
    """
    Locate the urgent and escalation question columns.

    Stage 1: header containing the exact question text.
    Stage 2 (per type, only when stage 1 missed): keyword-regex scoring,
    highest score wins, first header wins ties. A header claimed by one
    type is never reused for the other.
    """
    header_list = list(headers)

    urgent = _exact_question_header(header_list, URGENT_QUESTION)
    escalation = _exact_question_header(header_list, ESCALATION_QUESTION)
    urgent_method = "exact" if urgent is not None else "missing"
    escalation_method = "exact" if escalation is not None else "missing"

    if urgent is None:
        urgent = _fuzzy_question_header(header_list, _URGENT_PATTERNS, exclude=escalation)
        if urgent is not None:
            urgent_method = "fuzzy"
    if escalation is None:
        escalation = _fuzzy_question_header(header_list, _ESCALATION_PATTERNS, exclude=urgent)
        if escalation is not None:
            escalation_method = "fuzzy"

    if urgent_method == "fuzzy" or escalation_method == "fuzzy":
        logger.warning(
            "[column_mapper] issue questions matched by keyword: urgent=%r (%s), escalation=%r (%s)",
            urgent, urgent_method, escalation, escalation_method,
        )
    return IssueColumns(
        urgent=urgent,
        escalation=escalation,
        urgent_method=urgent_method,
        escalation_method=escalation_method,
    )


# ---------------------------------------------------------------------------
# Competency commentary columns
# ---------------------------------------------------------------------------


def _is_commentary_header(norm: str) -> bool:
    if "why" in norm or "marked" in norm:
        return True
    return "anything" in norm and "share" in norm


def _first_keyword_position(norm: str, keywords: Sequence[str]) -> int:
    positions = [norm.find(k) for k in keywords if k in norm]
    return min(positions) if positions else -1


def _keyword_owner(norm: str) -> Optional[str]:
    owner: Optional[str] = None
    owner_position = -1
    for category, columns in COMPETENCY_COLUMNS.items():
        position = _first_keyword_position(norm, columns.keywords)
        if position >= 0 and (owner is None or position < owner_position):
            owner, owner_position = category, position
    return owner


def find_commentary_columns(headers: Iterable[str]) -> dict[str, list[str]]:
    """
    Map each competency to its "why did you mark this level" and
    "anything else to share" columns, in header order.
    """
    commentary: dict[str, list[str]] = {category: [] for category in COMPETENCY_COLUMNS}
    for header in headers:
        norm = _normalize_header(header)
        if not _is_commentary_header(norm):
            continue
        owner = _keyword_owner(norm)
        if owner is not None:
            commentary[owner].append(header)
    return commentary


# ---------------------------------------------------------------------------
# Competency level columns
# ---------------------------------------------------------------------------


def find_level_columns(
    headers: Iterable[str],
    exclude: Iterable[str] = (),
) -> dict[str, list[str]]:
    """
    Map each competency to the headers holding its level cell, in
    precedence order.

    Commentary headers and headers in ``exclude`` are never level columns.
    A header belongs to at most one competency: the first whose exact or
    grid candidates match it, otherwise the one whose keyword appears
    earliest in it. Headers of a logical field never match by keyword.
    """
    skipped = set(exclude)
    header_list = [
        h for h in headers
        if h not in skipped and not _is_commentary_header(_normalize_header(h))
    ]
    levels: dict[str, list[str]] = {category: [] for category in COMPETENCY_COLUMNS}
    claimed: set[str] = set()

    for category, columns in COMPETENCY_COLUMNS.items():
        for header in find_headers(header_list, columns.level):
            if header not in claimed:
                levels[category].append(header)
                claimed.add(header)

    field_headers = {
        header
        for candidates in FIELD_CANDIDATES.values()
        for header in find_headers(header_list, candidates)
    }
    for header in header_list:
        if header in claimed or header in field_headers:
            continue
        owner = _keyword_owner(_normalize_header(header))
        if owner is not None:
            levels[owner].append(header)
            claimed.add(header)
    return levels
