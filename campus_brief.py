#!/usr/bin/env python3
"""
Campus Pulse Network Brief
Plain-text leadership brief built from one sync's dashboard collections
Deterministic: same aggregates, same brief (apart from the Generated line)
"""

import hashlib
import sys
from datetime import datetime

import pandas as pd

from campus_pulse.ingestion.aggregator import poc_for_competency
from campus_pulse.ingestion.content_validator import is_meaningful
from campus_pulse.ingestion.export import campus_frame, evaluation_frame, resolver_frame
from campus_pulse.ingestion.settings import COMPETENCIES, MAX_LEVEL, MIN_LEVEL

# ============================================================================
# CONFIGURATION
# ============================================================================

# Campuses at or below this average are listed as needing support
SUPPORT_THRESHOLD = 3.0

# How many campuses / competencies each ranked section shows
TOP_N = 5

# Campus competency averages below this are routed to the campus POC
FOLLOW_UP_THRESHOLD = 4.0

RULE = "═" * 75

# ============================================================================
# STATISTICS CALCULATION
# ============================================================================

def calculate_campus_stats(data):
    """Calculate network statistics for the brief"""

    campuses = campus_frame(data)
    evaluations = evaluation_frame(data)
    resolvers = resolver_frame(data)

    level_counts = campuses['Ranking'].value_counts()
    level_distribution = {
        f"Level {n}": int(level_counts.get(f"Level {n}", 0))
        for n in range(MAX_LEVEL, MIN_LEVEL - 1, -1)
    }

    ranked = campuses.sort_values(['Average Score', 'Campus Name'], ascending=[False, True])

    urgent = [e for e in data.evaluations if is_meaningful(e.urgent_campus_issue)]
    escalations = [e for e in data.evaluations if is_meaningful(e.escalation_issue)]
    filled = sum(1 for e in data.evaluations for c in e.competencies if c.filled)
    scored = sum(len(e.competencies) for e in data.evaluations)

    stats = {
        'total_campuses': len(campuses),
        'total_evaluations': len(evaluations),
        'total_resolvers': len(resolvers),
        'network_average': float(campuses['Average Score'].mean()) if len(campuses) else 0.0,
        'level_distribution': level_distribution,
        'top_campuses': ranked.head(TOP_N).to_dict('records'),
        'support_campuses': ranked[ranked['Average Score'] <= SUPPORT_THRESHOLD].to_dict('records'),
        'urgent_count': len(urgent),
        'escalation_count': len(escalations),
        'open_issues': [(e, e.urgent_campus_issue) for e in urgent] + [(e, e.escalation_issue) for e in escalations],
        'filled_count': filled,
        'filled_pct': (filled / scored * 100) if scored > 0 else 0,
    }

    return stats

def calculate_competency_gaps(data):
    """Network-wide mean per competency, weakest first"""

    rows = [c.competency_averages for c in data.campuses if c.competency_averages]
    if not rows:
        return []

    frame = pd.DataFrame(rows, columns=COMPETENCIES)
    means = frame.mean(skipna=True).dropna().sort_values()
    return [(category, float(score)) for category, score in means.items()]

def calculate_competency_followups(data, threshold=FOLLOW_UP_THRESHOLD):
    """Low competencies per campus with their POC, weakest first within a campus"""

    followups = []
    for campus in data.campuses:
        low = sorted(
            ((category, score) for category, score in campus.competency_averages.items() if score < threshold),
            key=lambda item: (item[1], COMPETENCIES.index(item[0])),
        )
        for category, score in low:
            followups.append({
                'campus': campus.name,
                'competency': category,
                'score': float(score),
                'poc': poc_for_competency(campus.name, category),
            })
    return followups

# ============================================================================
# POSTURE DETERMINATION
# ============================================================================

def determine_network_posture(stats):
    """Determine network posture from the average score and open issues"""

    average = stats['network_average']

    if stats['escalation_count'] > 0 or average < 3:
        return "ESCALATE", "Campuses need senior team attention now."
    elif stats['urgent_count'] > 0 or average < 4:
        return "INTERVENE", "Open urgent issues or low scores need follow-up this cycle."
    elif average < 5:
        return "CALIBRATE", "Network is steady but below target. Monitor closely."
    else:
        return "STABLE", "Network operating at or above target levels."

# ============================================================================
# REPORT GENERATION
# ============================================================================

def _section(title):
    return f"{RULE}\n{title}\n{RULE}\n\n"

def generate_campus_brief(data, stats, posture, interpretation, gaps=None,
                          reporting_period="Monthly", period_name="Current Period"):
    """Generate the Network Brief text"""

    if gaps is None:
        gaps = calculate_competency_gaps(data)

    dates = [e.date_evaluated for e in data.evaluations if e.date_evaluated is not None]
    date_range = f"{min(dates).isoformat()} to {max(dates).isoformat()}" if dates else "No dated evaluations"

    # Data hash for determinism
    data_str = evaluation_frame(data).to_csv(index=False)
    data_hash = hashlib.md5(data_str.encode()).hexdigest()[:8]

    # ========== HEADER ==========
    report = f"""
{RULE}
CAMPUS PULSE NETWORK BRIEF
{RULE}

Reporting Period: {reporting_period}
Period: {period_name}
Date Range: {date_range}
Data Hash: {data_hash}
Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}

"""

    # ========== STATUS ==========
    report += _section("NETWORK STATUS AT A GLANCE")
    report += f"Decision Posture: {posture}\n"
    report += f"Leadership Interpretation: {interpretation}\n\n"
    report += f"Campuses: {stats['total_campuses']}\n"
    report += f"Evaluations: {stats['total_evaluations']}\n"
    report += f"Resolvers: {stats['total_resolvers']}\n"
    report += f"Network Average: {stats['network_average']:.2f} / 7\n\n"

    # ========== LEVEL DISTRIBUTION ==========
    report += _section("LEVEL DISTRIBUTION")
    total = stats['total_campuses']
    for level, count in stats['level_distribution'].items():
        pct = (count / total * 100) if total > 0 else 0
        report += f"  {level}: {count} ({pct:.1f}%)\n"
    report += "\n"

    # ========== TOP CAMPUSES ==========
    report += _section("TOP CAMPUSES")
    if stats['top_campuses']:
        for rank, row in enumerate(stats['top_campuses'], 1):
            report += f"{rank}. {row['Campus Name']}: {row['Average Score']:.2f} ({row['Ranking']}, {row['Total Resolvers']} resolvers)\n"
    else:
        report += "No campuses evaluated.\n"
    report += "\n"

    # ========== CAMPUSES NEEDING SUPPORT ==========
    report += _section("CAMPUSES NEEDING SUPPORT")
    if stats['support_campuses']:
        for row in stats['support_campuses']:
            report += f"• {row['Campus Name']}: {row['Average Score']:.2f} (last evaluated {row['Last Evaluated']})\n"
    else:
        report += f"No campus at or below {SUPPORT_THRESHOLD:.1f}.\n"
    report += "\n"

    # ========== COMPETENCY GAPS ==========
    report += _section("COMPETENCY GAPS")
    if gaps:
        for category, score in gaps[:TOP_N]:
            report += f"{category}: {score:.2f}\n"
    else:
        report += "No competency scores available.\n"
    report += "\n"

    # ========== COMPETENCY FOLLOW-UP ==========
    report += _section("COMPETENCY FOLLOW-UP")
    followups = calculate_competency_followups(data)
    if followups:
        for item in followups:
            owner = item['poc'] or "no POC assigned"
            report += f"• {item['campus']} / {item['competency']}: {item['score']:.2f} (POC: {owner})\n"
    else:
        report += f"No campus competency below {FOLLOW_UP_THRESHOLD:.1f}.\n"
    report += "\n"

    # ========== OPEN ISSUES ==========
    report += _section("OPEN ISSUES")
    report += f"Urgent Issues: {stats['urgent_count']}\n"
    report += f"Escalations: {stats['escalation_count']}\n\n"
    for evaluation, text in stats['open_issues']:
        report += f"• {evaluation.campus_name} ({evaluation.resolver_name}): {text}\n"
    report += "\n"

    # ========== DATA QUALITY ==========
    report += _section("DATA QUALITY")
    report += f"Filler scores: {stats['filled_count']} ({stats['filled_pct']:.1f}% of competency scores)\n"
    if stats['filled_pct'] >= 25:
        report += "Filler share is high. Scores for this period should be read with caution.\n"
    report += "\n"

    # ========== BOTTOM LINE ==========
    report += _section("BOTTOM LINE FOR LEADERSHIP")
    if posture == "ESCALATE":
        report += f"{stats['escalation_count']} escalations and a {stats['network_average']:.2f} network average demand senior team review.\n"
    elif posture == "INTERVENE":
        report += f"{stats['urgent_count']} urgent issues are open. Follow up before the next evaluation cycle.\n"
    elif posture == "CALIBRATE":
        weakest = gaps[0][0] if gaps else "the weakest competency"
        report += f"Network average {stats['network_average']:.2f}. Focus support on {weakest}.\n"
    else:
        report += "Continue current practices. Maintain monitoring for emerging patterns.\n"

    report += f"\n{RULE}\n"

    return report

def build_brief(data, reporting_period="Monthly", period_name="Current Period"):
    """Stats, posture and brief text in one call"""

    stats = calculate_campus_stats(data)
    posture, interpretation = determine_network_posture(stats)
    brief = generate_campus_brief(
        data, stats, posture, interpretation,
        reporting_period=reporting_period,
        period_name=period_name,
    )
    return stats, posture, brief

# ============================================================================
# CLI
# ============================================================================

if __name__ == "__main__":
    from campus_pulse.ingestion.ingestion import PipelineError, load_rows, run_sync

    if len(sys.argv) != 2:
        print("Usage: python campus_brief.py <export.csv|xlsx>")
        sys.exit(1)

    try:
        headers, rows = load_rows(sys.argv[1])
        result = run_sync(rows, headers)
    except PipelineError as e:
        print(str(e))
        sys.exit(2)

    _, _, brief = build_brief(result.data, period_name=datetime.now().strftime("%B %Y"))
    print(brief)
