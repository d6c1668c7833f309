import streamlit as st
import pandas as pd
import tempfile
import os
from datetime import datetime
from io import BytesIO
from pathlib import Path
from reportlab.lib.pagesizes import letter
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from reportlab.lib.enums import TA_CENTER

from campus_brief import build_brief
from campus_pulse.ingestion.alert_log import AlertLog
from campus_pulse.ingestion.alerts import OutboxNotifier
from campus_pulse.ingestion.export import campus_frame, competency_frame, evaluation_frame, resolver_frame
from campus_pulse.ingestion.ingestion import PipelineError, load_rows, run_sync
from campus_pulse.ingestion.settings import ALERT_LOG_FILENAME, SNAPSHOT_FILENAME, STATE_DIR
from campus_pulse.ingestion.snapshot_store import SnapshotStore

# Page config
st.set_page_config(
    page_title="Campus Pulse",
    page_icon="📊",
    layout="wide",
    initial_sidebar_state="expanded"
)

# Custom CSS
st.markdown("""
<style>
    :root {
        --primary-color: #1e3a8a;
        --secondary-color: #3b82f6;
        --accent-color: #10b981;
        --text-dark: #1f2937;
        --text-light: #6b7280;
        --border-color: #e5e7eb;
    }

    #MainMenu {visibility: hidden;}
    footer {visibility: hidden;}

    h1 {
        color: var(--primary-color);
        font-weight: 700;
        letter-spacing: -0.02em;
    }

    .subtitle {
        color: var(--text-light);
        font-size: 1.1rem;
        margin-bottom: 2rem;
        padding-bottom: 1.5rem;
        border-bottom: 2px solid var(--border-color);
    }

    [data-testid="stMetricValue"] {
        font-size: 2rem;
        font-weight: 700;
        color: var(--primary-color);
    }

    .stDownloadButton > button {
        background-color: var(--accent-color);
        color: white;
        border: none;
        border-radius: 0.5rem;
        font-weight: 600;
    }
</style>
""", unsafe_allow_html=True)

POSTURE_COLORS = {
    'STABLE': '#d1fae5',
    'CALIBRATE': '#fef3c7',
    'INTERVENE': '#fed7aa',
    'ESCALATE': '#fecaca',
}

# PDF Generation
def generate_campus_brief_pdf(brief_text, posture, period_name):
    """Generate PDF for the Network Brief"""
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter, topMargin=0.75*inch, bottomMargin=0.75*inch)
    story = []

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'CustomTitle',
        parent=styles['Heading1'],
        fontSize=24,
        textColor=colors.HexColor('#1e3a8a'),
        spaceAfter=6,
        alignment=TA_CENTER
    )
    subtitle_style = ParagraphStyle(
        'CustomSubtitle',
        parent=styles['Normal'],
        fontSize=11,
        textColor=colors.HexColor('#6b7280'),
        spaceAfter=20,
        alignment=TA_CENTER
    )
    heading_style = ParagraphStyle(
        'CustomHeading',
        parent=styles['Heading2'],
        fontSize=14,
        textColor=colors.HexColor('#1e3a8a'),
        spaceBefore=12,
        spaceAfter=8
    )
    body_style = ParagraphStyle(
        'CustomBody',
        parent=styles['Normal'],
        fontSize=10,
        textColor=colors.HexColor('#1f2937'),
        spaceAfter=6,
        leading=14
    )

    story.append(Paragraph("Campus Pulse Network Brief", title_style))
    story.append(Paragraph(period_name, subtitle_style))
    story.append(Spacer(1, 0.2*inch))

    # Posture callout box
    posture_table = Table([[f"Decision Posture: {posture}"]], colWidths=[6.5*inch])
    posture_table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, -1), colors.HexColor(POSTURE_COLORS.get(posture, '#f3f4f6'))),
        ('TEXTCOLOR', (0, 0), (-1, -1), colors.HexColor('#1f2937')),
        ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
        ('FONTNAME', (0, 0), (-1, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 14),
        ('TOPPADDING', (0, 0), (-1, -1), 12),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 12),
    ]))
    story.append(posture_table)
    story.append(Spacer(1, 0.3*inch))

    for line in brief_text.split('\n'):
        line = line.strip()
        if not line or '═' in line:
            continue
        # Section headers are all caps
        if line.isupper() and len(line) > 10:
            story.append(Spacer(1, 0.15*inch))
            story.append(Paragraph(line, heading_style))
        elif line.startswith('Decision Posture:') or line.startswith('Network Average:'):
            story.append(Paragraph(f"<b>{line}</b>", body_style))
        else:
            story.append(Paragraph(line.replace('&', '&amp;').replace('<', '&lt;'), body_style))

    doc.build(story)
    buffer.seek(0)
    return buffer


def render_brief(brief_text):
    section_content = []
    for line in brief_text.split('\n'):
        if '═' in line:
            continue
        stripped = line.strip()
        if stripped and stripped.isupper() and len(stripped) > 10:
            if section_content:
                st.markdown('<br>'.join(section_content), unsafe_allow_html=True)
                section_content = []
            st.markdown(f"#### {stripped}")
        elif stripped:
            section_content.append(line.replace('  ', '&nbsp;&nbsp;'))
    if section_content:
        st.markdown('<br>'.join(section_content), unsafe_allow_html=True)


def csv_download(frame, label, filename):
    st.download_button(
        label=label,
        data=frame.to_csv(index=False).encode('utf-8'),
        file_name=filename,
        mime="text/csv",
        use_container_width=True
    )


# Header
st.markdown("# 📊 Campus Pulse")
st.markdown('<div class="subtitle">Campus evaluation rollups and urgent issue alerts</div>', unsafe_allow_html=True)

# Sidebar
with st.sidebar:
    st.markdown("## About This Tool")
    st.markdown("""
    **Provides:**
    - Campus, resolver and evaluation tables
    - Network Brief (PDF)
    - Urgent / escalation alerts, sent once per issue

    **Required Columns:**
    - Campus (e.g. *Choose the campus you are referring to*)
    - Resolver name (e.g. *Name*)

    **Optional Columns:**
    - Email Address, Timestamp
    - One level column per competency
    - Urgent and escalation questions
    """)
    st.markdown("---")
    state_dir = st.text_input("State directory", value=str(STATE_DIR))

# Report configuration
col1, col2 = st.columns(2)
with col1:
    reporting_period = st.selectbox("Reporting Period", options=["Monthly", "Weekly", "Quarterly"])
with col2:
    period_name = st.text_input("Period Name", value=datetime.now().strftime("%B %Y"))

st.markdown("## Upload Form Responses")
uploaded_file = st.file_uploader(
    "Choose a file",
    type=['csv', 'xlsx'],
    help="Upload the evaluation form responses export",
    label_visibility="collapsed"
)

if uploaded_file is not None:
    try:
        # load_rows reads from disk
        suffix = Path(uploaded_file.name).suffix
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
            tmp.write(uploaded_file.getvalue())
        try:
            headers, rows = load_rows(tmp.name)
        finally:
            os.unlink(tmp.name)

        st.success(f"✅ File loaded successfully! Found **{len(rows)} responses**")

        if st.button("🚀 Sync", type="primary", use_container_width=True):
            state = Path(state_dir)
            notifier = OutboxNotifier()
            with st.spinner("Processing evaluations..."):
                result = run_sync(
                    rows,
                    headers,
                    alert_log=AlertLog(state / ALERT_LOG_FILENAME),
                    notifier=notifier,
                    store=SnapshotStore(state / SNAPSHOT_FILENAME),
                    source=uploaded_file.name,
                )

            if result.report.status == "no_data":
                st.warning("⚠️ No valid evaluations in this file")
                st.code(result.report.as_text())
                st.stop()

            if result.degraded:
                st.warning("⚠️ Sync completed with degraded downstream services. See Sync Report.")

            data = result.data
            stats, posture, brief = build_brief(data, reporting_period=reporting_period, period_name=period_name)

            st.markdown("### Key Findings")
            col1, col2, col3, col4 = st.columns(4)
            with col1:
                st.metric("Decision Posture", posture)
            with col2:
                st.metric("Campuses", stats['total_campuses'])
            with col3:
                st.metric("Evaluations", stats['total_evaluations'])
            with col4:
                st.metric("New Alerts", result.report.alerts_notified)

            tab1, tab2, tab3, tab4, tab5 = st.tabs(
                ["📄 Network Brief", "🏫 Campuses", "🧑 Resolvers", "📋 Evaluations", "🔎 Sync Report"]
            )

            with tab1:
                render_brief(brief)
                clean_period = period_name.replace(' ', '_').replace(',', '').replace('/', '-')
                st.download_button(
                    label="📥 Download Network Brief (PDF)",
                    data=generate_campus_brief_pdf(brief, posture, period_name),
                    file_name=f"campus_pulse_brief_{clean_period}.pdf",
                    mime="application/pdf",
                    use_container_width=True
                )

            with tab2:
                campuses = campus_frame(data)
                st.dataframe(campuses, use_container_width=True)
                st.markdown("#### Competency averages (latest evaluation date)")
                st.dataframe(competency_frame(data), use_container_width=True)
                csv_download(campuses, "📥 Download Campuses (CSV)", "campuses.csv")

            with tab3:
                resolvers = resolver_frame(data)
                st.dataframe(resolvers, use_container_width=True)
                csv_download(resolvers, "📥 Download Resolvers (CSV)", "resolvers.csv")

            with tab4:
                evaluations = evaluation_frame(data)
                st.dataframe(evaluations, use_container_width=True)
                csv_download(evaluations, "📥 Download Evaluations (CSV)", "evaluations.csv")

            with tab5:
                st.code(result.report.as_text())
                if notifier.sent:
                    st.markdown("#### Notifications queued this sync")
                    st.dataframe(pd.DataFrame([r.as_dict() for r in notifier.sent]), use_container_width=True)

    except PipelineError as e:
        st.error("❌ This file cannot be synced")
        st.code(str(e))

    except Exception as e:
        st.error(f"❌ Error processing file: {str(e)}")
        with st.expander("See error details"):
            st.exception(e)

else:
    st.info("👆 Upload the form responses export to get started")
