"""PDF rendering of a case audit trail."""

from datetime import datetime
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from trustline_api.export.audit_trail import AuditTrail
from trustline_api.export.streams import check_cancelled, dumps
from trustline_api.utils.time import isoformat

_GRID_STYLE = [
    ("ALIGN", (0, 0), (-1, -1), "LEFT"),
    ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
    ("TOPPADDING", (0, 0), (-1, -1), 5),
    ("LEFTPADDING", (0, 0), (-1, -1), 5),
    ("RIGHTPADDING", (0, 0), (-1, -1), 5),
    ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#dee2e6")),
]

_KEY_VALUE_STYLE = TableStyle(
    _GRID_STYLE
    + [
        ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#f8f9fa")),
        ("TEXTCOLOR", (0, 0), (0, -1), colors.HexColor("#495057")),
    ]
)

_LISTING_STYLE = TableStyle(
    _GRID_STYLE
    + [
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#2c3e50")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f8f9fa")]),
    ]
)


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        value = dumps(value)
    return escape(str(value))


def render_pdf(trail: AuditTrail, generated_at: datetime, cancel_event=None) -> bytes:
    """Build the whole PDF in memory. Cancellation is checked per table row."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=0.75 * inch,
        leftMargin=0.75 * inch,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
        title=f"Investigation {trail.case['case_number']}",
        invariant=1,
    )
    styles = getSampleStyleSheet()
    heading_style = ParagraphStyle(
        "CaseHeading",
        parent=styles["Heading2"],
        fontSize=13,
        textColor=colors.HexColor("#2c3e50"),
        spaceAfter=8,
        spaceBefore=14,
    )
    cell_style = ParagraphStyle("TableCell", parent=styles["Normal"], fontSize=8, leading=10)

    def cell(value):
        return Paragraph(_text(value), cell_style)

    def listing(header, rows, widths):
        data = [[cell(h) for h in header]]
        for row in rows:
            check_cancelled(cancel_event)
            data.append([cell(v) for v in row])
        if len(data) == 1:
            return Paragraph("None recorded.", styles["Normal"])
        table = Table(data, colWidths=widths, repeatRows=1)
        table.setStyle(_LISTING_STYLE)
        return table

    case = trail.case
    story = [
        Paragraph(f"Investigation {_text(case['case_number'])}", styles["Title"]),
        Paragraph(f"Generated at {_text(isoformat(generated_at))}", styles["Normal"]),
        Spacer(1, 0.2 * inch),
        Paragraph("<b>Case</b>", heading_style),
    ]

    case_rows = []
    for name, value in case.items():
        check_cancelled(cancel_event)
        case_rows.append([cell(name), cell(value)])
    case_table = Table(case_rows, colWidths=[1.8 * inch, 5.2 * inch])
    case_table.setStyle(_KEY_VALUE_STYLE)
    story.append(case_table)

    story.append(Paragraph("<b>Notes</b>", heading_style))
    story.append(
        listing(
            ("Created", "Type", "Author", "Note"),
            ((n["created_at"], n["note_type"], n["created_by"], n["note"]) for n in trail.notes),
            [1.5 * inch, 0.8 * inch, 1.1 * inch, 3.6 * inch],
        )
    )

    story.append(Paragraph("<b>Evidence</b>", heading_style))
    story.append(
        listing(
            ("Added", "Type", "Reference", "Resolved record"),
            (
                (e["added_at"], e["evidence_type"], e["evidence_id"], e["record"] if e["resolved"] else "unresolved")
                for e in trail.evidence
            ),
            [1.5 * inch, 1.0 * inch, 1.5 * inch, 3.0 * inch],
        )
    )

    for title, entries in (("Case history", trail.history()), ("Related activity", trail.related_activity())):
        story.append(Paragraph(f"<b>{title}</b>", heading_style))
        story.append(
            listing(
                ("Time", "Action", "Severity", "Actor", "Details"),
                ((a["created_at"], a["action"], a["severity"], a["user_id"], a["details"]) for a in entries),
                [1.5 * inch, 1.5 * inch, 0.7 * inch, 1.1 * inch, 2.2 * inch],
            )
        )

    doc.build(story)
    return buffer.getvalue()
