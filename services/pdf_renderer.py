import base64
import binascii
import logging
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

logger = logging.getLogger(__name__)

_GRID = [
    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
    ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
    ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
]


def _p(text, style):
    return Paragraph(escape(str(text if text is not None else "-")), style)


def _signature_flowable(data, style):
    """data:image/...;base64 URIs become images; anything else is printed as a marker."""
    if not data:
        return Paragraph("", style)

    if data.startswith("data:image"):
        try:
            raw = base64.b64decode(data.split(",", 1)[1])
            return Image(BytesIO(raw), width=110, height=40, kind="proportional")
        except (IndexError, ValueError, OSError, binascii.Error):
            logger.warning("Unreadable signature image, printing marker instead")
            return Paragraph("[signature]", style)

    return _p(data, style)


def render_document(fields) -> bytes:
    """Builds the leave form PDF from the resolved field/signature model."""
    buffer = BytesIO()

    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=40,
        leftMargin=40,
        topMargin=50,
        bottomMargin=40,
        title=fields.get("title") or "Leave Request",
    )

    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        name="Header",
        fontSize=14,
        leading=18,
        alignment=1,  # center
        spaceAfter=20,
    ))
    styles.add(ParagraphStyle(
        name="Small",
        fontSize=9,
        textColor=colors.grey,
    ))

    employee = fields.get("employee") or {}
    leave = fields.get("leave") or {}
    balance = fields.get("balance")
    decision = fields.get("decision") or {}
    signatures = fields.get("signature") or {}

    elements = [
        _p(fields.get("company") or "", styles["Small"]),
        _p(fields.get("title") or "Leave Request", styles["Header"]),
    ]

    # ===== Employee / request =====
    info = [
        ["Employee", employee.get("name")],
        ["Department", employee.get("department")],
        ["Position", employee.get("position")],
        ["Request", f"#{leave.get('request_id')} ({leave.get('kind')})"],
        ["Type", leave.get("type")],
        ["Period", f"{leave.get('start_date')} - {leave.get('end_date')}"],
        ["Working days", leave.get("total_days")],
        ["Reason", leave.get("reason")],
        ["Status", decision.get("status")],
    ]
    elements.append(Table(
        [[_p(k, styles["Normal"]), _p(v, styles["Normal"])] for k, v in info],
        colWidths=[110, 370],
        style=TableStyle([("GRID", (0, 0), (-1, -1), 0.5, colors.grey)]),
    ))

    # ===== Balance =====
    if balance:
        elements.append(Spacer(1, 14))
        elements.append(Paragraph("<b>Leave balance</b>", styles["Heading3"]))
        elements.append(Table(
            [
                ["Entitled", "Used", "Pending", "Available"],
                [balance.get("entitled"), balance.get("used"), balance.get("pending"), balance.get("available")],
            ],
            colWidths=[120, 120, 120, 120],
            style=TableStyle(_GRID),
        ))

    # ===== Decisions =====
    elements.append(Spacer(1, 14))
    elements.append(Paragraph("<b>Decisions</b>", styles["Heading3"]))
    rows = decision.get("decisions") or []
    if rows:
        table = [["Role", "Decision", "By", "Date", "Comments"]]
        for d in rows:
            table.append([
                d.get("role"),
                "Approved" if d.get("approved") else "Rejected",
                d.get("decided_by"),
                d.get("decided_at"),
                _p(d.get("comments") or "", styles["Small"]),
            ])
        elements.append(Table(table, colWidths=[90, 60, 110, 90, 130], style=TableStyle(_GRID)))
    else:
        elements.append(Paragraph("No decisions recorded.", styles["Normal"]))

    # ===== Signatures =====
    elements.append(Spacer(1, 14))
    elements.append(Paragraph("<b>Signatures</b>", styles["Heading3"]))
    sig_rows = [["Role", "Signer", "Signature", "Signed at"]]
    for role, sig in signatures.items():
        sig_rows.append([
            _p(sig.get("label") or role, styles["Normal"]),
            _p(sig.get("signer_name") or ("required" if sig.get("required") else "-"), styles["Normal"]),
            _signature_flowable(sig.get("data"), styles["Small"]),
            _p(sig.get("signed_at") or "", styles["Small"]),
        ])
    elements.append(Table(sig_rows, colWidths=[110, 120, 130, 120], style=TableStyle(_GRID)))

    elements.append(Spacer(1, 20))
    elements.append(_p(f"Generated {fields.get('generated_at') or ''}", styles["Small"]))

    doc.build(elements)
    return buffer.getvalue()
