"""
Claim Resolution Engine - Discrepancy Report Renderer

Fixed-layout PDF for the legal package:
1. Header - property, claim number, loss type, incident date, adjuster
2. Line-item table grouped by category (groups sorted alphabetically)
3. Subtotal / overhead & profit / total footer
4. Comparison table with a total-underpayment footer (only when discrepancies exist)

Every page carries the disclaimer footer and a "Page X of Y" marker.
"""
from __future__ import annotations
import io
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas
from reportlab.platypus import (
    HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle,
)

from ...models.analysis import ComparisonResult, GeneratedEstimate, LineItem, PMBrainAnalysis

logger = logging.getLogger(__name__)

REPORT_FILENAME = "Discrepancy-Report.pdf"

DISCLAIMER = (
    "Prepared for legal review. Estimates reflect industry pricing at the time of generation "
    "and are not an appraisal or a coverage determination."
)

# ── Colors ──
NAVY = HexColor("#0f172a")
SLATE = HexColor("#475569")
MUTED = HexColor("#94a3b8")
BORDER = HexColor("#cbd5e1")
HEADER_BG = HexColor("#1e293b")
ROW_SHADE = HexColor("#f1f5f9")
CATEGORY_BG = HexColor("#e2e8f0")
WHITE = HexColor("#ffffff")
RED = HexColor("#b91c1c")


@dataclass
class ReportContext:
    """Claim + property snapshot printed in the report header."""
    property_address: str
    claim_number: Optional[str]
    loss_type: str
    incident_date: Optional[date]
    adjuster_name: Optional[str]
    carrier_name: Optional[str]
    owner_name: Optional[str]
    estimate: GeneratedEstimate
    comparison: Optional[ComparisonResult] = None
    pm_brain: Optional[PMBrainAnalysis] = None
    generated_at: Optional[datetime] = None


def _money(value: float) -> str:
    if value < 0:
        return f"-${abs(value):,.2f}"
    return f"${value:,.2f}"


def _build_styles() -> Dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "title", parent=base["Normal"], fontName="Helvetica-Bold",
            fontSize=16, leading=20, textColor=NAVY, alignment=TA_CENTER, spaceAfter=4,
        ),
        "subtitle": ParagraphStyle(
            "subtitle", parent=base["Normal"], fontName="Helvetica",
            fontSize=9, textColor=SLATE, alignment=TA_CENTER, spaceAfter=10,
        ),
        "section": ParagraphStyle(
            "section", parent=base["Normal"], fontName="Helvetica-Bold",
            fontSize=11, textColor=NAVY, spaceBefore=12, spaceAfter=6,
        ),
        "body": ParagraphStyle(
            "body", parent=base["Normal"], fontName="Helvetica",
            fontSize=9, leading=12, textColor=NAVY,
        ),
        "cell": ParagraphStyle(
            "cell", parent=base["Normal"], fontName="Helvetica", fontSize=8, leading=10,
        ),
        "meta_label": ParagraphStyle(
            "meta_label", parent=base["Normal"], fontName="Helvetica", fontSize=8, textColor=SLATE,
        ),
        "meta_value": ParagraphStyle(
            "meta_value", parent=base["Normal"], fontName="Helvetica-Bold", fontSize=9, textColor=NAVY,
        ),
    }


class NumberedCanvas(canvas.Canvas):
    """Canvas that defers page output so each footer knows the page total."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_page_states: List[dict] = []

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self._draw_footer(total)
            super().showPage()
        super().save()

    def _draw_footer(self, page_count: int):
        width, _ = self._pagesize
        self.saveState()
        self.setStrokeColor(BORDER)
        self.setLineWidth(0.5)
        self.line(0.75 * inch, 0.75 * inch, width - 0.75 * inch, 0.75 * inch)
        self.setFont("Helvetica-Oblique", 7)
        self.setFillColor(MUTED)
        self.drawString(0.75 * inch, 0.55 * inch, DISCLAIMER)
        self.setFont("Helvetica", 8)
        self.drawRightString(width - 0.75 * inch, 0.38 * inch, f"Page {self._pageNumber} of {page_count}")
        self.restoreState()


# =============================================================================
# SECTIONS
# =============================================================================

def _add_header(story: list, styles: Dict[str, ParagraphStyle], ctx: ReportContext):
    generated = (ctx.generated_at or datetime.utcnow()).strftime("%B %d, %Y")
    story.append(Paragraph("ESTIMATE DISCREPANCY REPORT", styles["title"]))
    story.append(Paragraph(f"Generated {generated}", styles["subtitle"]))

    incident = ctx.incident_date.strftime("%B %d, %Y") if ctx.incident_date else "N/A"
    loss_type = (ctx.loss_type or "").strip().title() or "N/A"
    rows = [
        ("Property", ctx.property_address, "Claim Number", ctx.claim_number or "N/A"),
        ("Loss Type", loss_type, "Incident Date", incident),
        ("Adjuster", ctx.adjuster_name or "N/A", "Carrier", ctx.carrier_name or "N/A"),
    ]
    if ctx.owner_name:
        rows.append(("Property Owner", ctx.owner_name, "", ""))

    data = [
        [
            Paragraph(escape(a), styles["meta_label"]),
            Paragraph(escape(b), styles["meta_value"]),
            Paragraph(escape(c), styles["meta_label"]),
            Paragraph(escape(d), styles["meta_value"]),
        ]
        for a, b, c, d in rows
    ]
    table = Table(data, colWidths=[1.1 * inch, 2.4 * inch, 1.1 * inch, 2.4 * inch])
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), HexColor("#f8fafc")),
        ("BOX", (0, 0), (-1, -1), 0.5, BORDER),
        ("INNERGRID", (0, 0), (-1, -1), 0.5, BORDER),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]))
    story.append(table)
    story.append(Spacer(1, 8))


def group_line_items(items: List[LineItem]) -> List[tuple]:
    """(category, items) pairs with categories sorted alphabetically."""
    groups: Dict[str, List[LineItem]] = {}
    for item in items:
        category = (item.category or "").strip() or "General"
        groups.setdefault(category, []).append(item)
    return [(category, groups[category]) for category in sorted(groups, key=str.lower)]


def _add_line_items(story: list, styles: Dict[str, ParagraphStyle], estimate: GeneratedEstimate):
    story.append(Paragraph("INDUSTRY ESTIMATE", styles["section"]))

    data = [["Description", "Qty", "Unit", "Unit Cost", "Total"]]
    commands = [
        ("BACKGROUND", (0, 0), (-1, 0), HEADER_BG),
        ("TEXTCOLOR", (0, 0), (-1, 0), WHITE),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
        ("GRID", (0, 0), (-1, -1), 0.25, BORDER),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ]

    shade = False
    for category, items in group_line_items(estimate.line_items):
        row = len(data)
        data.append([category, "", "", "", ""])
        commands.extend([
            ("SPAN", (0, row), (-1, row)),
            ("BACKGROUND", (0, row), (-1, row), CATEGORY_BG),
            ("FONTNAME", (0, row), (-1, row), "Helvetica-Bold"),
            ("ALIGN", (0, row), (-1, row), "LEFT"),
        ])
        for item in items:
            row = len(data)
            data.append([
                Paragraph(escape(item.description), styles["cell"]),
                f"{item.quantity:,.2f}",
                item.unit,
                _money(item.unit_cost),
                _money(item.total),
            ])
            if shade:
                commands.append(("BACKGROUND", (0, row), (-1, row), ROW_SHADE))
            shade = not shade

    footer_start = len(data)
    data.append(["Subtotal", "", "", "", _money(estimate.subtotal)])
    data.append(["Overhead & Profit", "", "", "", _money(estimate.overhead_profit)])
    data.append(["TOTAL", "", "", "", _money(estimate.total)])
    commands.extend([
        ("FONTNAME", (0, footer_start), (-1, -1), "Helvetica-Bold"),
        ("LINEABOVE", (0, footer_start), (-1, footer_start), 1, NAVY),
        ("ALIGN", (0, footer_start), (0, -1), "LEFT"),
    ])

    table = Table(data, colWidths=[3.3 * inch, 0.7 * inch, 0.6 * inch, 1.1 * inch, 1.3 * inch], repeatRows=1)
    table.setStyle(TableStyle(commands))
    story.append(table)


def _add_comparison(story: list, styles: Dict[str, ParagraphStyle], comparison: ComparisonResult):
    story.append(Paragraph("CARRIER COMPARISON", styles["section"]))

    data = [["Item", "Industry", "Carrier", "Delta", "Justification"]]
    commands = [
        ("BACKGROUND", (0, 0), (-1, 0), HEADER_BG),
        ("TEXTCOLOR", (0, 0), (-1, 0), WHITE),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("ALIGN", (1, 0), (3, -1), "RIGHT"),
        ("GRID", (0, 0), (-1, -1), 0.25, BORDER),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]
    for index, item in enumerate(comparison.discrepancies):
        data.append([
            Paragraph(escape(item.item), styles["cell"]),
            _money(item.industry_price),
            _money(item.carrier_price),
            _money(item.delta),
            Paragraph(escape(item.justification), styles["cell"]),
        ])
        if index % 2 == 1:
            commands.append(("BACKGROUND", (0, len(data) - 1), (-1, len(data) - 1), ROW_SHADE))

    data.append(["TOTAL UNDERPAYMENT", "", "", _money(comparison.summary.total_delta), ""])
    commands.extend([
        ("SPAN", (0, -1), (2, -1)),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("TEXTCOLOR", (3, -1), (3, -1), RED),
        ("LINEABOVE", (0, -1), (-1, -1), 1, NAVY),
        ("ALIGN", (0, -1), (0, -1), "LEFT"),
    ])

    table = Table(data, colWidths=[1.9 * inch, 0.95 * inch, 0.95 * inch, 0.95 * inch, 2.25 * inch], repeatRows=1)
    table.setStyle(TableStyle(commands))
    story.append(table)


def _add_strategy_summary(story: list, styles: Dict[str, ParagraphStyle], pm_brain: PMBrainAnalysis):
    story.append(Paragraph("SETTLEMENT ASSESSMENT", styles["section"]))
    story.append(Paragraph(
        escape(f"Classification: {pm_brain.status.value.replace('_', ' ')}. {pm_brain.status_reason}"),
        styles["body"],
    ))
    if pm_brain.plain_english_summary:
        story.append(Spacer(1, 4))
        story.append(Paragraph(escape(pm_brain.plain_english_summary), styles["body"]))
    for dispute in pm_brain.coverage_disputes:
        story.append(Paragraph(
            escape(f"- {dispute.item} [{dispute.status.upper()}]: {dispute.contractor_position}"),
            styles["body"],
        ))


# =============================================================================
# ENTRY POINT
# =============================================================================

def render_discrepancy_report(ctx: ReportContext) -> bytes:
    """Render the report and return the PDF bytes."""
    styles = _build_styles()
    story: list = []

    _add_header(story, styles, ctx)
    _add_line_items(story, styles, ctx.estimate)
    if ctx.comparison is not None and ctx.comparison.discrepancies:
        _add_comparison(story, styles, ctx.comparison)
    if ctx.pm_brain is not None:
        _add_strategy_summary(story, styles, ctx.pm_brain)
    story.append(Spacer(1, 12))
    story.append(HRFlowable(width="100%", thickness=0.5, color=BORDER))

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        topMargin=0.6 * inch,
        bottomMargin=1.0 * inch,
        title=f"Discrepancy Report - {ctx.claim_number or 'Claim'}",
        author="Claim Resolution Engine",
    )
    doc.build(story, canvasmaker=NumberedCanvas)

    pdf_bytes = buffer.getvalue()
    buffer.close()
    logger.debug(f"Rendered discrepancy report for claim {ctx.claim_number}: {len(pdf_bytes)} bytes")
    return pdf_bytes
