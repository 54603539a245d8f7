"""Utilities for exporting the LogiTrack management report to PDF."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Sequence

from ..models import RequestStatus, TransportRequest, driver_label
from ..pricing import compute_margin
from ..reports import ReportTotals

DEFAULT_TITLE = "LogiTrack Management Report"
DEFAULT_SUBTITLE = "Transport requests, revenue and driver costs for the period"

_STATUS_LABELS = {
    RequestStatus.PENDING: "Pending",
    RequestStatus.IN_PROGRESS: "In progress",
    RequestStatus.COMPLETED: "Completed",
}

_REPORTLAB_CACHE: dict[str, object] | None = None


def _load_reportlab() -> dict[str, object]:
    global _REPORTLAB_CACHE
    if _REPORTLAB_CACHE is None:
        try:
            from reportlab.lib import colors  # type: ignore
            from reportlab.lib.pagesizes import A4, landscape  # type: ignore
            from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet  # type: ignore
            from reportlab.lib.units import mm  # type: ignore
            from reportlab.platypus import (  # type: ignore
                HRFlowable,
                Paragraph,
                SimpleDocTemplate,
                Spacer,
                Table,
                TableStyle,
            )
        except ImportError as exc:  # pragma: no cover - dependency guard
            raise RuntimeError(
                "ReportLab is required for PDF export. Install it with 'pip install reportlab'."
            ) from exc
        _REPORTLAB_CACHE = {
            "colors": colors,
            "A4": A4,
            "landscape": landscape,
            "ParagraphStyle": ParagraphStyle,
            "getSampleStyleSheet": getSampleStyleSheet,
            "mm": mm,
            "HRFlowable": HRFlowable,
            "Paragraph": Paragraph,
            "SimpleDocTemplate": SimpleDocTemplate,
            "Spacer": Spacer,
            "Table": Table,
            "TableStyle": TableStyle,
        }
    return _REPORTLAB_CACHE


def _format_currency(value: float) -> str:
    return f"R$ {value:,.2f}"


def _format_date(value: datetime | None) -> str:
    return value.strftime("%d/%m/%Y") if value else "-"


def export_report_pdf(
    output_path: Path | str,
    requests: Sequence[TransportRequest],
    totals: ReportTotals,
    *,
    period_start: date | None = None,
    period_end: date | None = None,
    driver_names: dict[str, str] | None = None,
    generated_at: datetime | None = None,
    title: str = DEFAULT_TITLE,
    subtitle: str = DEFAULT_SUBTITLE,
) -> Path:
    """Render the filtered requests and their totals into a PDF and return the written path."""

    path = Path(output_path)
    if path.suffix.lower() != ".pdf":
        path = path.with_suffix(".pdf")
    path.parent.mkdir(parents=True, exist_ok=True)

    rl = _load_reportlab()
    colors = rl["colors"]
    A4 = rl["A4"]
    landscape = rl["landscape"]
    ParagraphStyle = rl["ParagraphStyle"]
    getSampleStyleSheet = rl["getSampleStyleSheet"]
    mm = rl["mm"]
    Paragraph = rl["Paragraph"]
    SimpleDocTemplate = rl["SimpleDocTemplate"]
    Spacer = rl["Spacer"]
    Table = rl["Table"]
    TableStyle = rl["TableStyle"]
    HRFlowable = rl["HRFlowable"]

    styles = getSampleStyleSheet()
    base_font = "Helvetica"

    title_style = ParagraphStyle(
        "ReportTitle",
        parent=styles["Heading1"],
        fontName=base_font,
        fontSize=20,
        leading=24,
        spaceAfter=4,
        textColor=colors.HexColor("#0f1623"),
    )
    subtitle_style = ParagraphStyle(
        "ReportSubtitle",
        parent=styles["Normal"],
        fontName=base_font,
        fontSize=11,
        textColor=colors.HexColor("#4e5d78"),
        spaceAfter=12,
    )
    body_style = ParagraphStyle(
        "ReportBody",
        parent=styles["Normal"],
        fontName=base_font,
        fontSize=9,
        leading=12,
        textColor=colors.HexColor("#1a2739"),
    )
    secondary_style = ParagraphStyle(
        "ReportSecondary",
        parent=body_style,
        fontSize=8.5,
        textColor=colors.HexColor("#4e5d78"),
    )
    section_header_style = ParagraphStyle(
        "ReportSection",
        parent=styles["Heading2"],
        fontName=base_font,
        fontSize=14,
        leading=18,
        textColor=colors.HexColor("#0f1623"),
        spaceBefore=14,
        spaceAfter=6,
    )

    generated = generated_at or datetime.now()
    driver_names = driver_names or {}

    doc = SimpleDocTemplate(
        str(path),
        pagesize=landscape(A4),
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=22 * mm,
        bottomMargin=18 * mm,
        title=title,
    )

    def _scaled_widths(*fractions: float) -> list[float]:
        total = sum(fractions)
        if total == 0:
            raise ValueError("Column width fractions must not sum to zero.")
        return [doc.width * (fraction / total) for fraction in fractions]

    if period_start or period_end:
        period_text = (
            f"{period_start.strftime('%d/%m/%Y') if period_start else '...'}"
            f" to {period_end.strftime('%d/%m/%Y') if period_end else '...'}"
        )
    else:
        period_text = "All records"

    summary_data = [
        ["Period", period_text, "Requests", str(totals.count)],
        ["Gross revenue", _format_currency(totals.revenue), "Driver cost", _format_currency(totals.driver_cost)],
        ["Taxes (8%)", _format_currency(totals.tax), "Net profit", _format_currency(totals.net_profit)],
        ["Received", _format_currency(totals.received), "Receivable", _format_currency(totals.receivable)],
    ]
    summary_table = Table(summary_data, colWidths=_scaled_widths(0.18, 0.32, 0.18, 0.32))
    summary_table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, -1), base_font),
                ("FONTSIZE", (0, 0), (-1, -1), 9.5),
                ("TEXTCOLOR", (0, 0), (0, -1), colors.HexColor("#4e5d78")),
                ("TEXTCOLOR", (2, 0), (2, -1), colors.HexColor("#4e5d78")),
                ("BACKGROUND", (0, 0), (-1, -1), colors.HexColor("#f5f8ff")),
                ("BOX", (0, 0), (-1, -1), 0.4, colors.HexColor("#cad8f4")),
                ("TOPPADDING", (0, 0), (-1, -1), 6),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ]
        )
    )

    category_totals: dict[str, float] = defaultdict(float)
    for request in requests:
        category_totals[request.vehicle_category] += request.client_charge

    request_data = [
        [
            "Date",
            "Invoice",
            "Client",
            "Route",
            "Category",
            "Driver",
            "Status",
            "Charge",
            "Driver fee",
            "Net",
        ]
    ]
    earliest = datetime.min.replace(tzinfo=timezone.utc)
    for request in sorted(requests, key=lambda item: item.service_date or earliest):
        margin = compute_margin(request.client_charge, request.driver_fee)
        route = Paragraph(
            f"{request.origin} → {request.destination}"
            f"<br/><font size=7.5 color='#4e5d78'>{request.distance_km:.1f} km</font>",
            body_style,
        )
        driver = driver_label(request.driver_id, driver_names)
        request_data.append(
            [
                _format_date(request.service_date),
                request.invoice_number,
                Paragraph(request.client_name, body_style),
                route,
                request.vehicle_category,
                Paragraph(driver, body_style),
                _STATUS_LABELS.get(request.status, str(request.status)),
                _format_currency(request.client_charge),
                _format_currency(request.driver_fee),
                _format_currency(margin.net_profit),
            ]
        )

    request_table = Table(
        request_data,
        colWidths=_scaled_widths(0.08, 0.09, 0.13, 0.22, 0.08, 0.1, 0.08, 0.08, 0.07, 0.07),
        repeatRows=1,
    )
    request_table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, -1), base_font),
                ("FONTSIZE", (0, 0), (-1, 0), 9),
                ("FONTSIZE", (0, 1), (-1, -1), 8.5),
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#0f1623")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("ALIGN", (7, 1), (-1, -1), "RIGHT"),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                (
                    "ROWBACKGROUNDS",
                    (0, 1),
                    (-1, -1),
                    [colors.HexColor("#f5f8ff"), colors.HexColor("#eef3ff")],
                ),
                ("BOX", (0, 0), (-1, -1), 0.4, colors.HexColor("#cad8f4")),
                ("INNERGRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#d7e1f5")),
                ("TOPPADDING", (0, 0), (-1, -1), 5),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
            ]
        )
    )

    story: list = [
        Paragraph(title, title_style),
        Paragraph(subtitle, subtitle_style),
        HRFlowable(width="100%", thickness=1, color=colors.HexColor("#35c4c7")),
        Spacer(1, 12),
        summary_table,
    ]

    if category_totals:
        category_data = [["Category", "Revenue"]]
        for category, total in sorted(category_totals.items(), key=lambda item: -item[1]):
            category_data.append([category, _format_currency(total)])
        category_table = Table(category_data, colWidths=[doc.width * 0.25, doc.width * 0.2])
        category_table.setStyle(
            TableStyle(
                [
                    ("FONTNAME", (0, 0), (-1, -1), base_font),
                    ("FONTSIZE", (0, 0), (-1, -1), 9),
                    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#0f1623")),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("ALIGN", (1, 1), (-1, -1), "RIGHT"),
                    ("BOX", (0, 0), (-1, -1), 0.4, colors.HexColor("#cad8f4")),
                    ("TOPPADDING", (0, 0), (-1, -1), 5),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
                ]
            )
        )
        story.extend([Paragraph("Revenue by Category", section_header_style), category_table])

    story.append(Paragraph("Transport Requests", section_header_style))
    if requests:
        story.append(request_table)
    else:
        story.append(Paragraph("No requests match the selected filters.", secondary_style))

    story.append(Spacer(1, 14))
    story.append(
        Paragraph(
            "Net values deduct the driver fee and 8% tax from the client charge. "
            "Receivable covers requests without a recorded payment date.",
            secondary_style,
        )
    )

    accent_color = colors.HexColor("#0f1623")

    def _draw_header_footer(canvas, doc) -> None:  # pragma: no cover - rendering only
        canvas.saveState()
        canvas.setFillColor(accent_color)
        canvas.rect(doc.leftMargin, doc.height + doc.topMargin - 14, doc.width, 0.8, stroke=0, fill=1)
        canvas.rect(doc.leftMargin, doc.bottomMargin - 18, doc.width, 0.6, stroke=0, fill=1)
        canvas.setFont(base_font, 9)
        canvas.drawString(doc.leftMargin, doc.height + doc.topMargin - 10, "LogiTrack")
        canvas.drawRightString(doc.leftMargin + doc.width, doc.bottomMargin - 12, f"Page {doc.page}")
        canvas.setFillColor(colors.HexColor("#4e5d78"))
        canvas.drawString(
            doc.leftMargin,
            doc.bottomMargin - 12,
            f"Generated {generated.strftime('%d/%m/%Y %H:%M')}",
        )
        canvas.restoreState()

    doc.build(story, onFirstPage=_draw_header_footer, onLaterPages=_draw_header_footer)
    return path


__all__ = ["export_report_pdf"]
