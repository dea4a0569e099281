# utils/pdf_report.py
"""
Chart → PNG → single-page PDF
- export_chart_png(): pyqtgraph ImageExporter（需要 Qt，延遲匯入）
- build_report_pdf(): reportlab platypus，純檔案操作，可單獨測試
- export_report(): 兩步合一；任何失敗只記 log 並回傳 None（使用者可再按一次）
"""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from controllers.telemetry_session import Snapshot

logger = logging.getLogger("PdfReport")

PAGE = landscape(A4)
MARGIN = 1.5 * cm


def export_chart_png(plot_widget, out_png: Path, width: int = 1600) -> Optional[Path]:
    """把 PlotWidget 畫面輸出成 PNG；圖表尚未顯示/不存在時回傳 None。"""
    if plot_widget is None:
        logger.warning("匯出失敗：找不到圖表")
        return None
    if not plot_widget.isVisible() or plot_widget.width() <= 0 or plot_widget.height() <= 0:
        logger.warning("匯出失敗：圖表尚未繪製")
        return None

    import pyqtgraph.exporters as pg_exporters

    out_png.parent.mkdir(parents=True, exist_ok=True)
    exporter = pg_exporters.ImageExporter(plot_widget.getPlotItem())
    exporter.parameters()["width"] = int(width)
    exporter.export(str(out_png))
    if not out_png.exists():
        logger.warning("匯出失敗：PNG 未產生（%s）", out_png)
        return None
    return out_png


def _readings_table(snap: Snapshot) -> Table:
    m = snap.metrics
    rows = [
        ["Heart Rate", f"{snap.heart_rate} BPM", "PR Interval", f"{m.pr_interval_ms:.0f} ms"],
        ["SpO2", f"{snap.spo2:.0f} %", "QT Interval", f"{m.qt_interval_ms:.0f} ms"],
        ["Status", snap.status.value.capitalize(), "QRS Duration", f"{m.qrs_duration_ms:.0f} ms"],
        ["Last error", snap.error or "-", "ST Segment", f"{m.st_segment_mv:.1f} mV"],
    ]
    t = Table(rows, colWidths=[3.5 * cm, 5 * cm, 3.5 * cm, 4 * cm])
    t.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTNAME", (2, 0), (2, -1), "Helvetica-Bold"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ]))
    return t


def build_report_pdf(png_path: Path, snap: Snapshot, out_pdf: Path,
                     title: str = "Health Monitoring Report") -> Path:
    styles = getSampleStyleSheet()
    out_pdf.parent.mkdir(parents=True, exist_ok=True)

    doc = SimpleDocTemplate(
        str(out_pdf), pagesize=PAGE,
        leftMargin=MARGIN, rightMargin=MARGIN, topMargin=MARGIN, bottomMargin=MARGIN,
        title=title,
    )
    # 圖片寬度填滿版面、高度依比例，最多佔半頁
    avail_w = PAGE[0] - 2 * MARGIN
    img = Image(str(png_path))
    ratio = img.imageHeight / float(img.imageWidth or 1)
    img_w = avail_w
    img_h = min(avail_w * ratio, (PAGE[1] - 2 * MARGIN) * 0.5)
    if img_h < avail_w * ratio:
        img_w = img_h / ratio
    img.drawWidth, img.drawHeight = img_w, img_h

    story = [
        # Paragraph 吃的是 mini-markup，標題要先跳脫
        Paragraph(escape(title), styles["Title"]),
        Paragraph(snap.taken_at.strftime("Captured %Y-%m-%d %H:%M:%S"), styles["Normal"]),
        Spacer(1, 8),
        img,
        Spacer(1, 10),
        _readings_table(snap),
        Spacer(1, 6),
        Paragraph("ECG interval figures are placeholders and are not clinical measurements.",
                  styles["Italic"]),
    ]
    doc.build(story)
    return out_pdf


def export_report(plot_widget, snap: Snapshot, out_dir: Path | str,
                  title: str = "Health Monitoring Report") -> Optional[Path]:
    out_dir = Path(out_dir)
    stem = f"vitals_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    try:
        png = export_chart_png(plot_widget, out_dir / f"{stem}.png")
        if png is None:
            return None
        pdf = build_report_pdf(png, snap, out_dir / f"{stem}.pdf", title=title)
    except Exception as e:
        logger.exception("匯出 PDF 失敗：%s", e)
        return None
    logger.info("已匯出 %s", pdf)
    return pdf
