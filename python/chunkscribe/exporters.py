from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from .models import PipelineResult

NUMBER_COL_CM = 1.2
TEXT_COL_CM = 15.8


def transcript_filename(source_name: str, suffix: str = ".txt") -> str:
    return f"{Path(source_name).stem}_transcript{suffix}"


def _header_lines(result: PipelineResult, created: datetime | None = None) -> list[str]:
    summary = result.summary
    created = created or datetime.now()
    lines = [
        f'File: "{Path(result.source_name).stem}"',
        f"Date: {created.strftime('%Y-%m-%d')}",
    ]
    duration = result.coverage.total_duration_sec
    if duration:
        lines.append(f"Duration: {max(1, round(duration / 60))} minutes")
    lines.append(
        f"Chunks processed: {summary.succeeded}/{summary.total_segments} "
        f"({summary.success_percentage}% success)"
    )
    if summary.failed_indices:
        lines.append("Failed chunks: " + ", ".join(str(idx + 1) for idx in summary.failed_indices))
    lines.append("")
    return lines


def export_txt(result: PipelineResult, output_path: Path, *, created: datetime | None = None) -> None:
    lines = _header_lines(result, created)
    lines.append(result.transcript)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text("\n".join(lines).strip() + "\n", encoding="utf-8")


def export_docx(result: PipelineResult, output_path: Path, *, created: datetime | None = None) -> None:
    try:
        from docx import Document
        from docx.enum.text import WD_ALIGN_PARAGRAPH
        from docx.shared import Cm, Mm, Pt
    except ImportError as exc:  # pragma: no cover - env dependent
        raise RuntimeError("python-docx is missing. Install the project dependencies.") from exc

    def _format_paragraph(paragraph: Any) -> None:
        paragraph.paragraph_format.space_after = Pt(0)
        paragraph.paragraph_format.space_before = Pt(0)
        paragraph.paragraph_format.line_spacing = 1.0

    doc = Document()
    section = doc.sections[0]
    section.page_width = Mm(210)
    section.page_height = Mm(297)
    section.top_margin = Mm(30)
    section.bottom_margin = Mm(30)
    section.left_margin = Mm(20)
    section.right_margin = Mm(20)

    style = doc.styles["Normal"]
    style.font.size = Pt(12)

    for line in _header_lines(result, created):
        paragraph = doc.add_paragraph(line)
        _format_paragraph(paragraph)
        if line.startswith("Failed chunks:") and paragraph.runs:
            paragraph.runs[0].bold = True

    outcomes = sorted(result.outcomes, key=lambda o: o.index)
    if outcomes:
        table = doc.add_table(rows=0, cols=2)
        table.autofit = False
        table.columns[0].width = Cm(NUMBER_COL_CM)
        table.columns[1].width = Cm(TEXT_COL_CM)

        for outcome in outcomes:
            row = table.add_row()
            row.cells[0].width = Cm(NUMBER_COL_CM)
            row.cells[1].width = Cm(TEXT_COL_CM)

            number_p = row.cells[0].paragraphs[0]
            number_p.alignment = WD_ALIGN_PARAGRAPH.RIGHT
            number_p.add_run(str(outcome.index + 1))

            text_run = row.cells[1].paragraphs[0].add_run(outcome.text)
            if not outcome.succeeded:
                text_run.italic = True

    output_path.parent.mkdir(parents=True, exist_ok=True)
    doc.save(output_path)
