from datetime import datetime
from pathlib import Path

from docx import Document
from docx.shared import Mm, Pt

from chunkscribe.exporters import export_docx, export_txt, transcript_filename
from chunkscribe.models import CoverageReport, OutcomeStatus, PipelineResult, ProcessingSummary, TranscriptionOutcome

CREATED = datetime(2026, 2, 11, 10, 15)


def _result() -> PipelineResult:
    outcomes = [
        TranscriptionOutcome(index=0, status=OutcomeStatus.SUCCESS, text="Welcome to the lecture.", attempts=1),
        TranscriptionOutcome(
            index=1,
            status=OutcomeStatus.FAILED,
            text="[MISSING: Segment 2 failed to transcribe after 3 attempts (service error)]",
            attempts=3,
            failure="service_error",
        ),
        TranscriptionOutcome(index=2, status=OutcomeStatus.SUCCESS, text="Thanks for listening.", attempts=2),
    ]
    return PipelineResult(
        source_name="demo_lecture.mp4",
        transcript="\n\n".join(o.text for o in outcomes),
        summary=ProcessingSummary.from_outcomes(outcomes),
        outcomes=outcomes,
        coverage=CoverageReport(total_duration_sec=250.0, covered_sec=250.0),
    )


def test_transcript_filename_matches_download_name():
    assert transcript_filename("demo_lecture.mp4") == "demo_lecture_transcript.txt"
    assert transcript_filename("demo.lecture.wav", ".docx") == "demo.lecture_transcript.docx"


def test_export_txt_contains_summary_and_transcript(tmp_path: Path):
    out = tmp_path / "out.txt"
    export_txt(_result(), out, created=CREATED)
    content = out.read_text(encoding="utf-8")

    assert content.startswith('File: "demo_lecture"\nDate: 2026-02-11\nDuration: 4 minutes\n')
    assert "Chunks processed: 2/3 (67% success)" in content
    assert "Failed chunks: 2" in content
    assert "Welcome to the lecture.\n\n[MISSING: Segment 2" in content
    assert content.endswith("Thanks for listening.\n")


def test_export_docx_uses_numbered_chunk_table(tmp_path: Path):
    out = tmp_path / "out.docx"
    export_docx(_result(), out, created=CREATED)

    doc = Document(out)
    assert doc.paragraphs[0].text == 'File: "demo_lecture"'
    failed = [p for p in doc.paragraphs if p.text.startswith("Failed chunks:")]
    assert failed and failed[0].runs[0].bold
    assert len(doc.tables) == 1

    table = doc.tables[0]
    assert len(table.columns) == 2
    assert [row.cells[0].text for row in table.rows] == ["1", "2", "3"]
    assert table.rows[0].cells[1].text == "Welcome to the lecture."
    assert table.rows[1].cells[1].paragraphs[0].runs[0].italic
    assert not table.rows[2].cells[1].paragraphs[0].runs[0].italic

    section = doc.sections[0]
    assert abs(int(section.left_margin) - int(Mm(20))) <= 400
    assert abs(int(doc.styles["Normal"].font.size) - int(Pt(12))) <= 20
