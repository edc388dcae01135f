"""
Structured Word Document Assembler
==================================
Default ``DocumentAssembler``: renders a finished job into a DOCX guide.

Layout:
- Cover page with job summary statistics
- Table of Contents field (updates when opened in Word)
- One section per journey, one sub-section per captured screen
  (screenshot when stored locally, otherwise a link; analysis summary;
  detected fields as a table)
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, TYPE_CHECKING
from urllib.parse import unquote, urlparse

from docx import Document
from docx.enum.table import WD_TABLE_ALIGNMENT
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Inches, Pt, RGBColor

from .collaborators import AssemblyResult

if TYPE_CHECKING:
    from .models import Job, Screen
    from .schemas import Journey

logger = logging.getLogger(__name__)


class DocxAssembler:
    """Write ``<output_dir>/<job_id>.docx`` and return its URI."""

    def __init__(self, output_dir: str = "docs", *, include_toc: bool = True):
        self.output_dir = Path(output_dir)
        self.include_toc = include_toc

    async def assemble(
        self, job: "Job", screens: Sequence["Screen"], journeys: Sequence["Journey"]
    ) -> AssemblyResult:
        loop = asyncio.get_event_loop()
        path = self.output_dir / f"{job.id}.docx"
        sections = await loop.run_in_executor(
            None, lambda: export_job_docx(job, screens, journeys, path, include_toc=self.include_toc)
        )
        return AssemblyResult(docs_url=path.resolve().as_uri(), sections=sections)


def export_job_docx(
    job: "Job",
    screens: Sequence["Screen"],
    journeys: Sequence["Journey"],
    filepath: Path,
    *,
    include_toc: bool = True,
) -> int:
    """
    Render the job's screens grouped by journey.

    Returns:
        Number of journey sections written.
    """
    filepath.parent.mkdir(parents=True, exist_ok=True)
    doc = Document()

    # ── Configure base styles ──────────────────────────────────────
    style = doc.styles["Normal"]
    style.font.name = "Calibri"
    style.font.size = Pt(10)
    style.paragraph_format.space_after = Pt(4)

    # ── Cover Page ─────────────────────────────────────────────────
    title = doc.add_heading(f"{job.app_name or 'Application'} User Guide", level=0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    summary_items = [
        ("Application", job.app_url),
        ("Journeys", str(len(journeys))),
        ("Screens", str(len(screens))),
        ("Generated", job.created_at[:10]),
    ]
    summary_table = doc.add_table(rows=len(summary_items), cols=2)
    summary_table.alignment = WD_TABLE_ALIGNMENT.CENTER
    for i, (label, value) in enumerate(summary_items):
        row = summary_table.rows[i]
        _cell_text(row.cells[0], label, bold=True, size=Pt(10))
        _cell_text(row.cells[1], value, size=Pt(10))

    doc.add_page_break()

    if include_toc:
        doc.add_heading("Table of Contents", level=1)
        _add_toc_field(doc)
        doc.add_page_break()

    # ── Per-journey sections ───────────────────────────────────────
    by_journey: Dict[Optional[str], List["Screen"]] = {}
    for screen in sorted(screens, key=lambda s: s.order_index):
        by_journey.setdefault(screen.journey_id, []).append(screen)

    written = 0
    for journey in journeys:
        journey_screens = by_journey.get(journey.id, [])
        if not journey_screens:
            continue
        doc.add_heading(journey.title[:120], level=1)
        if journey.description:
            doc.add_paragraph(journey.description)
        for screen in journey_screens:
            _render_screen(doc, screen)
        written += 1
        doc.add_page_break()

    doc.save(str(filepath))
    logger.info(f"[DOCS] Exported DOCX to {filepath.absolute()}")
    return written


def _render_screen(doc, screen: "Screen") -> None:
    analysis = screen.analysis or {}
    heading = analysis.get("title") or screen.nav_path or screen.route_path
    doc.add_heading(str(heading)[:100], level=2)

    url_para = doc.add_paragraph()
    url_run = url_para.add_run(screen.url)
    url_run.font.color.rgb = RGBColor(0x25, 0x63, 0xEB)
    url_run.font.size = Pt(9)

    image_path = _local_path(screen.screenshot_url)
    if image_path is not None and image_path.exists():
        doc.add_picture(str(image_path), width=Inches(6))
    elif screen.screenshot_url:
        p = doc.add_paragraph(f"Screenshot: {screen.screenshot_url}")
        p.runs[0].font.size = Pt(9)

    if analysis.get("summary"):
        doc.add_paragraph(analysis["summary"])

    fields = analysis.get("fields") or []
    if fields:
        table = doc.add_table(rows=1 + len(fields), cols=2)
        table.alignment = WD_TABLE_ALIGNMENT.LEFT
        table.style = "Table Grid"
        _cell_text(table.rows[0].cells[0], "Field", bold=True, size=Pt(9))
        _cell_text(table.rows[0].cells[1], "Type", bold=True, size=Pt(9))
        for i, f in enumerate(fields, 1):
            _cell_text(table.rows[i].cells[0], str(f.get("name", "")), size=Pt(9))
            _cell_text(table.rows[i].cells[1], str(f.get("type", "")), size=Pt(9))
        doc.add_paragraph()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _local_path(uri: str) -> Optional[Path]:
    if not uri or not uri.startswith("file://"):
        return None
    return Path(unquote(urlparse(uri).path))


def _cell_text(cell, text: str, bold: bool = False, size=None) -> None:
    cell.text = text
    for paragraph in cell.paragraphs:
        for run in paragraph.runs:
            run.bold = bold
            if size:
                run.font.size = size


def _add_toc_field(doc) -> None:
    """Insert a Word TOC field code (updates on open in Word)."""
    paragraph = doc.add_paragraph()
    run = paragraph.add_run()

    fld_char_begin = OxmlElement("w:fldChar")
    fld_char_begin.set(qn("w:fldCharType"), "begin")
    run._element.append(fld_char_begin)

    instr_text = OxmlElement("w:instrText")
    instr_text.set(qn("xml:space"), "preserve")
    instr_text.text = ' TOC \\o "1-2" \\h \\z \\u '
    run._element.append(instr_text)

    fld_char_separate = OxmlElement("w:fldChar")
    fld_char_separate.set(qn("w:fldCharType"), "separate")
    run._element.append(fld_char_separate)

    placeholder_run = paragraph.add_run("[Press F9 in Word to update the table of contents]")
    placeholder_run.font.italic = True

    fld_char_end = OxmlElement("w:fldChar")
    fld_char_end.set(qn("w:fldCharType"), "end")
    run._element.append(fld_char_end)
