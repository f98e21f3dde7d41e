from __future__ import annotations

"""Classify assistant answers and render tabular ones.

An answer that parses as a JSON array of objects (or an object whose ``data``
field is such an array) becomes a table; anything else is passed through as
plain text. The requested representation falls back pdf -> table_text -> raw
text when a stage fails, so :meth:`ResultRenderer.render` never raises.
"""

import json
import logging
from typing import Any, Callable, List, Optional, Sequence

from jinja2 import Environment

from ..domain.reports import OutputFormat, RenderedArtifact

try:
    # Optional dependency for PDF export
    from weasyprint import HTML  # type: ignore
    _HAS_WEASYPRINT = True
except BaseException:
    # WeasyPrint may raise SystemExit/OSError on missing native libraries.
    HTML = None  # type: ignore
    _HAS_WEASYPRINT = False

logger = logging.getLogger("tenantdesk.render")

PDF_FILENAME = "report.pdf"
PDF_MIME = "application/pdf"

Row = dict
PdfWriter = Callable[[str], bytes]

_TABLE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
@page { size: A4; margin: 10mm; }
body { font-family: sans-serif; font-size: 10pt; }
table { border-collapse: collapse; width: 100%; }
thead { display: table-header-group; }
tr { page-break-inside: avoid; }
th { background: #4CAF50; color: #ffffff; text-align: left; }
th, td { border: 1px solid #dddddd; padding: 4px; }
tbody tr:nth-child(even) { background: #f5f5f5; }
</style>
</head>
<body>
<table>
<thead><tr>{% for h in headers %}<th>{{ h }}</th>{% endfor %}</tr></thead>
<tbody>
{% for row in rows %}<tr>{% for cell in row %}<td>{{ cell }}</td>{% endfor %}</tr>
{% endfor %}</tbody>
</table>
</body>
</html>
"""

_env = Environment(autoescape=True)
_table = _env.from_string(_TABLE_TEMPLATE)


def _strip_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```") and stripped.endswith("```") and len(stripped) > 6:
        body = stripped[3:-3]
        first_newline = body.find("\n")
        if first_newline != -1 and body[:first_newline].strip().isalpha():
            body = body[first_newline + 1 :]
        return body.strip()
    return stripped


def parse_tabular(answer_text: str) -> Optional[List[Row]]:
    """Return the rows if ``answer_text`` is tabular JSON, else ``None``."""
    try:
        parsed = json.loads(_strip_fence(answer_text))
    except (TypeError, ValueError, RecursionError):
        return None
    if isinstance(parsed, dict) and isinstance(parsed.get("data"), list):
        parsed = parsed["data"]
    if not isinstance(parsed, list) or not parsed:
        return None
    if not all(isinstance(item, dict) for item in parsed):
        return None
    if not parsed[0]:
        return None
    return parsed


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


def table_cells(rows: Sequence[Row]) -> tuple[List[str], List[List[str]]]:
    headers = [str(key) for key in rows[0].keys()]
    keys = list(rows[0].keys())
    body = [[cell_text(row.get(key)) for key in keys] for row in rows]
    return headers, body


def rows_to_html(rows: Sequence[Row]) -> str:
    headers, body = table_cells(rows)
    return _table.render(headers=headers, rows=body)


def rows_to_table_text(rows: Sequence[Row]) -> str:
    """Monospace table wrapped in a code fence so chat clients keep alignment."""
    headers, body = table_cells(rows)
    widths = [max([len(h)] + [len(r[i]) for r in body]) for i, h in enumerate(headers)]
    header_line = " │ ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "─┼─".join("─" * w for w in widths)
    lines = [" │ ".join(cell.ljust(widths[i]) for i, cell in enumerate(r)) for r in body]
    return "```text\n" + header_line + "\n" + separator + "\n" + "\n".join(lines) + "\n```"


def weasyprint_writer(html: str) -> bytes:
    if not _HAS_WEASYPRINT:
        raise RuntimeError("WeasyPrint is not available")
    return HTML(string=html).write_pdf()


class ResultRenderer:
    def __init__(self, output: OutputFormat = OutputFormat.PDF, pdf_writer: Optional[PdfWriter] = None) -> None:
        self.output = output
        self._pdf_writer = pdf_writer or weasyprint_writer

    def render(self, answer_text: str, output: Optional[OutputFormat] = None) -> RenderedArtifact:
        output = output or self.output
        try:
            rows = parse_tabular(answer_text)
        except Exception:
            logger.warning("answer_classify_failed", extra={"chars": len(answer_text or "")}, exc_info=True)
            rows = None
        if rows is None:
            return RenderedArtifact.plain(answer_text)
        if output == OutputFormat.PDF:
            try:
                pdf = self._pdf_writer(rows_to_html(rows))
                return RenderedArtifact.document(pdf, PDF_MIME, PDF_FILENAME)
            except Exception:
                logger.warning("pdf_render_failed", extra={"rows": len(rows)}, exc_info=True)
        try:
            return RenderedArtifact.plain(rows_to_table_text(rows))
        except Exception:
            logger.warning("table_text_render_failed", extra={"rows": len(rows)}, exc_info=True)
        return RenderedArtifact.plain(answer_text)
