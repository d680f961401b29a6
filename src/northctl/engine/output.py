"""Rendering of command output.

Each command writes into its own buffer (or fills a Table); once the batch
has committed, the buffers are rendered in command order as raw text,
single-line escaped text (``--oneline``) or a formatted table.
"""
import csv
import io
import json
from typing import Optional

TABLE_FORMATS = ("list", "table", "csv", "json")


def oneline_format(text: str) -> str:
    """Collapse one command's output to a single line.

    One trailing newline is dropped, remaining newlines become ``\\n`` and
    backslashes become ``\\\\``. The result ends with a real newline.
    """
    if text.endswith("\n"):
        text = text[:-1]
    escaped = text.replace("\\", "\\\\").replace("\n", "\\n")
    return escaped + "\n"


class Table:
    """Rows of already-formatted cells under a list of headings."""

    def __init__(self, headings: list[str]):
        self.headings = list(headings)
        self.rows: list[list[str]] = []

    def add_row(self, cells: list[str]) -> None:
        if len(cells) != len(self.headings):
            raise ValueError(f"row has {len(cells)} cells, table has {len(self.headings)} columns")
        self.rows.append([str(c) for c in cells])

    def __len__(self) -> int:
        return len(self.rows)

    def render(self, fmt: str = "list", headings: bool = True) -> str:
        if fmt == "list":
            return self._render_list(headings)
        if fmt == "table":
            return self._render_table(headings)
        if fmt == "csv":
            return self._render_csv(headings)
        if fmt == "json":
            return self._render_json(headings)
        raise ValueError(f"unknown table format \"{fmt}\"")

    def _render_list(self, headings: bool) -> str:
        width = max((len(h) for h in self.headings), default=0)
        blocks = []
        for row in self.rows:
            if headings:
                lines = [f"{h:<{width}} : {cell}" for h, cell in zip(self.headings, row)]
            else:
                lines = list(row)
            blocks.append("\n".join(lines) + "\n")
        return "\n".join(blocks)

    def _render_table(self, headings: bool) -> str:
        widths = [len(h) if headings else 0 for h in self.headings]
        for row in self.rows:
            widths = [max(w, len(cell)) for w, cell in zip(widths, row)]

        def line(cells: list[str]) -> str:
            return " ".join(f"{c:<{w}}" for c, w in zip(cells, widths)).rstrip() + "\n"

        out = []
        if headings:
            out.append(line(self.headings))
            out.append(" ".join("-" * w for w in widths) + "\n")
        out.extend(line(row) for row in self.rows)
        return "".join(out)

    def _render_csv(self, headings: bool) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        if headings:
            writer.writerow(self.headings)
        writer.writerows(self.rows)
        return buf.getvalue()

    def _render_json(self, headings: bool) -> str:
        doc: dict = {"data": self.rows}
        if headings:
            doc = {"headings": self.headings, **doc}
        return json.dumps(doc) + "\n"


def render_output(text: str, table: Optional[Table], oneline: bool,
                  fmt: str = "list", headings: bool = True) -> str:
    """Render one command's captured output.

    Tables print in their own format; --oneline only escapes plain output.
    """
    if table is not None:
        return table.render(fmt, headings)
    if oneline:
        return oneline_format(text)
    return text
