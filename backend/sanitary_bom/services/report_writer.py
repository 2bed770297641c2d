"""
BOM workbook writer (xlsxwriter).

Sheets:
  - Materials  : one section per fixture category, one column per shaft,
                 plus "Total Qty for One floor"
  - Summary    : run facts, grand totals per article, diagnostic counters
  - Unresolved : catalog keys no article matched
  - Unassigned : material found outside any shaft
"""
import io
import math
import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple, Union

import xlsxwriter

from sanitary_bom.services.entity_classifier import (
    BATH_TUB,
    SHOWER_FLOOR_DRAIN,
    URINAL,
    VENT,
    VERTICAL_SHAFT,
    WASH_BASIN,
    WATER_CLOSET,
)
from sanitary_bom.services.material_aggregator import BOM, LineItem, shaft_sort_key

logger = logging.getLogger("sanitary-report")

# Section order and titles of the Materials sheet
CATEGORY_SECTIONS: List[Tuple[str, str]] = [
    (WASH_BASIN, "WASH BASIN/SINK"),
    (URINAL, "URINALS"),
    (SHOWER_FLOOR_DRAIN, "SHOWER/FLOOR DRAIN"),
    (BATH_TUB, "BATH TUB"),
    (WATER_CLOSET, "WATER CLOSET"),
    (VERTICAL_SHAFT, "VERTICAL SHAFT"),
    (VENT, "VENT"),
]

FIXED_HEADERS = ["Sr No.", "Article No.", "Description", "Qty Unit"]
TOTAL_HEADER = "Total Qty for One floor"


def _section_rows(bom: BOM, category: str, shafts: Sequence[str]) -> List[Tuple[LineItem, Dict[str, float]]]:
    """(first item seen, {shaft: qty}) per article filed under ``category``."""
    first: Dict[str, LineItem] = {}
    quantities: Dict[str, Dict[str, float]] = defaultdict(dict)
    for shaft in shafts:
        for item in bom.by_shaft.get(shaft, []):
            if item.category != category:
                continue
            first.setdefault(item.article_no, item)
            quantities[item.article_no][shaft] = item.quantity
    return [(first[a], quantities[a]) for a in sorted(first)]


class BomWorkbookWriter:

    def __init__(self, title: str = "Sanitary Material Take-off"):
        self.title = title

    def write(
        self,
        bom: BOM,
        shafts: Optional[Sequence[str]] = None,
        path: Optional[str] = None,
    ) -> Union[str, bytes]:
        """
        Write the workbook. ``shafts`` limits and orders the shaft columns
        (all shafts of the BOM by default). Returns ``path`` when given,
        otherwise the workbook bytes.
        """
        columns = [s for s in (shafts or bom.shafts) if s in bom.by_shaft]
        columns.sort(key=shaft_sort_key)

        buffer = None
        if path:
            wb = xlsxwriter.Workbook(path)
        else:
            buffer = io.BytesIO()
            wb = xlsxwriter.Workbook(buffer, {"in_memory": True})

        formats = self._formats(wb)
        self._materials_sheet(wb, formats, bom, columns)
        self._summary_sheet(wb, formats, bom, columns)
        self._unresolved_sheet(wb, formats, bom)
        self._unassigned_sheet(wb, formats, bom)
        wb.close()

        logger.info(f"BOM workbook written: {len(columns)} shaft column(s)" + (f" → {path}" if path else ""))
        return path if path else buffer.getvalue()

    # ── Formats ───────────────────────────────────────────────────────────────

    @staticmethod
    def _formats(wb) -> Dict:
        return {
            "hdr": wb.add_format({"bold": True, "bg_color": "#14141E", "font_color": "#FFFFFF",
                                  "border": 1, "font_size": 10}),
            "section": wb.add_format({"bold": True, "bg_color": "#002147", "font_color": "#FFFFFF",
                                      "border": 1, "font_size": 10}),
            "title": wb.add_format({"bold": True, "font_size": 14, "font_color": "#14141E"}),
            "normal": wb.add_format({"border": 1, "font_size": 9}),
            "pc": wb.add_format({"num_format": "0", "border": 1}),
            "m": wb.add_format({"num_format": "#,##0.000", "border": 1}),
            "total": wb.add_format({"bold": True, "num_format": "#,##0.000", "border": 1}),
        }

    # ── Sheets ────────────────────────────────────────────────────────────────

    def _materials_sheet(self, wb, f: Dict, bom: BOM, shafts: List[str]) -> None:
        ws = wb.add_worksheet("Materials")
        ws.set_column(0, 0, 7)
        ws.set_column(1, 1, 15)
        ws.set_column(2, 2, 48)
        ws.set_column(3, 3, 9)
        ws.set_column(4, 4 + len(shafts), 12)

        ws.write(0, 0, self.title, f["title"])
        ws.write(1, 0, f"Pipe type: {bom.pipe_type or '-'}", f["normal"])
        ws.write(2, 0, f"Generated: {datetime.now().strftime('%d %b %Y %H:%M')}", f["normal"])

        header_row = 4
        ws.write_row(header_row, 0, FIXED_HEADERS + list(shafts) + [TOTAL_HEADER], f["hdr"])
        last_col = len(FIXED_HEADERS) + len(shafts)

        row = header_row + 1
        serial = 0
        for category, title in CATEGORY_SECTIONS:
            rows = _section_rows(bom, category, shafts)
            if not rows:
                continue
            ws.merge_range(row, 0, row, last_col, title, f["section"])
            row += 1
            for item, per_shaft in rows:
                serial += 1
                qty_fmt = f["m"] if item.unit == "M" else f["pc"]
                ws.write(row, 0, serial, f["normal"])
                ws.write(row, 1, item.article_no, f["normal"])
                ws.write(row, 2, item.description, f["normal"])
                ws.write(row, 3, item.unit, f["normal"])
                for i, shaft in enumerate(shafts):
                    qty = per_shaft.get(shaft)
                    if qty is None:
                        ws.write_blank(row, 4 + i, None, f["normal"])
                    else:
                        ws.write_number(row, 4 + i, qty, qty_fmt)
                ws.write_number(row, last_col, math.fsum(per_shaft.values()), f["total"])
                row += 1
        ws.freeze_panes(header_row + 1, 4)

    @staticmethod
    def _summary_sheet(wb, f: Dict, bom: BOM, shafts: List[str]) -> None:
        ws = wb.add_worksheet("Summary")
        ws.set_column(0, 0, 28)
        ws.set_column(1, 1, 16)
        facts = [
            ("Pipe type", bom.pipe_type or "-"),
            ("Shafts", ", ".join(shafts) or "-"),
            ("Articles", len(bom.totals_by_article)),
            ("Unresolved keys", len(bom.unresolved)),
            ("Unassigned lines", len(bom.unassigned)),
        ]
        ws.write_row(0, 0, ["Item", "Value"], f["hdr"])
        for i, (label, value) in enumerate(facts, start=1):
            ws.write(i, 0, label, f["normal"])
            ws.write(i, 1, value, f["normal"])

        row = len(facts) + 2
        ws.write_row(row, 0, ["Article No.", "Total Qty"], f["hdr"])
        for article, qty in bom.totals_by_article.items():
            row += 1
            ws.write(row, 0, article, f["normal"])
            ws.write_number(row, 1, qty, f["m"] if bom.unit_for(article) == "M" else f["pc"])

        counts = bom.diagnostics.get("counts", {})
        if counts:
            row += 2
            ws.write_row(row, 0, ["Diagnostic", "Count"], f["hdr"])
            for name, value in counts.items():
                row += 1
                ws.write(row, 0, name, f["normal"])
                ws.write_number(row, 1, value, f["pc"])

    @staticmethod
    def _unresolved_sheet(wb, f: Dict, bom: BOM) -> None:
        ws = wb.add_worksheet("Unresolved")
        ws.set_column(0, 0, 22)
        ws.set_column(4, 4, 30)
        ws.write_row(0, 0, ["Category", "Diameter", "Subtype", "Occurrences", "Shafts"], f["hdr"])
        for i, miss in enumerate(bom.unresolved, start=1):
            ws.write_row(i, 0, [
                miss["category"],
                miss["diameter"],
                miss["subtype"],
                miss.get("occurrences", 1),
                ", ".join(miss.get("shafts", [])),
            ], f["normal"])

    @staticmethod
    def _unassigned_sheet(wb, f: Dict, bom: BOM) -> None:
        ws = wb.add_worksheet("Unassigned")
        ws.set_column(0, 0, 15)
        ws.set_column(1, 1, 48)
        ws.write_row(0, 0, ["Article No.", "Description", "Qty Unit", "Quantity", "Category"], f["hdr"])
        for i, item in enumerate(bom.unassigned, start=1):
            ws.write(i, 0, item.article_no, f["normal"])
            ws.write(i, 1, item.description, f["normal"])
            ws.write(i, 2, item.unit, f["normal"])
            ws.write_number(i, 3, item.quantity, f["m"] if item.unit == "M" else f["pc"])
            ws.write(i, 4, item.category, f["normal"])
