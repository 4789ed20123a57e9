"""Dump every sheet of a workbook to the JSON layout import_data.py reads."""

from __future__ import annotations

import json
import sys

from openpyxl import load_workbook


def extract_excel_structure(filepath):
    # Load with data_only=False to get formulas
    wb_formulas = load_workbook(filepath, data_only=False)
    # Load again with data_only=True to get computed values
    wb_values = load_workbook(filepath, data_only=True)

    result = {}
    for sheet_name in wb_formulas.sheetnames:
        ws_f = wb_formulas[sheet_name]
        ws_v = wb_values[sheet_name]

        sheet_data = {}
        for row in ws_f.iter_rows():
            for cell in row:
                if cell.value is None:
                    continue
                value = ws_v[cell.coordinate].value
                sheet_data[cell.coordinate] = {
                    "formula": str(cell.value) if str(cell.value).startswith("=") else None,
                    "value": value,
                    "type": type(value).__name__,
                }
        result[sheet_name] = sheet_data

    return result


def main(argv: list[str]) -> int:
    if not argv:
        print("usage: extract.py WORKBOOK.xlsx [OUTPUT.json]", file=sys.stderr)
        return 2
    output = argv[1] if len(argv) > 1 else "spreadsheet_structure.json"
    data = extract_excel_structure(argv[0])
    with open(output, "w") as f:
        json.dump(data, f, indent=2, default=str)
    print(f"Wrote {sum(len(s) for s in data.values())} cells from {len(data)} sheets to {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
