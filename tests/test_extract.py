"""Tests for tools/extract.py - workbook to JSON dump."""

import json

from openpyxl import Workbook

from import_data import import_sheet
from tools.extract import extract_excel_structure, main


def make_workbook(path):
    wb = Workbook()
    ws = wb.active
    ws.title = "Acme"
    ws.append(["Date", "Start", "Duration", "Description", "Rate", "Billable"])
    ws.append(["2026-01-15", "09:30", 45, "Backup check", "Standard Hourly", "Y"])
    ws["G2"] = "=C2*2"
    wb.save(path)


class TestExtract:
    """Tests for extract_excel_structure and main."""

    def test_cells(self, tmp_path):
        path = tmp_path / "book.xlsx"
        make_workbook(path)
        data = extract_excel_structure(path)
        assert list(data) == ["Acme"]
        assert data["Acme"]["D2"]["value"] == "Backup check"
        assert data["Acme"]["G2"]["formula"] == "=C2*2"
        assert data["Acme"]["A2"]["formula"] is None

    def test_output_feeds_import(self, tmp_path):
        """The dumped sheet is what import_sheet reads."""
        path = tmp_path / "book.xlsx"
        out = tmp_path / "out.json"
        make_workbook(path)
        assert main([str(path), str(out)]) == 0
        sheet = json.loads(out.read_text())["Acme"]
        entries = import_sheet(sheet, "acme", {"Standard Hourly": "rate-std"})
        assert len(entries) == 1
        assert entries[0].minutes == 45
        assert entries[0].billing_rate_id == "rate-std"

    def test_usage(self, capsys):
        assert main([]) == 2
        assert "usage" in capsys.readouterr().err
