"""
Tests for services/simulation_export.py
"""

from io import BytesIO

import pytest
from openpyxl import load_workbook

from simulation_engine import calculate_simulation
from services.simulation_export import create_simulation_excel


@pytest.fixture
def workbook(catalog, reference_config):
    result = calculate_simulation(reference_config, catalog)
    data = create_simulation_excel(reference_config, result)
    return load_workbook(BytesIO(data))


def find_row(ws, label):
    for row in ws.iter_rows(min_col=1, max_col=1):
        if row[0].value == label:
            return row[0].row
    raise AssertionError(f"row {label!r} not found")


class TestSimulationExcel:

    def test_returns_xlsx_bytes(self, catalog, reference_config):
        result = calculate_simulation(reference_config, catalog)
        data = create_simulation_excel(reference_config, result)
        assert isinstance(data, bytes)
        assert data[:2] == b"PK"

    def test_sheets(self, workbook):
        assert workbook.sheetnames == ["测算汇总", "合同明细", "提示"]

    def test_summary_title_and_entities(self, workbook):
        ws = workbook["测算汇总"]
        assert ws["A1"].value == "贸易链路税负与利润测算"
        names_row = find_row(ws, "主体")
        names = [ws.cell(row=names_row, column=col).value for col in range(2, 6)]
        assert names[1] == "宸铭供应链 (默认)"
        assert names[3] == "德商渠道 (商超)"

    def test_summary_net_profit_row(self, workbook):
        ws = workbook["测算汇总"]
        row = find_row(ws, "净利")
        assert ws.cell(row=row, column=3).value == pytest.approx(-2.7887)
        assert ws.cell(row=row, column=4).value == pytest.approx(48.2656)
        assert ws.cell(row=row, column=5).value == pytest.approx(118.4416)

    def test_breakdown_rows(self, workbook):
        ws = workbook["合同明细"]
        # Header + one line per entity
        assert ws.max_row == 5
        assert ws.cell(row=5, column=5).value == pytest.approx(1087.68)

    def test_warnings_listed(self, workbook):
        ws = workbook["提示"]
        messages = [ws.cell(row=r, column=3).value for r in range(2, ws.max_row + 1)]
        assert any(m.startswith("[low_profit]") for m in messages)
