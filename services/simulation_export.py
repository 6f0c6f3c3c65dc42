"""
Simulation Excel Export Service

Generates an Excel workbook for one simulation run:
- 测算汇总 sheet: configuration summary, entity comparison table, chain totals
- 合同明细 sheet: per-entity contract lines (price breakdown)
- 提示 sheet: notes and warnings per entity
"""

from decimal import Decimal
from io import BytesIO
from typing import List

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment, Border, Side
from openpyxl.utils import get_column_letter

from simulation_models import CalculationConfig, EntityResult, SimulationResult, TradeMode


# Color definitions
HEADER_FILL = PatternFill(start_color="8B1E1E", end_color="8B1E1E", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=10)
SUBHEADER_FILL = PatternFill(start_color="F5E6C8", end_color="F5E6C8", fill_type="solid")
CENTRAL_FILL = PatternFill(start_color="FFF3CD", end_color="FFF3CD", fill_type="solid")
LOSS_FONT = Font(color="C00000", bold=True)
THIN_BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin')
)
MONEY_FORMAT = '#,##0.00'
PERCENT_FORMAT = '0.00%'

# (label, attribute, number format)
ENTITY_ROWS = [
    ("采购额 (含税)", "in_price_incl_tax", MONEY_FORMAT),
    ("采购额 (不含税)", "in_price_excl_tax", MONEY_FORMAT),
    ("销售额 (含税)", "out_price_incl_tax", MONEY_FORMAT),
    ("销售额 (不含税)", "out_price_excl_tax", MONEY_FORMAT),
    ("进项税", "vat_input", MONEY_FORMAT),
    ("销项税", "vat_output", MONEY_FORMAT),
    ("应缴增值税", "vat_payable", MONEY_FORMAT),
    ("附加税", "surcharges", MONEY_FORMAT),
    ("所得税", "income_tax", MONEY_FORMAT),
    ("税返", "tax_refunds", MONEY_FORMAT),
    ("代销佣金", "commission_expense", MONEY_FORMAT),
    ("账期 (天)", "payment_term_days", "0"),
    ("垫资天数", "financing_days", "0"),
    ("资金成本", "finance_cost", MONEY_FORMAT),
    ("运营成本", "operational_cost", MONEY_FORMAT),
    ("毛利", "gross_profit", MONEY_FORMAT),
    ("净利", "net_profit", MONEY_FORMAT),
    ("资金占用", "cash_outflow", MONEY_FORMAT),
    ("综合税负率", "tax_burden_rate", PERCENT_FORMAT),
]


def _write_header_row(ws, row: int, headers: List[str]) -> None:
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=row, column=col)
        cell.value = header
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal='center', wrap_text=True)
        cell.border = THIN_BORDER


def _cell_value(value):
    if isinstance(value, Decimal):
        return float(value)
    return value


def _write_summary_sheet(ws, config: CalculationConfig, result: SimulationResult) -> None:
    entities = result.entities()
    last_col = get_column_letter(len(entities) + 1)
    row = 1

    # ==================== HEADER SECTION ====================
    ws.merge_cells(f'A{row}:{last_col}{row}')
    ws[f'A{row}'] = "贸易链路税负与利润测算"
    ws[f'A{row}'].font = Font(bold=True, size=14)
    ws[f'A{row}'].alignment = Alignment(horizontal='center')
    row += 2

    mode = "代销" if config.retailer.trade_mode == TradeMode.CONSIGNMENT else "经销"
    info_data = [
        ("链路:", " → ".join(entity.name for entity in entities)),
        ("渠道模式:", mode),
        ("资方年化利率:", f"{config.settings.funder_interest_rate}%"),
        ("平台年化利率:", f"{config.settings.platform_interest_rate}%"),
        ("平台运营成本率:", f"{config.settings.platform_operational_cost_percent}%"),
    ]
    for label, value in info_data:
        ws[f'A{row}'] = label
        ws[f'A{row}'].font = Font(bold=True)
        ws[f'B{row}'] = value
        row += 1
    row += 1

    # ==================== ENTITY TABLE ====================
    _write_header_row(ws, row, ["项目"] + [entity.role for entity in entities])
    row += 1

    for col, entity in enumerate(entities, 2):
        cell = ws.cell(row=row, column=col, value=entity.name)
        cell.font = Font(bold=True)
        cell.fill = CENTRAL_FILL if entity.is_central_node else SUBHEADER_FILL
        cell.border = THIN_BORDER
    ws.cell(row=row, column=1, value="主体").border = THIN_BORDER
    row += 1

    for col, entity in enumerate(entities, 2):
        cell = ws.cell(row=row, column=col, value=f"{entity.region.label} / {entity.tax_identity.label}")
        cell.border = THIN_BORDER
    ws.cell(row=row, column=1, value="注册地 / 纳税人").border = THIN_BORDER
    row += 1

    for label, attribute, number_format in ENTITY_ROWS:
        ws.cell(row=row, column=1, value=label).border = THIN_BORDER
        for col, entity in enumerate(entities, 2):
            value = getattr(entity, attribute)
            cell = ws.cell(row=row, column=col, value=_cell_value(value))
            cell.number_format = number_format
            cell.border = THIN_BORDER
            if attribute == "net_profit" and value < 0:
                cell.font = LOSS_FONT
        row += 1
    row += 1

    # ==================== TOTALS ====================
    totals = [
        ("链路应缴增值税合计", result.total_vat_payable),
        ("链路附加税合计", result.total_surcharges),
        ("链路所得税合计", result.total_income_tax),
        ("链路税返合计", result.total_tax_refunds),
        ("链路净利合计", result.total_net_profit),
    ]
    for label, value in totals:
        ws[f'A{row}'] = label
        ws[f'A{row}'].font = Font(bold=True)
        ws[f'B{row}'] = _cell_value(value)
        ws[f'B{row}'].number_format = MONEY_FORMAT
        row += 1

    # ==================== COLUMN WIDTHS ====================
    ws.column_dimensions['A'].width = 22
    for col in range(2, len(entities) + 2):
        ws.column_dimensions[get_column_letter(col)].width = 24


def _write_breakdown_sheet(ws, entities: List[EntityResult]) -> None:
    _write_header_row(ws, 1, ["主体", "角色", "商品", "数量", "单价 (含税)", "金额 (含税)"])
    row = 2
    for entity in entities:
        for line in entity.price_breakdown:
            row_data = [
                entity.name,
                entity.role,
                line.product_name,
                line.quantity,
                _cell_value(line.unit_price_incl_tax),
                _cell_value(line.total_price_incl_tax),
            ]
            for col, value in enumerate(row_data, 1):
                cell = ws.cell(row=row, column=col, value=value)
                cell.border = THIN_BORDER
                if col >= 5:
                    cell.number_format = MONEY_FORMAT
            row += 1

    column_widths = [24, 22, 24, 8, 16, 16]
    for col, width in enumerate(column_widths, 1):
        ws.column_dimensions[get_column_letter(col)].width = width
    ws.freeze_panes = 'A2'


def _write_notes_sheet(ws, entities: List[EntityResult]) -> None:
    _write_header_row(ws, 1, ["主体", "类型", "内容"])
    row = 2
    for entity in entities:
        for kind, messages in (("说明", entity.notes), ("警告", entity.warnings)):
            for message in messages:
                ws.cell(row=row, column=1, value=entity.name).border = THIN_BORDER
                ws.cell(row=row, column=2, value=kind).border = THIN_BORDER
                cell = ws.cell(row=row, column=3, value=message)
                cell.border = THIN_BORDER
                if kind == "警告":
                    cell.font = LOSS_FONT
                row += 1

    column_widths = [24, 8, 70]
    for col, width in enumerate(column_widths, 1):
        ws.column_dimensions[get_column_letter(col)].width = width


def create_simulation_excel(config: CalculationConfig, result: SimulationResult) -> bytes:
    """
    Create the simulation workbook.

    Args:
        config: Configuration the run was computed from
        result: Simulation result

    Returns:
        Excel file as bytes
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "测算汇总"
    _write_summary_sheet(ws, config, result)

    entities = result.entities()
    _write_breakdown_sheet(wb.create_sheet("合同明细"), entities)
    _write_notes_sheet(wb.create_sheet("提示"), entities)

    # Save to bytes
    output = BytesIO()
    wb.save(output)
    output.seek(0)
    return output.getvalue()
