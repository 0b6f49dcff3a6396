import sys
from io import BytesIO
from pathlib import Path

import pytest
from openpyxl import Workbook

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from catalog_import.common.config_validator import ImportConfig  # noqa: E402
from catalog_import.catalog.gateway import InMemoryCatalogGateway  # noqa: E402


def _build_workbook(sheets):
    """Build xlsx bytes from {sheet name: [header row, data rows...]}."""
    wb = Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(title=name)
        for row in rows:
            ws.append(list(row))
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def make_workbook():
    return _build_workbook


@pytest.fixture
def config():
    return ImportConfig()


@pytest.fixture
def gateway():
    return InMemoryCatalogGateway()
