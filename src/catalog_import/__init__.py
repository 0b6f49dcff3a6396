"""Spreadsheet ingestion pipeline for the university and program catalog."""
from .catalog.gateway import CatalogGateway, InMemoryCatalogGateway, JsonFileCatalogGateway, query_catalog
from .exceptions import (
    CatalogImportError,
    ConcurrentModificationError,
    ConfigError,
    SchemaError,
    SheetRejectedError,
    UnsupportedFileError,
    WorkbookReadError,
)
from .ingestion_utils import load_config
from .models import DegreeLevel, EntityKind, Program, University
from .pipeline.run_import import import_workbook

__version__ = "0.3.0"

__all__ = [
    "CatalogGateway",
    "InMemoryCatalogGateway",
    "JsonFileCatalogGateway",
    "query_catalog",
    "CatalogImportError",
    "ConcurrentModificationError",
    "ConfigError",
    "SchemaError",
    "SheetRejectedError",
    "UnsupportedFileError",
    "WorkbookReadError",
    "load_config",
    "DegreeLevel",
    "EntityKind",
    "Program",
    "University",
    "import_workbook",
]
