"""Workbook reading, configuration loading and logging setup."""
from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import yaml

from .common.config_validator import ImportConfig, load_and_validate_config
from .exceptions import ConfigError, UnsupportedFileError, WorkbookReadError
from .logging_utils import LOGGER_NAME
from .models import RawRow
from .standards.naming import is_blank

PACKAGE_CONFIG_DIR = Path(__file__).resolve().parent / "config"
DEFAULT_CONFIG_PATH = PACKAGE_CONFIG_DIR / "default_config.yaml"
DEFAULT_COLUMN_MAP_PATH = PACKAGE_CONFIG_DIR / "column_map.yaml"

EXCEL_EXTENSIONS = {".xlsx", ".xlsm"}
TEXT_EXTENSIONS = {".csv", ".tsv", ".txt"}


@dataclass
class SheetData:
    """One sheet of an uploaded workbook: headers in column order plus its non-blank rows."""

    name: str
    headers: List[str]
    rows: List[RawRow] = field(default_factory=list)


def load_yaml(path: str | Path) -> Dict:
    """Load a YAML document, returning an empty mapping for empty files."""

    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Configuration file not found: {p}", context={"path": str(p)})
    try:
        with open(p, "r", encoding="utf-8") as stream:
            return yaml.safe_load(stream) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}", context={"path": str(p)}) from exc


def load_config(path: Optional[str | Path] = None) -> ImportConfig:
    """Load and validate the importer configuration (package defaults when path is None)."""

    return load_and_validate_config(load_yaml(path if path is not None else DEFAULT_CONFIG_PATH))


def ensure_directory(directory: str | Path) -> Path:
    """Ensure that the directory exists."""

    path = Path(directory)
    path.mkdir(parents=True, exist_ok=True)
    return path


def setup_logging(config: ImportConfig) -> logging.Logger:
    """Configure the package logger with a console handler and a file handler.

    The file handler writes to ``paths.logs_dir/logging.file_name``. Handlers are
    reset on every call so repeated runs in one process do not duplicate lines.
    """

    logs_dir = ensure_directory(config.paths.logs_dir)
    log_path = logs_dir / config.logging.file_name

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, config.logging.level))
    logger.handlers = []

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setFormatter(formatter)
    logger.addHandler(fh)

    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    logger.debug("Logging initialised. Logs will be written to %s", log_path)
    return logger


def validate_extension(filename: str, allowed: Iterable[str]) -> str:
    """Ensure the file extension is allowed and return it lower-cased."""

    suffix = Path(filename).suffix.lower()
    allowed_set = {ext.lower() for ext in allowed}
    if suffix not in allowed_set:
        raise UnsupportedFileError(filename, allowed_set)
    return suffix


def normalize_headers(df: pd.DataFrame) -> pd.DataFrame:
    """Normalize header whitespace.

    - Strips whitespace
    - Drops placeholder columns pandas creates for blank header cells when the
      whole column is empty
    - Collapses duplicate columns after stripping by appending an index suffix
    """

    df = df.copy()
    keep = []
    for col in df.columns:
        label = "" if is_blank(col) else str(col)
        if (not label.strip() or label.startswith("Unnamed:")) and df[col].map(is_blank).all():
            continue
        keep.append(col)
    df = df[keep]

    raw_cols = [str(col).strip() for col in df.columns]
    seen: Dict[str, int] = {}
    fixed: List[str] = []
    for col in raw_cols:
        base = col
        if base in seen:
            seen[base] += 1
            fixed.append(f"{base}.{seen[base]}")
        else:
            seen[base] = 0
            fixed.append(base)
    df.columns = fixed
    return df


def _clean_cell(value: Any) -> Any:
    if is_blank(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value


def frame_to_sheet(name: str, df: pd.DataFrame) -> SheetData:
    """Convert a header-parsed frame into a SheetData.

    Row numbers are spreadsheet rows: the header is row 1, the first data row is 2.
    Rows whose cells are all blank are skipped but keep numbering intact.
    """

    df = normalize_headers(df)
    headers = list(df.columns)
    rows: List[RawRow] = []
    for offset, record in enumerate(df.to_dict("records")):
        values = {h: _clean_cell(record.get(h)) for h in headers}
        if all(v is None for v in values.values()):
            continue
        rows.append(RawRow(sheet=name, row=offset + 2, values=values))
    return SheetData(name=name, headers=headers, rows=rows)


def _read_delimited(data: bytes) -> pd.DataFrame:
    """Read delimited text with a sniffed separator, falling back to comma."""

    options = dict(dtype=str, engine="python", keep_default_na=False, skip_blank_lines=False, encoding="utf-8-sig")
    try:
        return pd.read_csv(BytesIO(data), sep=None, **options)
    except (pd.errors.ParserError, csv.Error):
        # Sniffing fails on single-column files
        return pd.read_csv(BytesIO(data), sep=",", **options)


def read_workbook(data: bytes, filename: str, allowed_extensions: Iterable[str]) -> List[SheetData]:
    """Read every sheet of an uploaded workbook.

    Supported formats: xlsx/xlsm through openpyxl (all sheets, in workbook order)
    and delimited text (one sheet named after the file stem, delimiter sniffed).
    Cells are read as objects so numbers and dates reach the coercers untouched.
    """

    suffix = validate_extension(filename, allowed_extensions)
    buffer = BytesIO(data)
    try:
        if suffix in EXCEL_EXTENSIONS:
            frames = pd.read_excel(buffer, sheet_name=None, dtype=object, engine="openpyxl")
        elif suffix in TEXT_EXTENSIONS:
            frames = {Path(filename).stem: _read_delimited(data)}
        else:
            raise UnsupportedFileError(filename, allowed_extensions)
    except UnsupportedFileError:
        raise
    except Exception as exc:
        raise WorkbookReadError(filename, str(exc)) from exc

    return [frame_to_sheet(str(sheet_name), frame) for sheet_name, frame in frames.items()]
