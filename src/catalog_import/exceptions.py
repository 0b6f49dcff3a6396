"""Exception hierarchy for the catalog import pipeline.

Only the failures that stop a stage are raised. Row and entity level problems
(validation failures, unresolved links, conflicts) are collected as issue
objects in :mod:`catalog_import.models` and reported, never raised.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional


class CatalogImportError(Exception):
    """Base exception for all catalog import errors.

    Parameters
    ----------
    code : str
        Stable machine-readable error code (e.g. ``'SCHEMA_ERROR'``).
    message : str
        Human-readable message.
    context : Mapping[str, Any] | None
        Structured context for logging and reporting.
    """

    def __init__(self, code: str, message: str, *, context: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"type": type(self).__name__, "code": self.code, "message": self.message, **self.context}


class ConfigError(CatalogImportError):
    """Configuration file is missing, unreadable or invalid."""

    def __init__(self, message: str, *, context: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__("CONFIG_ERROR", message, context=context)


class UnsupportedFileError(CatalogImportError):
    def __init__(self, filename: str, allowed: Iterable[str]) -> None:
        allowed_list = sorted(allowed)
        super().__init__(
            "UNSUPPORTED_FILE",
            f"Unsupported file type for {filename!r}. Allowed: {allowed_list}",
            context={"filename": filename, "allowed": allowed_list},
        )


class WorkbookReadError(CatalogImportError):
    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(
            "WORKBOOK_READ_ERROR",
            f"Failed to read workbook {filename!r}: {reason}",
            context={"filename": filename},
        )


class SchemaError(CatalogImportError):
    """A sheet's headers lack mandatory canonical fields; the sheet is rejected."""

    def __init__(self, sheet: str, kind: str, missing_fields: Iterable[str]) -> None:
        missing = list(missing_fields)
        super().__init__(
            "SCHEMA_ERROR",
            f"Sheet {sheet!r} ({kind}) is missing mandatory columns: {missing}",
            context={"sheet": sheet, "kind": kind, "missing_fields": missing},
        )
        self.sheet = sheet
        self.kind = kind
        self.missing_fields = missing


class SheetRejectedError(CatalogImportError):
    """Too many rows of a sheet failed validation; the sheet is treated as malformed."""

    def __init__(self, sheet: str, failed_rows: int, total_rows: int, max_failure_rate: float) -> None:
        rate = failed_rows / total_rows if total_rows else 0.0
        super().__init__(
            "SHEET_REJECTED",
            f"Sheet {sheet!r} rejected: {failed_rows}/{total_rows} rows failed validation "
            f"({rate:.0%} > {max_failure_rate:.0%})",
            context={
                "sheet": sheet,
                "failed_rows": failed_rows,
                "total_rows": total_rows,
                "failure_rate": round(rate, 4),
                "max_failure_rate": max_failure_rate,
            },
        )
        self.sheet = sheet
        self.failed_rows = failed_rows
        self.total_rows = total_rows


class ConcurrentModificationError(CatalogImportError):
    """The catalog changed under an apply; the whole import must be re-submitted."""

    def __init__(self, kind: str, key: Any, expected_version: int, actual_version: Optional[int]) -> None:
        super().__init__(
            "CONCURRENT_MODIFICATION",
            f"{kind} {key!r} was modified concurrently (expected version {expected_version}, found {actual_version})",
            context={
                "kind": kind,
                "key": list(key) if isinstance(key, tuple) else key,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.kind = kind
        self.key = key
        # Filled by the pipeline with the partial report before re-raising.
        self.report: Any = None
