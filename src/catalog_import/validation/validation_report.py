from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

STATUS_APPLIED = "applied"
STATUS_PLANNED = "planned"
STATUS_REJECTED = "rejected"

ERROR_COLUMNS = ["type", "sheet", "row", "field", "reason", "message", "value"]


@dataclass
class ImportReport:
    """Structured outcome of one import submission.

    ``applied`` and ``skipped`` hold upsert summaries; ``errors`` holds every
    SchemaError, SheetRejectedError, RowValidationError, LinkError and Conflict
    as plain dicts with a ``type`` field.
    """

    filename: str
    status: str = STATUS_PLANNED
    applied: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    plan: List[Dict[str, Any]] = field(default_factory=list)
    counts: Dict[str, Any] = field(default_factory=dict)
    sheets: List[Dict[str, Any]] = field(default_factory=list)
    timings: Dict[str, float] = field(default_factory=dict)

    def errors_of(self, error_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.errors if e.get("type") == error_type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "status": self.status,
            "summary": {
                "applied": len(self.applied),
                "skipped": len(self.skipped),
                "errors": len(self.errors),
                **self.counts,
            },
            "applied": self.applied,
            "skipped": self.skipped,
            "errors": self.errors,
            "plan": self.plan,
            "sheets": self.sheets,
            "timings": self.timings,
        }

    def summary_line(self) -> str:
        return (
            f"{self.filename}: {self.status}, {len(self.applied)} applied, "
            f"{len(self.skipped)} skipped, {len(self.errors)} errors"
        )


def write_report(report: ImportReport, output_path: str | Path) -> Path:
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2, default=str)
    return out


def errors_frame(report: ImportReport) -> pd.DataFrame:
    """Flatten the report errors for review; row-level columns are blank for sheet issues."""

    rows = []
    for error in report.errors:
        row = {c: error.get(c) for c in ERROR_COLUMNS}
        if row["reason"] is None and error.get("code"):
            row["reason"] = error["code"]
        if row["sheet"] is None and error.get("rows"):
            first = error["rows"][0]
            row["sheet"], row["row"] = first.get("sheet"), first.get("row")
        rows.append(row)
    return pd.DataFrame(rows, columns=ERROR_COLUMNS)


def write_error_csv(report: ImportReport, output_path: str | Path) -> Path:
    """Emit the errors of a report as CSV; a header-only file when there are none."""

    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    errors_frame(report).to_csv(out, index=False, encoding="utf-8-sig")
    return out
