"""Per-row validation and coercion of mapped sheets.

Failures are collected per field as :class:`RowValidationError`; a row with
any failure is excluded. A sheet whose failed-row fraction exceeds
``max_failure_rate`` is rejected wholesale as likely malformed.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from ..common.config_validator import IngestionConfig
from ..exceptions import SheetRejectedError
from ..logging_utils import get_logger
from ..mapping.schema_mapper import MappedSheet
from ..models import EntityKind, IssueReason, MappedRow, RowValidationError, ValidatedRecord
from ..standards.naming import normalize_text
from . import coercion
from .coercion import CoercionError


@dataclass(frozen=True)
class FieldRule:
    parser: Callable[[Any, IngestionConfig], Any]
    required: bool = False


def _text(value: Any, cfg: IngestionConfig) -> str:
    return coercion.coerce_text(value)


def _money(value: Any, cfg: IngestionConfig) -> Tuple[float, str]:
    return coercion.coerce_money(value, cfg.default_currency, cfg.decimal_separator)


def _duration(value: Any, cfg: IngestionConfig) -> int:
    return coercion.coerce_duration_months(value, cfg.decimal_separator)


UNIVERSITY_RULES: Dict[str, FieldRule] = {
    "name": FieldRule(_text, required=True),
    "country": FieldRule(_text),
    "city": FieldRule(_text),
    "location": FieldRule(lambda v, c: coercion.coerce_location(v)),
    "website": FieldRule(lambda v, c: coercion.coerce_url(v)),
    "image_url": FieldRule(lambda v, c: coercion.coerce_url(v)),
    "accreditations": FieldRule(lambda v, c: coercion.coerce_tags(v)),
}

PROGRAM_RULES: Dict[str, FieldRule] = {
    "university": FieldRule(_text, required=True),
    "name": FieldRule(_text, required=True),
    "degree_level": FieldRule(lambda v, c: coercion.coerce_degree_level(v), required=True),
    "field_of_study": FieldRule(_text),
    "study_category": FieldRule(lambda v, c: coercion.coerce_study_category(v)),
    "duration": FieldRule(_duration),
    "tuition": FieldRule(_money),
    "tuition_currency": FieldRule(lambda v, c: coercion.coerce_currency(v)),
    "language": FieldRule(lambda v, c: coercion.coerce_language(v)),
    "intakes": FieldRule(lambda v, c: coercion.coerce_intakes(v)),
    "requirements": FieldRule(lambda v, c: coercion.coerce_text_list(v)),
    "has_scholarship": FieldRule(lambda v, c: coercion.coerce_scholarship(v)),
    "image_url": FieldRule(lambda v, c: coercion.coerce_url(v)),
}

RULES: Dict[EntityKind, Dict[str, FieldRule]] = {
    EntityKind.UNIVERSITY: UNIVERSITY_RULES,
    EntityKind.PROGRAM: PROGRAM_RULES,
}


@dataclass
class SheetValidationResult:
    sheet: str
    kind: EntityKind
    records: List[ValidatedRecord] = field(default_factory=list)
    errors: List[RowValidationError] = field(default_factory=list)
    total_rows: int = 0
    failed_rows: int = 0

    @property
    def failure_rate(self) -> float:
        return self.failed_rows / self.total_rows if self.total_rows else 0.0


def metadata_value(value: Any) -> Any:
    """Reduce an unmapped cell to a JSON-stable scalar."""

    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, str):
        return normalize_text(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _finalize_university(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Fill city and country from a location cell; explicit columns win."""

    out = dict(fields)
    location = out.pop("location", None)
    if location is not None:
        city, country = location
        if out.get("city") is None:
            out["city"] = city
        if out.get("country") is None and country is not None:
            out["country"] = country
    return out


def _finalize_program(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Spread composite cells onto their canonical record fields."""

    out = dict(fields)
    tuition = out.pop("tuition", None)
    explicit_currency = out.pop("tuition_currency", None)
    if tuition is not None:
        out["tuition_amount"], out["tuition_currency"] = tuition
    if explicit_currency is not None:
        out["tuition_currency"] = explicit_currency
    duration = out.pop("duration", None)
    if duration is not None:
        out["duration_months"] = duration
    if out.get("study_category") is None and out.get("field_of_study"):
        out["study_category"] = coercion.derive_study_category(out["field_of_study"])
    return out


def validate_row(
    row: MappedRow,
    kind: EntityKind,
    config: IngestionConfig,
) -> Tuple[Optional[ValidatedRecord], List[RowValidationError]]:
    """Validate and coerce one mapped row.

    Returns (record, []) on success or (None, errors) listing every failing field.
    """

    rules = RULES[kind]
    errors: List[RowValidationError] = []
    values: Dict[str, Any] = {}

    for name, rule in rules.items():
        raw = row.fields.get(name)
        if coercion.is_missing(raw):
            if rule.required:
                errors.append(
                    RowValidationError(
                        sheet=row.provenance.sheet,
                        row=row.provenance.row,
                        field=name,
                        reason=IssueReason.MISSING_REQUIRED,
                        message=f"{name} is required",
                        value=raw,
                    )
                )
            continue
        try:
            values[name] = rule.parser(raw, config)
        except CoercionError as exc:
            errors.append(
                RowValidationError(
                    sheet=row.provenance.sheet,
                    row=row.provenance.row,
                    field=name,
                    reason=exc.reason,
                    message=str(exc),
                    value=raw,
                )
            )

    if errors:
        return None, errors

    if kind is EntityKind.PROGRAM:
        values = _finalize_program(values)
    else:
        values = _finalize_university(values)
    metadata = {k: metadata_value(v) for k, v in row.metadata.items()}
    values["metadata"] = {k: v for k, v in metadata.items() if v is not None}
    return ValidatedRecord(kind=kind, fields=values, provenance=row.provenance), []


def validate_sheet(
    mapped: MappedSheet,
    config: IngestionConfig,
    logger: Optional[logging.Logger] = None,
) -> SheetValidationResult:
    """Validate every row of a mapped sheet.

    Raises:
        SheetRejectedError: If the failed-row fraction is greater than
            ``config.max_failure_rate``.
    """

    logger = get_logger(logger)
    result = SheetValidationResult(sheet=mapped.sheet, kind=mapped.kind, total_rows=len(mapped.rows))
    for row in mapped.rows:
        record, errors = validate_row(row, mapped.kind, config)
        if record is None:
            result.failed_rows += 1
            result.errors.extend(errors)
        else:
            result.records.append(record)

    logger.info(
        "Sheet %r (%s): %d valid, %d failed of %d rows",
        mapped.sheet,
        mapped.kind.value,
        len(result.records),
        result.failed_rows,
        result.total_rows,
    )
    if result.total_rows and result.failure_rate > config.max_failure_rate:
        raise SheetRejectedError(mapped.sheet, result.failed_rows, result.total_rows, config.max_failure_rate)
    return result


def validate_sheets(
    sheets: List[MappedSheet],
    config: IngestionConfig,
    logger: Optional[logging.Logger] = None,
) -> List[SheetValidationResult | SheetRejectedError]:
    """Validate independent sheets, in parallel when ``config.max_workers`` > 1.

    Results come back in sheet order; a rejected sheet yields its
    SheetRejectedError in place of a result.
    """

    logger = get_logger(logger)

    def run(mapped: MappedSheet) -> SheetValidationResult | SheetRejectedError:
        try:
            return validate_sheet(mapped, config, logger)
        except SheetRejectedError as exc:
            return exc

    if config.max_workers <= 1 or len(sheets) <= 1:
        return [run(s) for s in sheets]
    with ThreadPoolExecutor(max_workers=config.max_workers) as executor:
        return list(executor.map(run, sheets))
