"""Import operation: workbook bytes in, structured report out.

Stages run in order: read -> map -> validate -> resolve -> plan -> apply.
Sheet validation may run in parallel; resolution and planning always run
single-threaded over the globally ordered record set.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from ..catalog.gateway import CatalogGateway, JsonFileCatalogGateway
from ..common.config_validator import ImportConfig
from ..exceptions import CatalogImportError, ConcurrentModificationError, SchemaError, SheetRejectedError
from ..ingestion_utils import load_config, read_workbook, setup_logging
from ..logging_utils import end_stage_timer, get_logger, log_error, log_system_event, log_warning, start_stage_timer
from ..mapping.schema_mapper import MappedSheet, detect_sheet_kind, load_synonym_table, map_sheet
from ..models import PlanAction, ValidatedRecord
from ..planning.import_planner import ApplyResult, apply_plan, existing_university_keys, plan_import, read_snapshot
from ..resolution.entity_resolver import program_university_refs, resolve_entities
from ..validation.row_validator import validate_sheets
from ..validation.validation_report import (
    STATUS_APPLIED,
    STATUS_PLANNED,
    STATUS_REJECTED,
    ImportReport,
    write_error_csv,
    write_report,
)


def _sheet_info(name: str, status: str, **extra) -> Dict[str, object]:
    return {"sheet": name, "status": status, **extra}


def import_workbook(
    data: bytes,
    filename: str,
    gateway: CatalogGateway,
    config: Optional[ImportConfig] = None,
    *,
    dry_run: bool = False,
    logger: Optional[logging.Logger] = None,
) -> ImportReport:
    """Import one workbook into the catalog behind ``gateway``.

    Args:
        data: Raw workbook bytes as uploaded
        filename: Declared filename; its extension selects the reader
        gateway: Catalog read/write boundary
        config: Importer configuration (package defaults when None)
        dry_run: Plan without applying

    Returns:
        ImportReport. Status is ``rejected`` when a sheet was rejected and
        ``ingestion.on_sheet_rejection`` is ``abort``; nothing is applied then.

    Raises:
        UnsupportedFileError: Extension not allowed.
        WorkbookReadError: Bytes could not be parsed.
        ConcurrentModificationError: The catalog changed during apply; the
            partial report is attached as ``exc.report``.
    """

    config = config if config is not None else load_config()
    logger = get_logger(logger)
    report = ImportReport(filename=filename)
    timings = report.timings

    log_system_event(logger, "Import started for %s (dry_run=%s)", filename, dry_run)

    t = start_stage_timer("read")
    sheets = read_workbook(data, filename, config.ingestion.allowed_extensions)
    end_stage_timer("read", t, timings, logger)
    logger.info("Discovered %d sheet(s): %s", len(sheets), [s.name for s in sheets])

    # Mapping ---------------------------------------------------------------
    t = start_stage_timer("map")
    table = load_synonym_table(config.column_map)
    mapped: List[MappedSheet] = []
    rejected = False
    for sheet in sheets:
        if not sheet.headers:
            log_warning(logger, "Sheet %r is empty; ignored", sheet.name)
            report.sheets.append(_sheet_info(sheet.name, "ignored", reason="empty"))
            continue
        kind = detect_sheet_kind(sheet, table, config.ingestion.sheet_kinds)
        if kind is None:
            log_warning(logger, "Sheet %r maps no catalog columns; ignored", sheet.name)
            report.sheets.append(_sheet_info(sheet.name, "ignored", reason="no catalog columns"))
            continue
        try:
            mapped.append(map_sheet(sheet, kind, table, logger))
        except SchemaError as exc:
            log_warning(logger, "%s", exc.message)
            report.errors.append(exc.to_dict())
            report.sheets.append(_sheet_info(sheet.name, "rejected", kind=kind.value))
            rejected = True
    end_stage_timer("map", t, timings, logger)

    # Validation ------------------------------------------------------------
    t = start_stage_timer("validate")
    records: List[ValidatedRecord] = []
    results = validate_sheets(mapped, config.ingestion, logger)
    for sheet, result in zip(mapped, results):
        info = _sheet_info(
            sheet.sheet,
            "accepted",
            kind=sheet.kind.value,
            mapped_columns=sheet.mapping.header_map,
            metadata_columns=sheet.mapping.unmapped,
        )
        if isinstance(result, SheetRejectedError):
            log_warning(logger, "%s", result.message)
            report.errors.append(result.to_dict())
            info["status"] = "rejected"
            rejected = True
        else:
            report.errors.extend(e.to_dict() for e in result.errors)
            records.extend(result.records)
            info.update(rows=result.total_rows, valid_rows=len(result.records), failed_rows=result.failed_rows)
        report.sheets.append(info)
    end_stage_timer("validate", t, timings, logger)

    if rejected and config.ingestion.on_sheet_rejection == "abort":
        report.status = STATUS_REJECTED
        log_error(logger, "Import of %s aborted: sheet rejected, nothing planned or applied", filename)
        return report

    # Resolution ------------------------------------------------------------
    t = start_stage_timer("resolve")
    catalog_keys = existing_university_keys(gateway, program_university_refs(records))
    resolution = resolve_entities(
        records,
        catalog_university_keys=catalog_keys,
        derive_universities=config.ingestion.derive_universities_from_programs,
        logger=logger,
    )
    report.errors.extend(e.to_dict() for e in resolution.link_errors)
    end_stage_timer("resolve", t, timings, logger)

    # Planning --------------------------------------------------------------
    t = start_stage_timer("plan")
    cutoff = config.resolution.near_duplicate_cutoff
    snapshot = read_snapshot(gateway, resolution, near_duplicates=cutoff is not None)
    plan = plan_import(resolution, snapshot, cutoff, logger)
    report.errors.extend(c.to_dict() for c in plan.conflicts())
    report.plan = [e.summary() for e in plan.entries()]
    report.counts = plan.counts()
    end_stage_timer("plan", t, timings, logger)

    if dry_run:
        report.status = STATUS_PLANNED
        report.skipped = [e.summary() for e in plan.entries() if e.action is PlanAction.SKIP]
        log_system_event(logger, "Dry run complete: %s", report.counts)
        return report

    # Apply -----------------------------------------------------------------
    t = start_stage_timer("apply")
    applied = ApplyResult()
    try:
        apply_plan(plan, gateway, logger, result=applied)
    except ConcurrentModificationError as exc:
        report.applied, report.skipped = applied.applied, applied.skipped
        report.errors.append(exc.to_dict())
        end_stage_timer("apply", t, timings, logger)
        log_error(logger, "%s; re-submit the import", exc.message)
        exc.report = report
        raise
    report.applied, report.skipped = applied.applied, applied.skipped
    report.status = STATUS_APPLIED
    end_stage_timer("apply", t, timings, logger)

    log_system_event(logger, "Import finished: %s", report.summary_line())
    return report


def build_arg_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""

    parser = argparse.ArgumentParser(description="Import a university/program workbook into the catalog")
    parser.add_argument("workbook", help="Path to the .xlsx/.xlsm/.csv file")
    parser.add_argument("--config", default=None, help="Path to configuration file (package defaults if omitted)")
    parser.add_argument("--catalog", default="catalog.json", help="JSON catalog file to import into")
    parser.add_argument("--dry-run", action="store_true", help="Plan only; do not write the catalog")
    parser.add_argument("--report", default=None, help="Report path (default: paths.reports_dir/<workbook>_report.json)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point; returns a process exit code."""

    args = build_arg_parser().parse_args(argv)
    try:
        config = load_config(args.config)
    except CatalogImportError as exc:
        print(f"Configuration error: {exc.message}", file=sys.stderr)
        return 2
    logger = setup_logging(config)

    workbook = Path(args.workbook)
    try:
        gateway = JsonFileCatalogGateway(args.catalog, logger)
        report = import_workbook(workbook.read_bytes(), workbook.name, gateway, config, dry_run=args.dry_run, logger=logger)
        exit_code = 1 if report.status == STATUS_REJECTED else 0
    except ConcurrentModificationError as exc:
        report = exc.report
        exit_code = 3
    except (CatalogImportError, OSError) as exc:
        log_error(logger, "Import failed: %s", exc)
        return 2

    report_path = Path(args.report) if args.report else Path(config.paths.reports_dir) / f"{workbook.stem}_report.json"
    write_report(report, report_path)
    write_error_csv(report, report_path.with_name(f"{report_path.stem}_errors.csv"))
    logger.info("Report written to %s", report_path)
    print(report.summary_line())
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
