"""Unit tests for row validation and the sheet failure-rate gate."""
from datetime import datetime

import numpy as np
import pytest

from catalog_import.common.config_validator import IngestionConfig
from catalog_import.exceptions import SheetRejectedError
from catalog_import.mapping.schema_mapper import MappedSheet, SheetMapping
from catalog_import.models import DegreeLevel, EntityKind, IssueReason, MappedRow, Provenance
from catalog_import.validation.row_validator import metadata_value, validate_row, validate_sheet, validate_sheets


def _row(sheet="Programs", row=2, metadata=None, **fields):
    return MappedRow(provenance=Provenance(sheet, row), fields=fields, metadata=metadata or {})


def _program_sheet(name, rows):
    mapping = SheetMapping(sheet=name, kind=EntityKind.PROGRAM, header_map={}, unmapped=[])
    return MappedSheet(mapping=mapping, rows=[_row(sheet=name, row=i + 2, **r) for i, r in enumerate(rows)])


GOOD = {"university": "MIT", "name": "CS", "degree_level": "Masters"}
BAD = {"university": "MIT", "name": "CS", "degree_level": "Astronaut"}


def test_valid_program_row_is_coerced():
    row = _row(
        university=" MIT ",
        name="Computer Science",
        degree_level="Masters",
        field_of_study="Computer Science",
        duration="2 years",
        tuition="USD 55,000",
        intakes="Sep, Jan",
        has_scholarship="Yes",
        language="EN",
    )
    record, errors = validate_row(row, EntityKind.PROGRAM, IngestionConfig())

    assert errors == []
    fields = record.fields
    assert fields["university"] == "MIT"
    assert fields["degree_level"] is DegreeLevel.MASTER
    assert fields["duration_months"] == 24
    assert (fields["tuition_amount"], fields["tuition_currency"]) == (55000.0, "USD")
    assert fields["intakes"] == ("January", "September")
    assert fields["has_scholarship"] is True
    assert fields["language"] == "English"
    assert fields["study_category"] == "Computer Science & IT"
    assert "tuition" not in fields and "duration" not in fields
    assert record.provenance == Provenance("Programs", 2)


def test_bare_tuition_takes_default_currency_and_currency_column_overrides():
    config = IngestionConfig(default_currency="aed")
    record, _ = validate_row(_row(tuition=45000, **GOOD), EntityKind.PROGRAM, config)
    assert (record.fields["tuition_amount"], record.fields["tuition_currency"]) == (45000.0, "AED")

    record, _ = validate_row(_row(tuition="45,000", tuition_currency="eur", **GOOD), EntityKind.PROGRAM, config)
    assert record.fields["tuition_currency"] == "EUR"


def test_missing_required_fields_are_reported_per_field():
    record, errors = validate_row(_row(name="CS", university="N/A"), EntityKind.PROGRAM, IngestionConfig())

    assert record is None
    assert {(e.field, e.reason) for e in errors} == {
        ("university", IssueReason.MISSING_REQUIRED),
        ("degree_level", IssueReason.MISSING_REQUIRED),
    }
    assert all(e.sheet == "Programs" and e.row == 2 for e in errors)


def test_every_failing_field_is_collected():
    row = _row(duration="forever", tuition="-10", intakes="whenever", **BAD)
    _, errors = validate_row(row, EntityKind.PROGRAM, IngestionConfig())
    reasons = {e.field: e.reason for e in errors}
    assert reasons == {
        "degree_level": IssueReason.UNKNOWN_ENUM,
        "duration": IssueReason.TYPE_MISMATCH,
        "tuition": IssueReason.OUT_OF_RANGE,
        "intakes": IssueReason.UNKNOWN_ENUM,
    }
    assert errors[0].to_dict()["type"] == "RowValidationError"


def test_university_row_and_metadata():
    row = _row(
        sheet="Universities",
        name="  MIT ",
        website="mit.edu",
        accreditations="NECHE, ABET",
        metadata={"QS Rank": np.int64(1), "Founded": datetime(1861, 4, 10), "Note": "  top  "},
    )
    record, errors = validate_row(row, EntityKind.UNIVERSITY, IngestionConfig())
    assert errors == []
    assert record.fields["name"] == "MIT"
    assert record.fields["website"] == "https://mit.edu"
    assert record.fields["accreditations"] == ("NECHE", "ABET")
    assert record.fields["metadata"] == {"QS Rank": 1, "Founded": "1861-04-10T00:00:00", "Note": "top"}


def test_metadata_value_normalizes_scalars():
    assert metadata_value(np.float64(2.0)) == 2
    assert isinstance(metadata_value(np.int64(3)), int)
    assert metadata_value(2.5) == 2.5
    assert metadata_value("   ") is None


def test_sheet_with_forty_percent_bad_rows_keeps_the_rest():
    sheet = _program_sheet("Programs", [GOOD, BAD, GOOD, BAD, GOOD])
    result = validate_sheet(sheet, IngestionConfig())

    assert len(result.records) == 3
    assert result.failed_rows == 2
    assert [e.row for e in result.errors] == [3, 5]


def test_sheet_with_sixty_percent_bad_rows_is_rejected():
    sheet = _program_sheet("Programs", [BAD, GOOD, BAD, GOOD, BAD])
    with pytest.raises(SheetRejectedError) as err:
        validate_sheet(sheet, IngestionConfig())
    assert (err.value.failed_rows, err.value.total_rows) == (3, 5)
    assert err.value.to_dict()["failure_rate"] == 0.6


def test_threshold_is_strictly_greater_than():
    sheet = _program_sheet("Programs", [GOOD, BAD, GOOD, BAD])
    assert validate_sheet(sheet, IngestionConfig()).failed_rows == 2

    with pytest.raises(SheetRejectedError):
        validate_sheet(sheet, IngestionConfig(max_failure_rate=0.25))


def test_parallel_validation_keeps_sheet_order():
    sheets = [
        _program_sheet("A", [GOOD]),
        _program_sheet("B", [BAD, BAD]),
        _program_sheet("C", [GOOD, GOOD]),
    ]
    results = validate_sheets(sheets, IngestionConfig(max_workers=3))

    assert results[0].sheet == "A"
    assert isinstance(results[1], SheetRejectedError)
    assert results[1].sheet == "B"
    assert len(results[2].records) == 2


def test_university_location_fills_city_and_country():
    row = _row(sheet="Universities", name="Test University 1", location="Dubai, UAE")
    record, errors = validate_row(row, EntityKind.UNIVERSITY, IngestionConfig())

    assert errors == []
    assert (record.fields["city"], record.fields["country"]) == ("Dubai", "UAE")
    assert "location" not in record.fields
    assert record.fields["metadata"] == {}


def test_explicit_city_and_country_win_over_location():
    row = _row(sheet="Universities", name="Heriot-Watt", city="Dubai Knowledge Park", country="United Arab Emirates", location="Dubai, UAE")
    record, _ = validate_row(row, EntityKind.UNIVERSITY, IngestionConfig())
    assert (record.fields["city"], record.fields["country"]) == ("Dubai Knowledge Park", "United Arab Emirates")


def test_descriptive_scholarship_text_does_not_fail_the_row():
    record, errors = validate_row(_row(has_scholarship="Up to 20% merit scholarship", **GOOD), EntityKind.PROGRAM, IngestionConfig())
    assert errors == []
    assert record.fields["has_scholarship"] is True

    record, _ = validate_row(_row(has_scholarship="None", **GOOD), EntityKind.PROGRAM, IngestionConfig())
    assert "has_scholarship" not in record.fields
