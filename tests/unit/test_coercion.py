"""Unit tests for cell coercers."""
from datetime import datetime

import numpy as np
import pytest

from catalog_import.models import DegreeLevel, IssueReason
from catalog_import.validation import coercion
from catalog_import.validation.coercion import CoercionError


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1,234.56", 1234.56),
        ("1.234,56", 1234.56),
        ("1,250", 1250.0),
        ("12,5", 12.5),
        ("1.250.000", 1250000.0),
        (" 42 ", 42.0),
        (7, 7.0),
        (np.int64(3), 3.0),
    ],
)
def test_coerce_number_auto_separator(raw, expected):
    assert coercion.coerce_number(raw) == pytest.approx(expected)


def test_coerce_number_explicit_separator():
    assert coercion.coerce_number("1.234", ",") == 1234.0
    assert coercion.coerce_number("1,234", ".") == 1234.0


@pytest.mark.parametrize("raw", ["abc", "12 apples", True])
def test_coerce_number_rejects_non_numbers(raw):
    with pytest.raises(CoercionError) as err:
        coercion.coerce_number(raw)
    assert err.value.reason is IssueReason.TYPE_MISMATCH


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("AED 45,000", (45000.0, "AED")),
        ("$12,500 per year", (12500.0, "USD")),
        ("45.000,50 €", (45000.5, "EUR")),
        ("GBP 9250", (9250.0, "GBP")),
        (30000, (30000.0, "AED")),
        ("Free", (0.0, "AED")),
    ],
)
def test_coerce_money(raw, expected):
    assert coercion.coerce_money(raw, "AED") == expected


def test_coerce_money_negative_is_out_of_range():
    with pytest.raises(CoercionError) as err:
        coercion.coerce_money("-500", "AED")
    assert err.value.reason is IssueReason.OUT_OF_RANGE


def test_coerce_money_without_amount():
    with pytest.raises(CoercionError) as err:
        coercion.coerce_money("on request", "AED")
    assert err.value.reason is IssueReason.TYPE_MISMATCH


def test_coerce_currency():
    assert coercion.coerce_currency("usd") == "USD"
    assert coercion.coerce_currency("£") == "GBP"
    assert coercion.coerce_currency("Dirhams") == "AED"
    with pytest.raises(CoercionError) as err:
        coercion.coerce_currency("beads")
    assert err.value.reason is IssueReason.UNKNOWN_ENUM


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Masters", DegreeLevel.MASTER),
        ("master", DegreeLevel.MASTER),
        ("MSc", DegreeLevel.MASTER),
        ("MBA", DegreeLevel.MASTER),
        ("Ph.D.", DegreeLevel.DOCTORATE),
        ("Doctorate", DegreeLevel.DOCTORATE),
        ("Bachelor's", DegreeLevel.BACHELOR),
        ("Undergraduate", DegreeLevel.BACHELOR),
        ("BBA", DegreeLevel.BACHELOR),
        ("Diploma in Management", DegreeLevel.DIPLOMA),
        ("OTHM Level 7", DegreeLevel.DIPLOMA),
        ("Foundation", DegreeLevel.OTHER),
        ("Postgraduate (Master's / PhD)", DegreeLevel.MASTER),
        ("Post-graduate Diploma", DegreeLevel.MASTER),
        ("Doctor of Philosophy", DegreeLevel.DOCTORATE),
    ],
)
def test_coerce_degree_level(raw, expected):
    assert coercion.coerce_degree_level(raw) is expected


def test_coerce_degree_level_unknown():
    with pytest.raises(CoercionError) as err:
        coercion.coerce_degree_level("Astronaut")
    assert err.value.reason is IssueReason.UNKNOWN_ENUM


def test_study_category_derivation_and_explicit_values():
    assert coercion.derive_study_category("Computer Science") == "Computer Science & IT"
    assert coercion.derive_study_category("Mechanical Engineering") == "Engineering"
    assert coercion.derive_study_category("Hospitality") == "Other"
    assert coercion.derive_study_category(None) is None
    assert coercion.coerce_study_category("engineering") == "Engineering"
    with pytest.raises(CoercionError):
        coercion.coerce_study_category("Alchemy")


@pytest.mark.parametrize(
    "raw, months",
    [
        ("4 years", 48),
        ("18 months", 18),
        ("1.5 yrs", 18),
        ("1,5 years", 18),
        ("2 semesters", 12),
        ("3-4 years", 48),
        (3, 36),
        ("2", 24),
    ],
)
def test_coerce_duration_months(raw, months):
    assert coercion.coerce_duration_months(raw) == months


@pytest.mark.parametrize("raw, reason", [("0 years", IssueReason.OUT_OF_RANGE), ("300 months", IssueReason.OUT_OF_RANGE), ("forever", IssueReason.TYPE_MISMATCH)])
def test_coerce_duration_errors(raw, reason):
    with pytest.raises(CoercionError) as err:
        coercion.coerce_duration_months(raw)
    assert err.value.reason is reason


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Sep, Jan", ("January", "September")),
        ("Sept / Feb", ("February", "September")),
        ("Fall 2025; Spring", ("Spring", "Fall")),
        ("September intake", ("September",)),
        ("2025-09-01", ("September",)),
        ("01/09/2025", ("September",)),
        (datetime(2025, 1, 15), ("January",)),
        ("All year round", ("January", "May", "September")),
        ("All intakes", ("January", "May", "September")),
        ("Year-round; Fall", ("January", "May", "September", "Fall")),
    ],
)
def test_coerce_intakes(raw, expected):
    assert coercion.coerce_intakes(raw) == expected


def test_coerce_intakes_unknown_token():
    with pytest.raises(CoercionError) as err:
        coercion.coerce_intakes("January, whenever")
    assert err.value.reason is IssueReason.UNKNOWN_ENUM


@pytest.mark.parametrize("raw, expected", [("Yes", True), ("available", True), ("No", False), (0, False), (True, True)])
def test_coerce_bool(raw, expected):
    assert coercion.coerce_bool(raw) is expected


def test_coerce_bool_rejects_other_text():
    with pytest.raises(CoercionError):
        coercion.coerce_bool("maybe")


def test_coerce_url_and_language():
    assert coercion.coerce_url("mit.edu") == "https://mit.edu"
    assert coercion.coerce_url("https://www.mit.edu/") == "https://www.mit.edu"
    with pytest.raises(CoercionError):
        coercion.coerce_url("not a url")
    assert coercion.coerce_language("EN / ar") == "English, Arabic"
    assert coercion.coerce_language("english") == "English"


def test_text_lists_and_tags_deduplicate():
    assert coercion.coerce_text_list("Transcript\nPassport; Transcript") == ("Transcript", "Passport")
    assert coercion.coerce_tags("AACSB, EQUIS,AACSB") == ("AACSB", "EQUIS")


def test_missing_tokens():
    assert coercion.is_missing("N/A")
    assert coercion.is_missing(" - ")
    assert coercion.is_missing(None)
    assert not coercion.is_missing("NA School")


def test_none_is_a_missing_token_not_a_negative():
    assert coercion.is_missing("None")
    assert "none" not in coercion.FALSE_TOKENS
    with pytest.raises(CoercionError):
        coercion.coerce_bool("none")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Up to 20% merit scholarship", True),
        ("Early bird discount available", True),
        ("Yes", True),
        ("No", False),
        ("not offered", False),
        ("unavailable", False),
        (True, True),
        (0, False),
    ],
)
def test_coerce_scholarship_reads_descriptive_text_as_offered(raw, expected):
    assert coercion.coerce_scholarship(raw) is expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Dubai, UAE", ("Dubai", "UAE")),
        ("Abu Dhabi ,  UAE", ("Abu Dhabi", "UAE")),
        ("Downtown, Dubai, UAE", ("Dubai", "UAE")),
        ("Sharjah", ("Sharjah", None)),
    ],
)
def test_coerce_location(raw, expected):
    assert coercion.coerce_location(raw) == expected


def test_coerce_location_without_parts():
    with pytest.raises(CoercionError) as err:
        coercion.coerce_location(" , ")
    assert err.value.reason is IssueReason.TYPE_MISMATCH
