"""Cell coercers: text, numbers, money, enumerations, durations and intake periods.

Each coercer takes one non-blank cell and returns the canonical value or
raises :class:`CoercionError` carrying the validation reason.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..models import DegreeLevel, IssueReason
from ..standards.naming import is_blank, normalize_text

MISSING_TOKENS = {"na", "n/a", "-", "--", "null", "none", "nil", "tbd", "tba", "#n/a"}

_NUMBER_RX = re.compile(r"^[-+]?\d[\d.,]*$")
_NUMBER_IN_TEXT_RX = re.compile(r"[-+]?\d[\d.,\s']*\d|[-+]?\d")
_THOUSANDS_COMMA_RX = re.compile(r"^[-+]?\d{1,3}(,\d{3})+$")
_THOUSANDS_DOT_RX = re.compile(r"^[-+]?\d{1,3}(\.\d{3}){2,}$")

CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP", "₹": "INR", "¥": "JPY", "د.إ": "AED"}
CURRENCY_CODES = {
    "AED", "USD", "EUR", "GBP", "SAR", "QAR", "KWD", "BHD", "OMR", "EGP", "INR", "PKR",
    "CAD", "AUD", "NZD", "CHF", "JPY", "CNY", "SGD", "MYR", "TRY", "ZAR", "KES", "NGN",
}
_CURRENCY_WORDS = {"dirham": "AED", "dirhams": "AED", "dollar": "USD", "dollars": "USD", "euro": "EUR", "euros": "EUR", "pound": "GBP", "pounds": "GBP"}

# (level, word stems, exact abbreviations) checked in order; the first hit wins.
# "Postgraduate (Master's / PhD)" is an umbrella label and reads as Master.
DEGREE_KEYWORDS: List[Tuple[DegreeLevel, Tuple[str, ...], Tuple[str, ...]]] = [
    (DegreeLevel.MASTER, ("postgraduate", "postgrad"), ()),
    (DegreeLevel.DOCTORATE, ("phd", "doctor"), ("dba", "edd", "dphil")),
    (DegreeLevel.MASTER, ("master",), ("msc", "mba", "ma", "ms", "mres", "mphil", "llm", "meng")),
    (DegreeLevel.BACHELOR, ("bachelor", "undergraduate", "undergrad"), ("bsc", "bba", "ba", "bs", "beng", "llb", "bcom")),
    (DegreeLevel.DIPLOMA, ("diploma", "certificat", "othm", "hnd", "associate"), ()),
    (DegreeLevel.OTHER, ("foundation", "school", "pathway", "other"), ()),
]

STUDY_CATEGORIES: List[Tuple[str, Tuple[str, ...]]] = [
    ("Business & Management", ("business", "management", "finance", "accounting", "commerce", "marketing", "economics", "mba")),
    ("Computer Science & IT", ("computer", "information technology", "data", "artificial intelligence", "cyber", "software", "computing")),
    ("Engineering", ("engineering", "civil", "mechanical", "electrical", "aerospace")),
    ("Medicine & Health", ("medicine", "health", "nursing", "pharmacy", "dentistry", "biomedical", "medical")),
    ("Law & Politics", ("law", "legal", "politic", "international relations")),
    ("Arts & Humanities", ("art", "design", "fashion", "architecture", "interior", "animation", "humanities", "history")),
    ("Media & Communication", ("media", "communication", "journalism", "film")),
    ("Education", ("education", "teaching", "pedagogy")),
    ("Sciences", ("science", "physics", "chemistry", "biology", "mathematics", "environment")),
]
STUDY_CATEGORY_NAMES = [name for name, _ in STUDY_CATEGORIES] + ["Other"]

MONTHS = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
SEASONS = {"fall": "Fall", "autumn": "Fall", "spring": "Spring", "summer": "Summer", "winter": "Winter"}
INTAKE_ORDER = {name: i for i, name in enumerate([*MONTHS, "Spring", "Summer", "Fall", "Winter"])}
# "All year", "All intakes" and "year round" cover the three standard intakes
ALL_YEAR_INTAKES = ("January", "May", "September")
_ALL_YEAR_RX = re.compile(r"^\s*all\b|\byear[\s-]*round\b", re.IGNORECASE)

LANGUAGE_CODES = {
    "en": "English", "eng": "English", "ar": "Arabic", "ara": "Arabic", "fr": "French",
    "de": "German", "es": "Spanish", "ru": "Russian", "zh": "Chinese", "hi": "Hindi", "ur": "Urdu",
}

TRUE_TOKENS = {"yes", "y", "true", "t", "1", "available", "offered"}
FALSE_TOKENS = {"no", "n", "false", "f", "0", "not available", "unavailable"}

MAX_DURATION_MONTHS = 240


class CoercionError(ValueError):
    """A cell could not be coerced; ``reason`` is the validation reason to report."""

    def __init__(self, reason: IssueReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


def is_missing(value: Any) -> bool:
    """Blank cells and placeholder tokens such as "N/A" or "-" count as missing."""

    if is_blank(value):
        return True
    return isinstance(value, str) and value.strip().lower() in MISSING_TOKENS


def coerce_text(value: Any) -> str:
    text = normalize_text(value)
    if text is None:
        raise CoercionError(IssueReason.MISSING_REQUIRED, "value is blank")
    return text


def coerce_text_list(value: Any) -> Tuple[str, ...]:
    """Split a cell on newlines, semicolons or bullets into trimmed, de-duplicated items."""

    if isinstance(value, (list, tuple)):
        parts = [normalize_text(v) for v in value]
    else:
        parts = [normalize_text(p) for p in re.split(r"[\n;•|]+", str(value))]
    out: List[str] = []
    for p in parts:
        if p and p not in out:
            out.append(p)
    return tuple(out)


def coerce_tags(value: Any) -> Tuple[str, ...]:
    """Comma-separated tags (e.g. accreditation bodies), order preserved."""

    parts = re.split(r"[,;/\n]+", str(value))
    out: List[str] = []
    for p in parts:
        text = normalize_text(p)
        if text and text not in out:
            out.append(text)
    return tuple(out)


def _guess_decimal_separator(text: str) -> str:
    has_comma = "," in text
    has_dot = "." in text
    if has_comma and has_dot:
        return "," if text.rfind(",") > text.rfind(".") else "."
    if has_comma:
        return "." if _THOUSANDS_COMMA_RX.match(text) else ","
    if has_dot and _THOUSANDS_DOT_RX.match(text):
        return ","
    return "."


def coerce_number(value: Any, decimal_separator: str = "auto") -> float:
    """Parse a numeric cell.

    Numbers from the spreadsheet engine pass through. Text may use either
    decimal mark; with ``decimal_separator="auto"`` the mark is the last of
    ',' and '.' when both occur, a lone ',' is a thousands separator only in
    groups of three ("1,250"), and a lone '.' is decimal unless it repeats in
    groups of three ("1.250.000").
    """

    if isinstance(value, bool):
        raise CoercionError(IssueReason.TYPE_MISMATCH, f"expected a number, got {value!r}")
    if isinstance(value, (int, float, np.integer, np.floating)):
        number = float(value)
        if not np.isfinite(number):
            raise CoercionError(IssueReason.TYPE_MISMATCH, f"expected a finite number, got {value!r}")
        return number

    text = str(value).strip().replace("\u00a0", "").replace(" ", "").replace("'", "")
    if not _NUMBER_RX.match(text):
        raise CoercionError(IssueReason.TYPE_MISMATCH, f"expected a number, got {value!r}")
    sep = _guess_decimal_separator(text) if decimal_separator == "auto" else decimal_separator
    thousands = "," if sep == "." else "."
    normalized = text.replace(thousands, "").replace(sep, ".")
    try:
        return float(normalized)
    except ValueError:
        raise CoercionError(IssueReason.TYPE_MISMATCH, f"expected a number, got {value!r}") from None


def coerce_currency(value: Any) -> str:
    text = str(value).strip()
    if text in CURRENCY_SYMBOLS:
        return CURRENCY_SYMBOLS[text]
    code = text.upper()
    if code in CURRENCY_CODES:
        return code
    word = _CURRENCY_WORDS.get(text.lower())
    if word:
        return word
    raise CoercionError(IssueReason.UNKNOWN_ENUM, f"unknown currency {value!r}")


def _find_currency(text: str) -> Optional[str]:
    for symbol, code in CURRENCY_SYMBOLS.items():
        if symbol in text:
            return code
    for token in re.findall(r"[A-Za-z]+", text):
        if token.upper() in CURRENCY_CODES:
            return token.upper()
        if token.lower() in _CURRENCY_WORDS:
            return _CURRENCY_WORDS[token.lower()]
    return None


def coerce_money(value: Any, default_currency: str, decimal_separator: str = "auto") -> Tuple[float, str]:
    """Parse a tuition cell into (amount, currency).

    Accepts "AED 45,000", "45.000,50 €", "$12,500 per year" or bare numbers
    (which take ``default_currency``). Negative amounts are out of range.
    """

    if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool):
        amount = coerce_number(value, decimal_separator)
        currency = default_currency
    else:
        text = str(value).strip()
        if text.lower() in {"free", "no fee", "no fees"}:
            return 0.0, default_currency
        match = _NUMBER_IN_TEXT_RX.search(text)
        if not match:
            raise CoercionError(IssueReason.TYPE_MISMATCH, f"no amount found in {value!r}")
        amount = coerce_number(match.group(0), decimal_separator)
        currency = _find_currency(text) or default_currency
    if amount < 0:
        raise CoercionError(IssueReason.OUT_OF_RANGE, f"tuition must not be negative, got {amount}")
    return round(amount, 2), currency


def coerce_degree_level(value: Any) -> DegreeLevel:
    """Match a degree cell against the fixed levels.

    Exact, case-insensitive matches on the level names come first; otherwise
    keyword matching maps variants such as "Masters", "MSc" or "Undergraduate".
    """

    text = normalize_text(value) or ""
    lowered = text.lower()
    for level in DegreeLevel:
        if lowered == level.value.lower():
            return level
    # "Ph.D." -> "phd", "M.Sc" -> "msc", "Post-graduate" -> "post", "graduate"
    tokens = re.findall(r"[a-z]+", lowered.replace(".", "").replace("'", ""))
    compact = "".join(tokens)
    for level, stems, abbreviations in DEGREE_KEYWORDS:
        if any(t in abbreviations for t in tokens):
            return level
        if any(t.startswith(s) for t in tokens for s in stems) or any(s in compact for s in stems if len(s) > 6):
            return level
    raise CoercionError(IssueReason.UNKNOWN_ENUM, f"unknown degree level {value!r}")


def derive_study_category(field_of_study: Optional[str]) -> Optional[str]:
    if not field_of_study:
        return None
    lowered = field_of_study.lower()
    for name, keywords in STUDY_CATEGORIES:
        if any(k in lowered for k in keywords):
            return name
    return "Other"


def coerce_study_category(value: Any) -> str:
    text = normalize_text(value) or ""
    for name in STUDY_CATEGORY_NAMES:
        if text.lower() == name.lower():
            return name
    raise CoercionError(IssueReason.UNKNOWN_ENUM, f"unknown study category {value!r}")


def coerce_duration_months(value: Any, decimal_separator: str = "auto") -> int:
    """Parse a duration into whole months.

    "4 years", "18 months", "1.5 yrs", "2 semesters" and "3-4 years" (upper
    bound) are understood; bare numbers are read as years.
    """

    if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool):
        months = coerce_number(value, decimal_separator) * 12
    else:
        text = str(value).strip().lower()
        numbers = re.findall(r"\d+(?:[.,]\d+)?", text)
        if not numbers:
            raise CoercionError(IssueReason.TYPE_MISMATCH, f"no duration found in {value!r}")
        amount = coerce_number(numbers[-1], decimal_separator)
        if re.search(r"\bmonth|\bmo\b|\bmos\b", text):
            months = amount
        elif "semester" in text:
            months = amount * 6
        elif "week" in text:
            months = amount / 4.345
        elif re.search(r"\byear|\byr|\by\b", text) or re.fullmatch(r"[\d.,\s]+", text):
            months = amount * 12
        else:
            raise CoercionError(IssueReason.TYPE_MISMATCH, f"unknown duration unit in {value!r}")
    rounded = int(round(months))
    if rounded <= 0 or rounded > MAX_DURATION_MONTHS:
        raise CoercionError(IssueReason.OUT_OF_RANGE, f"duration of {rounded} months is out of range")
    return rounded


_DATE_TOKEN_RX = re.compile(r"^\d{1,4}[-/.]\d{1,2}([-/.]\d{1,4})?$")


def _intake_tag(token: str) -> Optional[str]:
    lowered = token.strip().lower().rstrip(".")
    if not lowered:
        return None
    if lowered in SEASONS:
        return SEASONS[lowered]
    for month in MONTHS:
        m = month.lower()
        if lowered == m or (len(lowered) >= 3 and m.startswith(lowered)):
            return month
    # Dates such as 2025-09-01 or 01/09/2025 identify the intake month
    if _DATE_TOKEN_RX.match(lowered):
        parsed = pd.to_datetime(lowered, errors="coerce", dayfirst=not lowered[:4].isdigit())
        if not pd.isna(parsed):
            return MONTHS[parsed.month - 1]
    return None


def _intake_tokens(text: str) -> List[str]:
    tokens: List[str] = []
    for chunk in re.split(r"[,;&\n]+|\band\b", text):
        chunk = chunk.strip()
        if not chunk:
            continue
        # "Jan/Sep" lists months, "01/09/2025" is one date
        if _DATE_TOKEN_RX.match(chunk):
            tokens.append(chunk)
        else:
            tokens.extend(p for p in chunk.split("/") if p.strip())
    return tokens


def coerce_intakes(value: Any) -> Tuple[str, ...]:
    """Parse intake periods into month/season tags in calendar order."""

    if isinstance(value, (datetime, date, pd.Timestamp)):
        return (MONTHS[value.month - 1],)
    tags: List[str] = []
    for token in _intake_tokens(str(value)):
        cleaned = re.sub(r"\b(intake|intakes|semester|term)\b", "", token, flags=re.IGNORECASE)
        # "September 2025" -> month only
        if re.search(r"[a-zA-Z]", cleaned):
            cleaned = re.sub(r"\b(19|20)\d{2}\b", "", cleaned)
        if _ALL_YEAR_RX.search(cleaned):
            tags.extend(t for t in ALL_YEAR_INTAKES if t not in tags)
            continue
        tag = _intake_tag(cleaned)
        if tag is None:
            raise CoercionError(IssueReason.UNKNOWN_ENUM, f"unknown intake period {token.strip()!r}")
        if tag not in tags:
            tags.append(tag)
    if not tags:
        raise CoercionError(IssueReason.TYPE_MISMATCH, f"no intake period found in {value!r}")
    return tuple(sorted(tags, key=INTAKE_ORDER.__getitem__))


def coerce_bool(value: Any) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, float, np.integer, np.floating)) and value in (0, 1):
        return bool(value)
    text = str(value).strip().lower()
    if text in TRUE_TOKENS or text.startswith("yes"):
        return True
    if text in FALSE_TOKENS or text.startswith("no "):
        return False
    raise CoercionError(IssueReason.TYPE_MISMATCH, f"expected yes/no, got {value!r}")


def coerce_scholarship(value: Any) -> bool:
    """Scholarship cells are often descriptive ("Up to 20% merit scholarship").

    Explicit negatives read as False; any other non-blank text means a
    scholarship is offered.
    """

    if not isinstance(value, str):
        return coerce_bool(value)
    text = value.strip().lower()
    if text in FALSE_TOKENS or text.startswith(("no ", "not ")):
        return False
    return True


def coerce_location(value: Any) -> Tuple[Optional[str], Optional[str]]:
    """Split a "City, Country" cell; the last part is the country.

    "Dubai" -> ("Dubai", None); "Downtown, Dubai, UAE" -> ("Dubai", "UAE").
    """

    parts = [normalize_text(p) for p in str(value).split(",")]
    parts = [p for p in parts if p]
    if not parts:
        raise CoercionError(IssueReason.TYPE_MISMATCH, f"no location found in {value!r}")
    if len(parts) == 1:
        return parts[0], None
    return parts[-2], parts[-1]


def coerce_url(value: Any) -> str:
    text = normalize_text(value) or ""
    if " " in text or "." not in text:
        raise CoercionError(IssueReason.TYPE_MISMATCH, f"not a URL: {value!r}")
    if not re.match(r"^[a-z][a-z0-9+.-]*://", text, flags=re.IGNORECASE):
        text = f"https://{text}"
    return text.rstrip("/")


def coerce_language(value: Any) -> str:
    """Normalize language names; "EN / ar" -> "English, Arabic"."""

    parts = [p.strip() for p in re.split(r"[,;/&]+|\band\b", str(value)) if p.strip()]
    out: List[str] = []
    for part in parts:
        lowered = part.lower()
        name = LANGUAGE_CODES.get(lowered, part.title() if part.islower() or part.isupper() else part)
        if name not in out:
            out.append(name)
    if not out:
        raise CoercionError(IssueReason.TYPE_MISMATCH, f"no language found in {value!r}")
    return ", ".join(out)
