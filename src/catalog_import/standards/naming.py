"""Centralized naming utilities for text cells, identity keys and header tokens."""
from __future__ import annotations

import re
import unicodedata
from typing import Any, Optional

import pandas as pd

_WS = re.compile(r"\s+")
_CONTROL = re.compile(r"[\x00-\x1F\x7F]")
_KEY_PUNCT = re.compile(r"[^\w\s]|_")
_HEADER_PUNCT = re.compile(r"[^a-z0-9]+")


def is_blank(value: Any) -> bool:
    """Return True for cells that carry no information.

    None, NaN/NaT, whitespace-only strings and empty containers are blank.
    """

    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def collapse_ws(s: str) -> str:
    return _WS.sub(" ", s).strip()


def normalize_text(value: Any) -> Optional[str]:
    """Normalize a free-text cell.

    - Trim and collapse whitespace
    - Normalize unicode dashes and quotes
    - Remove control characters
    - Preserve natural casing
    """

    if is_blank(value):
        return None
    s = str(value)
    s = s.replace("\u2013", "-").replace("\u2014", "-")
    s = s.replace("\u2018", "'").replace("\u2019", "'").replace("\u201c", '"').replace("\u201d", '"')
    s = s.replace("\u00a0", " ")
    s = _CONTROL.sub(" ", s)
    s = collapse_ws(s)
    return s or None


def name_key(value: Any) -> str:
    """Identity key for entity names: case-fold, strip punctuation, collapse whitespace.

    "  M.I.T. " and "mit" share the key "mit".
    """

    text = normalize_text(value)
    if text is None:
        return ""
    text = unicodedata.normalize("NFKC", text).casefold()
    text = _KEY_PUNCT.sub("", text)
    return collapse_ws(text)


def header_token(value: Any) -> str:
    """Normalize a header/alias token for matching.

    Lowercases and removes every non-alphanumeric character, so "University Name",
    "university_name" and " UNIVERSITY-NAME " all give "universityname".
    """

    if value is None:
        return ""
    token = str(value).strip().lower()
    if not token:
        return ""
    return _HEADER_PUNCT.sub("", token)
