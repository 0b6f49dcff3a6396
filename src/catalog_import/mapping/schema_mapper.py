"""Map heterogeneous sheet headers onto the canonical University/Program fields."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..exceptions import SchemaError
from ..ingestion_utils import DEFAULT_COLUMN_MAP_PATH, SheetData, load_yaml
from ..logging_utils import get_logger
from ..models import EntityKind, MappedRow
from ..standards.naming import header_token

MANDATORY_FIELDS: Dict[EntityKind, List[str]] = {
    EntityKind.UNIVERSITY: ["name"],
    EntityKind.PROGRAM: ["name", "university"],
}

# Fields that, next to a university reference, mark a sheet as a program sheet
_PROGRAM_SIGNALS = {"degree_level", "tuition", "duration", "intakes", "field_of_study"}


@dataclass
class SynonymTable:
    """Canonical field -> accepted header variants, per entity kind.

    Lookup is by :func:`header_token`; within a kind the first canonical field
    listing a variant owns it.
    """

    aliases: Dict[EntityKind, Dict[str, List[str]]]
    _lookup: Dict[EntityKind, Dict[str, str]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        for kind, table in self.aliases.items():
            lookup: Dict[str, str] = {}
            for canonical, variants in table.items():
                for variant in [canonical, *variants]:
                    token = header_token(variant)
                    if token and token not in lookup:
                        lookup[token] = canonical
            self._lookup[kind] = lookup

    def canonical_for(self, kind: EntityKind, header: str) -> Optional[str]:
        return self._lookup.get(kind, {}).get(header_token(header))


def load_synonym_table(extra_path: Optional[str | Path] = None) -> SynonymTable:
    """Load the built-in synonym table, merging an optional override file over it.

    YAML structure::

      aliases:
        university:
          name: ["university name", "institution"]
        program:
          degree_level: ["degree", "level"]

    Variants from the override file are tried before the built-in ones.
    """

    base = (load_yaml(DEFAULT_COLUMN_MAP_PATH).get("aliases") or {})
    extra = (load_yaml(extra_path).get("aliases") or {}) if extra_path else {}

    merged: Dict[EntityKind, Dict[str, List[str]]] = {}
    for kind in EntityKind:
        table = {k: list(v or []) for k, v in (base.get(kind.value) or {}).items()}
        for canonical, variants in (extra.get(kind.value) or {}).items():
            table[canonical] = [*(variants or []), *table.get(canonical, [])]
        merged[kind] = table
    return SynonymTable(merged)


@dataclass
class SheetMapping:
    sheet: str
    kind: EntityKind
    header_map: Dict[str, str]
    unmapped: List[str]


@dataclass
class MappedSheet:
    mapping: SheetMapping
    rows: List[MappedRow]

    @property
    def sheet(self) -> str:
        return self.mapping.sheet

    @property
    def kind(self) -> EntityKind:
        return self.mapping.kind


def build_header_map(headers: Iterable[str], kind: EntityKind, table: SynonymTable) -> tuple[Dict[str, str], List[str]]:
    """Match raw headers to canonical fields in column order.

    A canonical field is claimed by the first header that matches it; later
    headers matching the same field, and headers matching nothing, are
    returned as unmapped so their cells land in metadata.
    """

    header_map: Dict[str, str] = {}
    unmapped: List[str] = []
    taken = set()
    for header in headers:
        canonical = table.canonical_for(kind, header)
        if canonical is None or canonical in taken:
            unmapped.append(header)
            continue
        header_map[header] = canonical
        taken.add(canonical)
    return header_map, unmapped


def _kind_from_sheet_name(sheet_name: str, sheet_kinds: Dict[str, List[str]]) -> Optional[EntityKind]:
    lowered = sheet_name.strip().lower()
    # Program hints first: "University Programs" is a program sheet
    for kind in (EntityKind.PROGRAM, EntityKind.UNIVERSITY):
        if any(token and token in lowered for token in sheet_kinds.get(kind.value, [])):
            return kind
    return None


def detect_sheet_kind(sheet: SheetData, table: SynonymTable, sheet_kinds: Dict[str, List[str]]) -> Optional[EntityKind]:
    """Decide whether a sheet holds universities or programs.

    The sheet name decides when it carries a hint. Otherwise a sheet mapping a
    university reference plus a program name or another program-only column is
    a program sheet, and a sheet mapping a university name is a university
    sheet. None means the sheet carries no catalog data.
    """

    hinted = _kind_from_sheet_name(sheet.name, sheet_kinds)
    if hinted is not None:
        return hinted

    program_map, _ = build_header_map(sheet.headers, EntityKind.PROGRAM, table)
    program_fields = set(program_map.values())
    if "university" in program_fields and ("name" in program_fields or program_fields & _PROGRAM_SIGNALS):
        return EntityKind.PROGRAM

    university_map, _ = build_header_map(sheet.headers, EntityKind.UNIVERSITY, table)
    if "name" in set(university_map.values()):
        return EntityKind.UNIVERSITY
    return None


def map_sheet(
    sheet: SheetData,
    kind: EntityKind,
    table: SynonymTable,
    logger: Optional[logging.Logger] = None,
) -> MappedSheet:
    """Map one sheet onto canonical fields.

    Raises:
        SchemaError: If the headers lack a mandatory field for ``kind``; no row
            of the sheet is mapped in that case.
    """

    logger = get_logger(logger)
    header_map, unmapped = build_header_map(sheet.headers, kind, table)
    present = set(header_map.values())
    missing = [f for f in MANDATORY_FIELDS[kind] if f not in present]
    if missing:
        raise SchemaError(sheet.name, kind.value, missing)

    if unmapped:
        logger.info("Sheet %r: %d header(s) kept as metadata: %s", sheet.name, len(unmapped), unmapped)

    rows: List[MappedRow] = []
    for raw in sheet.rows:
        fields = {canonical: raw.values.get(header) for header, canonical in header_map.items()}
        metadata = {h: raw.values.get(h) for h in unmapped if raw.values.get(h) is not None}
        rows.append(MappedRow(provenance=raw.provenance, fields=fields, metadata=metadata))

    mapping = SheetMapping(sheet=sheet.name, kind=kind, header_map=header_map, unmapped=unmapped)
    return MappedSheet(mapping=mapping, rows=rows)
