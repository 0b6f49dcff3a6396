"""Collapse validated rows into one entity per identity key and link programs.

Records must arrive in global file order (sheet order, then row order);
the merge precedence depends on it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..logging_utils import get_logger, log_warning
from ..models import DegreeLevel, EntityKind, LinkError, ResolvedEntity, ValidatedRecord
from ..standards.naming import is_blank, name_key

# The first non-blank value of an identity field is kept so the displayed
# name matches the first row that introduced the entity.
IDENTITY_FIELDS: Dict[EntityKind, Tuple[str, ...]] = {
    EntityKind.UNIVERSITY: ("name",),
    EntityKind.PROGRAM: ("name", "university", "degree_level"),
}


@dataclass
class ResolutionResult:
    universities: List[ResolvedEntity] = field(default_factory=list)
    programs: List[ResolvedEntity] = field(default_factory=list)
    link_errors: List[LinkError] = field(default_factory=list)
    # Universities created from program references rather than university rows
    derived_universities: List[str] = field(default_factory=list)


def university_key(fields: Dict[str, Any]) -> str:
    return name_key(fields.get("name"))


def program_key(fields: Dict[str, Any]) -> Tuple[str, str, str]:
    degree = fields.get("degree_level")
    degree_value = degree.value if isinstance(degree, DegreeLevel) else str(degree or "")
    return (name_key(fields.get("name")), degree_value, name_key(fields.get("university")))


def merge_metadata(current: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(current)
    for key, value in incoming.items():
        if not is_blank(value):
            merged[key] = value
    return merged


def merge_fields(
    current: Dict[str, Any],
    incoming: Dict[str, Any],
    keep_first: Iterable[str] = (),
) -> Dict[str, Any]:
    """Fold one later row into the fields accumulated so far.

    - A non-blank later value replaces the earlier one (last write wins)
    - A blank later value never replaces anything
    - Fields in ``keep_first`` keep their first non-blank value
    - ``metadata`` is merged key by key with the same rules
    """

    keep_first = set(keep_first)
    merged = dict(current)
    for name, value in incoming.items():
        if name == "metadata":
            merged["metadata"] = merge_metadata(current.get("metadata") or {}, value or {})
            continue
        if is_blank(value):
            continue
        if name in keep_first and not is_blank(current.get(name)):
            continue
        merged[name] = value
    return merged


def _group(records: Iterable[ValidatedRecord], kind: EntityKind, key_fn) -> List[ResolvedEntity]:
    groups: Dict[Any, ResolvedEntity] = {}
    for record in records:
        if record.kind is not kind:
            continue
        key = key_fn(record.fields)
        entity = groups.get(key)
        if entity is None:
            groups[key] = ResolvedEntity(
                kind=kind,
                key=key,
                fields=merge_fields({}, record.fields),
                provenance=[record.provenance],
            )
            continue
        entity.fields = merge_fields(entity.fields, record.fields, IDENTITY_FIELDS[kind])
        entity.provenance.append(record.provenance)
    return list(groups.values())


def resolve_universities(records: Iterable[ValidatedRecord]) -> List[ResolvedEntity]:
    """One University per normalized name, in order of first appearance."""
    return _group(records, EntityKind.UNIVERSITY, university_key)


def resolve_programs(
    records: Iterable[ValidatedRecord],
    known_university_keys: Set[str],
    derive_universities: bool = False,
) -> Tuple[List[ResolvedEntity], List[ResolvedEntity], List[LinkError]]:
    """Merge program rows and link each program to a university key.

    A reference is linked when its normalized text equals a key in
    ``known_university_keys`` (resolved in this import or already in the
    catalog). Otherwise the program becomes a LinkError, or, with
    ``derive_universities``, a name-only University is created for it.

    Returns:
        (linked programs, derived universities, link errors)
    """

    programs = _group(records, EntityKind.PROGRAM, program_key)
    linked: List[ResolvedEntity] = []
    derived: Dict[str, ResolvedEntity] = {}
    link_errors: List[LinkError] = []

    for program in programs:
        reference = str(program.fields.get("university") or "")
        ref_key = name_key(reference)
        if ref_key in known_university_keys or ref_key in derived:
            program.university_key = ref_key
            linked.append(program)
            if ref_key in derived:
                derived[ref_key].provenance.extend(p for p in program.provenance if p not in derived[ref_key].provenance)
            continue
        if derive_universities and ref_key:
            derived[ref_key] = ResolvedEntity(
                kind=EntityKind.UNIVERSITY,
                key=ref_key,
                fields={"name": reference, "metadata": {}},
                provenance=list(program.provenance),
            )
            program.university_key = ref_key
            linked.append(program)
            continue
        link_errors.append(LinkError(program=program.name, reference=reference, provenance=list(program.provenance)))

    return linked, list(derived.values()), link_errors


def resolve_entities(
    records: Iterable[ValidatedRecord],
    catalog_university_keys: Optional[Set[str]] = None,
    derive_universities: bool = False,
    logger: Optional[logging.Logger] = None,
) -> ResolutionResult:
    """Resolve all validated records of one import.

    Args:
        records: Validated records of every sheet in global file order
        catalog_university_keys: University keys already present in the catalog,
            so programs may reference universities not listed in this workbook
        derive_universities: Create name-only universities for unmatched references
    """

    logger = get_logger(logger)
    records = list(records)
    universities = resolve_universities(records)
    known = {u.key for u in universities} | set(catalog_university_keys or ())
    programs, derived, link_errors = resolve_programs(records, known, derive_universities)

    merged_rows = sum(len(e.provenance) - 1 for e in [*universities, *programs])
    logger.info(
        "Resolved %d universities and %d programs from %d records (%d rows merged)",
        len(universities) + len(derived),
        len(programs),
        len(records),
        merged_rows,
    )
    if derived:
        logger.info("Derived %d universities from program references", len(derived))
    for error in link_errors:
        log_warning(logger, "Program %r references unknown university %r", error.program, error.reference)

    return ResolutionResult(
        universities=[*universities, *derived],
        programs=programs,
        link_errors=link_errors,
        derived_universities=[d.key for d in derived],
    )


def program_university_refs(records: Iterable[ValidatedRecord]) -> Set[str]:
    """Normalized university references of all program records."""
    return {name_key(r.fields.get("university")) for r in records if r.kind is EntityKind.PROGRAM} - {""}