"""Turn resolved entities into an idempotent upsert plan and apply it.

Planning is a pure function of the resolution result and a
:class:`CatalogSnapshot` read once through the gateway. Applying replays the
plan through ``CatalogGateway.upsert``, universities first.
"""
from __future__ import annotations

import copy
import difflib
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..catalog.gateway import CatalogGateway
from ..logging_utils import get_logger, log_system_event, log_warning
from ..models import (
    ENTITY_TYPES,
    Conflict,
    DegreeLevel,
    EntityKind,
    ImportPlan,
    PlanAction,
    PlanEntry,
    Program,
    ResolvedEntity,
    University,
)
from ..resolution.entity_resolver import ResolutionResult
from ..standards.naming import is_blank, name_key

AMBIGUOUS_MATCH = "ambiguous-match"
NEAR_DUPLICATE = "near-duplicate"
UNRESOLVED_UNIVERSITY = "unresolved-university"
UNCHANGED = "unchanged"


@dataclass
class CatalogSnapshot:
    """Catalog state the plan is computed against.

    ``universities`` and ``programs`` hold exact identity-key matches;
    the candidate collections feed near-duplicate detection.
    """

    universities: Dict[str, University] = field(default_factory=dict)
    programs: Dict[Tuple[Any, str, str], Program] = field(default_factory=dict)
    university_candidates: List[University] = field(default_factory=list)
    program_candidates: Dict[Any, List[Program]] = field(default_factory=dict)


@dataclass
class ApplyResult:
    applied: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    # Provisional identifier -> catalog identifier
    assigned_ids: Dict[str, int] = field(default_factory=dict)


def provisional_id(kind: EntityKind, key: Any) -> str:
    label = key if isinstance(key, str) else "|".join(str(k) for k in key)
    return f"new:{kind.value}:{label}"


def is_provisional(identifier: Any) -> bool:
    return isinstance(identifier, str) and identifier.startswith("new:")


def existing_university_keys(gateway: CatalogGateway, keys: Iterable[str]) -> Set[str]:
    """Subset of ``keys`` already stored as universities."""
    return {key for key in keys if key and gateway.get_by_identity_key(EntityKind.UNIVERSITY, key) is not None}


def read_snapshot(
    gateway: CatalogGateway,
    resolution: ResolutionResult,
    near_duplicates: bool = True,
) -> CatalogSnapshot:
    """Read every catalog entity the plan can touch, once, at the start of planning."""

    snapshot = CatalogSnapshot()
    university_keys = {u.key for u in resolution.universities} | {p.university_key for p in resolution.programs}
    for key in sorted(k for k in university_keys if k):
        existing = gateway.get_by_identity_key(EntityKind.UNIVERSITY, key)
        if existing is not None:
            snapshot.universities[key] = existing
    if near_duplicates:
        snapshot.university_candidates = list(gateway.list_universities())

    for program in resolution.programs:
        university = snapshot.universities.get(program.university_key)
        if university is None:
            continue
        name, degree, _ = program.key
        catalog_key = (university.identifier, name, degree)
        existing = gateway.get_by_identity_key(EntityKind.PROGRAM, catalog_key)
        if existing is not None:
            snapshot.programs[catalog_key] = existing
        if near_duplicates and university.identifier not in snapshot.program_candidates:
            snapshot.program_candidates[university.identifier] = list(
                gateway.list_programs(university_id=university.identifier)
            )
    return snapshot


# ---------------------------------------------------------------------------
# Diffing
# ---------------------------------------------------------------------------


def _comparable(value: Any) -> Any:
    if isinstance(value, DegreeLevel):
        return value.value
    if isinstance(value, list):
        return tuple(value)
    return value


def diff_fields(existing: Any, incoming: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Field-level diff of incoming non-blank values against a stored entity.

    Blank incoming values are not changes. Metadata is compared after merging
    the incoming keys over the stored mapping.
    """

    diff: Dict[str, Dict[str, Any]] = {}
    for name in existing.COMPARABLE:
        if name not in incoming:
            continue
        old = getattr(existing, name)
        new = incoming[name]
        if name == "metadata":
            new = {**(old or {}), **{k: v for k, v in (new or {}).items() if not is_blank(v)}}
            if new != (old or {}):
                diff[name] = {"old": old, "new": new}
            continue
        if is_blank(new):
            continue
        if _comparable(old) != _comparable(new):
            diff[name] = {"old": old, "new": new}
    return diff


def _entity_fields(kind: EntityKind, fields: Dict[str, Any]) -> Dict[str, Any]:
    allowed = set(ENTITY_TYPES[kind].COMPARABLE)
    out = {k: v for k, v in fields.items() if k in allowed and not is_blank(v)}
    for name in ("accreditations", "intakes", "requirements"):
        if name in out:
            out[name] = tuple(out[name])
    out["metadata"] = dict(fields.get("metadata") or {})
    return out


def _proposed_insert(kind: EntityKind, fields: Dict[str, Any], university_id: Any = None) -> Any:
    values = _entity_fields(kind, fields)
    if kind is EntityKind.PROGRAM:
        values["university_id"] = university_id
    return ENTITY_TYPES[kind](**values)


def _proposed_update(existing: Any, diff: Dict[str, Dict[str, Any]]) -> Any:
    updated = copy.deepcopy(existing)
    for name, change in diff.items():
        setattr(updated, name, change["new"])
    return updated


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def _near_match(key: str, candidates: Dict[str, Any], cutoff: Optional[float]) -> Optional[Any]:
    if cutoff is None or not candidates:
        return None
    close = difflib.get_close_matches(key, list(candidates), n=1, cutoff=cutoff)
    return candidates[close[0]] if close else None


def _claims(
    entities: List[ResolvedEntity],
    exact: Dict[Any, Any],
    near: Dict[Any, Any],
) -> Dict[Any, List[ResolvedEntity]]:
    by_catalog_id: Dict[Any, List[ResolvedEntity]] = defaultdict(list)
    for entity in entities:
        match = exact.get(entity.key) or near.get(entity.key)
        if match is not None:
            by_catalog_id[match.identifier].append(entity)
    return by_catalog_id


def _classify(
    kind: EntityKind,
    entities: List[ResolvedEntity],
    exact: Dict[Any, Any],
    near: Dict[Any, Any],
    build_insert,
) -> List[PlanEntry]:
    """Shared Insert/Update/Skip/Conflict decision for one entity kind.

    ``exact`` and ``near`` map resolved keys to catalog entities matched by
    identity key and by near-duplicate name respectively.
    """

    claims = _claims(entities, exact, near)
    entries: List[PlanEntry] = []
    for entity in entities:
        match = exact.get(entity.key) or near.get(entity.key)
        if match is None:
            entries.append(
                PlanEntry(
                    action=PlanAction.INSERT,
                    entity=entity,
                    target_id=provisional_id(kind, entity.key),
                    proposed=build_insert(entity),
                )
            )
            continue

        claimants = claims[match.identifier]
        if len(claimants) > 1 or entity.key not in exact:
            reason = AMBIGUOUS_MATCH if len(claimants) > 1 else NEAR_DUPLICATE
            conflict = Conflict(
                kind=kind,
                key=entity.key,
                name=entity.name,
                reason=reason,
                catalog_id=match.identifier,
                competing_keys=[c.key for c in claimants if c is not entity],
                provenance=list(entity.provenance),
            )
            entries.append(
                PlanEntry(
                    action=PlanAction.CONFLICT,
                    entity=entity,
                    existing=match,
                    reason=reason,
                    target_id=match.identifier,
                    conflict=conflict,
                )
            )
            continue

        diff = diff_fields(match, _entity_fields(kind, entity.fields))
        if diff:
            entries.append(
                PlanEntry(
                    action=PlanAction.UPDATE,
                    entity=entity,
                    existing=match,
                    diff=diff,
                    target_id=match.identifier,
                    proposed=_proposed_update(match, diff),
                )
            )
        else:
            entries.append(
                PlanEntry(
                    action=PlanAction.SKIP,
                    entity=entity,
                    existing=match,
                    reason=UNCHANGED,
                    target_id=match.identifier,
                )
            )
    return entries


def plan_universities(
    universities: List[ResolvedEntity],
    snapshot: CatalogSnapshot,
    cutoff: Optional[float],
) -> List[PlanEntry]:
    exact = {u.key: snapshot.universities[u.key] for u in universities if u.key in snapshot.universities}
    pool = {c.identity_key: c for c in snapshot.university_candidates}
    near: Dict[str, University] = {}
    for entity in universities:
        if entity.key in exact:
            continue
        match = _near_match(entity.key, {k: v for k, v in pool.items() if k != entity.key}, cutoff)
        if match is not None:
            near[entity.key] = match
    return _classify(
        EntityKind.UNIVERSITY,
        universities,
        exact,
        near,
        lambda e: _proposed_insert(EntityKind.UNIVERSITY, e.fields),
    )


def plan_programs(
    programs: List[ResolvedEntity],
    university_entries: List[PlanEntry],
    snapshot: CatalogSnapshot,
    cutoff: Optional[float],
) -> List[PlanEntry]:
    """Plan programs as if the university inserts were already applied.

    A program's university id is the catalog id of its university, or the
    provisional id of a planned university insert. Programs whose university is
    in conflict are themselves flagged and left out of the apply.
    """

    by_key = {e.entity.key: e for e in university_entries}
    university_ids: Dict[Any, Any] = {}
    unresolved: List[PlanEntry] = []
    plannable: List[ResolvedEntity] = []
    for program in programs:
        entry = by_key.get(program.university_key)
        if entry is not None and entry.action is not PlanAction.CONFLICT:
            university_ids[program.key] = entry.target_id
        elif entry is None and program.university_key in snapshot.universities:
            university_ids[program.key] = snapshot.universities[program.university_key].identifier
        else:
            conflict = Conflict(
                kind=EntityKind.PROGRAM,
                key=program.key,
                name=program.name,
                reason=UNRESOLVED_UNIVERSITY,
                provenance=list(program.provenance),
            )
            unresolved.append(
                PlanEntry(action=PlanAction.CONFLICT, entity=program, reason=UNRESOLVED_UNIVERSITY, conflict=conflict)
            )
            continue
        plannable.append(program)

    exact: Dict[Any, Program] = {}
    near: Dict[Any, Program] = {}
    for program in plannable:
        university_id = university_ids[program.key]
        if is_provisional(university_id):
            continue
        name, degree, _ = program.key
        existing = snapshot.programs.get((university_id, name, degree))
        if existing is not None:
            exact[program.key] = existing
            continue
        pool = {
            name_key(c.name): c
            for c in snapshot.program_candidates.get(university_id, [])
            if DegreeLevel(c.degree_level).value == degree and name_key(c.name) != name
        }
        match = _near_match(name, pool, cutoff)
        if match is not None:
            near[program.key] = match

    entries = _classify(
        EntityKind.PROGRAM,
        plannable,
        exact,
        near,
        lambda e: _proposed_insert(EntityKind.PROGRAM, e.fields, university_ids[e.key]),
    )
    return [*entries, *unresolved]


def plan_import(
    resolution: ResolutionResult,
    snapshot: CatalogSnapshot,
    near_duplicate_cutoff: Optional[float] = None,
    logger: Optional[logging.Logger] = None,
) -> ImportPlan:
    """Compute the full plan; never touches the catalog."""

    logger = get_logger(logger)
    universities = plan_universities(resolution.universities, snapshot, near_duplicate_cutoff)
    programs = plan_programs(resolution.programs, universities, snapshot, near_duplicate_cutoff)
    plan = ImportPlan(universities=universities, programs=programs)

    counts = plan.counts()
    log_system_event(logger, "Plan universities: %s", counts["universities"])
    log_system_event(logger, "Plan programs: %s", counts["programs"])
    for conflict in plan.conflicts():
        log_warning(logger, "Conflict (%s) for %s %r", conflict.reason, conflict.kind.value, conflict.name)
    return plan


def apply_plan(
    plan: ImportPlan,
    gateway: CatalogGateway,
    logger: Optional[logging.Logger] = None,
    result: Optional[ApplyResult] = None,
) -> ApplyResult:
    """Replay the non-conflicting entries through the gateway.

    Universities are applied before programs so provisional university ids can
    be swapped for the identifiers the gateway assigns. Conflicts are never
    applied. A ConcurrentModificationError from the gateway propagates; pass
    ``result`` to keep what was applied before it.
    """

    logger = get_logger(logger)
    result = result if result is not None else ApplyResult()

    for kind, entries in ((EntityKind.UNIVERSITY, plan.universities), (EntityKind.PROGRAM, plan.programs)):
        for entry in entries:
            if entry.action is PlanAction.CONFLICT:
                continue
            if entry.action is PlanAction.SKIP:
                result.skipped.append(entry.summary())
                continue

            proposed = copy.deepcopy(entry.proposed)
            if kind is EntityKind.PROGRAM and is_provisional(proposed.university_id):
                proposed.university_id = result.assigned_ids[proposed.university_id]
            stored = gateway.upsert(kind, proposed)
            if entry.action is PlanAction.INSERT:
                result.assigned_ids[entry.target_id] = stored.identifier

            summary = entry.summary()
            summary["identifier"] = stored.identifier
            summary["version"] = stored.version
            result.applied.append(summary)

    logger.info("Applied %d changes, skipped %d unchanged entities", len(result.applied), len(result.skipped))
    return result
