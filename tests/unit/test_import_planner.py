"""Unit tests for plan computation (Insert/Update/Skip/Conflict) and apply."""
import pytest

from catalog_import.catalog.gateway import InMemoryCatalogGateway
from catalog_import.models import DegreeLevel, EntityKind, PlanAction, Program, Provenance, University, ValidatedRecord
from catalog_import.planning.import_planner import (
    AMBIGUOUS_MATCH,
    NEAR_DUPLICATE,
    UNRESOLVED_UNIVERSITY,
    apply_plan,
    diff_fields,
    plan_import,
    read_snapshot,
)
from catalog_import.resolution.entity_resolver import resolve_entities

CUTOFF = 0.92


def uni(row, **fields):
    fields.setdefault("metadata", {})
    return ValidatedRecord(EntityKind.UNIVERSITY, fields, Provenance("Universities", row))


def prog(row, university, name, degree=DegreeLevel.MASTER, **fields):
    fields.update(university=university, name=name, degree_level=degree)
    fields.setdefault("metadata", {})
    return ValidatedRecord(EntityKind.PROGRAM, fields, Provenance("Programs", row))


def plan_for(records, gateway, cutoff=CUTOFF):
    catalog_keys = {u.identity_key for u in gateway.list_universities()}
    resolution = resolve_entities(records, catalog_university_keys=catalog_keys)
    snapshot = read_snapshot(gateway, resolution, near_duplicates=cutoff is not None)
    return plan_import(resolution, snapshot, cutoff)


def actions(entries):
    return [e.action for e in entries]


def test_empty_catalog_plans_inserts_with_provisional_university_ids(gateway):
    plan = plan_for([uni(2, name="MIT"), prog(2, "MIT", "CS")], gateway)

    assert actions(plan.universities) == [PlanAction.INSERT]
    assert actions(plan.programs) == [PlanAction.INSERT]
    assert plan.universities[0].target_id == "new:university:mit"
    assert plan.programs[0].proposed.university_id == "new:university:mit"
    # planning never writes
    assert gateway.list_universities() == []


def test_apply_swaps_provisional_ids_and_reimport_is_all_skip(gateway):
    records = [uni(2, name="MIT", website="https://mit.edu"), prog(2, "MIT", "CS", tuition_amount=55000.0)]
    applied = apply_plan(plan_for(records, gateway), gateway)

    assert len(applied.applied) == 2
    university = gateway.get_by_identity_key(EntityKind.UNIVERSITY, "mit")
    program = gateway.list_programs()[0]
    assert program.university_id == university.identifier
    assert applied.assigned_ids["new:university:mit"] == university.identifier

    second = plan_for(records, gateway)
    assert actions(second.entries()) == [PlanAction.SKIP, PlanAction.SKIP]
    assert second.universities[0].reason == "unchanged"
    assert second.counts()["programs"]["insert"] == 0


def test_changed_field_plans_update_with_diff(gateway):
    apply_plan(plan_for([uni(2, name="MIT", website="https://old.mit.edu")], gateway), gateway)

    plan = plan_for([uni(2, name="MIT", website="https://web.mit.edu")], gateway)
    entry = plan.universities[0]
    assert entry.action is PlanAction.UPDATE
    assert entry.diff == {"website": {"old": "https://old.mit.edu", "new": "https://web.mit.edu"}}
    assert entry.proposed.version == entry.existing.version

    apply_plan(plan, gateway)
    stored = gateway.get_by_identity_key(EntityKind.UNIVERSITY, "mit")
    assert stored.website == "https://web.mit.edu"
    assert stored.version == 2


def test_diff_ignores_blank_incoming_values():
    existing = University(name="MIT", city="Cambridge", metadata={"rank": 1})
    assert diff_fields(existing, {"name": "MIT", "city": None, "metadata": {}}) == {}
    assert diff_fields(existing, {"metadata": {"rank": 1, "note": "x"}}) == {
        "metadata": {"old": {"rank": 1}, "new": {"rank": 1, "note": "x"}}
    }


def test_diff_compares_enums_and_sequences_by_value():
    existing = Program(university_id=1, name="CS", degree_level=DegreeLevel.MASTER, intakes=("January",))
    assert diff_fields(existing, {"degree_level": "Master", "intakes": ["January"]}) == {}


def test_program_of_existing_university_links_by_catalog_id(gateway):
    stored = gateway.upsert(EntityKind.UNIVERSITY, University(name="Stanford"))
    plan = plan_for([prog(2, "Stanford", "CS")], gateway)

    assert plan.universities == []
    entry = plan.programs[0]
    assert entry.action is PlanAction.INSERT
    assert entry.proposed.university_id == stored.identifier


def test_near_duplicate_name_is_flagged_for_review(gateway):
    gateway.upsert(EntityKind.UNIVERSITY, University(name="Massachusetts Institute of Technology"))

    plan = plan_for([uni(2, name="Massachusetts Institute of Technologyy")], gateway)
    entry = plan.universities[0]
    assert entry.action is PlanAction.CONFLICT
    assert entry.conflict.reason == NEAR_DUPLICATE
    assert entry.conflict.catalog_id == 1


def test_two_variants_claiming_one_catalog_entity_are_ambiguous(gateway):
    gateway.upsert(EntityKind.UNIVERSITY, University(name="Massachusetts Institute of Technology"))
    records = [
        uni(2, name="Massachusetts Institute of Technology", city="Cambridge"),
        uni(3, name="Massachusets Institute of Technology"),
        prog(2, "Massachusets Institute of Technology", "CS"),
    ]
    plan = plan_for(records, gateway)

    assert actions(plan.universities) == [PlanAction.CONFLICT, PlanAction.CONFLICT]
    assert {e.conflict.reason for e in plan.universities} == {AMBIGUOUS_MATCH}
    assert plan.universities[0].conflict.competing_keys == ["massachusets institute of technology"]
    assert plan.programs[0].action is PlanAction.CONFLICT
    assert plan.programs[0].conflict.reason == UNRESOLVED_UNIVERSITY
    assert len(plan.conflicts()) == 3

    result = apply_plan(plan, gateway)
    assert result.applied == []
    assert gateway.get_by_identity_key(EntityKind.UNIVERSITY, "massachusetts institute of technology").city is None


def test_near_duplicate_detection_can_be_disabled(gateway):
    gateway.upsert(EntityKind.UNIVERSITY, University(name="Massachusetts Institute of Technology"))
    plan = plan_for([uni(2, name="Massachusetts Institute of Technologyy")], gateway, cutoff=None)
    assert actions(plan.universities) == [PlanAction.INSERT]


def test_program_near_duplicates_only_compare_same_university_and_degree(gateway):
    university = gateway.upsert(EntityKind.UNIVERSITY, University(name="MIT"))
    gateway.upsert(
        EntityKind.PROGRAM,
        Program(university_id=university.identifier, name="Computer Science", degree_level=DegreeLevel.MASTER),
    )
    plan = plan_for(
        [
            prog(2, "MIT", "Computer Sciences"),
            prog(3, "MIT", "Computer Sciences", DegreeLevel.BACHELOR),
        ],
        gateway,
    )
    assert actions(plan.programs) == [PlanAction.CONFLICT, PlanAction.INSERT]
    assert plan.programs[0].conflict.reason == NEAR_DUPLICATE


def test_plan_entry_summary_is_json_ready(gateway):
    plan = plan_for([uni(2, name="MIT"), prog(2, "MIT", "CS")], gateway)
    summary = plan.programs[0].summary()
    assert summary == {
        "kind": "program",
        "action": "insert",
        "key": ["cs", "Master", "mit"],
        "name": "CS",
        "identifier": "new:program:cs|Master|mit",
    }


@pytest.mark.parametrize("cutoff", [CUTOFF, None])
def test_new_university_with_new_program_applies_in_one_run(cutoff):
    gateway = InMemoryCatalogGateway()
    plan = plan_for([uni(2, name="ETH Zurich"), prog(2, "ETH Zurich", "Physics", DegreeLevel.BACHELOR)], gateway, cutoff)
    apply_plan(plan, gateway)
    assert [p.name for p in gateway.list_programs(degree_level="Bachelor")] == ["Physics"]
