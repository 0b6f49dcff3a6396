"""Domain records for the import pipeline.

University and Program are the persisted catalog entities; everything else
(raw rows, validated records, resolved entities, plan entries and issues)
lives for a single import run only.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields as dc_fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .standards.naming import name_key


class EntityKind(str, Enum):
    UNIVERSITY = "university"
    PROGRAM = "program"


class DegreeLevel(str, Enum):
    BACHELOR = "Bachelor"
    MASTER = "Master"
    DOCTORATE = "Doctorate"
    DIPLOMA = "Diploma"
    OTHER = "Other"


class IssueReason(str, Enum):
    MISSING_REQUIRED = "MissingRequired"
    TYPE_MISMATCH = "TypeMismatch"
    OUT_OF_RANGE = "OutOfRange"
    UNKNOWN_ENUM = "UnknownEnum"


class PlanAction(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"
    CONFLICT = "conflict"


# ---------------------------------------------------------------------------
# Transient row-level records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Provenance:
    sheet: str
    row: int

    def to_dict(self) -> Dict[str, Any]:
        return {"sheet": self.sheet, "row": self.row}


@dataclass(frozen=True)
class RawRow:
    """One spreadsheet row keyed by its raw headers; used for error attribution."""

    sheet: str
    row: int
    values: Dict[str, Any]

    @property
    def provenance(self) -> Provenance:
        return Provenance(self.sheet, self.row)


@dataclass
class MappedRow:
    """A raw row with cells renamed to canonical fields; unmapped cells kept as metadata."""

    provenance: Provenance
    fields: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidatedRecord:
    kind: EntityKind
    fields: Dict[str, Any]
    provenance: Provenance


@dataclass
class ResolvedEntity:
    """One record per distinct identity key after the cross-row merge."""

    kind: EntityKind
    key: Any
    fields: Dict[str, Any]
    provenance: List[Provenance] = field(default_factory=list)
    # Identity key of the owning University (programs only)
    university_key: Optional[str] = None

    @property
    def name(self) -> str:
        return str(self.fields.get("name") or "")


# ---------------------------------------------------------------------------
# Issues (collected, never raised)
# ---------------------------------------------------------------------------


@dataclass
class RowValidationError:
    sheet: str
    row: int
    field: str
    reason: IssueReason
    message: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "RowValidationError",
            "sheet": self.sheet,
            "row": self.row,
            "field": self.field,
            "reason": self.reason.value,
            "message": self.message,
            "value": None if self.value is None else str(self.value),
        }


@dataclass
class LinkError:
    program: str
    reference: str
    provenance: List[Provenance]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "LinkError",
            "program": self.program,
            "reference": self.reference,
            "message": f"Program {self.program!r} references unknown university {self.reference!r}",
            "rows": [p.to_dict() for p in self.provenance],
        }


@dataclass
class Conflict:
    kind: EntityKind
    key: Any
    name: str
    reason: str
    catalog_id: Optional[int] = None
    competing_keys: List[Any] = field(default_factory=list)
    provenance: List[Provenance] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "Conflict",
            "kind": self.kind.value,
            "key": _jsonable(self.key),
            "name": self.name,
            "reason": self.reason,
            "catalog_id": self.catalog_id,
            "competing_keys": [_jsonable(k) for k in self.competing_keys],
            "rows": [p.to_dict() for p in self.provenance],
        }


# ---------------------------------------------------------------------------
# Catalog entities
# ---------------------------------------------------------------------------


@dataclass
class University:
    name: str
    country: Optional[str] = None
    city: Optional[str] = None
    website: Optional[str] = None
    image_url: Optional[str] = None
    accreditations: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)
    identifier: Optional[int] = None
    version: int = 0

    COMPARABLE = ("name", "country", "city", "website", "image_url", "accreditations", "metadata")

    @property
    def identity_key(self) -> str:
        return name_key(self.name)

    def comparable_fields(self) -> Dict[str, Any]:
        return {f: getattr(self, f) for f in self.COMPARABLE}

    def to_dict(self) -> Dict[str, Any]:
        return _entity_to_dict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "University":
        payload = _known_fields(cls, data)
        payload["accreditations"] = tuple(payload.get("accreditations") or ())
        return cls(**payload)


@dataclass
class Program:
    university_id: Any
    name: str
    degree_level: DegreeLevel
    field_of_study: Optional[str] = None
    study_category: Optional[str] = None
    duration_months: Optional[int] = None
    tuition_amount: Optional[float] = None
    tuition_currency: Optional[str] = None
    language: Optional[str] = None
    intakes: Tuple[str, ...] = ()
    requirements: Tuple[str, ...] = ()
    has_scholarship: Optional[bool] = None
    image_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    identifier: Optional[int] = None
    version: int = 0

    COMPARABLE = (
        "name",
        "degree_level",
        "field_of_study",
        "study_category",
        "duration_months",
        "tuition_amount",
        "tuition_currency",
        "language",
        "intakes",
        "requirements",
        "has_scholarship",
        "image_url",
        "metadata",
    )

    @property
    def identity_key(self) -> Tuple[Any, str, str]:
        return (self.university_id, name_key(self.name), DegreeLevel(self.degree_level).value)

    def comparable_fields(self) -> Dict[str, Any]:
        return {f: getattr(self, f) for f in self.COMPARABLE}

    def to_dict(self) -> Dict[str, Any]:
        return _entity_to_dict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Program":
        payload = _known_fields(cls, data)
        payload["degree_level"] = DegreeLevel(payload["degree_level"])
        payload["intakes"] = tuple(payload.get("intakes") or ())
        payload["requirements"] = tuple(payload.get("requirements") or ())
        return cls(**payload)


ENTITY_TYPES = {EntityKind.UNIVERSITY: University, EntityKind.PROGRAM: Program}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (tuple, list)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return value


def _entity_to_dict(entity: Any) -> Dict[str, Any]:
    return {f.name: _jsonable(getattr(entity, f.name)) for f in dc_fields(entity)}


def _known_fields(cls: type, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in dc_fields(cls)}
    return {k: v for k, v in data.items() if k in names}


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


@dataclass
class PlanEntry:
    action: PlanAction
    entity: ResolvedEntity
    existing: Optional[Any] = None
    diff: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    reason: Optional[str] = None
    # Identifier the entity will carry once applied; provisional for inserts
    target_id: Any = None
    conflict: Optional[Conflict] = None
    # University or Program handed to the gateway on apply
    proposed: Optional[Any] = None

    def summary(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "kind": self.entity.kind.value,
            "action": self.action.value,
            "key": _jsonable(self.entity.key),
            "name": self.entity.name,
            "identifier": self.target_id,
        }
        if self.diff:
            out["changes"] = _jsonable(self.diff)
        if self.reason:
            out["reason"] = self.reason
        return out


@dataclass
class ImportPlan:
    universities: List[PlanEntry] = field(default_factory=list)
    programs: List[PlanEntry] = field(default_factory=list)

    def entries(self) -> List[PlanEntry]:
        return [*self.universities, *self.programs]

    def conflicts(self) -> List[Conflict]:
        return [e.conflict for e in self.entries() if e.conflict is not None]

    def counts(self) -> Dict[str, Dict[str, int]]:
        out: Dict[str, Dict[str, int]] = {}
        for label, entries in (("universities", self.universities), ("programs", self.programs)):
            out[label] = {a.value: 0 for a in PlanAction}
            for entry in entries:
                out[label][entry.action.value] += 1
        return out
