"""Catalog Gateway: the read/write boundary to the persisted catalog.

The pipeline only proposes mutations; identifier assignment, versioning and
the uniqueness invariants belong to the gateway.
"""
from __future__ import annotations

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..exceptions import ConcurrentModificationError
from ..logging_utils import get_logger
from ..models import DegreeLevel, EntityKind, Program, University

Entity = Union[University, Program]

UNIVERSITY_FILTERS = {"name", "country", "city"}
PROGRAM_FILTERS = {"name", "university_id", "degree_level", "field_of_study", "study_category", "language"}


class CatalogGateway(ABC):
    """Abstract catalog store addressed by identity key."""

    @abstractmethod
    def get_by_identity_key(self, kind: EntityKind, key: Any) -> Optional[Entity]:
        """Return the stored entity with this identity key, or None."""

    @abstractmethod
    def upsert(self, kind: EntityKind, entity: Entity) -> Entity:
        """Insert (``identifier`` None) or update an entity and return the stored copy.

        Updates must carry the ``version`` they were planned against.

        Raises:
            ConcurrentModificationError: If the stored version moved on, or an
                insert collides with an identity key stored since planning.
        """

    @abstractmethod
    def list_universities(self, **filters: Any) -> List[University]:
        """Read-only listing; see :func:`matches_filters` for filter semantics."""

    @abstractmethod
    def list_programs(self, **filters: Any) -> List[Program]:
        """Read-only listing; see :func:`matches_filters` for filter semantics."""


def _text_equal(left: Any, right: Any) -> bool:
    return str(left).strip().casefold() == str(right).strip().casefold()


def matches_filters(entity: Entity, filters: Dict[str, Any], allowed: set) -> bool:
    """Filter semantics shared by the listing operations.

    ``name`` is a case-insensitive substring match, ``university_id`` an exact
    match, ``degree_level`` accepts the enum or its value, and every other text
    filter is a case-insensitive equality. None-valued filters are ignored.
    """

    unknown = set(filters) - allowed
    if unknown:
        raise ValueError(f"Unsupported filters: {sorted(unknown)}")
    for name, wanted in filters.items():
        if wanted is None:
            continue
        actual = getattr(entity, name)
        if name == "name":
            if str(wanted).strip().casefold() not in str(actual).casefold():
                return False
        elif name == "university_id":
            if actual != wanted:
                return False
        elif name == "degree_level":
            wanted_value = wanted.value if isinstance(wanted, DegreeLevel) else str(wanted)
            if not _text_equal(DegreeLevel(actual).value, wanted_value):
                return False
        elif actual is None or not _text_equal(actual, wanted):
            return False
    return True


class InMemoryCatalogGateway(CatalogGateway):
    """Dict-backed catalog guarded by one lock.

    Identifiers are sequential integers shared by both kinds. Each stored
    entity carries a version starting at 1 and bumped on every update.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._lock = threading.Lock()
        self._entities: Dict[EntityKind, Dict[int, Entity]] = {EntityKind.UNIVERSITY: {}, EntityKind.PROGRAM: {}}
        self._keys: Dict[EntityKind, Dict[Any, int]] = {EntityKind.UNIVERSITY: {}, EntityKind.PROGRAM: {}}
        self._next_id = 1
        self.logger = get_logger(logger)

    def get_by_identity_key(self, kind: EntityKind, key: Any) -> Optional[Entity]:
        with self._lock:
            identifier = self._keys[kind].get(key)
            if identifier is None:
                return None
            return copy.deepcopy(self._entities[kind][identifier])

    def upsert(self, kind: EntityKind, entity: Entity) -> Entity:
        with self._lock:
            stored = self._upsert_locked(kind, copy.deepcopy(entity))
            self._after_write()
            return copy.deepcopy(stored)

    def _upsert_locked(self, kind: EntityKind, entity: Entity) -> Entity:
        key = entity.identity_key
        if kind is EntityKind.PROGRAM and entity.university_id not in self._entities[EntityKind.UNIVERSITY]:
            raise ValueError(f"Program {entity.name!r} references unknown university id {entity.university_id!r}")

        holder = self._keys[kind].get(key)
        if entity.identifier is None:
            if holder is not None:
                actual = self._entities[kind][holder].version
                raise ConcurrentModificationError(kind.value, key, 0, actual)
            entity.identifier = self._next_id
            entity.version = 1
            self._next_id += 1
            self.logger.debug("Inserted %s %r as id %d", kind.value, entity.name, entity.identifier)
        else:
            current = self._entities[kind].get(entity.identifier)
            actual = current.version if current is not None else None
            if current is None or current.version != entity.version:
                raise ConcurrentModificationError(kind.value, key, entity.version, actual)
            if holder is not None and holder != entity.identifier:
                # Renaming onto another entity's identity key breaks uniqueness
                raise ConcurrentModificationError(kind.value, key, entity.version, self._entities[kind][holder].version)
            del self._keys[kind][current.identity_key]
            entity.version = current.version + 1
            self.logger.debug("Updated %s %r (id %d, version %d)", kind.value, entity.name, entity.identifier, entity.version)

        self._entities[kind][entity.identifier] = entity
        self._keys[kind][key] = entity.identifier
        return entity

    def _after_write(self) -> None:
        """Hook for persistence; called with the lock held after each upsert."""

    def list_universities(self, **filters: Any) -> List[University]:
        with self._lock:
            items = sorted(self._entities[EntityKind.UNIVERSITY].values(), key=lambda e: e.identifier)
            return [copy.deepcopy(u) for u in items if matches_filters(u, filters, UNIVERSITY_FILTERS)]

    def list_programs(self, **filters: Any) -> List[Program]:
        with self._lock:
            items = sorted(self._entities[EntityKind.PROGRAM].values(), key=lambda e: e.identifier)
            return [copy.deepcopy(p) for p in items if matches_filters(p, filters, PROGRAM_FILTERS)]

    # Serialisation -----------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "next_id": self._next_id,
            "universities": [u.to_dict() for u in self._entities[EntityKind.UNIVERSITY].values()],
            "programs": [p.to_dict() for p in self._entities[EntityKind.PROGRAM].values()],
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        with self._lock:
            for kind, label in ((EntityKind.UNIVERSITY, "universities"), (EntityKind.PROGRAM, "programs")):
                self._entities[kind].clear()
                self._keys[kind].clear()
                entity_type = University if kind is EntityKind.UNIVERSITY else Program
                for raw in data.get(label, []):
                    entity = entity_type.from_dict(raw)
                    self._entities[kind][entity.identifier] = entity
                    self._keys[kind][entity.identity_key] = entity.identifier
            ids = [i for table in self._entities.values() for i in table]
            self._next_id = max(int(data.get("next_id") or 1), max(ids, default=0) + 1)


class JsonFileCatalogGateway(InMemoryCatalogGateway):
    """In-memory catalog persisted to a JSON file after every upsert.

    Writes go to a temporary sibling file that then replaces the target, so a
    crash never leaves a truncated catalog behind.
    """

    def __init__(self, path: str | Path, logger: Optional[logging.Logger] = None) -> None:
        super().__init__(logger)
        self.path = Path(path)
        if self.path.exists():
            with open(self.path, "r", encoding="utf-8") as fh:
                self.load_dict(json.load(fh))
            self.logger.info(
                "Loaded catalog %s (%d universities, %d programs)",
                self.path,
                len(self._entities[EntityKind.UNIVERSITY]),
                len(self._entities[EntityKind.PROGRAM]),
            )

    def _after_write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp.json")
        tmp_path.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False, default=str), encoding="utf-8")
        tmp_path.replace(self.path)


def query_catalog(gateway: CatalogGateway, kind: EntityKind | str, **filters: Any) -> List[Entity]:
    """Listing entry point for presentation callers."""

    kind = EntityKind(kind)
    if kind is EntityKind.UNIVERSITY:
        return list(gateway.list_universities(**filters))
    return list(gateway.list_programs(**filters))