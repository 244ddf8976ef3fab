"""Entity store contract and the in-process implementation.

The store is hierarchical: every entity has a Key, lookups are by key, queries
select a kind below an ancestor key, and commits apply upserts/deletes in
non-transactional batches. The Neo4j backend lives in ``neo4j_connector``.
"""

from __future__ import annotations

import abc
import copy
import logging
import operator
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .keys import Key, is_ancestor, is_key_equal, key_to_str

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500

_OPS: Dict[str, Callable[[Any, Any], bool]] = {
    "=": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass
class Entity:
    key: Key
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_object(self) -> Dict[str, Any]:
        """A detached copy of the entity's properties."""
        return copy.deepcopy(self.properties)


@dataclass(frozen=True)
class Mutation:
    upsert: Optional[Entity] = None
    delete: Optional[Key] = None

    def __post_init__(self):
        if (self.upsert is None) == (self.delete is None):
            raise ValueError("A mutation is exactly one of upsert or delete.")

    @property
    def key(self) -> Key:
        return self.upsert.key if self.upsert is not None else self.delete


@dataclass(frozen=True)
class CommitBatch:
    mutation_results: int


@dataclass
class Query:
    kind: Optional[str] = None
    ancestor: Optional[Key] = None
    filters: List[Tuple[str, str, Any]] = field(default_factory=list)
    only_keys: bool = False

    def has_ancestor(self, key: Key) -> "Query":
        self.ancestor = key
        return self

    def filter(self, name: str, value: Any, op: str = "=") -> "Query":
        if op not in _OPS:
            raise ValueError(f"Unsupported filter operator: {op!r}")
        self.filters.append((name, op, value))
        return self

    def keys_only(self) -> "Query":
        self.only_keys = True
        return self

    def matches(self, entity: Entity) -> bool:
        if self.kind is not None and entity.key.kind != self.kind:
            return False
        if self.ancestor is not None and not (
            is_key_equal(self.ancestor, entity.key) or is_ancestor(self.ancestor, entity.key)
        ):
            return False
        for name, op, value in self.filters:
            if name not in entity.properties:
                return False
            try:
                if not _OPS[op](entity.properties[name], value):
                    return False
            except TypeError:
                return False
        return True


class EntityStore(abc.ABC):
    batch_size: int = DEFAULT_BATCH_SIZE

    def query(self, kind: Optional[str] = None) -> Query:
        return Query(kind=kind)

    @abc.abstractmethod
    async def lookup(self, keys: Union[Key, Sequence[Key]]) -> List[Entity]:
        """Return the entities found for ``keys``; missing keys are skipped."""

    @abc.abstractmethod
    def stream_query(self, query: Query) -> AsyncIterator[Entity]:
        """Yield entities matching ``query``."""

    @abc.abstractmethod
    def commit(self, mutations: Sequence[Mutation], *, transactional: bool = False) -> AsyncIterator[CommitBatch]:
        """Apply ``mutations`` in batches, yielding one CommitBatch per batch."""

    async def run_query(self, query: Query) -> List[Entity]:
        return [entity async for entity in self.stream_query(query)]

    async def ensure_schema(self) -> None:
        """Create indexes and constraints the backend needs; called once at startup."""
        return None

    async def close(self) -> None:
        return None


async def commit_mutations(
    store: EntityStore,
    mutations: Sequence[Mutation],
    *,
    label: str = "changes",
    prefix: str = "",
) -> int:
    """Commit ``mutations`` and log progress per batch. Returns the count committed."""
    remaining = len(mutations)
    if not remaining:
        return 0
    logger.info("%sCommitting %d %s...", prefix, remaining, label)
    committed = 0
    async for batch in store.commit(mutations, transactional=False):
        remaining -= batch.mutation_results
        committed += batch.mutation_results
        logger.info("%sCommitted %d %s. %d to go.", prefix, batch.mutation_results, label, remaining)
    return committed


class MemoryEntityStore(EntityStore):
    """A dict-backed store. Values are deep-copied on the way in and out."""

    def __init__(self, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.batch_size = batch_size
        self._entities: Dict[str, Entity] = {}

    def __len__(self) -> int:
        return len(self._entities)

    async def lookup(self, keys: Union[Key, Sequence[Key]]) -> List[Entity]:
        if isinstance(keys, Key):
            keys = [keys]
        found = []
        for key in keys:
            entity = self._entities.get(key_to_str(key))
            if entity is not None:
                found.append(Entity(entity.key, copy.deepcopy(entity.properties)))
        return found

    async def stream_query(self, query: Query) -> AsyncIterator[Entity]:
        for entity in list(self._entities.values()):
            if query.matches(entity):
                if query.only_keys:
                    yield Entity(entity.key, {})
                else:
                    yield Entity(entity.key, copy.deepcopy(entity.properties))

    async def commit(self, mutations: Sequence[Mutation], *, transactional: bool = False) -> AsyncIterator[CommitBatch]:
        mutations = list(mutations)
        for start in range(0, len(mutations), self.batch_size):
            batch = mutations[start:start + self.batch_size]
            for m in batch:
                sk = key_to_str(m.key)
                if m.upsert is not None:
                    self._entities[sk] = Entity(m.upsert.key, copy.deepcopy(m.upsert.properties))
                else:
                    self._entities.pop(sk, None)
            yield CommitBatch(mutation_results=len(batch))
