"""Neo4j-backed entity store.

Every record is one ``:Entity`` node:

- ``key``: canonical key string (unique), ``key_path``: JSON of the path
- ``kind``: kind of the last path element
- ``ancestors``: canonical strings of every proper ancestor, for ancestor queries
- ``props``: JSON string with the full property map
- ``p_<name>``: copies of top-level scalar properties so queries can filter on them
"""

from __future__ import annotations

import json
import logging
from itertools import groupby
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

try:
    from neo4j import AsyncGraphDatabase
    from neo4j.exceptions import DriverError, Neo4jError
except Exception as _import_exc:
    AsyncGraphDatabase = None
    _neo4j_import_exc = _import_exc

from docsite.config import Settings
from docsite.errors import StoreFault

from .keys import Key, ancestor_strs, key_to_str
from .store import DEFAULT_BATCH_SIZE, CommitBatch, Entity, EntityStore, Mutation, Query

logger = logging.getLogger(__name__)

_SCALAR_PREFIX = "p_"


def _ensure_neo4j_available():
    if AsyncGraphDatabase is None:
        raise RuntimeError(
            "The 'neo4j' Python package is not installed.\n"
            "Install it with: pip install neo4j\n"
            f"Import error: {_neo4j_import_exc!r}"
        )


def create_driver(settings: Settings):
    """Return an async Neo4j driver for the configured database."""
    _ensure_neo4j_available()
    uri, user, pwd = settings.neo4j_config()
    try:
        return AsyncGraphDatabase.driver(uri, auth=(user, pwd))
    except Exception as exc:
        raise RuntimeError(
            f"Failed to create Neo4j driver for URI '{uri}'. Check that the database is running "
            f"and the credentials are correct.\nError: {exc}"
        ) from exc


def _is_scalar(v: Any) -> bool:
    return isinstance(v, (str, int, float, bool))


def entity_to_row(entity: Entity) -> Dict[str, Any]:
    key = key_to_str(entity.key)
    fields: Dict[str, Any] = {
        "key": key,
        "key_path": json.dumps(entity.key.to_list(), ensure_ascii=False),
        "kind": entity.key.kind,
        "ancestors": ancestor_strs(entity.key),
        "props": json.dumps(entity.properties, ensure_ascii=False, default=str),
    }
    for name, value in entity.properties.items():
        if _is_scalar(value):
            fields[f"{_SCALAR_PREFIX}{name}"] = value
    return {"key": key, "fields": fields}


def row_to_entity(row: Dict[str, Any]) -> Entity:
    key = Key.from_list(json.loads(row["key_path"]))
    props = row.get("props")
    return Entity(key, json.loads(props) if props else {})


def build_query(query: Query):
    """Translate a Query into (cypher, parameters)."""
    where: List[str] = []
    params: Dict[str, Any] = {}
    if query.kind is not None:
        where.append("e.kind = $kind")
        params["kind"] = query.kind
    if query.ancestor is not None:
        where.append("($ancestor IN e.ancestors OR e.key = $ancestor)")
        params["ancestor"] = key_to_str(query.ancestor)
    for i, (name, op, value) in enumerate(query.filters):
        where.append(f"e[$f{i}] {'<>' if op == '!=' else op} $v{i}")
        params[f"f{i}"] = f"{_SCALAR_PREFIX}{name}"
        params[f"v{i}"] = value
    cypher = "MATCH (e:Entity)"
    if where:
        cypher += " WHERE " + " AND ".join(where)
    cypher += " RETURN e.key_path AS key_path"
    if not query.only_keys:
        cypher += ", e.props AS props"
    cypher += " ORDER BY e.key"
    return cypher, params


class Neo4jEntityStore(EntityStore):
    def __init__(self, driver, *, database: Optional[str] = None, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._driver = driver
        self._database = database
        self.batch_size = batch_size

    @classmethod
    def from_settings(cls, settings: Settings) -> "Neo4jEntityStore":
        return cls(create_driver(settings))

    async def run_cypher(self, query: str, parameters: Optional[dict] = None) -> List[Dict[str, Any]]:
        """Run a Cypher statement and return the records as dicts."""
        try:
            async with self._driver.session(database=self._database) as session:
                result = await session.run(query, parameters or {})
                return await result.data()
        except Neo4jError as exc:
            raise StoreFault(f"Neo4j error: {exc.message}", status=exc.code, detail=query) from exc
        except DriverError as exc:
            raise StoreFault(f"Neo4j driver error: {exc}", detail=query) from exc

    async def ensure_schema(self) -> None:
        await self.run_cypher(
            "CREATE CONSTRAINT entity_key IF NOT EXISTS FOR (e:Entity) REQUIRE e.key IS UNIQUE"
        )
        await self.run_cypher("CREATE INDEX entity_kind IF NOT EXISTS FOR (e:Entity) ON (e.kind)")

    async def lookup(self, keys: Union[Key, Sequence[Key]]) -> List[Entity]:
        if isinstance(keys, Key):
            keys = [keys]
        wanted = [key_to_str(k) for k in keys]
        if not wanted:
            return []
        rows = await self.run_cypher(
            "MATCH (e:Entity) WHERE e.key IN $keys RETURN e.key AS key, e.key_path AS key_path, e.props AS props",
            {"keys": wanted},
        )
        by_key = {r["key"]: row_to_entity(r) for r in rows}
        return [by_key[k] for k in wanted if k in by_key]

    async def stream_query(self, query: Query) -> AsyncIterator[Entity]:
        cypher, params = build_query(query)
        for row in await self.run_cypher(cypher, params):
            yield row_to_entity(row)

    async def commit(self, mutations: Sequence[Mutation], *, transactional: bool = False) -> AsyncIterator[CommitBatch]:
        mutations = list(mutations)
        for start in range(0, len(mutations), self.batch_size):
            batch = mutations[start:start + self.batch_size]
            # runs of the same operation keep their relative order
            for is_upsert, run in groupby(batch, key=lambda m: m.upsert is not None):
                run = list(run)
                if is_upsert:
                    await self.run_cypher(
                        "UNWIND $rows AS row MERGE (e:Entity {key: row.key}) SET e = row.fields",
                        {"rows": [entity_to_row(m.upsert) for m in run]},
                    )
                else:
                    await self.run_cypher(
                        "UNWIND $keys AS k MATCH (e:Entity {key: k}) DETACH DELETE e",
                        {"keys": [key_to_str(m.delete) for m in run]},
                    )
            yield CommitBatch(mutation_results=len(batch))

    async def close(self) -> None:
        await self._driver.close()
