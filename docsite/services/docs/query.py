"""Reading doc nodes back out of the store."""

from __future__ import annotations

from typing import List, Optional

from docsite.consts import DOC_NODE_KIND, MODULE_ENTRY_KIND, MODULE_KIND, MODULE_VERSION_KIND
from docsite.db.keys import Key, is_key_equal
from docsite.db.store import Entity, EntityStore

from .codec import DocNode, decode, is_namespace


def entry_key(module: str, version: str, path: str) -> Key:
    return Key.of((MODULE_KIND, module), (MODULE_VERSION_KIND, version), (MODULE_ENTRY_KIND, path))


async def query_doc_nodes(store: EntityStore, module: str, version: str, path: str) -> Optional[List[DocNode]]:
    """Doc nodes stored for a module path, or None if the path was never documented."""
    ancestor = entry_key(module, version, path)
    entities = [
        e
        for e in await store.run_query(store.query(DOC_NODE_KIND).has_ancestor(ancestor))
        if not is_key_equal(e.key, ancestor)
    ]
    if not entities:
        return None
    return decode(entities, ancestor)


async def get_namespace_key(store: EntityStore, ancestor: Key, name: str) -> Optional[Key]:
    query = store.query(DOC_NODE_KIND).has_ancestor(ancestor).filter("kind", "namespace").filter("name", name)
    async for entity in store.stream_query(query):
        if len(entity.key) == len(ancestor) + 1:
            return entity.key
    return None


async def query_doc_nodes_by_symbol(
    store: EntityStore, module: str, version: str, path: str, symbol: str
) -> List[DocNode]:
    """Doc nodes for a dotted symbol name such as ``Deno.errors.NotFound``.

    Each leading part is resolved as a namespace below the previous one.
    Matching namespaces come back with their elements.
    """
    ancestor = entry_key(module, version, path)
    *namespaces, name = symbol.split(".")
    for part in namespaces:
        if not part:
            return []
        key = await get_namespace_key(store, ancestor, part)
        if key is None:
            return []
        ancestor = key

    entities: List[Entity] = []
    namespace_keys: List[Key] = []
    query = store.query(DOC_NODE_KIND).has_ancestor(ancestor).filter("name", name)
    async for entity in store.stream_query(query):
        # only direct children of the resolved scope
        if len(entity.key) != len(ancestor) + 1:
            continue
        entities.append(entity)
        if is_namespace(entity):
            namespace_keys.append(entity.key)
    for key in namespace_keys:
        async for entity in store.stream_query(store.query(DOC_NODE_KIND).has_ancestor(key)):
            if not is_key_equal(key, entity.key):
                entities.append(entity)
    return decode(entities, ancestor)
