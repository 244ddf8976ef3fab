"""Derived views computed from stored records.

Each view is read from the store when present. Otherwise it is computed on
demand and handed to the scheduler to persist, so the caller never waits on
the write.

- symbol index: every symbol of a module path, with namespace-qualified names
- nav index: the child directories and modules of a directory entry
- doc nodes: the documentation of one module path, generated on first request
- path completions: importable paths of a module version, for editor clients
"""

from __future__ import annotations

import copy
import logging
import re
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from docsite.consts import (
    DOC_NODE_KIND,
    MODULE_ENTRY_KIND,
    NAV_INDEX_KIND,
    SYMBOL_INDEX_KIND,
)
from docsite.db.keys import PathElement
from docsite.db.store import Entity
from docsite.errors import BadRequest, NotFound

from .analysis import version_key
from .docs.codec import DocNode, hydrate
from .docs.generate import generate_doc_nodes
from .docs.query import entry_key, query_doc_nodes, query_doc_nodes_by_symbol
from .import_map import get_import_map_specifier
from .tasks import (
    CommitDocNodesTask,
    CommitNavTask,
    CommitPathCompletionsTask,
    CommitSymbolIndexTask,
    completions_key,
)

if TYPE_CHECKING:
    from .context import AppContext

logger = logging.getLogger(__name__)

RE_IMPORTABLE = re.compile(r"\.(ts|tsx|mts|cts|js|jsx|mjs|cjs|json)$", re.I)
RE_HIDDEN = re.compile(r"/\.")


# -- doc nodes -----------------------------------------------------------------------------

async def get_doc_nodes(
    ctx: "AppContext", module: str, version: str, path: str, symbol: Optional[str] = None
) -> List[DocNode]:
    """Doc nodes of a module path, optionally narrowed to one dotted symbol name."""
    module_item, version_item, entry = await ctx.modules.lookup(module, version, path)
    if not module_item:
        raise NotFound(f'The module "{module}" cannot be found.')
    if not version_item:
        raise NotFound(f'The version "{version}" of "{module}" cannot be found.')
    if not entry:
        raise NotFound(f'The path "{path}" in "{module}@{version}" cannot be found.')
    if entry.get("type") != "file" or not entry.get("docable"):
        raise BadRequest(f'The path "{path}" in "{module}@{version}" is not documentable.')

    if symbol:
        nodes = await query_doc_nodes_by_symbol(ctx.store, module, version, path, symbol)
        if not nodes:
            raise NotFound(f'The symbol "{symbol}" cannot be found in "{module}@{version}{path}".')
        return nodes

    nodes = await query_doc_nodes(ctx.store, module, version, path)
    if nodes is not None:
        return nodes
    load = ctx.fetch_cache.load
    import_map = await get_import_map_specifier(ctx.store, load, module, version)
    nodes = await generate_doc_nodes(ctx.extractor, load, module, version, path, import_map)
    ctx.scheduler.enqueue(CommitDocNodesTask(module, version, path, tuple(copy.deepcopy(nodes))))
    return nodes


# -- symbol index --------------------------------------------------------------------------

def _doc_node_ids(path: Sequence[PathElement]) -> List[str]:
    return [str(el.identifier) for el in path if el.kind == DOC_NODE_KIND]


def is_unstable(node: DocNode) -> bool:
    for tag in (node.get("jsDoc") or {}).get("tags") or []:
        if tag.get("kind") == "tags" and "unstable" in (tag.get("tags") or []):
            return True
    return False


def entities_to_symbol_items(entities: Sequence[Entity]) -> List[Dict[str, Any]]:
    """One item per ``name``/``kind`` pair; an unstable declaration replaces a stable one.

    Entities must be ordered so that a namespace precedes its elements.
    """
    collection: Dict[str, Dict[str, Any]] = {}
    namespaces: Dict[str, str] = {}
    for entity in entities:
        node = entity.properties
        kind = node.get("kind")
        if kind == "null":
            continue
        ids = _doc_node_ids(entity.key.path)
        ancestor_id = ".".join(ids[:-1])
        name = f"{namespaces.get(ancestor_id)}.{node.get('name')}" if ancestor_id else node.get("name")
        if kind == "namespace":
            namespaces[".".join(ids)] = name
        item_id = f"{name}_{kind}"
        if is_unstable(node) or item_id not in collection:
            item: Dict[str, Any] = {"name": name, "kind": kind}
            doc = (node.get("jsDoc") or {}).get("doc")
            if doc:
                item["doc"] = doc
            if is_unstable(node):
                item["unstable"] = True
            collection[item_id] = item
    return list(collection.values())


def _depth_first(entity: Entity):
    return tuple((0, el.identifier) if isinstance(el.identifier, int) else (1, str(el.identifier)) for el in entity.key.path)


async def get_symbol_index(ctx: "AppContext", module: str, version: str, path: str) -> List[Dict[str, Any]]:
    key = version_key(module, version).child(SYMBOL_INDEX_KIND, path)
    found = await ctx.store.lookup(key)
    if found:
        return found[0].properties.get("items", [])
    ancestor = entry_key(module, version, path)
    entities = await ctx.store.run_query(ctx.store.query(DOC_NODE_KIND).has_ancestor(ancestor))
    if not entities:
        raise NotFound(f'No documentation for "{module}@{version}{path}".')
    items = entities_to_symbol_items(sorted(entities, key=_depth_first))
    for item in items:
        item["path"] = path
    ctx.scheduler.enqueue(CommitSymbolIndexTask(module, version, path, tuple(items)))
    return items


# -- nav index -----------------------------------------------------------------------------

def _basename(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1] or "/"


def build_nav(entry: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Child directories then modules of a directory entry."""
    nav: List[Dict[str, Any]] = []
    for d in entry.get("dirs") or []:
        nav.append({"path": d, "kind": "dir", "name": _basename(d)})
    for m in entry.get("index") or []:
        item = {"path": m, "kind": "module", "name": _basename(m)}
        if m == entry.get("default"):
            item["default"] = m
        nav.append(item)
    return nav


async def get_nav_index(ctx: "AppContext", module: str, version: str, path: str) -> List[Dict[str, Any]]:
    key = version_key(module, version).child(NAV_INDEX_KIND, path)
    found = await ctx.store.lookup(key)
    if found:
        return found[0].properties.get("nav", [])
    _, _, entry = await ctx.modules.lookup(module, version, path)
    if entry is None:
        raise NotFound(f'The path "{path}" in "{module}@{version}" cannot be found.')
    if entry.get("type") != "dir":
        raise NotFound(f'The path "{path}" in "{module}@{version}" is not a directory.')
    nav = build_nav(entry)
    ctx.scheduler.enqueue(CommitNavTask(module, version, path, tuple(nav)))
    return nav


# -- path completions ----------------------------------------------------------------------

def _has_modules(completions: Dict[str, Dict[str, Any]], item: Dict[str, Any], seen=None) -> bool:
    if item["modules"]:
        return True
    seen = seen if seen is not None else set()
    seen.add(item["path"])
    for d in item.get("dirs") or []:
        child = completions.get(d)
        if child is not None and d not in seen and _has_modules(completions, child, seen):
            return True
    return False


def to_completions(module: str, version: str, entries: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Group importable modules by directory, dropping hidden paths and empty directories."""
    completions: Dict[str, Dict[str, Any]] = {}
    for entry in entries:
        path = entry["path"]
        if RE_HIDDEN.search(path):
            continue
        if entry.get("type") == "dir":
            key = path if path == "/" else f"{path}/"
            if key not in completions:
                item: Dict[str, Any] = {
                    "path": key,
                    "dirs": [f"{p}/" for p in entry.get("dirs") or []],
                    "modules": [],
                }
                if entry.get("default"):
                    item["default"] = entry["default"]
                completions[key] = item
        elif RE_IMPORTABLE.search(path):
            parent = path[: path.rfind("/") + 1]
            item = completions.get(parent)
            if item is None:
                logger.error("Missing parent: %s", parent)
                continue
            item["modules"].append({"path": path})
    items = [v for v in completions.values() if _has_modules(completions, v)]
    return {"name": module, "version": version, "items": items}


def get_completion_items(completions: Dict[str, Any], path: str) -> Optional[Dict[str, Any]]:
    """Completion candidates for a partially typed ``path`` (leading slash included)."""
    head, _, last = path.rpartition("/")
    directory = f"{head}/" if last else path
    item = next((i for i in completions["items"] if i["path"] == directory), None)
    if item is None:
        return None
    items: List[str] = []
    has_dir = False
    for d in item.get("dirs") or []:
        if d.startswith(path):
            has_dir = True
            items.append(d)
    for m in item["modules"]:
        if m["path"].startswith(path):
            items.append(m["path"])
    # clients omit the trailing slash of a sub directory
    if len(items) == 1 and items[0] == f"{path}/":
        return get_completion_items(completions, f"{path}/")
    preselect = None
    if item.get("default") and item["default"] in items:
        preselect = item["default"][1:]
    return {
        "items": [i[1:] for i in items],
        "is_incomplete": has_dir,
        "preselect": preselect,
    }


async def get_completions(ctx: "AppContext", module: str, version: str) -> Optional[Dict[str, Any]]:
    """Path completions of a module version; ``__latest__`` means the latest version."""
    if version == "__latest__":
        module_item, _, _ = await ctx.modules.lookup(module)
        if not module_item or not module_item.get("latest_version"):
            return None
        version = module_item["latest_version"]
    memo_key = f"{module}@{version}"
    completions = ctx.completions.get(memo_key)
    if completions is not None:
        return completions
    found = await ctx.store.lookup(completions_key(module, version))
    if found:
        completions = found[0].to_object()
        ctx.completions[memo_key] = completions
        return completions
    entities = await ctx.store.run_query(
        ctx.store.query(MODULE_ENTRY_KIND).has_ancestor(version_key(module, version))
    )
    if not entities:
        return None
    completions = to_completions(module, version, [e.properties for e in entities])
    ctx.completions[memo_key] = completions
    ctx.scheduler.enqueue(CommitPathCompletionsTask(module, version, copy.deepcopy(completions)))
    return completions


async def get_mod_doc(ctx: "AppContext", module: str, version: str, path: str) -> str:
    """The module-level doc of a path, ignoring module docs of re-exported namespaces."""
    ancestor = entry_key(module, version, path)
    query = ctx.store.query(DOC_NODE_KIND).has_ancestor(ancestor).filter("kind", "moduleDoc")
    async for entity in ctx.store.stream_query(query):
        if len(entity.key) != len(ancestor) + 1:
            continue
        node = hydrate(entity.properties)
        return (node.get("jsDoc") or {}).get("doc") or ""
    return ""


async def get_path_doc(ctx: "AppContext", completions: Dict[str, Any], directory: str, path: str) -> Optional[str]:
    item = next((i for i in completions["items"] if i["path"] == directory), None)
    if item is None:
        return None
    search = item.get("default") if path == directory else path
    if not search:
        return None
    mod = next((m for m in item["modules"] if m["path"] == search), None)
    if mod is None:
        return None
    if mod.get("doc") is None:
        mod["doc"] = await get_mod_doc(ctx, completions["name"], completions["version"], search)
        ctx.scheduler.enqueue(
            CommitPathCompletionsTask(completions["name"], completions["version"], copy.deepcopy(completions))
        )
    return mod["doc"] or ""
