"""Flatten documentation trees into ancestor-keyed records and back.

The entity store caps nesting depth and entity size, so a doc node tree is
stored as one record per node:

- each node gets a sequential integer id under its parent key
- namespace elements are stored under the namespace's own key
- kind-specific definitions (``classDef`` etc.) are stored as JSON strings

Reading reverses this from an adjacency map keyed by parent key. Records that
are not direct children of the requested ancestor or of a namespace record are
orphans and are dropped.
"""

from __future__ import annotations

import copy
import json
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from docsite.consts import DOC_NODE_KIND
from docsite.db.keys import Key, descendant_not_child, key_to_str
from docsite.db.store import Entity, Mutation

DocNode = Dict[str, Any]

MAX_ENTITY_SIZE = 1_000_000

NULL_NODE: DocNode = {"kind": "null"}

TOO_LARGE_DOC = (
    "**Warning:** the definition of this symbol is too large to be stored, "
    "so only its name and location are available."
)

DEF_FIELDS = {
    "class": "classDef",
    "enum": "enumDef",
    "function": "functionDef",
    "interface": "interfaceDef",
    "typeAlias": "typeAliasDef",
    "variable": "variableDef",
    "import": "importDef",
    "namespace": "namespaceDef",
}

# Minimal definitions substituted when a node's definition does not fit.
_EMPTY_DEFS: Dict[str, Dict[str, Any]] = {
    "class": {
        "isAbstract": False,
        "constructors": [],
        "properties": [],
        "indexSignatures": [],
        "methods": [],
        "extends": None,
        "implements": [],
        "typeParams": [],
        "superTypeParams": [],
    },
    "enum": {"members": []},
    "function": {
        "params": [],
        "returnType": None,
        "isAsync": False,
        "isGenerator": False,
        "typeParams": [],
    },
    "interface": {
        "extends": [],
        "methods": [],
        "properties": [],
        "callSignatures": [],
        "indexSignatures": [],
        "typeParams": [],
    },
    "typeAlias": {"tsType": {"repr": "", "kind": "keyword", "keyword": "unknown"}, "typeParams": []},
    "variable": {"tsType": None, "kind": "const"},
    "import": {"src": ""},
}

_INTERFACE_MEMBERS = ("callSignatures", "indexSignatures", "methods", "properties")


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def entity_size(properties: Dict[str, Any]) -> int:
    return len(_dumps(properties).encode("utf-8"))


def _truncated(node: DocNode, props: Dict[str, Any]) -> Dict[str, Any]:
    kind = node.get("kind")
    field = DEF_FIELDS.get(kind)
    if field and field in props:
        props[field] = _dumps(_EMPTY_DEFS.get(kind, {}))
    js_doc: Dict[str, Any] = {"doc": TOO_LARGE_DOC}
    tags = (node.get("jsDoc") or {}).get("tags")
    if tags:
        js_doc["tags"] = copy.deepcopy(tags)
    props["jsDoc"] = js_doc
    return props


def _node_properties(node: DocNode, max_entity_size: int) -> Dict[str, Any]:
    kind = node.get("kind")
    field = DEF_FIELDS.get(kind)
    props: Dict[str, Any] = {}
    for name, value in node.items():
        if name == field:
            continue
        props[name] = copy.deepcopy(value)
    if field and field in node:
        definition = node[field]
        if kind == "namespace":
            rest = {k: v for k, v in (definition or {}).items() if k != "elements"}
            if rest:
                props[field] = _dumps(rest)
        else:
            props[field] = _dumps(definition)
    if entity_size(props) > max_entity_size:
        props = _truncated(node, props)
    return props


def _encode_level(out: List[Entity], nodes: Sequence[DocNode], parent: Key, max_entity_size: int) -> None:
    for i, node in enumerate(nodes, start=1):
        key = parent.child(DOC_NODE_KIND, i)
        out.append(Entity(key, _node_properties(node, max_entity_size)))
        if node.get("kind") == "namespace":
            elements = (node.get("namespaceDef") or {}).get("elements") or []
            _encode_level(out, elements, key, max_entity_size)


def encode(nodes: Sequence[DocNode], base_key: Key, *, max_entity_size: int = MAX_ENTITY_SIZE) -> List[Entity]:
    """Flatten ``nodes`` into doc_node records below ``base_key``.

    An empty tree still yields one null record so that "no symbols" can be told
    apart from "not processed yet".
    """
    out: List[Entity] = []
    _encode_level(out, list(nodes) or [NULL_NODE], base_key, max_entity_size)
    return out


def encode_mutations(
    nodes: Sequence[DocNode], base_key: Key, *, max_entity_size: int = MAX_ENTITY_SIZE
) -> List[Mutation]:
    return [Mutation(upsert=e) for e in encode(nodes, base_key, max_entity_size=max_entity_size)]


def hydrate(properties: Dict[str, Any]) -> DocNode:
    node = copy.deepcopy(properties)
    field = DEF_FIELDS.get(node.get("kind"))
    if field and isinstance(node.get(field), str):
        node[field] = json.loads(node[field])
    return node


def _sort_key(entity: Entity):
    ident = entity.key.identifier
    if isinstance(ident, int):
        return (0, ident, "")
    return (1, 0, str(ident))


def _build(entities: Iterable[Entity], children: Dict[str, List[Entity]]) -> List[DocNode]:
    nodes: List[DocNode] = []
    for entity in sorted(entities, key=_sort_key):
        node = hydrate(entity.properties)
        kind = node.get("kind")
        if kind == "null":
            continue
        if kind == "namespace":
            ns_def = node.get("namespaceDef") or {}
            ns_def["elements"] = _build(children.get(key_to_str(entity.key), []), children)
            node["namespaceDef"] = ns_def
        nodes.append(node)
    return nodes


def decode(entities: Iterable[Entity], ancestor: Key) -> List[DocNode]:
    """Rebuild the doc node tree stored below ``ancestor``.

    Raises TypeError if any record is not a descendant of ``ancestor``.
    """
    top: List[Entity] = []
    children: Dict[str, List[Entity]] = defaultdict(list)
    for entity in entities:
        parent = descendant_not_child(ancestor, entity.key)
        if parent is None:
            top.append(entity)
        else:
            children[key_to_str(parent)].append(entity)
    return _build(top, children)


def is_namespace(entity: Entity) -> bool:
    return entity.properties.get("kind") == "namespace"


def _has_doc(js_doc: Optional[Dict[str, Any]]) -> bool:
    return bool(js_doc and (js_doc.get("doc") or js_doc.get("tags")))


def merge(nodes: Iterable[DocNode]) -> List[DocNode]:
    """Namespaces and interfaces are open ended; fold same-named declarations together.

    Members are concatenated in encounter order and the first non-empty jsDoc
    wins. Other nodes pass through in order. The input is not modified.
    """
    merged: List[DocNode] = []
    namespaces: Dict[str, DocNode] = {}
    interfaces: Dict[str, DocNode] = {}
    for node in nodes:
        kind = node.get("kind")
        if kind == "namespace":
            existing = namespaces.get(node.get("name"))
            elements = copy.deepcopy((node.get("namespaceDef") or {}).get("elements") or [])
            if existing is None:
                first = copy.deepcopy(node)
                first["namespaceDef"] = dict(first.get("namespaceDef") or {}, elements=elements)
                namespaces[node.get("name")] = first
                merged.append(first)
            else:
                existing["namespaceDef"]["elements"].extend(elements)
                if not _has_doc(existing.get("jsDoc")) and _has_doc(node.get("jsDoc")):
                    existing["jsDoc"] = copy.deepcopy(node["jsDoc"])
        elif kind == "interface":
            existing = interfaces.get(node.get("name"))
            if existing is None:
                first = copy.deepcopy(node)
                definition = first["interfaceDef"] = first.get("interfaceDef") or {}
                for member in _INTERFACE_MEMBERS:
                    definition[member] = definition.get(member) or []
                interfaces[node.get("name")] = first
                merged.append(first)
            else:
                definition = node.get("interfaceDef") or {}
                for member in _INTERFACE_MEMBERS:
                    existing["interfaceDef"][member].extend(copy.deepcopy(definition.get(member) or []))
                if not _has_doc(existing.get("jsDoc")) and _has_doc(node.get("jsDoc")):
                    existing["jsDoc"] = copy.deepcopy(node["jsDoc"])
        else:
            merged.append(node)
    return merged
