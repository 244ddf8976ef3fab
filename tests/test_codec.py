import copy

import pytest

from docsite.db.keys import Key
from docsite.services.docs.codec import (
    NULL_NODE,
    TOO_LARGE_DOC,
    decode,
    encode,
    encode_mutations,
    merge,
)

BASE = Key.of(("module", "oak"), ("module_version", "v1.0.0"), ("module_entry", "/mod.ts"))


def _nodes():
    return [
        {"kind": "moduleDoc", "name": "", "location": {"line": 1}, "jsDoc": {"doc": "Module doc."}},
        {
            "kind": "namespace",
            "name": "Deno",
            "location": {"line": 3},
            "namespaceDef": {
                "elements": [
                    {"kind": "function", "name": "exit", "location": {"line": 4}, "functionDef": {"params": []}},
                    {
                        "kind": "namespace",
                        "name": "errors",
                        "location": {"line": 5},
                        "namespaceDef": {
                            "elements": [
                                {"kind": "class", "name": "NotFound", "location": {"line": 6}, "classDef": {"isAbstract": False}},
                            ]
                        },
                    },
                ]
            },
        },
        {"kind": "variable", "name": "version", "location": {"line": 9}, "variableDef": {"kind": "const", "tsType": None}},
    ]


def test_round_trip_restores_the_tree():
    nodes = _nodes()
    entities = encode(nodes, BASE)
    assert decode(entities, BASE) == nodes


def test_records_are_keyed_below_their_namespace():
    entities = encode(_nodes(), BASE)
    depths = sorted(len(e.key) for e in entities)
    # 3 top level, 2 inside Deno, 1 inside Deno.errors
    assert depths == [4, 4, 4, 5, 5, 6]
    top_ids = [e.key.identifier for e in entities if len(e.key) == 4]
    assert top_ids == [1, 2, 3]
    deno = next(e for e in entities if e.properties.get("name") == "Deno")
    assert "namespaceDef" not in deno.properties
    exit_fn = next(e for e in entities if e.properties.get("name") == "exit")
    assert isinstance(exit_fn.properties["functionDef"], str)


def test_decode_ignores_input_order():
    entities = encode(_nodes(), BASE)
    assert decode(list(reversed(entities)), BASE) == _nodes()


def test_empty_tree_is_stored_as_a_null_record():
    entities = encode([], BASE)
    assert len(entities) == 1
    assert entities[0].properties == NULL_NODE
    assert decode(entities, BASE) == []


def test_records_below_a_non_namespace_are_dropped():
    entities = encode(_nodes(), BASE)
    variable = next(e for e in entities if e.properties.get("name") == "version")
    orphan = encode([{"kind": "function", "name": "stray"}], variable.key)
    names = [n["name"] for n in decode(entities + orphan, BASE)]
    assert "stray" not in names


def test_oversized_definitions_are_truncated():
    big = {
        "kind": "function",
        "name": "huge",
        "location": {"line": 1},
        "jsDoc": {"doc": "x" * 500, "tags": [{"kind": "deprecated"}]},
        "functionDef": {"params": [{"kind": "identifier", "name": "p" * 500}]},
    }
    entities = encode([big], BASE, max_entity_size=300)
    props = entities[0].properties
    assert props["kind"] == "function"
    assert props["name"] == "huge"
    assert props["location"] == {"line": 1}
    assert props["jsDoc"] == {"doc": TOO_LARGE_DOC, "tags": [{"kind": "deprecated"}]}
    node = decode(entities, BASE)[0]
    assert node["functionDef"]["params"] == []
    # the input is left alone
    assert big["jsDoc"]["doc"] == "x" * 500


def test_encode_mutations_are_upserts():
    mutations = encode_mutations(_nodes(), BASE)
    assert len(mutations) == 6
    assert all(m.upsert is not None for m in mutations)


def test_merge_folds_namespaces_and_interfaces():
    nodes = [
        {"kind": "namespace", "name": "A", "namespaceDef": {"elements": [{"kind": "variable", "name": "x"}]}},
        {"kind": "interface", "name": "I", "interfaceDef": {"properties": [{"name": "a"}]}},
        {"kind": "function", "name": "f"},
        {
            "kind": "namespace",
            "name": "A",
            "jsDoc": {"doc": "Second declaration."},
            "namespaceDef": {"elements": [{"kind": "variable", "name": "y"}]},
        },
        {"kind": "interface", "name": "I", "interfaceDef": {"properties": [{"name": "b"}], "methods": [{"name": "m"}]}},
    ]
    original = copy.deepcopy(nodes)
    merged = merge(nodes)
    assert [n["name"] for n in merged] == ["A", "I", "f"]
    ns = merged[0]
    assert [e["name"] for e in ns["namespaceDef"]["elements"]] == ["x", "y"]
    assert ns["jsDoc"] == {"doc": "Second declaration."}
    iface = merged[1]["interfaceDef"]
    assert [p["name"] for p in iface["properties"]] == ["a", "b"]
    assert [m["name"] for m in iface["methods"]] == ["m"]
    assert nodes == original


def test_merge_is_idempotent():
    nodes = [
        {"kind": "interface", "name": "I", "jsDoc": {"doc": "first"}, "interfaceDef": {"properties": [{"name": "a"}]}},
        {"kind": "interface", "name": "I", "jsDoc": {"doc": "second"}, "interfaceDef": {"properties": [{"name": "b"}]}},
    ]
    once = merge(nodes)
    assert once[0]["jsDoc"] == {"doc": "first"}
    assert merge(once) == once


def test_merge_accepts_empty_definitions():
    nodes = [
        {"kind": "namespace", "name": "A", "namespaceDef": None},
        {"kind": "interface", "name": "I", "interfaceDef": None},
        {"kind": "namespace", "name": "A", "namespaceDef": {"elements": [{"kind": "variable", "name": "x"}]}},
        {"kind": "interface", "name": "I", "interfaceDef": {"properties": None, "methods": [{"name": "m"}]}},
    ]
    merged = merge(nodes)
    assert [e["name"] for e in merged[0]["namespaceDef"]["elements"]] == ["x"]
    assert [m["name"] for m in merged[1]["interfaceDef"]["methods"]] == ["m"]
    assert merged[1]["interfaceDef"]["properties"] == []


def test_decode_rejects_records_outside_the_ancestor():
    other = Key.of(("module", "oak"), ("module_version", "v1.0.0"), ("module_entry", "/deps.ts"))
    entities = encode(_nodes(), BASE) + encode([{"kind": "function", "name": "f"}], other)
    with pytest.raises(TypeError):
        decode(entities, BASE)
