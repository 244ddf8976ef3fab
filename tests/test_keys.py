import pytest

from docsite.db.keys import (
    Key,
    ancestor_strs,
    descendant_not_child,
    is_ancestor,
    is_key_equal,
    key_to_str,
)


def _entry():
    return Key.of(("module", "oak"), ("module_version", "v1.0.0"), ("module_entry", "/mod.ts"))


def test_key_equality_compares_kind_and_identifier():
    assert is_key_equal(_entry(), _entry())
    assert not is_key_equal(_entry(), _entry().child("doc_node", 1))
    other = Key.of(("module", "oak"), ("module_version", "v1.0.0"), ("module_entry", "/deps.ts"))
    assert not is_key_equal(_entry(), other)


def test_ancestor_is_a_proper_prefix():
    entry = _entry()
    node = entry.child("doc_node", 1)
    nested = node.child("doc_node", 2)
    assert is_ancestor(entry, node)
    assert is_ancestor(entry, nested)
    assert not is_ancestor(entry, entry)
    assert not is_ancestor(node, entry)


def test_descendant_not_child():
    entry = _entry()
    node = entry.child("doc_node", 1)
    nested = node.child("doc_node", 2)
    assert descendant_not_child(entry, node) is None
    assert is_key_equal(descendant_not_child(entry, nested), node)


def test_descendant_not_child_rejects_unrelated_keys():
    with pytest.raises(TypeError):
        descendant_not_child(_entry(), Key.of(("module", "std"), ("module_version", "0.1.0")))


def test_integer_and_string_identifiers_are_distinct():
    by_id = Key.of(("doc_node", 1))
    by_name = Key.of(("doc_node", "1"))
    assert by_id.path[0].id == 1
    assert by_name.path[0].name == "1"
    assert key_to_str(by_id) != key_to_str(by_name)


def test_list_round_trip_and_ancestor_strings():
    key = _entry().child("doc_node", 3)
    assert is_key_equal(Key.from_list(key.to_list()), key)
    strs = ancestor_strs(key)
    assert len(strs) == 3
    assert strs[0] == key_to_str(Key.of(("module", "oak")))
    assert key.parent is not None and key.parent.kind == "module_entry"
    assert Key.of(("module", "oak")).parent is None
