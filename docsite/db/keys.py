"""Hierarchical keys for the entity store.

A key is an ordered path of (kind, identifier) elements, e.g.
module -> module_version -> module_entry -> doc_node -> doc_node.
Ancestry is purely a prefix relation on that path.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

Identifier = Union[str, int]


@dataclass(frozen=True)
class PathElement:
    kind: str
    name: Optional[str] = None
    id: Optional[int] = None

    @property
    def identifier(self) -> Optional[Identifier]:
        return self.name if self.name is not None else self.id

    @classmethod
    def of(cls, kind: str, ident: Optional[Identifier] = None) -> "PathElement":
        if isinstance(ident, int) and not isinstance(ident, bool):
            return cls(kind, id=ident)
        return cls(kind, name=ident)

    def to_dict(self):
        d = {"kind": self.kind}
        if self.name is not None:
            d["name"] = self.name
        if self.id is not None:
            d["id"] = self.id
        return d


@dataclass(frozen=True)
class Key:
    path: Tuple[PathElement, ...]

    @classmethod
    def of(cls, *elements: Tuple[str, Identifier]) -> "Key":
        """Build a key from (kind, identifier) pairs."""
        return cls(tuple(PathElement.of(kind, ident) for kind, ident in elements))

    def child(self, kind: str, ident: Optional[Identifier] = None) -> "Key":
        return Key(self.path + (PathElement.of(kind, ident),))

    @property
    def parent(self) -> Optional["Key"]:
        if len(self.path) <= 1:
            return None
        return Key(self.path[:-1])

    @property
    def kind(self) -> str:
        return self.path[-1].kind

    @property
    def identifier(self) -> Optional[Identifier]:
        return self.path[-1].identifier

    def __len__(self) -> int:
        return len(self.path)

    def to_list(self):
        return [el.to_dict() for el in self.path]

    @classmethod
    def from_list(cls, items: Iterable[dict]) -> "Key":
        return cls(tuple(PathElement(i["kind"], name=i.get("name"), id=i.get("id")) for i in items))


def _element_equal(a: PathElement, b: PathElement) -> bool:
    return a.kind == b.kind and a.identifier == b.identifier


def is_key_equal(a: Key, b: Key) -> bool:
    if len(a.path) != len(b.path):
        return False
    return all(_element_equal(x, y) for x, y in zip(a.path, b.path))


def is_ancestor(ancestor: Key, descendant: Key) -> bool:
    """True when ``ancestor``'s path is a proper prefix of ``descendant``'s."""
    if len(ancestor.path) >= len(descendant.path):
        return False
    return all(_element_equal(x, y) for x, y in zip(ancestor.path, descendant.path))


def descendant_not_child(ancestor: Key, descendant: Key) -> Optional[Key]:
    """Return None when ``descendant`` is a direct child of ``ancestor``.

    For deeper descendants the direct parent of ``descendant`` is returned.
    Raises TypeError when ``descendant`` is not below ``ancestor`` at all.
    """
    if not is_ancestor(ancestor, descendant):
        raise TypeError(
            f"Key {key_to_str(descendant)} is not a descendant of {key_to_str(ancestor)}."
        )
    if len(descendant.path) == len(ancestor.path) + 1:
        return None
    return descendant.parent


def key_to_str(key: Key) -> str:
    return json.dumps(
        [[el.kind, el.identifier] for el in key.path],
        ensure_ascii=False,
        separators=(",", ":"),
    )


def ancestor_strs(key: Key):
    """Canonical strings of every proper ancestor of ``key``, root first."""
    return [key_to_str(Key(key.path[:i])) for i in range(1, len(key.path))]
