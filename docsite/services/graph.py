"""Module graph construction.

``ModuleGraphBuilder`` walks ES module sources starting from a set of roots,
loading each file through a caller supplied ``load`` hook and recording its
dependency edges. Import statements are found with regular expressions:

- static ``import``/``export ... from`` and side-effect imports
- literal dynamic ``import("...")``
- ``// @deno-types="..."`` pragmas, which give the following import a type edge
- triple-slash ``<reference path|types="..." />`` directives
"""

from __future__ import annotations

import logging
import re
from collections import OrderedDict, deque
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from .import_map import resolve_default

logger = logging.getLogger(__name__)

Loader = Callable[[str], Awaitable[Any]]
Resolver = Callable[[str, str], str]

_RE_STATIC = re.compile(
    r"""(?:^|[;}\s])(?:import|export)\s+(?:type\s+)?(?:[\w$*{}\s,]+?\s+from\s+)?["']([^"'\n]+)["']""",
    re.M,
)
_RE_DYNAMIC = re.compile(r"""\bimport\(\s*["']([^"'\n]+)["']\s*\)""")
_RE_DENO_TYPES = re.compile(r"""//\s*@deno-types\s*=\s*["']([^"'\n]+)["']""")
_RE_REFERENCE = re.compile(r"""^\s*///\s*<reference\s+(path|types)\s*=\s*["']([^"'\n]+)["']""", re.M)

_NON_SCRIPT = (".json", ".wasm", ".css")


@dataclass
class Resolution:
    specifier: Optional[str] = None
    error: Optional[str] = None


@dataclass
class Dependency:
    specifier: str
    code: Optional[Resolution] = None
    type: Optional[Resolution] = None


@dataclass
class GraphModule:
    specifier: str
    error: Optional[str] = None
    dependencies: List[Dependency] = field(default_factory=list)


@dataclass
class ModuleGraph:
    modules: List[GraphModule] = field(default_factory=list)
    redirects: Dict[str, str] = field(default_factory=dict)
    roots: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class GraphBuilder(Protocol):
    async def build(self, roots: List[str], *, load: Loader, resolve: Optional[Resolver] = None) -> ModuleGraph:
        ...


def scan_imports(content: str) -> List[Tuple[str, str, str]]:
    """Return ``(dependency, kind, target)`` triples in source order.

    ``kind`` is ``code`` or ``type``. ``target`` is the specifier to resolve,
    which differs from ``dependency`` only for ``@deno-types`` pragmas.
    """
    found: List[Tuple[str, str, str]] = []
    pragmas = deque((m.end(), m.group(1)) for m in _RE_DENO_TYPES.finditer(content))
    imports = sorted(
        [(m.start(1), m.group(1)) for m in _RE_STATIC.finditer(content)]
        + [(m.start(1), m.group(1)) for m in _RE_DYNAMIC.finditer(content)]
    )
    for pos, specifier in imports:
        found.append((specifier, "code", specifier))
        # a pragma applies to the first import after it
        types = None
        while pragmas and pragmas[0][0] <= pos:
            types = pragmas.popleft()[1]
        if types is not None:
            found.append((specifier, "type", types))
    for m in _RE_REFERENCE.finditer(content):
        target = m.group(2)
        found.append((target, "code" if m.group(1) == "path" else "type", target))
    return found


def _resolve(resolve: Resolver, specifier: str, referrer: str) -> Resolution:
    try:
        return Resolution(specifier=resolve(specifier, referrer))
    except ValueError as exc:
        return Resolution(error=str(exc))


class ModuleGraphBuilder:
    def __init__(self, *, max_modules: int = 10_000) -> None:
        self.max_modules = max_modules

    async def build(self, roots: List[str], *, load: Loader, resolve: Optional[Resolver] = None) -> ModuleGraph:
        resolve = resolve or resolve_default
        graph = ModuleGraph(roots=list(roots))
        modules: "OrderedDict[str, GraphModule]" = OrderedDict()
        pending = deque(roots)
        seen = set(roots)
        while pending:
            if len(modules) >= self.max_modules:
                logger.warning("Module graph truncated at %d modules.", self.max_modules)
                break
            requested = pending.popleft()
            loaded = await load(requested)
            if loaded is None:
                modules[requested] = GraphModule(requested, error=f'Module not found "{requested}".')
                continue
            specifier = loaded.specifier or requested
            if specifier != requested:
                graph.redirects[requested] = specifier
                if specifier in modules:
                    continue
            module = GraphModule(specifier)
            modules[specifier] = module
            if specifier.lower().endswith(_NON_SCRIPT):
                continue
            deps: "OrderedDict[str, Dependency]" = OrderedDict()
            for raw, kind, target in scan_imports(loaded.content or ""):
                dep = deps.setdefault(raw, Dependency(raw))
                resolution = _resolve(resolve, target, specifier)
                if kind == "code":
                    dep.code = resolution
                else:
                    dep.type = resolution
                if resolution.specifier and resolution.specifier not in seen:
                    seen.add(resolution.specifier)
                    pending.append(resolution.specifier)
            module.dependencies = list(deps.values())
        graph.modules = list(modules.values())
        return graph
