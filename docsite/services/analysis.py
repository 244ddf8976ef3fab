"""Dependency analysis of a module version.

The module graph is walked from the version's root modules. Files inside the
same ``https://deno.land/x/<module>@<version>`` entry are internal and are
followed; everything else is an external dependency, classified by source and
recorded as a leaf together with the internal files that import it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Set
from urllib.parse import urlsplit

from docsite.consts import (
    DEP_ERROR_KIND,
    INFO_PAGE_KIND,
    MODULE_DEP_KIND,
    MODULE_ENTRY_KIND,
    MODULE_KIND,
    MODULE_VERSION_KIND,
)
from docsite.db.keys import Key
from docsite.db.store import Entity, EntityStore, Mutation, commit_mutations
from docsite.errors import StoreFault, assert_that
from docsite.models.records import DependencyError, ModuleAnalysis, ModuleDependency

from .classifier import dependency_key, parse_specifier
from .graph import GraphModule, Resolution
from .import_map import get_import_map_specifier, load_import_map
from .registry import clear_append

if TYPE_CHECKING:
    from .context import AppContext

logger = logging.getLogger(__name__)

ANALYSIS_VERSION = "1"


def _registry_entry(specifier: str) -> Optional[str]:
    """The ``<module>@<version>`` segment of a deno.land/x URL, if it is one."""
    parts = urlsplit(specifier)
    if parts.scheme != "https" or parts.netloc != "deno.land" or not parts.path.startswith("/x/"):
        return None
    entry = parts.path[3:].split("/", 1)[0]
    return entry or None


def is_external(specifier: str, referrer: str) -> bool:
    entry = _registry_entry(referrer)
    assert_that(entry, f"unexpected referrer: {referrer}")
    return _registry_entry(specifier) != entry


class _Walk:
    def __init__(self, modules: Dict[str, GraphModule], redirects: Dict[str, str]) -> None:
        self.modules = modules
        self.redirects = redirects
        self.deps: Dict[str, ModuleDependency] = {}
        self.errors: List[DependencyError] = []
        self.visited: Set[str] = set()

    def resolve_module(self, specifier: str, *, required: bool = True) -> Optional[GraphModule]:
        resolved = self.redirects.get(specifier, specifier)
        mod = self.modules.get(resolved)
        if mod is None:
            assert_that(not required, f"cannot find module: {resolved}")
            return None
        if mod.error:
            self.errors.append(DependencyError(resolved, mod.error))
            return None
        return mod

    def _edge(self, raw: str, resolution: Optional[Resolution], referrer: str, stack: List[str]) -> None:
        if resolution is None:
            return
        if resolution.error:
            self.errors.append(DependencyError(resolution.specifier or raw, resolution.error))
            return
        target = resolution.specifier
        if not target:
            return
        if is_external(target, referrer):
            dep = parse_specifier(target)
            dep = self.deps.setdefault(dependency_key(dep), dep)
            if referrer not in dep.dependents:
                dep.dependents.append(referrer)
            self.resolve_module(target, required=False)
        elif target not in self.visited:
            stack.append(target)

    def walk(self, root: str) -> None:
        stack = [root]
        while stack:
            specifier = stack.pop()
            if specifier in self.visited:
                continue
            self.visited.add(specifier)
            mod = self.resolve_module(specifier)
            if mod is None:
                continue
            children: List[str] = []
            for dep in mod.dependencies:
                self._edge(dep.specifier, dep.code, specifier, children)
                self._edge(dep.specifier, dep.type, specifier, children)
            # keep source order when popping
            stack.extend(reversed(children))


def analyze_deps(modules: List[GraphModule], redirects: Dict[str, str], roots: List[str]) -> ModuleAnalysis:
    """Collect external dependencies and resolution errors reachable from ``roots``."""
    walk = _Walk({m.specifier: m for m in modules}, redirects)
    for root in roots:
        logger.debug('analyzing dependencies for "%s"...', root)
        walk.walk(root)
    return ModuleAnalysis(deps=list(walk.deps.values()), errors=walk.errors)


def version_key(module: str, version: str) -> Key:
    return Key.of((MODULE_KIND, module), (MODULE_VERSION_KIND, version))


async def get_roots(store: EntityStore, module: str, version: str) -> List[str]:
    vkey = version_key(module, version)
    found = await store.lookup(vkey.child(MODULE_ENTRY_KIND, "/"))
    assert_that(len(found) == 1, "was unable to lookup root path of module")
    root_entry = found[0].properties
    base = f"https://deno.land/x/{module}@{version}"
    if root_entry.get("default"):
        return [f"{base}{root_entry['default']}"]
    query = store.query(MODULE_ENTRY_KIND).has_ancestor(vkey).filter("docable", True)
    roots = []
    async for entity in store.stream_query(query):
        path = entity.properties.get("path", "")
        if path.rfind("/") == 0:
            roots.append(f"{base}{path}")
    return roots


async def is_analyzed(ctx: "AppContext", module: str, version: str) -> bool:
    _, module_version, _ = await ctx.modules.lookup(module, version)
    assert_that(module_version, f"Cannot find module version: {module}@{version}")
    return module_version.get("analysis_version") == ANALYSIS_VERSION


async def _stamp(ctx: "AppContext", module: str, version: str, mutations: List[Mutation]) -> None:
    _, module_version, _ = await ctx.modules.lookup(module, version)
    assert_that(module_version, f"unexpected missing module version: {module}@{version}")
    module_version = dict(module_version, analysis_version=ANALYSIS_VERSION)
    mutations.append(Mutation(upsert=Entity(version_key(module, version), module_version)))
    ctx.modules.cache_module_version(module, version, module_version)


async def _commit(ctx: "AppContext", mutations: List[Mutation], prefix: str = "") -> None:
    try:
        await commit_mutations(ctx.store, mutations, prefix=prefix)
    except StoreFault as exc:
        logger.error("%sStore fault: %s status=%s detail=%s", prefix, exc, exc.status, exc.detail)


async def analyze(ctx: "AppContext", module: str, version: str, force: bool = False, *, prefix: str = "") -> ModuleAnalysis:
    """Analyze and persist the dependencies of ``module@version``."""
    if not force and await is_analyzed(ctx, module, version):
        logger.info("%sSkipping %s@%s. Already analyzed.", prefix, module, version)
        return ModuleAnalysis()
    logger.info("%sAnalyzing dependencies of %s@%s...", prefix, module, version)
    load = ctx.fetch_cache.load
    import_map = await load_import_map(load, await get_import_map_specifier(ctx.store, load, module, version))
    resolve = import_map.resolve if import_map is not None else None

    roots = await get_roots(ctx.store, module, version)
    mutations: List[Mutation] = []
    if not roots:
        logger.error("%sNo root docable modules found.", prefix)
        await _stamp(ctx, module, version, mutations)
        await _commit(ctx, mutations, prefix)
        return ModuleAnalysis()

    logger.info("%sgenerating module graph...", prefix)
    graph = await ctx.graph_builder.build(roots, load=load, resolve=resolve)
    result = analyze_deps(graph.modules, graph.redirects, graph.roots)

    vkey = version_key(module, version)
    await clear_append(ctx.store, mutations, [INFO_PAGE_KIND], vkey.parent)
    await clear_append(ctx.store, mutations, [MODULE_DEP_KIND, DEP_ERROR_KIND], vkey)
    for i, error in enumerate(result.errors, start=1):
        mutations.append(Mutation(upsert=Entity(vkey.child(DEP_ERROR_KIND, i), error.to_dict())))
    for dep in result.deps:
        mutations.append(Mutation(upsert=Entity(vkey.child(MODULE_DEP_KIND, dependency_key(dep)), dep.to_dict())))
    await _stamp(ctx, module, version, mutations)
    await _commit(ctx, mutations, prefix)
    logger.info("%sDone.", prefix)
    return result


def _dependency_from(props) -> ModuleDependency:
    return ModuleDependency(
        src=props["src"],
        pkg=props["pkg"],
        org=props.get("org"),
        ver=props.get("ver"),
        dependents=list(props.get("dependents") or []),
    )


async def get_analysis(ctx: "AppContext", module: str, version: str, force: bool = False) -> ModuleAnalysis:
    """Stored analysis results, analyzing first when there are none."""
    if force or not await is_analyzed(ctx, module, version):
        return await analyze(ctx, module, version, force)
    vkey = version_key(module, version)
    deps = await ctx.store.run_query(ctx.store.query(MODULE_DEP_KIND).has_ancestor(vkey))
    errors = await ctx.store.run_query(ctx.store.query(DEP_ERROR_KIND).has_ancestor(vkey))
    return ModuleAnalysis(
        deps=[_dependency_from(e.properties) for e in deps],
        errors=[DependencyError(e.properties["specifier"], e.properties["error"]) for e in errors],
    )
