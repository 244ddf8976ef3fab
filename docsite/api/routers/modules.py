from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from docsite.errors import DocsiteError
from docsite.models.api import (
    AnalysisOut,
    DependencyErrorOut,
    DependencyOut,
    DocNodesOut,
    NavEntry,
    NavIndexOut,
    SymbolIndexOut,
    SymbolItem,
)
from docsite.services.analysis import get_analysis
from docsite.services.classifier import dependency_to_url_and_display
from docsite.services.context import AppContext
from docsite.services.views import get_doc_nodes, get_nav_index, get_symbol_index

from ..deps import get_context, http_error

router = APIRouter(prefix="/v2/modules", tags=["modules"])


def _path(path: str) -> str:
    return path if path.startswith("/") else f"/{path}"


@router.get("/{module}")
async def get_module(module: str, ctx: AppContext = Depends(get_context)):
    module_item, _, _ = await ctx.modules.lookup(module)
    if not module_item:
        raise HTTPException(status_code=404, detail=f'The module "{module}" cannot be found.')
    return module_item


@router.get("/{module}/{version}")
async def get_module_version(module: str, version: str, ctx: AppContext = Depends(get_context)):
    module_item, version_item, _ = await ctx.modules.lookup(module, version)
    if not module_item:
        raise HTTPException(status_code=404, detail=f'The module "{module}" cannot be found.')
    if not version_item:
        raise HTTPException(status_code=404, detail=f'The version "{version}" of "{module}" cannot be found.')
    return version_item


@router.get("/{module}/{version}/doc", response_model=DocNodesOut)
async def get_doc(
    module: str,
    version: str,
    path: str = Query("/mod.ts"),
    symbol: Optional[str] = Query(None, description="Dotted symbol name, e.g. Deno.errors"),
    ctx: AppContext = Depends(get_context),
):
    path = _path(path)
    try:
        nodes = await get_doc_nodes(ctx, module, version, path, symbol)
    except DocsiteError as exc:
        raise http_error(exc)
    return DocNodesOut(module=module, version=version, path=path, nodes=nodes)


@router.get("/{module}/{version}/symbols", response_model=SymbolIndexOut)
async def get_symbols(
    module: str,
    version: str,
    path: str = Query("/mod.ts"),
    ctx: AppContext = Depends(get_context),
):
    try:
        items = await get_symbol_index(ctx, module, version, _path(path))
    except DocsiteError as exc:
        raise http_error(exc)
    return SymbolIndexOut(module=module, version=version, items=[SymbolItem(**item) for item in items])


@router.get("/{module}/{version}/nav", response_model=NavIndexOut)
async def get_nav(
    module: str,
    version: str,
    path: str = Query("/"),
    ctx: AppContext = Depends(get_context),
):
    path = _path(path)
    try:
        nav = await get_nav_index(ctx, module, version, path)
    except DocsiteError as exc:
        raise http_error(exc)
    return NavIndexOut(module=module, version=version, path=path, entries=[NavEntry(**e) for e in nav])


@router.get("/{module}/{version}/deps", response_model=AnalysisOut)
async def get_deps(
    module: str,
    version: str,
    force: bool = Query(False),
    ctx: AppContext = Depends(get_context),
):
    """Dependencies of a module version; analyzed on the first request."""
    _, version_item, _ = await ctx.modules.lookup(module, version)
    if not version_item:
        raise HTTPException(status_code=404, detail=f'The version "{version}" of "{module}" cannot be found.')
    try:
        analysis = await get_analysis(ctx, module, version, force)
    except DocsiteError as exc:
        raise http_error(exc)
    deps = []
    for dep in analysis.deps:
        url, display = dependency_to_url_and_display(dep)
        deps.append(DependencyOut(**dep.to_dict(), url=url, display=display))
    errors = [DependencyErrorOut(specifier=e.specifier, error=e.error) for e in analysis.errors]
    return AnalysisOut(module=module, version=version, deps=deps, errors=errors)
