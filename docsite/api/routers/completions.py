from fastapi import APIRouter, Depends, HTTPException

from docsite.models.api import CompletionsOut
from docsite.services.context import AppContext
from docsite.services.views import get_completion_items, get_completions, get_path_doc

from ..deps import get_context

router = APIRouter(prefix="/completions", tags=["completions"])


@router.get("/items/{module}/{version}", response_model=CompletionsOut)
@router.get("/items/{module}/{version}/{path:path}", response_model=CompletionsOut)
async def completion_items(module: str, version: str, path: str = "", ctx: AppContext = Depends(get_context)):
    """Import path candidates for a partially typed path; ``__latest__`` selects the latest version."""
    completions = await get_completions(ctx, module, version)
    if completions is None:
        raise HTTPException(status_code=404, detail=f'No completions for "{module}@{version}".')
    items = get_completion_items(completions, f"/{path}")
    if items is None:
        raise HTTPException(status_code=404, detail=f'The path "/{path}" cannot be found.')
    return CompletionsOut(**items)


@router.get("/resolve/{module}/{version}/{path:path}")
async def resolve_doc(module: str, version: str, path: str, ctx: AppContext = Depends(get_context)):
    """Module doc for a completion item; a directory resolves to its default module."""
    completions = await get_completions(ctx, module, version)
    if completions is None:
        raise HTTPException(status_code=404, detail=f'No completions for "{module}@{version}".')
    path = f"/{path}"
    directory = path[: path.rfind("/") + 1]
    doc = await get_path_doc(ctx, completions, directory, path)
    if doc is None:
        raise HTTPException(status_code=404, detail=f'The path "{path}" cannot be found.')
    return {"kind": "markdown", "value": doc}
