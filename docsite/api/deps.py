from fastapi import HTTPException, Request

from docsite.errors import BadRequest, DocsiteError, NotFound
from docsite.services.context import AppContext


def get_context(request: Request) -> AppContext:
    return request.app.state.ctx


def http_error(exc: DocsiteError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, BadRequest):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
