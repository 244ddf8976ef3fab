"""Documentation generation through an extraction collaborator."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import httpx

from docsite.errors import BadRequest, NotFound

from .codec import DocNode, merge

logger = logging.getLogger(__name__)

Loader = Callable[[str], Awaitable[Any]]


class DocExtractionError(Exception):
    pass


class DocExtractor(Protocol):
    async def extract(self, url: str, *, load: Loader, import_map: Optional[str] = None) -> List[DocNode]:
        ...


class RemoteDocExtractor:
    """Posts documentation requests to an extraction service.

    The service receives ``{"url": ..., "importMap": ...}`` and answers with a
    JSON array of doc nodes. The root source is loaded locally first so a
    missing module is reported without a round trip.
    """

    def __init__(self, url: Optional[str], *, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.url = url
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def extract(self, url: str, *, load: Loader, import_map: Optional[str] = None) -> List[DocNode]:
        if not self.url:
            raise DocExtractionError("No documentation extractor is configured (DOC_EXTRACTOR_URL).")
        if await load(url) is None:
            raise DocExtractionError(f'Unable to load specifier: "{url}"')
        payload: Dict[str, Any] = {"url": url}
        if import_map:
            payload["importMap"] = import_map
        try:
            resp = await self._get_client().post(self.url, json=payload)
        except httpx.HTTPError as exc:
            raise DocExtractionError(f"Extractor request failed: {exc!r}") from exc
        if resp.status_code != 200:
            raise DocExtractionError(resp.text or f"Extractor returned HTTP {resp.status_code}")
        nodes = resp.json()
        if not isinstance(nodes, list):
            raise DocExtractionError("Extractor returned an unexpected payload.")
        return nodes

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def doc_url(module: str, version: str, path: str) -> str:
    return f"https://deno.land/x/{module}@{version}/{path.lstrip('/')}"


async def generate_doc_nodes(
    extractor: DocExtractor,
    load: Loader,
    module: str,
    version: str,
    path: str,
    import_map: Optional[str] = None,
) -> List[DocNode]:
    """Extract and merge the doc nodes of one module path.

    Raises NotFound when the source cannot be loaded and BadRequest for any
    other extraction failure.
    """
    url = doc_url(module, version, path)
    try:
        nodes = await extractor.extract(url, load=load, import_map=import_map)
    except (DocExtractionError, ValueError) as exc:
        if "Unable to load specifier" in str(exc):
            raise NotFound(f'The module "{url}" cannot be found') from exc
        raise BadRequest(f"Bad request: {exc}") from exc
    return merge(nodes)
