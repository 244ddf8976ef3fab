"""Search index publishing.

Talks to an Algolia-compatible REST API: batched ``updateObject`` requests for
module and symbol records, and ``deleteBy`` to drop a module's symbols before
re-uploading them. Symbol object IDs are ``{sourceId}:{path}:{name}:{n}``
where ``n`` counts records within one path, so repeated names stay unique.
"""

from __future__ import annotations

import enum
import itertools
import logging
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Sequence

import httpx

from docsite.consts import DOC_NODE_KIND, MODULE_ENTRY_KIND

from .analysis import version_key
from .docs.codec import DocNode, decode

if TYPE_CHECKING:
    from .context import AppContext

logger = logging.getLogger(__name__)

ALLOWED_DOC_KINDS = ("class", "enum", "interface", "function", "typeAlias", "variable")

BatchRequest = Dict[str, Any]


class Source(enum.IntEnum):
    """Ranking buckets; lower sorts first."""

    LIBRARY = 100
    STANDARD_LIBRARY_DEFAULT = 200
    STANDARD_LIBRARY_OTHER = 220
    DENO_OFFICIAL_DEFAULT = 300
    THIRD_PARTY_DEFAULT = 400
    DENO_OFFICIAL_OTHER = 530
    THIRD_PARTY_OTHER = 540


def is_deprecated(node: DocNode) -> bool:
    return any(tag.get("kind") == "deprecated" for tag in ((node.get("jsDoc") or {}).get("tags") or []))


def filtered_doc_node(namespace: Optional[str], node: DocNode) -> bool:
    kind = node.get("kind")
    allowed = kind in ALLOWED_DOC_KINDS or (not namespace and kind == "moduleDoc")
    return allowed and not is_deprecated(node)


def _tags(node: DocNode) -> Optional[List[str]]:
    for tag in (node.get("jsDoc") or {}).get("tags") or []:
        if tag.get("kind") == "tags":
            return tag.get("tags")
    return None


class SymbolRequests:
    """Builds symbol index requests for one search index."""

    def __init__(self, index_name: str) -> None:
        self.index_name = index_name

    def doc_node_request(
        self,
        source: Source,
        source_id: str,
        popularity_score: float,
        version: str,
        path: Optional[str],
        namespace: Optional[str],
        node: DocNode,
        seq: int,
    ) -> BatchRequest:
        name = f"{namespace}.{node.get('name')}" if namespace else node.get("name")
        return {
            "action": "updateObject",
            "indexName": self.index_name,
            "body": {
                "objectID": f"{source_id}:{path}:{name}:{seq}",
                "name": name,
                "source": int(source),
                "sourceId": source_id,
                "popularity_score": popularity_score,
                "version": version,
                "path": path,
                "doc": (node.get("jsDoc") or {}).get("doc"),
                "tags": _tags(node),
                "kind": node.get("kind"),
                "location": node.get("location"),
            },
        }

    def append_doc_nodes(
        self,
        requests: List[BatchRequest],
        source: Source,
        source_id: str,
        nodes: Sequence[DocNode],
        popularity_score: float,
        version: str,
        path: Optional[str] = None,
        namespace: Optional[str] = None,
        seq: Optional[Iterator[int]] = None,
    ) -> None:
        """Append one request per indexable node, flattening namespaces into dotted names."""
        if seq is None:
            seq = itertools.count()
        for node in nodes:
            if filtered_doc_node(namespace, node):
                requests.append(
                    self.doc_node_request(
                        source, source_id, popularity_score, version, path, namespace, node, next(seq)
                    )
                )
            elif node.get("kind") == "namespace":
                ns = f"{namespace}.{node.get('name')}" if namespace else node.get("name")
                self.append_doc_nodes(
                    requests,
                    source,
                    source_id,
                    (node.get("namespaceDef") or {}).get("elements") or [],
                    popularity_score,
                    version,
                    path,
                    ns,
                    seq,
                )


def get_source(module: Dict[str, Any], version: Dict[str, Any], entry_path: str, default_paths: Sequence[str]) -> Source:
    is_default = entry_path in default_paths
    if module.get("name") == "std":
        return Source.STANDARD_LIBRARY_DEFAULT if is_default else Source.STANDARD_LIBRARY_OTHER
    repository = ((version.get("upload_options") or {}).get("repository") or "")
    if repository.startswith("denoland/"):
        return Source.DENO_OFFICIAL_DEFAULT if is_default else Source.DENO_OFFICIAL_OTHER
    return Source.THIRD_PARTY_DEFAULT if is_default else Source.THIRD_PARTY_OTHER


def module_to_request(module: Dict[str, Any], index_name: str = "modules") -> BatchRequest:
    popularity_tag = None
    for tag in module.get("tags") or []:
        if tag.get("kind") == "popularity":
            popularity_tag = tag.get("value")
            break
    is_std = module.get("name") == "std"
    return {
        "action": "updateObject",
        "indexName": index_name,
        "body": {
            "objectID": module.get("name"),
            "name": module.get("name"),
            "description": module.get("description"),
            "third_party": not is_std,
            "source": int(Source.STANDARD_LIBRARY_DEFAULT if is_std else Source.THIRD_PARTY_DEFAULT),
            "popularity_score": module.get("popularity_score"),
            "popularity_tag": popularity_tag,
        },
    }


class SearchIndexClient:
    def __init__(
        self,
        app_id: Optional[str],
        api_key: Optional[str],
        *,
        host: Optional[str] = None,
        module_index: str = "modules",
        symbol_index: str = "doc_nodes",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.app_id = app_id
        self.api_key = api_key
        self.base_url = (host or f"https://{app_id}.algolia.net").rstrip("/")
        self.module_index = module_index
        self.symbol_index = symbol_index
        self.symbols = SymbolRequests(symbol_index)
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings, client: Optional[httpx.AsyncClient] = None) -> "SearchIndexClient":
        return cls(
            settings.search_app_id,
            settings.search_api_key,
            host=settings.search_host,
            module_index=settings.search_module_index,
            symbol_index=settings.search_symbol_index,
            timeout=settings.http_timeout,
            client=client,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.app_id and self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Algolia-Application-Id": self.app_id or "",
            "X-Algolia-API-Key": self.api_key or "",
        }

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._get_client().post(f"{self.base_url}{path}", json=body, headers=self._headers())
        resp.raise_for_status()
        return resp.json()

    async def batch(self, requests: Sequence[BatchRequest]) -> Optional[Dict[str, Any]]:
        """Send a multi-index batch. Transport and HTTP errors are logged, not raised."""
        if not requests:
            return None
        if not self.enabled:
            logger.warning("Search index is not configured; dropping %d requests.", len(requests))
            return None
        try:
            return await self._post("/1/indexes/*/batch", {"requests": list(requests)})
        except httpx.HTTPError as exc:
            logger.error("Search index batch failed: %s", exc)
            return None

    async def delete_by(self, index_name: str, filters: str) -> Optional[Dict[str, Any]]:
        if not self.enabled:
            return None
        return await self._post(f"/1/indexes/{index_name}/deleteBy", {"filters": filters})

    async def clear_doc_nodes(self, source_id: str) -> None:
        await self.delete_by(self.symbol_index, f"sourceId:{source_id}")

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


async def load_doc_nodes(
    ctx: "AppContext",
    requests: List[BatchRequest],
    module: Dict[str, Any],
    version: Dict[str, Any],
) -> None:
    """Append symbol requests for every documented path of a module version."""
    source_id = f"mod/{module['name']}"
    logger.info("Deleting old doc nodes for %s...", source_id)
    await ctx.search.clear_doc_nodes(source_id)
    vkey = version_key(module["name"], version["version"])
    entries = await ctx.store.run_query(ctx.store.query(MODULE_ENTRY_KIND).has_ancestor(vkey))
    default_paths = [e.properties["default"] for e in entries if e.properties.get("default")]
    docable = [
        e for e in entries
        if e.properties.get("docable") and "/_" not in e.key.identifier and "/." not in e.key.identifier
    ]
    logger.info("retrieved %d docable modules.", len(docable))
    for entry in docable:
        entities = await ctx.store.run_query(ctx.store.query(DOC_NODE_KIND).has_ancestor(entry.key))
        nodes = decode(entities, entry.key)
        if not nodes:
            logger.debug("skipping %s, no nodes.", entry.key.identifier)
            continue
        ctx.search.symbols.append_doc_nodes(
            requests,
            get_source(module, version, entry.key.identifier, default_paths),
            source_id,
            nodes,
            module.get("popularity_score") or 0,
            version["version"],
            entry.key.identifier,
        )
