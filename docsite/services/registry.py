"""Registry metadata access and directory listing helpers.

- Module data (description, star count): ``{registry_api_url}{module}``
- Version list: ``{registry_storage_url}{module}/meta/versions.json``
- Version metadata with directory listing:
  ``{registry_storage_url}{module}/versions/{version}/meta/meta.json``

Missing resources are reported as ``None``; transport errors propagate.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from docsite.consts import GENERATED_KINDS, MODULE_KIND, MODULE_VERSION_KIND
from docsite.db.keys import Key
from docsite.db.store import EntityStore, Mutation

logger = logging.getLogger(__name__)

RE_IGNORED_MODULE = re.compile(r"(/[_.].|(test|.+_test)\.(js|jsx|mjs|cjs|ts|tsx|mts|cts)$)", re.I)
RE_MODULE_EXT = re.compile(r"\.(?:js|jsx|mjs|cjs|ts|tsx|mts|cts)$", re.I)
RE_PRIVATE_PATH = re.compile(r"/([_.][^/]+|testdata)")
RE_DOCABLE = re.compile(r"\.(?:d\.)?(?:js|jsx|mjs|cjs|ts|tsx|mts|cts)$", re.I)

EXT = (".ts", ".tsx", ".mts", ".cts", ".js", ".jsx", ".mjs", ".cjs")
INDEX_MODULES = tuple(f"{idx}{ext}" for idx in ("mod", "lib", "main", "index") for ext in EXT)

Listing = Dict[str, Any]


def is_docable(path: str) -> bool:
    return bool(RE_DOCABLE.search(path))


def should_document(path: str) -> bool:
    """Docable paths that are neither tests nor private."""
    return is_docable(path) and not RE_IGNORED_MODULE.search(path) and not RE_PRIVATE_PATH.search(path)


def _relative(path: str, p: str) -> str:
    return p[len(path):] if path != "/" else p


def get_index_module(paths: Optional[Sequence[str]]) -> Optional[str]:
    """The path that looks like the index module of a directory, if any."""
    if not paths:
        return None
    for index in INDEX_MODULES:
        for p in paths:
            if p.lower().endswith(f"/{index}"):
                return p
    return None


def get_indexed_modules(path: str, listing: Sequence[Listing]) -> Tuple[List[str], Optional[str]]:
    """Modules directly inside ``path`` and the index module among them."""
    modules = []
    for item in listing:
        p = item["path"]
        rel = _relative(path, p)
        if (
            p.startswith(path)
            and item.get("type") == "file"
            and rel.rfind("/") == 0
            and RE_MODULE_EXT.search(p)
            and not RE_IGNORED_MODULE.search(rel)
        ):
            modules.append(p)
    return modules, get_index_module(modules)


def get_subdirs(path: str, listing: Sequence[Listing]) -> List[str]:
    dirs = []
    for item in listing:
        p = item["path"]
        rel = _relative(path, p)
        if (
            p.startswith(path)
            and p != path
            and item.get("type") == "dir"
            and rel.rfind("/") == 0
            and not RE_PRIVATE_PATH.search(rel)
        ):
            dirs.append(p)
    return dirs


def is_indexed_dir(item: Listing) -> bool:
    return item.get("type") == "dir" and not RE_PRIVATE_PATH.search(item["path"])


def dedupe(values: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(values))


async def clear_append(store: EntityStore, mutations: List[Mutation], kinds: Sequence[str], ancestor: Key) -> None:
    """Append deletes for every record of ``kinds`` below ``ancestor``."""
    for kind in kinds:
        query = store.query(kind).has_ancestor(ancestor).keys_only()
        async for entity in store.stream_query(query):
            mutations.append(Mutation(delete=entity.key))


async def clear_module(store: EntityStore, mutations: List[Mutation], module: str, version: str) -> None:
    """Append deletes for the generated records of a module version."""
    ancestor = Key.of((MODULE_KIND, module), (MODULE_VERSION_KIND, version))
    await clear_append(store, mutations, GENERATED_KINDS, ancestor)


class RegistryClient:
    def __init__(
        self,
        *,
        api_url: str = "https://api.deno.land/modules/",
        storage_url: str = "https://cdn.deno.land/",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_url = api_url
        self.storage_url = storage_url
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings, client: Optional[httpx.AsyncClient] = None) -> "RegistryClient":
        return cls(
            api_url=settings.registry_api_url,
            storage_url=settings.registry_storage_url,
            timeout=settings.http_timeout,
            client=client,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def _get_json(self, url: str) -> Optional[Any]:
        resp = await self._get_client().get(url)
        if resp.status_code != 200:
            logger.debug("GET %s returned %d", url, resp.status_code)
            return None
        return resp.json()

    async def get_module_data(self, module: str) -> Optional[Dict[str, Any]]:
        body = await self._get_json(f"{self.api_url}{module}")
        if body is None:
            return None
        return body.get("data", body)

    async def get_module_meta_versions(self, module: str) -> Optional[Dict[str, Any]]:
        """``{"latest": str | None, "versions": [str]}``"""
        return await self._get_json(f"{self.storage_url}{module}/meta/versions.json")

    async def get_version_meta(self, module: str, version: str) -> Optional[Dict[str, Any]]:
        return await self._get_json(f"{self.storage_url}{module}/versions/{version}/meta/meta.json")

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
