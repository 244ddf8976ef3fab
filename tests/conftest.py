import copy

import pytest

from docsite.config import Settings
from docsite.db.store import MemoryEntityStore
from docsite.services.context import build_context
from docsite.services.docs.generate import DocExtractionError
from docsite.services.fetch_cache import LoadResponse
from docsite.services.search_index import SearchIndexClient


class FakeLoader:
    """Stands in for the fetch cache: serves sources from a dict."""

    def __init__(self, sources=None, redirects=None):
        self.sources = dict(sources or {})
        self.redirects = dict(redirects or {})
        self.requested = []

    async def load(self, specifier):
        self.requested.append(specifier)
        target = self.redirects.get(specifier, specifier)
        if target not in self.sources:
            return None
        return LoadResponse(specifier=target, content=self.sources[target])


class FakeRegistry:
    def __init__(self, modules=None, versions=None, metas=None):
        self.modules = modules or {}
        self.versions = versions or {}
        self.metas = metas or {}

    async def get_module_data(self, module):
        return self.modules.get(module)

    async def get_module_meta_versions(self, module):
        return self.versions.get(module)

    async def get_version_meta(self, module, version):
        return self.metas.get((module, version))


class FakeExtractor:
    def __init__(self, docs=None):
        self.docs = dict(docs or {})
        self.calls = []

    async def extract(self, url, *, load, import_map=None):
        self.calls.append((url, import_map))
        if url not in self.docs:
            raise DocExtractionError(f'Unable to load specifier: "{url}"')
        return copy.deepcopy(self.docs[url])


def oak_listing():
    return [
        {"path": "", "type": "dir", "size": 300},
        {"path": "/mod.ts", "type": "file", "size": 100},
        {"path": "/deps.ts", "type": "file", "size": 100},
        {"path": "/README.md", "type": "file", "size": 50},
        {"path": "/mod_test.ts", "type": "file", "size": 50},
        {"path": "/http", "type": "dir", "size": 150},
        {"path": "/http/server.ts", "type": "file", "size": 150},
        {"path": "/_internal", "type": "dir", "size": 10},
        {"path": "/_internal/util.ts", "type": "file", "size": 10},
    ]


OAK = "https://deno.land/x/oak@v1.0.0"

OAK_SOURCES = {
    f"{OAK}/mod.ts": 'export * from "./deps.ts";\nexport { serve } from "./http/server.ts";\n',
    f"{OAK}/deps.ts": 'export { assert } from "https://deno.land/std@0.150.0/testing/asserts.ts";\n',
    f"{OAK}/http/server.ts": (
        'import { assert } from "../deps.ts";\n'
        'import * as path from "https://deno.land/std@0.150.0/path/mod.ts";\n'
        'export function serve() {}\n'
    ),
    "https://deno.land/std@0.150.0/testing/asserts.ts": "export function assert() {}\n",
    "https://deno.land/std@0.150.0/path/mod.ts": "export const sep = '/';\n",
}

OAK_DOCS = {
    f"{OAK}/mod.ts": [
        {"kind": "moduleDoc", "name": "", "location": {"line": 1}, "jsDoc": {"doc": "A middleware framework."}},
        {
            "kind": "function",
            "name": "serve",
            "location": {"line": 2},
            "jsDoc": {"doc": "Serve requests."},
            "functionDef": {"params": [], "isAsync": False},
        },
    ],
    f"{OAK}/deps.ts": [
        {"kind": "function", "name": "assert", "location": {"line": 1}, "functionDef": {"params": []}},
    ],
    f"{OAK}/http/server.ts": [
        {"kind": "function", "name": "serve", "location": {"line": 3}, "functionDef": {"params": []}},
    ],
}


@pytest.fixture
def settings():
    return Settings(store_backend="memory")


@pytest.fixture
def store():
    return MemoryEntityStore()


@pytest.fixture
def loader():
    return FakeLoader(OAK_SOURCES)


@pytest.fixture
def registry():
    return FakeRegistry(
        modules={"oak": {"name": "oak", "description": "A middleware framework", "star_count": 42}},
        versions={"oak": {"latest": "v1.0.0", "versions": ["v1.0.0", "v0.9.0", "v1.0.0"]}},
        metas={
            ("oak", "v1.0.0"): {
                "uploaded_at": "2022-01-01T00:00:00Z",
                "upload_options": {"type": "github", "repository": "oakserver/oak", "ref": "v1.0.0"},
                "directory_listing": oak_listing(),
            }
        },
    )


@pytest.fixture
def extractor():
    return FakeExtractor(OAK_DOCS)


@pytest.fixture
def make_ctx(settings, store, loader, registry, extractor):
    def _make(**overrides):
        parts = dict(
            fetch_cache=loader,
            registry=registry,
            extractor=extractor,
            search=SearchIndexClient(None, None),
        )
        parts.update(overrides)
        return build_context(settings, store=store, **parts)

    return _make
