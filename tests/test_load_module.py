import asyncio

from docsite.config import Settings
from docsite.db.keys import Key
from docsite.db.store import Entity, Mutation, commit_mutations
from docsite.errors import FaultKind
from docsite.services.context import build_context
from docsite.services.docs.query import entry_key, query_doc_nodes
from docsite.services.search_index import SearchIndexClient
from docsite.services.tasks import LoadModuleTask, _entry_records, completions_key

from conftest import OAK, oak_listing

VKEY = Key.of(("module", "oak"), ("module_version", "v1.0.0"))


def _load(ctx, module="oak", version=None):
    async def run():
        ctx.scheduler.enqueue(LoadModuleTask(module, version))
        await ctx.scheduler.wait_idle()

    asyncio.run(run())


def test_entry_records_from_a_directory_listing():
    entries, to_doc = _entry_records(oak_listing())
    by_path = {e["path"]: e for e in entries}
    assert by_path["/"]["dirs"] == ["/http"]
    assert by_path["/"]["index"] == ["/mod.ts", "/deps.ts"]
    assert by_path["/"]["default"] == "/mod.ts"
    assert by_path["/mod.ts"]["docable"] is True
    assert "docable" not in by_path["/README.md"]
    assert by_path["/_internal"]["index"] == []
    assert to_doc == ["/mod.ts", "/deps.ts", "/http/server.ts"]


def test_load_documents_and_analyzes_a_module(store, make_ctx, extractor):
    ctx = make_ctx()
    _load(ctx)

    async def read():
        module = (await store.lookup(Key.of(("module", "oak"))))[0].properties
        version = (await store.lookup(VKEY))[0].properties
        docs = {
            path: await query_doc_nodes(store, "oak", "v1.0.0", path)
            for path in ("/mod.ts", "/deps.ts", "/http/server.ts", "/mod_test.ts")
        }
        deps = await store.run_query(store.query("module_dependency").has_ancestor(VKEY))
        return module, version, docs, deps

    module, version, docs, deps = asyncio.run(read())
    assert module["versions"] == ["v1.0.0", "v0.9.0"]
    assert module["latest_version"] == "v1.0.0"
    assert module["star_count"] == 42
    assert module["synced_at"]
    assert version["upload_options"]["repository"] == "oakserver/oak"
    assert version["analysis_version"] == "1"
    assert [n["name"] for n in docs["/mod.ts"]] == ["", "serve"]
    assert docs["/deps.ts"][0]["name"] == "assert"
    assert docs["/mod_test.ts"] is None
    assert [d.key.identifier for d in deps] == ["std:std@0.150.0"]
    assert sorted(url for url, _ in extractor.calls) == sorted(
        [f"{OAK}/mod.ts", f"{OAK}/deps.ts", f"{OAK}/http/server.ts"]
    )
    # the load task queues a search index upload
    assert ctx.scheduler.processed == 2
    assert ctx.scheduler.failed == 0


def test_failed_paths_are_stored_as_empty_documentation(store, make_ctx, extractor):
    del extractor.docs[f"{OAK}/deps.ts"]
    ctx = make_ctx()
    _load(ctx, version="v1.0.0")
    docs = asyncio.run(query_doc_nodes(store, "oak", "v1.0.0", "/deps.ts"))
    assert docs == []
    assert ctx.scheduler.failed == 0


def test_an_unexpected_extractor_error_only_affects_its_path(store, make_ctx, extractor):
    extractor.docs[f"{OAK}/deps.ts"] = ["not a doc node"]
    ctx = make_ctx()
    _load(ctx, version="v1.0.0")

    async def read():
        return (
            await query_doc_nodes(store, "oak", "v1.0.0", "/deps.ts"),
            await query_doc_nodes(store, "oak", "v1.0.0", "/mod.ts"),
            (await store.lookup(VKEY))[0].properties,
        )

    deps, mod, version = asyncio.run(read())
    assert deps == []
    assert [n["name"] for n in mod] == ["", "serve"]
    assert version["analysis_version"] == "1"
    assert ctx.scheduler.failed == 0
    # the search upload still follows
    assert ctx.scheduler.processed == 2


def test_large_modules_skip_documentation(store, loader, registry, extractor):
    ctx = build_context(
        Settings(store_backend="memory", max_docable_modules=2),
        store=store,
        fetch_cache=loader,
        registry=registry,
        extractor=extractor,
        search=SearchIndexClient(None, None),
    )
    _load(ctx)
    assert extractor.calls == []
    assert asyncio.run(query_doc_nodes(store, "oak", "v1.0.0", "/mod.ts")) is None
    # analysis still runs, no search upload is queued
    assert asyncio.run(store.lookup(VKEY))[0].properties["analysis_version"] == "1"
    assert ctx.scheduler.processed == 1


def test_reload_clears_generated_records(store, make_ctx):
    ctx = make_ctx()
    _load(ctx)
    stale = [
        Mutation(upsert=Entity(VKEY.child("nav_index", "/"), {"nav": []})),
        Mutation(upsert=Entity(completions_key("oak", "v1.0.0"), {"items": []})),
        Mutation(upsert=Entity(entry_key("oak", "v1.0.0", "/gone.ts").child("doc_node", 1), {"kind": "null"})),
    ]
    asyncio.run(commit_mutations(store, stale))
    ctx.completions["oak@v1.0.0"] = {"items": []}
    _load(ctx)

    async def read():
        return (
            await store.lookup(VKEY.child("nav_index", "/")),
            await store.lookup(completions_key("oak", "v1.0.0")),
            await query_doc_nodes(store, "oak", "v1.0.0", "/gone.ts"),
        )

    nav, completions, gone = asyncio.run(read())
    assert nav == [] and completions == [] and gone is None
    assert "oak@v1.0.0" not in ctx.completions


def test_unknown_module_is_recorded_as_not_found(make_ctx):
    ctx = make_ctx()
    _load(ctx, module="nope")
    assert ctx.scheduler.faults == {FaultKind.NOT_FOUND: 1}
