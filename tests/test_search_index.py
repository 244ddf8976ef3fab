import asyncio
import json

import httpx

from docsite.db.keys import Key
from docsite.db.store import Entity, Mutation, commit_mutations
from docsite.services.docs.codec import encode_mutations
from docsite.services.docs.query import entry_key
from docsite.services.search_index import (
    SearchIndexClient,
    Source,
    SymbolRequests,
    get_source,
    load_doc_nodes,
    module_to_request,
)

NODES = [
    {"kind": "moduleDoc", "name": "", "jsDoc": {"doc": "Module."}},
    {"kind": "function", "name": "f", "location": {"line": 1}, "jsDoc": {"tags": [{"kind": "tags", "tags": ["unstable"]}]}},
    {"kind": "function", "name": "old", "jsDoc": {"tags": [{"kind": "deprecated"}]}},
    {"kind": "import", "name": "dep"},
    {
        "kind": "namespace",
        "name": "ns",
        "namespaceDef": {
            "elements": [
                {"kind": "class", "name": "C"},
                {"kind": "moduleDoc", "name": ""},
                {"kind": "namespace", "name": "inner", "namespaceDef": {"elements": [{"kind": "variable", "name": "v"}]}},
            ]
        },
    },
]


def test_symbol_requests_flatten_namespaces():
    requests = []
    SymbolRequests("doc_nodes").append_doc_nodes(
        requests, Source.THIRD_PARTY_DEFAULT, "mod/oak", NODES, 12.5, "v1.0.0", "/mod.ts"
    )
    bodies = [r["body"] for r in requests]
    assert [b["objectID"] for b in bodies] == [
        "mod/oak:/mod.ts::0",
        "mod/oak:/mod.ts:f:1",
        "mod/oak:/mod.ts:ns.C:2",
        "mod/oak:/mod.ts:ns.inner.v:3",
    ]
    assert all(r["action"] == "updateObject" and r["indexName"] == "doc_nodes" for r in requests)
    f = bodies[1]
    assert f["source"] == 400
    assert f["tags"] == ["unstable"]
    assert f["popularity_score"] == 12.5
    assert f["location"] == {"line": 1}


def test_source_ranking():
    third_party = {"name": "oak"}
    official = {"upload_options": {"repository": "denoland/deno_std"}}
    assert get_source({"name": "std"}, {}, "/mod.ts", ["/mod.ts"]) == Source.STANDARD_LIBRARY_DEFAULT
    assert get_source({"name": "std"}, {}, "/fs/mod.ts", ["/mod.ts"]) == Source.STANDARD_LIBRARY_OTHER
    assert get_source({"name": "x"}, official, "/mod.ts", ["/mod.ts"]) == Source.DENO_OFFICIAL_DEFAULT
    assert get_source({"name": "x"}, official, "/a.ts", []) == Source.DENO_OFFICIAL_OTHER
    assert get_source(third_party, {}, "/mod.ts", ["/mod.ts"]) == Source.THIRD_PARTY_DEFAULT
    assert get_source(third_party, {}, "/a.ts", ["/mod.ts"]) == Source.THIRD_PARTY_OTHER


def test_module_request():
    module = {
        "name": "oak",
        "description": "A middleware framework",
        "popularity_score": 3.5,
        "tags": [{"kind": "popularity", "value": "top_1_percent"}],
    }
    request = module_to_request(module)
    assert request["indexName"] == "modules"
    assert request["body"] == {
        "objectID": "oak",
        "name": "oak",
        "description": "A middleware framework",
        "third_party": True,
        "source": 400,
        "popularity_score": 3.5,
        "popularity_tag": "top_1_percent",
    }


def _recording_client(status=200):
    sent = []

    def handler(request):
        sent.append((request.method, str(request.url), dict(request.headers), json.loads(request.content or b"{}")))
        return httpx.Response(status, json={"taskID": 1})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client, sent


def test_batch_posts_to_the_multi_index_endpoint():
    client, sent = _recording_client()
    search = SearchIndexClient("APP", "KEY", client=client)
    result = asyncio.run(search.batch([module_to_request({"name": "oak"})]))
    assert result == {"taskID": 1}
    method, url, headers, body = sent[0]
    assert (method, url) == ("POST", "https://APP.algolia.net/1/indexes/*/batch")
    assert headers["x-algolia-application-id"] == "APP"
    assert headers["x-algolia-api-key"] == "KEY"
    assert body["requests"][0]["body"]["objectID"] == "oak"


def test_batch_failures_are_logged_not_raised(caplog):
    client, _ = _recording_client(status=500)
    search = SearchIndexClient("APP", "KEY", host="https://search.example.com", client=client)
    assert asyncio.run(search.batch([module_to_request({"name": "oak"})])) is None
    assert any("batch failed" in r.getMessage() for r in caplog.records)


def test_disabled_client_sends_nothing():
    client, sent = _recording_client()
    search = SearchIndexClient(None, None, client=client)
    assert not search.enabled
    assert asyncio.run(search.batch([module_to_request({"name": "oak"})])) is None
    assert asyncio.run(search.clear_doc_nodes("mod/oak")) is None
    assert sent == []


def test_load_doc_nodes_for_a_module_version(store, make_ctx):
    client, sent = _recording_client()
    ctx = make_ctx(search=SearchIndexClient("APP", "KEY", host="https://search.example.com", client=client))
    vkey = Key.of(("module", "oak"), ("module_version", "v1.0.0"))
    records = [
        Entity(vkey.child("module_entry", "/"), {"path": "/", "type": "dir", "default": "/mod.ts"}),
        Entity(vkey.child("module_entry", "/mod.ts"), {"path": "/mod.ts", "type": "file", "docable": True}),
        Entity(vkey.child("module_entry", "/util.ts"), {"path": "/util.ts", "type": "file", "docable": True}),
        Entity(vkey.child("module_entry", "/_private.ts"), {"path": "/_private.ts", "type": "file", "docable": True}),
    ]
    mutations = [Mutation(upsert=e) for e in records]
    mutations += encode_mutations(NODES[:2], entry_key("oak", "v1.0.0", "/mod.ts"))
    mutations += encode_mutations([], entry_key("oak", "v1.0.0", "/util.ts"))
    mutations += encode_mutations(NODES[1:2], entry_key("oak", "v1.0.0", "/_private.ts"))

    async def run():
        await commit_mutations(store, mutations)
        requests = []
        await load_doc_nodes(ctx, requests, {"name": "oak", "popularity_score": 1}, {"version": "v1.0.0"})
        return requests

    requests = asyncio.run(run())
    assert [r["body"]["objectID"] for r in requests] == ["mod/oak:/mod.ts::0", "mod/oak:/mod.ts:f:1"]
    assert {r["body"]["source"] for r in requests} == {int(Source.THIRD_PARTY_DEFAULT)}
    method, url, _, body = sent[0]
    assert url == "https://search.example.com/1/indexes/doc_nodes/deleteBy"
    assert body == {"filters": "sourceId:mod/oak"}
