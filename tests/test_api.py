import asyncio

import pytest
from fastapi.testclient import TestClient

from docsite import config
from docsite.main import create_app
from docsite.services.tasks import LoadModuleTask


@pytest.fixture
def loaded_ctx(make_ctx):
    """A context over a store that already holds oak@v1.0.0."""
    seed = make_ctx()

    async def load():
        seed.scheduler.enqueue(LoadModuleTask("oak"))
        await seed.scheduler.wait_idle()

    asyncio.run(load())
    return make_ctx()


def test_ping(make_ctx):
    with TestClient(create_app(make_ctx())) as client:
        assert client.get("/ping").json() == {"ok": True}


def test_app_builds_its_context_from_the_environment(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setattr(config, "_settings", None)
    app = create_app()
    with TestClient(app) as client:
        assert client.get("/tasks").json()["state"] == "idle"
        assert app.state.ctx.settings.store_backend == "memory"


def test_module_and_version_lookups(loaded_ctx):
    with TestClient(create_app(loaded_ctx)) as client:
        r = client.get("/v2/modules/oak")
        assert r.status_code == 200
        assert r.json()["latest_version"] == "v1.0.0"
        r = client.get("/v2/modules/oak/v1.0.0")
        assert r.status_code == 200
        assert r.json()["upload_options"]["repository"] == "oakserver/oak"
        assert client.get("/v2/modules/nope").status_code == 404
        assert client.get("/v2/modules/oak/v9.9.9").status_code == 404


def test_doc_endpoint(loaded_ctx):
    with TestClient(create_app(loaded_ctx)) as client:
        r = client.get("/v2/modules/oak/v1.0.0/doc", params={"path": "/mod.ts"})
        assert r.status_code == 200
        body = r.json()
        assert body["path"] == "/mod.ts"
        assert [n["name"] for n in body["nodes"]] == ["", "serve"]

        r = client.get("/v2/modules/oak/v1.0.0/doc", params={"path": "mod.ts", "symbol": "serve"})
        assert [n["kind"] for n in r.json()["nodes"]] == ["function"]

        assert client.get("/v2/modules/oak/v1.0.0/doc", params={"path": "/README.md"}).status_code == 400
        r = client.get("/v2/modules/oak/v1.0.0/doc", params={"path": "/nope.ts"})
        assert r.status_code == 404
        assert "cannot be found" in r.json()["detail"]


def test_symbol_and_nav_endpoints(loaded_ctx):
    with TestClient(create_app(loaded_ctx)) as client:
        r = client.get("/v2/modules/oak/v1.0.0/symbols", params={"path": "/mod.ts"})
        assert r.status_code == 200
        items = r.json()["items"]
        assert [(i["name"], i["kind"]) for i in items] == [("", "moduleDoc"), ("serve", "function")]
        assert items[1]["doc"] == "Serve requests."
        assert items[1]["unstable"] is False

        r = client.get("/v2/modules/oak/v1.0.0/nav")
        assert r.status_code == 200
        entries = r.json()["entries"]
        assert [(e["path"], e["kind"]) for e in entries] == [
            ("/http", "dir"),
            ("/mod.ts", "module"),
            ("/deps.ts", "module"),
        ]
        assert entries[1]["default"] == "/mod.ts"
        assert client.get("/v2/modules/oak/v1.0.0/nav", params={"path": "/mod.ts"}).status_code == 404


def test_deps_endpoint(loaded_ctx):
    with TestClient(create_app(loaded_ctx)) as client:
        r = client.get("/v2/modules/oak/v1.0.0/deps")
        assert r.status_code == 200
        body = r.json()
        assert body["errors"] == []
        dep = body["deps"][0]
        assert (dep["src"], dep["pkg"], dep["ver"]) == ("std", "std", "0.150.0")
        assert dep["url"] == "https://deno.land/std@0.150.0"
        assert dep["display"] == "std@0.150.0"
        assert len(dep["dependents"]) == 2
        assert client.get("/v2/modules/oak/v9.9.9/deps").status_code == 404


def test_completion_endpoints(loaded_ctx):
    with TestClient(create_app(loaded_ctx)) as client:
        r = client.get("/completions/items/oak/__latest__")
        assert r.status_code == 200
        assert r.json() == {
            "items": ["http/", "mod.ts", "deps.ts", "mod_test.ts"],
            "is_incomplete": True,
            "preselect": "mod.ts",
        }
        r = client.get("/completions/items/oak/v1.0.0/http")
        assert r.json()["items"] == ["http/server.ts"]
        assert client.get("/completions/items/nope/__latest__").status_code == 404

        r = client.get("/completions/resolve/oak/v1.0.0/mod.ts")
        assert r.json() == {"kind": "markdown", "value": "A middleware framework."}
        assert client.get("/completions/resolve/oak/v1.0.0/nope.ts").status_code == 404


def test_task_endpoints(make_ctx):
    ctx = make_ctx()
    with TestClient(create_app(ctx)) as client:
        r = client.post("/tasks/load", json={"module": "oak"})
        assert r.status_code == 202
        assert r.json() == {"id": 1, "kind": "load"}
        r = client.get("/tasks")
        assert r.status_code == 200
        assert set(r.json()) == {"state", "pending", "processed", "failed"}
    # shutdown drains the queue
    assert ctx.scheduler.state == "idle"
    assert ctx.scheduler.failed == 0
    assert ctx.scheduler.processed == 2

    with TestClient(create_app(ctx)) as client:
        r = client.post("/tasks/analysis", json={"module": "oak", "version": "v1.0.0", "force": True})
        assert r.status_code == 202
        assert r.json()["kind"] == "analysis"
        r = client.post("/tasks/sync")
        assert r.status_code == 202
        # the registry has nothing newer
        assert r.json() == {"queued": []}
    assert ctx.scheduler.failed == 0


def test_load_request_validation(make_ctx):
    with TestClient(create_app(make_ctx())) as client:
        assert client.post("/tasks/load", json={}).status_code == 422
