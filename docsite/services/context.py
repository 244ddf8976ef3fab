"""Collaborator handles shared by routers and tasks.

Everything is built once when the application starts and passed explicitly;
tests build their own context with in-memory stores and fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from docsite.config import Settings
from docsite.db.store import EntityStore, MemoryEntityStore

from .cache import ModuleCache
from .docs.generate import DocExtractor, RemoteDocExtractor
from .fetch_cache import FetchCache
from .graph import GraphBuilder, ModuleGraphBuilder
from .registry import RegistryClient
from .search_index import SearchIndexClient
from .tasks import TaskScheduler, run_task

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    store: EntityStore
    fetch_cache: FetchCache
    modules: ModuleCache
    registry: RegistryClient
    extractor: DocExtractor
    graph_builder: GraphBuilder
    search: SearchIndexClient
    scheduler: Optional[TaskScheduler] = None
    # path completions by "module@version"
    completions: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self):
        if self.scheduler is None:
            self.scheduler = TaskScheduler(self.dispatch)

    async def dispatch(self, task_id: int, task) -> None:
        await run_task(self, task_id, task)

    async def aclose(self) -> None:
        for handle in (self.fetch_cache, self.registry, self.extractor, self.search):
            close = getattr(handle, "aclose", None)
            if close is not None:
                await close()
        await self.store.close()


def create_store(settings: Settings) -> EntityStore:
    if settings.store_backend == "memory":
        logger.warning("Using the in-memory entity store; nothing will be persisted.")
        return MemoryEntityStore()
    if settings.store_backend == "neo4j":
        from docsite.db.neo4j_connector import Neo4jEntityStore

        return Neo4jEntityStore.from_settings(settings)
    raise RuntimeError(f"Unknown STORE_BACKEND {settings.store_backend!r}; expected 'neo4j' or 'memory'.")


def build_context(settings: Settings, *, store: Optional[EntityStore] = None, **overrides: Any) -> AppContext:
    """Build a context from settings; any collaborator can be overridden by keyword."""
    store = store if store is not None else create_store(settings)
    parts: Dict[str, Any] = {
        "fetch_cache": FetchCache(max_size=settings.max_cache_size, timeout=settings.http_timeout),
        "modules": ModuleCache(store, max_modules=settings.cached_module_count),
        "registry": RegistryClient.from_settings(settings),
        "extractor": RemoteDocExtractor(settings.doc_extractor_url, timeout=settings.http_timeout),
        "graph_builder": ModuleGraphBuilder(),
        "search": SearchIndexClient.from_settings(settings),
    }
    parts.update(overrides)
    return AppContext(settings=settings, store=store, **parts)
