"""Background task processing.

Side-effecting work (store commits, search index uploads, module loads,
dependency analysis) is not done inline by request handlers. It is queued on a
``TaskScheduler``, which runs one task at a time in submission order:

- ``enqueue`` only appends and, when idle, schedules a drain step on the event
  loop, so the caller never runs the task itself
- a drain step awaits its task to completion before the next one starts
- a failing task is logged and classified, and the queue moves on

Log lines for a task are prefixed with ``[id]``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple, Union

from docsite.consts import (
    MODULE_ENTRY_KIND,
    MODULE_KIND,
    NAV_INDEX_KIND,
    PATH_COMPLETIONS_KIND,
    SYMBOL_INDEX_KIND,
)
from docsite.db.keys import Key
from docsite.db.store import Entity, Mutation, commit_mutations
from docsite.errors import DocsiteError, FaultKind, NotFound, StoreFault, assert_that, classify_fault

from .analysis import analyze, version_key
from .docs.codec import DocNode, encode_mutations
from .docs.generate import generate_doc_nodes
from .docs.query import entry_key
from .import_map import get_import_map_specifier
from .registry import (
    clear_module,
    dedupe,
    get_indexed_modules,
    get_subdirs,
    is_docable,
    is_indexed_dir,
    should_document,
)
from .search_index import load_doc_nodes, module_to_request

if TYPE_CHECKING:
    from .context import AppContext

logger = logging.getLogger(__name__)


# -- task descriptors ----------------------------------------------------------------------

@dataclass(frozen=True)
class CommitMutationsTask:
    mutations: Tuple[Mutation, ...]
    kind = "commitMutations"


@dataclass(frozen=True)
class CommitDocNodesTask:
    module: str
    version: str
    path: str
    doc_nodes: Tuple[DocNode, ...]
    kind = "commitDocNodes"


@dataclass(frozen=True)
class CommitSymbolIndexTask:
    module: str
    version: str
    path: str
    items: Tuple[Dict[str, Any], ...]
    kind = "commitSymbolIndex"


@dataclass(frozen=True)
class CommitNavTask:
    module: str
    version: str
    path: str
    nav: Tuple[Dict[str, Any], ...]
    kind = "commitNav"


@dataclass(frozen=True)
class CommitPathCompletionsTask:
    module: str
    version: str
    completions: Dict[str, Any]
    kind = "commitPathCompletions"


@dataclass(frozen=True)
class SearchIndexTask:
    module: Dict[str, Any]
    version: Dict[str, Any]
    kind = "searchIndex"


@dataclass(frozen=True)
class LoadModuleTask:
    module: str
    version: Optional[str] = None
    kind = "load"


@dataclass(frozen=True)
class AnalysisTask:
    module: str
    version: str
    force: bool = False
    kind = "analysis"


Task = Union[
    CommitMutationsTask,
    CommitDocNodesTask,
    CommitSymbolIndexTask,
    CommitNavTask,
    CommitPathCompletionsTask,
    SearchIndexTask,
    LoadModuleTask,
    AnalysisTask,
]

Dispatch = Callable[[int, Task], Awaitable[None]]


def completions_key(module: str, version: str) -> Key:
    return Key.of((MODULE_KIND, module), (PATH_COMPLETIONS_KIND, version))


# -- scheduler -----------------------------------------------------------------------------

class TaskScheduler:
    def __init__(self, dispatch: Dispatch) -> None:
        self._dispatch = dispatch
        self._queue: Deque[Tuple[int, Task]] = deque()
        self._uid = 1
        # one event per drain cycle, created on the draining loop
        self._idle: Optional[asyncio.Event] = None
        self._step_task: Optional[asyncio.Task] = None
        self.state = "idle"
        self.processed = 0
        self.failed = 0
        self.faults: Dict[FaultKind, int] = {}

    @property
    def pending(self) -> int:
        return len(self._queue)

    def enqueue(self, task: Task) -> int:
        """Queue ``task`` and return its id. Must be called from a running event loop."""
        loop = asyncio.get_running_loop()
        task_id = self._uid
        self._uid += 1
        self._queue.append((task_id, task))
        if self.state == "idle":
            self.state = "draining"
            self._idle = asyncio.Event()
            self._step_task = loop.create_task(self._step())
        return task_id

    def _schedule(self) -> None:
        loop = asyncio.get_running_loop()
        self._step_task = loop.create_task(self._step())

    async def _step(self) -> None:
        task_id, task = self._queue.popleft()
        logger.info('[%d]: Processing task "%s"...', task_id, task.kind)
        start = time.perf_counter()
        stopping = False
        try:
            await self._dispatch(task_id, task)
        except asyncio.CancelledError as exc:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                stopping = True
                raise
            # cancelled from inside the task, the step itself keeps going
            self._record_fault(task_id, task, exc)
        except Exception as exc:
            self._record_fault(task_id, task, exc)
        finally:
            self.processed += 1
            logger.info(
                '[%d]: Finished task "%s" in %.2fms.', task_id, task.kind, (time.perf_counter() - start) * 1000
            )
            if self._queue and not stopping:
                self._schedule()
            else:
                # a later enqueue starts a new drain for anything left behind
                self.state = "idle"
                self._idle.set()

    def _record_fault(self, task_id: int, task: Task, exc: BaseException) -> None:
        kind = classify_fault(exc)
        self.failed += 1
        self.faults[kind] = self.faults.get(kind, 0) + 1
        if isinstance(exc, StoreFault):
            logger.error("[%d]: Store fault in task %s: %s status=%s detail=%s", task_id, task.kind, exc, exc.status, exc.detail)
        elif kind is FaultKind.UNEXPECTED:
            logger.exception("[%d]: Unexpected error in task %s", task_id, task.kind)
        else:
            logger.error("[%d]: %s in task %s: %s", task_id, kind.value, task.kind, exc)

    async def wait_idle(self) -> None:
        if self.state == "idle" or self._idle is None:
            return
        await self._idle.wait()

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "pending": self.pending,
            "processed": self.processed,
            "failed": self.failed,
        }


# -- handlers ------------------------------------------------------------------------------

async def _commit(ctx: "AppContext", mutations: List[Mutation], label: str, task_id: int) -> int:
    return await commit_mutations(ctx.store, mutations, label=label, prefix=f"[{task_id}]: ")


async def task_commit_mutations(ctx: "AppContext", task_id: int, task: CommitMutationsTask) -> None:
    logger.info("[%d]: Committing %d mutations...", task_id, len(task.mutations))
    await _commit(ctx, list(task.mutations), "mutations", task_id)


async def task_commit_doc_nodes(ctx: "AppContext", task_id: int, task: CommitDocNodesTask) -> None:
    logger.info('[%d]: Committing doc nodes for "%s@%s%s"...', task_id, task.module, task.version, task.path)
    mutations = encode_mutations(
        list(task.doc_nodes),
        entry_key(task.module, task.version, task.path),
        max_entity_size=ctx.settings.max_entity_size,
    )
    await _commit(ctx, mutations, "doc nodes", task_id)


async def task_commit_symbol_index(ctx: "AppContext", task_id: int, task: CommitSymbolIndexTask) -> None:
    logger.info('[%d]: Committing symbol index for "%s@%s%s"...', task_id, task.module, task.version, task.path)
    key = version_key(task.module, task.version).child(SYMBOL_INDEX_KIND, task.path)
    entity = Entity(key, {"path": task.path, "items": list(task.items)})
    await _commit(ctx, [Mutation(upsert=entity)], "symbol index", task_id)


async def task_commit_nav(ctx: "AppContext", task_id: int, task: CommitNavTask) -> None:
    logger.info('[%d]: Committing nav index for "%s@%s%s"...', task_id, task.module, task.version, task.path)
    key = version_key(task.module, task.version).child(NAV_INDEX_KIND, task.path)
    entity = Entity(key, {"path": task.path, "nav": list(task.nav)})
    await _commit(ctx, [Mutation(upsert=entity)], "nav index", task_id)


async def task_commit_path_completions(ctx: "AppContext", task_id: int, task: CommitPathCompletionsTask) -> None:
    logger.info('[%d]: Committing path completions for "%s@%s"...', task_id, task.module, task.version)
    entity = Entity(completions_key(task.module, task.version), task.completions)
    await _commit(ctx, [Mutation(upsert=entity)], "path completions", task_id)


async def task_search_index(ctx: "AppContext", task_id: int, task: SearchIndexTask) -> None:
    name, version = task.version.get("name"), task.version.get("version")
    logger.info('[%d]: Uploading "%s@%s" to the search index...', task_id, name, version)
    requests = [module_to_request(task.module, ctx.search.module_index)]
    await load_doc_nodes(ctx, requests, task.module, task.version)
    await ctx.search.batch(requests)
    logger.info('[%d]: Uploaded "%s@%s" to the search index.', task_id, name, version)


async def task_analysis(ctx: "AppContext", task_id: int, task: AnalysisTask) -> None:
    await analyze(ctx, task.module, task.version, task.force, prefix=f"[{task_id}]: ")


def _entry_records(listing: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[str]]:
    """Module entry records for a directory listing, plus the paths to document."""
    listing = [dict(item, path=item.get("path") or "/") for item in listing]
    entries = []
    to_doc = []
    for entry in listing:
        path = entry["path"]
        if entry.get("type") == "dir":
            entry["dirs"] = get_subdirs(path, listing)
        elif is_docable(path):
            entry["docable"] = True
            if should_document(path):
                to_doc.append(path)
        if is_indexed_dir(entry):
            entry["index"], default = get_indexed_modules(path, listing)
            if default:
                entry["default"] = default
        else:
            entry["index"] = []
        entries.append(entry)
    return entries, to_doc


async def load_module(ctx: "AppContext", task_id: int, module: str, version: Optional[str] = None) -> None:
    """Load registry metadata for a module version, document it, and analyze its dependencies."""
    prefix = f"[{task_id}]: "
    module_data = await ctx.registry.get_module_data(module)
    if module_data is None:
        raise NotFound(f'Module data missing for "{module}".')
    meta_versions = await ctx.registry.get_module_meta_versions(module)
    if meta_versions is None:
        raise NotFound(f'Module version data missing for "{module}".')
    version = version or meta_versions.get("latest")
    assert_that(version, "There is no latest version")
    logger.info('%sLoading module "%s@%s"...', prefix, module, version)

    mutations: List[Mutation] = []
    module_key = Key.of((MODULE_KIND, module))
    module_item, _, _ = await ctx.modules.lookup(module)
    module_item = dict(module_item or {"name": module})
    module_item.update(
        description=module_data.get("description"),
        versions=dedupe(meta_versions.get("versions") or []),
        latest_version=meta_versions.get("latest"),
        star_count=module_data.get("star_count"),
        synced_at=datetime.now(timezone.utc).isoformat(),
    )
    mutations.append(Mutation(upsert=Entity(module_key, module_item)))

    version_meta = await ctx.registry.get_version_meta(module, version)
    if version_meta is None:
        raise NotFound(f"unable to load meta data for {module}@{version}")
    module_version = {
        "name": module,
        "description": module_item.get("description"),
        "version": version,
        "uploaded_at": version_meta.get("uploaded_at"),
        "upload_options": version_meta.get("upload_options") or {},
    }
    vkey = version_key(module, version)
    mutations.append(Mutation(upsert=Entity(vkey, module_version)))

    entries, to_doc = _entry_records(version_meta.get("directory_listing") or [])
    for entry in entries:
        mutations.append(Mutation(upsert=Entity(vkey.child(MODULE_ENTRY_KIND, entry["path"]), entry)))

    await clear_module(ctx.store, mutations, module, version)
    mutations.append(Mutation(delete=completions_key(module, version)))
    ctx.completions.pop(f"{module}@{version}", None)
    await _commit(ctx, mutations, "changes", task_id)
    ctx.modules.clear(module)

    if len(to_doc) > ctx.settings.max_docable_modules:
        # left for batch processing
        logger.warning("%sToo many modules (%d). Skipping documentation.", prefix, len(to_doc))
        to_doc = []

    load = ctx.fetch_cache.load
    import_map = await get_import_map_specifier(ctx.store, load, module, version)
    doc_mutations: List[Mutation] = []
    documented = 0
    for path in to_doc:
        logger.info("%sGenerating doc nodes for: %s@%s%s...", prefix, module, version, path)
        nodes: List[DocNode] = []
        try:
            nodes = await generate_doc_nodes(ctx.extractor, load, module, version, path, import_map)
            documented += 1
        except DocsiteError as exc:
            logger.error('%sError generating doc nodes for "%s": %s', prefix, path, exc)
        except Exception:
            logger.exception('%sUnexpected error generating doc nodes for "%s"', prefix, path)
        doc_mutations.extend(
            encode_mutations(nodes, entry_key(module, version, path), max_entity_size=ctx.settings.max_entity_size)
        )
    await _commit(ctx, doc_mutations, "doc nodes", task_id)
    ctx.modules.clear(module)

    await analyze(ctx, module, version, True, prefix=prefix)
    if documented:
        ctx.scheduler.enqueue(SearchIndexTask(module_item, module_version))


async def task_load_module(ctx: "AppContext", task_id: int, task: LoadModuleTask) -> None:
    await load_module(ctx, task_id, task.module, task.version)


HANDLERS: Dict[type, Callable[["AppContext", int, Any], Awaitable[None]]] = {
    CommitMutationsTask: task_commit_mutations,
    CommitDocNodesTask: task_commit_doc_nodes,
    CommitSymbolIndexTask: task_commit_symbol_index,
    CommitNavTask: task_commit_nav,
    CommitPathCompletionsTask: task_commit_path_completions,
    SearchIndexTask: task_search_index,
    LoadModuleTask: task_load_module,
    AnalysisTask: task_analysis,
}


async def run_task(ctx: "AppContext", task_id: int, task: Task) -> None:
    handler = HANDLERS.get(type(task))
    if handler is None:
        logger.error("ERROR: [%d]: unexpected task kind: %s", task_id, getattr(task, "kind", type(task).__name__))
        return
    await handler(ctx, task_id, task)
