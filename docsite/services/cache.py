"""In-memory memo of module, version and entry records read from the store.

At most ``max_modules`` modules are cached; each module owns its versions and
entries, so evicting a module drops everything below it. Pruning is deferred to
the next event loop iteration.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from docsite.consts import MODULE_ENTRY_KIND, MODULE_KIND, MODULE_VERSION_KIND
from docsite.db.keys import Key
from docsite.db.store import EntityStore

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


@dataclass
class _CachedModule:
    item: Record
    versions: Dict[str, Record] = field(default_factory=dict)
    entries: Dict[Tuple[str, str], Record] = field(default_factory=dict)


class ModuleCache:
    def __init__(self, store: EntityStore, *, max_modules: int = 100) -> None:
        self.store = store
        self.max_modules = max_modules
        self._modules: "OrderedDict[str, _CachedModule]" = OrderedDict()
        self._prune_queued = False

    def __len__(self) -> int:
        return len(self._modules)

    def __contains__(self, module: str) -> bool:
        return module in self._modules

    def _touch(self, module: str) -> None:
        self._modules.move_to_end(module)
        if self._prune_queued:
            return
        self._prune_queued = True
        try:
            asyncio.get_running_loop().call_soon(self.prune)
        except RuntimeError:
            self.prune()

    def prune(self) -> None:
        self._prune_queued = False
        while len(self._modules) > self.max_modules:
            name, _ = self._modules.popitem(last=False)
            logger.info('Evicting module "%s" from cache.', name)

    def clear(self, module: Optional[str] = None) -> None:
        if module:
            self._modules.pop(module, None)
        else:
            self._modules.clear()

    async def lookup(
        self, module: str, version: Optional[str] = None, path: Optional[str] = None
    ) -> Tuple[Optional[Record], Optional[Record], Optional[Record]]:
        """Return ``(module, version, entry)`` records, reading misses from the store."""
        if path is not None and version is None:
            raise TypeError("A path lookup requires a version.")
        cached = self._modules.get(module)
        version_item = cached.versions.get(version) if cached and version else None
        entry_item = cached.entries.get((version, path)) if cached and version_item and path else None

        module_key = Key.of((MODULE_KIND, module))
        version_key = module_key.child(MODULE_VERSION_KIND, version) if version else None
        keys: List[Key] = []
        if cached is None:
            keys.append(module_key)
        if version_key is not None and version_item is None:
            keys.append(version_key)
        if path is not None and entry_item is None:
            keys.append(version_key.child(MODULE_ENTRY_KIND, path))

        if keys:
            for entity in await self.store.lookup(keys):
                kind = entity.key.kind
                if kind == MODULE_KIND:
                    cached = _CachedModule(entity.to_object())
                    self._modules[module] = cached
                elif kind == MODULE_VERSION_KIND:
                    version_item = entity.to_object()
                elif kind == MODULE_ENTRY_KIND:
                    entry_item = entity.to_object()
                else:
                    raise TypeError(f'Unexpected kind "{kind}"')
            if cached is not None:
                if version_item is not None:
                    cached.versions[version] = version_item
                if entry_item is not None:
                    cached.entries[(version, path)] = entry_item

        if cached is None:
            return None, None, None
        self._touch(module)
        return cached.item, version_item, entry_item

    def cache_module(self, module: str, item: Record) -> None:
        self._modules[module] = _CachedModule(item)
        self._touch(module)

    def cache_module_version(self, module: str, version: str, item: Record) -> None:
        cached = self._modules.get(module)
        if cached is not None:
            cached.versions[version] = item
            self._touch(module)

    def cache_module_entry(self, module: str, version: str, path: str, entry: Record) -> None:
        cached = self._modules.get(module)
        if cached is not None and version in cached.versions:
            cached.entries[(version, path)] = entry
            self._touch(module)
