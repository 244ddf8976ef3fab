"""Bounded cache of remotely fetched source text.

Used as the ``load`` hook of the doc extractor and the module graph builder.
Entries are kept in insertion order (a hit moves the entry to the end); once the
cumulative size of cached content passes ``max_size`` the oldest entries are
evicted. The size check is deferred to the next event loop iteration so a burst
of inserts only triggers one pass.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class LoadResponse:
    specifier: str
    content: str
    headers: Dict[str, str] = field(default_factory=dict)
    kind: str = "module"


class FetchCache:
    def __init__(self, *, max_size: int = 25_000_000, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0) -> None:
        self.max_size = max_size
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._entries: "OrderedDict[str, Optional[LoadResponse]]" = OrderedDict()
        self._size = 0
        self._check_queued = False

    @property
    def size(self) -> int:
        return self._size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, specifier: str) -> bool:
        return specifier in self._entries

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def load(self, specifier: str) -> Optional[LoadResponse]:
        """Return the source behind ``specifier``, or None when it cannot be fetched."""
        if specifier in self._entries:
            self._entries.move_to_end(specifier)
            return self._entries[specifier]
        url = httpx.URL(specifier) if specifier.startswith(("http://", "https://")) else None
        if url is None:
            return None
        try:
            resp = await self._get_client().get(url)
        except httpx.HTTPError as exc:
            logger.debug("Fetch of %s failed: %s", specifier, exc)
            self._entries[specifier] = None
            return None
        if resp.status_code != 200:
            self._entries[specifier] = None
            return None
        content = resp.text
        loaded = LoadResponse(specifier=str(resp.url), content=content, headers=dict(resp.headers))
        self.put(specifier, loaded)
        return loaded

    def put(self, specifier: str, response: Optional[LoadResponse]) -> None:
        previous = self._entries.pop(specifier, None)
        if previous is not None:
            self._size -= len(previous.content)
        self._entries[specifier] = response
        if response is not None:
            self._size += len(response.content)
            self._enqueue_check()

    def _enqueue_check(self) -> None:
        if self._check_queued:
            return
        self._check_queued = True
        try:
            asyncio.get_running_loop().call_soon(self.check)
        except RuntimeError:
            # no running loop; check inline
            self.check()

    def check(self) -> None:
        """Evict the oldest entries until the cached size fits ``max_size``."""
        self._check_queued = False
        if self._size <= self.max_size:
            return
        to_evict = []
        for specifier, response in self._entries.items():
            to_evict.append(specifier)
            if response is not None:
                self._size -= len(response.content)
                if self._size <= self.max_size:
                    break
        logger.info("Evicting %d responses from cache.", len(to_evict))
        for specifier in to_evict:
            del self._entries[specifier]

    def clear(self) -> None:
        self._entries.clear()
        self._size = 0

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
