"""Bring stored modules up to date with the registry."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import httpx

from docsite.consts import MODULE_KIND

from .tasks import LoadModuleTask

if TYPE_CHECKING:
    from .context import AppContext

logger = logging.getLogger(__name__)


def _recently_synced(module: Dict[str, Any], now: datetime, days: int) -> bool:
    raw = module.get("synced_at")
    if not raw or days <= 0:
        return False
    try:
        synced_at = datetime.fromisoformat(raw)
    except ValueError:
        return False
    if synced_at.tzinfo is None:
        synced_at = synced_at.replace(tzinfo=timezone.utc)
    return now - synced_at < timedelta(days=days)


async def find_outdated(ctx: "AppContext", now: Optional[datetime] = None) -> List[Tuple[str, str]]:
    """``(module, latest)`` pairs whose stored latest version differs from the registry's."""
    now = now or datetime.now(timezone.utc)
    outdated: List[Tuple[str, str]] = []
    logger.info("Finding out of date modules...")
    async for entity in ctx.store.stream_query(ctx.store.query(MODULE_KIND)):
        module = entity.properties
        name = module.get("name") or entity.key.identifier
        if _recently_synced(module, now, ctx.settings.batch_dedupe_days):
            logger.debug("skip %s, synced recently", name)
            continue
        try:
            version_data = await ctx.registry.get_module_meta_versions(name)
        except httpx.HTTPError as exc:
            logger.error("Unable to fetch versions of %s: %s", name, exc)
            continue
        latest = (version_data or {}).get("latest")
        if latest and module.get("latest_version") != latest:
            logger.info("add %s", name)
            outdated.append((name, latest))
    return outdated


async def sync_modules(ctx: "AppContext", now: Optional[datetime] = None) -> List[int]:
    """Queue a load for every out of date module. Returns the task ids."""
    return [ctx.scheduler.enqueue(LoadModuleTask(name, latest)) for name, latest in await find_outdated(ctx, now)]
