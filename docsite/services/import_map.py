"""Import map lookup and resolution.

A module may declare an import map in its configuration file, either inline
(``imports``/``scopes``) or as a path (``importMap``) relative to the file.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urljoin

from docsite.consts import MODULE_ENTRY_KIND, MODULE_KIND, MODULE_VERSION_KIND
from docsite.db.keys import Key
from docsite.db.store import EntityStore

logger = logging.getLogger(__name__)

CONFIG_FILES = ("/deno.json", "/deno.jsonc")

_RE_LINE_COMMENT = re.compile(r"(?m)^\s*//.*$")
_RE_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.S)


def _is_url_like(specifier: str) -> bool:
    return specifier.startswith(("./", "../", "/")) or "://" in specifier


def _strip_jsonc(text: str) -> str:
    return _RE_LINE_COMMENT.sub("", _RE_BLOCK_COMMENT.sub("", text))


def _normalize(mapping: Dict[str, Any], base_url: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for k, v in (mapping or {}).items():
        if not isinstance(v, str):
            continue
        key = urljoin(base_url, k) if k.startswith(("./", "../", "/")) else k
        out[key] = urljoin(base_url, v)
    return out


@dataclass
class ImportMap:
    base_url: str
    imports: Dict[str, str] = field(default_factory=dict)
    scopes: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @classmethod
    def from_json(cls, base_url: str, content: str) -> "ImportMap":
        data = json.loads(_strip_jsonc(content))
        if not isinstance(data, dict):
            raise ValueError(f"Import map at {base_url} is not an object.")
        scopes = {
            urljoin(base_url, scope): _normalize(mapping, base_url)
            for scope, mapping in (data.get("scopes") or {}).items()
            if isinstance(mapping, dict)
        }
        return cls(base_url, _normalize(data.get("imports") or {}, base_url), scopes)

    @staticmethod
    def _match(specifier: str, mapping: Dict[str, str]) -> Optional[str]:
        if specifier in mapping:
            return mapping[specifier]
        best = None
        for prefix in mapping:
            if prefix.endswith("/") and specifier.startswith(prefix):
                if best is None or len(prefix) > len(best):
                    best = prefix
        if best is not None:
            return mapping[best] + specifier[len(best):]
        return None

    def resolve(self, specifier: str, referrer: str) -> str:
        """Resolve ``specifier`` as imported from ``referrer``.

        Raises ValueError for bare specifiers with no mapping.
        """
        candidate = urljoin(referrer, specifier) if specifier.startswith(("./", "../", "/")) else specifier
        for scope in sorted(self.scopes, key=len, reverse=True):
            if referrer.startswith(scope):
                hit = self._match(candidate, self.scopes[scope])
                if hit is not None:
                    return hit
        hit = self._match(candidate, self.imports)
        if hit is not None:
            return hit
        if _is_url_like(specifier):
            return candidate
        raise ValueError(f'Relative import path "{specifier}" not prefixed with / or ./ or ../')


def resolve_default(specifier: str, referrer: str) -> str:
    """Resolution without an import map."""
    if specifier.startswith(("./", "../", "/")):
        return urljoin(referrer, specifier)
    if "://" in specifier or specifier.startswith(("data:", "npm:", "node:")):
        return specifier
    raise ValueError(f'Relative import path "{specifier}" not prefixed with / or ./ or ../')


async def get_import_map_specifier(
    store: EntityStore,
    load: Callable[[str], Awaitable[Any]],
    module: str,
    version: str,
) -> Optional[str]:
    """Return the URL of the import map declared by the module's config file, if any."""
    keys = [
        Key.of((MODULE_KIND, module), (MODULE_VERSION_KIND, version), (MODULE_ENTRY_KIND, path))
        for path in CONFIG_FILES
    ]
    for entity in await store.lookup(keys):
        config_url = f"https://deno.land/x/{module}@{version}{entity.key.identifier}"
        loaded = await load(config_url)
        if loaded is None:
            continue
        try:
            config = json.loads(_strip_jsonc(loaded.content))
        except ValueError:
            logger.warning("Unable to parse config file %s", config_url)
            continue
        if not isinstance(config, dict):
            continue
        if isinstance(config.get("importMap"), str):
            return urljoin(config_url, config["importMap"])
        if isinstance(config.get("imports"), dict):
            return config_url
    return None


async def load_import_map(
    load: Callable[[str], Awaitable[Any]],
    specifier: Optional[str],
) -> Optional[ImportMap]:
    if not specifier:
        return None
    loaded = await load(specifier)
    if loaded is None:
        logger.error("Cannot load identified import map: %s", specifier)
        return None
    try:
        return ImportMap.from_json(specifier, loaded.content)
    except ValueError as exc:
        logger.error("Cannot parse import map %s: %s", specifier, exc)
        return None
