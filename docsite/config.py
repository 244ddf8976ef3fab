"""Process configuration.

Values come from environment variables. A ``.env`` file at the project root is
read first (best-effort) and only fills variables that are not already set.

Usage:
    from docsite.config import get_settings
    settings = get_settings()
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _load_env_from_file(path: Optional[str] = None) -> None:
    """Load KEY=value lines from a .env file without overriding the environment."""
    if path is None:
        root_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        path = os.path.join(root_dir, ".env")
    if not os.path.isfile(path):
        return
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                s = line.strip()
                if not s or s.startswith("#") or "=" not in s:
                    continue
                key, val = s.split("=", 1)
                key = key.strip()
                val = val.strip().strip('"').strip("'")
                if key and not os.environ.get(key):
                    os.environ[key] = val
    except OSError:
        # .env loading is best-effort
        pass


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw.replace("_", ""))
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be a number, got {raw!r}")


@dataclass
class Settings:
    store_backend: str = "neo4j"
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: Optional[str] = None

    search_app_id: Optional[str] = None
    search_api_key: Optional[str] = None
    search_host: Optional[str] = None
    search_module_index: str = "modules"
    search_symbol_index: str = "doc_nodes"

    doc_extractor_url: Optional[str] = None
    registry_api_url: str = "https://api.deno.land/modules/"
    registry_storage_url: str = "https://cdn.deno.land/"

    # bytes of fetched source text kept by the fetch cache
    max_cache_size: int = 25_000_000
    cached_module_count: int = 100
    # modules with more docable paths than this are not documented on load
    max_docable_modules: int = 2000
    max_entity_size: int = 1_000_000
    http_timeout: float = 30.0
    batch_dedupe_days: int = 7
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, *, env_file: Optional[str] = None) -> "Settings":
        _load_env_from_file(env_file)
        d = cls()
        return cls(
            store_backend=(os.getenv("STORE_BACKEND") or d.store_backend).lower(),
            neo4j_uri=os.getenv("NEO4J_URI") or d.neo4j_uri,
            neo4j_user=os.getenv("NEO4J_USER") or d.neo4j_user,
            neo4j_password=os.getenv("NEO4J_PASSWORD") or None,
            search_app_id=os.getenv("SEARCH_APP_ID") or None,
            search_api_key=os.getenv("SEARCH_API_KEY") or None,
            search_host=os.getenv("SEARCH_HOST") or None,
            search_module_index=os.getenv("SEARCH_MODULE_INDEX") or d.search_module_index,
            search_symbol_index=os.getenv("SEARCH_SYMBOL_INDEX") or d.search_symbol_index,
            doc_extractor_url=os.getenv("DOC_EXTRACTOR_URL") or None,
            registry_api_url=os.getenv("REGISTRY_API_URL") or d.registry_api_url,
            registry_storage_url=os.getenv("REGISTRY_STORAGE_URL") or d.registry_storage_url,
            max_cache_size=_int_env("MAX_CACHE_SIZE", d.max_cache_size),
            cached_module_count=_int_env("CACHED_MODULE_COUNT", d.cached_module_count),
            max_docable_modules=_int_env("MAX_DOCABLE_MODULES", d.max_docable_modules),
            max_entity_size=_int_env("MAX_ENTITY_SIZE", d.max_entity_size),
            http_timeout=_float_env("HTTP_TIMEOUT", d.http_timeout),
            batch_dedupe_days=_int_env("BATCH_DEDUPE_DAYS", d.batch_dedupe_days),
            log_level=(os.getenv("LOG_LEVEL") or d.log_level).upper(),
        )

    def neo4j_config(self):
        """Return (uri, user, password), raising a helpful error when something is missing."""
        missing = []
        if not self.neo4j_uri:
            missing.append("NEO4J_URI")
        if not self.neo4j_user:
            missing.append("NEO4J_USER")
        if not self.neo4j_password:
            missing.append("NEO4J_PASSWORD")
        if missing:
            raise RuntimeError(
                "One or more Neo4j settings are missing: " + ", ".join(missing) +
                "\nDefine them in your environment or in a .env file at the project root,"
                " or set STORE_BACKEND=memory for a throwaway in-process store."
            )
        return self.neo4j_uri, self.neo4j_user, self.neo4j_password


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
