"""Classify module specifiers by the host they are served from.

Each known source has one or more URL patterns. A pattern checks the scheme and
host, then matches the path with a regex exposing some of the named groups
``org``, ``pkg``, ``ver`` and ``mod``. The first matching pattern wins;
unrecognised specifiers are reported as source ``other`` with the full
specifier as package name.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from docsite.models.records import ModuleDependency

# Path fragments shared by most patterns.
_SEG = r"[^/]+?"
_VER = rf"(?:@(?P<ver>{_SEG}))?"
_MOD = r"(?:/(?P<mod>.*))?"
_SCOPED_ORG = r"(?:/(?P<org>@[^/]+))?"


@dataclass(frozen=True)
class SpecifierPattern:
    host: str
    path: str
    schemes: Tuple[str, ...] = ("https",)
    _host_re: re.Pattern = field(init=False, repr=False, compare=False)
    _path_re: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_host_re", re.compile(self.host))
        object.__setattr__(self, "_path_re", re.compile(self.path))

    def match(self, specifier: str) -> Optional[Dict[str, Optional[str]]]:
        try:
            parts = urlsplit(specifier)
        except ValueError:
            return None
        if parts.scheme not in self.schemes or not parts.hostname:
            return None
        if not self._host_re.fullmatch(parts.hostname):
            return None
        m = self._path_re.fullmatch(parts.path)
        return m.groupdict() if m else None


# Order matters: more specific patterns come before the generic ones for the
# same host.
PATTERNS: Dict[str, List[SpecifierPattern]] = {
    # modules external to the current module, but hosted on deno.land/x
    "deno.land/x": [
        SpecifierPattern(r"deno\.land", rf"/x/(?P<pkg>{_SEG}){_VER}{_MOD}"),
    ],
    # read directly off the deno.land CDN
    "cdn.deno.land": [
        SpecifierPattern(r"cdn\.deno\.land", rf"/(?P<pkg>{_SEG})/versions/(?P<ver>{_SEG})/raw/(?P<mod>.+)"),
    ],
    "std": [
        SpecifierPattern(r"deno\.land", rf"/std{_VER}{_MOD}"),
    ],
    "nest.land": [
        SpecifierPattern(r"x\.nest\.land", rf"/(?P<pkg>{_SEG})@(?P<ver>{_SEG}){_MOD}"),
    ],
    "crux.land": [
        SpecifierPattern(r"crux\.land", rf"/(?P<pkg>{_SEG})@(?P<ver>{_SEG})"),
    ],
    "github.com": [
        SpecifierPattern(r"raw\.githubusercontent\.com", rf"/(?P<org>{_SEG})/(?P<pkg>{_SEG})/(?P<ver>{_SEG}){_MOD}"),
        # https://github.com/denoland/deno_std/raw/main/http/mod.ts
        SpecifierPattern(r"github\.com", rf"/(?P<org>{_SEG})/(?P<pkg>{_SEG})/raw/(?P<ver>{_SEG}){_MOD}"),
    ],
    "gist.github.com": [
        SpecifierPattern(
            r"gist\.githubusercontent\.com",
            rf"/(?P<org>{_SEG})/(?P<pkg>{_SEG})/raw/(?P<ver>{_SEG}){_MOD}",
        ),
    ],
    "esm.sh": [
        # https://esm.sh/v92/preact@10.10.0/src/index.d.ts
        SpecifierPattern(
            r"(?:cdn\.)?esm\.sh",
            rf"/(?P<regver>stable|v[0-9]+){_SCOPED_ORG}/(?P<pkg>{_SEG}){_VER}{_MOD}",
            schemes=("http", "https"),
        ),
        SpecifierPattern(r"(?:cdn\.)?esm\.sh", rf"{_SCOPED_ORG}/(?P<pkg>{_SEG}){_VER}{_MOD}", schemes=("http", "https")),
    ],
    "denopkg.com": [
        SpecifierPattern(r"denopkg\.com", rf"{_SCOPED_ORG}/(?P<pkg>{_SEG}){_VER}{_MOD}"),
    ],
    "denolib.com": [
        SpecifierPattern(r"denolib\.com", rf"{_SCOPED_ORG}/(?P<pkg>{_SEG}){_VER}{_MOD}"),
    ],
    "lib.deno.dev": [
        SpecifierPattern(r"lib\.deno\.dev", rf"/x/(?P<pkg>{_SEG}){_VER}{_MOD}"),
    ],
    # github proxies
    "pax.deno.dev": [
        SpecifierPattern(r"pax\.deno\.dev", rf"/(?P<org>{_SEG})/(?P<pkg>{_SEG}){_VER}{_MOD}"),
    ],
    "ghuc.cc": [
        SpecifierPattern(r"ghuc\.cc", rf"/(?P<org>{_SEG})/(?P<pkg>{_SEG}){_VER}{_MOD}"),
    ],
    "ghc.deno.dev": [
        SpecifierPattern(r"ghc\.deno\.dev", rf"/(?P<org>{_SEG})/(?P<pkg>{_SEG}){_VER}{_MOD}"),
    ],
    "jspm.dev": [
        # https://jspm.dev/@angular/compiler@11.0.5
        SpecifierPattern(
            r"jspm\.dev",
            rf"(?:/(?P<org>(?:npm:)?@[^/]+))?/(?P<pkg>{_SEG})(?:@(?P<ver>[^!/]+))?(?:![^/]+)?{_MOD}",
        ),
        # https://dev.jspm.io/markdown-it@11.0.1
        SpecifierPattern(
            r"dev\.jspm\.io",
            rf"(?:/(?P<org>(?:npm:)?@[^/]+))?/(?P<pkg>{_SEG})(?:@(?P<ver>[^!/]+))?(?:![^/]+)?{_MOD}",
        ),
    ],
    "skypack.dev": [
        # https://cdn.skypack.dev/-/@firebase/firestore@v3.4.3-A3UEhS17OZ2Vgra7HCZF/dist=es2019,mode=types/dist/index.d.ts
        SpecifierPattern(
            r"cdn\.skypack\.dev",
            rf"/-{_SCOPED_ORG}/(?P<pkg>{_SEG})@(?P<ver>[^-/]+)(?P<hash>[^/]+?){_MOD}",
        ),
        SpecifierPattern(r"cdn\.skypack\.dev", rf"{_SCOPED_ORG}/(?P<pkg>{_SEG}){_VER}{_MOD}"),
        # cdn.shopstic.com redirects to skypack.dev
        SpecifierPattern(
            r"cdn\.shopstic\.com",
            rf"/pin{_SCOPED_ORG}/(?P<pkg>{_SEG})@(?P<ver>[^-/]+)(?P<hash>[^/]+?){_MOD}",
        ),
        # https://cdn.pika.dev/class-transformer@^0.2.3
        SpecifierPattern(r"cdn\.pika\.dev", rf"{_SCOPED_ORG}/(?P<pkg>{_SEG}){_VER}{_MOD}"),
    ],
    "jsdeliver.net": [
        SpecifierPattern(r"cdn\.jsdelivr\.net", rf"/npm{_SCOPED_ORG}/(?P<pkg>{_SEG}){_VER}{_MOD}"),
        SpecifierPattern(r"cdn\.jsdelivr\.net", rf"/gh/(?P<org>{_SEG})/(?P<pkg>{_SEG}){_VER}{_MOD}"),
    ],
    "unpkg.com": [
        SpecifierPattern(r"unpkg\.com", rf"{_SCOPED_ORG}/(?P<pkg>{_SEG}){_VER}{_MOD}"),
    ],
    # code generation for AWS APIs, e.g. https://aws-api.deno.dev/latest/services/sqs.ts
    "aws-api": [
        SpecifierPattern(r"aws-api\.deno\.dev", rf"/(?P<ver>{_SEG})/services/(?P<pkg>{_SEG})\.ts"),
    ],
    # code generation for Google Cloud APIs
    "googleapis": [
        SpecifierPattern(r"googleapis\.deno\.dev", rf"/v1/(?P<pkg>[^:/]+):(?P<ver>{_SEG})\.ts"),
    ],
}

SOURCES = tuple(PATTERNS) + ("other",)


def parse_specifier(specifier: str) -> ModuleDependency:
    """Classify ``specifier`` into a ModuleDependency."""
    for src, patterns in PATTERNS.items():
        for pattern in patterns:
            groups = pattern.match(specifier)
            if groups is not None:
                return ModuleDependency(
                    src=src,
                    org=groups.get("org") or None,
                    pkg=groups.get("pkg") or "std",
                    ver=groups.get("ver") or None,
                )
    return ModuleDependency(src="other", pkg=specifier)


def dependency_key(dep: ModuleDependency) -> str:
    org = f"{dep.org}/" if dep.org else ""
    ver = f"@{dep.ver}" if dep.ver else ""
    return f"{dep.src}:{org}{dep.pkg}{ver}"


def _org_pkg_ver(dep: ModuleDependency) -> str:
    org = f"{dep.org}/" if dep.org else ""
    ver = f"@{dep.ver}" if dep.ver else ""
    return f"{org}{dep.pkg}{ver}"


def dependency_to_url_and_display(dep: ModuleDependency) -> Tuple[Optional[str], str]:
    """Return a browsable URL (when the source has one) and a display label."""
    src, org, pkg, ver = dep.src, dep.org, dep.pkg, dep.ver
    label = _org_pkg_ver(dep)
    if src == "std":
        return f"https://deno.land/std{'@' + ver if ver else ''}", label
    if src == "deno.land/x":
        return f"https://deno.land/x/{label}", label
    if src == "cdn.deno.land":
        return f"https://cdn.deno.land/{pkg}/versions/{ver}/raw", label
    if src in ("esm.sh", "unpkg.com", "denopkg.com", "denolib.com", "ghuc.cc", "pax.deno.dev", "ghc.deno.dev"):
        return f"https://{src}/{label}", label
    if src in ("jsdeliver.net", "skypack.dev", "jspm.dev"):
        return None, label
    if src == "lib.deno.dev":
        return f"https://lib.deno.dev/{label}", label
    if src == "gist.github.com":
        return f"https://gist.github.com/{org}/{pkg}", f"{org}/{pkg}"
    if src == "github.com":
        if ver:
            return f"https://github.com/{org}/{pkg}/tree/{ver}", f"{org}/{pkg}/{ver}"
        return f"https://github.com/{org}/{pkg}", f"{org}/{pkg}"
    if src == "crux.land":
        return f"https://crux.land/{label}", label
    if src == "nest.land":
        return f"https://x.nest.land/{label}", label
    if src == "googleapis":
        return f"https://googleapis.deno.dev/v1/{pkg}:{ver}", f"{pkg}:{ver}"
    if src == "aws-api":
        return f"https://aws-api.deno.dev/{ver}/services/{pkg}", f"{ver}/{pkg}"
    return pkg, pkg
