from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ModuleDependency:
    src: str
    pkg: str
    org: Optional[str] = None
    ver: Optional[str] = None
    # internal specifiers that import this dependency
    dependents: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None}


@dataclass
class DependencyError:
    specifier: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ModuleAnalysis:
    """Result of a dependency analysis for one module version."""

    deps: List[ModuleDependency] = field(default_factory=list)
    errors: List[DependencyError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deps": [d.to_dict() for d in self.deps],
            "errors": [e.to_dict() for e in self.errors],
        }
