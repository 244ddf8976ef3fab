from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class LoadModuleRequest(BaseModel):
    """Queue a (re)load of a registry module version.

    version: omitted means the registry's latest version
    """

    module: str = Field(description="Registry module name, e.g. oak")
    version: Optional[str] = None


class AnalysisRequest(BaseModel):
    module: str
    version: str
    force: bool = False


class TaskAccepted(BaseModel):
    id: int
    kind: str


class SchedulerStatus(BaseModel):
    state: str
    pending: int
    processed: int
    failed: int


class DependencyOut(BaseModel):
    src: str
    pkg: str
    org: Optional[str] = None
    ver: Optional[str] = None
    dependents: List[str] = Field(default_factory=list)
    url: Optional[str] = None
    display: str = ""


class DependencyErrorOut(BaseModel):
    specifier: str
    error: str


class AnalysisOut(BaseModel):
    module: str
    version: str
    deps: List[DependencyOut] = Field(default_factory=list)
    errors: List[DependencyErrorOut] = Field(default_factory=list)


class DocNodesOut(BaseModel):
    module: str
    version: str
    path: str
    nodes: List[Dict[str, Any]] = Field(default_factory=list)


class SymbolItem(BaseModel):
    name: str
    kind: str
    path: str
    doc: Optional[str] = None
    unstable: bool = False


class SymbolIndexOut(BaseModel):
    module: str
    version: str
    items: List[SymbolItem] = Field(default_factory=list)


class NavEntry(BaseModel):
    path: str
    kind: str
    name: str
    default: Optional[str] = None


class NavIndexOut(BaseModel):
    module: str
    version: str
    path: str
    entries: List[NavEntry] = Field(default_factory=list)


class CompletionsOut(BaseModel):
    items: List[str] = Field(default_factory=list)
    is_incomplete: bool = False
    preselect: Optional[str] = None
