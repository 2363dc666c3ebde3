"""
Snapshot document schema with strict typed primitives.

Defines the on-disk shape of the dependency graph snapshot produced by the
evaluation phase. Validation happens here; projection into the immutable
model happens in modquery.graph.store.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from modquery.graph.model import ModuleExtensionId, ModuleKey


def _check_key(value: str) -> str:
    ModuleKey.parse(value)
    return value


def _check_extension(value: str) -> str:
    ModuleExtensionId.parse(value)
    return value


class DepEntry(BaseModel):
    """Used dependency edge declared by a module."""
    name: str = Field(..., description="Local dependency name")
    key: str = Field(..., description="Selected module version, name@version")
    direct: Optional[bool] = Field(None, description="Declared directly (defaults to True without extensions)")
    extensions: List[str] = Field(default_factory=list, description="Extensions that introduced the edge")

    @field_validator('key')
    @classmethod
    def check_key(cls, value: str) -> str:
        return _check_key(value)

    @field_validator('extensions')
    @classmethod
    def check_extensions(cls, value: List[str]) -> List[str]:
        for ext in value:
            _check_extension(ext)
        return value

    @model_validator(mode='after')
    def default_direct(self) -> 'DepEntry':
        if self.direct is None:
            self.direct = not self.extensions
        elif not self.direct and not self.extensions:
            raise ValueError(f"Dependency {self.name!r} is not direct but names no extension")
        return self


class UnusedDepEntry(BaseModel):
    """Dependency that lost version selection."""
    name: str
    key: str

    @field_validator('key')
    @classmethod
    def check_key(cls, value: str) -> str:
        return _check_key(value)


class ModuleUsageEntry(BaseModel):
    """Extension usage declared by a module and the repositories it generates for it."""
    extension: str
    repos: List[str] = Field(default_factory=list)

    @field_validator('extension')
    @classmethod
    def check_extension(cls, value: str) -> str:
        return _check_extension(value)


class ModuleEntry(BaseModel):
    """One module version in the graph."""
    key: str = Field(..., description="<root> or name@version")
    repo_name: Optional[str] = Field(None, description="Canonical repository name")
    deps: List[DepEntry] = Field(default_factory=list)
    unused_deps: List[UnusedDepEntry] = Field(default_factory=list)
    extension_usages: List[ModuleUsageEntry] = Field(default_factory=list)

    @field_validator('key')
    @classmethod
    def check_key(cls, value: str) -> str:
        return _check_key(value)


class ExtensionUsageEntry(BaseModel):
    """Row of the extension usage table."""
    module: str
    extension: str
    tags: List[str] = Field(default_factory=list)
    imports: Dict[str, str] = Field(default_factory=dict, description="Local repo name -> generated repo name")

    @field_validator('module')
    @classmethod
    def check_module(cls, value: str) -> str:
        return _check_key(value)

    @field_validator('extension')
    @classmethod
    def check_extension(cls, value: str) -> str:
        return _check_extension(value)


class ExtensionReposEntry(BaseModel):
    """All repositories generated by one extension."""
    extension: str
    repos: List[str] = Field(default_factory=list)

    @field_validator('extension')
    @classmethod
    def check_extension(cls, value: str) -> str:
        return _check_extension(value)


class SnapshotDocument(BaseModel):
    """Top-level snapshot document."""
    version: int = 1
    modules: List[ModuleEntry]
    extension_usages: List[ExtensionUsageEntry] = Field(default_factory=list)
    extension_repos: List[ExtensionReposEntry] = Field(default_factory=list)
    repo_rules: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


def validate_document(data: Any) -> SnapshotDocument:
    """
    Validate a raw snapshot document.

    Args:
        data: Parsed YAML/JSON content

    Returns:
        Validated snapshot document

    Raises:
        ValueError: If validation fails
    """
    if not isinstance(data, dict):
        raise ValueError(f"Snapshot must be a mapping, got {type(data).__name__}")
    try:
        return SnapshotDocument(**data)
    except ValidationError as e:
        raise ValueError(f"Invalid snapshot document: {e}") from e
