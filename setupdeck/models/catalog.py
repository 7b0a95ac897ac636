"""Catalog models: tabs, setup units and their executable references."""

import os
import shutil
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CommandKind(str, Enum):
    """How a unit's executable reference is turned into a child process."""
    RAW = "raw"          # shell snippet run through sh -c
    SCRIPT = "script"    # local script file run by an interpreter
    ARGV = "argv"        # explicit argument vector


class UnitCommand(BaseModel):
    """Executable reference of a setup unit."""

    model_config = ConfigDict(frozen=True)

    kind: CommandKind = Field(..., description="Command flavour")
    raw: Optional[str] = Field(default=None, description="Shell snippet for raw commands")
    file: Optional[Path] = Field(default=None, description="Script path for script commands")
    executable: str = Field(default="sh", description="Interpreter for script commands")
    args: Tuple[str, ...] = Field(default=(), description="Extra arguments")
    argv: Tuple[str, ...] = Field(default=(), description="Argument vector for argv commands")

    @model_validator(mode="after")
    def validate_kind_fields(self) -> "UnitCommand":
        """Each kind requires its own field."""
        if self.kind == CommandKind.RAW and not (self.raw and self.raw.strip()):
            raise ValueError("raw command requires a non-empty snippet")
        if self.kind == CommandKind.SCRIPT and self.file is None:
            raise ValueError("script command requires a file")
        if self.kind == CommandKind.ARGV and not self.argv:
            raise ValueError("argv command requires at least one argument")
        return self

    def to_argv(self) -> List[str]:
        """Argument vector used to spawn the child process."""
        if self.kind == CommandKind.RAW:
            return ["sh", "-c", self.raw]
        if self.kind == CommandKind.SCRIPT:
            return [self.executable, str(self.file), *self.args]
        return list(self.argv)

    @property
    def working_dir(self) -> Optional[Path]:
        """Scripts run from the directory that contains them."""
        if self.kind == CommandKind.SCRIPT and self.file is not None:
            return self.file.parent
        return None

    def describe(self) -> str:
        """Short human-readable form of the command."""
        return " ".join(self.to_argv())


class PreconditionKind(str, Enum):
    """Checks evaluated at catalog load time."""
    COMMAND_EXISTS = "command_exists"
    FILE_EXISTS = "file_exists"
    ENV_EQUALS = "env_equals"


class Precondition(BaseModel):
    """A host check that must hold for a unit to be offered."""

    model_config = ConfigDict(frozen=True)

    kind: PreconditionKind
    value: str = Field(..., min_length=1, description="Command, path or variable name")
    expected: Optional[str] = Field(default=None, description="Expected value for env_equals")

    def is_met(self) -> bool:
        """Evaluate the check against the running host."""
        if self.kind == PreconditionKind.COMMAND_EXISTS:
            return shutil.which(self.value) is not None
        if self.kind == PreconditionKind.FILE_EXISTS:
            return Path(self.value).expanduser().exists()
        return os.environ.get(self.value) == self.expected

    def describe(self) -> str:
        if self.kind == PreconditionKind.ENV_EQUALS:
            return f"{self.value}={self.expected}"
        return f"{self.kind.value} {self.value}"


class SetupUnit(BaseModel):
    """One configurable action backed by an external script."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(..., min_length=1, description="Unique unit identifier")
    label: str = Field(..., min_length=1, description="Human-readable label")
    description: str = Field(default="", description="Longer description")
    command: UnitCommand = Field(..., description="Executable reference")
    prerequisites: Tuple[str, ...] = Field(default=(), description="Units that must succeed first")
    idempotent: bool = Field(default=True, description="Whether re-running is safe")
    enabled: bool = Field(default=True, description="Selected by default when a tab runs")
    multi_select: bool = Field(default=True, description="May be combined with other units")
    preconditions: Tuple[Precondition, ...] = Field(default=())
    timeout: Optional[float] = Field(default=None, gt=0, description="Per-unit timeout override")
    env: Dict[str, str] = Field(default_factory=dict, description="Extra environment variables")


class Tab(BaseModel):
    """Named category grouping related setup units."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(..., min_length=1, description="Unique tab identifier")
    label: str = Field(..., min_length=1, description="Display label")
    description: str = Field(default="")
    unit_ids: Tuple[str, ...] = Field(default=(), description="Ordered unit identifiers")


class Catalog:
    """Immutable registry of tabs and units built by CatalogStore.load.

    Units are referenced by identifier only. Declaration order is kept for
    both tabs and units and is used to break ordering ties when planning.
    """

    def __init__(
        self,
        tabs: List[Tab],
        units: List[SetupUnit],
        hidden: Optional[Dict[str, str]] = None,
        source: Optional[str] = None,
    ):
        self._tabs: Tuple[Tab, ...] = tuple(tabs)
        self._tab_index: Mapping[str, Tab] = MappingProxyType({t.id: t for t in tabs})
        self._units: Mapping[str, SetupUnit] = MappingProxyType({u.id: u for u in units})
        self._order: Mapping[str, int] = MappingProxyType({u.id: i for i, u in enumerate(units)})
        self._hidden: Mapping[str, str] = MappingProxyType(dict(hidden or {}))
        self.source = source

        owners: Dict[str, str] = {}
        for tab in tabs:
            for unit_id in tab.unit_ids:
                owners.setdefault(unit_id, tab.id)
        self._owners: Mapping[str, str] = MappingProxyType(owners)

    def __repr__(self) -> str:
        return f"Catalog(tabs={len(self._tabs)}, units={len(self._units)})"

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def get_tab(self, tab_id: str) -> Optional[Tab]:
        return self._tab_index.get(tab_id)

    def get_unit(self, unit_id: str) -> Optional[SetupUnit]:
        return self._units.get(unit_id)

    def all_tabs(self) -> List[Tab]:
        return list(self._tabs)

    def all_units(self) -> List[SetupUnit]:
        return list(self._units.values())

    def tab_of(self, unit_id: str) -> Optional[str]:
        """Id of the first tab listing the unit."""
        return self._owners.get(unit_id)

    def declaration_index(self, unit_id: str) -> int:
        return self._order[unit_id]

    def is_hidden(self, unit_id: str) -> bool:
        return unit_id in self._hidden

    def hidden_reason(self, unit_id: str) -> Optional[str]:
        return self._hidden.get(unit_id)

    def visible_units(self, tab_id: str) -> List[SetupUnit]:
        """Units of a tab in order, without those whose preconditions failed."""
        tab = self.get_tab(tab_id)
        if tab is None:
            return []
        return [self._units[u] for u in tab.unit_ids if u not in self._hidden]

    def search(self, query: str) -> List[SetupUnit]:
        """Case-insensitive label search across all tabs, sorted by label."""
        needle = query.strip().lower()
        if not needle:
            return []
        matches = [
            unit for unit in self._units.values()
            if needle in unit.label.lower() and unit.id not in self._hidden
        ]
        return sorted(matches, key=lambda unit: unit.label)
