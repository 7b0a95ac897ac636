"""Catalog store: loads and validates tab/unit descriptors once at startup."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import ValidationError

from setupdeck.lib.exceptions import (
    CyclicDependencyError,
    DuplicateIdError,
    MalformedCatalogError,
    UnknownUnitError,
)
from setupdeck.lib.yaml_utils import load_structured_file
from setupdeck.models.catalog import (
    Catalog,
    CommandKind,
    Precondition,
    PreconditionKind,
    SetupUnit,
    Tab,
    UnitCommand,
)

logger = logging.getLogger(__name__)

CatalogSource = Union[str, Path, Mapping[str, Any]]


class CatalogStore:
    """Owns the immutable catalog of tabs and setup units.

    ``load`` is the single validation point. Once it returns, the catalog is
    never mutated, so concurrent readers need no locking.
    """

    def __init__(self, validate_preconditions: bool = True):
        """Initialize the store.

        Args:
            validate_preconditions: Hide units whose host preconditions fail
        """
        self.validate_preconditions = validate_preconditions
        self._catalog: Optional[Catalog] = None

    @property
    def catalog(self) -> Catalog:
        if self._catalog is None:
            raise RuntimeError("Catalog has not been loaded")
        return self._catalog

    @property
    def is_loaded(self) -> bool:
        return self._catalog is not None

    def load(self, source: CatalogSource, base_dir: Optional[Path] = None) -> Catalog:
        """Load and validate a catalog descriptor.

        Args:
            source: Path to a YAML/JSON descriptor or an already-parsed mapping
            base_dir: Directory relative script paths resolve against
                (defaults to the descriptor's directory, or the cwd for mappings)

        Returns:
            The validated, immutable catalog

        Raises:
            CatalogLoadError: Malformed, duplicate, dangling or cyclic catalog
        """
        source_name: Optional[str] = None
        if isinstance(source, Mapping):
            data = source
            base = base_dir or Path.cwd()
        else:
            path = Path(source).expanduser()
            source_name = str(path)
            data = self._read(path)
            base = base_dir or path.resolve().parent

        units, tabs = _parse_descriptor(data, base, source_name)
        _check_duplicates(units, tabs, source_name)
        _check_references(units, tabs, source_name)
        _check_acyclic(units, source_name)

        hidden = self._evaluate_preconditions(units) if self.validate_preconditions else {}

        catalog = Catalog(tabs=tabs, units=units, hidden=hidden, source=source_name)
        self._catalog = catalog
        logger.info(
            f"Loaded catalog with {len(tabs)} tabs and {len(units)} units"
            + (f" ({len(hidden)} hidden by preconditions)" if hidden else "")
        )
        return catalog

    @staticmethod
    def _read(path: Path) -> Any:
        try:
            return load_structured_file(path)
        except FileNotFoundError as e:
            raise MalformedCatalogError(f"Catalog file not found: {path}", source=str(path)) from e
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise MalformedCatalogError(
                f"Cannot read catalog {path}: {e}", source=str(path)
            ) from e

    @staticmethod
    def _evaluate_preconditions(units: List[SetupUnit]) -> Dict[str, str]:
        hidden: Dict[str, str] = {}
        for unit in units:
            failed = [p.describe() for p in unit.preconditions if not p.is_met()]
            if failed:
                hidden[unit.id] = "preconditions not met: " + ", ".join(failed)
                logger.debug(f"Hiding unit {unit.id}: {hidden[unit.id]}")
        return hidden

    def get_tab(self, tab_id: str) -> Optional[Tab]:
        return self.catalog.get_tab(tab_id)

    def get_unit(self, unit_id: str) -> Optional[SetupUnit]:
        return self.catalog.get_unit(unit_id)

    def all_tabs(self) -> List[Tab]:
        return self.catalog.all_tabs()

    def all_units(self) -> List[SetupUnit]:
        return self.catalog.all_units()

    def tab_of(self, unit_id: str) -> Optional[str]:
        return self.catalog.tab_of(unit_id)

    def search(self, query: str) -> List[SetupUnit]:
        return self.catalog.search(query)


def load_catalog(source: CatalogSource, validate_preconditions: bool = True) -> Catalog:
    """Load a catalog without keeping a store around."""
    return CatalogStore(validate_preconditions=validate_preconditions).load(source)


def _parse_descriptor(data: Any, base: Path, source: Optional[str]):
    if not isinstance(data, Mapping):
        raise MalformedCatalogError("Catalog descriptor must be a mapping", source=source)

    raw_units = data.get("units") or []
    raw_tabs = data.get("tabs") or []
    if not isinstance(raw_units, list) or not isinstance(raw_tabs, list):
        raise MalformedCatalogError("'units' and 'tabs' must be lists", source=source)
    if not raw_tabs:
        raise MalformedCatalogError("Catalog declares no tabs", source=source)

    units: List[SetupUnit] = [_parse_unit(entry, base, source) for entry in raw_units]
    tabs: List[Tab] = []

    for entry in raw_tabs:
        if not isinstance(entry, Mapping):
            raise MalformedCatalogError(f"Tab entry must be a mapping: {entry!r}", source=source)
        unit_ids: List[str] = []
        for item in entry.get("units") or []:
            # Units may be declared inline inside their tab
            if isinstance(item, Mapping):
                unit = _parse_unit(item, base, source)
                units.append(unit)
                unit_ids.append(unit.id)
            else:
                unit_ids.append(str(item))
        try:
            tabs.append(Tab(
                id=entry.get("id"),
                label=entry.get("label") or entry.get("name") or entry.get("id"),
                description=entry.get("description") or "",
                unit_ids=tuple(unit_ids),
            ))
        except ValidationError as e:
            raise MalformedCatalogError(
                f"Invalid tab {entry.get('id')!r}: {e}", source=source
            ) from e

    return units, tabs


def _parse_unit(entry: Any, base: Path, source: Optional[str]) -> SetupUnit:
    if not isinstance(entry, Mapping):
        raise MalformedCatalogError(f"Unit entry must be a mapping: {entry!r}", source=source)

    unit_id = entry.get("id")
    try:
        return SetupUnit(
            id=unit_id,
            label=entry.get("label") or entry.get("name") or unit_id,
            description=entry.get("description") or "",
            command=_parse_command(entry, base),
            prerequisites=tuple(entry.get("prerequisites") or ()),
            idempotent=entry.get("idempotent", True),
            enabled=entry.get("enabled", True),
            multi_select=entry.get("multi_select", True),
            preconditions=tuple(_parse_precondition(p) for p in entry.get("preconditions") or ()),
            timeout=entry.get("timeout"),
            env={str(k): str(v) for k, v in (entry.get("env") or {}).items()},
        )
    except (ValidationError, ValueError, TypeError, AttributeError) as e:
        raise MalformedCatalogError(f"Invalid unit {unit_id!r}: {e}", source=source) from e


def _parse_command(entry: Mapping[str, Any], base: Path) -> UnitCommand:
    kinds = [kind for kind in CommandKind if entry.get(kind.value)]
    if len(kinds) != 1:
        raise ValueError("exactly one of 'raw', 'script' or 'argv' is required")

    kind = kinds[0]
    if kind == CommandKind.RAW:
        return UnitCommand(kind=kind, raw=str(entry["raw"]))
    if kind == CommandKind.SCRIPT:
        file = Path(str(entry["script"])).expanduser()
        if not file.is_absolute():
            file = (base / file).resolve()
        return UnitCommand(
            kind=kind,
            file=file,
            executable=str(entry.get("executable") or "sh"),
            args=tuple(str(a) for a in entry.get("args") or ()),
        )
    argv = entry["argv"]
    if isinstance(argv, str):
        raise ValueError("'argv' must be a list of strings")
    return UnitCommand(kind=kind, argv=tuple(str(a) for a in argv))


def _parse_precondition(item: Any) -> Precondition:
    if not isinstance(item, Mapping):
        raise ValueError(f"precondition must be a mapping: {item!r}")
    if "kind" in item:
        return Precondition(**item)
    if len(item) != 1:
        raise ValueError(f"precondition must have exactly one check: {dict(item)!r}")

    key, value = next(iter(item.items()))
    kind = PreconditionKind(key)
    if kind == PreconditionKind.ENV_EQUALS:
        if not isinstance(value, Mapping):
            raise ValueError("env_equals needs a mapping with 'name' and 'value'")
        return Precondition(kind=kind, value=value.get("name"), expected=str(value.get("value")))
    return Precondition(kind=kind, value=str(value))


def _check_duplicates(units: List[SetupUnit], tabs: List[Tab], source: Optional[str]) -> None:
    seen_units = set()
    for unit in units:
        if unit.id in seen_units:
            raise DuplicateIdError(unit.id, kind="unit", source=source)
        seen_units.add(unit.id)

    seen_tabs = set()
    for tab in tabs:
        if tab.id in seen_tabs:
            raise DuplicateIdError(tab.id, kind="tab", source=source)
        seen_tabs.add(tab.id)


def _check_references(units: List[SetupUnit], tabs: List[Tab], source: Optional[str]) -> None:
    known = {unit.id for unit in units}
    for tab in tabs:
        for unit_id in tab.unit_ids:
            if unit_id not in known:
                raise UnknownUnitError(unit_id, referenced_by=f"tab {tab.id}", source=source)
    for unit in units:
        for prerequisite in unit.prerequisites:
            if prerequisite not in known:
                raise UnknownUnitError(prerequisite, referenced_by=f"unit {unit.id}", source=source)


def _check_acyclic(units: List[SetupUnit], source: Optional[str]) -> None:
    """Depth-first search over prerequisite edges in declaration order.

    Uses an explicit stack so long prerequisite chains cannot exhaust the
    interpreter's recursion limit.
    """
    edges = {unit.id: unit.prerequisites for unit in units}
    visiting, done = set(), set()

    for unit in units:
        if unit.id in done:
            continue
        path: List[str] = [unit.id]
        stack = [iter(edges[unit.id])]
        visiting.add(unit.id)
        while stack:
            prerequisite = next(stack[-1], None)
            if prerequisite is None:
                finished = path.pop()
                stack.pop()
                visiting.discard(finished)
                done.add(finished)
                continue
            if prerequisite in visiting:
                start = path.index(prerequisite)
                raise CyclicDependencyError(path[start:] + [prerequisite], source=source)
            if prerequisite not in done:
                visiting.add(prerequisite)
                path.append(prerequisite)
                stack.append(iter(edges[prerequisite]))
