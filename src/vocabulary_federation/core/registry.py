"""
Source registry declarations and helpers.

The registry is the ordered catalogue of terminology services the engine can
query. Each entry names the adapter kind that talks to the service, the
endpoint URLs it exposes and optional display metadata. Order matters: earlier
entries have higher priority when the engine breaks merge ties.

Descriptors are loaded from YAML documents so that operators can maintain the
source list without touching Python code.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, MutableMapping, Optional, Sequence

import yaml

from .errors import ErrorKind, FederationError

ENDPOINT_NAMES: Sequence[str] = (
    "api",
    "status",
    "schemes",
    "top",
    "data",
    "concepts",
    "narrower",
    "ancestors",
    "types",
    "suggest",
    "search",
    "voc-suggest",
    "voc-search",
    "mappings",
    "concordances",
    "annotations",
    "occurrences",
    "reconcile",
)

DEFAULT_REGISTRY_RESOURCE = ("vocabulary_federation.resources.sources", "default.yaml")


class RegistryLoadError(FederationError):
    """Raised when a registry document cannot be parsed or validated."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorKind.VALIDATION, message)


@dataclass(slots=True)
class SourceDescriptor:
    """
    Configuration of a single terminology service.

    Parameters
    ----------
    uri:
        Unique identifier of the source.
    provider:
        Adapter kind name (e.g. ``ConceptApi``, ``MappingsApi``).
    endpoints:
        Endpoint URLs keyed by the names in :data:`ENDPOINT_NAMES`. A key that
        is absent is *unset* and may be completed from the status probe; a key
        mapped to ``None`` is explicitly unavailable.
    schemes:
        Optional static list of supported schemes. ``None`` means the source
        does not restrict schemes.
    excluded_schemes:
        Schemes the source must never claim.
    pref_label, notation, definition:
        Display metadata.
    stored:
        Whether the source persists data (as opposed to computing it).
    suggest_result_limit:
        Upper bound for suggest queries, when the backend enforces one.
    options:
        Remaining keys from the registry document, kept for adapter kinds
        that need custom settings.
    """

    uri: str
    provider: str
    endpoints: MutableMapping[str, Optional[Any]] = field(default_factory=dict)
    schemes: Optional[List[Dict[str, Any]]] = None
    excluded_schemes: List[Dict[str, Any]] = field(default_factory=list)
    pref_label: Dict[str, str] = field(default_factory=dict)
    notation: List[str] = field(default_factory=list)
    definition: Dict[str, Any] = field(default_factory=dict)
    stored: Optional[bool] = None
    suggest_result_limit: Optional[int] = None
    options: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """Validate internal consistency of the descriptor."""

        if not self.uri or not isinstance(self.uri, str):
            raise RegistryLoadError("Source descriptors require a non-empty 'uri'.")
        if not self.provider or not isinstance(self.provider, str):
            raise RegistryLoadError(f"Source '{self.uri}' requires a non-empty 'provider'.")
        for name in self.endpoints:
            if name not in ENDPOINT_NAMES:
                raise RegistryLoadError(f"Source '{self.uri}' declares unknown endpoint '{name}'.")

    def endpoint(self, name: str) -> Optional[Any]:
        return self.endpoints.get(name)

    def is_unset(self, name: str) -> bool:
        return name not in self.endpoints

    def copy(self) -> "SourceDescriptor":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"uri": self.uri, "provider": self.provider}
        payload.update(self.endpoints)
        if self.schemes is not None:
            payload["schemes"] = list(self.schemes)
        if self.excluded_schemes:
            payload["excludedSchemes"] = list(self.excluded_schemes)
        if self.pref_label:
            payload["prefLabel"] = dict(self.pref_label)
        if self.notation:
            payload["notation"] = list(self.notation)
        if self.definition:
            payload["definition"] = dict(self.definition)
        if self.stored is not None:
            payload["stored"] = self.stored
        if self.suggest_result_limit is not None:
            payload["suggestResultLimit"] = self.suggest_result_limit
        payload.update(self.options)
        return payload

    def to_json(self) -> str:
        """Return a JSON representation useful for CLI output."""

        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)

    @classmethod
    def from_mapping(cls, entry: Mapping[str, Any], *, origin: str = "<mapping>") -> "SourceDescriptor":
        """Convert a registry mapping into a descriptor instance."""

        if not isinstance(entry, Mapping):
            raise RegistryLoadError(f"Invalid entry in '{origin}': expected mapping, got {type(entry)!r}")

        remaining = dict(entry)
        try:
            uri = str(remaining.pop("uri"))
            provider = str(remaining.pop("provider"))
        except KeyError as exc:
            raise RegistryLoadError(f"Missing required key {exc!s} in '{origin}'.") from exc

        endpoints: Dict[str, Optional[Any]] = {}
        schemes: Optional[List[Dict[str, Any]]] = None
        # ``schemes`` is either an endpoint URL or a static scheme list.
        raw_schemes = remaining.pop("schemes", _MISSING)
        if isinstance(raw_schemes, list):
            schemes = [dict(item) for item in raw_schemes if isinstance(item, Mapping)]
        elif raw_schemes is not _MISSING:
            endpoints["schemes"] = raw_schemes
        for name in ENDPOINT_NAMES:
            if name in remaining:
                endpoints[name] = remaining.pop(name)

        limit = remaining.pop("suggestResultLimit", None)
        stored = remaining.pop("stored", None)
        try:
            descriptor = cls(
                uri=uri,
                provider=provider,
                endpoints=endpoints,
                schemes=schemes,
                excluded_schemes=[dict(item) for item in _ensure_list(remaining.pop("excludedSchemes", None))],
                pref_label=dict(remaining.pop("prefLabel", None) or {}),
                notation=[str(item) for item in _ensure_list(remaining.pop("notation", None))],
                definition=dict(remaining.pop("definition", None) or {}),
                stored=None if stored is None else bool(stored),
                suggest_result_limit=None if limit is None else int(limit),
                options=remaining,
            )
        except (TypeError, ValueError) as exc:
            raise RegistryLoadError(f"Invalid field in '{origin}': {exc}") from exc

        descriptor.validate()
        return descriptor


class SourceRegistry:
    """Ordered, in-memory catalogue of :class:`SourceDescriptor` entries."""

    def __init__(self, descriptors: Optional[Sequence[SourceDescriptor]] = None) -> None:
        self._entries: Dict[str, SourceDescriptor] = {}
        for descriptor in descriptors or ():
            self.register(descriptor)

    def __iter__(self) -> Iterator[SourceDescriptor]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, descriptor: SourceDescriptor) -> None:
        """Register or overwrite a descriptor. New entries get the lowest priority."""

        descriptor.validate()
        self._entries[descriptor.uri] = descriptor

    def unregister(self, uri: str) -> None:
        self._entries.pop(uri, None)

    def get(self, uri: str) -> Optional[SourceDescriptor]:
        return self._entries.get(uri)

    def require(self, uri: str) -> SourceDescriptor:
        """Retrieve a descriptor or raise an informative error."""

        descriptor = self.get(uri)
        if descriptor is None:
            raise KeyError(f"Source '{uri}' is not registered.")
        return descriptor

    def list(self, *, provider: Optional[str] = None) -> List[SourceDescriptor]:
        """Return descriptors in priority order, optionally filtered by adapter kind."""

        items = list(self._entries.values())
        if provider:
            return [item for item in items if item.provider == provider]
        return items

    @classmethod
    def from_mapping(cls, payload: Any, *, origin: str = "<mapping>") -> "SourceRegistry":
        """
        Build a registry from a parsed document.

        Accepts either a bare list of descriptors or a mapping with a
        ``registries`` list.
        """

        if isinstance(payload, Mapping):
            payload = payload.get("registries")
        if not isinstance(payload, list):
            raise RegistryLoadError(f"Registry document '{origin}' must contain a list of sources.")
        registry = cls()
        for entry in payload:
            registry.register(SourceDescriptor.from_mapping(entry, origin=origin))
        return registry

    @classmethod
    def from_yaml(cls, path: Path | str) -> "SourceRegistry":
        """Load descriptors from a YAML document."""

        location = Path(path)
        if not location.exists():
            raise RegistryLoadError(f"Registry file '{location}' does not exist.")

        try:
            with location.open("r", encoding="utf-8") as handle:
                payload = yaml.safe_load(handle)
        except yaml.YAMLError as exc:  # pragma: no cover - depends on PyYAML
            raise RegistryLoadError(f"Failed to parse '{location}': {exc}") from exc

        return cls.from_mapping(payload, origin=str(location))

    @classmethod
    def default(cls) -> "SourceRegistry":
        """Load the registry document shipped with the package."""

        package, name = DEFAULT_REGISTRY_RESOURCE
        with resources.as_file(resources.files(package) / name) as path:
            return cls.from_yaml(path)


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


_MISSING: Any = _Missing()


def _ensure_list(value: object | None) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]
