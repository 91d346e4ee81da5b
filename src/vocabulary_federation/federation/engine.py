"""
Federation engine coordinating every configured source.

The engine owns one adapter per source descriptor, fans listing operations out
to all of them, merges duplicate entries by identifier equality and resolves
the adapter that owns an entry. Kinds are looked up in an explicit
:class:`AdapterKindRegistry` so custom adapters can be plugged in.
"""

from __future__ import annotations

import asyncio
import inspect
from logging import LoggerAdapter
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Type

import httpx

from ..adapters.api.base import concat_url
from ..adapters.api.concept_api import ConceptApiAdapter
from ..adapters.api.mappings_api import MappingsApiAdapter
from ..adapters.api.occurrences_api import OccurrencesApiAdapter
from ..adapters.api.skosmos import SkosmosApiAdapter
from ..adapters.base import BULK_OPERATIONS, OPERATIONS, BaseAdapter
from ..catalog import CONCEPT_SCHEME_TYPE, CatalogEntry, Entry, EntryKind, ResultPage, is_contained_in, merge_entries, plain, same_entry, sort_schemes
from ..config import FederationSettings, SecretsBundle
from ..core.capabilities import Capability, CapabilitySet
from ..core.errors import ErrorKind, FederationError, classify_error
from ..core.logging import get_logger, log_progress
from ..core.registry import SourceDescriptor, SourceRegistry
from ..core.repeat import RepeatCallback, Repeater

SCHEME_CHILD_FIELDS = ("concepts", "topConcepts")
BUILD_INFO_FILE = "build-info.json"


class AdapterKindRegistry:
    """
    Registered adapter kinds keyed by ``kind_name``.

    :meth:`register` validates that a class honours the adapter contract before
    accepting it, so a broken kind fails at registration rather than on the
    first request.
    """

    def __init__(self, kinds: Sequence[Type[BaseAdapter]] = ()) -> None:
        self._kinds: Dict[str, Type[BaseAdapter]] = {}
        for kind in kinds:
            self.register(kind)

    def __iter__(self) -> Iterator[Type[BaseAdapter]]:
        return iter(self._kinds.values())

    def __contains__(self, name: object) -> bool:
        return name in self._kinds

    def __len__(self) -> int:
        return len(self._kinds)

    @classmethod
    def default(cls) -> "AdapterKindRegistry":
        return cls([ConceptApiAdapter, MappingsApiAdapter, SkosmosApiAdapter, OccurrencesApiAdapter])

    def register(self, kind: Any) -> Type[BaseAdapter]:
        if not inspect.isclass(kind) or not issubclass(kind, BaseAdapter) or kind is BaseAdapter:
            raise FederationError(ErrorKind.INVALID_ADAPTER, f"{kind!r} is not an adapter kind")
        if not kind.kind_name:
            raise FederationError(ErrorKind.INVALID_ADAPTER, f"{kind.__name__} does not define kind_name")
        for operation in kind.operations:
            if operation not in OPERATIONS:
                raise FederationError(ErrorKind.INVALID_ADAPTER, f"{kind.__name__} declares unknown operation '{operation}'")
            if operation in BULK_OPERATIONS and BULK_OPERATIONS[operation] not in kind.operations:
                raise FederationError(
                    ErrorKind.INVALID_ADAPTER,
                    f"{kind.__name__} declares '{operation}' without '{BULK_OPERATIONS[operation]}'",
                )
            if not inspect.iscoroutinefunction(getattr(kind, f"_{operation}", None)):
                raise FederationError(ErrorKind.INVALID_ADAPTER, f"{kind.__name__} does not implement '{operation}'")
        self._kinds[kind.kind_name] = kind
        return kind

    def get(self, name: str) -> Optional[Type[BaseAdapter]]:
        return self._kinds.get(name)

    def names(self) -> List[str]:
        return list(self._kinds)

    def create(self, descriptor: SourceDescriptor, **kwargs: Any) -> BaseAdapter:
        kind = self._kinds.get(descriptor.provider)
        if kind is None:
            raise FederationError(ErrorKind.INVALID_ADAPTER, f"Unknown adapter kind '{descriptor.provider}' for source {descriptor.uri}")
        return kind(descriptor, **kwargs)


def _child_rank(entry: Entry, child_field: str) -> int:
    children = entry.get(child_field)
    if not isinstance(children, list):
        return 0
    return 2 if children else 1


class FederationEngine:
    """
    Entry point for querying all configured sources as one catalog.

    Parameters
    ----------
    registry:
        Source descriptors in priority order (earlier means higher priority).
    kinds:
        Adapter kinds available for descriptors and owner resolution.
    settings:
        Runtime settings handed to every adapter.
    secrets:
        Per-source credentials applied with ``set_auth`` when an adapter is
        created.
    transport:
        Optional HTTPX transport shared by all adapters, mainly for tests.
    connectivity_probe:
        Callable reporting whether the machine appears online.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        *,
        kinds: Optional[AdapterKindRegistry] = None,
        settings: Optional[FederationSettings] = None,
        secrets: Optional[SecretsBundle] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connectivity_probe: Optional[Callable[[], Optional[bool]]] = None,
    ) -> None:
        self.registry = registry
        self.kinds = kinds or AdapterKindRegistry.default()
        self.settings = settings or FederationSettings()
        self.secrets = secrets or SecretsBundle(source_path=None, data={})
        self.transport = transport
        self.connectivity_probe = connectivity_probe
        self.logger: LoggerAdapter = get_logger(self.__class__.__name__)
        self._adapters: Optional[List[BaseAdapter]] = None
        self._resolved: Dict[Tuple[Optional[str], Optional[str]], BaseAdapter] = {}

    # ------------------------------------------------------------------ adapters

    @property
    def adapters(self) -> List[BaseAdapter]:
        if self._adapters is None:
            self._adapters = [self.initialize_adapter(descriptor) for descriptor in self.registry]
        return self._adapters

    def adapter_for_uri(self, uri: str) -> Optional[BaseAdapter]:
        return next((adapter for adapter in self.adapters if adapter.uri == uri), None)

    def initialize_adapter(self, descriptor: SourceDescriptor) -> BaseAdapter:
        """Create an adapter for ``descriptor`` and attach it to this engine."""

        adapter = self.kinds.create(
            descriptor,
            settings=self.settings,
            transport=self.transport,
            connectivity_probe=self.connectivity_probe,
        )
        adapter.engine = self
        credentials = self.secrets.credentials_for(descriptor.uri)
        if credentials is not None:
            adapter.set_auth(key=credentials.key, bearer_token=credentials.bearer_token)
        return adapter

    def priority(self, adapter: Optional[BaseAdapter]) -> int:
        """Position in the configured source list; adapters outside it rank last."""

        adapters = self.adapters
        for index, candidate in enumerate(adapters):
            if candidate is adapter:
                return index
        return len(adapters)

    # ------------------------------------------------------------------ listing

    def _should_query(self, adapter: BaseAdapter, operation: str, capability: Capability | str) -> bool:
        if not adapter.implements(operation):
            return False
        # Before initialization only static declarations are known.
        return not adapter.initialized or adapter.capabilities.supports(capability)

    async def list_merged(
        self,
        operation: str,
        capability: Capability | str,
        *,
        child_field: str = "concepts",
        skip: Sequence[str] = SCHEME_CHILD_FIELDS,
        **options: Any,
    ) -> List[CatalogEntry]:
        """
        Run ``operation`` on every eligible source and merge the results.

        Entries are merged as soon as each source answers. Of two
        identifier-equal entries, the one with more child data in
        ``child_field`` wins (non-empty list, then empty list, then absent);
        ties go to the source configured first. The loser's fields except
        ``skip`` are merged into the winner without overwriting populated
        values. Failing sources are logged and contribute nothing.
        """

        merged: List[CatalogEntry] = []
        queried = [adapter for adapter in self.adapters if self._should_query(adapter, operation, capability)]

        async def _collect(adapter: BaseAdapter) -> None:
            result = await adapter.request(operation, **options)
            items = result.items if isinstance(result, ResultPage) else list(result or [])
            for item in items:
                if item is None:
                    continue
                entry = CatalogEntry.wrap(item, OPERATIONS[operation] or EntryKind.SCHEME)
                entry.owner = adapter
                self._merge_into(merged, entry, child_field=child_field, skip=skip)

        results = await asyncio.gather(*(_collect(adapter) for adapter in queried), return_exceptions=True)
        for adapter, outcome in zip(queried, results):
            if isinstance(outcome, BaseException):
                self.logger.warning(
                    "Source failed while listing",
                    extra={"operation": operation, "source": adapter.uri, "error": str(outcome)},
                )
        log_progress(
            self.logger,
            "Merged listing",
            phase=operation,
            status="done",
            extra={"sources": len(queried), "entries": len(merged)},
        )
        return merged

    def _merge_into(self, merged: List[CatalogEntry], entry: CatalogEntry, *, child_field: str, skip: Sequence[str]) -> None:
        index = next((position for position, existing in enumerate(merged) if same_entry(existing, entry)), None)
        if index is None:
            merged.append(entry)
            return
        existing = merged[index]
        rank, other_rank = _child_rank(entry, child_field), _child_rank(existing, child_field)
        if rank != other_rank:
            replace = rank > other_rank
        else:
            replace = self.priority(entry.owner) < self.priority(existing.owner)
        if replace:
            entry.data = merge_entries(entry, existing, skip=skip)
            merged[index] = entry
        else:
            existing.data = merge_entries(existing, entry, skip=skip)

    async def get_schemes(self, **options: Any) -> List[CatalogEntry]:
        """Schemes of all sources, merged, re-resolved and sorted."""

        schemes = await self.list_merged("get_schemes", Capability.SCHEMES, child_field="concepts", skip=SCHEME_CHILD_FIELDS, **options)
        for scheme in schemes:
            scheme["__DETAILSLOADED__"] = 1
            if not scheme.get("type"):
                scheme["type"] = [CONCEPT_SCHEME_TYPE]
            previous = scheme.owner
            resolved = self.resolve_owner(scheme, ignore_owner=True)
            if resolved is not None and (previous is None or resolved.api != previous.api):
                scheme.owner = resolved
        return sort_schemes(schemes)

    # ------------------------------------------------------------------ owner resolution

    def resolve_owner(self, entry: Entry, data_type: Optional[str] = "concepts", *, ignore_owner: bool = False) -> Optional[BaseAdapter]:
        """
        Determine the adapter serving ``entry``.

        An entry that already has an owner keeps it unless ``ignore_owner`` is
        set. Otherwise every ``{type, url}`` hint in ``entry["API"]`` is tried:
        a cached adapter for the same pair is reused (and learns about the
        scheme); on a miss the first kind with a matching ``provider_type``
        that supports ``data_type`` and accepts the endpoint is constructed and
        cached. Returns ``None`` when nothing matches.
        """

        owner = getattr(entry, "owner", None)
        if owner is not None and not ignore_owner:
            return owner

        for hint in entry.get("API") or []:
            if not isinstance(hint, dict):
                continue
            key = (hint.get("type"), hint.get("url"))
            cached = self._resolved.get(key)
            if cached is not None:
                if cached.schemes is not None and not is_contained_in(entry, cached.schemes):
                    cached.schemes.append(plain(entry))
                self.logger.debug("Resolved owner from cache", extra={"cache": "hit", "url": key[1], "source": cached.uri})
                return cached
            adapter = self._construct_for_endpoint(key, entry, data_type)
            if adapter is not None:
                self._resolved[key] = adapter
                return adapter
        return None

    def _construct_for_endpoint(self, key: Tuple[Optional[str], Optional[str]], entry: Entry, data_type: Optional[str]) -> Optional[BaseAdapter]:
        api_type, url = key
        for kind in self.kinds:
            if kind.provider_type is None or kind.provider_type != api_type:
                continue
            if data_type and not CapabilitySet(kind.supports).supports(data_type):
                continue
            descriptor = kind.descriptor_for_endpoint(url, plain(entry))
            if descriptor is None:
                continue
            try:
                adapter = self.initialize_adapter(descriptor)
            except FederationError as exc:
                self.logger.warning("Could not construct adapter for endpoint", extra={"url": url, "error": str(exc)})
                continue
            self.logger.debug("Resolved owner from endpoint", extra={"cache": "miss", "url": url, "source": adapter.uri})
            return adapter
        return None

    # ------------------------------------------------------------------ polling

    def repeat(
        self,
        function: Callable[[], Any],
        callback: RepeatCallback,
        *,
        interval: float = 15.0,
        call_immediately: bool = True,
    ) -> Repeater:
        """Call ``function`` repeatedly and report changed results to ``callback``."""

        return Repeater(function, callback, interval=interval, call_immediately=call_immediately)

    def load_build_info(
        self,
        callback: RepeatCallback,
        *,
        url: Optional[str] = None,
        build_info: Any = None,
        interval: float = 60.0,
    ) -> Repeater:
        """
        Watch a ``build-info.json`` document.

        ``callback`` is invoked for errors and when the document changes. The
        first value is reported only when it differs from ``build_info``.
        """

        if not url and not self.settings.cocoda_base_url:
            raise FederationError(ErrorKind.GENERIC, "Could not determine URL to load build config.")
        target = url or concat_url(self.settings.cocoda_base_url, BUILD_INFO_FILE)

        async def _fetch() -> Any:
            try:
                async with httpx.AsyncClient(timeout=self.settings.timeout, transport=self.transport) as client:
                    response = await client.get(target, headers={"Cache-Control": "no-cache"})
                    response.raise_for_status()
                    return response.json()
            except Exception as exc:
                error = classify_error(exc, connectivity_probe=self.connectivity_probe)
                if error is exc:
                    raise
                raise error from exc

        def _notify(error: Optional[BaseException], result: Any, previous: Any) -> None:
            if error is not None:
                callback(error, None, None)
            elif previous is not None:
                callback(None, result, previous)
            elif build_info is not None and result != build_info:
                callback(None, result, build_info)

        return self.repeat(_fetch, _notify, interval=interval)
