"""
Adapter contract shared by every adapter kind.

An adapter wraps one configured terminology service. All adapters expose the
same operation vocabulary (:data:`OPERATIONS`); a kind implements a subset of it
by declaring the names in ``operations`` and defining a coroutine named after
the operation with a leading underscore (``get_schemes`` -> ``_get_schemes``).
Calling an operation the kind does not implement raises a ``NOT_IMPLEMENTED``
error immediately, and so do missing required arguments (VALIDATION).

Public operation methods never perform I/O themselves: they hand the
implementation to the :class:`~vocabulary_federation.adapters.pipeline.RequestPipeline`,
which takes care of initialization, deduplication, cancellation, result
normalization, enrichment and error classification.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Dict, FrozenSet, List, Mapping, Optional, Tuple

import httpx

from ..catalog import CatalogEntry, Entry, EntryKind, ResultPage, concepts_of_mapping, is_contained_in, mapping_identifiers
from ..config import FederationSettings, SourceCredentials
from ..core.capabilities import Action, Capability, CapabilitySet, CapabilityValue, is_authorized_for
from ..core.errors import FederationError, classify_error
from ..core.logging import get_logger
from ..core.registry import ENDPOINT_NAMES, SourceDescriptor
from .api.base import BaseAPIClient, RetryConfig
from .pipeline import RequestHandle, RequestPipeline

if TYPE_CHECKING:  # pragma: no cover
    from ..federation.engine import FederationEngine

OPERATIONS: Mapping[str, Optional[EntryKind]] = {
    "get_registries": EntryKind.REGISTRY,
    "get_schemes": EntryKind.SCHEME,
    "voc_search": EntryKind.SCHEME,
    "get_types": EntryKind.TYPE,
    "suggest": None,
    "voc_suggest": None,
    "get_concordances": EntryKind.CONCORDANCE,
    "get_occurrences": EntryKind.OCCURRENCE,
    "get_top": EntryKind.CONCEPT,
    "get_concepts": EntryKind.CONCEPT,
    "get_narrower": EntryKind.CONCEPT,
    "get_ancestors": EntryKind.CONCEPT,
    "search": EntryKind.CONCEPT,
    "get_mapping": EntryKind.MAPPING,
    "get_mappings": EntryKind.MAPPING,
    "post_mapping": EntryKind.MAPPING,
    "post_mappings": EntryKind.MAPPING,
    "put_mapping": EntryKind.MAPPING,
    "patch_mapping": EntryKind.MAPPING,
    "delete_mapping": None,
    "delete_mappings": None,
    "get_annotations": EntryKind.ANNOTATION,
    "post_annotation": EntryKind.ANNOTATION,
    "put_annotation": EntryKind.ANNOTATION,
    "patch_annotation": EntryKind.ANNOTATION,
    "delete_annotation": None,
}

# Bulk operations provided by the base class on top of a single-item operation.
BULK_OPERATIONS: Mapping[str, str] = {
    "post_mappings": "post_mapping",
    "delete_mappings": "delete_mapping",
}

# Arguments an operation cannot run without; checked before the request is submitted.
REQUIRED_ARGUMENTS: Mapping[str, Tuple[str, ...]] = {
    "get_top": ("scheme",),
    "get_concepts": ("concepts",),
    "get_narrower": ("concept",),
    "get_ancestors": ("concept",),
    "search": ("search",),
    "suggest": ("search",),
    "voc_search": ("search",),
    "voc_suggest": ("search",),
    "get_mapping": ("mapping",),
    "post_mapping": ("mapping",),
    "put_mapping": ("mapping",),
    "patch_mapping": ("mapping",),
    "delete_mapping": ("mapping",),
    "post_mappings": ("mappings",),
    "delete_mappings": ("mappings",),
    "post_annotation": ("annotation",),
    "put_annotation": ("annotation",),
    "patch_annotation": ("annotation",),
    "delete_annotation": ("annotation",),
}


@dataclass(slots=True)
class VerificationResult:
    """
    Structured response returned by adapter verification routines.

    Attributes
    ----------
    success:
        Indicates whether the verification succeeded.
    message:
        Human-readable summary.
    details:
        Optional structured metadata such as resolved endpoints and supported
        capabilities.
    """

    success: bool
    message: str
    details: Optional[Mapping[str, object]] = None


class BaseAdapter:
    """
    Base class for adapter kinds. Do not instantiate directly.

    Subclasses set ``kind_name`` (the ``provider`` value in registry
    documents), optionally ``provider_type`` (BARTOC API type URI) and
    ``supports`` (static capability declarations), list the operations they
    implement in ``operations`` and override :meth:`_prepare` /
    :meth:`_setup` instead of the constructor.
    """

    kind_name: ClassVar[str] = ""
    provider_type: ClassVar[Optional[str]] = None
    supports: ClassVar[Mapping[str, CapabilityValue]] = {}
    operations: ClassVar[FrozenSet[str]] = frozenset()
    stored: ClassVar[Optional[bool]] = None

    def __init__(
        self,
        descriptor: SourceDescriptor,
        *,
        settings: Optional[FederationSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connectivity_probe: Optional[Callable[[], Optional[bool]]] = None,
    ) -> None:
        self.descriptor = descriptor.copy()
        self.endpoints = self.descriptor.endpoints
        settings = settings or FederationSettings()
        self.languages: List[str] = list(settings.languages)
        self.auth = SourceCredentials()
        self.server_config: Dict[str, Any] = {}
        self.capabilities = CapabilitySet(type(self).supports)
        self.engine: Optional["FederationEngine"] = None
        self.logger = get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}", extra={"source": self.uri})
        self.client = BaseAPIClient(
            timeout=settings.timeout,
            retry=RetryConfig(count=settings.retry_count),
            languages=lambda: self.languages,
            bearer_token=self._bearer_token,
            transport=transport,
        )
        self._pipeline = RequestPipeline(self, connectivity_probe=connectivity_probe)
        self._init_task: Optional["asyncio.Task[None]"] = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(uri={self.uri!r})"

    # ------------------------------------------------------------------ metadata

    @property
    def uri(self) -> str:
        return self.descriptor.uri

    @property
    def pref_label(self) -> Dict[str, str]:
        return self.descriptor.pref_label

    @property
    def notation(self) -> List[str]:
        return self.descriptor.notation

    @property
    def definition(self) -> Dict[str, Any]:
        return self.descriptor.definition

    @property
    def schemes(self) -> Optional[List[Dict[str, Any]]]:
        return self.descriptor.schemes

    @property
    def excluded_schemes(self) -> List[Dict[str, Any]]:
        return self.descriptor.excluded_schemes

    @property
    def is_stored(self) -> Optional[bool]:
        return self.descriptor.stored if self.descriptor.stored is not None else type(self).stored

    @property
    def api(self) -> Optional[str]:
        return self.endpoints.get("api")

    @property
    def pending_requests(self) -> int:
        return len(self._pipeline.pending)

    @classmethod
    def descriptor_for_endpoint(cls, url: Optional[str], scheme: Optional[Entry] = None) -> Optional[SourceDescriptor]:
        """
        Build a descriptor for an API endpoint advertised by a scheme.

        Used by the engine's owner resolution. Kinds that cannot serve
        arbitrary endpoints return ``None``.
        """

        return None

    # ------------------------------------------------------------------ initialization

    async def initialize(self) -> None:
        """Run the one-time initialization; concurrent callers share it."""

        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(self._initialize())
        await asyncio.shield(self._init_task)

    @property
    def initialized(self) -> bool:
        return self._init_task is not None and self._init_task.done() and self._init_task.exception() is None

    async def _initialize(self) -> None:
        try:
            await self._prepare()
            status = await self._probe_status()
            if isinstance(status, Mapping) and status:
                config = status.get("config")
                self.server_config = dict(config) if isinstance(config, Mapping) else {}
                for name in ENDPOINT_NAMES:
                    if self.descriptor.is_unset(name):
                        # A successful probe means missing endpoints are not implied.
                        self.endpoints[name] = status.get(name) or None
            await self._setup()
        except Exception as exc:
            error = classify_error(exc, connectivity_probe=self._pipeline.connectivity_probe)
            if error is exc:
                raise
            raise error from exc
        self.capabilities.freeze()
        self.logger.debug("Adapter initialized", extra={"capabilities": [name.value for name in self.capabilities if self.capabilities.supports(name)]})

    async def _probe_status(self) -> Optional[Mapping[str, Any]]:
        status = self.endpoints.get("status")
        if isinstance(status, Mapping):
            return status
        if not isinstance(status, str) or not status:
            return None
        try:
            response = await self.client.get_json(status)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                self.endpoints["status"] = None
            self.logger.warning("Status probe failed", extra={"url": status, "status_code": exc.response.status_code})
            return None
        except httpx.HTTPError as exc:
            self.logger.warning("Status probe failed", extra={"url": status, "error": str(exc)})
            return None
        return response.data if isinstance(response.data, Mapping) else None

    async def _prepare(self) -> None:
        """Hook executed before the status probe."""

    async def _setup(self) -> None:
        """Hook executed after the status probe; capabilities freeze afterwards."""

    # ------------------------------------------------------------------ configuration

    def set_auth(self, *, key: Optional[str] = None, bearer_token: Optional[str] = None) -> None:
        """Set credentials; omitted values keep their current setting."""

        if key is not None:
            self.auth.key = key
        if bearer_token is not None:
            self.auth.bearer_token = bearer_token

    def set_retry_config(self, **overrides: Any) -> RetryConfig:
        return self.client.set_retry_config(**overrides)

    @property
    def retry_config(self) -> RetryConfig:
        return self.client.retry

    def _bearer_token(self) -> Optional[str]:
        if self.capabilities.supports(Capability.AUTH):
            return self.auth.bearer_token
        return None

    def is_authorized_for(
        self,
        capability: Capability | str,
        action: Action | str,
        user: Optional[Mapping[str, Any]] = None,
        cross_user: bool = False,
    ) -> bool:
        return is_authorized_for(
            self.capabilities,
            capability=capability,
            action=action,
            user=user,
            cross_user=cross_user,
            server_config=self.server_config,
            auth_key=self.auth.key,
        )

    def supports_scheme(self, scheme: Optional[Entry]) -> bool:
        if not scheme:
            return False
        if self.schemes is None:
            return not is_contained_in(scheme, self.excluded_schemes)
        return is_contained_in(scheme, self.schemes)

    # ------------------------------------------------------------------ dispatch

    def implements(self, operation: str) -> bool:
        return operation in type(self).operations

    def request(self, operation: str, **options: Any) -> RequestHandle:
        """Submit ``operation`` through the request pipeline."""

        if operation not in OPERATIONS:
            raise FederationError.validation("operation", f"unknown operation '{operation}'")
        if not self.implements(operation):
            raise FederationError.not_implemented(operation)
        self.validate_request(operation, options)
        implementation = getattr(self, f"_{operation}")
        return self._pipeline.submit(operation, implementation, OPERATIONS[operation], options)

    def validate_request(self, operation: str, options: Mapping[str, Any]) -> None:
        """
        Reject missing arguments before anything is sent.

        Checks ``REQUIRED_ARGUMENTS`` and then the kind's optional
        ``_validate_<operation>(**options)`` hook. Both raise VALIDATION
        errors synchronously, ahead of initialization and network access.
        """

        for name in REQUIRED_ARGUMENTS.get(operation, ()):
            value = options.get(name)
            if not value or (name == "concept" and not value.get("uri")):
                raise FederationError.validation(name)
        hook = getattr(self, f"_validate_{operation}", None)
        if hook is not None:
            hook(**options)

    def get_registries(self, **options: Any) -> RequestHandle:
        return self.request("get_registries", **options)

    def get_schemes(self, **options: Any) -> RequestHandle:
        return self.request("get_schemes", **options)

    def voc_search(self, **options: Any) -> RequestHandle:
        return self.request("voc_search", **options)

    def get_types(self, **options: Any) -> RequestHandle:
        return self.request("get_types", **options)

    def suggest(self, **options: Any) -> RequestHandle:
        return self.request("suggest", **options)

    def voc_suggest(self, **options: Any) -> RequestHandle:
        return self.request("voc_suggest", **options)

    def get_concordances(self, **options: Any) -> RequestHandle:
        return self.request("get_concordances", **options)

    def get_occurrences(self, **options: Any) -> RequestHandle:
        return self.request("get_occurrences", **options)

    def get_top(self, **options: Any) -> RequestHandle:
        return self.request("get_top", **options)

    def get_concepts(self, **options: Any) -> RequestHandle:
        return self.request("get_concepts", **options)

    def get_narrower(self, **options: Any) -> RequestHandle:
        return self.request("get_narrower", **options)

    def get_ancestors(self, **options: Any) -> RequestHandle:
        return self.request("get_ancestors", **options)

    def search(self, **options: Any) -> RequestHandle:
        return self.request("search", **options)

    def get_mapping(self, **options: Any) -> RequestHandle:
        return self.request("get_mapping", **options)

    def get_mappings(self, **options: Any) -> RequestHandle:
        return self.request("get_mappings", **options)

    def post_mapping(self, **options: Any) -> RequestHandle:
        return self.request("post_mapping", **options)

    def post_mappings(self, **options: Any) -> RequestHandle:
        return self.request("post_mappings", **options)

    def put_mapping(self, **options: Any) -> RequestHandle:
        return self.request("put_mapping", **options)

    def patch_mapping(self, **options: Any) -> RequestHandle:
        return self.request("patch_mapping", **options)

    def delete_mapping(self, **options: Any) -> RequestHandle:
        return self.request("delete_mapping", **options)

    def delete_mappings(self, **options: Any) -> RequestHandle:
        return self.request("delete_mappings", **options)

    def get_annotations(self, **options: Any) -> RequestHandle:
        return self.request("get_annotations", **options)

    def post_annotation(self, **options: Any) -> RequestHandle:
        return self.request("post_annotation", **options)

    def put_annotation(self, **options: Any) -> RequestHandle:
        return self.request("put_annotation", **options)

    def patch_annotation(self, **options: Any) -> RequestHandle:
        return self.request("patch_annotation", **options)

    def delete_annotation(self, **options: Any) -> RequestHandle:
        return self.request("delete_annotation", **options)

    # ------------------------------------------------------------------ bulk helpers

    async def _post_mappings(self, mappings: Optional[List[Entry]] = None, **options: Any) -> ResultPage[Any]:
        return await self._for_each_mapping("_post_mapping", EntryKind.MAPPING, mappings, options)

    async def _delete_mappings(self, mappings: Optional[List[Entry]] = None, **options: Any) -> ResultPage[Any]:
        return await self._for_each_mapping("_delete_mapping", None, mappings, options)

    async def _for_each_mapping(self, method: str, kind: Optional[EntryKind], mappings: Optional[List[Entry]], options: Dict[str, Any]) -> ResultPage[Any]:
        implementation = getattr(self, method)
        errors: Dict[int, BaseException] = {}

        async def _call(index: int, mapping: Entry) -> Any:
            try:
                result = RequestPipeline.normalize(await implementation(mapping=mapping, **options), kind)
            except Exception as exc:
                errors[index] = classify_error(exc, connectivity_probe=self._pipeline.connectivity_probe)
                return None
            return result.first() if isinstance(result, ResultPage) else result

        items = await asyncio.gather(*(_call(index, mapping) for index, mapping in enumerate(mappings)))
        return ResultPage(items=list(items), total_count=len(items), errors=errors)

    # ------------------------------------------------------------------ enrichment

    def enrich(self, entries: List[Any], kind: EntryKind) -> None:
        """Apply the enrichment hook for ``kind`` to every non-finalized entry."""

        adjust: Callable[[CatalogEntry], None] = {
            EntryKind.CONCEPT: self.adjust_concept,
            EntryKind.SCHEME: self.adjust_scheme,
            EntryKind.MAPPING: self.adjust_mapping,
            EntryKind.CONCORDANCE: self.adjust_owned,
            EntryKind.ANNOTATION: self.adjust_owned,
        }.get(kind, _leave_unchanged)
        for entry in entries:
            if isinstance(entry, CatalogEntry) and not entry.finalized:
                adjust(entry)

    def adjust_owned(self, entry: CatalogEntry) -> None:
        entry.owner = self

    def adjust_concept(self, concept: CatalogEntry) -> None:
        concept.owner = self
        concept.accessors["narrower"] = lambda **options: self.get_narrower(concept=concept, **options)
        concept.accessors["ancestors"] = lambda **options: self.get_ancestors(concept=concept, **options)
        concept.accessors["details"] = lambda **options: self._concept_details(concept, **options)
        for relation in ("broader", "narrower", "ancestors"):
            related = concept.get(relation)
            if isinstance(related, list) and related and None not in related:
                wrapped = [CatalogEntry.wrap(item, EntryKind.CONCEPT) for item in related]
                for item in wrapped:
                    if not item.finalized:
                        self.adjust_concept(item)
                concept[relation] = wrapped

    async def _concept_details(self, concept: CatalogEntry, **options: Any) -> Optional[CatalogEntry]:
        page = await self.get_concepts(concepts=[concept], **options)
        return page.first()

    def adjust_scheme(self, scheme: CatalogEntry) -> None:
        previous = scheme.owner
        resolved = self.engine.resolve_owner(scheme) if self.engine is not None else None
        if resolved is None or resolved is previous or resolved.api == self.api:
            scheme.owner = previous or self
        else:
            scheme.owner = resolved
            # Child lists reported by the previous source may not apply to the new owner.
            for key in ("concepts", "topConcepts"):
                children = scheme.get(key)
                if isinstance(children, list) and (not children or children[0] is None):
                    del scheme[key]
        # Accessors look the owner up on every call; the engine may still reassign it.
        scheme.accessors["top"] = lambda **options: scheme.owner.get_top(scheme=scheme, **options)
        scheme.accessors["types"] = lambda **options: scheme.owner.get_types(scheme=scheme, **options)
        scheme.accessors["suggest"] = lambda search, **options: scheme.owner.suggest(search=search, scheme=scheme, **options)

    def adjust_mapping(self, mapping: CatalogEntry) -> None:
        for side in ("from", "to"):
            key = f"{side}Scheme"
            if not mapping.get(key):
                concepts = concepts_of_mapping(mapping, side)
                schemes = (concepts[0].get("inScheme") or [None]) if concepts else [None]
                mapping[key] = schemes[0]
        mapping.owner = self
        if not mapping.get("identifier"):
            identifiers = mapping_identifiers(mapping)
            if identifiers:
                mapping["identifier"] = identifiers

    # ------------------------------------------------------------------ verification

    async def verify(self) -> VerificationResult:
        """Initialize the adapter and report resolved endpoints and capabilities."""

        try:
            await self.initialize()
        except FederationError as exc:
            return VerificationResult(
                success=False,
                message=f"Initialization failed: {exc}",
                details={"source": self.uri, "error_kind": exc.kind.value, "status_code": exc.status_code},
            )
        supported = [name.value for name in self.capabilities if self.capabilities.supports(name)]
        return VerificationResult(
            success=True,
            message=f"{self.kind_name} source initialized with {len(supported)} capabilities.",
            details={
                "source": self.uri,
                "capabilities": supported,
                "endpoints": {name: value for name, value in self.endpoints.items() if isinstance(value, str)},
            },
        )


def _leave_unchanged(entry: CatalogEntry) -> None:
    return None

