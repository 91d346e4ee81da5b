"""
JSKOS Concept API adapter.

Reference: https://github.com/gbv/jskos-server

Configure with ``provider: ConceptApi`` and the API base URL as ``api``. When
the ``/status`` endpoint answers, the remaining endpoints are taken from it;
otherwise the default paths are appended to ``api``.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from ...catalog import Entry, all_uris, is_contained_in, same_entry
from ...core.capabilities import Capability
from ...core.errors import FederationError
from ...core.registry import SourceDescriptor
from ..base import BaseAdapter
from .base import ApiResponse, SchemeApprovals, concat_url

PROVIDER_TYPE = "http://bartoc.org/api-type/jskos"
DEFAULT_ENDPOINTS: Mapping[str, str] = {
    "schemes": "/voc",
    "top": "/voc/top",
    "concepts": "/voc/concepts",
    "data": "/data",
    "narrower": "/narrower",
    "ancestors": "/ancestors",
    "types": "/types",
    "suggest": "/suggest",
    "search": "/search",
}
DEFAULT_PARAMS: Mapping[str, str] = {"properties": "uri,prefLabel,notation,inScheme"}
DEFAULT_SEARCH_LIMIT = 100


class ConceptApiAdapter(BaseAdapter):
    """Concept schemes and concepts served by a JSKOS API."""

    kind_name = "ConceptApi"
    provider_type = PROVIDER_TYPE
    supports = {
        Capability.SCHEMES: True,
        Capability.TOP: True,
        Capability.DATA: True,
        Capability.CONCEPTS: True,
        Capability.NARROWER: True,
        Capability.ANCESTORS: True,
        Capability.TYPES: True,
        Capability.SUGGEST: True,
        Capability.SEARCH: True,
    }
    operations = frozenset(
        {
            "get_schemes",
            "get_top",
            "get_concepts",
            "get_narrower",
            "get_ancestors",
            "get_types",
            "suggest",
            "search",
            "voc_suggest",
            "voc_search",
        }
    )

    def __init__(self, descriptor: SourceDescriptor, **kwargs: Any) -> None:
        super().__init__(descriptor, **kwargs)
        self._schemes = SchemeApprovals()

    @classmethod
    def descriptor_for_endpoint(cls, url: Optional[str], scheme: Optional[Entry] = None) -> Optional[SourceDescriptor]:
        if not url:
            return None
        return SourceDescriptor(uri=url, provider=cls.kind_name, endpoints={"api": url})

    async def _prepare(self) -> None:
        if self.api and self.descriptor.is_unset("status"):
            self.endpoints["status"] = concat_url(self.api, "/status")

    async def _setup(self) -> None:
        if self.api:
            for name, path in DEFAULT_ENDPOINTS.items():
                if self.descriptor.is_unset(name):
                    self.endpoints[name] = concat_url(self.api, path)
        for capability in (Capability.SCHEMES, Capability.TOP, Capability.DATA, Capability.NARROWER, Capability.ANCESTORS, Capability.TYPES, Capability.SUGGEST, Capability.SEARCH):
            self.capabilities[capability] = bool(self.endpoints.get(capability.value))
        self.capabilities[Capability.CONCEPTS] = bool(self.endpoints.get("concepts")) or self.capabilities.supports(Capability.DATA)
        auth = self.server_config.get("auth")
        self.capabilities[Capability.AUTH] = isinstance(auth, Mapping) and auth.get("key") is not None

    def _endpoint(self, name: str) -> Any:
        value = self.endpoints.get(name)
        if not value:
            raise FederationError.missing_endpoint(name)
        return value

    async def _scheme_uri(self, scheme: Entry) -> Optional[str]:
        """Resolve the backend's main URI for ``scheme``, caching approvals and rejections."""

        known, uri = self._schemes.lookup(scheme)
        if known:
            return uri
        response = await self._get_schemes(params={"uri": "|".join(all_uris(scheme))})
        match = next((item for item in response.data or [] if same_entry(item, scheme)), None)
        if match is not None:
            self._schemes.approve(scheme, match["uri"])
            return match["uri"]
        self._schemes.reject(scheme)
        return None

    async def _get_schemes(self, *, params: Optional[Mapping[str, Any]] = None, **_: Any) -> ApiResponse:
        url = self._endpoint("schemes")
        response = await self.client.get_json(url, params={**DEFAULT_PARAMS, "limit": 500, **(params or {})})
        if self.schemes is not None and isinstance(response.data, list):
            # Only schemes listed in the registry document are served by this source.
            response.data = [item for item in response.data if is_contained_in(item, self.schemes)]
        return response

    async def _get_top(self, *, scheme: Optional[Entry] = None, params: Optional[Mapping[str, Any]] = None, **_: Any) -> Any:
        url = self._endpoint("top")
        scheme_uri = await self._scheme_uri(scheme)
        if not scheme_uri:
            raise FederationError.validation("scheme", "Requested vocabulary seems to be unsupported by this API.")
        if isinstance(url, list):
            return url
        return await self.client.get_json(url, params={**DEFAULT_PARAMS, "limit": 10000, **(params or {}), "uri": scheme_uri})

    async def _get_concepts(self, *, concepts: Any = None, params: Optional[Mapping[str, Any]] = None, **_: Any) -> ApiResponse:
        if not self.capabilities.supports(Capability.DATA):
            raise FederationError.missing_endpoint("data")
        if not isinstance(concepts, (list, tuple)):
            concepts = [concepts]
        uris = [concept.get("uri") for concept in concepts if concept.get("uri")]
        return await self.client.get_json(
            self._endpoint("data"),
            params={**DEFAULT_PARAMS, "limit": 500, **(params or {}), "uri": "|".join(uris)},
        )

    async def _get_narrower(self, *, concept: Optional[Entry] = None, params: Optional[Mapping[str, Any]] = None, **_: Any) -> ApiResponse:
        return await self._related("narrower", concept, params)

    async def _get_ancestors(self, *, concept: Optional[Entry] = None, params: Optional[Mapping[str, Any]] = None, **_: Any) -> ApiResponse:
        return await self._related("ancestors", concept, params)

    async def _related(self, endpoint: str, concept: Optional[Entry], params: Optional[Mapping[str, Any]]) -> ApiResponse:
        url = self._endpoint(endpoint)
        return await self.client.get_json(url, params={**DEFAULT_PARAMS, "limit": 10000, **(params or {}), "uri": concept["uri"]})

    async def _suggest(
        self,
        *,
        search: Optional[str] = None,
        scheme: Optional[Entry] = None,
        use: str = "notation,label",
        types: Sequence[str] = (),
        sort: str = "score",
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        params: Optional[Mapping[str, Any]] = None,
        **_: Any,
    ) -> ApiResponse:
        extra = {"voc": (scheme or {}).get("uri", ""), "type": "|".join(types), "use": use, "sort": sort}
        return await self._search_endpoint("suggest", search, limit, offset, {**(params or {}), **extra})

    async def _search(
        self,
        *,
        search: Optional[str] = None,
        scheme: Optional[Entry] = None,
        types: Sequence[str] = (),
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        params: Optional[Mapping[str, Any]] = None,
        **_: Any,
    ) -> ApiResponse:
        extra = {"voc": (scheme or {}).get("uri", ""), "type": "|".join(types)}
        return await self._search_endpoint("search", search, limit, offset, {**(params or {}), **extra})

    async def _voc_suggest(
        self,
        *,
        search: Optional[str] = None,
        use: str = "notation,label",
        sort: str = "score",
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        params: Optional[Mapping[str, Any]] = None,
        **_: Any,
    ) -> ApiResponse:
        return await self._search_endpoint("voc-suggest", search, limit, offset, {**(params or {}), "use": use, "sort": sort})

    async def _voc_search(
        self,
        *,
        search: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        params: Optional[Mapping[str, Any]] = None,
        **_: Any,
    ) -> ApiResponse:
        return await self._search_endpoint("voc-search", search, limit, offset, dict(params or {}))

    async def _search_endpoint(self, endpoint: str, search: Optional[str], limit: Optional[int], offset: Optional[int], params: Dict[str, Any]) -> ApiResponse:
        url = self._endpoint(endpoint)
        limit = limit or self.descriptor.suggest_result_limit or DEFAULT_SEARCH_LIMIT
        # Some registries use URL templates.
        url = url.replace("{searchTerms}", search)
        return await self.client.get_json(
            url,
            params={
                **DEFAULT_PARAMS,
                **params,
                "limit": limit,
                "count": limit,
                "offset": offset or 0,
                "search": search,
                "query": search,
            },
        )

    async def _get_types(self, *, scheme: Optional[Entry] = None, params: Optional[Mapping[str, Any]] = None, **_: Any) -> Any:
        url = self._endpoint("types")
        if isinstance(url, list):
            return url
        query: Dict[str, Any] = dict(params or {})
        scheme_uri = await self._scheme_uri(scheme) if scheme else None
        if scheme_uri:
            query["uri"] = scheme_uri
        return await self.client.get_json(url, params=query)
