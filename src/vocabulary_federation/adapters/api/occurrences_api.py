"""
JSKOS Occurrences API adapter.

Reference: https://github.com/gbv/occurrences-api

Configure with ``provider: OccurrencesApi`` and the API base URL as ``api``.
Occurrences are only requested for concepts whose scheme is listed by the
backend's ``voc`` endpoint. ``get_mappings`` reports co-occurrences as mappings.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ...catalog import Entry, ResultPage, is_contained_in, plain, same_entry, with_mapping_identifiers
from ...core.cache import BoundedCache
from ...core.capabilities import Capability
from ...core.errors import FederationError
from ...core.registry import SourceDescriptor
from ..base import BaseAdapter
from .base import ApiResponse, concat_url

DEFAULT_MAPPING_TYPE = "http://www.w3.org/2004/02/skos/core#mappingRelation"
OCCURRENCE_THRESHOLD = 5


class OccurrencesApiAdapter(BaseAdapter):
    """Concept occurrences and co-occurrences from an occurrences API."""

    kind_name = "OccurrencesApi"
    stored = False
    operations = frozenset({"get_occurrences", "get_mappings"})

    def __init__(self, descriptor: SourceDescriptor, **kwargs: Any) -> None:
        super().__init__(descriptor, **kwargs)
        self._cache: BoundedCache[Dict[str, Any], ApiResponse] = BoundedCache()
        self._supported_schemes: List[Dict[str, Any]] = []

    async def _setup(self) -> None:
        self.capabilities[Capability.OCCURRENCES] = True
        self.capabilities[Capability.MAPPINGS] = True

    async def _is_supported(self, scheme: Optional[Entry]) -> bool:
        if not self._supported_schemes and self.api:
            try:
                response = await self.client.get_json(concat_url(self.api, "voc"))
            except httpx.HTTPError as exc:
                # Left empty so that the next call tries again.
                self.logger.warning("Loading supported schemes failed", extra={"url": self.api, "error": str(exc)})
            else:
                self._supported_schemes = list(response.data or [])
        return is_contained_in(scheme, self._supported_schemes)

    async def _fetch(self, params: Dict[str, Any]) -> ApiResponse:
        cached = self._cache.get(params)
        if cached is not None:
            self.logger.debug("Occurrences served from cache", extra={"cache": "hit", "params": params})
            return cached
        if not self.api:
            raise FederationError.missing_endpoint("api")
        response = await self.client.get_json(self.api, params=params)
        self._cache.put(params, response)
        return response

    def _validate_get_occurrences(self, *, from_: Optional[Entry] = None, to: Optional[Entry] = None, concepts: Optional[List[Entry]] = None, **_: Any) -> None:
        if not any(concept for concept in list(concepts or []) + [from_, to]):
            raise FederationError.validation("concepts")

    _validate_get_mappings = _validate_get_occurrences

    async def _get_occurrences(
        self,
        *,
        from_: Optional[Entry] = None,
        to: Optional[Entry] = None,
        concepts: Optional[List[Entry]] = None,
        **_: Any,
    ) -> ResultPage[Any]:
        candidates = [concept for concept in list(concepts or []) + [from_, to] if concept]
        supported = await asyncio.gather(*(self._is_supported((concept.get("inScheme") or [None])[0]) for concept in candidates))
        uris = [concept.get("uri") for concept, ok in zip(candidates, supported) if ok and concept.get("uri")]
        if not uris:
            raise FederationError.validation("concepts")

        responses = await asyncio.gather(*(self._fetch({"member": uri, "scheme": "*", "threshold": OCCURRENCE_THRESHOLD}) for uri in uris))
        occurrences: List[Dict[str, Any]] = []
        seen: List[str] = []
        for response in responses:
            for occurrence in response.data or []:
                if not occurrence:
                    continue
                members = " ".join(sorted(member.get("uri") or "" for member in occurrence.get("memberSet") or []))
                if members in seen:
                    continue
                seen.append(members)
                occurrences.append(occurrence)
        occurrences.sort(key=lambda occurrence: int(occurrence.get("count") or 0), reverse=True)
        url = responses[0].url if len(responses) == 1 else None
        return ResultPage(items=occurrences, total_count=len(occurrences), url=url)

    async def _get_mappings(
        self,
        *,
        from_: Optional[Entry] = None,
        to: Optional[Entry] = None,
        from_scheme: Optional[Entry] = None,
        to_scheme: Optional[Entry] = None,
        **options: Any,
    ) -> ResultPage[Any]:
        page = await self._get_occurrences(from_=from_, to=to, **options)
        from_scheme = ((from_ or {}).get("inScheme") or [None])[0] or from_scheme
        to_scheme = ((to or {}).get("inScheme") or [None])[0] or to_scheme
        mappings = [occurrence_to_mapping(occurrence, from_scheme=from_scheme, to_scheme=to_scheme) for occurrence in page.items]
        return ResultPage(items=mappings, total_count=len(mappings), url=page.url)


def occurrence_to_mapping(
    occurrence: Mapping[str, Any],
    *,
    from_scheme: Optional[Entry] = None,
    to_scheme: Optional[Entry] = None,
) -> Dict[str, Any]:
    """
    Express a co-occurrence as a mapping between its first two members.

    Sides are swapped when the members' schemes contradict the requested
    ``from_scheme``/``to_scheme``.
    """

    members = [plain(member) for member in occurrence.get("memberSet") or []]
    first = members[0] if members else None
    second = members[1] if len(members) > 1 else None
    mapping: Dict[str, Any] = {
        "from": {"memberSet": [first]} if first else None,
        "fromScheme": ((first or {}).get("inScheme") or [None])[0],
        "to": {"memberSet": [second] if second else []},
        "toScheme": ((second or {}).get("inScheme") or [None])[0],
    }
    contradicts_from = from_scheme and mapping["fromScheme"] and not same_entry(mapping["fromScheme"], from_scheme)
    contradicts_to = to_scheme and mapping["toScheme"] and not same_entry(mapping["toScheme"], to_scheme)
    if contradicts_from or contradicts_to:
        mapping["from"], mapping["to"] = mapping["to"], mapping["from"]
        mapping["fromScheme"], mapping["toScheme"] = mapping["toScheme"], mapping["fromScheme"]
    if not mapping["fromScheme"] and from_scheme:
        mapping["fromScheme"] = plain(from_scheme)
    if not mapping["toScheme"] and to_scheme:
        mapping["toScheme"] = plain(to_scheme)
    mapping["type"] = [DEFAULT_MAPPING_TYPE]
    mapping["_occurrence"] = plain(occurrence)
    return with_mapping_identifiers(mapping)
