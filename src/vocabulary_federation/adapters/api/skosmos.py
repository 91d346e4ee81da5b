"""
Skosmos REST API adapter.

Reference: https://skosmos.org/ (REST API ``rest/v1``)

Skosmos cannot list its vocabularies through the API, so sources configure a
static ``schemes`` list in which every scheme carries the Skosmos vocabulary id
as ``VOCID``::

    - uri: http://coli-conc.gbv.de/registry/skosmos-zbw
      provider: SkosmosApi
      api: https://zbw.eu/beta/skosmos/rest/v1/
      schemes:
        - uri: http://bartoc.org/en/node/313
          VOCID: stw
"""

from __future__ import annotations

import copy
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import urlencode

from ...catalog import Entry, label, plain, same_entry
from ...config import DEFAULT_LANGUAGES
from ...core.cache import BoundedCache
from ...core.capabilities import Capability
from ...core.errors import FederationError
from ...core.registry import SourceDescriptor
from ..base import BaseAdapter
from .base import SchemeApprovals

PROVIDER_TYPE = "http://bartoc.org/api-type/skosmos"
SKOS_CONCEPT = "http://www.w3.org/2004/02/skos/core#Concept"
DEFAULT_SEARCH_LIMIT = 100

_ENDPOINT_PATTERN = re.compile(r"(.+/)([^/]+)/$")
_URI_PATTERN = re.compile(r"^[a-z][a-z0-9+.-]*:\S+$", re.IGNORECASE)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _unique(values: Sequence[Any]) -> List[Any]:
    seen: List[Any] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def to_jskos_concept(
    skosmos_concept: Optional[Mapping[str, Any]],
    *,
    concept: Optional[Entry] = None,
    scheme: Optional[Entry] = None,
    result: Optional[Mapping[str, Any]] = None,
    language: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Convert a Skosmos concept object into a JSKOS concept.

    Parameters
    ----------
    skosmos_concept:
        Concept object as returned by any Skosmos endpoint.
    concept:
        Existing JSKOS data to extend; it is copied, never modified.
    scheme:
        Scheme to set as ``inScheme``.
    result:
        Full response; its ``@context`` expands prefixed type URIs.
    language:
        Language for plain-string labels. Defaults to the concept's ``lang``.
    """

    if not skosmos_concept:
        return None
    converted: Dict[str, Any] = copy.deepcopy(plain(concept)) if concept else {}
    language = language or skosmos_concept.get("lang") or "en"

    converted["uri"] = skosmos_concept.get("uri")
    if scheme:
        converted["inScheme"] = [scheme]

    pref_label = skosmos_concept.get("matchedPrefLabel") or skosmos_concept.get("prefLabel") or skosmos_concept.get("label")
    if isinstance(pref_label, str):
        converted.setdefault("prefLabel", {})[language] = pref_label
    else:
        for item in _as_list(pref_label):
            converted.setdefault("prefLabel", {})[item.get("lang")] = item.get("value")

    alt_label = skosmos_concept.get("altLabel")
    if isinstance(alt_label, str):
        converted.setdefault("altLabel", {})[language] = [alt_label]
    else:
        for item in _as_list(alt_label):
            labels = converted.setdefault("altLabel", {}).setdefault(item.get("lang"), [])
            if item.get("value") not in labels:
                labels.append(item.get("value"))

    notation = skosmos_concept.get("notation") or skosmos_concept.get("skos:notation") or (converted.get("notation") or [None])[0]
    if notation:
        converted["notation"] = [notation.get("value") if isinstance(notation, Mapping) else notation]

    if skosmos_concept.get("broader"):
        converted["broader"] = [{"uri": item} if isinstance(item, str) else item for item in _as_list(skosmos_concept["broader"])]

    has_children = skosmos_concept.get("hasChildren")
    if has_children is True:
        converted["narrower"] = [None]
    elif has_children is False:
        converted["narrower"] = []

    context = (result or {}).get("@context") or {}
    types: List[str] = list(converted.get("type") or [])
    for concept_type in _as_list(skosmos_concept.get("type")):
        if not isinstance(concept_type, str) or not _URI_PATTERN.match(concept_type):
            continue
        prefix = concept_type.split(":", 1)[0]
        if isinstance(context.get(prefix), str):
            concept_type = concept_type.replace(prefix + ":", context[prefix], 1)
        types.append(concept_type)
    converted["type"] = _unique(types) or [SKOS_CONCEPT]
    return converted


class SkosmosApiAdapter(BaseAdapter):
    """Concepts of the configured vocabularies of one Skosmos instance."""

    kind_name = "SkosmosApi"
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
        }
    )

    def __init__(self, descriptor: SourceDescriptor, **kwargs: Any) -> None:
        super().__init__(descriptor, **kwargs)
        self._schemes = SchemeApprovals()
        self._concepts: BoundedCache[str, Dict[str, Any]] = BoundedCache()

    @classmethod
    def descriptor_for_endpoint(cls, url: Optional[str], scheme: Optional[Entry] = None) -> Optional[SourceDescriptor]:
        """Derive the REST base and ``VOCID`` from a vocabulary page URL such as ``.../skosmos/stw/``."""

        if not url or not scheme:
            return None
        match = _ENDPOINT_PATTERN.match(url)
        if not match:
            return None
        configured = plain(scheme)
        configured["VOCID"] = match.group(2)
        return SourceDescriptor(
            uri=url,
            provider=cls.kind_name,
            endpoints={"api": match.group(1) + "rest/v1/"},
            schemes=[configured],
        )

    @property
    def language(self) -> str:
        return self.languages[0] if self.languages else DEFAULT_LANGUAGES[0]

    def _vocid(self, scheme: Optional[Entry]) -> str:
        vocid = scheme.get("VOCID") if scheme else None
        if not vocid and scheme:
            configured = next((item for item in self.schemes or [] if same_entry(item, scheme)), None)
            vocid = configured.get("VOCID") if configured else None
        if not vocid:
            raise FederationError.validation("scheme", "Missing scheme or VOCID property on scheme")
        return vocid

    def _api_url(self, scheme: Optional[Entry], endpoint: str = "", params: Optional[Mapping[str, Any]] = None) -> str:
        if not self.api:
            raise FederationError.missing_endpoint("api")
        query = dict(params or {})
        query.setdefault("lang", self.language)
        return f"{self.api}{self._vocid(scheme)}{endpoint}?{urlencode(query)}"

    async def _vocabulary_info(self, scheme: Entry) -> Optional[Dict[str, Any]]:
        response = await self.client.get_json(self._api_url(scheme, "/"))
        schemes = (response.data or {}).get("conceptschemes") or []
        return next((item for item in schemes if same_entry(item, scheme)), None)

    async def _scheme_uri(self, scheme: Entry) -> Optional[str]:
        known, uri = self._schemes.lookup(scheme)
        if known:
            return uri
        info = await self._vocabulary_info(scheme)
        if info is not None:
            self._schemes.approve(scheme, info["uri"])
            return info["uri"]
        self._schemes.reject(scheme)
        return None

    # Every Skosmos URL is addressed by VOCID, so a scheme without one fails before any request.
    def _validate_get_top(self, *, scheme: Optional[Entry] = None, **_: Any) -> None:
        self._vocid(scheme)

    _validate_get_types = _validate_get_top
    _validate_search = _validate_get_top
    _validate_suggest = _validate_get_top

    def _validate_get_narrower(self, *, concept: Entry, **_: Any) -> None:
        self._vocid((concept.get("inScheme") or [None])[0])

    _validate_get_ancestors = _validate_get_narrower

    async def _get_schemes(self, **_: Any) -> List[Dict[str, Any]]:
        schemes: List[Dict[str, Any]] = []
        for scheme in self.schemes or []:
            info = await self._vocabulary_info(scheme)
            title = info and (info.get("prefLabel") or info.get("label") or info.get("title"))
            if title:
                scheme.setdefault("prefLabel", {})[self.language] = title
            if info is not None and not self._schemes.lookup(scheme)[0]:
                self._schemes.approve(scheme, info["uri"])
            schemes.append(scheme)
        return schemes

    async def _get_top(self, *, scheme: Optional[Entry] = None, **_: Any) -> List[Dict[str, Any]]:
        scheme_uri = await self._scheme_uri(scheme)
        if not scheme_uri:
            raise FederationError.validation("scheme", "Missing or unsupported scheme or VOCID property on scheme")
        response = await self.client.get_json(self._api_url(scheme, "/topConcepts", {"scheme": scheme_uri}))
        concepts = []
        for item in (response.data or {}).get("topconcepts") or []:
            concept = to_jskos_concept(item, scheme=scheme, language=self.language)
            if concept is not None:
                concept["topConceptOf"] = [scheme]
                concepts.append(concept)
        return concepts

    async def _get_concepts(self, *, concepts: Any = None, **_: Any) -> List[Dict[str, Any]]:
        loaded: List[Dict[str, Any]] = []
        for concept in _as_list(concepts):
            if not concept or not concept.get("uri"):
                raise FederationError.validation("concept", "Missing concept URI")
            cached = self._concepts.get(concept["uri"])
            if cached is not None:
                loaded.append(copy.deepcopy(cached))
                continue
            result = await self._load_concept(concept)
            if result is not None:
                self._concepts.put(concept["uri"], result)
                loaded.append(copy.deepcopy(result))
        return loaded

    async def _load_concept(self, concept: Entry) -> Optional[Dict[str, Any]]:
        schemes = concept.get("inScheme") or [None]
        reference = {"uri": concept.get("uri"), "inScheme": concept.get("inScheme")}
        response = await self.client.get_json(self._api_url(schemes[0], "/data", {"uri": concept["uri"], "format": "application/json"}))
        result = response.data or {}
        graph = result.get("graph") or []
        found = next((item for item in graph if same_entry(item, reference)), None)
        if found is None:
            return None
        converted = to_jskos_concept(found, concept=reference, result=result)
        for relation in ("broader", "narrower"):
            relatives = _as_list(found.get(relation) or converted.get(relation))
            related = []
            for relative in relatives:
                target = {"uri": relative} if isinstance(relative, str) else relative
                match = next((item for item in graph if same_entry(item, target)), None) if target else None
                related.append(to_jskos_concept(match, scheme=schemes[0], result=result))
            converted[relation] = related
        converted["ancestors"] = []
        return converted

    async def _get_narrower(self, *, concept: Optional[Entry] = None, **_: Any) -> List[Dict[str, Any]]:
        scheme = (concept.get("inScheme") or [None])[0]
        response = await self.client.get_json(self._api_url(scheme, "/children", {"uri": concept["uri"]}))
        return [to_jskos_concept(item, scheme=scheme) for item in (response.data or {}).get("narrower") or []]

    async def _get_ancestors(self, *, concept: Optional[Entry] = None, **_: Any) -> List[Dict[str, Any]]:
        scheme = (concept.get("inScheme") or [None])[0]
        response = await self.client.get_json(self._api_url(scheme, "/broaderTransitive", {"uri": concept["uri"]}))
        chain = (response.data or {}).get("broaderTransitive") or {}
        ancestors: List[Dict[str, Any]] = []
        visited = {concept["uri"]}
        uri = ((chain.get(concept["uri"]) or {}).get("broader") or [None])[0]
        # Walk up the broader chain; the map also contains the concept itself.
        while uri and uri not in visited and chain.get(uri):
            visited.add(uri)
            ancestors.append(to_jskos_concept(chain[uri], scheme=scheme))
            uri = (chain[uri].get("broader") or [None])[0]
        return ancestors

    async def _search(
        self,
        *,
        search: Optional[str] = None,
        scheme: Optional[Entry] = None,
        limit: Optional[int] = None,
        types: Sequence[str] = (),
        **_: Any,
    ) -> List[Dict[str, Any]]:
        params = {
            "query": f"{search}*",
            "unique": 1,
            "maxhits": limit or self.descriptor.suggest_result_limit or DEFAULT_SEARCH_LIMIT,
            "type": " ".join(types),
        }
        response = await self.client.get_json(self._api_url(scheme, "/search", params))
        return [to_jskos_concept(item, scheme=scheme) for item in (response.data or {}).get("results") or []]

    async def _suggest(self, *, search: Optional[str] = None, **options: Any) -> List[Any]:
        """OpenSearch Suggest format: ``[search, labels, descriptions, uris]``."""

        concepts = await self._search(search=search, **options)
        suggestions: List[Any] = [search, [], [], []]
        for concept in concepts:
            notation = (concept.get("notation") or [""])[0]
            suggestions[1].append(f"{notation} {label(concept) or ''}".strip() if notation else label(concept) or "")
            suggestions[2].append("")
            suggestions[3].append(concept.get("uri"))
        return suggestions

    async def _get_types(self, *, scheme: Optional[Entry] = None, **_: Any) -> List[Dict[str, Any]]:
        response = await self.client.get_json(self._api_url(scheme, "/types"))
        data = response.data or {}
        language = (data.get("@context") or {}).get("@language") or self.language
        types = []
        for item in data.get("types") or []:
            if item.get("uri") == SKOS_CONCEPT:
                continue
            item = dict(item)
            if item.get("label"):
                item["prefLabel"] = {language: item.pop("label")}
            types.append(item)
        return types

