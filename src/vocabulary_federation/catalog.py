"""
Catalog entry model and JSKOS helpers.

Backends return JSKOS-shaped JSON (https://gbv.github.io/jskos/). The request
pipeline wraps each object into a :class:`CatalogEntry` that remembers the
adapter owning it, and collections into a :class:`ResultPage` carrying the total
count and canonical request URL.
"""

from __future__ import annotations

import hashlib
import json
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Generic, Iterable, Iterator, List, Mapping, Optional, Sequence, TypeVar, Union

from .core.errors import ErrorKind, FederationError

if TYPE_CHECKING:  # pragma: no cover
    from .adapters.base import BaseAdapter

T = TypeVar("T")

CONCEPT_SCHEME_TYPE = "http://www.w3.org/2004/02/skos/core#ConceptScheme"
LABEL_FIELDS = ("prefLabel", "altLabel", "hiddenLabel", "scopeNote", "definition", "editorialNote")
MAPPING_FIELDS = (
    "uri",
    "identifier",
    "from",
    "to",
    "fromScheme",
    "toScheme",
    "type",
    "creator",
    "contributor",
    "created",
    "modified",
    "note",
    "partOf",
    "mappingRelevance",
)


class EntryKind(str, Enum):
    """Entity types flowing through the pipeline."""

    REGISTRY = "Registries"
    SCHEME = "Schemes"
    TYPE = "Types"
    CONCORDANCE = "Concordances"
    OCCURRENCE = "Occurrences"
    CONCEPT = "Concepts"
    MAPPING = "Mappings"
    ANNOTATION = "Annotations"


Entry = Union["CatalogEntry", Mapping[str, Any]]


@dataclass(eq=False, slots=True)
class CatalogEntry:
    """
    A normalized scheme, concept, mapping or annotation.

    ``owner`` is a non-owning reference to the adapter that serves follow-up
    requests for this entry. ``accessors`` holds lazy loaders attached during
    enrichment (``narrower``, ``ancestors``, ``details``, ``top``, ...).
    Entries flagged ``finalized`` are passed through enrichment unchanged.
    """

    data: Dict[str, Any]
    kind: EntryKind
    owner: Optional["BaseAdapter"] = field(default=None, repr=False)
    finalized: bool = False
    accessors: Dict[str, Callable[..., Any]] = field(default_factory=dict, repr=False)

    @classmethod
    def wrap(cls, value: Entry, kind: EntryKind) -> "CatalogEntry":
        if isinstance(value, CatalogEntry):
            return value
        return cls(data=dict(value), kind=kind, finalized=bool(value.get("__SAVED__")))

    @property
    def uri(self) -> Optional[str]:
        return self.data.get("uri")

    @property
    def identifiers(self) -> List[str]:
        return all_uris(self)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __delitem__(self, key: str) -> None:
        del self.data[key]

    def __contains__(self, key: object) -> bool:
        return key in self.data

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def same_as(self, other: Entry) -> bool:
        return same_entry(self, other)

    def fetch(self, accessor: str, **options: Any) -> Any:
        """Invoke a lazy accessor attached by the owning adapter."""

        loader = self.accessors.get(accessor)
        if loader is None:
            raise FederationError(ErrorKind.NOT_IMPLEMENTED, f"Accessor '{accessor}' is not available on this {self.kind.value} entry")
        return loader(**options)

    def to_dict(self) -> Dict[str, Any]:
        return plain(self)


@dataclass(slots=True)
class ResultPage(Generic[T]):
    """
    Normalized collection result.

    ``errors`` maps item positions to the exception raised for that item by
    bulk operations such as ``post_mappings``.
    """

    items: List[T]
    total_count: int
    url: Optional[str] = None
    errors: Dict[int, BaseException] = field(default_factory=dict)

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __getitem__(self, index: int) -> T:
        return self.items[index]

    def first(self) -> Optional[T]:
        return self.items[0] if self.items else None


def _raw(entry: Entry) -> Mapping[str, Any]:
    return entry.data if isinstance(entry, CatalogEntry) else entry


def plain(value: Any) -> Any:
    """Convert entries (recursively) into plain JSON-compatible structures."""

    if isinstance(value, CatalogEntry):
        return plain(value.data)
    if isinstance(value, Mapping):
        return {key: plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [plain(item) for item in value]
    return value


def all_uris(entry: Optional[Entry]) -> List[str]:
    """Return the primary URI followed by all alias identifiers."""

    if not entry:
        return []
    raw = _raw(entry)
    uris: List[str] = []
    uri = raw.get("uri")
    if isinstance(uri, str) and uri:
        uris.append(uri)
    for identifier in raw.get("identifier") or []:
        if isinstance(identifier, str) and identifier and identifier not in uris:
            uris.append(identifier)
    return uris


def same_entry(left: Optional[Entry], right: Optional[Entry]) -> bool:
    """Identifier equality: any shared URI or alias makes two entries the same."""

    if not left or not right:
        return False
    right_uris = set(all_uris(right))
    return any(uri in right_uris for uri in all_uris(left))


def is_contained_in(entry: Optional[Entry], entries: Optional[Iterable[Entry]]) -> bool:
    if not entry or not entries:
        return False
    return any(same_entry(entry, other) for other in entries)


def normalize(value: Any, *, _key: Optional[str] = None) -> Any:
    """
    Apply unicode NFC normalization to every string.

    Values of label maps additionally lose surrounding whitespace.
    """

    if isinstance(value, str):
        text = unicodedata.normalize("NFC", value)
        return text.strip() if _key in LABEL_FIELDS else text
    if isinstance(value, Mapping):
        if _key in LABEL_FIELDS:
            return {lang: normalize(item, _key=_key) for lang, item in value.items()}
        return {key: normalize(item, _key=key) for key, item in value.items()}
    if isinstance(value, list):
        return [normalize(item, _key=_key) for item in value]
    return value


def merge_entries(winner: Entry, loser: Entry, *, skip: Sequence[str] = ()) -> Dict[str, Any]:
    """
    Deep-merge ``loser`` into ``winner`` without overwriting populated fields.

    URIs of both sides are merged into ``identifier``. Keys listed in ``skip``
    are never taken from ``loser``.
    """

    result = _merge_values(plain(_raw(winner)), {key: value for key, value in plain(_raw(loser)).items() if key not in skip})
    uris = all_uris(winner) + [uri for uri in all_uris(loser) if uri not in all_uris(winner)]
    aliases = [uri for uri in uris if uri != result.get("uri")]
    if aliases:
        result["identifier"] = aliases
    return result


def _merge_values(target: Any, source: Any) -> Any:
    if isinstance(target, dict) and isinstance(source, Mapping):
        merged = dict(target)
        for key, value in source.items():
            if key in ("uri", "identifier"):
                continue
            if key not in merged or _is_empty(merged[key]):
                merged[key] = value
            else:
                merged[key] = _merge_values(merged[key], value)
        if "uri" not in merged and isinstance(source.get("uri"), str):
            merged["uri"] = source["uri"]
        return merged
    if isinstance(target, list) and isinstance(source, list):
        # Lists of JSKOS objects are unioned by identifier equality.
        if all(isinstance(item, Mapping) for item in target + source):
            merged_list = list(target)
            for item in source:
                if not is_contained_in(item, merged_list):
                    merged_list.append(item)
            return merged_list
        return target
    return target


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def label(entry: Entry, languages: Sequence[str] = ("en",)) -> Optional[str]:
    """Pick a preferred label, honouring ``languages`` before any other language."""

    labels = _raw(entry).get("prefLabel") or {}
    if not isinstance(labels, Mapping) or not labels:
        return None
    for language in languages:
        value = labels.get(language)
        if value:
            return value
    return next(iter(labels.values()), None)


def sort_schemes(schemes: Iterable[Entry]) -> List[Any]:
    """Sort schemes by notation, then label, then URI (case-insensitive)."""

    def sort_key(scheme: Entry) -> tuple[str, str, str]:
        raw = _raw(scheme)
        notation = raw.get("notation") or [""]
        first_notation = notation[0] if isinstance(notation, list) and notation else ""
        return (
            str(first_notation or "").lower(),
            str(label(scheme) or "").lower(),
            str(raw.get("uri") or "").lower(),
        )

    return sorted(schemes, key=sort_key)


def concepts_of_mapping(mapping: Entry, side: str) -> List[Mapping[str, Any]]:
    raw = _raw(mapping)
    bundle = raw.get(side) or {}
    if not isinstance(bundle, Mapping):
        return []
    for key in ("memberSet", "memberList", "memberChoice"):
        members = bundle.get(key)
        if isinstance(members, list):
            return [_raw(member) for member in members if member]
    return []


def minify_mapping(mapping: Entry) -> Dict[str, Any]:
    """Strip a mapping down to the fields a mappings API accepts."""

    raw = plain(_raw(mapping))
    minified = {key: raw[key] for key in MAPPING_FIELDS if key in raw}
    for side in ("from", "to"):
        if side in minified:
            minified[side] = {
                "memberSet": [
                    {key: member[key] for key in ("uri", "notation", "inScheme") if key in member}
                    for member in concepts_of_mapping(raw, side)
                ]
            }
    for side in ("fromScheme", "toScheme"):
        scheme = minified.get(side)
        if isinstance(scheme, Mapping):
            minified[side] = {key: scheme[key] for key in ("uri", "notation") if key in scheme}
    return minified


def mapping_identifiers(mapping: Entry) -> List[str]:
    """
    Content and member identifiers for a mapping.

    ``urn:jskos:mapping:content:`` hashes both concept sides plus the mapping
    type; ``urn:jskos:mapping:members:`` hashes the member URIs only.
    """

    sides = {side: sorted(member.get("uri") or "" for member in concepts_of_mapping(mapping, side)) for side in ("from", "to")}
    if not sides["from"] and not sides["to"]:
        return []
    mapping_type = (_raw(mapping).get("type") or ["http://www.w3.org/2004/02/skos/core#mappingRelation"])[0]
    content = json.dumps({"from": sides["from"], "to": sides["to"], "type": mapping_type}, sort_keys=True)
    members = json.dumps(sorted(sides["from"] + sides["to"]))
    return [
        "urn:jskos:mapping:content:" + hashlib.sha1(content.encode("utf-8")).hexdigest(),
        "urn:jskos:mapping:members:" + hashlib.sha1(members.encode("utf-8")).hexdigest(),
    ]


def with_mapping_identifiers(mapping: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``mapping`` with fresh content/member identifiers, keeping other identifiers."""

    identifiers = mapping_identifiers(mapping)
    if not identifiers:
        return mapping
    kept = [item for item in mapping.get("identifier") or [] if not str(item).startswith("urn:jskos:mapping:")]
    updated = dict(mapping)
    updated["identifier"] = kept + identifiers
    return updated
