from __future__ import annotations

import asyncio
import copy
import logging
from unittest.mock import patch

import httpx
import pytest
from conftest import RecordingTransport, json_response

from vocabulary_federation.adapters.api.concept_api import PROVIDER_TYPE as JSKOS_TYPE
from vocabulary_federation.adapters.api.concept_api import ConceptApiAdapter
from vocabulary_federation.adapters.api.skosmos import PROVIDER_TYPE as SKOSMOS_TYPE
from vocabulary_federation.adapters.api.skosmos import SkosmosApiAdapter
from vocabulary_federation.adapters.base import BaseAdapter
from vocabulary_federation.catalog import CONCEPT_SCHEME_TYPE, CatalogEntry, EntryKind
from vocabulary_federation.config import FederationSettings, SecretsBundle, SourceCredentials
from vocabulary_federation.core.capabilities import Capability
from vocabulary_federation.core.errors import ErrorKind, FederationError
from vocabulary_federation.core.registry import SourceDescriptor, SourceRegistry
from vocabulary_federation.federation import AdapterKindRegistry, FederationEngine


class StaticAdapter(BaseAdapter):
    """Serves the schemes listed under ``payload`` in its descriptor."""

    kind_name = "Static"
    supports = {Capability.SCHEMES: True}
    operations = frozenset({"get_schemes"})

    async def _get_schemes(self, **_):
        options = self.descriptor.options
        await asyncio.sleep(options.get("delay", 0))
        if options.get("fail"):
            raise RuntimeError("backend exploded")
        return copy.deepcopy(options.get("payload", []))


class UndeclaredAdapter(StaticAdapter):
    kind_name = "Undeclared"
    supports = {}
    calls = 0

    async def _get_schemes(self, **options):
        type(self).calls += 1
        return await super()._get_schemes(**options)


class MappingOnlyAdapter(BaseAdapter):
    kind_name = "MappingOnly"
    operations = frozenset({"get_mappings"})

    async def _get_mappings(self, **_):
        return []


def source(name, provider="Static", **options):
    return SourceDescriptor(uri=f"http://example.org/registry/{name}", provider=provider, options=options)


def make_engine(*descriptors, kinds=(StaticAdapter,), **kwargs):
    return FederationEngine(SourceRegistry(list(descriptors)), kinds=AdapterKindRegistry(list(kinds)), **kwargs)


# ---------------------------------------------------------------- merged listings


@pytest.mark.asyncio
@pytest.mark.parametrize("slow", ["a", "b"])
async def test_scheme_with_children_wins_regardless_of_arrival(slow):
    engine = make_engine(
        source("a", payload=[{"uri": "http://example.org/s1", "concepts": [], "prefLabel": {"en": "From A"}}], delay=0.02 if slow == "a" else 0),
        source("b", payload=[{"uri": "http://example.org/s1", "concepts": [{"uri": "http://example.org/c1"}], "notation": ["S"]}], delay=0.02 if slow == "b" else 0),
    )

    schemes = await engine.get_schemes()

    assert len(schemes) == 1
    scheme = schemes[0]
    assert scheme.owner is engine.adapter_for_uri("http://example.org/registry/b")
    assert scheme["concepts"] == [{"uri": "http://example.org/c1"}]
    assert scheme["prefLabel"] == {"en": "From A"}
    assert scheme["notation"] == ["S"]
    assert scheme["__DETAILSLOADED__"] == 1
    assert scheme["type"] == [CONCEPT_SCHEME_TYPE]


@pytest.mark.asyncio
async def test_empty_child_list_beats_missing_one():
    engine = make_engine(
        source("a", payload=[{"uri": "http://example.org/s1"}]),
        source("b", payload=[{"uri": "http://example.org/s1", "concepts": []}]),
    )

    schemes = await engine.get_schemes()

    assert schemes[0].owner.uri == "http://example.org/registry/b"


@pytest.mark.asyncio
@pytest.mark.parametrize("slow", ["a", "b"])
async def test_ties_go_to_higher_priority_and_identifiers_merge(slow):
    engine = make_engine(
        source("a", payload=[{"uri": "http://example.org/s1", "prefLabel": {"en": "A"}}], delay=0.02 if slow == "a" else 0),
        source(
            "b",
            payload=[{"uri": "http://example.org/s2", "identifier": ["http://example.org/s1"], "prefLabel": {"de": "B"}}],
            delay=0.02 if slow == "b" else 0,
        ),
    )

    schemes = await engine.get_schemes()

    assert len(schemes) == 1
    scheme = schemes[0]
    assert scheme.owner.uri == "http://example.org/registry/a"
    assert scheme.uri == "http://example.org/s1"
    assert scheme["prefLabel"] == {"en": "A", "de": "B"}
    assert scheme["identifier"] == ["http://example.org/s2"]


@pytest.mark.asyncio
async def test_schemes_are_sorted_by_notation_then_label():
    engine = make_engine(
        source(
            "a",
            payload=[
                {"uri": "http://example.org/z", "notation": ["B"]},
                {"uri": "http://example.org/y", "notation": ["a"]},
                {"uri": "http://example.org/x", "prefLabel": {"en": "Zoology"}},
            ],
        )
    )

    schemes = await engine.get_schemes()

    assert [scheme.uri for scheme in schemes] == ["http://example.org/x", "http://example.org/y", "http://example.org/z"]
    assert all(isinstance(scheme, CatalogEntry) and scheme.kind is EntryKind.SCHEME for scheme in schemes)


@pytest.mark.asyncio
async def test_failing_sources_are_logged_and_skipped(caplog):
    engine = make_engine(
        source("a", fail=True),
        source("b", payload=[{"uri": "http://example.org/s1"}]),
    )

    with caplog.at_level(logging.WARNING):
        schemes = await engine.get_schemes()

    assert [scheme.uri for scheme in schemes] == ["http://example.org/s1"]
    assert any(record.getMessage() == "Source failed while listing" for record in caplog.records)


@pytest.mark.asyncio
async def test_only_eligible_sources_are_queried():
    UndeclaredAdapter.calls = 0
    engine = make_engine(
        source("a", provider="Undeclared", payload=[{"uri": "http://example.org/s1"}]),
        source("b", provider="MappingOnly"),
        kinds=(UndeclaredAdapter, MappingOnlyAdapter),
    )

    first = await engine.get_schemes()
    second = await engine.get_schemes()

    assert [scheme.uri for scheme in first] == ["http://example.org/s1"]
    assert second == []
    assert UndeclaredAdapter.calls == 1


@pytest.mark.asyncio
async def test_listed_schemes_move_to_the_adapter_behind_their_api():
    engine = make_engine(
        source(
            "a",
            payload=[{"uri": "http://example.org/s1", "concepts": [None], "API": [{"type": JSKOS_TYPE, "url": "https://jskos.example.org/"}]}],
        ),
        kinds=(StaticAdapter, ConceptApiAdapter),
    )

    schemes = await engine.get_schemes()

    scheme = schemes[0]
    assert isinstance(scheme.owner, ConceptApiAdapter)
    assert scheme.owner.api == "https://jskos.example.org/"
    assert "concepts" not in scheme
    assert engine.priority(scheme.owner) == len(engine.adapters)


# ---------------------------------------------------------------- owner resolution


def test_resolution_is_cached_per_api_type_and_url():
    engine = FederationEngine(SourceRegistry())
    hint = [{"type": SKOSMOS_TYPE, "url": "https://zbw.eu/beta/skosmos/stw/"}]
    stw = {"uri": "http://bartoc.org/en/node/313", "API": hint}
    other = {"uri": "http://example.org/other", "API": hint}

    with patch.object(engine, "initialize_adapter", wraps=engine.initialize_adapter) as constructed:
        first = engine.resolve_owner(stw)
        second = engine.resolve_owner(other)

    assert first is second
    assert constructed.call_count == 1
    assert isinstance(first, SkosmosApiAdapter)
    assert first.engine is engine
    assert first.api == "https://zbw.eu/beta/skosmos/rest/v1/"
    assert [scheme["uri"] for scheme in first.schemes] == ["http://bartoc.org/en/node/313", "http://example.org/other"]
    assert first.schemes[0]["VOCID"] == "stw"


def test_resolution_honours_existing_owner_and_capabilities():
    engine = FederationEngine(SourceRegistry())
    owner = ConceptApiAdapter(SourceDescriptor(uri="http://example.org/registry/owner", provider="ConceptApi"))
    scheme = CatalogEntry(data={"uri": "http://example.org/s1", "API": [{"type": JSKOS_TYPE, "url": "https://jskos.example.org/"}]}, kind=EntryKind.SCHEME)
    scheme.owner = owner

    assert engine.resolve_owner(scheme) is owner
    resolved = engine.resolve_owner(scheme, ignore_owner=True)
    assert isinstance(resolved, ConceptApiAdapter)
    assert resolved is not owner

    assert engine.resolve_owner({"uri": "http://example.org/s2", "API": [{"type": JSKOS_TYPE, "url": "https://other.example.org/"}]}, "mappings") is None
    assert engine.resolve_owner({"uri": "http://example.org/s3", "API": [{"type": "http://bartoc.org/api-type/unknown", "url": "x"}]}) is None
    assert engine.resolve_owner({"uri": "http://example.org/s4"}) is None


def test_credentials_are_applied_to_new_adapters():
    secrets = SecretsBundle(
        source_path=None,
        data={},
        sources={"http://example.org/registry/a": SourceCredentials(key="public-key", bearer_token="token")},
    )
    engine = make_engine(source("a"), source("b"), secrets=secrets)

    first = engine.adapter_for_uri("http://example.org/registry/a")
    assert first.auth.key == "public-key"
    assert first.auth.bearer_token == "token"
    assert engine.adapter_for_uri("http://example.org/registry/b").auth.is_empty()
    assert engine.adapter_for_uri("http://example.org/registry/missing") is None
    assert [engine.priority(adapter) for adapter in engine.adapters] == [0, 1]


# ---------------------------------------------------------------- adapter kinds


def test_default_kinds():
    assert AdapterKindRegistry.default().names() == ["ConceptApi", "MappingsApi", "SkosmosApi", "OccurrencesApi"]
    assert "SkosmosApi" in AdapterKindRegistry.default()


class _Nameless(BaseAdapter):
    operations = frozenset({"get_schemes"})

    async def _get_schemes(self, **_):
        return []


class _MissingImplementation(BaseAdapter):
    kind_name = "MissingImplementation"
    operations = frozenset({"get_top"})


class _SyncImplementation(BaseAdapter):
    kind_name = "SyncImplementation"
    operations = frozenset({"get_schemes"})

    def _get_schemes(self, **_):
        return []


class _UnknownOperation(BaseAdapter):
    kind_name = "UnknownOperation"
    operations = frozenset({"frobnicate"})


class _BulkWithoutSingle(BaseAdapter):
    kind_name = "BulkWithoutSingle"
    operations = frozenset({"post_mappings"})


@pytest.mark.parametrize(
    "kind",
    [object, BaseAdapter, "ConceptApi", _Nameless, _MissingImplementation, _SyncImplementation, _UnknownOperation, _BulkWithoutSingle],
)
def test_invalid_adapter_kinds_are_rejected(kind):
    with pytest.raises(FederationError) as excinfo:
        AdapterKindRegistry().register(kind)
    assert excinfo.value.kind is ErrorKind.INVALID_ADAPTER


def test_unknown_provider_is_rejected_when_adapters_are_created():
    engine = make_engine(source("a", provider="Nonexistent"))

    with pytest.raises(FederationError) as excinfo:
        engine.adapters
    assert excinfo.value.kind is ErrorKind.INVALID_ADAPTER


# ---------------------------------------------------------------- build info


def test_build_info_needs_a_url():
    engine = make_engine()

    with pytest.raises(FederationError) as excinfo:
        engine.load_build_info(lambda *args: None)
    assert excinfo.value.kind is ErrorKind.GENERIC
    assert "build config" in str(excinfo.value)


@pytest.mark.asyncio
async def test_build_info_reports_changes_only():
    responses = [{"version": "1"}, {"version": "1"}, {"version": "2"}]
    transport = RecordingTransport(lambda request: json_response(responses.pop(0) if len(responses) > 1 else responses[0]))
    engine = make_engine(transport=transport, settings=FederationSettings(cocoda_base_url="https://cocoda.example.org/app/"))
    notifications = []
    done = asyncio.Event()

    def callback(*args):
        notifications.append(args)
        repeater.stop()
        done.set()

    repeater = engine.load_build_info(callback, build_info={"version": "1"}, interval=0)
    await asyncio.wait_for(done.wait(), timeout=1)

    assert notifications == [(None, {"version": "2"}, {"version": "1"})]
    assert len(transport.requests) == 3
    assert str(transport.requests[0].url) == "https://cocoda.example.org/app/build-info.json"
    assert transport.requests[0].headers["Cache-Control"] == "no-cache"


@pytest.mark.asyncio
async def test_build_info_reports_first_value_when_it_differs():
    transport = RecordingTransport(lambda request: json_response({"version": "2"}))
    engine = make_engine(transport=transport)
    notifications = []
    done = asyncio.Event()

    def callback(*args):
        notifications.append(args)
        repeater.stop()
        done.set()

    repeater = engine.load_build_info(callback, url="https://cocoda.example.org/build-info.json", build_info={"version": "1"}, interval=0)
    await asyncio.wait_for(done.wait(), timeout=1)

    assert notifications == [(None, {"version": "2"}, {"version": "1"})]


@pytest.mark.asyncio
async def test_build_info_errors_are_classified():
    engine = make_engine(transport=RecordingTransport(lambda request: httpx.Response(503)))
    notifications = []
    done = asyncio.Event()

    def callback(*args):
        notifications.append(args)
        repeater.stop()
        done.set()

    repeater = engine.load_build_info(callback, url="https://cocoda.example.org/build-info.json", interval=0)
    await asyncio.wait_for(done.wait(), timeout=1)

    error, result, previous = notifications[0]
    assert isinstance(error, FederationError)
    assert error.kind is ErrorKind.SERVER
    assert error.status_code == 503
    assert result is None and previous is None
