from __future__ import annotations

import httpx
import pytest
from conftest import RecordingTransport, json_response

from vocabulary_federation.adapters.api.occurrences_api import DEFAULT_MAPPING_TYPE, OccurrencesApiAdapter, occurrence_to_mapping
from vocabulary_federation.core.capabilities import Capability
from vocabulary_federation.core.errors import ErrorKind, FederationError
from vocabulary_federation.core.registry import SourceDescriptor

S1 = {"uri": "http://example.org/s1"}
S2 = {"uri": "http://example.org/s2"}
C1 = {"uri": "http://example.org/c1", "inScheme": [S1]}
D1 = {"uri": "http://example.org/d1", "inScheme": [S2]}
D2 = {"uri": "http://example.org/d2", "inScheme": [S2]}
OCCURRENCES = {
    C1["uri"]: [{"memberSet": [C1, D1], "count": 3}, {"memberSet": [C1, D2], "count": 10}, None],
    D1["uri"]: [{"memberSet": [D1, C1], "count": 3}],
}


def make_adapter(voc_responses=None):
    voc_responses = list(voc_responses or [])

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/voc":
            if voc_responses:
                return voc_responses.pop(0)
            return json_response([S1, S2])
        return json_response(OCCURRENCES.get(request.url.params.get("member"), []))

    transport = RecordingTransport(handler)
    descriptor = SourceDescriptor(uri="http://example.org/registry/occurrences", provider="OccurrencesApi", endpoints={"api": "https://occ.example.org/api/"})
    return OccurrencesApiAdapter(descriptor, transport=transport), transport


def occurrence_requests(transport):
    return [request for request in transport.requests if request.url.path == "/api/"]


@pytest.mark.asyncio
async def test_occurrences_are_deduplicated_and_sorted():
    adapter, transport = make_adapter()

    page = await adapter.get_occurrences(concepts=[C1, D1])

    assert [occurrence["count"] for occurrence in page] == [10, 3]
    assert page.total_count == 2
    assert page.url is None
    params = occurrence_requests(transport)[0].url.params
    assert params["scheme"] == "*"
    assert params["threshold"] == "5"
    assert adapter.capabilities.supports(Capability.OCCURRENCES)
    assert adapter.is_stored is False


@pytest.mark.asyncio
async def test_occurrence_responses_are_cached():
    adapter, transport = make_adapter()

    first = await adapter.get_occurrences(from_=C1)
    second = await adapter.get_occurrences(concepts=[C1])

    assert len(occurrence_requests(transport)) == 1
    assert first.url.startswith("https://occ.example.org/api/?")
    assert [occurrence["count"] for occurrence in second] == [10, 3]


@pytest.mark.asyncio
async def test_unsupported_concepts_are_rejected():
    adapter, transport = make_adapter()

    with pytest.raises(FederationError) as excinfo:
        await adapter.get_occurrences(concepts=[{"uri": "http://example.org/x", "inScheme": [{"uri": "http://example.org/other"}]}])

    assert excinfo.value.kind is ErrorKind.VALIDATION
    assert occurrence_requests(transport) == []


@pytest.mark.asyncio
async def test_failed_scheme_listing_is_retried_on_next_call():
    adapter, transport = make_adapter(voc_responses=[httpx.Response(500)])

    with pytest.raises(FederationError) as excinfo:
        await adapter.get_occurrences(concepts=[C1])
    assert excinfo.value.kind is ErrorKind.VALIDATION

    page = await adapter.get_occurrences(concepts=[C1])
    assert len(page) == 2
    assert [request.url.path for request in transport.requests].count("/api/voc") == 2


@pytest.mark.asyncio
async def test_occurrences_as_mappings():
    adapter, _ = make_adapter()

    page = await adapter.get_mappings(from_=C1)

    mapping = page.first()
    assert mapping.owner is adapter
    assert mapping["from"]["memberSet"][0]["uri"] == C1["uri"]
    assert mapping["to"]["memberSet"][0]["uri"] == D2["uri"]
    assert mapping["fromScheme"] == S1
    assert mapping["toScheme"] == S2
    assert mapping["type"] == [DEFAULT_MAPPING_TYPE]
    assert mapping["_occurrence"]["count"] == 10


def test_occurrence_to_mapping_swaps_contradicting_sides():
    mapping = occurrence_to_mapping({"memberSet": [D1, C1], "count": 3}, from_scheme=S1)

    assert mapping["from"] == {"memberSet": [C1]}
    assert mapping["fromScheme"] == S1
    assert mapping["to"] == {"memberSet": [D1]}
    assert mapping["toScheme"] == S2
    assert any(identifier.startswith("urn:jskos:mapping:members:") for identifier in mapping["identifier"])


def test_occurrence_with_single_member():
    mapping = occurrence_to_mapping({"memberSet": [C1], "count": 1}, to_scheme=S2)

    assert mapping["to"] == {"memberSet": []}
    assert mapping["toScheme"] == S2
    assert mapping["fromScheme"] == S1


def test_occurrences_without_concepts_fail_before_any_request():
    adapter, transport = make_adapter()

    for call in (lambda: adapter.get_occurrences(), lambda: adapter.get_mappings(concepts=[None])):
        with pytest.raises(FederationError) as excinfo:
            call()
        assert excinfo.value.kind is ErrorKind.VALIDATION

    assert transport.requests == []
