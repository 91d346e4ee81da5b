from __future__ import annotations

import logging

import httpx
import pytest

from vocabulary_federation.core.cache import BoundedCache
from vocabulary_federation.core.capabilities import Action, Capability, CapabilitySet, Permission, is_authorized_for
from vocabulary_federation.core.errors import ErrorKind, FederationError, classify_error
from vocabulary_federation.core.logging import StructuredLogFormatter, configure_logging, get_logger, log_progress


@pytest.fixture
def reset_logging_handlers():
    root = logging.getLogger()
    existing_handlers = list(root.handlers)
    yield
    root.handlers = existing_handlers


class _ListHandler(logging.Handler):
    def __init__(self, formatter: logging.Formatter):
        super().__init__()
        self.records: list[logging.LogRecord] = []
        self.setFormatter(formatter)

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - trivial
        self.records.append(record)


def _status_error(status: int, method: str = "GET") -> httpx.HTTPStatusError:
    request = httpx.Request(method, "https://api.example.org/voc")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("failed", request=request, response=response)


# ---------------------------------------------------------------- errors


def test_classify_error_maps_status_codes():
    client_error = classify_error(_status_error(404))
    assert client_error.kind is ErrorKind.CLIENT
    assert client_error.status_code == 404
    assert isinstance(client_error.cause, httpx.HTTPStatusError)

    server_error = classify_error(_status_error(503))
    assert server_error.kind is ErrorKind.SERVER
    assert server_error.status_code == 503


def test_classify_error_uses_connectivity_probe():
    request = httpx.Request("GET", "https://api.example.org/voc")
    error = httpx.ConnectError("connection refused", request=request)

    assert classify_error(error).kind is ErrorKind.NETWORK
    assert classify_error(error, connectivity_probe=lambda: False).kind is ErrorKind.NETWORK
    assert classify_error(error, connectivity_probe=lambda: True).kind is ErrorKind.BACKEND_UNAVAILABLE


def test_classify_error_passes_federation_errors_through():
    original = FederationError.validation("scheme")
    assert classify_error(original) is original

    generic = classify_error(ValueError("boom"))
    assert generic.kind is ErrorKind.GENERIC
    assert str(generic) == "boom"


def test_federation_error_default_messages():
    assert str(FederationError(ErrorKind.CANCELLED)) == "Request was cancelled"
    assert "search" in str(FederationError.validation("search"))
    assert FederationError.missing_endpoint("top").kind is ErrorKind.MISSING_ENDPOINT
    assert "get_top" in str(FederationError.not_implemented("get_top"))


# ---------------------------------------------------------------- cache


def test_bounded_cache_evicts_oldest_entries():
    cache: BoundedCache[dict, int] = BoundedCache()
    for index in range(21):
        cache.put({"member": f"c{index}"}, index)

    assert len(cache) == 20
    assert {"member": "c0"} not in cache
    assert cache.get({"member": "c1"}) == 1
    assert cache.get({"member": "c20"}) == 20


def test_bounded_cache_reinsert_moves_key_to_newest():
    cache: BoundedCache[str, int] = BoundedCache(capacity=2)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("a", 3)
    cache.put("c", 4)

    assert list(cache) == ["a", "c"]
    assert cache.get("a") == 3
    assert cache.find(lambda key: key.startswith("c")) == 4

    with pytest.raises(ValueError):
        BoundedCache(capacity=0)


# ---------------------------------------------------------------- capabilities


def test_capability_set_freezes_after_initialization():
    capabilities = CapabilitySet({Capability.SCHEMES: True, "top": 1})
    assert capabilities.supports("schemes")
    assert capabilities["top"] is True
    assert capabilities.supports(Capability.MAPPINGS) is False
    assert capabilities.get("unknown") is False

    capabilities.freeze()
    with pytest.raises(RuntimeError):
        capabilities[Capability.SEARCH] = True


def test_permission_counts_as_declared_even_without_actions():
    capabilities = CapabilitySet({Capability.ANNOTATIONS: Permission()})
    assert capabilities.supports(Capability.ANNOTATIONS)
    assert capabilities.as_dict()["annotations"]["read"] is False


def test_is_authorized_for_plain_capabilities():
    capabilities = CapabilitySet({Capability.MAPPINGS: True})
    assert is_authorized_for(capabilities, capability="mappings", action="read")
    assert not is_authorized_for(capabilities, capability="mappings", action="create")
    assert not is_authorized_for(capabilities, capability="annotations", action=Action.READ)


def test_is_authorized_for_requires_matching_auth_key_and_identity():
    capabilities = CapabilitySet({Capability.MAPPINGS: Permission(read=True, create=True, update=True)})
    server_config = {
        "auth": {"key": "public-key"},
        "mappings": {
            "create": {"auth": True, "identityProviders": ["github"]},
            "update": {"auth": True, "crossUser": ["https://example.org/admin"]},
        },
    }
    user = {"uri": "https://example.org/user", "identities": {"github": {"uri": "https://github.com/user"}}}

    def allowed(action: str, **kwargs) -> bool:
        return is_authorized_for(capabilities, capability="mappings", action=action, server_config=server_config, **kwargs)

    assert allowed("create", user=user, auth_key="public-key")
    assert not allowed("create", user=user, auth_key="other-key")
    assert not allowed("create", user=None, auth_key="public-key")
    assert not allowed("create", user={"uri": "https://example.org/user", "identities": {"orcid": {}}}, auth_key="public-key")

    assert allowed("update", user=user, auth_key="public-key")
    assert not allowed("update", user=user, auth_key="public-key", cross_user=True)
    assert allowed("update", user={"uri": "https://example.org/admin"}, auth_key="public-key", cross_user=True)
    assert not allowed("delete", user=user, auth_key="public-key")


# ---------------------------------------------------------------- logging


def test_structured_formatter_appends_extras():
    formatter = StructuredLogFormatter()
    record = logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=42,
        msg="Listing schemes",
        args=(),
        exc_info=None,
    )
    record.source = "http://example.org/registry/a"
    record.phase = "get_schemes"
    record.entries = [1, 2]
    record.details = {"kind": "network"}

    formatted = formatter.format(record)

    assert "Listing schemes" in formatted
    assert "source=http://example.org/registry/a" in formatted
    assert "phase=get_schemes" in formatted
    assert "entries=[1, 2]" in formatted
    assert 'details={"kind": "network"}' in formatted
    assert formatted.index("details=") < formatted.index("entries=")
    assert formatted.index("source=") < formatted.index("phase=")


def test_configure_logging_installs_structured_formatter(reset_logging_handlers):
    configure_logging(force=True)
    root = logging.getLogger()
    assert root.handlers, "expected at least one handler configured"
    assert isinstance(root.handlers[0].formatter, StructuredLogFormatter)


def test_logger_adapter_merges_bound_and_call_extras():
    logger = get_logger("tests.federation", extra={"source": "http://example.org/registry/a"})
    handler = _ListHandler(StructuredLogFormatter())
    logger.logger.addHandler(handler)
    logger.logger.setLevel(logging.INFO)
    try:
        logger.info("Served from cache", extra={"cache": "hit"})
    finally:
        logger.logger.removeHandler(handler)

    assert len(handler.records) == 1
    record = handler.records[0]
    assert record.source == "http://example.org/registry/a"
    assert record.cache == "hit"
    assert logger.extra == {"source": "http://example.org/registry/a"}
    assert "source=http://example.org/registry/a cache=hit" in handler.format(record)


def test_log_progress_emits_phase_and_status():
    logger = get_logger("tests.progress", extra={"source": "engine"})
    handler = _ListHandler(StructuredLogFormatter())
    logger.logger.addHandler(handler)
    logger.logger.setLevel(logging.INFO)
    try:
        log_progress(logger, "Merged listing", phase="get_schemes", status="done", extra={"entries": 3})
    finally:
        logger.logger.removeHandler(handler)

    record = handler.records[0]
    assert record.phase == "get_schemes"
    assert record.status == "done"
    assert record.entries == 3
    assert "status=done" in handler.format(record)
