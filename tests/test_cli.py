from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from typer.testing import CliRunner

from vocabulary_federation.adapters.api.concept_api import PROVIDER_TYPE as JSKOS_TYPE
from vocabulary_federation.adapters.base import VerificationResult
from vocabulary_federation.catalog import CatalogEntry, EntryKind
from vocabulary_federation.cli.main import app

CONCEPTS_SOURCE = "http://coli-conc.gbv.de/registry/coli-conc-concepts"
SKOSMOS_SOURCE = "http://coli-conc.gbv.de/registry/skosmos-zbw"


def invoke(cli_runner: CliRunner, args: list[str]):
    return cli_runner.invoke(app, args)


def engine_with_adapter(adapter):
    engine = MagicMock()
    engine.adapter_for_uri.return_value = adapter
    return engine


def test_sources_list(cli_runner, registry_file):
    result = invoke(cli_runner, ["--registry", str(registry_file), "sources", "list"])

    assert result.exit_code == 0
    assert CONCEPTS_SOURCE in result.stdout
    assert "coli-conc concepts" in result.stdout
    assert result.stdout.index(CONCEPTS_SOURCE) < result.stdout.index(SKOSMOS_SOURCE)


def test_sources_list_filters_by_provider(cli_runner, registry_file):
    result = invoke(cli_runner, ["--registry", str(registry_file), "sources", "list", "--provider", "SkosmosApi"])

    assert result.exit_code == 0
    assert SKOSMOS_SOURCE in result.stdout
    assert CONCEPTS_SOURCE not in result.stdout


def test_sources_describe(cli_runner, registry_file):
    result = invoke(cli_runner, ["--registry", str(registry_file), "sources", "describe", SKOSMOS_SOURCE])

    assert result.exit_code == 0
    assert "Provider: SkosmosApi" in result.stdout
    assert "Endpoint api: https://zbw.eu/beta/skosmos/rest/v1/" in result.stdout
    assert "Schemes: http://bartoc.org/en/node/313" in result.stdout


def test_sources_describe_json(cli_runner, registry_file):
    result = invoke(cli_runner, ["--registry", str(registry_file), "sources", "describe", CONCEPTS_SOURCE, "--json"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["provider"] == "ConceptApi"
    assert payload["api"] == "https://coli-conc.gbv.de/api/"
    assert payload["notation"] == ["C"]


def test_sources_describe_unknown(cli_runner, registry_file):
    result = invoke(cli_runner, ["--registry", str(registry_file), "sources", "describe", "http://example.org/nope"])

    assert result.exit_code == 1
    assert "is not registered" in result.output


def test_sources_verify_uses_stub(cli_runner, registry_file):
    adapter = SimpleNamespace(verify=AsyncMock(return_value=VerificationResult(success=True, message="OK", details={"capabilities": ["schemes"]})))

    with patch("vocabulary_federation.cli.main._build_engine", return_value=engine_with_adapter(adapter)):
        result = invoke(cli_runner, ["--registry", str(registry_file), "sources", "verify", CONCEPTS_SOURCE])

    assert result.exit_code == 0
    assert "OK" in result.stdout
    assert '"capabilities": ["schemes"]' in result.stdout
    adapter.verify.assert_awaited_once()


def test_sources_verify_reports_failure(cli_runner, registry_file):
    adapter = SimpleNamespace(verify=AsyncMock(return_value=VerificationResult(success=False, message="Backend unavailable", details={"kind": "backend_unavailable"})))

    with patch("vocabulary_federation.cli.main._build_engine", return_value=engine_with_adapter(adapter)):
        result = invoke(cli_runner, ["--registry", str(registry_file), "sources", "verify", SKOSMOS_SOURCE])

    assert result.exit_code == 1
    assert "Backend unavailable" in result.stdout


def test_schemes_list_json(cli_runner, registry_file):
    scheme = CatalogEntry(data={"uri": "http://bartoc.org/en/node/313", "notation": ["STW"], "prefLabel": {"en": "STW"}}, kind=EntryKind.SCHEME)
    scheme.owner = SimpleNamespace(uri=SKOSMOS_SOURCE)
    engine = MagicMock()
    engine.get_schemes = AsyncMock(return_value=[scheme])

    with patch("vocabulary_federation.cli.main._build_engine", return_value=engine):
        result = invoke(cli_runner, ["--registry", str(registry_file), "schemes", "list", "--json"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["schemes"] == [
        {
            "uri": "http://bartoc.org/en/node/313",
            "notation": ["STW"],
            "prefLabel": {"en": "STW"},
            "identifier": [],
            "source": SKOSMOS_SOURCE,
        }
    ]


def test_schemes_list_plain(cli_runner, registry_file):
    engine = MagicMock()
    engine.get_schemes = AsyncMock(return_value=[])

    with patch("vocabulary_federation.cli.main._build_engine", return_value=engine):
        result = invoke(cli_runner, ["--registry", str(registry_file), "schemes", "list"])

    assert result.exit_code == 0
    assert "No schemes found." in result.stdout


def test_schemes_resolve(cli_runner, registry_file):
    result = invoke(
        cli_runner,
        [
            "--registry",
            str(registry_file),
            "schemes",
            "resolve",
            "http://example.org/scheme",
            "--api-type",
            JSKOS_TYPE,
            "--api-url",
            "https://api.example.org/",
        ],
    )

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload == {"kind": "ConceptApi", "source": "https://api.example.org/", "api": "https://api.example.org/"}


def test_schemes_resolve_unknown_type(cli_runner, registry_file):
    result = invoke(
        cli_runner,
        [
            "--registry",
            str(registry_file),
            "schemes",
            "resolve",
            "http://example.org/scheme",
            "--api-type",
            "http://bartoc.org/api-type/unknown",
            "--api-url",
            "https://api.example.org/",
        ],
    )

    assert result.exit_code == 1
    assert "No adapter kind can serve" in result.output


def test_invalid_registry_file(cli_runner, tmp_path):
    registry = tmp_path / "sources.yaml"
    registry.write_text("registries:\n  - uri: ''\n    provider: ConceptApi\n", encoding="utf-8")

    result = invoke(cli_runner, ["--registry", str(registry), "sources", "list"])

    assert result.exit_code == 1
    assert "Invalid registry" in result.output


def test_log_level_option_reconfigures_logging(cli_runner, registry_file):
    with patch("vocabulary_federation.cli.main.configure_logging") as configure:
        result = invoke(cli_runner, ["--registry", str(registry_file), "--log-level", "DEBUG", "sources", "list"])

    assert result.exit_code == 0
    configure.assert_called_once_with("DEBUG", force=True)
