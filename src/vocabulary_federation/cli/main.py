"""
Typer application for inspecting configured terminology sources.

Operators use it to check which sources are configured, whether they answer,
and how the federation engine merges and resolves their schemes.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from ..catalog import CatalogEntry, label
from ..config import FederationSettings, load_secrets
from ..core import FederationError, RegistryLoadError, SourceDescriptor, SourceRegistry, configure_logging
from ..federation import FederationEngine

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Federated access to terminology services.\n\n"
        "Command groups:\n"
        "- sources: list, describe, and verify configured sources.\n"
        "- schemes: list merged concept schemes and resolve scheme owners."
    ),
)
sources_app = typer.Typer(help="Inspect and verify configured terminology sources.")
app.add_typer(sources_app, name="sources")
schemes_app = typer.Typer(help="List merged concept schemes and resolve the source owning a scheme.")
app.add_typer(schemes_app, name="schemes")


def _load_registry(registry_file: Optional[Path]) -> SourceRegistry:
    if registry_file:
        return SourceRegistry.from_yaml(registry_file)
    return SourceRegistry.default()


def _build_engine(registry: SourceRegistry) -> FederationEngine:
    return FederationEngine(registry, settings=FederationSettings.from_env(), secrets=load_secrets())


def _render_descriptor(descriptor: SourceDescriptor) -> str:
    return descriptor.to_json()


def _render_scheme(scheme: CatalogEntry) -> Dict[str, Any]:
    return {
        "uri": scheme.uri,
        "notation": list(scheme.get("notation") or []),
        "prefLabel": dict(scheme.get("prefLabel") or {}),
        "identifier": list(scheme.get("identifier") or []),
        "source": scheme.owner.uri if scheme.owner is not None else None,
    }


@app.callback(invoke_without_command=False)
def main(
    ctx: typer.Context,
    registry_file: Optional[Path] = typer.Option(
        None,
        "--registry",
        "-r",
        help="Override the source registry YAML file.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level, e.g. DEBUG to trace HTTP requests."),
) -> None:
    """
    Load the source registry.

    The callback stores the registry in Typer's state so child commands can
    retrieve it via :class:`typer.Context`.
    """

    if log_level:
        configure_logging(log_level, force=True)
    try:
        registry = _load_registry(registry_file)
    except RegistryLoadError as exc:
        typer.echo(f"Invalid registry: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    state = ctx.ensure_object(dict)
    state["registry"] = registry


def _require_registry(ctx: typer.Context) -> SourceRegistry:
    state = ctx.ensure_object(dict)
    registry = state.get("registry")
    if not isinstance(registry, SourceRegistry):
        raise typer.Exit(code=2)
    return registry


def _require_source(registry: SourceRegistry, uri: str) -> SourceDescriptor:
    descriptor = registry.get(uri)
    if not descriptor:
        typer.echo(f"Source '{uri}' is not registered.", err=True)
        raise typer.Exit(code=1)
    return descriptor


@sources_app.command("list")
def sources_list(
    ctx: typer.Context,
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Only list sources of this adapter kind."),
) -> None:
    """List configured sources in priority order."""

    registry = _require_registry(ctx)
    entries = registry.list(provider=provider)
    if not entries:
        typer.echo("No sources match the requested filters.")
        raise typer.Exit(code=0)

    header = f"{'Provider':<16} {'Label':<24} URI"
    typer.echo(header)
    typer.echo("-" * len(header))
    for entry in entries:
        name = label({"prefLabel": entry.pref_label}) or ""
        typer.echo(f"{entry.provider:<16} {name:<24} {entry.uri}")


@sources_app.command("describe")
def sources_describe(
    ctx: typer.Context,
    uri: str = typer.Argument(..., help="URI of the source."),
    output_json: bool = typer.Option(False, "--json", help="Emit the descriptor in JSON format."),
) -> None:
    """Show the configuration of a single source."""

    descriptor = _require_source(_require_registry(ctx), uri)
    if output_json:
        typer.echo(_render_descriptor(descriptor))
        return

    typer.echo(f"URI: {descriptor.uri}")
    typer.echo(f"Provider: {descriptor.provider}")
    name = label({"prefLabel": descriptor.pref_label})
    if name:
        typer.echo(f"Label: {name}")
    if descriptor.notation:
        typer.echo(f"Notation: {', '.join(descriptor.notation)}")
    for endpoint, value in descriptor.endpoints.items():
        typer.echo(f"Endpoint {endpoint}: {value if value is not None else 'unavailable'}")
    if descriptor.schemes is not None:
        typer.echo(f"Schemes: {', '.join(scheme.get('uri', '?') for scheme in descriptor.schemes) or 'none'}")


@sources_app.command("verify")
def sources_verify(
    ctx: typer.Context,
    uri: str = typer.Argument(..., help="URI of the source."),
) -> None:
    """Initialize a source and report its endpoints and capabilities."""

    registry = _require_registry(ctx)
    _require_source(registry, uri)
    engine = _build_engine(registry)
    try:
        adapter = engine.adapter_for_uri(uri)
    except FederationError as exc:
        typer.echo(f"Verification failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if adapter is None:
        typer.echo(f"Source '{uri}' is not registered.", err=True)
        raise typer.Exit(code=1)

    result = asyncio.run(adapter.verify())
    typer.echo(result.message)
    if result.details:
        typer.echo(f"Details: {json.dumps(result.details, ensure_ascii=False)}")
    if not result.success:
        raise typer.Exit(code=1)


@schemes_app.command("list")
def schemes_list(
    ctx: typer.Context,
    output_json: bool = typer.Option(False, "--json", help="Emit schemes in JSON format."),
) -> None:
    """List the concept schemes of all sources, merged."""

    engine = _build_engine(_require_registry(ctx))
    try:
        schemes = asyncio.run(engine.get_schemes())
    except FederationError as exc:
        typer.echo(f"Listing schemes failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    rendered: List[Dict[str, Any]] = [_render_scheme(scheme) for scheme in schemes]
    if output_json:
        typer.echo(json.dumps({"schemes": rendered}, ensure_ascii=False, indent=2))
        return
    if not rendered:
        typer.echo("No schemes found.")
        return
    for record in rendered:
        notation = (record["notation"] or [""])[0]
        name = label({"prefLabel": record["prefLabel"]}) or ""
        typer.echo(f"{notation:<10} {name:<40} {record['uri']} [{record['source'] or '-'}]")
    typer.echo(f"{len(rendered)} scheme(s).")


@schemes_app.command("resolve")
def schemes_resolve(
    ctx: typer.Context,
    scheme_uri: str = typer.Argument(..., help="URI of the concept scheme."),
    api_type: str = typer.Option(..., "--api-type", help="API type URI, e.g. http://bartoc.org/api-type/jskos."),
    api_url: str = typer.Option(..., "--api-url", help="API endpoint advertised for the scheme."),
    data_type: str = typer.Option("concepts", "--data-type", help="Capability the owning adapter must support."),
) -> None:
    """Resolve which adapter would serve a scheme advertising the given API."""

    engine = _build_engine(_require_registry(ctx))
    scheme = {"uri": scheme_uri, "API": [{"type": api_type, "url": api_url}]}
    try:
        adapter = engine.resolve_owner(scheme, data_type)
    except FederationError as exc:
        typer.echo(f"Resolution failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if adapter is None:
        typer.echo(f"No adapter kind can serve '{scheme_uri}' via {api_type}.", err=True)
        raise typer.Exit(code=1)

    payload = {"kind": adapter.kind_name, "source": adapter.uri, "api": adapter.api}
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))


if __name__ == "__main__":  # pragma: no cover
    app()
