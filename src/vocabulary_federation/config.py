"""
Secret and runtime settings helpers for the federation layer.

Secrets are loaded from a TOML file. The lookup order is:

1. Explicit ``VOCAB_FEDERATION_SECRETS_PATH`` environment variable.
2. Project-relative ``.secrets/secrets.toml`` (both from CWD and the package root).
3. Fallback to ``.secrets/secrets.example.toml`` for scaffolding values.

Per-source credentials live in ``[sources."<source uri>"]`` tables with
optional ``key`` and ``bearer_token`` entries. Call :func:`load_secrets` to
retrieve a :class:`SecretsBundle`.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple

DEFAULT_TIMEOUT = 15.0
DEFAULT_RETRY_COUNT = 3
DEFAULT_LANGUAGES: Tuple[str, ...] = ("en", "de", "fr", "es", "nl", "it", "fi", "pl", "ru", "cs", "jp")
DEFAULT_COCODA_BASE_URL: Optional[str] = None

_ENV_SECRETS_PATH = "VOCAB_FEDERATION_SECRETS_PATH"
_ENV_TIMEOUT = "VOCAB_FEDERATION_TIMEOUT"
_ENV_LANGUAGES = "VOCAB_FEDERATION_LANGUAGES"
_ENV_COCODA_BASE_URL = "VOCAB_FEDERATION_COCODA_BASE_URL"


@dataclass(slots=True)
class SourceCredentials:
    """Credential pair applied to an adapter through ``set_auth``."""

    key: Optional[str] = None
    bearer_token: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.key and not self.bearer_token


@dataclass(slots=True)
class SecretsBundle:
    """Lightweight container for parsed secret values."""

    source_path: Optional[Path]
    data: Dict[str, object]
    sources: Dict[str, SourceCredentials] = field(default_factory=dict)

    def credentials_for(self, uri: str) -> Optional[SourceCredentials]:
        return self.sources.get(uri)


@dataclass(slots=True)
class FederationSettings:
    """
    Runtime knobs shared by the engine and its adapters.

    Attributes
    ----------
    timeout:
        Per-request timeout in seconds.
    retry_count:
        Default number of retries for retryable requests.
    languages:
        Language priority list handed to every adapter. The built-in
        fallback list (:data:`DEFAULT_LANGUAGES`) is always appended.
    cocoda_base_url:
        Base URL used to locate ``build-info.json`` when none is given.
    """

    timeout: float = DEFAULT_TIMEOUT
    retry_count: int = DEFAULT_RETRY_COUNT
    languages: Sequence[str] = field(default_factory=list)
    cocoda_base_url: Optional[str] = DEFAULT_COCODA_BASE_URL

    @classmethod
    def from_env(cls) -> "FederationSettings":
        settings = cls()
        timeout = os.getenv(_ENV_TIMEOUT)
        if timeout:
            try:
                settings.timeout = float(timeout)
            except ValueError:
                pass
        languages = os.getenv(_ENV_LANGUAGES)
        if languages:
            parsed = [item.strip() for item in languages.split(",") if item.strip()]
            if parsed:
                settings.languages = parsed
        base_url = os.getenv(_ENV_COCODA_BASE_URL)
        if base_url:
            settings.cocoda_base_url = base_url
        return settings


def _discover_project_root() -> Optional[Path]:
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").is_file():
            return parent
    return None


def _candidate_paths() -> Iterable[Path]:
    env_override = os.getenv(_ENV_SECRETS_PATH)
    if env_override:
        yield Path(env_override).expanduser()

    search_roots = [Path.cwd()]
    package_root = _discover_project_root()
    if package_root and package_root not in search_roots:
        search_roots.append(package_root)

    for base in search_roots:
        secrets_dir = base / ".secrets"
        yield secrets_dir / "secrets.toml"
        yield secrets_dir / "secrets.example.toml"


def _load_toml(path: Path) -> Dict[str, object]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _extract_source_credentials(raw: Dict[str, object]) -> Dict[str, SourceCredentials]:
    section = raw.get("sources", {}) if isinstance(raw, dict) else {}
    if not isinstance(section, dict):
        return {}

    credentials: Dict[str, SourceCredentials] = {}
    for uri, table in section.items():
        if not isinstance(table, dict):
            continue

        def _extract(key: str) -> Optional[str]:
            value = table.get(key)
            return str(value) if isinstance(value, str) and value else None

        entry = SourceCredentials(key=_extract("key"), bearer_token=_extract("bearer_token"))
        if not entry.is_empty():
            credentials[str(uri)] = entry
    return credentials


def load_secrets(strict: bool = False) -> SecretsBundle:
    """
    Attempt to load secrets from the configured locations.

    Parameters
    ----------
    strict:
        When ``True`` the function raises ``FileNotFoundError`` if no secrets file is
        discovered. Defaults to ``False`` because most sources are public.
    """

    for path in _candidate_paths():
        if path.is_file():
            data = _load_toml(path)
            return SecretsBundle(source_path=path, data=data, sources=_extract_source_credentials(data))

    if strict:
        raise FileNotFoundError(f"No secrets file found. Configure {_ENV_SECRETS_PATH} or .secrets/secrets.toml.")

    return SecretsBundle(source_path=None, data={})
