"""
Federated access to terminology services.

Configure sources in a registry document, then query them through
:class:`~vocabulary_federation.federation.FederationEngine`::

    engine = FederationEngine(SourceRegistry.default())
    schemes = await engine.get_schemes()
"""

from .catalog import CatalogEntry, EntryKind, ResultPage
from .config import FederationSettings, load_secrets
from .core import ErrorKind, FederationError, SourceDescriptor, SourceRegistry
from .federation import AdapterKindRegistry, FederationEngine

__all__ = [
    "AdapterKindRegistry",
    "CatalogEntry",
    "EntryKind",
    "ErrorKind",
    "FederationEngine",
    "FederationError",
    "FederationSettings",
    "ResultPage",
    "SourceDescriptor",
    "SourceRegistry",
    "load_secrets",
]
