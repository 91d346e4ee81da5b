"""
Core infrastructure shared by adapters and the federation engine.

The package stays free of adapter code: it holds the error taxonomy, the
capability model, bounded caches, the polling utility, the source registry and
the structured logging helpers.
"""

from .cache import BoundedCache
from .capabilities import Action, Capability, CapabilitySet, Permission, is_authorized_for
from .errors import ErrorKind, FederationError, classify_error
from .logging import configure_logging, get_logger, log_progress
from .registry import RegistryLoadError, SourceDescriptor, SourceRegistry
from .repeat import Repeater

__all__ = [
    "Action",
    "BoundedCache",
    "Capability",
    "CapabilitySet",
    "ErrorKind",
    "FederationError",
    "Permission",
    "RegistryLoadError",
    "Repeater",
    "SourceDescriptor",
    "SourceRegistry",
    "classify_error",
    "configure_logging",
    "get_logger",
    "is_authorized_for",
    "log_progress",
]
