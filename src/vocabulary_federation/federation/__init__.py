"""
Cross-source listing, merging and owner resolution.
"""

from .engine import AdapterKindRegistry, FederationEngine

__all__ = ["AdapterKindRegistry", "FederationEngine"]
