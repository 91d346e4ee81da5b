"""
Adapter contract and request pipeline for terminology services.

Concrete adapter kinds live in :mod:`vocabulary_federation.adapters.api`.
"""

from .base import BULK_OPERATIONS, OPERATIONS, BaseAdapter, VerificationResult
from .pipeline import CancellationToken, RequestHandle, RequestPipeline

__all__ = [
    "BULK_OPERATIONS",
    "OPERATIONS",
    "BaseAdapter",
    "CancellationToken",
    "RequestHandle",
    "RequestPipeline",
    "VerificationResult",
]
