"""
HTTP layer and adapter kinds for terminology services.

* :mod:`.base` wraps low-level HTTP calls with retry logic and is imported by
  the adapter contract itself.
* :mod:`.concept_api`, :mod:`.mappings_api`, :mod:`.skosmos` and
  :mod:`.occurrences_api` each provide one
  :class:`~vocabulary_federation.adapters.base.BaseAdapter` kind. Import them
  from their modules.
"""

from .base import ApiResponse, BaseAPIClient, RetryConfig

__all__ = ["ApiResponse", "BaseAPIClient", "RetryConfig"]
