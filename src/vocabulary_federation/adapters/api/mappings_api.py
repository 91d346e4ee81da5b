"""
JSKOS Mappings API adapter.

Reference: https://github.com/gbv/jskos-server

Configure with ``provider: MappingsApi`` and the API base URL as ``api``. The
per-action permissions (read/create/update/delete) are taken from the
``config`` section of the server's status document.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import httpx

from ...catalog import Entry, label, minify_mapping, plain, with_mapping_identifiers
from ...core.capabilities import Capability, Permission
from ...core.errors import FederationError
from ..base import BaseAdapter
from .base import ApiResponse, concat_url

DEFAULT_ENDPOINTS: Mapping[str, str] = {
    "mappings": "/mappings",
    "concordances": "/concordances",
    "annotations": "/annotations",
}
DEFAULT_PARAMS: Mapping[str, str] = {"properties": "annotations"}
_FOREIGN_URI = "URI doesn't seem to be part of this registry."


class MappingsApiAdapter(BaseAdapter):
    """Mapping, concordance and annotation storage served by a JSKOS API."""

    kind_name = "MappingsApi"
    stored = True
    operations = frozenset(
        {
            "get_mapping",
            "get_mappings",
            "post_mapping",
            "post_mappings",
            "put_mapping",
            "patch_mapping",
            "delete_mapping",
            "delete_mappings",
            "get_concordances",
            "get_annotations",
            "post_annotation",
            "put_annotation",
            "patch_annotation",
            "delete_annotation",
        }
    )

    async def _prepare(self) -> None:
        if self.api and self.descriptor.is_unset("status"):
            self.endpoints["status"] = concat_url(self.api, "/status")

    async def _setup(self) -> None:
        if self.api:
            for name, path in DEFAULT_ENDPOINTS.items():
                if self.descriptor.is_unset(name):
                    self.endpoints[name] = concat_url(self.api, path)

        if self.endpoints.get("mappings"):
            self.capabilities[Capability.MAPPINGS] = Permission(
                read=bool(self._config_value("mappings", "read", default=True)),
                create=bool(self._config_value("mappings", "create")),
                update=bool(self._config_value("mappings", "update")),
                delete=bool(self._config_value("mappings", "delete")),
                anonymous=bool(self._config_value("mappings", "anonymous")),
            )
        else:
            self.capabilities[Capability.MAPPINGS] = False
        self.capabilities[Capability.CONCORDANCES] = bool(self.endpoints.get("concordances"))
        if self.endpoints.get("annotations"):
            self.capabilities[Capability.ANNOTATIONS] = Permission(
                read=bool(self._config_value("annotations", "read")),
                create=bool(self._config_value("annotations", "create")),
                update=bool(self._config_value("annotations", "update")),
                delete=bool(self._config_value("annotations", "delete")),
            )
        else:
            self.capabilities[Capability.ANNOTATIONS] = False
        self.capabilities[Capability.AUTH] = self._config_value("auth", "key") is not None

    def _config_value(self, section: str, key: str, default: Any = None) -> Any:
        values = self.server_config.get(section)
        if not isinstance(values, Mapping):
            return default
        return values.get(key, default)

    def _endpoint(self, name: str) -> str:
        value = self.endpoints.get(name)
        if not value:
            raise FederationError.missing_endpoint(name)
        return value

    def _own_uri(self, uri: Optional[str], endpoint: str, parameter: str) -> str:
        base = self._endpoint(endpoint)
        if not uri or not uri.startswith(base):
            raise FederationError.validation(parameter, _FOREIGN_URI)
        return uri

    # ------------------------------------------------------------------ mappings

    async def _get_mapping(self, *, mapping: Optional[Entry] = None, params: Optional[Mapping[str, Any]] = None, **_: Any) -> Optional[ApiResponse]:
        if not mapping:
            raise FederationError.validation("mapping")
        uri = self._own_uri(mapping.get("uri"), "mappings", "mapping")
        try:
            return await self.client.get_json(uri, params={**DEFAULT_PARAMS, **(params or {})})
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return None
            raise

    async def _get_mappings(
        self,
        *,
        from_: Any = None,
        from_scheme: Any = None,
        to: Any = None,
        to_scheme: Any = None,
        creator: Any = None,
        type: Any = None,
        part_of: Any = None,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
        direction: Optional[str] = None,
        mode: Optional[str] = None,
        identifier: Optional[str] = None,
        sort: Optional[str] = None,
        order: Optional[str] = None,
        params: Optional[Mapping[str, Any]] = None,
        **_: Any,
    ) -> ApiResponse:
        query: Dict[str, Any] = {}
        for name, value in (("from", from_), ("fromScheme", from_scheme), ("to", to), ("toScheme", to_scheme), ("type", type), ("partOf", part_of)):
            if value:
                query[name] = value if isinstance(value, str) else value.get("uri")
        if creator:
            query["creator"] = creator if isinstance(creator, str) else label(creator)
        for name, value in (("offset", offset), ("limit", limit), ("direction", direction), ("mode", mode), ("identifier", identifier), ("sort", sort), ("order", order)):
            if value:
                query[name] = value
        return await self.client.get_json(self._endpoint("mappings"), params={**DEFAULT_PARAMS, **(params or {}), **query})

    def _prepare_mapping(self, mapping: Optional[Entry]) -> Dict[str, Any]:
        if not mapping:
            raise FederationError.validation("mapping")
        return with_mapping_identifiers(minify_mapping(mapping))

    async def _post_mapping(self, *, mapping: Optional[Entry] = None, params: Optional[Mapping[str, Any]] = None, **_: Any) -> ApiResponse:
        body = self._prepare_mapping(mapping)
        return await self.client.post_json(self._endpoint("mappings"), json_body=body, params={**DEFAULT_PARAMS, **(params or {})})

    async def _put_mapping(self, *, mapping: Optional[Entry] = None, params: Optional[Mapping[str, Any]] = None, **_: Any) -> ApiResponse:
        body = self._prepare_mapping(mapping)
        uri = self._own_uri(body.get("uri"), "mappings", "mapping")
        return await self.client.put_json(uri, json_body=body, params={**DEFAULT_PARAMS, **(params or {})})

    async def _patch_mapping(self, *, mapping: Optional[Entry] = None, params: Optional[Mapping[str, Any]] = None, **_: Any) -> ApiResponse:
        body = self._prepare_mapping(mapping)
        uri = self._own_uri(body.get("uri"), "mappings", "mapping")
        return await self.client.patch_json(uri, json_body=body, params={**DEFAULT_PARAMS, **(params or {})})

    async def _delete_mapping(self, *, mapping: Optional[Entry] = None, **_: Any) -> bool:
        if not mapping:
            raise FederationError.validation("mapping")
        uri = self._own_uri(mapping.get("uri"), "mappings", "mapping")
        await self.client.delete(uri)
        return True

    # ------------------------------------------------------------------ annotations

    async def _get_annotations(self, *, target: Optional[str] = None, params: Optional[Mapping[str, Any]] = None, **_: Any) -> ApiResponse:
        query = dict(params or {})
        if target:
            query["target"] = target
        return await self.client.get_json(self._endpoint("annotations"), params=query)

    async def _post_annotation(self, *, annotation: Optional[Entry] = None, **_: Any) -> ApiResponse:
        if not annotation:
            raise FederationError.validation("annotation")
        return await self.client.post_json(self._endpoint("annotations"), json_body=plain(annotation))

    def _annotation_uri(self, annotation: Optional[Entry]) -> str:
        if not annotation:
            raise FederationError.validation("annotation")
        return self._own_uri(annotation.get("id"), "annotations", "annotation")

    async def _put_annotation(self, *, annotation: Optional[Entry] = None, **_: Any) -> ApiResponse:
        uri = self._annotation_uri(annotation)
        return await self.client.put_json(uri, json_body=plain(annotation))

    async def _patch_annotation(self, *, annotation: Optional[Entry] = None, **_: Any) -> ApiResponse:
        uri = self._annotation_uri(annotation)
        return await self.client.patch_json(uri, json_body=plain(annotation))

    async def _delete_annotation(self, *, annotation: Optional[Entry] = None, **_: Any) -> bool:
        uri = self._annotation_uri(annotation)
        await self.client.delete(uri)
        return True

    # ------------------------------------------------------------------ concordances

    async def _get_concordances(self, *, params: Optional[Mapping[str, Any]] = None, **_: Any) -> ApiResponse:
        return await self.client.get_json(self._endpoint("concordances"), params=dict(params or {}))
