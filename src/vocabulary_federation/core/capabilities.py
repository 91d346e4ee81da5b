"""
Capability vocabulary and authorization checks.

Each adapter declares which capabilities it supports, either as a plain
boolean or as a :class:`Permission` with per-action granularity. The set is
populated during adapter initialization and frozen afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Union


class Capability(str, Enum):
    """Named operation categories a source may support."""

    SCHEMES = "schemes"
    TOP = "top"
    DATA = "data"
    CONCEPTS = "concepts"
    NARROWER = "narrower"
    ANCESTORS = "ancestors"
    TYPES = "types"
    SUGGEST = "suggest"
    SEARCH = "search"
    AUTH = "auth"
    MAPPINGS = "mappings"
    CONCORDANCES = "concordances"
    ANNOTATIONS = "annotations"
    OCCURRENCES = "occurrences"


class Action(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class Permission:
    """Per-action capability declaration."""

    read: bool = False
    create: bool = False
    update: bool = False
    delete: bool = False
    anonymous: bool = False

    def allows(self, action: Union[Action, str]) -> bool:
        return bool(getattr(self, Action(action).value))

    def __bool__(self) -> bool:
        # A declared permission object means the capability exists, even if
        # every action flag is off.
        return True


CapabilityValue = Union[bool, Permission]


class CapabilitySet:
    """Mapping of capability name to declaration, frozen after initialization."""

    def __init__(self, declared: Optional[Mapping[Union[Capability, str], CapabilityValue]] = None) -> None:
        self._values: Dict[Capability, CapabilityValue] = {capability: False for capability in Capability}
        self._frozen = False
        for name, value in (declared or {}).items():
            self[name] = value

    def __getitem__(self, name: Union[Capability, str]) -> CapabilityValue:
        return self._values[Capability(name)]

    def __setitem__(self, name: Union[Capability, str], value: CapabilityValue) -> None:
        if self._frozen:
            raise RuntimeError("Capability set is read-only after initialization.")
        if not isinstance(value, Permission):
            value = bool(value)
        self._values[Capability(name)] = value

    def __iter__(self) -> Iterator[Capability]:
        return iter(self._values)

    def get(self, name: Union[Capability, str], default: CapabilityValue = False) -> CapabilityValue:
        try:
            return self[name]
        except ValueError:
            return default

    def supports(self, name: Union[Capability, str]) -> bool:
        return bool(self.get(name))

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for capability, value in self._values.items():
            if isinstance(value, Permission):
                payload[capability.value] = {
                    "read": value.read,
                    "create": value.create,
                    "update": value.update,
                    "delete": value.delete,
                    "anonymous": value.anonymous,
                }
            else:
                payload[capability.value] = value
        return payload


def user_uris(user: Optional[Mapping[str, Any]]) -> list[str]:
    """Collect the user's own URI and all identity URIs."""

    if not user:
        return []
    uris = [user.get("uri")]
    identities = user.get("identities") or {}
    if isinstance(identities, Mapping):
        for identity in identities.values():
            if isinstance(identity, Mapping):
                uris.append(identity.get("uri"))
    return [uri for uri in uris if uri]


def _intersects(left: Sequence[Any], right: Sequence[Any]) -> bool:
    return any(item in right for item in left)


def is_authorized_for(
    capabilities: CapabilitySet,
    *,
    capability: Union[Capability, str],
    action: Union[Action, str],
    user: Optional[Mapping[str, Any]] = None,
    cross_user: bool = False,
    server_config: Optional[Mapping[str, Any]] = None,
    auth_key: Optional[str] = None,
) -> bool:
    """
    Decide whether ``user`` may perform ``action`` on ``capability``.

    ``server_config`` is the ``config`` section of the source's status
    document; ``auth_key`` is the public key of the login server the caller
    holds a token for. The check is informational; the backend enforces
    authorization on its own.
    """

    action = Action(action)
    declared = capabilities.get(capability)
    if action is Action.READ and declared is True:
        return True
    if not declared:
        return False

    config = server_config or {}
    capability_config = config.get(Capability(capability).value) or {}
    options = capability_config.get(action.value) if isinstance(capability_config, Mapping) else None
    if not options or not isinstance(options, Mapping):
        return _declared_allows(declared, action)

    requires_auth = bool(options.get("auth"))
    if requires_auth and (not user or not auth_key):
        return False
    if requires_auth:
        server_auth = config.get("auth") or {}
        if not isinstance(server_auth, Mapping) or auth_key != server_auth.get("key"):
            return False

    uris = user_uris(user)
    if requires_auth and options.get("identities"):
        if not _intersects(uris, list(options["identities"])):
            return False
    if requires_auth and options.get("identityProviders"):
        providers = list((user or {}).get("identities") or {})
        if not _intersects(providers, list(options["identityProviders"])):
            return False

    if cross_user:
        allowance = options.get("crossUser")
        if allowance is True:
            return True
        return _intersects(uris, list(allowance or []))
    return _declared_allows(declared, action)


def _declared_allows(declared: CapabilityValue, action: Action) -> bool:
    # A plain boolean declaration only ever grants read access.
    if isinstance(declared, Permission):
        return declared.allows(action)
    return False
