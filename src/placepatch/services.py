"""Provisioning of the well-known service containers of a place."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Tuple

from .graph import Ref, SceneGraph
from .paths import find_child

logger = logging.getLogger(__name__)

DEFAULT_CONTAINER = "Workspace"

TOP_LEVEL_SERVICES: Tuple[str, ...] = (
    DEFAULT_CONTAINER,
    "StarterPlayer",
    "Lighting",
    "ReplicatedStorage",
    "ServerScriptService",
    "ServerStorage",
    "SoundService",
    "Chat",
    "Teams",
)

# Containers provisioned one level below a top-level service.
NESTED_SERVICES: Tuple[Tuple[str, str], ...] = (
    ("StarterPlayer", "StarterPlayerScripts"),
    ("StarterPlayer", "StarterCharacterScripts"),
)


def get_or_create(graph: SceneGraph, parent: Ref, name: str) -> Ref:
    """Return the first child of ``parent`` named ``name``, creating it if absent.

    New containers use ``name`` as both their class and their name.
    """

    existing = find_child(graph, parent, name)
    if existing is not None:
        logger.debug("Found existing service: %s", name)
        return existing

    logger.info("Creating service: %s", name)
    return graph.insert(parent, class_name=name, name=name)


@dataclass(frozen=True)
class ServiceDirectory:
    """Name to reference lookup for the provisioned containers."""

    entries: Mapping[str, Ref]
    default_name: str = DEFAULT_CONTAINER

    def __post_init__(self) -> None:
        if self.default_name not in self.entries:
            raise ValueError(f"default container '{self.default_name}' is not provisioned")
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    @property
    def default(self) -> Ref:
        return self.entries[self.default_name]

    def get(self, name: str) -> Ref | None:
        return self.entries.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


def provision_services(graph: SceneGraph, root: Ref | None = None) -> ServiceDirectory:
    """Ensure every well-known container exists below ``root``.

    Safe to call repeatedly: containers that already exist are reused.
    """

    data_model = graph.root_ref if root is None else root
    entries: Dict[str, Ref] = {}
    for service_name in TOP_LEVEL_SERVICES:
        entries[service_name] = get_or_create(graph, data_model, service_name)
    for parent_name, service_name in NESTED_SERVICES:
        entries[service_name] = get_or_create(graph, entries[parent_name], service_name)
    return ServiceDirectory(entries=entries)


__all__ = [
    "DEFAULT_CONTAINER",
    "NESTED_SERVICES",
    "ServiceDirectory",
    "TOP_LEVEL_SERVICES",
    "get_or_create",
    "provision_services",
]
