"""Apply patch documents to a scene graph.

A patch is applied in one pass: the well-known service containers are
provisioned, every ``subtract`` path is removed, then every ``add``
description is materialized below its effective parent. Missing removal
targets and unresolvable ``target_parent`` paths are reported but never stop
the pass.

There is no rollback. When an added instance cannot be built because one of
its properties fails to decode, :class:`InstanceBuildError` is raised and the
instances created before it stay in the graph. The report gathered so far is
attached to the error as ``error.report``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from .errors import PlacePatchError
from .graph import Ref, SceneGraph
from .patch import InstanceDescription, PatchDocument
from .paths import path_of, resolve_path
from .properties import PropertyDecodeError, PropertyValue, decode_instance_property
from .services import ServiceDirectory, provision_services

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkippedProperty:
    """A property dropped because its type tag is not supported."""

    instance_name: str
    property_name: str
    type_tag: str


@dataclass(frozen=True)
class ParentFallback:
    """An add whose ``target_parent`` could not be resolved."""

    instance_name: str
    target_parent: str
    used_parent: str


@dataclass
class ApplyReport:
    """Outcome of a single :func:`apply_patch` call."""

    removed: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    created: List[Ref] = field(default_factory=list)
    fallbacks: List[ParentFallback] = field(default_factory=list)
    skipped_properties: List[SkippedProperty] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def summary(self) -> str:
        """Return a one-line human readable summary."""

        parts = [
            f"{len(self.created)} created",
            f"{len(self.removed)} removed",
        ]
        if self.missing:
            parts.append(f"{len(self.missing)} removal target(s) not found")
        if self.fallbacks:
            parts.append(f"{len(self.fallbacks)} parent fallback(s)")
        if self.skipped_properties:
            parts.append(f"{len(self.skipped_properties)} unsupported propert(ies) skipped")
        return ", ".join(parts)


class PatchApplicationError(PlacePatchError):
    """Raised when a patch cannot be applied completely."""

    def __init__(self, message: str, *, report: ApplyReport | None = None) -> None:
        super().__init__(message)
        self.report = report


class InstanceBuildError(PatchApplicationError):
    """Raised when an added instance has a property that fails to decode."""

    def __init__(
        self,
        *,
        instance_name: str,
        property_name: str,
        cause: PropertyDecodeError,
        report: ApplyReport | None = None,
    ) -> None:
        super().__init__(
            f"Cannot build instance '{instance_name}': property "
            f"'{property_name}' ({cause.type_tag}) is invalid: {cause.message}",
            report=report,
        )
        self.instance_name = instance_name
        self.property_name = property_name
        self.type_tag = cause.type_tag


def apply_patch(
    graph: SceneGraph, patch: PatchDocument, root: Ref | None = None
) -> ApplyReport:
    """Apply ``patch`` to ``graph`` in place.

    Args:
        graph: The scene graph to mutate.
        patch: Additions and removals to apply.
        root: The instance paths are resolved from. Defaults to the root of
            ``graph``.

    Returns:
        An :class:`ApplyReport` describing what changed.

    Raises:
        InstanceBuildError: If a property of an added instance is malformed.
        InvalidReferenceError: If ``root`` is not part of ``graph``.
    """

    data_model = graph.root_ref if root is None else root
    report = ApplyReport()
    services = provision_services(graph, data_model)

    if patch.subtract:
        logger.info("Processing %d removal operation(s)", len(patch.subtract))
    for path in patch.subtract:
        _remove_path(graph, data_model, path, report)
    if any(ref not in graph for ref in services.entries.values()):
        # A removal took out a service container; bring it back empty.
        services = provision_services(graph, data_model)

    try:
        for description in patch.add:
            parent = _effective_parent(graph, data_model, services, description, report)
            _materialize(graph, description, parent, report)
    except InstanceBuildError as exc:
        exc.report = report
        raise

    logger.info("Applied patch: %s", report.summary())
    return report


def _remove_path(graph: SceneGraph, root: Ref, path: str, report: ApplyReport) -> None:
    target = resolve_path(graph, root, path)
    if target is None:
        report.missing.append(path)
        report.warn(f"Could not find instance at path '{path}' to remove")
        return
    if target == graph.root_ref or target == root:
        report.missing.append(path)
        report.warn(f"Refusing to remove the root instance via path '{path}'")
        return

    removed = graph.destroy(target)
    report.removed.append(path)
    logger.info("Removed instance at path '%s' (%d instance(s))", path, removed)


def _effective_parent(
    graph: SceneGraph,
    root: Ref,
    services: ServiceDirectory,
    description: InstanceDescription,
    report: ApplyReport,
) -> Ref:
    target = description.target_parent
    if target is None:
        logger.debug("No target_parent for '%s', using the default container", description.name)
        return services.default

    service = services.get(target)
    if service is not None:
        return service

    resolved = resolve_path(graph, root, target)
    if resolved is not None:
        return resolved

    fallback = ParentFallback(
        instance_name=description.name,
        target_parent=target,
        used_parent=services.default_name,
    )
    report.fallbacks.append(fallback)
    report.warn(
        f"Could not find target '{target}' for '{description.name}', "
        f"defaulting to {services.default_name}"
    )
    return services.default


def _materialize(
    graph: SceneGraph,
    description: InstanceDescription,
    parent: Ref,
    report: ApplyReport,
) -> Ref:
    properties = _decode_properties(description, report)
    ref = graph.insert(
        parent,
        class_name=description.class_name,
        name=description.name,
        properties=properties,
    )
    report.created.append(ref)
    logger.debug(
        "Created %s (%s) at '%s'",
        description.name,
        description.class_name,
        path_of(graph, ref),
    )

    for child in description.children:
        _materialize(graph, child, ref, report)
    return ref


def _decode_properties(
    description: InstanceDescription, report: ApplyReport
) -> Dict[str, PropertyValue]:
    decoded: Dict[str, PropertyValue] = {}
    for property_name, spec in description.properties.items():
        try:
            value = decode_instance_property(
                description.class_name, property_name, spec.type_tag, spec.value
            )
        except PropertyDecodeError as exc:
            raise InstanceBuildError(
                instance_name=description.name,
                property_name=property_name,
                cause=exc,
            ) from exc

        if value is None:
            report.skipped_properties.append(
                SkippedProperty(
                    instance_name=description.name,
                    property_name=property_name,
                    type_tag=spec.type_tag,
                )
            )
            logger.debug(
                "Skipping property %s.%s with unsupported type %s",
                description.name,
                property_name,
                spec.type_tag,
            )
            continue
        decoded[property_name] = value
    return decoded


__all__ = [
    "ApplyReport",
    "InstanceBuildError",
    "ParentFallback",
    "PatchApplicationError",
    "SkippedProperty",
    "apply_patch",
]
