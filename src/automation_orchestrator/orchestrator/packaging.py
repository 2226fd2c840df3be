"""Deployment and deletion package construction."""

from __future__ import annotations

from typing import Iterable

from ..models import (
    ComponentDescriptor,
    DeploymentDescriptor,
    DeploymentPackage,
    GeneratedUnit,
    PackageType,
)


def _group(components: Iterable[ComponentDescriptor]) -> tuple[PackageType, ...]:
    """Group components by type, types in first-seen order, members as given."""
    members: dict[str, list[str]] = {}
    for component in components:
        bucket = members.setdefault(component.component_type, [])
        if component.full_name not in bucket:
            bucket.append(component.full_name)
    return tuple(PackageType(name=name, members=tuple(names)) for name, names in members.items())


def unit_components(units: Iterable[GeneratedUnit]) -> list[ComponentDescriptor]:
    return [
        ComponentDescriptor(component_type=unit.kind.component_type, full_name=unit.full_name)
        for unit in units
    ]


def build_deployment_package(units: Iterable[GeneratedUnit], api_version: str) -> DeploymentPackage:
    """Package every generated unit for submission."""
    return DeploymentPackage(types=_group(unit_components(units)), version=api_version)


def build_deletion_package(descriptor: DeploymentDescriptor, api_version: str) -> DeploymentPackage:
    """Deletion package mirroring exactly what a deployment submitted.

    Only the descriptor is consulted; nothing is re-derived from units.
    """
    return DeploymentPackage(
        types=_group(descriptor.components),
        version=api_version,
        destructive=True,
    )
