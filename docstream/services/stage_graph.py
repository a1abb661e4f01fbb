"""Approval stage graph: which stages a request passes and who may act on each."""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from ..models import Role, RoutingAttribute, Stage
from .errors import UnknownRoutingAttribute, UnknownStage


@dataclass(frozen=True)
class StageGraph:
    """Immutable stage sequences keyed by routing attribute."""

    sequences: Mapping[RoutingAttribute, tuple[Stage, ...]]
    stage_roles: Mapping[Stage, frozenset[Role]]

    def stages_for(self, routing: RoutingAttribute | str) -> tuple[Stage, ...]:
        """Ordered stages for a routing attribute."""
        try:
            key = RoutingAttribute(routing)
        except ValueError:
            raise UnknownRoutingAttribute(f"No stage sequence for routing '{routing}'")

        stages = self.sequences.get(key)
        if not stages:
            raise UnknownRoutingAttribute(f"No stage sequence for routing '{key.value}'")
        return stages

    def authorized_roles(self, stage: Stage | str) -> frozenset[Role]:
        """Roles allowed to act on a stage."""
        try:
            key = Stage(stage)
        except ValueError:
            raise UnknownStage(f"Unknown stage '{stage}'")

        roles = self.stage_roles.get(key)
        if roles is None:
            raise UnknownStage(f"No roles configured for stage '{key.value}'")
        return roles

    def stages_for_role(self, role: Role) -> frozenset[Stage]:
        """Every stage the role is authorized to act on, across all sequences."""
        return frozenset(stage for stage, roles in self.stage_roles.items() if role in roles)


DEFAULT_STAGE_GRAPH = StageGraph(
    sequences=MappingProxyType({
        RoutingAttribute.WITHIN_TOWN: (
            Stage.SUPERVISOR,
            Stage.VEHICLE_OFFICER,
        ),
        RoutingAttribute.OUT_OF_TOWN: (
            Stage.SUPERVISOR,
            Stage.CORPORATE,
            Stage.REGIONAL_COORDINATOR,
            Stage.VEHICLE_OFFICER,
        ),
    }),
    stage_roles=MappingProxyType({
        Stage.SUPERVISOR: frozenset({Role.SUPERVISOR, Role.ROM_SUPERVISOR}),
        Stage.CORPORATE: frozenset({Role.CORPORATE_SERVICES}),
        Stage.REGIONAL_COORDINATOR: frozenset({Role.REGIONAL_COORDINATOR}),
        Stage.VEHICLE_OFFICER: frozenset({Role.VEHICLE_OFFICER}),
    }),
)
