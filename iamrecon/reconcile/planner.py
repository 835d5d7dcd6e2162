"""Planner — turn a resource graph plus remote state into an ordered plan.

Deletes (orphans and the old half of replacements) run first, attachments
before instance profiles before policies before roles. Creates and updates
then run in dependency order, so a role always exists before anything that
attaches to it.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field

from iamrecon.backends.base import ControlPlane
from iamrecon.graph.builder import ResourceGraph
from iamrecon.graph.resolver import creation_order
from iamrecon.models.resources import DELETE_RANK, ResourceKind
from iamrecon.reconcile.diff import Change, ChangeAction, diff_resource, orphan_change
from iamrecon.reconcile.state import StateStore

logger = logging.getLogger(__name__)


@dataclass
class Step:
    """One backend operation the executor will perform."""

    operation: str  # delete | create | update | adopt
    change: Change

    @property
    def label(self) -> str:
        return f"{self.operation} {self.change.address}"


@dataclass
class Plan:
    """Ordered set of changes for one reconciliation."""

    backend: str
    changes: list[Change] = field(default_factory=list)
    steps: list[Step] = field(default_factory=list)

    def by_action(self, action: ChangeAction) -> list[Change]:
        return [c for c in self.changes if c.action == action]

    def counts(self) -> dict[str, int]:
        counts = Counter(c.action.value for c in self.changes)
        return {action.value: counts.get(action.value, 0) for action in ChangeAction}

    @property
    def has_changes(self) -> bool:
        return any(c.action != ChangeAction.NOOP for c in self.changes)

    def summary(self) -> str:
        if not self.has_changes:
            return "No changes. Remote state matches the declarations."
        c = self.counts()
        return (
            f"Plan: {c['create']} to create, {c['update']} to update, "
            f"{c['replace']} to replace, {c['delete']} to delete."
        )


class Planner:
    """Builds plans against one control plane and one state store."""

    def __init__(self, backend: ControlPlane, state: StateStore):
        self.backend = backend
        self.state = state

    def plan(self, graph: ResourceGraph) -> Plan:
        """Plan the changes needed to make remote state match ``graph``."""
        self.state.bind_backend(self.backend.name)
        plan = Plan(backend=self.backend.name)

        for address in creation_order(graph):
            resource = graph.resource(address)
            record = self.state.get(address)
            observed = self.backend.read(resource.kind, resource.identity())
            prior_observed = None
            if record is not None and record.identity != resource.identity():
                prior_observed = self.backend.read(resource.kind, record.identity)
            change = diff_resource(resource, observed, record, prior_observed)
            logger.debug("%s: %s %s", address, change.action.value, "; ".join(change.reasons))
            plan.changes.append(change)

        _cascade_replacements(graph, plan.changes)

        for address in sorted(self.state.addresses() - set(graph.graph.nodes)):
            record = self.state.get(address)
            observed = self.backend.read(record.resource_kind, record.identity)
            plan.changes.append(orphan_change(record, observed))

        plan.steps = _order_steps(plan.changes)
        logger.info(plan.summary())
        return plan

    def plan_destroy(self) -> Plan:
        """Plan deletion of every managed resource."""
        self.state.bind_backend(self.backend.name)
        plan = Plan(backend=self.backend.name)
        for record in self.state.records():
            observed = self.backend.read(record.resource_kind, record.identity)
            change = orphan_change(record, observed)
            change.reasons[0] = "destroy requested"
            plan.changes.append(change)
        plan.steps = _order_steps(plan.changes)
        logger.info(plan.summary())
        return plan


def _cascade_replacements(graph: ResourceGraph, changes: list[Change]) -> None:
    """Re-bind dependents of replaced resources.

    Deleting a role or policy detaches everything that references it, so an
    attachment that looked unchanged must be created again and an instance
    profile must get its role back.
    """
    replaced = {c.address for c in changes if c.action == ChangeAction.REPLACE}
    if not replaced:
        return

    for change in changes:
        if change.action not in (ChangeAction.NOOP, ChangeAction.UPDATE):
            continue
        hit = [d for d in graph.dependencies(change.address) if d in replaced]
        if not hit:
            continue
        reason = f"dependency {', '.join(hit)} is replaced"
        if change.kind == ResourceKind.ATTACHMENT:
            change.action = ChangeAction.CREATE
            change.observed = None
            change.reasons.append(reason)
        elif change.kind == ResourceKind.INSTANCE_PROFILE and change.observed is not None:
            change.action = ChangeAction.UPDATE
            change.observed = dict(change.observed, role_name="")
            change.reasons.append(reason)


def _order_steps(changes: list[Change]) -> list[Step]:
    """Deletes first (dependents before dependencies), then creates/updates in plan order."""
    removals = [c for c in changes if c.action in (ChangeAction.DELETE, ChangeAction.REPLACE)]
    removals.sort(key=lambda c: (DELETE_RANK[c.kind], c.address))

    steps = [Step("delete", c) for c in removals]
    for change in changes:
        if change.action in (ChangeAction.CREATE, ChangeAction.REPLACE):
            steps.append(Step("create", change))
        elif change.action == ChangeAction.UPDATE:
            steps.append(Step("update", change))
        elif change.action == ChangeAction.NOOP and not change.managed:
            steps.append(Step("adopt", change))
    return steps
