"""Diff desired resources against observed remote state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from iamrecon.models.resources import Resource, ResourceKind, split_address
from iamrecon.reconcile.state import StateRecord


class ChangeAction(Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"  # delete the old resource, then create the new one
    DELETE = "delete"
    NOOP = "noop"


@dataclass
class Change:
    """One planned change to a single address."""

    address: str
    kind: ResourceKind
    action: ChangeAction
    resource: Resource | None = None  # None for deletes
    before: dict | None = None  # observed remotely (at the prior identity for replaces)
    after: dict | None = None  # desired
    prior_identity: dict | None = None  # what a delete/replace removes
    observed: dict | None = None  # current remote state at the new identity
    managed: bool = True  # False when the address is not yet in state
    reasons: list[str] = field(default_factory=list)

    @property
    def changed_keys(self) -> list[str]:
        return diff_attributes(self.after or {}, self.before or {})


def diff_attributes(desired: dict, observed: dict) -> list[str]:
    """Keys whose values differ between two attribute mappings."""
    keys = set(desired) | set(observed)
    return sorted(k for k in keys if desired.get(k) != observed.get(k))


def diff_resource(
    resource: Resource,
    observed: dict | None,
    record: StateRecord | None = None,
    prior_observed: dict | None = None,
) -> Change:
    """Decide what must happen to bring ``resource`` to its desired state.

    Args:
        resource: The declared resource.
        observed: Remote attributes at the resource's current identity.
        record: The state record for this address, if it is managed.
        prior_observed: Remote attributes at the recorded identity, when
            that identity differs from the declared one.
    """
    desired = resource.desired()
    identity = resource.identity()
    change = Change(
        address=resource.address,
        kind=resource.kind,
        action=ChangeAction.NOOP,
        resource=resource,
        before=observed,
        after=desired,
        observed=observed,
        managed=record is not None,
    )

    if record is not None and record.identity != identity:
        moved = diff_attributes(identity, record.identity)
        change.action = ChangeAction.REPLACE
        change.prior_identity = record.identity
        change.before = prior_observed
        change.reasons.append(f"identity changed ({', '.join(moved)}) forces replacement")
        return change

    if observed is None:
        change.action = ChangeAction.CREATE
        if record is not None:
            change.reasons.append("recorded in state but missing remotely")
        return change

    changed = diff_attributes(desired, observed)
    if not changed:
        if record is None:
            change.reasons.append("already exists remotely; will be adopted")
        return change

    forced = [k for k in changed if k in resource.immutable]
    if forced:
        change.action = ChangeAction.REPLACE
        change.prior_identity = identity
        change.reasons.append(f"immutable attribute(s) changed ({', '.join(forced)}) force replacement")
    else:
        change.action = ChangeAction.UPDATE
        change.reasons.append(f"changed: {', '.join(changed)}")
    return change


def orphan_change(record: StateRecord, observed: dict | None) -> Change:
    """A managed address that is no longer declared."""
    kind, _ = split_address(record.address)
    change = Change(
        address=record.address,
        kind=kind,
        action=ChangeAction.DELETE,
        before=observed,
        prior_identity=record.identity,
    )
    change.reasons.append("no longer declared")
    if observed is None:
        change.reasons.append("already absent remotely")
    return change
