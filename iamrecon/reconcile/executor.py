"""Reconciliation Executor — carry out a plan against a control plane.

Steps run strictly in plan order. The first failing step stops the run:
everything before it is applied and recorded in state, everything after it
is reported as skipped. Re-planning afterwards picks up where it stopped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from iamrecon.backends.base import ControlPlane
from iamrecon.errors import IamReconError
from iamrecon.reconcile.diff import ChangeAction, diff_attributes
from iamrecon.reconcile.planner import Plan, Planner, Step
from iamrecon.reconcile.state import JournalEntry, StateRecord, StateStore

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Outcome of executing a plan."""

    applied: list[str] = field(default_factory=list)
    failed: str = ""
    skipped: list[str] = field(default_factory=list)
    error: str = ""

    @property
    def success(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        status = "OK" if self.success else "FAILED"
        parts = [f"[{status}] {len(self.applied)} step(s) applied"]
        if self.failed:
            parts.append(f"failed at '{self.failed}'")
            parts.append(f"{len(self.skipped)} skipped")
        return ", ".join(parts)


class Executor:
    """Applies plans and keeps state and the journal in step with the backend."""

    def __init__(self, backend: ControlPlane, state: StateStore, actor: str = "iamrecon"):
        self.backend = backend
        self.state = state
        self.actor = actor

    def apply(self, plan: Plan) -> ApplyResult:
        if plan.backend != self.backend.name:
            raise IamReconError(
                f"Plan was made for backend '{plan.backend}', executor targets '{self.backend.name}'"
            )
        self.state.bind_backend(self.backend.name)
        result = ApplyResult()

        for i, step in enumerate(plan.steps):
            try:
                self._run(step)
            except IamReconError as e:
                logger.error("%s failed: %s", step.label, e)
                self._journal(step, success=False, error=str(e))
                result.failed = step.label
                result.error = str(e)
                result.skipped = [s.label for s in plan.steps[i + 1 :]]
                break
            self._journal(step, success=True)
            result.applied.append(step.label)
            logger.info("%s done", step.label)

        return result

    def destroy(self) -> ApplyResult:
        """Delete every resource recorded in state."""
        plan = Planner(self.backend, self.state).plan_destroy()
        return self.apply(plan)

    def _run(self, step: Step) -> None:
        change = step.change

        if step.operation == "delete":
            self.backend.delete(change.kind, change.prior_identity)
            if change.action == ChangeAction.DELETE:
                self.state.remove(change.address)
            return

        resource = change.resource
        if step.operation == "create":
            moved = change.prior_identity is not None and change.prior_identity != resource.identity()
            if change.action == ChangeAction.REPLACE and moved and change.observed is not None:
                # The new identity already exists remotely: converge it instead.
                if diff_attributes(resource.desired(), change.observed):
                    attributes = self.backend.update(resource, change.observed)
                else:
                    attributes = change.observed
            else:
                attributes = self.backend.create(resource)
        elif step.operation == "update":
            attributes = self.backend.update(resource, change.observed or {})
        elif step.operation == "adopt":
            attributes = change.observed
        else:
            raise IamReconError(f"Unknown step operation '{step.operation}'")

        self.state.put(
            StateRecord(
                address=change.address,
                kind=change.kind.value,
                identity=resource.identity(),
                attributes=attributes,
            )
        )

    def _journal(self, step: Step, success: bool, error: str = "") -> None:
        self.state.record_operation(
            JournalEntry(
                address=step.change.address,
                operation=step.operation,
                backend=self.backend.name,
                success=success,
                error=error,
                actor=self.actor,
            )
        )
