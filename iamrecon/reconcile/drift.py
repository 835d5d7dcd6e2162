"""Drift detection — detect remote changes made outside iamrecon.

Drift happens when:
1. A managed resource was deleted out of band
2. A managed resource's attributes were edited out of band

Drift is measured against what iamrecon last applied (the state file), not
against the declarations; ``plan`` covers the latter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from iamrecon.backends.base import ControlPlane
from iamrecon.reconcile.diff import diff_attributes
from iamrecon.reconcile.state import StateStore

logger = logging.getLogger(__name__)


class DriftType:
    MISSING = "missing"  # Deleted outside iamrecon
    MODIFIED = "modified"  # Attributes changed outside iamrecon


@dataclass
class DriftReport:
    """Report of detected drift for a single managed address."""

    address: str
    drift_type: str | None = None
    changed_keys: list[str] = field(default_factory=list)
    expected: dict = field(default_factory=dict)
    observed: dict | None = None

    @property
    def has_drift(self) -> bool:
        return self.drift_type is not None

    @property
    def details(self) -> list[str]:
        if self.drift_type == DriftType.MISSING:
            return ["Resource no longer exists remotely."]
        observed = self.observed or {}
        return [
            f"{key}: expected {self.expected.get(key)!r}, found {observed.get(key)!r}"
            for key in self.changed_keys
        ]

    def summary(self) -> str:
        if not self.has_drift:
            return f"{self.address}: in sync"
        return f"{self.address}: DRIFT [{self.drift_type}]"


class DriftDetector:
    """Compares recorded state with what the control plane reports."""

    def __init__(self, backend: ControlPlane, state: StateStore):
        self.backend = backend
        self.state = state

    def check(self, address: str) -> DriftReport:
        record = self.state.get(address)
        if record is None:
            raise KeyError(f"{address} is not managed (no state record)")

        observed = self.backend.read(record.resource_kind, record.identity)
        report = DriftReport(address=address, expected=record.attributes, observed=observed)
        if observed is None:
            report.drift_type = DriftType.MISSING
        else:
            report.changed_keys = diff_attributes(record.attributes, observed)
            if report.changed_keys:
                report.drift_type = DriftType.MODIFIED

        if report.has_drift:
            logger.warning(report.summary())
        return report

    def check_all(self) -> list[DriftReport]:
        """Check every managed address."""
        self.state.bind_backend(self.backend.name)
        return [self.check(record.address) for record in self.state.records()]
