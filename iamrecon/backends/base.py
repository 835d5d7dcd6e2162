"""Control-plane interface the reconciler talks to.

A control plane reads, creates, updates and deletes one resource at a time.
``read`` returns the observed attributes in the same shape as the
resource's ``desired()`` mapping (or ``None`` when the resource does not
exist), which is what makes diffing backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from iamrecon.models.resources import (
    Attachment,
    InstanceProfile,
    Policy,
    Resource,
    ResourceKind,
    Role,
)


class ControlPlane(ABC):
    """Dispatches generic operations to per-kind implementations."""

    name = "abstract"

    def read(self, kind: ResourceKind, identity: dict) -> dict | None:
        return getattr(self, f"read_{kind.value}")(identity)

    def create(self, resource: Resource) -> dict:
        return getattr(self, f"create_{resource.kind.value}")(resource)

    def update(self, resource: Resource, observed: dict) -> dict:
        return getattr(self, f"update_{resource.kind.value}")(resource, observed)

    def delete(self, kind: ResourceKind, identity: dict) -> None:
        getattr(self, f"delete_{kind.value}")(identity)

    # --- Roles ---

    @abstractmethod
    def read_role(self, identity: dict) -> dict | None: ...

    @abstractmethod
    def create_role(self, role: Role) -> dict: ...

    @abstractmethod
    def update_role(self, role: Role, observed: dict) -> dict: ...

    @abstractmethod
    def delete_role(self, identity: dict) -> None: ...

    # --- Policies ---

    @abstractmethod
    def read_policy(self, identity: dict) -> dict | None: ...

    @abstractmethod
    def create_policy(self, policy: Policy) -> dict: ...

    @abstractmethod
    def update_policy(self, policy: Policy, observed: dict) -> dict: ...

    @abstractmethod
    def delete_policy(self, identity: dict) -> None: ...

    # --- Attachments ---

    @abstractmethod
    def read_attachment(self, identity: dict) -> dict | None: ...

    @abstractmethod
    def create_attachment(self, attachment: Attachment) -> dict: ...

    def update_attachment(self, attachment: Attachment, observed: dict) -> dict:
        # Every attachment attribute is part of its identity; changes are replacements.
        raise NotImplementedError("Attachments are replaced, never updated in place")

    @abstractmethod
    def delete_attachment(self, identity: dict) -> None: ...

    # --- Instance profiles ---

    @abstractmethod
    def read_instance_profile(self, identity: dict) -> dict | None: ...

    @abstractmethod
    def create_instance_profile(self, profile: InstanceProfile) -> dict: ...

    @abstractmethod
    def update_instance_profile(self, profile: InstanceProfile, observed: dict) -> dict: ...

    @abstractmethod
    def delete_instance_profile(self, identity: dict) -> None: ...


def tag_changes(desired: dict, observed: dict) -> tuple[dict, list[str]]:
    """Tags to set and tag keys to remove to move ``observed`` to ``desired``."""
    to_set = {k: v for k, v in desired.items() if observed.get(k) != v}
    to_remove = sorted(k for k in observed if k not in desired)
    return to_set, to_remove
