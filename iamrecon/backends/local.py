"""Local file-based control plane.

A simple, file-system-backed stand-in for the IAM API, used for dry runs,
demos and tests. Resources are stored as JSON in a single index file, keyed
by kind and physical key. Referential rules mirror IAM: an attachment needs
its role and (declared) policy, and an instance profile needs its role.
Deleting a role or policy detaches it first, as the AWS backend does.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from iamrecon.backends.base import ControlPlane
from iamrecon.errors import BackendError
from iamrecon.models.resources import Attachment, InstanceProfile, Policy, ResourceKind, Role

logger = logging.getLogger(__name__)

KINDS = [kind.value for kind in ResourceKind]


def physical_key(kind: ResourceKind, identity: dict) -> str:
    """Stable key for a resource inside the local index."""
    if kind == ResourceKind.ATTACHMENT:
        policy = identity.get("policy_arn") or f"{identity.get('policy_path', '/')}{identity['policy_name']}"
        return f"{identity['role_name']}|{policy}"
    return identity["name"]


class LocalControlPlane(ControlPlane):
    """JSON-file backed control plane. ``path=None`` keeps everything in memory."""

    name = "local"
    INDEX_FILE = "local_iam.json"

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self._index: dict[str, dict[str, dict]] = self._load_index()

    # --- Roles ---

    def read_role(self, identity: dict) -> dict | None:
        return self._get(ResourceKind.ROLE, identity)

    def create_role(self, role: Role) -> dict:
        self._ensure_absent(ResourceKind.ROLE, role.identity())
        return self._put(ResourceKind.ROLE, role.identity(), role.desired())

    def update_role(self, role: Role, observed: dict) -> dict:
        self._ensure_present(ResourceKind.ROLE, role.identity())
        return self._put(ResourceKind.ROLE, role.identity(), role.desired())

    def delete_role(self, identity: dict) -> None:
        name = identity["name"]
        for key, attachment in list(self._bucket(ResourceKind.ATTACHMENT).items()):
            if attachment["role_name"] == name:
                self._drop(ResourceKind.ATTACHMENT, key)
        for profile in self._bucket(ResourceKind.INSTANCE_PROFILE).values():
            if profile["role_name"] == name:
                profile["role_name"] = ""
        self._drop(ResourceKind.ROLE, physical_key(ResourceKind.ROLE, identity))

    # --- Policies ---

    def read_policy(self, identity: dict) -> dict | None:
        observed = self._get(ResourceKind.POLICY, identity)
        if observed and observed["path"] != identity.get("path", "/"):
            return None
        return observed

    def create_policy(self, policy: Policy) -> dict:
        self._ensure_absent(ResourceKind.POLICY, policy.identity())
        return self._put(ResourceKind.POLICY, policy.identity(), policy.desired())

    def update_policy(self, policy: Policy, observed: dict) -> dict:
        self._ensure_present(ResourceKind.POLICY, policy.identity())
        return self._put(ResourceKind.POLICY, policy.identity(), policy.desired())

    def delete_policy(self, identity: dict) -> None:
        path = identity.get("path", "/")
        if self.read_policy(identity) is None:
            return
        for key, attachment in list(self._bucket(ResourceKind.ATTACHMENT).items()):
            if (
                not attachment["policy_arn"]
                and attachment["policy_name"] == identity["name"]
                and attachment.get("policy_path", "/") == path
            ):
                self._drop(ResourceKind.ATTACHMENT, key)
        self._drop(ResourceKind.POLICY, physical_key(ResourceKind.POLICY, identity))

    # --- Attachments ---

    def read_attachment(self, identity: dict) -> dict | None:
        return self._get(ResourceKind.ATTACHMENT, identity)

    def create_attachment(self, attachment: Attachment) -> dict:
        if not self._get(ResourceKind.ROLE, {"name": attachment.role_name}):
            raise BackendError(f"Role {attachment.role_name} does not exist", code="NoSuchEntity")
        if not attachment.policy_arn and not self.read_policy(
            {"name": attachment.policy_name, "path": attachment.policy_path}
        ):
            raise BackendError(f"Policy {attachment.policy_name} does not exist", code="NoSuchEntity")
        return self._put(ResourceKind.ATTACHMENT, attachment.identity(), attachment.desired())

    def delete_attachment(self, identity: dict) -> None:
        self._drop(ResourceKind.ATTACHMENT, physical_key(ResourceKind.ATTACHMENT, identity))

    # --- Instance profiles ---

    def read_instance_profile(self, identity: dict) -> dict | None:
        return self._get(ResourceKind.INSTANCE_PROFILE, identity)

    def create_instance_profile(self, profile: InstanceProfile) -> dict:
        self._ensure_absent(ResourceKind.INSTANCE_PROFILE, profile.identity())
        self._require_role(profile.role_name)
        return self._put(ResourceKind.INSTANCE_PROFILE, profile.identity(), profile.desired())

    def update_instance_profile(self, profile: InstanceProfile, observed: dict) -> dict:
        self._ensure_present(ResourceKind.INSTANCE_PROFILE, profile.identity())
        self._require_role(profile.role_name)
        return self._put(ResourceKind.INSTANCE_PROFILE, profile.identity(), profile.desired())

    def delete_instance_profile(self, identity: dict) -> None:
        self._drop(ResourceKind.INSTANCE_PROFILE, physical_key(ResourceKind.INSTANCE_PROFILE, identity))

    # --- Index helpers ---

    def _bucket(self, kind: ResourceKind) -> dict[str, dict]:
        return self._index.setdefault(kind.value, {})

    def _get(self, kind: ResourceKind, identity: dict) -> dict | None:
        found = self._bucket(kind).get(physical_key(kind, identity))
        return json.loads(json.dumps(found)) if found is not None else None

    def _put(self, kind: ResourceKind, identity: dict, attributes: dict) -> dict:
        key = physical_key(kind, identity)
        self._bucket(kind)[key] = json.loads(json.dumps(attributes))
        logger.debug("local: stored %s %s", kind.value, key)
        self._save_index()
        return attributes

    def _drop(self, kind: ResourceKind, key: str) -> None:
        if self._bucket(kind).pop(key, None) is not None:
            logger.debug("local: removed %s %s", kind.value, key)
        self._save_index()

    def _ensure_absent(self, kind: ResourceKind, identity: dict) -> None:
        if self._get(kind, identity) is not None:
            raise BackendError(
                f"{kind.value} {physical_key(kind, identity)} already exists", code="EntityAlreadyExists"
            )

    def _ensure_present(self, kind: ResourceKind, identity: dict) -> None:
        if self._get(kind, identity) is None:
            raise BackendError(f"{kind.value} {physical_key(kind, identity)} does not exist", code="NoSuchEntity")

    def _require_role(self, role_name: str) -> None:
        if not self._get(ResourceKind.ROLE, {"name": role_name}):
            raise BackendError(f"Role {role_name} does not exist", code="NoSuchEntity")

    def _load_index(self) -> dict[str, dict[str, dict]]:
        if self.path and self.path.exists():
            with open(self.path) as f:
                data = json.load(f)
            return {kind: data.get(kind, {}) for kind in KINDS}
        return {kind: {} for kind in KINDS}

    def _save_index(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(self._index, f, indent=2, sort_keys=True)
